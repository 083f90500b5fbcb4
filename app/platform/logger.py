import logging
import os
from logging.handlers import RotatingFileHandler

from app.platform.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _log_file_path() -> str:
    log_dir = os.path.join(os.getcwd(), settings.LOG_DIR)
    os.makedirs(log_dir, exist_ok=True)
    return os.path.join(log_dir, "site_analyzer.log")


def get_logger(name: str):
    """
    Logger for the API layer: console output plus a rotating file under LOG_DIR.

    Worker modules use plain ``logging.getLogger(__name__)`` and leave handler
    setup to the Celery worker process.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if settings.LOG_DIR:
        file_handler = RotatingFileHandler(_log_file_path(), maxBytes=10_000_000, backupCount=5)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.INFO)
        logger.addHandler(file_handler)

    # Records already reach the console handler above
    logger.propagate = False

    return logger
