import logging
from typing import Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.platform.response import api_response


class AnalysisError(Exception):
    """
    Base class for every failure the pipeline knows how to name.

    ``code`` is what API callers see in the ``error`` field and what gets
    recorded on failed jobs and requests; ``http_status`` is used when the
    error reaches the Report API.
    """

    code = "AnalysisError"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    transient = False

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.code
        super().__init__(self.message)


class InvalidUrl(AnalysisError):
    code = "InvalidUrl"
    http_status = status.HTTP_400_BAD_REQUEST


class FetchTimeout(AnalysisError):
    code = "FetchTimeout"
    http_status = status.HTTP_502_BAD_GATEWAY
    transient = True


class FetchNetworkError(AnalysisError):
    code = "FetchNetworkError"
    http_status = status.HTTP_502_BAD_GATEWAY
    transient = True


class FetchHttpError(AnalysisError):
    code = "FetchHttpError"
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message or f"Target responded with HTTP {status_code}")


class ArtifactUnusable(AnalysisError):
    code = "ArtifactUnusable"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class AnalysisFailed(AnalysisError):
    code = "AnalysisFailed"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class RequestTimeout(AnalysisError):
    code = "RequestTimeout"
    http_status = status.HTTP_504_GATEWAY_TIMEOUT


class QueueUnavailable(AnalysisError):
    code = "QueueUnavailable"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


class RequestNotFound(AnalysisError):
    code = "RequestNotFound"
    http_status = status.HTTP_404_NOT_FOUND


ERROR_TYPES = {
    cls.code: cls
    for cls in (
        InvalidUrl,
        FetchTimeout,
        FetchNetworkError,
        FetchHttpError,
        ArtifactUnusable,
        AnalysisFailed,
        RequestTimeout,
        QueueUnavailable,
        RequestNotFound,
    )
}


def http_status_for(code: Optional[str]) -> int:
    """HTTP status for an error code recorded on a job or request."""
    error_type = ERROR_TYPES.get(code or "")
    return error_type.http_status if error_type else status.HTTP_500_INTERNAL_SERVER_ERROR


def add_exception_handlers(app):
    @app.exception_handler(AnalysisError)
    async def analysis_error_handler(request: Request, exc: AnalysisError):
        return api_response(error=exc.code, message=exc.message, status_code=exc.http_status)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return api_response(
            error="HTTPError",
            message=str(exc.detail) or "Error",
            status_code=exc.status_code,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return api_response(
            error="ValidationError",
            message="Validation failed",
            status_code=status.HTTP_400_BAD_REQUEST,
            data={
                "errors": [
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                    for err in exc.errors()
                ]
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logging.exception(f"Unhandled exception: {exc}")
        return api_response(
            error="InternalError",
            message="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
