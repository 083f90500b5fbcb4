import uuid

from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class BaseModel(Base):
    """Archive rows: string uuid primary key plus server-side timestamps."""
    __abstract__ = True

    id = Column(String, primary_key=True, default=new_id, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

# Models import Base from here; init_models() and migrations import the models.
