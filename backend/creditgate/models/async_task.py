import enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum, Integer, String
from sqlalchemy.sql import func

from creditgate.core.database import Base


class AsyncTaskStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class AsyncTaskType(str, enum.Enum):
    THREED_GENERATION = "threed_generation"


class AsyncTask(Base):
    __tablename__ = "async_tasks"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid4()))
    user_id = Column(String, index=True, nullable=False)
    organization_id = Column(String(36), index=True, nullable=True)
    type = Column(Enum(AsyncTaskType), default=AsyncTaskType.THREED_GENERATION)
    status = Column(Enum(AsyncTaskStatus), default=AsyncTaskStatus.PENDING, index=True)
    provider = Column(String, nullable=True)
    model = Column(String, nullable=True)
    params = Column(JSON, nullable=True)
    estimated_credits = Column(Integer, default=0)
    credits_charged = Column(Integer, nullable=True)
    # {"modelUrl": ..., "previewUrl": ..., "format": ..., "jobId": ...}
    asset = Column(JSON, nullable=True)
    # {"name": <AsyncTaskErrorType>, "body": {"detail": ...}}
    error = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
