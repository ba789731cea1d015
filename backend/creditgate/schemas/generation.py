from pydantic import BaseModel, Field
from typing import Dict, List, Any, Optional
from datetime import datetime

from creditgate.models.async_task import AsyncTaskStatus


class ChatMessage(BaseModel):
    role: str
    content: Any = None

    class Config:
        extra = "allow"


class ChatRequest(BaseModel):
    model: str
    messages: List[ChatMessage]
    max_tokens: Optional[int] = Field(default=None, gt=0)
    temperature: Optional[float] = None
    top_p: Optional[float] = None

    class Config:
        extra = "allow"


class ChatResponse(BaseModel):
    content: str
    model: Optional[str] = None
    credits: int
    usage: Optional[Dict[str, int]] = None


class TextToImageRequest(BaseModel):
    model: str
    prompt: str
    n: int = Field(default=1, ge=1, le=10)
    size: Optional[str] = None

    class Config:
        extra = "allow"


class TextToImageResponse(BaseModel):
    images: List[str]
    credits: int


class ThreeDRequest(BaseModel):
    model: str
    params: Dict[str, Any] = {}


class ThreeDTaskCreated(BaseModel):
    task_id: str
    status: AsyncTaskStatus
    estimated_credits: int


class AsyncTaskOut(BaseModel):
    id: str
    status: AsyncTaskStatus
    provider: Optional[str] = None
    model: Optional[str] = None
    estimated_credits: Optional[int] = None
    credits_charged: Optional[int] = None
    asset: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
