"""
Generic response schemas
"""

from pydantic import BaseModel, Field
from typing import Any, Optional, Dict
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorDetail(BaseModel):
    """Error detail schema"""
    code: str
    message: str
    details: Optional[Dict[str, Any]] = {}


class ErrorResponse(BaseModel):
    """Generic error response"""
    success: bool = False
    error: ErrorDetail
    timestamp: datetime = Field(default_factory=_utcnow)

