"""
Response envelope shared by every JSON endpoint.

    success → {"success": true,  "message": ..., "data": ..., "timestamp": ...}
    failure → {"success": false, "error": ...,   "timestamp": ...}
"""

from __future__ import annotations

import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: str = "OK"
    data: T | None = None
    timestamp: datetime.datetime = Field(default_factory=_utcnow)


class ErrorBody(BaseModel):
    success: bool = False
    error: str
    timestamp: datetime.datetime = Field(default_factory=_utcnow)


def ok(data: T | None = None, message: str = "OK") -> Envelope[T]:
    return Envelope(data=data, message=message)
