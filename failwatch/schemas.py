from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .store import FailureEvent


class SubmitResponse(BaseModel):
    message: str


class RejectionResponse(BaseModel):
    message: str
    reason: str


class ErrorResponse(BaseModel):
    message: str


class FailureEventItem(BaseModel):
    id: Optional[int] = None
    ip_address: str
    timestamp: datetime
    failure_reason: str

    @classmethod
    def from_event(cls, event: FailureEvent) -> "FailureEventItem":
        return cls(
            id=event.id,
            ip_address=event.origin,
            timestamp=event.occurred_at,
            failure_reason=event.reason.value,
        )


class HealthResponse(BaseModel):
    status: str
    ts: str
