from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .db import Database
from .errors import StoreError
from .models import FailedRequest
from .security import FailureReason


def _as_utc(value: datetime) -> datetime:
    # sqlite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class FailureEvent:
    origin: str
    occurred_at: datetime
    reason: FailureReason
    id: Optional[int] = None


class FailureStore:
    """Durable audit trail of rejected requests."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def append(self, event: FailureEvent) -> None:
        try:
            with self._db.session() as session:
                session.add(
                    FailedRequest(
                        ip_address=event.origin,
                        timestamp=event.occurred_at,
                        failure_reason=event.reason.value,
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to persist failure for {event.origin}") from exc

    def list_all(self, origin: Optional[str] = None) -> list[FailureEvent]:
        query = select(FailedRequest).order_by(FailedRequest.timestamp.asc(), FailedRequest.id.asc())
        if origin:
            query = query.where(FailedRequest.ip_address == origin)

        try:
            with self._db.session() as session:
                rows = session.execute(query).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to read failure records") from exc

        return [
            FailureEvent(
                id=row.id,
                origin=row.ip_address,
                occurred_at=_as_utc(row.timestamp),
                reason=FailureReason(row.failure_reason),
            )
            for row in rows
        ]
