from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class FailedRequest(Base):
    __tablename__ = "failed_requests"
    __table_args__ = (
        CheckConstraint(
            "failure_reason IN ('Missing token', 'Invalid token')",
            name="ck_failed_requests_reason",
        ),
        Index("ix_failed_requests_ip_timestamp", "ip_address", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ip_address: Mapped[str] = mapped_column(String(128), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    failure_reason: Mapped[str] = mapped_column(String(32), nullable=False)
