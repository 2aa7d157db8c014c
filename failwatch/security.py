from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import hmac
from typing import Optional

from fastapi import Request


class FailureReason(str, Enum):
    MISSING_CREDENTIAL = "Missing token"
    INVALID_CREDENTIAL = "Invalid token"


@dataclass(frozen=True)
class ValidationOutcome:
    accepted: bool
    reason: Optional[FailureReason] = None


ACCEPTED = ValidationOutcome(accepted=True)


def classify_credential(value: Optional[str], expected: str) -> ValidationOutcome:
    """Accept only an exact match of the configured token."""
    if not value:
        return ValidationOutcome(accepted=False, reason=FailureReason.MISSING_CREDENTIAL)
    if hmac.compare_digest(value.encode("utf-8"), expected.encode("utf-8")):
        return ACCEPTED
    return ValidationOutcome(accepted=False, reason=FailureReason.INVALID_CREDENTIAL)


def client_origin(request: Request, trust_proxy: bool) -> str:
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",", 1)[0].strip()
        if first_hop:
            return first_hop

    if request.client and request.client.host:
        return request.client.host
    return "unknown"
