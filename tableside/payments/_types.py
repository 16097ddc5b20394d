"""
Payment types — what the gateway hands back and what callers receive.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from tableside._types import Minor
from tableside.domain import Outcome, PaymentAttempt, SubjectType


class GatewayStatus(Enum):
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def outcome(self) -> Outcome | None:
        """Terminal outcome, or None while the payer is still paying."""
        match self:
            case GatewayStatus.SUCCEEDED:
                return Outcome.SUCCEEDED
            case GatewayStatus.FAILED:
                return Outcome.FAILED
            case _:
                return None


@dataclass(frozen=True, slots=True)
class GatewayIntent:
    reference: str
    client_secret: str


@dataclass(frozen=True, slots=True)
class GatewayPayment:
    reference: str
    status: GatewayStatus
    amount: Minor
    currency: str
    metadata: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PaymentHandle:
    """Returned by `begin_payment`; the client secret goes to the payer's browser."""

    reference: str
    client_secret: str
    subject_id: str
    subject_type: SubjectType
    amount: Minor
    currency: str

    @classmethod
    def of(cls, attempt: PaymentAttempt) -> PaymentHandle:
        return cls(
            reference=attempt.reference,
            client_secret=attempt.client_secret,
            subject_id=attempt.subject_id,
            subject_type=attempt.subject_type,
            amount=attempt.amount,
            currency=attempt.currency,
        )


__all__ = (
    "GatewayStatus",
    "GatewayIntent",
    "GatewayPayment",
    "PaymentHandle",
)
