"""
Fraud Scoring Schemas.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from trustwatch.errors import MAX_KEY_LENGTH


class FraudDecision(StrEnum):
    APPROVED = "APPROVED"
    BLOCKED = "BLOCKED"


class FraudFlag(StrEnum):
    HIGH_VELOCITY = "HIGH_VELOCITY"
    HIGH_VALUE = "HIGH_VALUE"
    DUPLICATE = "DUPLICATE"
    SUSPICIOUS_IP = "SUSPICIOUS_IP"


FLAG_WEIGHTS: dict[FraudFlag, int] = {
    FraudFlag.HIGH_VELOCITY: 30,
    FraudFlag.HIGH_VALUE: 20,
    FraudFlag.DUPLICATE: 25,
    FraudFlag.SUSPICIOUS_IP: 40,
}


class TransactionInput(BaseModel):
    """A financial operation about to be processed."""

    model_config = ConfigDict(str_strip_whitespace=True)

    transaction_id: str = Field(min_length=1, max_length=128)
    identity: str = Field(min_length=1, max_length=MAX_KEY_LENGTH)
    amount: Decimal = Field(ge=0)
    source_address: Optional[str] = Field(default=None, max_length=MAX_KEY_LENGTH)
    currency: str = "USD"


@dataclass(frozen=True)
class PastTransaction:
    """One row of transaction history, as the scorer sees it."""

    amount: Decimal
    created_at: datetime
    transaction_id: Optional[str] = None
    status: str = "COMPLETED"


@dataclass(frozen=True)
class FraudThresholds:
    velocity_count: int = 5
    velocity_window_seconds: int = 600
    high_value: Decimal = Decimal("1000")
    block_above: int = 50
    review_above: int = 30


@dataclass(frozen=True)
class FraudAssessment:
    risk_score: int
    flags: frozenset[FraudFlag]
    decision: FraudDecision
    requires_manual_review: bool
    transaction_id: Optional[str] = None
    history_available: bool = True

    @property
    def approved(self) -> bool:
        return self.decision == FraudDecision.APPROVED

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "risk_score": self.risk_score,
            "flags": sorted(f.value for f in self.flags),
            "decision": self.decision.value,
            "approved": self.approved,
            "requires_manual_review": self.requires_manual_review,
            "history_available": self.history_available,
        }


@dataclass
class ReviewFlag:
    transaction_id: str
    reason: str
    details: dict = field(default_factory=dict)
