"""
Fraud Risk Scorer.

Additive rule scoring over the identity's recent transaction history:

    HIGH_VELOCITY  +30   ≥5 transactions in the trailing 10 minutes
    HIGH_VALUE     +20   amount > 1000
    DUPLICATE      +25   a recent transaction has the identical amount
    SUSPICIOUS_IP  +40   source address inside a proxy/anonymizer network

score > 50 blocks; 30 < score ≤ 50 approves but asks for manual review.

`score_transaction` is pure. `FraudRiskScorer.assess_transaction` wraps it
with the history lookup (which degrades to empty history on any failure) and
the FRAUD_CHECK audit event.
"""

import asyncio
import ipaddress
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from trustwatch.audit import AuditLogger, AuditResult, AuditSeverity
from trustwatch.clock import Clock, SystemClock
from trustwatch.errors import ValidationError
from trustwatch.fraud.history import TransactionHistorySource
from trustwatch.fraud.schemas import (
    FLAG_WEIGHTS,
    FraudAssessment,
    FraudDecision,
    FraudFlag,
    FraudThresholds,
    PastTransaction,
    TransactionInput,
)

logger = structlog.get_logger(__name__)

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_networks(cidrs: Iterable[str]) -> tuple[Network, ...]:
    return tuple(ipaddress.ip_network(c, strict=False) for c in cidrs)


def is_suspicious_address(address: Optional[str], networks: Sequence[Network]) -> bool:
    if not address:
        return False
    try:
        ip = ipaddress.ip_address(address.strip())
    except ValueError:
        return False
    return any(ip.version == net.version and ip in net for net in networks)


def score_transaction(
    amount: Decimal,
    source_address: Optional[str],
    recent_transactions: Sequence[PastTransaction],
    now: datetime,
    thresholds: FraudThresholds = FraudThresholds(),
    suspicious_networks: Sequence[Network] = (),
    transaction_id: Optional[str] = None,
) -> FraudAssessment:
    """Score one operation. Same inputs, same assessment."""
    amount = Decimal(str(amount))
    window_start = now - timedelta(seconds=thresholds.velocity_window_seconds)
    recent = [t for t in recent_transactions if window_start <= t.created_at <= now]

    flags: set[FraudFlag] = set()
    if len(recent) >= thresholds.velocity_count:
        flags.add(FraudFlag.HIGH_VELOCITY)
    if amount > thresholds.high_value:
        flags.add(FraudFlag.HIGH_VALUE)
    if any(Decimal(str(t.amount)) == amount for t in recent):
        flags.add(FraudFlag.DUPLICATE)
    if is_suspicious_address(source_address, suspicious_networks):
        flags.add(FraudFlag.SUSPICIOUS_IP)

    score = sum(FLAG_WEIGHTS[f] for f in flags)
    decision = FraudDecision.BLOCKED if score > thresholds.block_above else FraudDecision.APPROVED

    return FraudAssessment(
        risk_score=score,
        flags=frozenset(flags),
        decision=decision,
        requires_manual_review=thresholds.review_above < score <= thresholds.block_above,
        transaction_id=transaction_id,
    )


class FraudRiskScorer:
    def __init__(
        self,
        history: TransactionHistorySource,
        audit: AuditLogger,
        thresholds: FraudThresholds = FraudThresholds(),
        suspicious_networks: Iterable[str] = ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"),
        history_timeout_seconds: float = 5.0,
        clock: Optional[Clock] = None,
    ):
        self.history = history
        self.audit = audit
        self.thresholds = thresholds
        self.suspicious_networks = parse_networks(suspicious_networks)
        self.history_timeout_seconds = history_timeout_seconds
        self._clock = clock or SystemClock()

    async def _load_history(self, identity: str, now: datetime) -> Optional[list[PastTransaction]]:
        """Recent history, or None when the source is unavailable."""
        since = now - timedelta(seconds=self.thresholds.velocity_window_seconds)
        try:
            return list(
                await asyncio.wait_for(
                    self.history.recent_transactions(identity, since),
                    timeout=self.history_timeout_seconds,
                )
            )
        except Exception as e:
            logger.warning(
                "fraud_history_unavailable",
                identity=identity,
                error=str(e) or type(e).__name__,
            )
            return None

    async def assess_transaction(self, tx: TransactionInput | dict) -> FraudAssessment:
        """
        Score a transaction and audit the decision.

        Raises ValidationError for malformed input; never raises for a
        history or audit failure.
        """
        if not isinstance(tx, TransactionInput):
            try:
                tx = TransactionInput.model_validate(tx)
            except PydanticValidationError as e:
                first = e.errors()[0]
                field = ".".join(str(p) for p in first.get("loc", ())) or None
                raise ValidationError(f"Invalid transaction: {first.get('msg')}", field=field)

        now = self._clock.now()
        history = await self._load_history(tx.identity, now)

        assessment = score_transaction(
            amount=tx.amount,
            source_address=tx.source_address,
            recent_transactions=history or [],
            now=now,
            thresholds=self.thresholds,
            suspicious_networks=self.suspicious_networks,
            transaction_id=tx.transaction_id,
        )
        if history is None:
            assessment = replace(assessment, history_available=False)

        blocked = assessment.decision == FraudDecision.BLOCKED
        await self.audit.log_security_event(
            action="FRAUD_CHECK",
            result=AuditResult.BLOCKED if blocked else AuditResult.APPROVED,
            severity=AuditSeverity.CRITICAL if blocked else AuditSeverity.INFO,
            actor_id=tx.identity,
            source_address=tx.source_address,
            resource="TRANSACTION",
            control_id="CC7.2",
            metadata={
                "transaction_id": tx.transaction_id,
                "amount": str(tx.amount),
                "currency": tx.currency,
                "score": assessment.risk_score,
                "flags": sorted(f.value for f in assessment.flags),
                "review": assessment.requires_manual_review,
                "history_available": assessment.history_available,
            },
        )

        logger.info(
            "fraud_check",
            transaction_id=tx.transaction_id,
            score=assessment.risk_score,
            decision=assessment.decision.value,
        )
        return assessment
