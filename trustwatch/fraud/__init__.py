"""Fraud risk scoring and transaction monitoring."""

from trustwatch.fraud.history import SqlTransactionHistory, TransactionHistorySource
from trustwatch.fraud.monitor import TransactionMonitor
from trustwatch.fraud.schemas import (
    FraudAssessment,
    FraudDecision,
    FraudFlag,
    FraudThresholds,
    PastTransaction,
    TransactionInput,
)
from trustwatch.fraud.scorer import FraudRiskScorer, score_transaction

__all__ = [
    "FraudAssessment",
    "FraudDecision",
    "FraudFlag",
    "FraudRiskScorer",
    "FraudThresholds",
    "PastTransaction",
    "SqlTransactionHistory",
    "TransactionHistorySource",
    "TransactionInput",
    "TransactionMonitor",
    "score_transaction",
]
