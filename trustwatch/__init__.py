"""
TrustWatch — trust and audit subsystem.

Architecture:
    trustwatch/
    ├── audit/           # Categorized, hash-chained audit trail with retention
    ├── compliance/      # SOC control checks, runner, run history and reports
    ├── security/        # Account lockout, adaptive rate limiting, permissions
    ├── fraud/           # Transaction risk scoring and amount monitoring
    ├── alerting/        # Compliance alerts over log and webhook channels
    ├── reporting/       # Audit analytics and health checks
    ├── middleware/      # HTTP throttling and error handling
    ├── db/              # SQLAlchemy engine, models, dialect compat
    ├── service.py       # TrustService — owns all state, the public entry point
    └── scheduler.py     # APScheduler jobs (compliance loop, sweeps, purge)

Data Flow:
    Scheduler → ComplianceRunner → Checks → AuditLogger → AuditTrailStore
                                          └→ ComplianceAlerter (on failure)
    Request → ThrottleMiddleware → RateLimiter / LockoutTracker → AuditLogger
    Payment → FraudRiskScorer → AuditLogger

Version: 1.0.0
"""

__version__ = "1.0.0"
