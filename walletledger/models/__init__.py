"""
Data Models Package

This package contains all Pydantic models used in the Wallet Ledger system.
All data flowing through the engine must conform to these schemas.
"""

from walletledger.models.wallet import (
    Wallet,
    WalletKind,
    utc_now,
)
from walletledger.models.transaction import (
    Transaction,
    TransactionDraft,
    TransactionType,
)
from walletledger.models.balance import (
    BalanceDelta,
    BalanceSnapshot,
    Direction,
    RunningBalanceReport,
)
from walletledger.models.validation import ValidationIssue
from walletledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Wallet models
    "Wallet",
    "WalletKind",
    "utc_now",
    # Transaction models
    "Transaction",
    "TransactionDraft",
    "TransactionType",
    # Balance models
    "BalanceDelta",
    "BalanceSnapshot",
    "Direction",
    "RunningBalanceReport",
    # Validation
    "ValidationIssue",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
