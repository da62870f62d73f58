"""
Ledger Engine Package

Balance mutation, reversal sequencing and discrepancy detection for the
Physical / Logical wallet views.
"""

from walletledger.ledger.errors import (
    LedgerError,
    LockTimeoutError,
    PartialMutationError,
    TransactionNotFoundError,
    TransferConstraintError,
    ValidationError,
    WalletNotFoundError,
)
from walletledger.ledger.mutator import BalanceMutator, apply_deltas, compute_deltas
from walletledger.ledger.validator import TransactionValidator
from walletledger.ledger.locks import UserLockRegistry, run_to_completion
from walletledger.ledger.coordinator import ReversalCoordinator
from walletledger.ledger.analyzer import (
    BalanceDiscrepancyDetector,
    build_report,
    find_first_discrepancy,
    running_balances,
    sort_chronologically,
)
from walletledger.ledger.summary import (
    DailySummary,
    PeriodSummary,
    TransferDirection,
    calculate_period_summary,
    daily_summaries,
    effective_amount,
    monthly_summaries,
    reconstruct_balances_at,
    transfer_direction,
)

__all__ = [
    # Errors
    "LedgerError",
    "LockTimeoutError",
    "PartialMutationError",
    "TransactionNotFoundError",
    "TransferConstraintError",
    "ValidationError",
    "WalletNotFoundError",
    # Mutation
    "BalanceMutator",
    "apply_deltas",
    "compute_deltas",
    # Validation
    "TransactionValidator",
    # Concurrency
    "UserLockRegistry",
    "run_to_completion",
    # Coordination
    "ReversalCoordinator",
    # Analysis
    "BalanceDiscrepancyDetector",
    "build_report",
    "find_first_discrepancy",
    "running_balances",
    "sort_chronologically",
    # Summaries
    "DailySummary",
    "PeriodSummary",
    "TransferDirection",
    "calculate_period_summary",
    "daily_summaries",
    "effective_amount",
    "monthly_summaries",
    "reconstruct_balances_at",
    "transfer_direction",
]
