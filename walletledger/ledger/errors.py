"""
Ledger Engine Errors

Every failure the engine raises is a LedgerError. Storage errors raised
by the backends pass through unchanged when no balance was mutated.

A detected discrepancy is NOT an error: it is reported in the
RunningBalanceReport.
"""

from typing import Optional

from walletledger.models.validation import ValidationIssue


class LedgerError(Exception):
    """Base exception for the ledger engine."""
    pass


class ValidationError(LedgerError, ValueError):
    """Input was rejected before any balance was touched."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []

    @property
    def issue_dicts(self) -> list[dict]:
        return [issue.to_dict() for issue in self.issues]


class TransferConstraintError(ValidationError):
    """A transfer between wallets of different kinds, to itself, or missing an endpoint."""
    pass


class WalletNotFoundError(LedgerError):
    """A transaction references a wallet that doesn't exist for this user."""

    def __init__(self, wallet_id: str):
        super().__init__(f"Wallet not found: {wallet_id}")
        self.wallet_id = wallet_id


class TransactionNotFoundError(LedgerError):
    """No transaction with this id exists for this user."""

    def __init__(self, transaction_id: str):
        super().__init__(f"Transaction not found: {transaction_id}")
        self.transaction_id = transaction_id


class PartialMutationError(LedgerError):
    """
    A multi-step mutation failed after some balances had already changed.

    `compensated` is True when the engine restored the balances it had
    touched. When False, balances are in an unknown state and need manual
    reconciliation (a CRITICAL audit event is emitted alongside).
    """

    def __init__(
        self,
        transaction_id: str,
        stage: str,
        compensated: bool,
        message: Optional[str] = None,
    ):
        detail = message or "mutation failed"
        state = "balances restored" if compensated else "balances NOT restored"
        super().__init__(
            f"Transaction {transaction_id}: {detail} at stage '{stage}' ({state})"
        )
        self.transaction_id = transaction_id
        self.stage = stage
        self.compensated = compensated


class LockTimeoutError(LedgerError):
    """The per-user lock could not be acquired in time. Nothing was changed."""

    def __init__(self, user_id: str, timeout: float):
        super().__init__(
            f"Timed out after {timeout}s waiting for the ledger lock of user {user_id}"
        )
        self.user_id = user_id
        self.timeout = timeout
