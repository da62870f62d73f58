"""
Main Orchestrator for Wallet Ledger

This module ties together all the components and defines the
caller-facing API:
1. Wallets (create, list)
2. Transactions (create, edit, delete, list)
3. Consistency audit (first discrepancy, running balance report)
4. Wallet analytics (period / monthly summaries, historical balances)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every call names its user explicitly; there is no "current user" state
- Balance changes only go through the Reversal Coordinator
- The audit reads wallets and transactions under the user's lock,
  so it never sees a half-finished edit
- Every step is audited

This is the "glue" the UI (or any other caller) talks to.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from walletledger.audit import AuditLogger, create_correlation_id
from walletledger.config import LedgerSettings, get_settings
from walletledger.ledger.analyzer import build_report, sort_chronologically
from walletledger.ledger.coordinator import ReversalCoordinator
from walletledger.ledger.errors import ValidationError, WalletNotFoundError
from walletledger.ledger.locks import UserLockRegistry
from walletledger.ledger.mutator import BalanceMutator
from walletledger.ledger.summary import (
    PeriodSummary,
    calculate_period_summary,
    monthly_summaries,
    reconstruct_balances_at,
)
from walletledger.ledger.validator import TransactionValidator
from walletledger.models.balance import RunningBalanceReport
from walletledger.models.transaction import Transaction, TransactionDraft, ensure_utc
from walletledger.models.validation import ValidationIssue
from walletledger.models.wallet import Wallet, WalletKind
from walletledger.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStorage,
    GoogleSheetsWalletStorage,
    InMemoryAuditStorage,
    InMemoryTransactionStorage,
    InMemoryWalletStorage,
    TransactionStorageInterface,
    WalletStorageInterface,
)


logger = structlog.get_logger(__name__)


class LedgerService:
    """
    Caller-facing ledger API.

    Usage:
        service = create_ledger_components()
        cash = await service.create_wallet(user_id, "Cash", WalletKind.PHYSICAL)
        food = await service.create_wallet(user_id, "Food", WalletKind.LOGICAL)
        tx_id = await service.create_transaction(user_id, TransactionDraft(
            type=TransactionType.EXPENSE,
            amount=Decimal("12.50"),
            affected_wallet_ids=(cash.id, food.id),
        ))
        report = await service.running_balance_report(user_id)
    """

    def __init__(
        self,
        wallet_storage: WalletStorageInterface,
        transaction_storage: TransactionStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        locks: Optional[UserLockRegistry] = None,
    ):
        self._settings = settings or get_settings().ledger
        self._wallets = wallet_storage
        self._transactions = transaction_storage
        self._audit = audit_logger or AuditLogger()
        self._locks = locks or UserLockRegistry(self._settings.lock_timeout_seconds)
        self._validator = TransactionValidator(wallet_storage, self._settings)
        self._coordinator = ReversalCoordinator(
            mutator=BalanceMutator(wallet_storage),
            validator=self._validator,
            transaction_storage=transaction_storage,
            locks=self._locks,
            audit_logger=self._audit,
        )

    # =========================================================================
    # Wallets
    # =========================================================================

    async def create_wallet(
        self,
        user_id: str,
        name: str,
        kind: WalletKind,
        initial_balance: Decimal = Decimal("0"),
        correlation_id: Optional[UUID] = None,
    ) -> Wallet:
        """
        Create a wallet whose balance starts at its initial balance.

        Raises:
            ValidationError: bad or taken name, out-of-range initial balance
        """
        correlation_id = correlation_id or create_correlation_id()
        initial_balance = Decimal(initial_balance)

        async with self._locks.hold(user_id):
            await self._validator.validate_new_wallet(user_id, name, initial_balance)
            wallet = Wallet(
                user_id=user_id,
                name=name,
                kind=kind,
                initial_balance=initial_balance,
                balance=initial_balance,
            )
            try:
                await self._wallets.save_wallet(wallet)
            except DuplicateError as e:
                raise ValidationError(str(e), [ValidationIssue(
                    field="name",
                    issue_type="duplicate_name",
                    message=str(e),
                )]) from e

        await self._audit.log_wallet_created(
            user_id=user_id,
            wallet_id=wallet.id,
            name=wallet.name,
            kind=wallet.kind.value,
            initial_balance=wallet.initial_balance,
            correlation_id=correlation_id,
        )
        return wallet

    async def list_wallets(self, user_id: str) -> list[Wallet]:
        """All wallets of a user, Physical first, then by name."""
        wallets = await self._wallets.get_wallets_by_user(user_id)
        return sorted(wallets, key=lambda w: (not w.is_physical, w.name.lower()))

    async def get_wallet(self, user_id: str, wallet_id: str) -> Wallet:
        wallet = await self._wallets.get_wallet(wallet_id)
        if wallet is None or wallet.user_id != user_id:
            raise WalletNotFoundError(wallet_id)
        return wallet

    # =========================================================================
    # Transactions
    # =========================================================================

    async def list_transactions(self, user_id: str) -> list[Transaction]:
        """All transactions of a user, newest first."""
        transactions = await self._transactions.get_transactions_by_user(user_id)
        return list(reversed(sort_chronologically(transactions)))

    async def create_transaction(
        self,
        user_id: str,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """Create a transaction and apply it. Returns the new id."""
        transaction = await self._coordinator.create(user_id, draft, correlation_id)
        return transaction.id

    async def edit_transaction(
        self,
        user_id: str,
        transaction_id: str,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """Replace a transaction; balances move from the old effect to the new one."""
        return await self._coordinator.edit(user_id, transaction_id, draft, correlation_id)

    async def delete_transaction(
        self,
        user_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Reverse a transaction's effect and remove it."""
        await self._coordinator.delete(user_id, transaction_id, correlation_id)

    # =========================================================================
    # Consistency audit
    # =========================================================================

    async def _snapshot(self, user_id: str) -> tuple[list[Transaction], list[Wallet]]:
        # Read both collections while no mutation of this user is in flight.
        async with self._locks.hold(user_id):
            transactions = await self._transactions.get_transactions_by_user(user_id)
            wallets = await self._wallets.get_wallets_by_user(user_id)
        return transactions, wallets

    async def running_balance_report(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> RunningBalanceReport:
        """
        Replay the user's history and report where the views diverge.

        Entries are newest first. Nothing is repaired.
        """
        correlation_id = correlation_id or create_correlation_id()
        transactions, wallets = await self._snapshot(user_id)

        report = build_report(
            user_id,
            transactions,
            wallets,
            tolerance=self._settings.discrepancy_tolerance,
        )

        if report.unknown_wallet_ids:
            unknown = set(report.unknown_wallet_ids)
            for snapshot in report.oldest_first():
                for wallet_id in snapshot.transaction.referenced_wallet_ids:
                    if wallet_id in unknown:
                        await self._audit.log_unknown_wallet_reference(
                            user_id=user_id,
                            transaction_id=snapshot.transaction.id,
                            wallet_id=wallet_id,
                            correlation_id=correlation_id,
                        )

        await self._audit.log_discrepancy_detected(
            user_id=user_id,
            transaction_count=report.transaction_count,
            first_discrepancy_id=report.first_discrepancy_id,
            physical_total=report.physical_total,
            logical_total=report.logical_total,
            correlation_id=correlation_id,
        )
        return report

    async def audit_discrepancy(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[str]:
        """Id of the first transaction after which Physical != Logical, if any."""
        report = await self.running_balance_report(user_id, correlation_id)
        return report.first_discrepancy_id

    # =========================================================================
    # Analytics
    # =========================================================================

    async def _wallet_transactions(
        self,
        user_id: str,
        wallet_id: str,
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> list[Transaction]:
        await self.get_wallet(user_id, wallet_id)
        transactions = await self._transactions.get_transactions_by_user(user_id)
        start = ensure_utc(start) if start else None
        end = ensure_utc(end) if end else None
        return [
            t for t in sort_chronologically(transactions)
            if (start is None or t.transaction_date >= start)
            and (end is None or t.transaction_date <= end)
        ]

    async def period_summary(
        self,
        user_id: str,
        wallet_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> PeriodSummary:
        """Income, expenses and transfers of one wallet between two dates (inclusive)."""
        transactions = await self._wallet_transactions(user_id, wallet_id, start, end)
        return calculate_period_summary(transactions, wallet_id)

    async def monthly_summary(
        self,
        user_id: str,
        wallet_id: str,
    ) -> dict[tuple[int, int], PeriodSummary]:
        transactions = await self._wallet_transactions(user_id, wallet_id, None, None)
        return monthly_summaries(transactions, wallet_id)

    async def balances_at(
        self,
        user_id: str,
        end_date: datetime,
    ) -> dict[str, Decimal]:
        """Every wallet's balance as of `end_date`, rebuilt from history."""
        transactions, wallets = await self._snapshot(user_id)
        return reconstruct_balances_at(transactions, wallets, end_date)


def create_ledger_components(
    use_storage: bool = True,
) -> LedgerService:
    """
    Factory function to create the ledger service.

    Args:
        use_storage: Whether to use the configured persistent backend.
                    Set to False for in-memory storage only.

    Returns:
        A LedgerService wired to the selected backend
    """
    settings = get_settings()
    backend = settings.app.storage_backend if use_storage else "memory"

    if backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient()
            return LedgerService(
                wallet_storage=GoogleSheetsWalletStorage(sheets_client),
                transaction_storage=GoogleSheetsTransactionStorage(sheets_client),
                audit_logger=AuditLogger(GoogleSheetsAuditStorage(sheets_client)),
                settings=settings.ledger,
            )
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", backend=backend, error=str(e))

    return LedgerService(
        wallet_storage=InMemoryWalletStorage(),
        transaction_storage=InMemoryTransactionStorage(),
        audit_logger=AuditLogger(InMemoryAuditStorage()),
        settings=settings.ledger,
    )
