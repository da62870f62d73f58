"""
Discrepancy Analyzer

Finds the FIRST transaction after which the Physical and Logical views
stop agreeing, by replaying a user's whole history over the wallets'
initial balances.

ALGORITHM:
1. Sort transactions by (transaction_date, created_at, id), oldest first
2. Start every wallet at its initial balance
3. Apply each transaction's Forward deltas to a local working map
   (the same delta function the mutator uses; the store is never touched)
4. After each step, total the map per wallet kind and compare with an
   explicit Decimal tolerance

The analyzer only detects and reports. It never repairs anything.
Given the same transactions and wallets it always returns the same result.
"""

from decimal import Decimal
from typing import Iterable, Optional

import structlog

from walletledger.config import get_settings
from walletledger.ledger.errors import ValidationError
from walletledger.ledger.mutator import apply_deltas, compute_deltas
from walletledger.models.balance import BalanceSnapshot, Direction, RunningBalanceReport
from walletledger.models.transaction import Transaction
from walletledger.models.wallet import Wallet, WalletKind


logger = structlog.get_logger(__name__)


def _default_tolerance() -> Decimal:
    return get_settings().ledger.discrepancy_tolerance


def sort_chronologically(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Oldest first by effective date; creation stamp and id break ties."""
    return sorted(transactions, key=lambda t: t.replay_key)


class BalanceDiscrepancyDetector:
    """
    Compares Physical and Logical totals of CURRENT stored balances.

    The analyzer uses the same comparison for replayed balances.
    """

    def __init__(self, tolerance: Optional[Decimal] = None):
        self.tolerance = _default_tolerance() if tolerance is None else tolerance

    @staticmethod
    def total_physical_balance(wallets: Iterable[Wallet]) -> Decimal:
        return sum((w.balance for w in wallets if w.is_physical), Decimal("0"))

    @staticmethod
    def total_logical_balance(wallets: Iterable[Wallet]) -> Decimal:
        return sum((w.balance for w in wallets if w.is_logical), Decimal("0"))

    def has_discrepancy(self, physical_total: Decimal, logical_total: Decimal) -> bool:
        return abs(physical_total - logical_total) > self.tolerance

    @staticmethod
    def discrepancy_amount(physical_total: Decimal, logical_total: Decimal) -> Decimal:
        """Positive if Physical > Logical, negative if Logical > Physical."""
        return physical_total - logical_total


class _Replay:
    """Working state of one oldest-first replay."""

    def __init__(self, wallets: Iterable[Wallet], tolerance: Decimal):
        self.wallets = {w.id: w for w in wallets}
        self.running = {w.id: w.initial_balance for w in self.wallets.values()}
        self.detector = BalanceDiscrepancyDetector(tolerance)
        self.snapshots: list[BalanceSnapshot] = []
        self.first_discrepancy_id: Optional[str] = None
        self.unknown_wallet_ids: list[str] = []
        self.invalid_transaction_ids: list[str] = []

    def totals(self) -> tuple[Decimal, Decimal]:
        physical = Decimal("0")
        logical = Decimal("0")
        for wallet_id, balance in self.running.items():
            if self.wallets[wallet_id].kind == WalletKind.PHYSICAL:
                physical += balance
            else:
                logical += balance
        return physical, logical

    def step(self, transaction: Transaction) -> None:
        def on_unknown(wallet_id: str) -> None:
            logger.warning(
                "unknown_wallet_reference",
                user_id=transaction.user_id,
                transaction_id=transaction.id,
                wallet_id=wallet_id,
            )
            if wallet_id not in self.unknown_wallet_ids:
                self.unknown_wallet_ids.append(wallet_id)

        try:
            deltas = compute_deltas(transaction, Direction.FORWARD, strict=False)
        except ValidationError as e:
            # A stored record with an unusable amount contributes nothing
            logger.warning(
                "unreplayable_transaction",
                user_id=transaction.user_id,
                transaction_id=transaction.id,
                error=str(e),
            )
            self.invalid_transaction_ids.append(transaction.id)
            deltas = []
        apply_deltas(self.running, deltas, on_unknown=on_unknown)

        physical, logical = self.totals()
        is_first = (
            self.first_discrepancy_id is None
            and self.detector.has_discrepancy(physical, logical)
        )
        if is_first:
            self.first_discrepancy_id = transaction.id

        self.snapshots.append(BalanceSnapshot(
            transaction=transaction,
            physical_total_after=physical,
            logical_total_after=logical,
            is_first_discrepancy=is_first,
        ))

    @classmethod
    def run(
        cls,
        transactions: Iterable[Transaction],
        wallets: Iterable[Wallet],
        tolerance: Optional[Decimal],
    ) -> "_Replay":
        replay = cls(wallets, _default_tolerance() if tolerance is None else tolerance)
        for transaction in sort_chronologically(transactions):
            replay.step(transaction)
        return replay


def find_first_discrepancy(
    transactions: Iterable[Transaction],
    wallets: Iterable[Wallet],
    tolerance: Optional[Decimal] = None,
) -> Optional[str]:
    """
    Id of the earliest transaction after which Physical != Logical.

    Returns None when the views agree after every transaction, including
    when there are no transactions at all.
    """
    return _Replay.run(transactions, wallets, tolerance).first_discrepancy_id


def running_balances(
    transactions: Iterable[Transaction],
    wallets: Iterable[Wallet],
    newest_first: bool = True,
    tolerance: Optional[Decimal] = None,
) -> list[BalanceSnapshot]:
    """
    Physical and Logical totals after every transaction.

    Always computed oldest first. Returned newest first by default, which
    is how history is displayed; pass `newest_first=False` for processing
    order.
    """
    snapshots = _Replay.run(transactions, wallets, tolerance).snapshots
    if newest_first:
        return list(reversed(snapshots))
    return snapshots


def build_report(
    user_id: str,
    transactions: Iterable[Transaction],
    wallets: Iterable[Wallet],
    tolerance: Optional[Decimal] = None,
) -> RunningBalanceReport:
    """
    Full replay report for one user.

    Besides the running totals, the report lists wallet ids referenced
    by transactions but missing from `wallets`, stored transactions whose
    amount cannot be replayed, and wallets whose stored balance no longer
    matches the replayed one.
    """
    wallets = list(wallets)
    tolerance = _default_tolerance() if tolerance is None else tolerance
    replay = _Replay.run(transactions, wallets, tolerance)

    physical, logical = replay.totals()
    detector = replay.detector

    drift = {}
    for wallet in wallets:
        difference = wallet.balance - replay.running[wallet.id]
        if abs(difference) > tolerance:
            drift[wallet.id] = difference

    if drift:
        logger.warning(
            "stored_balance_drift",
            user_id=user_id,
            wallets={wid: str(d) for wid, d in drift.items()},
        )

    return RunningBalanceReport(
        user_id=user_id,
        tolerance=tolerance,
        entries=list(reversed(replay.snapshots)),
        first_discrepancy_id=replay.first_discrepancy_id,
        physical_total=physical,
        logical_total=logical,
        stored_physical_total=detector.total_physical_balance(wallets),
        stored_logical_total=detector.total_logical_balance(wallets),
        unknown_wallet_ids=replay.unknown_wallet_ids,
        invalid_transaction_ids=replay.invalid_transaction_ids,
        balance_drift=drift,
    )
