"""
Wallet Summaries

Read-only analytics over a user's transactions, from the point of view
of ONE wallet:
- period summary (income, expenses, transfers in/out, counts)
- daily and monthly grouping by transaction_date
- balances reconstructed as of a past date

All figures come from the same delta function the mutator applies, so a
summary can never disagree with what was written to the wallet store.
Initial balances are excluded from income and expenses.
"""

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from walletledger.ledger.errors import ValidationError
from walletledger.ledger.mutator import apply_deltas, compute_deltas
from walletledger.models.balance import BalanceDelta, Direction
from walletledger.models.transaction import Transaction, TransactionType, ensure_utc
from walletledger.models.wallet import Wallet


ZERO = Decimal("0")


class TransferDirection(str, Enum):
    """Direction of a transfer relative to one wallet."""
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class PeriodSummary(BaseModel):
    """Totals for one wallet over a set of transactions."""
    model_config = ConfigDict(frozen=True)

    wallet_id: str
    income: Decimal = Field(default=ZERO, description="Income plus incoming transfers")
    expenses: Decimal = Field(default=ZERO, description="Expenses plus outgoing transfers")
    transfers_in: Decimal = ZERO
    transfers_out: Decimal = ZERO
    transaction_count: int = 0
    income_transaction_count: int = 0
    expense_transaction_count: int = 0
    incoming_transfer_count: int = 0
    outgoing_transfer_count: int = 0

    @property
    def net_change(self) -> Decimal:
        return self.income - self.expenses


class DailySummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: date
    transaction_count: int
    net_amount: Decimal


def transfer_direction(
    transaction: Transaction,
    wallet_id: str,
) -> Optional[TransferDirection]:
    """None if the transaction is not a transfer touching this wallet."""
    if transaction.type != TransactionType.TRANSFER:
        return None
    if transaction.source_wallet_id == wallet_id:
        return TransferDirection.OUTGOING
    if transaction.destination_wallet_id == wallet_id:
        return TransferDirection.INCOMING
    return None


def effective_amount(transaction: Transaction, wallet_id: str) -> Decimal:
    """
    Signed effect of a transaction on one wallet.

    Positive when the wallet's balance goes up, negative when it goes
    down, zero when the wallet is not involved.
    """
    deltas = _forward_deltas(transaction)
    return sum((d.delta for d in deltas if d.wallet_id == wallet_id), ZERO)


def _forward_deltas(transaction: Transaction) -> list[BalanceDelta]:
    # Stored records with an unusable amount have no effect on history
    try:
        return compute_deltas(transaction, Direction.FORWARD, strict=False)
    except ValidationError:
        return []


def _touches(transaction: Transaction, wallet_id: str) -> bool:
    return (
        wallet_id in transaction.referenced_wallet_ids
        and bool(_forward_deltas(transaction))
    )


def calculate_period_summary(
    transactions: Iterable[Transaction],
    wallet_id: str,
) -> PeriodSummary:
    """Summarize the transactions that touch `wallet_id`."""
    totals = defaultdict(lambda: ZERO)
    counts = defaultdict(int)

    for transaction in transactions:
        if not _touches(transaction, wallet_id):
            continue
        counts["all"] += 1
        amount = transaction.amount

        if transaction.type == TransactionType.INCOME:
            totals["income"] += amount
            counts["income"] += 1
        elif transaction.type == TransactionType.EXPENSE:
            totals["expenses"] += amount
            counts["expense"] += 1
        elif transaction.type == TransactionType.TRANSFER:
            direction = transfer_direction(transaction, wallet_id)
            if direction == TransferDirection.INCOMING:
                totals["transfers_in"] += amount
                counts["transfer_in"] += 1
            elif direction == TransferDirection.OUTGOING:
                totals["transfers_out"] += amount
                counts["transfer_out"] += 1
        else:
            raise ValueError(f"Unhandled transaction type: {transaction.type}")

    return PeriodSummary(
        wallet_id=wallet_id,
        income=totals["income"] + totals["transfers_in"],
        expenses=totals["expenses"] + totals["transfers_out"],
        transfers_in=totals["transfers_in"],
        transfers_out=totals["transfers_out"],
        transaction_count=counts["all"],
        income_transaction_count=counts["income"],
        expense_transaction_count=counts["expense"],
        incoming_transfer_count=counts["transfer_in"],
        outgoing_transfer_count=counts["transfer_out"],
    )


def daily_summaries(
    transactions: Iterable[Transaction],
    wallet_id: str,
) -> list[DailySummary]:
    """Per-day count and net amount for one wallet, oldest day first."""
    by_day: dict[date, list[Transaction]] = defaultdict(list)
    for transaction in transactions:
        if _touches(transaction, wallet_id):
            by_day[transaction.transaction_date.date()].append(transaction)

    return [
        DailySummary(
            day=day,
            transaction_count=len(items),
            net_amount=sum((effective_amount(t, wallet_id) for t in items), ZERO),
        )
        for day, items in sorted(by_day.items())
    ]


def monthly_summaries(
    transactions: Iterable[Transaction],
    wallet_id: str,
) -> dict[tuple[int, int], PeriodSummary]:
    """
    One PeriodSummary per (year, month) of transaction_date.

    Months without activity for the wallet are absent. Keys are in
    ascending order.
    """
    by_month: dict[tuple[int, int], list[Transaction]] = defaultdict(list)
    for transaction in transactions:
        if _touches(transaction, wallet_id):
            when = transaction.transaction_date
            by_month[(when.year, when.month)].append(transaction)

    return {
        month: calculate_period_summary(items, wallet_id)
        for month, items in sorted(by_month.items())
    }


def reconstruct_balances_at(
    transactions: Iterable[Transaction],
    wallets: Iterable[Wallet],
    end_date: datetime,
) -> dict[str, Decimal]:
    """
    Wallet balances as they were at `end_date` (inclusive).

    Replays every transaction dated on or before `end_date` over the
    initial balances. References to unknown wallets are ignored.
    """
    end_date = ensure_utc(end_date)
    running = {w.id: w.initial_balance for w in wallets}
    for transaction in transactions:
        if transaction.transaction_date <= end_date:
            apply_deltas(running, _forward_deltas(transaction))
    return running
