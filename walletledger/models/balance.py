"""
Balance Models

Value objects produced by the Balance Mutator and the Discrepancy Analyzer.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from walletledger.models.transaction import Transaction
from walletledger.models.wallet import utc_now


class Direction(str, Enum):
    """Apply a transaction's effect, or its exact negation."""
    FORWARD = "forward"
    REVERSE = "reverse"


class BalanceDelta(BaseModel):
    """A signed change to one wallet's balance."""
    model_config = ConfigDict(frozen=True)

    wallet_id: str
    delta: Decimal

    def negated(self) -> "BalanceDelta":
        return BalanceDelta(wallet_id=self.wallet_id, delta=-self.delta)


class BalanceSnapshot(BaseModel):
    """
    Aggregate totals right after one transaction was replayed.

    `is_first_discrepancy` is True for exactly one entry at most: the
    earliest transaction after which the two views diverged.
    """
    model_config = ConfigDict(frozen=True)

    transaction: Transaction
    physical_total_after: Decimal
    logical_total_after: Decimal
    is_first_discrepancy: bool = False

    @property
    def discrepancy(self) -> Decimal:
        """Positive if Physical > Logical, negative if Logical > Physical."""
        return self.physical_total_after - self.logical_total_after


class RunningBalanceReport(BaseModel):
    """
    Result of replaying a user's full history.

    IMPORTANT: `entries` are NEWEST FIRST for display. The replay itself
    always runs oldest first; use `oldest_first()` when asking
    "what changed first".
    """

    user_id: str
    generated_at: datetime = Field(default_factory=utc_now)
    tolerance: Decimal

    entries: list[BalanceSnapshot] = Field(default_factory=list)
    first_discrepancy_id: Optional[str] = None

    # Replayed totals after the last transaction
    physical_total: Decimal = Decimal("0")
    logical_total: Decimal = Decimal("0")

    # Totals of the balances currently held by the wallet store
    stored_physical_total: Decimal = Decimal("0")
    stored_logical_total: Decimal = Decimal("0")

    # Findings that are reported, never corrected
    unknown_wallet_ids: list[str] = Field(
        default_factory=list,
        description="Wallet ids referenced by transactions but not found"
    )
    invalid_transaction_ids: list[str] = Field(
        default_factory=list,
        description="Stored transactions whose amount could not be replayed"
    )
    balance_drift: dict[str, Decimal] = Field(
        default_factory=dict,
        description="wallet_id -> stored balance minus replayed balance"
    )

    @property
    def current_discrepancy(self) -> Decimal:
        return self.physical_total - self.logical_total

    @property
    def has_discrepancy(self) -> bool:
        return abs(self.current_discrepancy) > self.tolerance

    @property
    def is_balanced(self) -> bool:
        return not self.has_discrepancy

    @property
    def transaction_count(self) -> int:
        return len(self.entries)

    def oldest_first(self) -> list[BalanceSnapshot]:
        """Entries in processing (chronological) order."""
        return list(reversed(self.entries))
