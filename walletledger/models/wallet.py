"""
Wallet Model

A wallet is one bucket of money in one of two parallel views:
- PHYSICAL: a real-world account or asset (bank account, cash, broker)
- LOGICAL: a virtual budget allocation over the same funds

CRITICAL: The sum of Physical balances must equal the sum of Logical
balances for a user whenever no operation is in flight.

DESIGN DECISION: Wallet records are immutable snapshots. The only path
that changes `balance` is the Balance Mutator, which writes a new value
through the wallet store. Nothing else (UI, storage callbacks) may touch it.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class WalletKind(str, Enum):
    """
    Which of the two views a wallet belongs to.

    Closed set: the balance invariant is defined over exactly these two.
    """
    PHYSICAL = "physical"
    LOGICAL = "logical"


class Wallet(BaseModel):
    """
    A wallet record as held by the wallet store.

    `initial_balance` is fixed at creation and excluded from
    transaction-driven analytics (see `transaction_balance`).
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    # Identity
    id: str = Field(
        default_factory=lambda: uuid4().hex,
        min_length=1,
        description="Unique wallet ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of this wallet"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Display name (unique per user)"
    )
    kind: WalletKind = Field(
        ...,
        description="Physical or Logical view"
    )

    # Balances
    initial_balance: Decimal = Field(
        default=Decimal("0"),
        description="Balance the wallet was opened with"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Current balance = initial + all applied deltas"
    )

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_physical(self) -> bool:
        return self.kind == WalletKind.PHYSICAL

    @property
    def is_logical(self) -> bool:
        return self.kind == WalletKind.LOGICAL

    @property
    def transaction_balance(self) -> Decimal:
        """Net change from transactions only (balance minus initial balance)."""
        return self.balance - self.initial_balance

    def with_balance(self, new_balance: Decimal) -> "Wallet":
        """Return a copy carrying a new balance and a fresh update stamp."""
        return self.model_copy(
            update={"balance": new_balance, "updated_at": utc_now()}
        )
