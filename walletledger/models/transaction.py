"""
Transaction Models

A transaction moves money into, out of, or between wallets.

DESIGN DECISIONS:
1. The type set is CLOSED: income, expense, transfer. Every consumer
   (mutator, analyzer, summaries) dispatches over all three explicitly.
2. `amount` is always a positive magnitude. The sign of its effect on a
   wallet is derived from the type and the wallet's role, never stored.
3. `transaction_date` is what the user says happened. `created_at` is a
   system stamp used ONLY to break ties, never to order financial effect.
4. Stored transactions are frozen snapshots. Reversal replays the stored
   snapshot; it never diffs live state.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from walletledger.models.wallet import utc_now


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC so all stamps are comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TransactionType(str, Enum):
    """
    Supported transaction types.

    CRITICAL: Closed set. Adding a member means handling it in
    `compute_deltas` and in the summaries, or they will raise.
    """
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class Transaction(BaseModel):
    """
    A persisted transaction record.

    Income/Expense use `affected_wallet_ids` (normally one Physical and
    one Logical wallet). Older records may only carry the single
    `wallet_id`; `effective_wallet_ids` resolves both forms.

    Transfers use `source_wallet_id` and `destination_wallet_id`.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    # Identity
    id: str = Field(
        default_factory=lambda: uuid4().hex,
        min_length=1,
        description="Unique transaction ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of this transaction"
    )
    title: str = Field(
        default="",
        max_length=100,
        description="Short description shown in lists"
    )

    # Financial effect
    type: TransactionType
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive magnitude; direction comes from type"
    )
    affected_wallet_ids: tuple[str, ...] = Field(
        default=(),
        description="Wallets touched by an income/expense"
    )
    wallet_id: str = Field(
        default="",
        description="Legacy single-wallet form for income/expense"
    )
    source_wallet_id: str = Field(
        default="",
        description="Transfer source"
    )
    destination_wallet_id: str = Field(
        default="",
        description="Transfer destination"
    )

    # Time
    transaction_date: datetime = Field(
        ...,
        description="User-asserted effective date"
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="System stamp, immutable, tie-breaker only"
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        description="Refreshed on every mutation"
    )

    @field_validator('transaction_date', 'created_at', 'updated_at')
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def effective_wallet_ids(self) -> tuple[str, ...]:
        """Income/expense wallets, falling back to the legacy single id."""
        if self.affected_wallet_ids:
            return self.affected_wallet_ids
        if self.wallet_id:
            return (self.wallet_id,)
        return ()

    @property
    def referenced_wallet_ids(self) -> tuple[str, ...]:
        """Every wallet id this transaction touches, in delta order."""
        if self.type == TransactionType.TRANSFER:
            return tuple(
                wid for wid in (self.source_wallet_id, self.destination_wallet_id)
                if wid
            )
        return self.effective_wallet_ids

    @property
    def replay_key(self) -> tuple[datetime, datetime, str]:
        """Chronological ordering: effective date, then creation, then id."""
        return (self.transaction_date, self.created_at, self.id)


class TransactionDraft(BaseModel):
    """
    Caller input for creating or editing a transaction.

    Drafts are deliberately loose: amount sign and wallet shape are
    checked by the TransactionValidator so callers get a typed ledger
    error instead of a schema error.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    amount: Decimal = Field(
        ...,
        description="Must be > 0; checked by the validator"
    )
    title: str = Field(default="", max_length=100)
    affected_wallet_ids: tuple[str, ...] = Field(default=())
    wallet_id: str = Field(default="")
    source_wallet_id: str = Field(default="")
    destination_wallet_id: str = Field(default="")
    transaction_date: datetime = Field(default_factory=utc_now)

    @field_validator('transaction_date')
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def effective_wallet_ids(self) -> tuple[str, ...]:
        if self.affected_wallet_ids:
            return self.affected_wallet_ids
        if self.wallet_id:
            return (self.wallet_id,)
        return ()

    def to_transaction(
        self,
        user_id: str,
        transaction_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Transaction:
        """
        Build a transaction record from this draft.

        Fields that do not belong to the draft's type are cleared, so an
        edit that turns an expense into a transfer leaves no stale wallet
        ids behind.
        """
        is_transfer = self.type == TransactionType.TRANSFER
        now = utc_now()
        return Transaction(
            id=transaction_id or uuid4().hex,
            user_id=user_id,
            title=self.title,
            type=self.type,
            amount=self.amount,
            affected_wallet_ids=() if is_transfer else self.effective_wallet_ids,
            wallet_id="" if is_transfer else (self.effective_wallet_ids or ("",))[0],
            source_wallet_id=self.source_wallet_id if is_transfer else "",
            destination_wallet_id=self.destination_wallet_id if is_transfer else "",
            transaction_date=self.transaction_date,
            created_at=created_at or now,
            updated_at=now,
        )

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionDraft":
        """Start an edit from an existing record."""
        return cls(
            type=transaction.type,
            amount=transaction.amount,
            title=transaction.title,
            affected_wallet_ids=transaction.affected_wallet_ids,
            wallet_id=transaction.wallet_id,
            source_wallet_id=transaction.source_wallet_id,
            destination_wallet_id=transaction.destination_wallet_id,
            transaction_date=transaction.transaction_date,
        )
