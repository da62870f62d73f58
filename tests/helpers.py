"""
Test helpers: sample records, draft builders and failure-injecting stores.

The engine is async, so tests drive it through `run`, which gives every
call its own event loop. Scenarios that need two operations to overlap
must stay inside ONE `run(...)` call.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from walletledger.models.transaction import Transaction, TransactionDraft, TransactionType
from walletledger.models.wallet import Wallet, WalletKind
from walletledger.services.storage import (
    InMemoryTransactionStorage,
    InMemoryWalletStorage,
    StorageError,
)


USER = "user-1"
OTHER_USER = "user-2"
BASE_DATE = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


def day(n: int) -> datetime:
    """BASE_DATE shifted by n days."""
    return BASE_DATE + timedelta(days=n)


def make_wallet(
    name: str,
    kind: WalletKind,
    initial: str = "0",
    user_id: str = USER,
    wallet_id: str = "",
) -> Wallet:
    initial_balance = Decimal(initial)
    fields = dict(
        user_id=user_id,
        name=name,
        kind=kind,
        initial_balance=initial_balance,
        balance=initial_balance,
    )
    if wallet_id:
        fields["id"] = wallet_id
    return Wallet(**fields)


def make_transaction(
    type: TransactionType,
    amount: str,
    wallets: tuple[str, ...] = (),
    source: str = "",
    destination: str = "",
    when: datetime = BASE_DATE,
    user_id: str = USER,
    **extra,
) -> Transaction:
    return Transaction(
        user_id=user_id,
        type=type,
        amount=Decimal(amount),
        affected_wallet_ids=wallets,
        source_wallet_id=source,
        destination_wallet_id=destination,
        transaction_date=when,
        **extra,
    )


def income(amount: str, *wallets: str, when: datetime = BASE_DATE) -> TransactionDraft:
    return TransactionDraft(
        type=TransactionType.INCOME,
        amount=Decimal(amount),
        title="Salary",
        affected_wallet_ids=wallets,
        transaction_date=when,
    )


def expense(amount: str, *wallets: str, when: datetime = BASE_DATE) -> TransactionDraft:
    return TransactionDraft(
        type=TransactionType.EXPENSE,
        amount=Decimal(amount),
        title="Groceries",
        affected_wallet_ids=wallets,
        transaction_date=when,
    )


def transfer(amount: str, source: str, destination: str, when: datetime = BASE_DATE) -> TransactionDraft:
    return TransactionDraft(
        type=TransactionType.TRANSFER,
        amount=Decimal(amount),
        title="Move money",
        source_wallet_id=source,
        destination_wallet_id=destination,
        transaction_date=when,
    )


# =============================================================================
# Failure injection
# =============================================================================

class FlakyWalletStorage(InMemoryWalletStorage):
    """
    Wallet store whose balance writes can be made to fail.

    `update_calls` counts every update_balance call. Use `fail_after`
    to fail the n-th upcoming write(s), counted from now. With
    `land_failures` set, a failing write still changes the balance before
    it raises, like a backend that errors after the cell was written.
    """

    def __init__(self, wallets=None):
        super().__init__(wallets)
        self.update_calls = 0
        self.fail_on: set[int] = set()
        self.delay = 0.0
        self.land_failures = False

    def fail_after(self, *offsets: int) -> None:
        self.fail_on = {self.update_calls + offset for offset in offsets}

    async def update_balance(self, wallet_id, new_balance):
        self.update_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.update_calls in self.fail_on:
            if self.land_failures:
                await super().update_balance(wallet_id, new_balance)
            raise StorageError(f"injected failure on write {self.update_calls}")
        return await super().update_balance(wallet_id, new_balance)


class FailingTransactionStorage(InMemoryTransactionStorage):
    """Transaction store whose writes fail on demand."""

    def __init__(self, transactions=None):
        super().__init__(transactions)
        self.fail_create = False
        self.fail_update = False
        self.fail_delete = False
        self.delete_returns_false = False

    async def create_transaction(self, transaction):
        if self.fail_create:
            raise StorageError("injected create failure")
        return await super().create_transaction(transaction)

    async def update_transaction(self, transaction):
        if self.fail_update:
            raise StorageError("injected update failure")
        return await super().update_transaction(transaction)

    async def delete_transaction(self, transaction_id):
        if self.fail_delete:
            raise StorageError("injected delete failure")
        if self.delete_returns_false:
            return False
        return await super().delete_transaction(transaction_id)




def balances(service, user_id: str = USER) -> dict[str, Decimal]:
    """Current stored balance per wallet name."""
    return {w.name: w.balance for w in run(service.list_wallets(user_id))}
