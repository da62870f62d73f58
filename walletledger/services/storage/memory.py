"""
In-Memory Storage Implementation

Used by the test-suite and as the default backend for local runs.
Records are frozen pydantic models, so handing them out directly is safe.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from walletledger.models.audit import AuditEvent
from walletledger.models.transaction import Transaction
from walletledger.models.wallet import Wallet
from walletledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
    TransactionStorageInterface,
    WalletStorageInterface,
)


class InMemoryWalletStorage(WalletStorageInterface):
    """Wallets kept in a dict keyed by wallet id."""

    def __init__(self, wallets: Optional[list[Wallet]] = None):
        self._wallets: dict[str, Wallet] = {}
        for wallet in wallets or []:
            self._wallets[wallet.id] = wallet

    async def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        return self._wallets.get(wallet_id)

    async def get_wallets_by_user(self, user_id: str) -> list[Wallet]:
        return [w for w in self._wallets.values() if w.user_id == user_id]

    async def save_wallet(self, wallet: Wallet) -> bool:
        if wallet.id in self._wallets:
            raise DuplicateError(f"Wallet already exists: {wallet.id}")
        for existing in self._wallets.values():
            if (
                existing.user_id == wallet.user_id
                and existing.name.lower() == wallet.name.lower()
            ):
                raise DuplicateError(f"Wallet name already in use: {wallet.name}")
        self._wallets[wallet.id] = wallet
        return True

    async def update_balance(self, wallet_id: str, new_balance: Decimal) -> bool:
        wallet = self._wallets.get(wallet_id)
        if wallet is None:
            raise NotFoundError(f"Wallet not found: {wallet_id}")
        self._wallets[wallet_id] = wallet.with_balance(new_balance)
        return True


class InMemoryTransactionStorage(TransactionStorageInterface):
    """Transactions kept in a dict keyed by transaction id."""

    def __init__(self, transactions: Optional[list[Transaction]] = None):
        self._transactions: dict[str, Transaction] = {}
        for transaction in transactions or []:
            self._transactions[transaction.id] = transaction

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self._transactions.get(transaction_id)

    async def get_transactions_by_user(self, user_id: str) -> list[Transaction]:
        return [t for t in self._transactions.values() if t.user_id == user_id]

    async def create_transaction(self, transaction: Transaction) -> bool:
        if transaction.id in self._transactions:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self._transactions[transaction.id] = transaction
        return True

    async def update_transaction(self, transaction: Transaction) -> bool:
        if transaction.id not in self._transactions:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        self._transactions[transaction.id] = transaction
        return True

    async def delete_transaction(self, transaction_id: str) -> bool:
        return self._transactions.pop(transaction_id, None) is not None


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
