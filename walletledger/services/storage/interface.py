"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the ledger engine decoupled from storage implementation

The interface is intentionally narrow - the engine only needs to
read/write single records and list everything a user owns.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from walletledger.models.audit import AuditEvent
from walletledger.models.transaction import Transaction
from walletledger.models.wallet import Wallet


class WalletStorageInterface(ABC):
    """
    Abstract interface for wallet storage operations.

    CRITICAL: `update_balance` is called only by the Balance Mutator.
    """

    @abstractmethod
    async def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        """
        Retrieve a wallet by its ID.

        Returns:
            The wallet if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_wallets_by_user(self, user_id: str) -> list[Wallet]:
        """
        List every wallet owned by a user (Physical and Logical mixed).
        """
        pass

    @abstractmethod
    async def save_wallet(self, wallet: Wallet) -> bool:
        """
        Persist a newly created wallet.

        Raises:
            DuplicateError: If the id, or the name for this user, is taken
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def update_balance(self, wallet_id: str, new_balance: Decimal) -> bool:
        """
        Overwrite a wallet's current balance.

        Raises:
            NotFoundError: If wallet doesn't exist
            StorageError: If the write fails
        """
        pass


class TransactionStorageInterface(ABC):
    """
    Abstract interface for transaction storage operations.

    Transactions come back as an unordered collection; ordering is the
    analyzer's job, not the store's.
    """

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """
        Retrieve a transaction by its ID.

        Returns:
            The transaction if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_transactions_by_user(self, user_id: str) -> list[Transaction]:
        """List every transaction owned by a user, in no particular order."""
        pass

    @abstractmethod
    async def create_transaction(self, transaction: Transaction) -> bool:
        """
        Persist a new transaction record.

        Raises:
            DuplicateError: If the id is taken
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> bool:
        """
        Replace an existing transaction record.

        Raises:
            NotFoundError: If transaction doesn't exist
            StorageError: If update fails
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        """
        Delete a transaction by ID.

        Returns:
            True if a record was removed, False if none existed
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one edit operation).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
