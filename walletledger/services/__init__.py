"""Services package."""

from walletledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStorage,
    GoogleSheetsWalletStorage,
    InMemoryAuditStorage,
    InMemoryTransactionStorage,
    InMemoryWalletStorage,
    NotFoundError,
    StorageError,
    TransactionStorageInterface,
    WalletStorageInterface,
)

__all__ = [
    # Storage interfaces
    "AuditStorageInterface",
    "TransactionStorageInterface",
    "WalletStorageInterface",
    # Storage exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Storage backends
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTransactionStorage",
    "GoogleSheetsWalletStorage",
    "InMemoryAuditStorage",
    "InMemoryTransactionStorage",
    "InMemoryWalletStorage",
]
