"""
conftest.py - Shared pytest fixtures for Wallet Ledger tests

Provides:
- Explicit ledger settings (independent of the environment)
- In-memory stores that can be told to fail
- A LedgerService wired to them, with a standard set of wallets
"""

from decimal import Decimal

import pytest

from walletledger.audit import AuditLogger
from walletledger.config import LedgerSettings
from walletledger.models.wallet import WalletKind
from walletledger.orchestrator import LedgerService
from walletledger.services.storage import InMemoryAuditStorage

from tests.helpers import (
    USER,
    FailingTransactionStorage,
    FlakyWalletStorage,
    run,
)


@pytest.fixture
def ledger_settings():
    """Explicit settings so the environment cannot change test behaviour."""
    return LedgerSettings(
        discrepancy_tolerance=Decimal("0.01"),
        enforce_dual_wallet_shape=True,
        lock_timeout_seconds=1.0,
    )


@pytest.fixture
def wallet_storage():
    return FlakyWalletStorage()


@pytest.fixture
def transaction_storage():
    return FailingTransactionStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def service(wallet_storage, transaction_storage, audit_storage, ledger_settings):
    return LedgerService(
        wallet_storage=wallet_storage,
        transaction_storage=transaction_storage,
        audit_logger=AuditLogger(audit_storage),
        settings=ledger_settings,
    )


@pytest.fixture
def wallets(service):
    """
    Two Physical and two Logical wallets of USER, all starting at 0.

    Keys: P (Cash), P2 (Bank), L (Food), L2 (Rent).
    """
    async def setup():
        return {
            "P": await service.create_wallet(USER, "Cash", WalletKind.PHYSICAL),
            "P2": await service.create_wallet(USER, "Bank", WalletKind.PHYSICAL),
            "L": await service.create_wallet(USER, "Food", WalletKind.LOGICAL),
            "L2": await service.create_wallet(USER, "Rent", WalletKind.LOGICAL),
        }
    return run(setup())


@pytest.fixture
def ids(wallets):
    """Wallet ids by key."""
    return {key: wallet.id for key, wallet in wallets.items()}
