"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the persistent backend because:
1. Users can inspect wallets and transactions directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No multi-row transactions (the engine serializes operations per user
  and compensates on failure instead)
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interfaces, so we can swap
to PostgreSQL/SQLite later without changing the ledger engine.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from walletledger.config import get_settings
from walletledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from walletledger.models.transaction import Transaction, TransactionType, ensure_utc
from walletledger.models.wallet import Wallet, WalletKind, utc_now
from walletledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    StorageError,
    TransactionStorageInterface,
    WalletStorageInterface,
)


logger = structlog.get_logger(__name__)


# Column mappings for Wallets sheet
WALLET_COLUMNS = [
    "id",
    "user_id",
    "name",
    "kind",
    "initial_balance",
    "balance",
    "created_at",
    "updated_at",
]

# Column mappings for Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "user_id",
    "title",
    "type",
    "amount",
    "affected_wallet_ids_json",
    "wallet_id",
    "source_wallet_id",
    "destination_wallet_id",
    "transaction_date",
    "created_at",
    "updated_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# 1-based column positions of the balance update range
_BALANCE_COL = WALLET_COLUMNS.index("balance") + 1
_WALLET_UPDATED_COL = WALLET_COLUMNS.index("updated_at") + 1


def _safe_getter(row: list):
    """Index into a sheet row, tolerating short rows and blank cells."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


def _row_range(row: int, first_col: int, last_col: int) -> str:
    """A1 range covering columns first_col..last_col of one row."""
    return f"{rowcol_to_a1(row, first_col)}:{rowcol_to_a1(row, last_col)}"


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_wallets_sheet(self) -> gspread.Worksheet:
        """Get or create the Wallets worksheet."""
        return self._get_or_create_sheet(
            self._settings.wallets_sheet_name, WALLET_COLUMNS, rows=200
        )

    def get_transactions_sheet(self) -> gspread.Worksheet:
        """Get or create the Transactions worksheet."""
        return self._get_or_create_sheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsWalletStorage(WalletStorageInterface):
    """
    Google Sheets implementation of wallet storage.

    One wallet per row. Balances are stored as decimal strings so no
    precision is lost to spreadsheet number formatting.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _wallet_to_row(self, wallet: Wallet) -> list:
        """Convert a Wallet to a spreadsheet row."""
        return [
            wallet.id,
            wallet.user_id,
            wallet.name,
            wallet.kind.value,
            str(wallet.initial_balance),
            str(wallet.balance),
            wallet.created_at.isoformat(),
            wallet.updated_at.isoformat(),
        ]

    def _row_to_wallet(self, row: list) -> Wallet:
        """Convert a spreadsheet row to a Wallet."""
        safe_get = _safe_getter(row)
        return Wallet(
            id=safe_get(0),
            user_id=safe_get(1),
            name=safe_get(2),
            kind=WalletKind(safe_get(3).lower()),
            initial_balance=Decimal(safe_get(4, "0")),
            balance=Decimal(safe_get(5, "0")),
            created_at=datetime.fromisoformat(safe_get(6)),
            updated_at=datetime.fromisoformat(safe_get(7)),
        )

    async def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        """Retrieve a wallet by its ID."""
        try:
            sheet = self._client.get_wallets_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == wallet_id:
                    return self._row_to_wallet(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get wallet: {e}")

    async def get_wallets_by_user(self, user_id: str) -> list[Wallet]:
        """List all wallets of a user."""
        try:
            sheet = self._client.get_wallets_sheet()
            return [
                self._row_to_wallet(row)
                for row in sheet.get_all_values()[1:]
                if row and len(row) > 1 and row[1] == user_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to list wallets: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
        reraise=True,
    )
    async def save_wallet(self, wallet: Wallet) -> bool:
        """Append a new wallet row."""
        existing = await self.get_wallets_by_user(wallet.user_id)
        for other in existing:
            if other.id == wallet.id or other.name.lower() == wallet.name.lower():
                raise DuplicateError(f"Wallet already exists: {wallet.name}")
        try:
            sheet = self._client.get_wallets_sheet()
            sheet.append_row(self._wallet_to_row(wallet), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save wallet: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
        reraise=True,
    )
    async def update_balance(self, wallet_id: str, new_balance: Decimal) -> bool:
        """Overwrite the balance cell of a wallet row."""
        try:
            sheet = self._client.get_wallets_sheet()
            all_rows = sheet.get_all_values()

            # Start from 2 (row 1 is header)
            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == wallet_id:
                    cells = list(row) + [""] * (len(WALLET_COLUMNS) - len(row))
                    cells[_BALANCE_COL - 1] = str(new_balance)
                    cells[_WALLET_UPDATED_COL - 1] = utc_now().isoformat()
                    # Balance and stamp go out in one range write
                    sheet.update(
                        range_name=_row_range(idx, _BALANCE_COL, _WALLET_UPDATED_COL),
                        values=[cells[_BALANCE_COL - 1:_WALLET_UPDATED_COL]],
                        value_input_option="RAW",
                    )
                    return True

            raise NotFoundError(f"Wallet not found: {wallet_id}")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update wallet balance: {e}")


class GoogleSheetsTransactionStorage(TransactionStorageInterface):
    """
    Google Sheets implementation of transaction storage.

    One transaction per row; the affected wallet ids are JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _transaction_to_row(self, transaction: Transaction) -> list:
        """Convert a Transaction to a spreadsheet row."""
        return [
            transaction.id,
            transaction.user_id,
            transaction.title,
            transaction.type.value,
            str(transaction.amount),
            json.dumps(list(transaction.affected_wallet_ids)),
            transaction.wallet_id,
            transaction.source_wallet_id,
            transaction.destination_wallet_id,
            transaction.transaction_date.isoformat(),
            transaction.created_at.isoformat(),
            transaction.updated_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        """Convert a spreadsheet row to a Transaction."""
        safe_get = _safe_getter(row)

        created_at = datetime.fromisoformat(safe_get(10))
        # Older rows have no user-asserted date; they sort by creation.
        transaction_date = (
            datetime.fromisoformat(safe_get(9)) if safe_get(9) else created_at
        )
        affected = safe_get(5)

        fields = dict(
            id=safe_get(0),
            user_id=safe_get(1),
            title=safe_get(2),
            type=TransactionType(safe_get(3).lower()),
            # Legacy rows stored expenses as negative numbers.
            amount=abs(Decimal(safe_get(4))),
            affected_wallet_ids=tuple(json.loads(affected)) if affected else (),
            wallet_id=safe_get(6),
            source_wallet_id=safe_get(7),
            destination_wallet_id=safe_get(8),
            transaction_date=transaction_date,
            created_at=created_at,
            updated_at=datetime.fromisoformat(safe_get(11, safe_get(10))),
        )
        try:
            return Transaction(**fields)
        except ValidationError as e:
            # Returned unvalidated; the replay reports it as invalid
            logger.warning(
                "invalid_transaction_row",
                transaction_id=fields["id"],
                error=str(e),
            )
            for name in ("transaction_date", "created_at", "updated_at"):
                fields[name] = ensure_utc(fields[name])
            return Transaction.model_construct(**fields)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Retrieve a transaction by its ID."""
        try:
            sheet = self._client.get_transactions_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == transaction_id:
                    return self._row_to_transaction(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def get_transactions_by_user(self, user_id: str) -> list[Transaction]:
        """List all transactions of a user."""
        try:
            sheet = self._client.get_transactions_sheet()
            return [
                self._row_to_transaction(row)
                for row in sheet.get_all_values()[1:]
                if row and len(row) > 1 and row[1] == user_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def create_transaction(self, transaction: Transaction) -> bool:
        """Append a new transaction row."""
        try:
            sheet = self._client.get_transactions_sheet()
            row = self._transaction_to_row(transaction)
            sheet.append_row(row, value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    async def update_transaction(self, transaction: Transaction) -> bool:
        """Rewrite an existing transaction row in place."""
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()

            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == transaction.id:
                    new_row = self._transaction_to_row(transaction)
                    # Whole row in one call; a failure leaves the old row intact
                    sheet.update(
                        range_name=_row_range(idx, 1, len(new_row)),
                        values=[new_row],
                        value_input_option="RAW",
                    )
                    return True

            raise NotFoundError(f"Transaction not found: {transaction.id}")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

    async def delete_transaction(self, transaction_id: str) -> bool:
        """Delete a transaction row by ID."""
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()

            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == transaction_id:
                    sheet.delete_rows(idx)
                    return True

            return False
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            user_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _load_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if row and row[0]:
                events.append(self._row_to_event(row))
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [
                e for e in self._load_events() if e.correlation_id == correlation_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = [
                e for e in self._load_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._load_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
