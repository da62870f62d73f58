"""
Tests for Wallet Ledger models

Test strategy:
1. Unit tests for individual components (models, validators, mutator)
2. Flow tests through the LedgerService on in-memory stores
3. Property tests for the balance invariant (see test_conservation.py)
4. No real Google Sheets calls in tests
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from walletledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from walletledger.models.balance import BalanceDelta, BalanceSnapshot, RunningBalanceReport
from walletledger.models.transaction import (
    Transaction,
    TransactionDraft,
    TransactionType,
    ensure_utc,
)
from walletledger.models.validation import ValidationIssue
from walletledger.models.wallet import Wallet, WalletKind

from tests.helpers import BASE_DATE, USER, make_transaction, make_wallet


class TestWalletModel:
    """Tests for the Wallet model."""

    def test_wallet_creation(self):
        """Test Wallet model creation with defaults."""
        wallet = Wallet(user_id=USER, name="Cash", kind=WalletKind.PHYSICAL)
        assert wallet.balance == Decimal("0")
        assert wallet.initial_balance == Decimal("0")
        assert wallet.is_physical
        assert not wallet.is_logical
        assert wallet.id

    def test_wallet_strips_whitespace(self):
        """Test that whitespace is stripped from the wallet name."""
        wallet = Wallet(user_id=USER, name="  Food  ", kind=WalletKind.LOGICAL)
        assert wallet.name == "Food"

    def test_wallet_is_frozen(self):
        """Balances can only change by building a new record."""
        wallet = make_wallet("Cash", WalletKind.PHYSICAL)
        with pytest.raises(ValueError):
            wallet.balance = Decimal("10")

    def test_with_balance_returns_copy(self):
        """Test with_balance leaves the original untouched."""
        wallet = make_wallet("Cash", WalletKind.PHYSICAL, initial="100")
        updated = wallet.with_balance(Decimal("140"))
        assert wallet.balance == Decimal("100")
        assert updated.balance == Decimal("140")
        assert updated.id == wallet.id
        assert updated.initial_balance == Decimal("100")

    def test_transaction_balance_excludes_initial(self):
        wallet = make_wallet("Cash", WalletKind.PHYSICAL, initial="100").with_balance(Decimal("75"))
        assert wallet.transaction_balance == Decimal("-25")


class TestTransactionModel:
    """Tests for the Transaction and TransactionDraft models."""

    def test_transaction_rejects_zero_amount(self):
        """Test that zero amounts are rejected."""
        with pytest.raises(ValueError):
            make_transaction(TransactionType.INCOME, "0", ("p", "l"))

    def test_transaction_rejects_negative_amount(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(ValueError):
            make_transaction(TransactionType.EXPENSE, "-5", ("p", "l"))

    def test_naive_dates_are_utc(self):
        """Naive datetimes are read as UTC."""
        transaction = make_transaction(
            TransactionType.INCOME, "10", ("p", "l"), when=datetime(2024, 1, 5, 9, 30)
        )
        assert transaction.transaction_date.tzinfo == timezone.utc
        assert transaction.transaction_date.hour == 9

    def test_ensure_utc_keeps_aware_values(self):
        aware = datetime(2024, 1, 5, tzinfo=timezone.utc)
        assert ensure_utc(aware) is aware

    def test_effective_wallet_ids_falls_back_to_legacy_field(self):
        """Older records only carry wallet_id."""
        transaction = make_transaction(TransactionType.EXPENSE, "10", wallet_id="legacy")
        assert transaction.effective_wallet_ids == ("legacy",)
        assert transaction.referenced_wallet_ids == ("legacy",)

    def test_referenced_wallet_ids_for_transfer(self):
        transaction = make_transaction(
            TransactionType.TRANSFER, "10", source="a", destination="b"
        )
        assert transaction.referenced_wallet_ids == ("a", "b")

    def test_replay_key_orders_by_date_then_creation_then_id(self):
        """Test the replay ordering key."""
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        transaction = make_transaction(
            TransactionType.INCOME, "1", ("p", "l"), created_at=created, id="tx-1"
        )
        assert transaction.replay_key == (BASE_DATE, created, "tx-1")

    def test_draft_to_transaction_clears_foreign_fields(self):
        """A transfer draft leaves no income/expense wallet ids behind."""
        draft = TransactionDraft(
            type=TransactionType.TRANSFER,
            amount=Decimal("25"),
            affected_wallet_ids=("p", "l"),
            source_wallet_id="a",
            destination_wallet_id="b",
        )
        transaction = draft.to_transaction(USER)
        assert transaction.affected_wallet_ids == ()
        assert transaction.wallet_id == ""
        assert transaction.source_wallet_id == "a"
        assert transaction.destination_wallet_id == "b"

    def test_draft_to_transaction_keeps_identity_on_edit(self):
        created = datetime(2023, 12, 31, tzinfo=timezone.utc)
        draft = TransactionDraft(
            type=TransactionType.INCOME,
            amount=Decimal("25"),
            affected_wallet_ids=("p", "l"),
            source_wallet_id="ignored",
        )
        transaction = draft.to_transaction(USER, transaction_id="tx-9", created_at=created)
        assert transaction.id == "tx-9"
        assert transaction.created_at == created
        assert transaction.source_wallet_id == ""
        assert transaction.wallet_id == "p"

    def test_draft_from_transaction_round_trip(self):
        original = make_transaction(TransactionType.EXPENSE, "12.50", ("p", "l"), title="Lunch")
        draft = TransactionDraft.from_transaction(original)
        assert draft.amount == Decimal("12.50")
        assert draft.title == "Lunch"
        assert draft.affected_wallet_ids == ("p", "l")
        assert draft.transaction_date == original.transaction_date

    def test_draft_accepts_non_positive_amount(self):
        """Drafts stay loose; the validator rejects bad amounts."""
        draft = TransactionDraft(type=TransactionType.INCOME, amount=Decimal("-1"))
        assert draft.amount == Decimal("-1")


class TestBalanceModels:
    """Tests for balance value objects."""

    def test_delta_negated(self):
        delta = BalanceDelta(wallet_id="w", delta=Decimal("12.34"))
        assert delta.negated() == BalanceDelta(wallet_id="w", delta=Decimal("-12.34"))

    def test_snapshot_discrepancy_sign(self):
        """Positive when Physical is ahead."""
        snapshot = BalanceSnapshot(
            transaction=make_transaction(TransactionType.INCOME, "1", ("p",)),
            physical_total_after=Decimal("100"),
            logical_total_after=Decimal("70"),
        )
        assert snapshot.discrepancy == Decimal("30")

    def test_report_properties(self):
        """Test RunningBalanceReport derived values."""
        older = BalanceSnapshot(
            transaction=make_transaction(TransactionType.INCOME, "1", ("p", "l")),
            physical_total_after=Decimal("1"),
            logical_total_after=Decimal("1"),
        )
        newer = BalanceSnapshot(
            transaction=make_transaction(TransactionType.INCOME, "2", ("p",)),
            physical_total_after=Decimal("3"),
            logical_total_after=Decimal("1"),
            is_first_discrepancy=True,
        )
        report = RunningBalanceReport(
            user_id=USER,
            tolerance=Decimal("0.01"),
            entries=[newer, older],
            physical_total=Decimal("3"),
            logical_total=Decimal("1"),
        )
        assert report.transaction_count == 2
        assert report.current_discrepancy == Decimal("2")
        assert report.has_discrepancy
        assert not report.is_balanced
        assert report.oldest_first() == [older, newer]

    def test_report_within_tolerance_is_balanced(self):
        report = RunningBalanceReport(
            user_id=USER,
            tolerance=Decimal("0.01"),
            physical_total=Decimal("10.005"),
            logical_total=Decimal("10"),
        )
        assert report.is_balanced


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            description="Test event",
        )
        assert event.event_id is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test AuditEvent conversion to log dict."""
        correlation_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.WALLET_CREATED,
            description="Wallet created",
            correlation_id=correlation_id,
            user_id=USER,
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "wallet_created"
        assert log_dict["correlation_id"] == str(correlation_id)
        assert log_dict["user_id"] == USER

    def test_audit_event_to_sheets_row(self):
        """Test AuditEvent conversion to sheets row."""
        event = AuditEventBuilder.balance_changed(
            user_id=USER,
            transaction_id="tx-1",
            direction="reverse",
            deltas={"w": "-5"},
            correlation_id=uuid4(),
        )
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "balance_reversed"
        assert json.loads(row[9])["deltas"] == {"w": "-5"}

    def test_partial_mutation_severity(self):
        """Uncompensated failures are CRITICAL."""
        compensated = AuditEventBuilder.partial_mutation(
            USER, "tx-1", "persist", True, "boom", uuid4()
        )
        uncompensated = AuditEventBuilder.partial_mutation(
            USER, "tx-1", "persist", False, "boom", uuid4()
        )
        assert compensated.severity == AuditSeverity.ERROR
        assert uncompensated.severity == AuditSeverity.CRITICAL
        assert uncompensated.details == {"stage": "persist", "compensated": False}

    def test_discrepancy_audit_event_types(self):
        found = AuditEventBuilder.discrepancy_audit_completed(
            USER, 3, "tx-2", "100", "70", uuid4()
        )
        clean = AuditEventBuilder.discrepancy_audit_completed(
            USER, 3, None, "100", "100", uuid4()
        )
        assert found.event_type == AuditEventType.DISCREPANCY_DETECTED
        assert found.entity_id == "tx-2"
        assert clean.event_type == AuditEventType.DISCREPANCY_AUDIT_COMPLETED
        assert clean.entity_id == USER


class TestValidationIssue:
    """Tests for ValidationIssue."""

    def test_to_dict(self):
        issue = ValidationIssue(field="amount", issue_type="non_positive", message="bad")
        assert issue.to_dict() == {"field": "amount", "type": "non_positive", "message": "bad"}

    def test_rejects_unknown_severity(self):
        with pytest.raises(ValueError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")
