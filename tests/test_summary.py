"""
Tests for per-wallet summaries and historical balances.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from walletledger.ledger.errors import WalletNotFoundError
from walletledger.ledger.summary import (
    TransferDirection,
    calculate_period_summary,
    daily_summaries,
    effective_amount,
    monthly_summaries,
    reconstruct_balances_at,
    transfer_direction,
)
from walletledger.models.transaction import Transaction, TransactionType
from walletledger.models.wallet import WalletKind

from tests.helpers import (
    OTHER_USER,
    USER,
    day,
    expense,
    income,
    make_transaction,
    make_wallet,
    run,
    transfer,
)


def at(year, month, dayno):
    return datetime(year, month, dayno, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def history():
    """Cash account history across two months."""
    return [
        make_transaction(TransactionType.INCOME, "1000", ("cash", "budget"), when=at(2024, 1, 3)),
        make_transaction(TransactionType.EXPENSE, "200", ("cash", "food"), when=at(2024, 1, 3)),
        make_transaction(TransactionType.TRANSFER, "300", source="cash", destination="bank", when=at(2024, 1, 20)),
        make_transaction(TransactionType.TRANSFER, "50", source="bank", destination="cash", when=at(2024, 2, 2)),
        make_transaction(TransactionType.EXPENSE, "75", ("bank", "food"), when=at(2024, 2, 9)),
    ]


class TestWalletEffects:
    """Signed effect of one transaction on one wallet."""

    def test_transfer_direction(self, history):
        outgoing, incoming = history[2], history[3]
        assert transfer_direction(outgoing, "cash") == TransferDirection.OUTGOING
        assert transfer_direction(incoming, "cash") == TransferDirection.INCOMING
        assert transfer_direction(outgoing, "food") is None
        assert transfer_direction(history[0], "cash") is None

    def test_effective_amount(self, history):
        assert effective_amount(history[0], "cash") == Decimal("1000")
        assert effective_amount(history[1], "cash") == Decimal("-200")
        assert effective_amount(history[2], "cash") == Decimal("-300")
        assert effective_amount(history[2], "bank") == Decimal("300")
        assert effective_amount(history[4], "cash") == Decimal("0")


class TestPeriodSummary:
    """Tests for calculate_period_summary."""

    def test_cash_summary(self, history):
        summary = calculate_period_summary(history, "cash")
        assert summary.income == Decimal("1050")
        assert summary.expenses == Decimal("500")
        assert summary.transfers_in == Decimal("50")
        assert summary.transfers_out == Decimal("300")
        assert summary.net_change == Decimal("550")
        assert summary.transaction_count == 4
        assert summary.income_transaction_count == 1
        assert summary.expense_transaction_count == 1
        assert summary.incoming_transfer_count == 1
        assert summary.outgoing_transfer_count == 1

    def test_net_change_matches_effects(self, history):
        for wallet_id in ("cash", "bank", "food", "budget"):
            summary = calculate_period_summary(history, wallet_id)
            assert summary.net_change == sum(
                (effective_amount(t, wallet_id) for t in history), Decimal("0")
            )

    def test_unusable_record_is_skipped(self, history):
        broken = Transaction.model_construct(
            id="nan-1",
            user_id=USER,
            type=TransactionType.EXPENSE,
            amount=Decimal("NaN"),
            affected_wallet_ids=("cash", "food"),
            wallet_id="",
            source_wallet_id="",
            destination_wallet_id="",
            transaction_date=at(2024, 1, 5),
        )
        assert effective_amount(broken, "cash") == Decimal("0")
        assert calculate_period_summary(history + [broken], "cash") == calculate_period_summary(history, "cash")
        cash = make_wallet("Cash", WalletKind.PHYSICAL, wallet_id="cash")
        end = at(2024, 1, 31)
        assert reconstruct_balances_at(history + [broken], [cash], end) == reconstruct_balances_at(history, [cash], end)

    def test_untouched_wallet(self, history):
        summary = calculate_period_summary(history, "savings")
        assert summary.transaction_count == 0
        assert summary.net_change == Decimal("0")


class TestGrouping:
    """Daily and monthly grouping by transaction_date."""

    def test_daily_summaries(self, history):
        days = daily_summaries(history, "cash")
        assert [(d.day, d.transaction_count, d.net_amount) for d in days] == [
            (date(2024, 1, 3), 2, Decimal("800")),
            (date(2024, 1, 20), 1, Decimal("-300")),
            (date(2024, 2, 2), 1, Decimal("50")),
        ]

    def test_monthly_summaries(self, history):
        months = monthly_summaries(history, "bank")
        assert list(months) == [(2024, 1), (2024, 2)]
        assert months[(2024, 1)].transfers_in == Decimal("300")
        assert months[(2024, 2)].expenses == Decimal("125")
        assert months[(2024, 2)].transfers_out == Decimal("50")


class TestHistoricalBalances:
    """Tests for reconstruct_balances_at."""

    def test_end_date_is_inclusive(self, history):
        wallets = [
            make_wallet("Cash", WalletKind.PHYSICAL, initial="10", wallet_id="cash"),
            make_wallet("Bank", WalletKind.PHYSICAL, wallet_id="bank"),
        ]
        balances = reconstruct_balances_at(history, wallets, at(2024, 1, 20))
        assert balances == {"cash": Decimal("510"), "bank": Decimal("300")}

    def test_naive_end_date(self, history):
        wallets = [make_wallet("Cash", WalletKind.PHYSICAL, wallet_id="cash")]
        balances = reconstruct_balances_at(history, wallets, datetime(2024, 1, 4))
        assert balances == {"cash": Decimal("800")}

    def test_before_any_transaction(self, history):
        wallets = [make_wallet("Cash", WalletKind.PHYSICAL, initial="10", wallet_id="cash")]
        assert reconstruct_balances_at(history, wallets, at(2023, 12, 31)) == {"cash": Decimal("10")}


class TestServiceAnalytics:
    """Summaries through LedgerService."""

    def test_period_summary_date_window(self, service, ids):
        run(service.create_transaction(USER, income("100", ids["P"], ids["L"], when=day(0))))
        run(service.create_transaction(USER, expense("30", ids["P"], ids["L"], when=day(5))))
        run(service.create_transaction(USER, transfer("20", ids["P"], ids["P2"], when=day(10))))

        everything = run(service.period_summary(USER, ids["P"]))
        assert everything.net_change == Decimal("50")

        window = run(service.period_summary(USER, ids["P"], start=day(1), end=day(5)))
        assert window.transaction_count == 1
        assert window.expenses == Decimal("30")

    def test_monthly_summary(self, service, ids):
        run(service.create_transaction(USER, income("100", ids["P"], ids["L"], when=at(2024, 3, 1))))
        run(service.create_transaction(USER, income("40", ids["P"], ids["L"], when=at(2024, 4, 1))))
        months = run(service.monthly_summary(USER, ids["L"]))
        assert {month: s.income for month, s in months.items()} == {
            (2024, 3): Decimal("100"),
            (2024, 4): Decimal("40"),
        }

    def test_balances_at(self, service, ids):
        run(service.create_transaction(USER, income("100", ids["P"], ids["L"], when=day(0))))
        run(service.create_transaction(USER, expense("30", ids["P"], ids["L"], when=day(5))))
        past = run(service.balances_at(USER, day(1)))
        assert past[ids["P"]] == Decimal("100")
        assert past[ids["L"]] == Decimal("100")
        assert past[ids["P2"]] == Decimal("0")

    def test_summary_of_other_users_wallet(self, service, ids):
        with pytest.raises(WalletNotFoundError):
            run(service.period_summary(OTHER_USER, ids["P"]))
