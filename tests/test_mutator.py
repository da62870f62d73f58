"""
Tests for the Balance Mutator and the delta function.
"""

from decimal import Decimal

import pytest

from walletledger.ledger.errors import (
    PartialMutationError,
    TransferConstraintError,
    ValidationError,
    WalletNotFoundError,
)
from walletledger.ledger.mutator import BalanceMutator, apply_deltas, compute_deltas
from walletledger.models.balance import BalanceDelta, Direction
from walletledger.models.transaction import Transaction, TransactionType
from walletledger.models.wallet import WalletKind
from walletledger.services.storage import StorageError

from tests.helpers import (
    BASE_DATE,
    OTHER_USER,
    USER,
    FlakyWalletStorage,
    make_transaction,
    make_wallet,
    run,
)


def as_map(deltas):
    return {d.wallet_id: d.delta for d in deltas}


class TestComputeDeltas:
    """Tests for compute_deltas."""

    def test_income_adds_to_every_wallet(self):
        transaction = make_transaction(TransactionType.INCOME, "100", ("p", "l"))
        assert as_map(compute_deltas(transaction)) == {
            "p": Decimal("100"),
            "l": Decimal("100"),
        }

    def test_expense_subtracts_from_every_wallet(self):
        transaction = make_transaction(TransactionType.EXPENSE, "30", ("p", "l"))
        assert as_map(compute_deltas(transaction)) == {
            "p": Decimal("-30"),
            "l": Decimal("-30"),
        }

    def test_transfer_moves_from_source_to_destination(self):
        transaction = make_transaction(
            TransactionType.TRANSFER, "50", source="p1", destination="p2"
        )
        assert compute_deltas(transaction) == [
            BalanceDelta(wallet_id="p1", delta=Decimal("-50")),
            BalanceDelta(wallet_id="p2", delta=Decimal("50")),
        ]

    @pytest.mark.parametrize("transaction", [
        make_transaction(TransactionType.INCOME, "12.34", ("p", "l")),
        make_transaction(TransactionType.EXPENSE, "0.01", ("p", "l")),
        make_transaction(TransactionType.TRANSFER, "7", source="a", destination="b"),
        make_transaction(TransactionType.EXPENSE, "3", wallet_id="legacy"),
    ])
    def test_reverse_is_exact_negation(self, transaction):
        """Reverse negates every Forward delta, for every type."""
        forward = compute_deltas(transaction, Direction.FORWARD)
        reverse = compute_deltas(transaction, Direction.REVERSE)
        assert reverse == [d.negated() for d in forward]

    def test_legacy_single_wallet(self):
        transaction = make_transaction(TransactionType.INCOME, "5", wallet_id="legacy")
        assert as_map(compute_deltas(transaction)) == {"legacy": Decimal("5")}

    def test_transfer_missing_endpoint_rejected(self):
        transaction = make_transaction(TransactionType.TRANSFER, "5", source="a")
        with pytest.raises(TransferConstraintError) as exc_info:
            compute_deltas(transaction)
        assert exc_info.value.issues[0].issue_type == "missing_endpoint"

    def test_self_transfer_rejected(self):
        transaction = make_transaction(
            TransactionType.TRANSFER, "5", source="a", destination="a"
        )
        with pytest.raises(TransferConstraintError) as exc_info:
            compute_deltas(transaction)
        assert exc_info.value.issues[0].issue_type == "self_transfer"

    def test_lenient_mode_skips_transfer_checks(self):
        """Replaying stored history tolerates a half-empty transfer."""
        transaction = make_transaction(TransactionType.TRANSFER, "5", source="a")
        assert compute_deltas(transaction, strict=False) == [
            BalanceDelta(wallet_id="a", delta=Decimal("-5")),
        ]

    def test_unvalidated_zero_amount_rejected(self):
        """Records that bypassed model validation still cannot move balances."""
        transaction = Transaction.model_construct(
            id="tx-0",
            user_id=USER,
            type=TransactionType.INCOME,
            amount=Decimal("0"),
            affected_wallet_ids=("p", "l"),
            transaction_date=BASE_DATE,
        )
        with pytest.raises(ValidationError):
            compute_deltas(transaction)

    def test_unvalidated_nan_amount_rejected(self):
        transaction = Transaction.model_construct(
            id="tx-nan",
            user_id=USER,
            type=TransactionType.EXPENSE,
            amount=Decimal("NaN"),
            affected_wallet_ids=("p", "l"),
            transaction_date=BASE_DATE,
        )
        with pytest.raises(ValidationError):
            compute_deltas(transaction)


class TestApplyDeltas:
    """Tests for folding deltas into a working map."""

    def test_folds_in_place(self):
        running = {"p": Decimal("10"), "l": Decimal("10")}
        result = apply_deltas(running, [
            BalanceDelta(wallet_id="p", delta=Decimal("-4")),
            BalanceDelta(wallet_id="l", delta=Decimal("-4")),
        ])
        assert result is running
        assert running == {"p": Decimal("6"), "l": Decimal("6")}

    def test_unknown_wallets_contribute_nothing(self):
        seen = []
        running = {"p": Decimal("0")}
        apply_deltas(
            running,
            [
                BalanceDelta(wallet_id="p", delta=Decimal("1")),
                BalanceDelta(wallet_id="ghost", delta=Decimal("1")),
            ],
            on_unknown=seen.append,
        )
        assert running == {"p": Decimal("1")}
        assert seen == ["ghost"]


class TestBalanceMutator:
    """Tests for BalanceMutator.apply against a wallet store."""

    def setup_method(self):
        self.physical = make_wallet("Cash", WalletKind.PHYSICAL, initial="100")
        self.logical = make_wallet("Food", WalletKind.LOGICAL, initial="100")
        self.storage = FlakyWalletStorage([self.physical, self.logical])
        self.mutator = BalanceMutator(self.storage)

    def balance(self, wallet):
        return run(self.storage.get_wallet(wallet.id)).balance

    def test_forward_then_reverse_restores_balances(self):
        """Test the round-trip property on stored balances."""
        transaction = make_transaction(
            TransactionType.EXPENSE, "33.33", (self.physical.id, self.logical.id)
        )
        run(self.mutator.apply(transaction, Direction.FORWARD))
        assert self.balance(self.physical) == Decimal("66.67")
        assert self.balance(self.logical) == Decimal("66.67")

        run(self.mutator.apply(transaction, Direction.REVERSE))
        assert self.balance(self.physical) == Decimal("100")
        assert self.balance(self.logical) == Decimal("100")

    def test_returns_written_deltas(self):
        transaction = make_transaction(
            TransactionType.INCOME, "5", (self.physical.id, self.logical.id)
        )
        deltas = run(self.mutator.apply(transaction, Direction.REVERSE))
        assert as_map(deltas) == {
            self.physical.id: Decimal("-5"),
            self.logical.id: Decimal("-5"),
        }

    def test_missing_wallet_aborts_before_any_write(self):
        transaction = make_transaction(
            TransactionType.INCOME, "5", (self.physical.id, "ghost")
        )
        with pytest.raises(WalletNotFoundError) as exc_info:
            run(self.mutator.apply(transaction, Direction.FORWARD))
        assert exc_info.value.wallet_id == "ghost"
        assert self.storage.update_calls == 0
        assert self.balance(self.physical) == Decimal("100")

    def test_other_users_wallet_is_not_found(self):
        foreign = make_wallet("Theirs", WalletKind.LOGICAL, user_id=OTHER_USER)
        run(self.storage.save_wallet(foreign))
        transaction = make_transaction(
            TransactionType.INCOME, "5", (self.physical.id, foreign.id)
        )
        with pytest.raises(WalletNotFoundError):
            run(self.mutator.apply(transaction, Direction.FORWARD))
        assert self.storage.update_calls == 0

    def test_failed_write_rolls_back_earlier_writes(self):
        """Second write fails: the first is restored, the error propagates."""
        transaction = make_transaction(
            TransactionType.INCOME, "40", (self.physical.id, self.logical.id)
        )
        self.storage.fail_after(2)
        with pytest.raises(StorageError):
            run(self.mutator.apply(transaction, Direction.FORWARD))
        assert self.balance(self.physical) == Decimal("100")
        assert self.balance(self.logical) == Decimal("100")

    def test_write_that_landed_before_failing_is_restored(self):
        """The failing wallet is restored too, not only the earlier ones."""
        transaction = make_transaction(
            TransactionType.INCOME, "100", (self.physical.id, self.logical.id)
        )
        self.storage.land_failures = True
        self.storage.fail_after(2)
        with pytest.raises(StorageError):
            run(self.mutator.apply(transaction, Direction.FORWARD))
        assert self.balance(self.physical) == Decimal("100")
        assert self.balance(self.logical) == Decimal("100")

    def test_first_write_landing_before_failing_is_restored(self):
        transaction = make_transaction(
            TransactionType.EXPENSE, "25", (self.physical.id, self.logical.id)
        )
        self.storage.land_failures = True
        self.storage.fail_after(1)
        with pytest.raises(StorageError):
            run(self.mutator.apply(transaction, Direction.FORWARD))
        assert self.balance(self.physical) == Decimal("100")
        assert self.balance(self.logical) == Decimal("100")
        assert self.storage.update_calls == 2

    def test_failed_rollback_is_partial(self):
        """Write 2 fails, then the rollback's first restore fails too."""
        transaction = make_transaction(
            TransactionType.INCOME, "40", (self.physical.id, self.logical.id)
        )
        self.storage.fail_after(2, 3)
        with pytest.raises(PartialMutationError) as exc_info:
            run(self.mutator.apply(transaction, Direction.REVERSE))
        assert exc_info.value.stage == "reverse"
        assert exc_info.value.compensated is False
        assert isinstance(exc_info.value.__cause__, StorageError)
