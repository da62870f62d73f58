"""
Balance Mutator

The ONLY component that changes wallet balances.

DESIGN DECISIONS:
1. Deltas are a pure function of (transaction snapshot, direction).
   Reverse is the exact negation of Forward for the same snapshot, so
   undoing a transaction never depends on the live state of anything.
2. Every target wallet is read before the first write. A missing wallet
   aborts the call before any balance changes.
3. Writes are not atomic across wallets. If one fails, every wallet this
   call wrote or tried to write is restored to its previous balance
   before the error is raised.

The mutator does NOT enforce the Physical == Logical invariant; shape
rules live in the validator, detection lives in the analyzer.
"""

from decimal import Decimal
from typing import Callable, Iterable, Optional

import structlog

from walletledger.ledger.errors import (
    PartialMutationError,
    TransferConstraintError,
    ValidationError,
    WalletNotFoundError,
)
from walletledger.models.balance import BalanceDelta, Direction
from walletledger.models.transaction import Transaction, TransactionType
from walletledger.models.validation import ValidationIssue
from walletledger.models.wallet import Wallet
from walletledger.services.storage.interface import (
    StorageError,
    WalletStorageInterface,
)


logger = structlog.get_logger(__name__)


def _check_amount(transaction: Transaction) -> None:
    amount = transaction.amount
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(
            f"Transaction {transaction.id} has invalid amount {amount}",
            [ValidationIssue(
                field="amount",
                issue_type="non_positive",
                message="Amount must be a finite number greater than zero",
            )],
        )


def _check_transfer_endpoints(transaction: Transaction) -> None:
    source = transaction.source_wallet_id
    destination = transaction.destination_wallet_id
    if not source or not destination:
        raise TransferConstraintError(
            f"Transfer {transaction.id} is missing an endpoint",
            [ValidationIssue(
                field="source_wallet_id" if not source else "destination_wallet_id",
                issue_type="missing_endpoint",
                message="A transfer needs both a source and a destination wallet",
            )],
        )
    if source == destination:
        raise TransferConstraintError(
            f"Transfer {transaction.id} moves money from a wallet to itself",
            [ValidationIssue(
                field="destination_wallet_id",
                issue_type="self_transfer",
                message="Source and destination must be different wallets",
            )],
        )


def compute_deltas(
    transaction: Transaction,
    direction: Direction = Direction.FORWARD,
    strict: bool = True,
) -> list[BalanceDelta]:
    """
    Per-wallet signed deltas of a transaction.

    Income adds the amount to every affected wallet, expense subtracts it.
    A transfer subtracts from the source and adds to the destination.
    Reverse negates every Forward delta.

    With `strict=False` (replaying stored history) transfer endpoint
    checks are skipped and an empty endpoint simply contributes nothing.

    Raises:
        ValidationError: amount not finite and > 0
        TransferConstraintError: transfer without both distinct endpoints
    """
    _check_amount(transaction)
    amount = transaction.amount

    if transaction.type == TransactionType.INCOME:
        forward = [
            BalanceDelta(wallet_id=wid, delta=amount)
            for wid in transaction.effective_wallet_ids
        ]
    elif transaction.type == TransactionType.EXPENSE:
        forward = [
            BalanceDelta(wallet_id=wid, delta=-amount)
            for wid in transaction.effective_wallet_ids
        ]
    elif transaction.type == TransactionType.TRANSFER:
        if strict:
            _check_transfer_endpoints(transaction)
        forward = [
            BalanceDelta(wallet_id=wid, delta=delta)
            for wid, delta in (
                (transaction.source_wallet_id, -amount),
                (transaction.destination_wallet_id, amount),
            )
            if wid
        ]
    else:
        raise ValueError(f"Unhandled transaction type: {transaction.type}")

    if direction == Direction.REVERSE:
        return [delta.negated() for delta in forward]
    return forward


def apply_deltas(
    running: dict[str, Decimal],
    deltas: Iterable[BalanceDelta],
    on_unknown: Optional[Callable[[str], None]] = None,
) -> dict[str, Decimal]:
    """
    Fold deltas into a working balance map, in place.

    Deltas for wallets missing from the map contribute nothing; each one
    is reported through `on_unknown`.
    """
    for delta in deltas:
        if delta.wallet_id not in running:
            if on_unknown is not None:
                on_unknown(delta.wallet_id)
            continue
        running[delta.wallet_id] += delta.delta
    return running


class BalanceMutator:
    """
    Applies a transaction's deltas to the wallet store.

    Usage:
        mutator = BalanceMutator(wallet_storage)
        await mutator.apply(transaction, Direction.FORWARD)
        await mutator.apply(original_snapshot, Direction.REVERSE)
    """

    def __init__(self, wallet_storage: WalletStorageInterface):
        self._wallets = wallet_storage

    async def _load_targets(
        self,
        transaction: Transaction,
        deltas: list[BalanceDelta],
    ) -> dict[str, Wallet]:
        targets: dict[str, Wallet] = {}
        for delta in deltas:
            if delta.wallet_id in targets:
                continue
            wallet = await self._wallets.get_wallet(delta.wallet_id)
            # Wallets of other users are invisible to this transaction.
            if wallet is None or wallet.user_id != transaction.user_id:
                raise WalletNotFoundError(delta.wallet_id)
            targets[delta.wallet_id] = wallet
        return targets

    async def apply(
        self,
        transaction: Transaction,
        direction: Direction,
    ) -> list[BalanceDelta]:
        """
        Apply (or reverse) a transaction against stored balances.

        Returns the deltas that were written.

        Raises:
            ValidationError / TransferConstraintError: before any write
            WalletNotFoundError: before any write
            StorageError: a write failed and earlier writes were rolled back
            PartialMutationError: a write failed and the rollback failed too
        """
        deltas = compute_deltas(transaction, direction)
        targets = await self._load_targets(transaction, deltas)

        current = {wid: wallet.balance for wid, wallet in targets.items()}
        written: list[tuple[str, Decimal]] = []

        try:
            for delta in deltas:
                previous = current[delta.wallet_id]
                new_balance = previous + delta.delta
                # A write that reports an error may still have landed
                written.append((delta.wallet_id, previous))
                await self._wallets.update_balance(delta.wallet_id, new_balance)
                current[delta.wallet_id] = new_balance
        except StorageError as e:
            logger.warning(
                "balance_write_failed",
                transaction_id=transaction.id,
                direction=direction.value,
                attempted=len(written),
                error=str(e),
            )
            await self._rollback(transaction, direction, written, e)
            raise

        logger.debug(
            "balance_applied",
            transaction_id=transaction.id,
            direction=direction.value,
            deltas={d.wallet_id: str(d.delta) for d in deltas},
        )
        return deltas

    async def _rollback(
        self,
        transaction: Transaction,
        direction: Direction,
        written: list[tuple[str, Decimal]],
        cause: StorageError,
    ) -> None:
        """Restore earlier writes of a failed apply, newest first."""
        for wallet_id, previous in reversed(written):
            try:
                await self._wallets.update_balance(wallet_id, previous)
            except StorageError as e:
                logger.critical(
                    "balance_rollback_failed",
                    transaction_id=transaction.id,
                    wallet_id=wallet_id,
                    error=str(e),
                )
                raise PartialMutationError(
                    transaction_id=transaction.id,
                    stage="apply" if direction == Direction.FORWARD else "reverse",
                    compensated=False,
                    message=f"rollback failed after write error: {cause}",
                ) from cause
