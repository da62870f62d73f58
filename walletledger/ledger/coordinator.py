"""
Reversal Coordinator

Sequences create / edit / delete so a transaction's effect on balances
is never counted twice and never lost.

FLOW:
- create: validate -> Forward(new) -> persist
- edit:   fetch original -> validate updated -> Reverse(original)
          -> Forward(updated) -> persist
- delete: fetch original -> Reverse(original) -> remove record

FAILURE POLICY:
Wallet writes and record writes cannot share one atomic commit. When a
step fails after balances moved, the coordinator compensates by
re-applying whatever brings balances back to the pre-operation state,
then raises PartialMutationError. `compensated` tells the caller whether
that worked. The stored transaction record is the original one in every
failure case. An uncompensated failure also produces a CRITICAL audit
event, because balances now need manual reconciliation.

Every operation runs under the user's lock, and once the first balance
write is attempted it runs to completion even if the caller is cancelled.
"""

from typing import Optional
from uuid import UUID

import structlog

from walletledger.audit.logger import AuditLogger, create_correlation_id
from walletledger.ledger.errors import (
    PartialMutationError,
    TransactionNotFoundError,
    ValidationError,
    WalletNotFoundError,
)
from walletledger.ledger.locks import UserLockRegistry, run_to_completion
from walletledger.ledger.mutator import BalanceMutator
from walletledger.ledger.validator import TransactionValidator
from walletledger.models.balance import Direction
from walletledger.models.transaction import Transaction, TransactionDraft
from walletledger.services.storage.interface import StorageError, TransactionStorageInterface


logger = structlog.get_logger(__name__)


class ReversalCoordinator:
    """
    Create, edit and delete transactions with balanced wallet effects.

    Usage:
        coordinator = ReversalCoordinator(mutator, validator, transactions, locks, audit)
        created = await coordinator.create(user_id, draft)
        edited = await coordinator.edit(user_id, created.id, new_draft)
        await coordinator.delete(user_id, created.id)
    """

    def __init__(
        self,
        mutator: BalanceMutator,
        validator: TransactionValidator,
        transaction_storage: TransactionStorageInterface,
        locks: UserLockRegistry,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._mutator = mutator
        self._validator = validator
        self._transactions = transaction_storage
        self._locks = locks
        self._audit = audit_logger or AuditLogger()

    async def _get_owned(self, user_id: str, transaction_id: str) -> Transaction:
        transaction = await self._transactions.get_transaction(transaction_id)
        # Another user's transaction is reported as missing.
        if transaction is None or transaction.user_id != user_id:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    async def _validate(
        self,
        user_id: str,
        draft: TransactionDraft,
        correlation_id: UUID,
        original: Optional[Transaction] = None,
    ) -> Transaction:
        try:
            return await self._validator.validate_draft(
                user_id,
                draft,
                transaction_id=original.id if original else None,
                created_at=original.created_at if original else None,
            )
        except ValidationError as e:
            await self._audit.log_validation_failed(
                user_id=user_id,
                transaction_id=original.id if original else None,
                issues=e.issue_dicts,
                correlation_id=correlation_id,
            )
            raise

    async def _apply(
        self,
        transaction: Transaction,
        direction: Direction,
        correlation_id: UUID,
    ) -> None:
        deltas = await self._mutator.apply(transaction, direction)
        await self._audit.log_balance_changed(
            user_id=transaction.user_id,
            transaction_id=transaction.id,
            direction=direction.value,
            deltas={d.wallet_id: d.delta for d in deltas},
            correlation_id=correlation_id,
        )

    async def _compensate(
        self,
        subject: Transaction,
        stage: str,
        steps: list[tuple[Transaction, Direction]],
        correlation_id: UUID,
    ) -> bool:
        """
        Run compensating applications in order.

        Returns False as soon as one of them fails; balances are then in
        an unknown state.
        """
        for transaction, direction in steps:
            try:
                await self._apply(transaction, direction, correlation_id)
            except Exception as e:
                logger.critical(
                    "compensation_failed",
                    transaction_id=subject.id,
                    stage=stage,
                    step=f"{direction.value}:{transaction.id}",
                    error=str(e),
                )
                return False

        await self._audit.log_compensation_applied(
            user_id=subject.user_id,
            transaction_id=subject.id,
            stage=stage,
            steps=[f"{direction.value}:{t.id}" for t, direction in steps],
            correlation_id=correlation_id,
        )
        return True

    async def _fail(
        self,
        transaction: Transaction,
        stage: str,
        compensated: bool,
        cause: Exception,
        correlation_id: UUID,
    ) -> PartialMutationError:
        """Audit a failed mutation and build the error to raise."""
        await self._audit.log_partial_mutation(
            user_id=transaction.user_id,
            transaction_id=transaction.id,
            stage=stage,
            compensated=compensated,
            error_message=str(cause),
            correlation_id=correlation_id,
        )
        return PartialMutationError(
            transaction_id=transaction.id,
            stage=stage,
            compensated=compensated,
            message=str(cause),
        )

    # =========================================================================
    # Create
    # =========================================================================

    async def create(
        self,
        user_id: str,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Validate, apply and persist a new transaction.

        Raises:
            ValidationError / TransferConstraintError / WalletNotFoundError:
                rejected, nothing changed
            StorageError: a balance write failed and was rolled back
            PartialMutationError: failed after balances moved
            LockTimeoutError: nothing was attempted
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._locks.hold(user_id):
            transaction = await self._validate(user_id, draft, correlation_id)
            return await run_to_completion(
                self._create_locked(transaction, correlation_id)
            )

    async def _create_locked(
        self,
        transaction: Transaction,
        correlation_id: UUID,
    ) -> Transaction:
        try:
            await self._apply(transaction, Direction.FORWARD, correlation_id)
        except PartialMutationError as e:
            raise await self._fail(transaction, "apply", False, e, correlation_id) from e
        except StorageError as e:
            await self._audit.log_error(
                error_type="balance_write_rolled_back",
                error_message=str(e),
                details={"transaction_id": transaction.id, "user_id": transaction.user_id},
                correlation_id=correlation_id,
            )
            raise

        try:
            await self._transactions.create_transaction(transaction)
        except Exception as e:
            compensated = await self._compensate(
                transaction,
                "persist",
                [(transaction, Direction.REVERSE)],
                correlation_id,
            )
            raise await self._fail(
                transaction, "persist", compensated, e, correlation_id
            ) from e

        await self._audit.log_transaction_created(
            user_id=transaction.user_id,
            transaction_id=transaction.id,
            transaction_type=transaction.type.value,
            amount=transaction.amount,
            wallet_ids=list(transaction.referenced_wallet_ids),
            correlation_id=correlation_id,
        )
        return transaction

    # =========================================================================
    # Edit
    # =========================================================================

    async def edit(
        self,
        user_id: str,
        transaction_id: str,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Replace a transaction, moving balances from the old effect to the new.

        The updated record keeps the original id and `created_at`. It is
        validated before anything is reversed, so an invalid edit changes
        nothing.

        Raises:
            TransactionNotFoundError: unknown id or another user's transaction
            ValidationError / TransferConstraintError / WalletNotFoundError:
                rejected, nothing changed
            PartialMutationError: failed after balances moved; the stored
                record is still the original
            LockTimeoutError: nothing was attempted
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._locks.hold(user_id):
            original = await self._get_owned(user_id, transaction_id)
            updated = await self._validate(user_id, draft, correlation_id, original)
            return await run_to_completion(
                self._edit_locked(original, updated, correlation_id)
            )

    async def _edit_locked(
        self,
        original: Transaction,
        updated: Transaction,
        correlation_id: UUID,
    ) -> Transaction:
        try:
            await self._apply(original, Direction.REVERSE, correlation_id)
        except PartialMutationError as e:
            raise await self._fail(original, "reverse", False, e, correlation_id) from e
        except (ValidationError, WalletNotFoundError):
            raise
        except Exception as e:
            # The mutator rolled its own writes back; nothing moved.
            raise await self._fail(original, "reverse", True, e, correlation_id) from e

        stage = "apply"
        try:
            await self._apply(updated, Direction.FORWARD, correlation_id)
            stage = "persist"
            await self._transactions.update_transaction(updated)
        except PartialMutationError as e:
            raise await self._fail(original, stage, False, e, correlation_id) from e
        except Exception as e:
            steps = [(original, Direction.FORWARD)]
            if stage == "persist":
                steps.insert(0, (updated, Direction.REVERSE))
            compensated = await self._compensate(original, stage, steps, correlation_id)
            raise await self._fail(original, stage, compensated, e, correlation_id) from e

        await self._audit.log_transaction_updated(
            user_id=original.user_id,
            transaction_id=original.id,
            old_amount=original.amount,
            new_amount=updated.amount,
            correlation_id=correlation_id,
        )
        return updated

    # =========================================================================
    # Delete
    # =========================================================================

    async def delete(
        self,
        user_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Reverse a transaction's effect and remove its record.

        Returns the removed snapshot.

        Raises:
            TransactionNotFoundError: unknown id or another user's transaction
            WalletNotFoundError: a referenced wallet is gone; nothing changed
            PartialMutationError: the reversal or the removal failed; the
                record is kept
            LockTimeoutError: nothing was attempted
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._locks.hold(user_id):
            original = await self._get_owned(user_id, transaction_id)
            return await run_to_completion(
                self._delete_locked(original, correlation_id)
            )

    async def _delete_locked(
        self,
        original: Transaction,
        correlation_id: UUID,
    ) -> Transaction:
        try:
            await self._apply(original, Direction.REVERSE, correlation_id)
        except PartialMutationError as e:
            raise await self._fail(original, "reverse", False, e, correlation_id) from e
        except (ValidationError, WalletNotFoundError):
            raise
        except Exception as e:
            raise await self._fail(original, "reverse", True, e, correlation_id) from e

        try:
            removed = await self._transactions.delete_transaction(original.id)
            if not removed:
                raise TransactionNotFoundError(original.id)
        except Exception as e:
            compensated = await self._compensate(
                original,
                "remove",
                [(original, Direction.FORWARD)],
                correlation_id,
            )
            raise await self._fail(original, "remove", compensated, e, correlation_id) from e

        await self._audit.log_transaction_deleted(
            user_id=original.user_id,
            transaction_id=original.id,
            amount=original.amount,
            correlation_id=correlation_id,
        )
        return original
