"""
Audit Logger

DESIGN DECISION: Every balance-affecting action in the system is logged.
This provides:
1. Complete traceability of wallet mutations
2. Evidence for manual reconciliation after a partial failure
3. A history the user can inspect next to their transactions

The audit logger:
- Is async so it fits the engine's call flow
- Gracefully handles storage failures (a failed audit write never
  turns a successful mutation into a failure)
- Supports correlation IDs to trace all events of one user action
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from walletledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from walletledger.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store, if one is configured (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("walletledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.CRITICAL:
            self._logger.critical("audit_event", **log_dict)
        elif event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_wallet_created(
        self,
        user_id: str,
        wallet_id: str,
        name: str,
        kind: str,
        initial_balance: Decimal,
        correlation_id: UUID,
    ) -> None:
        """Log wallet creation."""
        event = AuditEventBuilder.wallet_created(
            user_id=user_id,
            wallet_id=wallet_id,
            name=name,
            kind=kind,
            initial_balance=str(initial_balance),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_created(
        self,
        user_id: str,
        transaction_id: str,
        transaction_type: str,
        amount: Decimal,
        wallet_ids: list[str],
        correlation_id: UUID,
    ) -> None:
        """Log a committed transaction creation."""
        event = AuditEventBuilder.transaction_created(
            user_id=user_id,
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            amount=str(amount),
            wallet_ids=wallet_ids,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_updated(
        self,
        user_id: str,
        transaction_id: str,
        old_amount: Decimal,
        new_amount: Decimal,
        correlation_id: UUID,
    ) -> None:
        """Log a committed edit."""
        event = AuditEventBuilder.transaction_updated(
            user_id=user_id,
            transaction_id=transaction_id,
            old_amount=str(old_amount),
            new_amount=str(new_amount),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_deleted(
        self,
        user_id: str,
        transaction_id: str,
        amount: Decimal,
        correlation_id: UUID,
    ) -> None:
        """Log a committed delete."""
        event = AuditEventBuilder.transaction_deleted(
            user_id=user_id,
            transaction_id=transaction_id,
            amount=str(amount),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_balance_changed(
        self,
        user_id: str,
        transaction_id: str,
        direction: str,
        deltas: dict[str, Decimal],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.balance_changed(
            user_id=user_id,
            transaction_id=transaction_id,
            direction=direction,
            deltas={wallet_id: str(delta) for wallet_id, delta in deltas.items()},
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        user_id: str,
        transaction_id: Optional[str],
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            user_id=user_id,
            transaction_id=transaction_id,
            issues=issues,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_partial_mutation(
        self,
        user_id: str,
        transaction_id: str,
        stage: str,
        compensated: bool,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a failed mutation; CRITICAL when balances were not restored."""
        event = AuditEventBuilder.partial_mutation(
            user_id=user_id,
            transaction_id=transaction_id,
            stage=stage,
            compensated=compensated,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_compensation_applied(
        self,
        user_id: str,
        transaction_id: str,
        stage: str,
        steps: list[str],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.compensation_applied(
            user_id=user_id,
            transaction_id=transaction_id,
            stage=stage,
            steps=steps,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_discrepancy_detected(
        self,
        user_id: str,
        transaction_count: int,
        first_discrepancy_id: Optional[str],
        physical_total: Decimal,
        logical_total: Decimal,
        correlation_id: UUID,
    ) -> None:
        """Log the outcome of a discrepancy audit, found or not."""
        event = AuditEventBuilder.discrepancy_audit_completed(
            user_id=user_id,
            transaction_count=transaction_count,
            first_discrepancy_id=first_discrepancy_id,
            physical_total=str(physical_total),
            logical_total=str(logical_total),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_unknown_wallet_reference(
        self,
        user_id: str,
        transaction_id: str,
        wallet_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.unknown_wallet_reference(
            user_id=user_id,
            transaction_id=transaction_id,
            wallet_id=wallet_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., editing a transaction).
    Pass it through all subsequent operations.
    """
    return uuid4()
