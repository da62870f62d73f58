"""
Audit Models for Wallet Ledger

Every balance-affecting action in the system is logged for audit purposes.
This provides:
1. Complete traceability of every wallet mutation
2. Debugging information when a discrepancy shows up
3. Evidence for manual reconciliation after a partial failure
4. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from walletledger.models.wallet import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of create/edit/delete and of the audit replay has its own type.
    """
    # Wallets
    WALLET_CREATED = "wallet_created"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Validation
    VALIDATION_FAILED = "validation_failed"

    # Balance mutation
    BALANCE_APPLIED = "balance_applied"
    BALANCE_REVERSED = "balance_reversed"
    PARTIAL_MUTATION = "partial_mutation"
    COMPENSATION_APPLIED = "compensation_applied"

    # Consistency audit
    DISCREPANCY_AUDIT_COMPLETED = "discrepancy_audit_completed"
    DISCREPANCY_DETECTED = "discrepancy_detected"
    UNKNOWN_WALLET_REFERENCE = "unknown_wallet_reference"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the affected records"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'wallet')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one edit)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(transaction, correlation_id)
        event = AuditEventBuilder.partial_mutation(user_id, tx_id, "apply", False, msg, cid)
    """

    @staticmethod
    def wallet_created(
        user_id: str,
        wallet_id: str,
        name: str,
        kind: str,
        initial_balance: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_CREATED,
            user_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            correlation_id=correlation_id,
            description=f"{kind.capitalize()} wallet created: {name}",
            details={
                "name": name,
                "kind": kind,
                "initial_balance": initial_balance,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_created(
        user_id: str,
        transaction_id: str,
        transaction_type: str,
        amount: str,
        wallet_ids: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{transaction_type.capitalize()} of {amount} recorded",
            details={
                "type": transaction_type,
                "amount": amount,
                "wallet_ids": wallet_ids,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        user_id: str,
        transaction_id: str,
        old_amount: str,
        new_amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction edited: {old_amount} -> {new_amount}",
            details={
                "old_amount": old_amount,
                "new_amount": new_amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        user_id: str,
        transaction_id: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction deleted, {amount} reversed",
            details={"amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def balance_changed(
        user_id: str,
        transaction_id: str,
        direction: str,
        deltas: dict[str, str],
        correlation_id: UUID,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.BALANCE_APPLIED
            if direction == "forward"
            else AuditEventType.BALANCE_REVERSED
        )
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.DEBUG,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Balance {direction} applied to {len(deltas)} wallets",
            details={
                "direction": direction,
                "deltas": deltas,
            },
        )

    @staticmethod
    def validation_failed(
        user_id: str,
        transaction_id: Optional[str],
        issues: list[dict],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction rejected with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def partial_mutation(
        user_id: str,
        transaction_id: str,
        stage: str,
        compensated: bool,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        # Uncompensated failures leave balances off and need a human.
        severity = AuditSeverity.ERROR if compensated else AuditSeverity.CRITICAL
        return AuditEvent(
            event_type=AuditEventType.PARTIAL_MUTATION,
            severity=severity,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=(
                f"Mutation failed at stage '{stage}'"
                + ("; balances restored" if compensated else "; MANUAL RECONCILIATION REQUIRED")
            ),
            error_code="partial_mutation",
            error_message=error_message,
            details={
                "stage": stage,
                "compensated": compensated,
            },
        )

    @staticmethod
    def compensation_applied(
        user_id: str,
        transaction_id: str,
        stage: str,
        steps: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMPENSATION_APPLIED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Balances restored after failure at stage '{stage}'",
            details={
                "stage": stage,
                "steps": steps,
            },
        )

    @staticmethod
    def discrepancy_audit_completed(
        user_id: str,
        transaction_count: int,
        first_discrepancy_id: Optional[str],
        physical_total: str,
        logical_total: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        found = first_discrepancy_id is not None
        return AuditEvent(
            event_type=(
                AuditEventType.DISCREPANCY_DETECTED
                if found
                else AuditEventType.DISCREPANCY_AUDIT_COMPLETED
            ),
            severity=AuditSeverity.WARNING if found else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="transaction" if found else "user",
            entity_id=first_discrepancy_id if found else user_id,
            correlation_id=correlation_id,
            description=(
                f"First discrepancy at transaction {first_discrepancy_id}"
                if found
                else f"Replayed {transaction_count} transactions, views balanced"
            ),
            details={
                "transaction_count": transaction_count,
                "physical_total": physical_total,
                "logical_total": logical_total,
            },
        )

    @staticmethod
    def unknown_wallet_reference(
        user_id: str,
        transaction_id: str,
        wallet_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UNKNOWN_WALLET_REFERENCE,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction references unknown wallet {wallet_id}",
            details={"wallet_id": wallet_id},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
