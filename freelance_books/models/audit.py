"""
Audit Models for Freelance Books

Events describing what the engine generated, rewrote or found.

DESIGN DECISION: Events are immutable and only appended. Regeneration
deletes occurrences, so the events are how an earlier state is traced.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Recurring expenses
    RECURRING_TEMPLATE_CREATED = "recurring_template_created"
    OCCURRENCES_GENERATED = "occurrences_generated"
    OCCURRENCES_REGENERATED = "occurrences_regenerated"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    CHILD_EXPENSES_UPDATED = "child_expenses_updated"

    # Depreciation
    DEPRECIATION_SCHEDULE_REPLACED = "depreciation_schedule_replaced"
    DEPRECIATION_SETTINGS_UPDATED = "depreciation_settings_updated"

    # Billing reconciliation
    INVOICE_VALIDATED = "invoice_validated"
    BILLING_DISCREPANCY = "billing_discrepancy"
    DUPLICATE_PAYMENTS_SUSPECTED = "duplicate_payments_suspected"
    PROPOSED_PAYMENT_CHECKED = "proposed_payment_checked"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """How loudly an event is logged."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    One row of the audit trail.
    """

    # Identity
    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Subject record
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'invoice')"
    )
    entity_id: Optional[UUID] = None

    # Groups the events of one operation
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one template update)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Set for SYSTEM_ERROR events
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Keyword arguments for the structlog call.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Cells for one audit worksheet row.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Factory methods, one per event type the engine emits.

    Usage:
        event = AuditEventBuilder.occurrences_generated(template_id, dates, correlation_id)
        event = AuditEventBuilder.invoice_validated(invoice_id, "valid", "0.00")
    """

    @staticmethod
    def template_created(
        template_id: UUID,
        frequency: str,
        next_occurrence: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_TEMPLATE_CREATED,
            entity_type="expense",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Recurring {frequency} template created",
            details={
                "frequency": frequency,
                "next_occurrence": next_occurrence,
            },
        )

    @staticmethod
    def occurrences_generated(
        template_id: UUID,
        occurrence_dates: list[str],
        regenerated: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.OCCURRENCES_REGENERATED
            if regenerated
            else AuditEventType.OCCURRENCES_GENERATED
        )
        verb = "Regenerated" if regenerated else "Generated"
        return AuditEvent(
            event_type=event_type,
            entity_type="expense",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"{verb} {len(occurrence_dates)} recurring occurrences",
            details={
                "occurrence_dates": occurrence_dates,
            },
        )

    @staticmethod
    def expense_updated(
        expense_id: UUID,
        fields: list[str],
        recurrence_changed: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense updated ({len(fields)} fields)",
            details={
                "fields": sorted(fields),
                "recurrence_changed": recurrence_changed,
            },
        )

    @staticmethod
    def expense_deleted(
        expense_id: UUID,
        children_deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Expense deleted",
            details={
                "children_deleted": children_deleted,
            },
        )

    @staticmethod
    def children_updated(
        template_id: UUID,
        child_count: int,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHILD_EXPENSES_UPDATED,
            entity_type="expense",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Propagated template changes to {child_count} occurrences",
            details={
                "child_count": child_count,
                "fields": sorted(fields),
            },
        )

    @staticmethod
    def schedule_replaced(
        expense_id: UUID,
        years: int,
        start_year: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEPRECIATION_SCHEDULE_REPLACED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Depreciation schedule replaced ({years} years from {start_year})",
            details={
                "years": years,
                "start_year": start_year,
            },
        )

    @staticmethod
    def depreciation_settings_updated(
        expense_id: UUID,
        depreciation_type: str,
        tax_deductible_amount: str,
        children_updated: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEPRECIATION_SETTINGS_UPDATED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Depreciation set to {depreciation_type}",
            details={
                "depreciation_type": depreciation_type,
                "tax_deductible_amount": tax_deductible_amount,
                "children_updated": children_updated,
            },
        )

    @staticmethod
    def invoice_validated(
        invoice_id: UUID,
        status: str,
        balance: str,
        warnings: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        is_discrepancy = status != "valid"
        return AuditEvent(
            event_type=(
                AuditEventType.BILLING_DISCREPANCY
                if is_discrepancy
                else AuditEventType.INVOICE_VALIDATED
            ),
            severity=AuditSeverity.WARNING if is_discrepancy else AuditSeverity.INFO,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice billing status: {status}",
            details={
                "status": status,
                "balance": balance,
                "warnings": warnings,
            },
        )

    @staticmethod
    def duplicate_payments_suspected(
        invoice_id: UUID,
        duplicate_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_PAYMENTS_SUSPECTED,
            severity=AuditSeverity.WARNING,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"{duplicate_count} payments look like duplicates",
            details={
                "duplicate_count": duplicate_count,
            },
        )

    @staticmethod
    def proposed_payment_checked(
        invoice_id: UUID,
        proposed_amount: str,
        projected_status: str,
        is_valid: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROPOSED_PAYMENT_CHECKED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Proposed payment of {proposed_amount} would be {projected_status}",
            details={
                "proposed_amount": proposed_amount,
                "projected_status": projected_status,
                "is_valid": is_valid,
            },
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
