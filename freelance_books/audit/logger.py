"""
Audit Logger

DESIGN DECISION: Occurrences and schedules are rebuilt rather than
edited, so the audit trail is the only record of what a template used to
produce. Every write and every reconciliation finding becomes an event.

A failed audit write is logged and swallowed: losing an audit row must
not undo a committed backfill. Events of one operation share a
correlation id.
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from freelance_books.config import EngineSettings
from freelance_books.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from freelance_books.services.storage import AuditStorageInterface, StorageError


def configure_logging(settings: Optional[EngineSettings] = None) -> None:
    """
    Configure structlog for local logging.

    JSON output by default; settings.log_format="console" switches to the
    human readable renderer for development.
    """
    log_level = settings.log_level if settings else "INFO"
    log_format = settings.log_format if settings else "json"

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level),
    )

    if log_format == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    else:
        renderer = structlog.processors.JSONRenderer()

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
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Writes audit events to the structured log and to audit storage.

    Event severity picks the log level: errors log at error, discrepancies
    at warning, everything else at info.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    Without one, events only reach the local log.
        """
        self._storage = storage
        self._logger = structlog.get_logger("freelance_books.audit")

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Local log first, then storage when one is configured.

        Returns False only when the storage write failed.
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return self._storage.append_event(event)
            except StorageError as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_template_created(
        self,
        template_id: UUID,
        frequency: str,
        next_occurrence: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log creation of a recurring template."""
        self.log(AuditEventBuilder.template_created(
            template_id=template_id,
            frequency=frequency,
            next_occurrence=next_occurrence,
            correlation_id=correlation_id,
        ))

    def log_occurrences_generated(
        self,
        template_id: UUID,
        occurrence_dates: list[str],
        regenerated: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a backfill or regeneration run."""
        self.log(AuditEventBuilder.occurrences_generated(
            template_id=template_id,
            occurrence_dates=occurrence_dates,
            regenerated=regenerated,
            correlation_id=correlation_id,
        ))

    def log_expense_updated(
        self,
        expense_id: UUID,
        fields: list[str],
        recurrence_changed: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.expense_updated(
            expense_id=expense_id,
            fields=fields,
            recurrence_changed=recurrence_changed,
            correlation_id=correlation_id,
        ))

    def log_expense_deleted(
        self,
        expense_id: UUID,
        children_deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.expense_deleted(
            expense_id=expense_id,
            children_deleted=children_deleted,
            correlation_id=correlation_id,
        ))

    def log_children_updated(
        self,
        template_id: UUID,
        child_count: int,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log propagation of template fields to its occurrences."""
        self.log(AuditEventBuilder.children_updated(
            template_id=template_id,
            child_count=child_count,
            fields=fields,
            correlation_id=correlation_id,
        ))

    def log_schedule_replaced(
        self,
        expense_id: UUID,
        years: int,
        start_year: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.schedule_replaced(
            expense_id=expense_id,
            years=years,
            start_year=start_year,
            correlation_id=correlation_id,
        ))

    def log_depreciation_settings_updated(
        self,
        expense_id: UUID,
        depreciation_type: str,
        tax_deductible_amount: str,
        children_updated: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.depreciation_settings_updated(
            expense_id=expense_id,
            depreciation_type=depreciation_type,
            tax_deductible_amount=tax_deductible_amount,
            children_updated=children_updated,
            correlation_id=correlation_id,
        ))

    def log_invoice_validated(
        self,
        invoice_id: UUID,
        status: str,
        balance: str,
        warnings: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an invoice validation. Discrepancies are logged as warnings."""
        self.log(AuditEventBuilder.invoice_validated(
            invoice_id=invoice_id,
            status=status,
            balance=balance,
            warnings=warnings,
            correlation_id=correlation_id,
        ))

    def log_duplicate_payments(
        self,
        invoice_id: UUID,
        duplicate_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.duplicate_payments_suspected(
            invoice_id=invoice_id,
            duplicate_count=duplicate_count,
            correlation_id=correlation_id,
        ))

    def log_proposed_payment(
        self,
        invoice_id: UUID,
        proposed_amount: str,
        projected_status: str,
        is_valid: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.proposed_payment_checked(
            invoice_id=invoice_id,
            proposed_amount=proposed_amount,
            projected_status=projected_status,
            is_valid=is_valid,
            correlation_id=correlation_id,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Fresh id grouping the events of one operation.

    Services create one per call unless the caller passes its own.
    """
    return uuid4()


configure_logging()
