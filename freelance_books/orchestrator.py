"""
Main Orchestrator for Freelance Books

This module ties together all the engine components:
1. Expense flow (create/update template → next occurrence → backfill → schedules)
2. Depreciation flow (settings → schedule → tax-deductible amounts)
3. Reconciliation flow (payment written → invoice re-validated)

DESIGN DECISION: Components share one record store and one audit logger,
so a template update, its regenerated occurrences and their schedules are
one transaction and one correlated audit trail.

The storage backend is chosen from settings. A misconfigured Google Sheets
backend fails at startup rather than silently falling back to memory,
which would lose every write.
"""

from typing import Optional

import structlog

from freelance_books.audit import AuditLogger, configure_logging
from freelance_books.config import EngineSettings, get_settings
from freelance_books.depreciation import DepreciationScheduler
from freelance_books.models.billing import BillingValidationResult, Payment
from freelance_books.recurrence import RecurringExpenseGenerator
from freelance_books.services.expenses import ExpenseService
from freelance_books.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryAuditStorage,
    InMemoryRecordStore,
    RecordStore,
)
from freelance_books.validation import BillingReconciler


logger = structlog.get_logger(__name__)


class BooksEngine:
    """
    The wired engine.

    Attributes:
        store: Shared record store
        audit_logger: Shared audit logger
        expenses: Expense CRUD with recurring-template bookkeeping
        generator: Occurrence backfill/regeneration
        scheduler: Depreciation schedules and deductible amounts
        reconciler: Invoice/payment reconciliation
    """

    def __init__(
        self,
        store: RecordStore,
        audit_logger: AuditLogger,
        settings: EngineSettings,
    ):
        self.settings = settings
        self.store = store
        self.audit_logger = audit_logger
        self.scheduler = DepreciationScheduler(
            store,
            audit_logger=audit_logger,
            settings=settings,
        )
        self.generator = RecurringExpenseGenerator(
            store,
            scheduler=self.scheduler,
            audit_logger=audit_logger,
            settings=settings,
        )
        self.expenses = ExpenseService(
            store,
            generator=self.generator,
            scheduler=self.scheduler,
            audit_logger=audit_logger,
            settings=settings,
        )
        self.reconciler = BillingReconciler(
            store,
            audit_logger=audit_logger,
            settings=settings,
        )

    def on_payment_recorded(self, payment: Payment) -> Optional[BillingValidationResult]:
        """
        Hook for the payment write path.

        Returns the invoice's new reconciliation snapshot, or None if the
        invoice could not be found. Never raises for a missing invoice.
        """
        result = self.reconciler.reconcile_after_payment(payment)
        if result is not None and result.warnings:
            logger.warning(
                "payment_left_invoice_unbalanced",
                invoice_id=str(result.invoice_id),
                status=result.status.value,
                balance=str(result.balance),
            )
        return result


def create_engine_components(
    settings: Optional[EngineSettings] = None,
    store: Optional[RecordStore] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> BooksEngine:
    """
    Factory function to create the engine.

    Args:
        settings: Engine settings; loaded from the environment if omitted
        store: Record store to use instead of the configured backend
        audit_storage: Audit storage to use instead of the configured backend

    Returns:
        The wired BooksEngine
    """
    settings = settings or get_settings().engine
    configure_logging(settings)

    if store is None:
        if settings.storage_backend == "google_sheets":
            sheets_client = GoogleSheetsClient()
            store = GoogleSheetsRecordStore(sheets_client)
            audit_storage = audit_storage or GoogleSheetsAuditStorage(sheets_client)
        else:
            store = InMemoryRecordStore()

    if audit_storage is None:
        audit_storage = InMemoryAuditStorage()

    logger.info(
        "engine_created",
        storage_backend=type(store).__name__,
        environment=settings.app_environment,
    )
    return BooksEngine(
        store=store,
        audit_logger=AuditLogger(audit_storage),
        settings=settings,
    )
