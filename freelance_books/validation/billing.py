"""
Billing Reconciliation

Compares an invoice's total with the payments recorded against it.

DESIGN DECISION: Reconciliation NEVER modifies anything.
It reads a snapshot (invoice + payments), computes, and reports.
Under- and over-billing are findings returned as status and warnings,
not exceptions; the only failure is an invoice that cannot be found.

    total_paid = sum(payments) - sum(refunds)
    balance    = invoice_total - total_paid

    |balance| <= threshold  -> valid
    balance   >  threshold  -> underbilled (client still owes money)
    balance   < -threshold  -> overbilled  (client paid too much)

The threshold (default 1.50) absorbs bank fees and rounding.

Duplicate detection is advisory: two payments with the same amount on the
same day are flagged, but legitimate split payments look the same.
"""

from collections import Counter
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog

from freelance_books.audit import AuditLogger, create_correlation_id
from freelance_books.config import EngineSettings, get_settings
from freelance_books.models.billing import (
    BillingStatus,
    BillingValidationResult,
    DuplicatePaymentCheck,
    Invoice,
    Payment,
    ProposedPaymentResult,
)
from freelance_books.services.storage import NotFoundError, RecordStore


logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def _to_cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def total_paid(payments: Iterable[Payment]) -> Decimal:
    """Payments minus refunds."""
    return _to_cents(sum((p.signed_amount for p in payments), Decimal("0")))


def classify_balance(
    balance: Decimal,
    threshold: Decimal,
    currency: str = "EUR",
) -> tuple[BillingStatus, list[str]]:
    """Status and warnings for an invoice balance."""
    if balance > threshold:
        return BillingStatus.UNDERBILLED, [
            f"Invoice is underbilled by {balance:.2f} {currency}. "
            "Outstanding balance should be collected."
        ]
    if balance < -threshold:
        return BillingStatus.OVERBILLED, [
            f"Invoice is overbilled by {abs(balance):.2f} {currency}. "
            "Please review payment records."
        ]
    return BillingStatus.VALID, []


def classify_payments(
    invoice_total: Decimal,
    payments: Iterable[Payment],
    threshold: Decimal,
    currency: str = "EUR",
) -> tuple[Decimal, Decimal, BillingStatus, list[str]]:
    """
    Pure reconciliation core.

    Returns:
        (total_paid, balance, status, warnings)
    """
    paid = total_paid(payments)
    balance = _to_cents(Decimal(invoice_total) - paid)
    status, warnings = classify_balance(balance, Decimal(threshold), currency)
    return paid, balance, status, warnings


def duplicate_count(payments: Iterable[Payment]) -> int:
    """Payments beyond the first in each (amount, date, type) group."""
    groups = Counter(
        (_to_cents(p.amount), p.payment_date, p.payment_type) for p in payments
    )
    return sum(count - 1 for count in groups.values() if count > 1)


class BillingReconciler:
    """
    Invoice/payment reconciliation against the record store.

    Usage:
        reconciler = BillingReconciler(store)
        result = reconciler.validate_invoice(invoice_id, owner_id)
        if result.status != BillingStatus.VALID:
            show(result.warnings)
    """

    def __init__(
        self,
        store: RecordStore,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().engine

    def _threshold(self, threshold: Optional[Decimal]) -> Decimal:
        if threshold is None:
            return self._settings.billing_threshold
        return Decimal(threshold)

    def _get_invoice(self, invoice_id: UUID, owner_id: UUID) -> Invoice:
        invoice = self._store.get_invoice(invoice_id, owner_id)
        if invoice is None:
            raise NotFoundError(f"Invoice with ID {invoice_id} not found")
        if invoice.currency is None:
            invoice.currency = self._settings.default_currency
        return invoice

    def validate_invoice(
        self,
        invoice_id: UUID,
        owner_id: UUID,
        threshold: Optional[Decimal] = None,
        correlation_id: Optional[UUID] = None,
    ) -> BillingValidationResult:
        """
        Reconcile an invoice with its payments.

        Raises:
            NotFoundError: Invoice missing or owned by someone else
        """
        threshold = self._threshold(threshold)
        invoice = self._get_invoice(invoice_id, owner_id)
        payments = self._store.list_payments(invoice_id, owner_id)

        paid, balance, status, warnings = classify_payments(
            invoice.total_amount,
            payments,
            threshold,
            invoice.currency,
        )
        result = BillingValidationResult(
            invoice_id=invoice.id,
            invoice_total=invoice.total_amount,
            total_paid=paid,
            balance=balance,
            status=status,
            warnings=warnings,
            threshold=threshold,
            currency=invoice.currency,
        )

        self._audit.log_invoice_validated(
            invoice_id=invoice.id,
            status=status.value,
            balance=str(balance),
            warnings=warnings,
            correlation_id=correlation_id,
        )
        return result

    def check_duplicate_payments(
        self,
        invoice_id: UUID,
        owner_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> DuplicatePaymentCheck:
        """
        Flag payments sharing amount and date.

        Raises:
            NotFoundError: Invoice missing or owned by someone else
        """
        self._get_invoice(invoice_id, owner_id)
        count = duplicate_count(self._store.list_payments(invoice_id, owner_id))

        if count:
            self._audit.log_duplicate_payments(
                invoice_id=invoice_id,
                duplicate_count=count,
                correlation_id=correlation_id,
            )
        return DuplicatePaymentCheck(has_duplicates=count > 0, duplicate_count=count)

    def validate_proposed_payment(
        self,
        invoice_id: UUID,
        owner_id: UUID,
        proposed_amount: Decimal,
        threshold: Optional[Decimal] = None,
        strict: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> ProposedPaymentResult:
        """
        Evaluate a payment before it is recorded.

        Non-strict mode always accepts the payment and only warns.
        Strict mode rejects a payment that would overbill the invoice.

        Raises:
            ValueError: Negative proposed amount
            NotFoundError: Invoice missing or owned by someone else
        """
        proposed_amount = Decimal(proposed_amount)
        if proposed_amount < 0:
            raise ValueError("Proposed payment amount cannot be negative")

        threshold = self._threshold(threshold)
        invoice = self._get_invoice(invoice_id, owner_id)
        payments = self._store.list_payments(invoice_id, owner_id)

        projected_paid = total_paid(payments) + proposed_amount
        projected_balance = _to_cents(invoice.total_amount - projected_paid)
        status, warnings = classify_balance(projected_balance, threshold, invoice.currency)
        is_valid = not (strict and status == BillingStatus.OVERBILLED)

        self._audit.log_proposed_payment(
            invoice_id=invoice_id,
            proposed_amount=str(proposed_amount),
            projected_status=status.value,
            is_valid=is_valid,
            correlation_id=correlation_id,
        )
        return ProposedPaymentResult(
            is_valid=is_valid,
            warnings=warnings,
            projected_balance=projected_balance,
            projected_status=status,
        )

    def get_payment_breakdown(self, invoice_id: UUID, owner_id: UUID) -> list[Payment]:
        """
        Payments and refunds of an invoice, newest first.

        Raises:
            NotFoundError: Invoice missing or owned by someone else
        """
        self._get_invoice(invoice_id, owner_id)
        payments = self._store.list_payments(invoice_id, owner_id)
        return sorted(
            payments,
            key=lambda p: (p.payment_date, p.created_at),
            reverse=True,
        )

    def reconcile_after_payment(self, payment: Payment) -> Optional[BillingValidationResult]:
        """
        Re-validate an invoice after a payment was written.

        Never fails the payment write: a missing invoice is logged and
        None is returned.
        """
        correlation_id = create_correlation_id()
        try:
            return self.validate_invoice(
                payment.invoice_id,
                payment.owner_id,
                correlation_id=correlation_id,
            )
        except NotFoundError as e:
            logger.warning(
                "post_payment_validation_skipped",
                payment_id=str(payment.id),
                invoice_id=str(payment.invoice_id),
                error=str(e),
            )
            return None
