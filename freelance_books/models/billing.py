"""
Billing Models for Freelance Books

Invoices and payments are owned by the wider bookkeeping system; the engine
only reads them. The result models here are plain structured data for the
HTTP layer to serialize as JSON.

DESIGN DECISION: Heuristic findings (under/over-billing, duplicate payments)
are returned as data in these models, never raised as exceptions.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentType(str, Enum):
    """Payment direction. Refunds subtract from the paid total."""
    PAYMENT = "payment"
    REFUND = "refund"


class BillingStatus(str, Enum):
    """Reconciliation state of an invoice."""
    VALID = "valid"              # Balance within threshold
    UNDERBILLED = "underbilled"  # Payments fall short of the total
    OVERBILLED = "overbilled"    # Payments exceed the total


class Invoice(BaseModel):
    """An invoice as seen by the reconciler."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    client_id: Optional[UUID] = None
    invoice_number: Optional[str] = Field(default=None, max_length=50)
    total_amount: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Invoice total; read-only for reconciliation"
    )
    currency: Optional[str] = Field(
        default=None,
        min_length=3,
        max_length=3,
        description="Falls back to the configured default currency"
    )


class Payment(BaseModel):
    """A payment or refund recorded against an invoice."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    invoice_id: UUID
    amount: Decimal = Field(..., ge=0)
    payment_type: PaymentType = PaymentType.PAYMENT
    payment_date: date
    payment_method: str = Field(default="bank_transfer", max_length=50)
    transaction_id: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def signed_amount(self) -> Decimal:
        """Amount as it counts towards the paid total."""
        if self.payment_type == PaymentType.REFUND:
            return -self.amount
        return self.amount


class BillingValidationResult(BaseModel):
    """Snapshot of an invoice's payment state."""

    invoice_id: UUID
    invoice_total: Decimal
    total_paid: Decimal
    balance: Decimal = Field(
        ...,
        description="invoice_total - total_paid; negative means overpaid"
    )
    status: BillingStatus
    warnings: list[str] = Field(default_factory=list)
    threshold: Decimal
    currency: str
    validated_at: datetime = Field(default_factory=_utcnow)


class DuplicatePaymentCheck(BaseModel):
    """
    Advisory duplicate-payment finding.

    Serializes as {"hasDuplicates": ..., "duplicateCount": ...}
    with model_dump(by_alias=True).
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    has_duplicates: bool
    duplicate_count: int = Field(..., ge=0)


class ProposedPaymentResult(BaseModel):
    """Outcome of evaluating a payment before it is recorded."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_valid: bool
    warnings: list[str] = Field(default_factory=list)
    projected_balance: Decimal
    projected_status: BillingStatus
