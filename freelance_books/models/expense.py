"""
Expense Models for Freelance Books

These models define the strict schemas for expenses, recurring templates,
their generated occurrences and depreciation (AfA) schedules.

DESIGN DECISION: One Expense model covers plain expenses, recurring
templates and generated occurrences. The template/occurrence relationship
is an explicit owning-template id (parent_id) on independently stored rows,
not an in-memory tree.

Currency values are Decimal and never silently truncated.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Longest useful life and the tax years a schedule may cover
MAX_DEPRECIATION_YEARS = 50
MIN_SCHEDULE_YEAR = 2000
MAX_SCHEDULE_YEAR = 2100


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Frequency(str, Enum):
    """
    Recurrence frequencies for recurring expense templates.

    Expense.recurrence_frequency is stored as a plain string so that an
    unknown value reaches the recurrence calculator and fails there with
    InvalidFrequencyError instead of a generic schema error.
    """
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class ExpenseStatus(str, Enum):
    """Expense approval status."""
    PENDING = "pending"
    APPROVED = "approved"      # Generated occurrences are always approved
    REJECTED = "rejected"
    REIMBURSED = "reimbursed"


class DepreciationType(str, Enum):
    """
    How an expense is deducted for tax purposes.

    NONE and IMMEDIATE are deducted in full in the year of the expense
    (IMMEDIATE covers low-value assets, GWG). PARTIAL spreads the net
    amount over several years following the AfA table.
    """
    NONE = "none"
    IMMEDIATE = "immediate"
    PARTIAL = "partial"


class DepreciationMethod(str, Enum):
    """
    Depreciation method label.

    Only LINEAR is computed; DEGRESSIVE is stored as a label.
    """
    LINEAR = "linear"
    DEGRESSIVE = "degressive"


# =============================================================================
# DEPRECIATION MODELS
# =============================================================================

class DepreciationSettings(BaseModel):
    """
    Depreciation settings embedded in an expense.

    years and start_date are required for PARTIAL, but that requirement is
    enforced by the depreciation scheduler (InvalidDepreciationInputError),
    not here, so half-filled settings can still be loaded from storage.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: DepreciationType = Field(
        default=DepreciationType.NONE,
        description="Depreciation type"
    )
    years: Optional[int] = Field(
        default=None,
        ge=1,
        le=MAX_DEPRECIATION_YEARS,
        description="Useful life in years according to the AfA table"
    )
    start_date: Optional[date] = Field(
        default=None,
        description="Start of depreciation (drives the first-year pro-rata)"
    )
    method: DepreciationMethod = Field(
        default=DepreciationMethod.LINEAR,
        description="Depreciation method"
    )
    useful_life_category: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Asset category from the AfA table (e.g. Computer, Office furniture)"
    )
    tax_deductible_percentage: Decimal = Field(
        default=Decimal("100"),
        ge=0,
        le=100,
        description="Share of the amount that is tax deductible"
    )
    tax_deductible_amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Derived amount deductible in the expense's own year"
    )


class DepreciationScheduleEntry(BaseModel):
    """
    One year of a depreciation schedule.

    Schedules are always replaced as a whole (delete + reinsert),
    never patched in place.
    """

    id: UUID = Field(default_factory=uuid4)
    expense_id: Optional[UUID] = Field(
        default=None,
        description="Expense being depreciated (unset for detached calculations)"
    )
    owner_id: Optional[UUID] = None
    year: int = Field(..., ge=MIN_SCHEDULE_YEAR, le=MAX_SCHEDULE_YEAR)
    amount: Decimal = Field(..., ge=0)
    cumulative_amount: Decimal = Field(..., ge=0)
    remaining_value: Decimal = Field(..., ge=0)
    is_final_year: bool = False


# =============================================================================
# CORE EXPENSE MODEL
# =============================================================================

class Expense(BaseModel):
    """
    An expense record.

    - Recurring template: is_recurring=True, parent_id=None
    - Generated occurrence: parent_id=template.id, is_recurring=False
    - Plain expense: neither
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID = Field(
        ...,
        description="Tenant owning this record; all lookups are scoped by it"
    )
    project_id: Optional[UUID] = None

    # Timestamps
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    # Classification
    category: str = Field(..., min_length=1, max_length=50)
    description: str = Field(..., min_length=1)

    # Financial fields
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    net_amount: Decimal = Field(..., ge=0, decimal_places=2)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    expense_date: date

    # Flags
    is_billable: bool = False
    is_reimbursable: bool = False
    status: ExpenseStatus = ExpenseStatus.APPROVED
    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = None

    # Recurrence
    is_recurring: bool = False
    recurrence_frequency: Optional[str] = None
    recurrence_start_date: Optional[date] = None
    recurrence_end_date: Optional[date] = None
    parent_id: Optional[UUID] = Field(
        default=None,
        description="Owning recurring template for generated occurrences"
    )
    next_occurrence: Optional[date] = None

    # Depreciation
    depreciation: DepreciationSettings = Field(default_factory=DepreciationSettings)

    @model_validator(mode='after')
    def validate_consistency(self) -> 'Expense':
        """Validate amount and recurrence relationships."""
        if abs(self.amount - (self.net_amount + self.tax_amount)) >= Decimal("0.01"):
            raise ValueError("Amount must equal net amount plus tax amount")

        if self.is_recurring:
            if self.recurrence_start_date is None:
                raise ValueError("Recurring expenses need a recurrence start date")
            if not self.recurrence_frequency:
                raise ValueError("Recurring expenses need a recurrence frequency")
        elif self.recurrence_frequency is not None:
            raise ValueError("Only recurring expenses can have a recurrence frequency")

        if self.recurrence_end_date and self.recurrence_start_date:
            if self.recurrence_end_date <= self.recurrence_start_date:
                raise ValueError("Recurrence end date must be after start date")

        return self

    @property
    def is_template(self) -> bool:
        """A recurring expense that owns generated occurrences."""
        return self.is_recurring and self.parent_id is None

    @property
    def is_generated(self) -> bool:
        """An occurrence materialized from a recurring template."""
        return self.parent_id is not None


class ExpenseUpdate(BaseModel):
    """
    Partial update for an expense.

    Only fields explicitly set are applied (model_fields_set), so
    recurrence_end_date=None clears the end date while omitting it keeps it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    project_id: Optional[UUID] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    net_amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    tax_amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    expense_date: Optional[date] = None
    is_billable: Optional[bool] = None
    is_reimbursable: Optional[bool] = None
    status: Optional[ExpenseStatus] = None
    tags: Optional[list[str]] = None
    notes: Optional[str] = None
    recurrence_frequency: Optional[str] = None
    recurrence_start_date: Optional[date] = None
    recurrence_end_date: Optional[date] = None

    def changes(self) -> dict:
        """Fields explicitly provided by the caller."""
        return {name: getattr(self, name) for name in self.model_fields_set}
