"""Data models for the invoice dashboard."""

from datetime import date as date_type
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

# Marker for a missing or unparseable invoice date
NO_DATE = "N/A"


class DocumentStatus(str, Enum):
    """Bookkeeping status of a document."""

    PENDING = "pending"
    CATEGORIZED = "categorized"
    IN_THE_BOOKS = "in_the_books"


class DocumentType(str, Enum):
    """Kind of financial document."""

    INVOICE = "invoice"
    RECEIPT = "receipt"


class Category(str, Enum):
    """Spending categories a document can be filed under."""

    HABITAT = "Habitat"
    ELECTRONICS = "Electronics"
    MOBILITY = "Mobility"
    FOOD = "Food"
    EDUCATION = "Education"
    LEISURE = "Leisure"
    MISCELLANEOUS = "Miscellaneous"


class SyncState(str, Enum):
    """Reconciliation state of a locally edited record."""

    CLEAN = "clean"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class CanonicalRecord(BaseModel):
    """A normalized invoice or receipt."""

    id: str
    provider: str = "Unknown Provider"
    date: str = NO_DATE  # ISO calendar date or NO_DATE
    display_amount: str  # Presentation only, never summed
    raw_amount: float = 0.0
    status: DocumentStatus = DocumentStatus.PENDING
    type: DocumentType = DocumentType.INVOICE
    category: Category = Category.MISCELLANEOUS
    description: str = ""
    currency: str = "CHF"
    link: str | None = None

    @property
    def parsed_date(self) -> date_type | None:
        """The invoice date as a ``date``, or None for the NO_DATE marker."""
        if self.date == NO_DATE:
            return None
        return date_type.fromisoformat(self.date)


class ExtractedFields(BaseModel):
    """Fields extracted from an uploaded document, editable before saving."""

    provider: str = ""
    date: str = ""
    amount: float = 0.0
    currency: str = "CHF"
    description: str = ""
    type: DocumentType = DocumentType.RECEIPT


class UploadResult(BaseModel):
    """Outcome of an upload or save step."""

    status: Literal["success", "error"]
    message: str
    extracted: ExtractedFields | None = None


class CategoryUpdateRequest(BaseModel):
    """Category change requested for one record."""

    category: Category


class CategoryUpdateResponse(BaseModel):
    """Record after an optimistic category change."""

    record: CanonicalRecord
    sync_state: SyncState


class MonthlyBucket(BaseModel):
    """Spend for one calendar month."""

    month: str  # Short month name, e.g. "Jan"
    year: int
    amount: int


class CategoryBreakdownRow(BaseModel):
    """Per-category spend for one month of a year."""

    month: str
    amounts: dict[str, float] = Field(default_factory=dict)
    total: float = 0.0


class CategoryBreakdown(BaseModel):
    """Monthly spend per category for one calendar year."""

    year: int
    categories: list[str]
    rows: list[CategoryBreakdownRow]
    totals: dict[str, float] = Field(default_factory=dict)
    total: float = 0.0


class DashboardStats(BaseModel):
    """Headline KPI figures."""

    total_spend: float
    invoice_count: int
    receipt_count: int
    document_count: int
    period_suffix: str = ""

    @property
    def spend_label(self) -> str:
        return f"Total Spend{self.period_suffix}"
