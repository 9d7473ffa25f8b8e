"""Records passed between the ingestion pipeline stages and returned to callers."""

from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from billtracker.schemas.extraction import CamelModel, QuickScanResult


class PipelineState(str, Enum):
    """States of one ingestion run."""

    UPLOADED = "uploaded"
    QUICK_SCANNED = "quick_scanned"
    DUPLICATE_PENDING = "duplicate_pending"
    VALIDATING = "validating"
    EXTRACTED = "extracted"
    ACCOUNT_RESOLVED = "account_resolved"
    PERSISTED = "persisted"
    POST_PROCESSED = "post_processed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class IngestionOutcome(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DuplicateReason(str, Enum):
    INVOICE = "invoice"
    FILE = "file"
    BILLING_PERIOD = "billing_period"


class ErrorInfo(CamelModel):
    """Error kind and message reported to callers instead of a traceback."""

    kind: str
    message: str


class UploadedFile(BaseModel):
    """Raw upload handed to the pipeline."""

    file_name: str
    content: bytes


class StoredFile(BaseModel):
    """A file placed in content-addressed storage."""

    identity: str
    path: str
    size_bytes: int
    reused: bool = False


class DuplicateCheck(CamelModel):
    """Result of a duplicate lookup. ``existing_bill_id`` is set when one matched."""

    is_duplicate: bool = False
    reason: Optional[DuplicateReason] = None
    message: Optional[str] = None
    existing_bill_id: Optional[UUID] = None
    existing_invoice_number: Optional[str] = None

    @classmethod
    def clear(cls) -> "DuplicateCheck":
        return cls(is_duplicate=False)


class AccountResolution(BaseModel):
    """Account looked up or created for a bill."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    account: Any
    auto_registered: bool = False


class ServiceNumberDetection(CamelModel):
    service_number: str
    package_name: Optional[str] = None
    is_new: bool


class ChargeRecordingSummary(CamelModel):
    recorded: int = 0
    total: int = 0

    @property
    def skipped(self) -> int:
        return self.total - self.recorded


class PreScanResult(CamelModel):
    """Outcome of the quick scan plus the first duplicate phase."""

    job_id: Optional[UUID] = None
    state: PipelineState
    scan: Optional[QuickScanResult] = None
    duplicate: DuplicateCheck = Field(default_factory=DuplicateCheck.clear)
    account_exists: bool = False
    file_identity: Optional[str] = None
    error: Optional[ErrorInfo] = None


class IngestionResult(CamelModel):
    """Outcome of a full ingestion run."""

    job_id: Optional[UUID] = None
    outcome: IngestionOutcome
    state: PipelineState
    bill_id: Optional[UUID] = None
    invoice_number: Optional[str] = None
    account_id: Optional[UUID] = None
    account_auto_registered: bool = False
    requires_review: bool = False
    page_count: int = 0
    duplicate: Optional[DuplicateCheck] = None
    new_service_numbers: List[ServiceNumberDetection] = Field(default_factory=list)
    charges_recorded: int = 0
    alert_ids: List[UUID] = Field(default_factory=list)
    warnings: List[ErrorInfo] = Field(default_factory=list)
    error: Optional[ErrorInfo] = None


class BillComparison(CamelModel):
    """Difference between a bill and the one before it."""

    current_bill_id: UUID
    previous_bill_id: Optional[UUID] = None
    current_total: Decimal
    previous_total: Optional[Decimal] = None
    difference: Decimal = Decimal("0")
    percentage_change: Decimal = Decimal("0")
    has_increased: bool = False
    new_service_numbers: List[str] = Field(default_factory=list)
    removed_service_numbers: List[str] = Field(default_factory=list)


class MonthlyTotal(CamelModel):
    month: int
    month_name: str
    total: Decimal


class ChargeTotals(CamelModel):
    total_subscription: Decimal
    total_usage: Decimal
    total_other: Decimal
    total_all: Decimal
    month_count: int

