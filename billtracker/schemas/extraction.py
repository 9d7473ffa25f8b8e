"""Typed extraction payloads.

Field names are snake_case in Python and camelCase on the wire, matching
the JSON the vision model is asked to return.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising to camelCase and accepting either casing."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExtractedNumbers(CamelModel):
    """Identifiers found by the text prefilter."""

    invoice_number: Optional[str] = None
    account_number: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.invoice_number and self.account_number)


class QuickScanStrategy(str, Enum):
    """Ways of reading identifiers off the first page."""

    TEXT_PREFILTER = "text_prefilter"
    VISION = "vision"


class QuickScanResult(CamelModel):
    """Identifiers read during the quick scan. Confidence is informational."""

    invoice_number: Optional[str] = None
    account_number: Optional[str] = None
    confidence: float = Field(default=0, ge=0, le=100)
    strategy: Optional[QuickScanStrategy] = None


class LineItemExtraction(CamelModel):
    """One per-service-number charge line."""

    service_number: str
    service_type: Optional[str] = None
    package_name: Optional[str] = None
    subscription_charge: Decimal = Decimal("0")
    usage_charges: Decimal = Decimal("0")
    other_charges: Decimal = Decimal("0")
    total_charge: Decimal
    usage_details: Optional[Dict[str, Any]] = None
    service_period_start: Optional[date] = None
    service_period_end: Optional[date] = None


class BillExtractionResult(CamelModel):
    """Validated result of a full bill extraction."""

    account_number: str
    invoice_number: str
    billing_period_start: date
    billing_period_end: date
    bill_date: date
    due_date: Optional[date] = None
    current_charges: Decimal
    outstanding: Decimal
    total_due: Decimal
    gst_amount: Decimal
    discounts: Decimal = Decimal("0")
    line_items: List[LineItemExtraction] = Field(default_factory=list)
    confidence: float = Field(ge=0, le=100)

    @property
    def line_items_total(self) -> Decimal:
        return sum((item.total_charge for item in self.line_items), Decimal("0"))


class ChargeConsistency(CamelModel):
    """Outcome of comparing line items against the bill totals."""

    consistent: bool
    expected_total: Decimal
    line_items_total: Decimal
    difference: Decimal
    tolerance: Decimal


class RenderOptions(BaseModel):
    """Rasterization parameters."""

    dpi: int = 200
    max_width: int = 2400
    max_height: int = 3200


class PageImage(BaseModel):
    """A rendered PDF page."""

    page_number: int = Field(..., ge=1, description="1-indexed page number")
    data: bytes
    mime_type: str = "image/png"
    width: int
    height: int
