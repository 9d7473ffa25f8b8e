"""API views of persisted records and request bodies."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RecordModel(BaseModel):
    """Read model built from ORM instances, serialised in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class AccountResponse(RecordModel):
    id: UUID
    account_number: str
    account_name: str
    provider: str
    description: Optional[str] = None
    is_active: bool
    is_auto_registered: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AccountCreate(RecordModel):
    account_number: str = Field(..., min_length=1, max_length=50)
    account_name: str = Field(..., min_length=1, max_length=255)
    provider: Optional[str] = None
    description: Optional[str] = None


class AccountUpdate(RecordModel):
    account_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    provider: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class LineItemResponse(RecordModel):
    id: UUID
    bill_id: UUID
    service_number: str
    service_type: Optional[str] = None
    package_name: Optional[str] = None
    subscription_charge: Decimal
    usage_charges: Decimal
    other_charges: Decimal
    total_charge: Decimal
    usage_details: Optional[Dict[str, Any]] = None
    service_period_start: Optional[date] = None
    service_period_end: Optional[date] = None


class BillResponse(RecordModel):
    id: UUID
    service_account_id: Optional[UUID] = None
    invoice_number: str
    account_number: str
    billing_period_start: date
    billing_period_end: date
    bill_date: date
    due_date: Optional[date] = None
    current_charges: Decimal
    outstanding_amount: Decimal
    gst_amount: Decimal
    total_due: Decimal
    discounts: Decimal
    file_name: Optional[str] = None
    file_hash: Optional[str] = None
    file_size_bytes: Optional[int] = None
    processing_status: str
    requires_review: bool
    is_verified: bool
    extraction_confidence: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class BillDetailResponse(BillResponse):
    line_items: List[LineItemResponse] = Field(default_factory=list)


class LinkAccountRequest(RecordModel):
    account_id: UUID


class ServiceNumberResponse(RecordModel):
    id: UUID
    service_number: str
    service_account_id: UUID
    package_name: Optional[str] = None
    division_name: Optional[str] = None
    first_seen_bill_id: Optional[UUID] = None
    first_seen_date: Optional[date] = None
    last_seen_bill_id: Optional[UUID] = None
    last_seen_date: Optional[date] = None
    is_active: bool
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class ServiceNumberUpdate(RecordModel):
    is_active: Optional[bool] = None
    notes: Optional[str] = None
    division_name: Optional[str] = None


class MonthlyChargeResponse(RecordModel):
    id: UUID
    service_number_id: UUID
    service_number: str
    bill_id: UUID
    line_item_id: Optional[UUID] = None
    billing_period_start: date
    billing_period_end: date
    bill_date: date
    subscription_charge: Decimal
    usage_charges: Decimal
    other_charges: Decimal
    total_charge: Decimal
    package_name: Optional[str] = None
    invoice_number: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None


class AlertResponse(RecordModel):
    id: UUID
    bill_id: UUID
    service_account_id: Optional[UUID] = None
    previous_bill_id: Optional[UUID] = None
    alert_type: str
    severity: str
    current_amount: Optional[Decimal] = None
    previous_amount: Optional[Decimal] = None
    percentage_increase: Optional[Decimal] = None
    threshold_exceeded: Optional[Decimal] = None
    title: str
    description: Optional[str] = None
    status: str
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="alert_metadata")
    created_at: Optional[datetime] = None


class AlertActionRequest(RecordModel):
    by: Optional[str] = None
    notes: Optional[str] = None


class IngestionJobResponse(RecordModel):
    id: UUID
    file_name: str
    file_hash: Optional[str] = None
    state: str
    skip_duplicate_check: bool
    cancel_requested: bool
    bill_id: Optional[UUID] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class StatsResponse(RecordModel):
    total_accounts: int
    total_service_numbers: int
