"""SQLAlchemy models for all database tables."""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billtracker.core.database import Base

Money = Numeric(12, 2)


class ServiceAccount(Base):
    """Customer account with the ISP."""

    __tablename__ = "service_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_auto_registered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Bill(Base):
    """One ingested invoice."""

    __tablename__ = "bills"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    service_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("service_accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    invoice_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    account_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    bill_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    current_charges: Mapped[Decimal] = mapped_column(Money, nullable=False)
    outstanding_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    gst_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_due: Mapped[Decimal] = mapped_column(Money, nullable=False)
    discounts: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    file_path: Mapped[str | None] = mapped_column(String, nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    file_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    file_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processing_status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="pending"
    )  # pending | processing | completed | failed | review_required
    requires_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    extraction_confidence: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    extracted_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    processed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    # Relationships
    line_items: Mapped[list["LineItem"]] = relationship(
        "LineItem",
        back_populates="bill",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LineItem.service_number",
    )
    service_account: Mapped["ServiceAccount | None"] = relationship(
        "ServiceAccount", lazy="selectin"
    )


class LineItem(Base):
    """Per-service-number charge line of a bill."""

    __tablename__ = "line_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    bill_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    service_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    package_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subscription_charge: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    usage_charges: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    other_charges: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_charge: Mapped[Decimal] = mapped_column(Money, nullable=False)
    usage_details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    service_period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    service_period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    bill: Mapped["Bill"] = relationship("Bill", back_populates="line_items")


class ServiceNumber(Base):
    """A phone or data line seen on an account's bills."""

    __tablename__ = "service_numbers"
    __table_args__ = (
        UniqueConstraint(
            "service_number", "service_account_id", name="uq_service_numbers_number_account"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    service_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    service_account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    package_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    division_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_seen_bill_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bills.id", ondelete="SET NULL"), nullable=True
    )
    first_seen_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_seen_bill_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bills.id", ondelete="SET NULL"), nullable=True
    )
    last_seen_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    service_account: Mapped["ServiceAccount"] = relationship("ServiceAccount", lazy="selectin")


class MonthlyCharge(Base):
    """Charges of one service number on one bill."""

    __tablename__ = "service_number_monthly_charges"
    __table_args__ = (
        UniqueConstraint("service_number", "bill_id", name="uq_monthly_charges_number_bill"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    service_number_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_numbers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    bill_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_item_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("line_items.id", ondelete="SET NULL"), nullable=True
    )
    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    bill_date: Mapped[date] = mapped_column(Date, nullable=False)
    subscription_charge: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    usage_charges: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    other_charges: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_charge: Mapped[Decimal] = mapped_column(Money, nullable=False)
    package_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Alert(Base):
    """Anomaly raised when comparing a bill with the previous one."""

    __tablename__ = "alerts"
    __table_args__ = (
        UniqueConstraint(
            "bill_id", "alert_type", "previous_bill_id", name="uq_alerts_bill_type_previous"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    bill_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("service_accounts.id", ondelete="CASCADE"), nullable=True, index=True
    )
    previous_bill_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bills.id", ondelete="SET NULL"), nullable=True
    )
    alert_type: Mapped[str] = mapped_column(
        String(30), nullable=False
    )  # high_charge | new_line_item | unusual_usage | missing_line_item
    severity: Mapped[str] = mapped_column(
        String(20), nullable=False, default="medium"
    )  # low | medium | high | critical
    current_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    previous_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    percentage_increase: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    threshold_exceeded: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active"
    )  # active | acknowledged | resolved | dismissed
    acknowledged_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    acknowledged_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    alert_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class IngestionJob(Base):
    """Durable record of one ingestion run and its pipeline state."""

    __tablename__ = "ingestion_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    file_path: Mapped[str | None] = mapped_column(String, nullable=True)
    state: Mapped[str] = mapped_column(String(30), nullable=False, default="uploaded")
    skip_duplicate_check: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    bill_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bills.id", ondelete="SET NULL"), nullable=True
    )
    error_kind: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
