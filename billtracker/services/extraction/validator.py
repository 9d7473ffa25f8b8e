"""Validation of raw extraction payloads into typed results."""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from billtracker.core.config import settings
from billtracker.core.exceptions import ValidationError
from billtracker.schemas.extraction import BillExtractionResult, ChargeConsistency, LineItemExtraction
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)

REQUIRED_FIELDS = (
    "accountNumber",
    "invoiceNumber",
    "billingPeriodStart",
    "billingPeriodEnd",
    "billDate",
    "currentCharges",
    "outstanding",
    "totalDue",
    "gstAmount",
    "lineItems",
    "confidence",
)
DATE_FIELDS = ("billingPeriodStart", "billingPeriodEnd", "billDate")
MONEY_FIELDS = ("currentCharges", "outstanding", "totalDue", "gstAmount")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ZERO = Decimal("0")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _to_decimal(value: Any, field: str) -> Decimal:
    if not _is_number(value):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        result = Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError(f"{field} must be a number", field=field, original_error=e)
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def _to_date(value: Any, field: str) -> date:
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValidationError(f"{field} must be in YYYY-MM-DD format", field=field)
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"{field} is not a valid date: {value}", field=field, original_error=e)


def _optional_date(value: Any, field: str) -> Optional[date]:
    if value is None or value == "":
        return None
    return _to_date(value, field)


def _charge(item: Dict[str, Any], key: str, field: str) -> Optional[Decimal]:
    value = item.get(key)
    if value is None:
        return None
    amount = _to_decimal(value, field)
    if amount < _ZERO:
        raise ValidationError(f"{field} must not be negative", field=field)
    return amount


def _validate_line_item(item: Any, index: int, tolerance: Decimal) -> LineItemExtraction:
    prefix = f"lineItems[{index}]"
    if not isinstance(item, dict):
        raise ValidationError(f"{prefix} must be an object", field=prefix)

    service_number = item.get("serviceNumber")
    if not isinstance(service_number, (str, int)) or isinstance(service_number, bool) or not str(service_number).strip():
        raise ValidationError(f"{prefix}.serviceNumber is required", field=f"{prefix}.serviceNumber")

    subscription = _charge(item, "subscriptionCharge", f"{prefix}.subscriptionCharge") or _ZERO
    usage = _charge(item, "usageCharges", f"{prefix}.usageCharges") or _ZERO
    other = _charge(item, "otherCharges", f"{prefix}.otherCharges")
    total = _charge(item, "totalCharge", f"{prefix}.totalCharge")

    if total is None:
        other = other if other is not None else _ZERO
        total = subscription + usage + other
    elif other is None:
        other = max(total - subscription - usage, _ZERO)

    if abs(total - (subscription + usage + other)) > tolerance:
        raise ValidationError(
            f"{prefix}.totalCharge {total} does not equal subscription + usage + other "
            f"({subscription + usage + other})",
            field=f"{prefix}.totalCharge",
        )

    usage_details = item.get("usageDetails")
    return LineItemExtraction(
        service_number=str(service_number).strip(),
        service_type=item.get("serviceType") or None,
        package_name=item.get("packageName") or None,
        subscription_charge=subscription,
        usage_charges=usage,
        other_charges=other,
        total_charge=total,
        usage_details=usage_details if isinstance(usage_details, dict) else None,
        service_period_start=_optional_date(item.get("servicePeriodStart"), f"{prefix}.servicePeriodStart"),
        service_period_end=_optional_date(item.get("servicePeriodEnd"), f"{prefix}.servicePeriodEnd"),
    )


def validate_extraction(
    raw: Any,
    line_item_tolerance: Optional[Decimal] = None,
) -> BillExtractionResult:
    """Validate a raw extraction payload.

    Args:
        raw: Parsed JSON returned by the vision model
        line_item_tolerance: Allowed gap between a line item's total and
            the sum of its parts; defaults to ``LINE_ITEM_TOLERANCE``

    Returns:
        BillExtractionResult with Decimal amounts and parsed dates

    Raises:
        ValidationError: Naming the first offending field
    """
    if not isinstance(raw, dict):
        raise ValidationError("Extraction payload must be a JSON object")

    for field in REQUIRED_FIELDS:
        if raw.get(field) is None:
            raise ValidationError(f"Missing required field: {field}", field=field)

    for field in ("accountNumber", "invoiceNumber"):
        if not isinstance(raw[field], (str, int)) or isinstance(raw[field], bool) or not str(raw[field]).strip():
            raise ValidationError(f"{field} must be a non-empty string", field=field)

    confidence = raw["confidence"]
    if not _is_number(confidence) or not 0 <= confidence <= 100:
        raise ValidationError("confidence must be a number between 0 and 100", field="confidence")

    dates = {field: _to_date(raw[field], field) for field in DATE_FIELDS}
    if dates["billingPeriodEnd"] < dates["billingPeriodStart"]:
        raise ValidationError("billingPeriodEnd is before billingPeriodStart", field="billingPeriodEnd")
    due_date = _optional_date(raw.get("dueDate"), "dueDate")

    amounts = {field: _to_decimal(raw[field], field) for field in MONEY_FIELDS}
    discounts = _to_decimal(raw["discounts"], "discounts") if raw.get("discounts") is not None else _ZERO

    if not isinstance(raw["lineItems"], list):
        raise ValidationError("lineItems must be an array", field="lineItems")

    tolerance = Decimal(str(
        line_item_tolerance if line_item_tolerance is not None else settings.pipeline.line_item_tolerance
    ))
    line_items: List[LineItemExtraction] = [
        _validate_line_item(item, index, tolerance) for index, item in enumerate(raw["lineItems"])
    ]

    return BillExtractionResult(
        account_number=str(raw["accountNumber"]).strip(),
        invoice_number=str(raw["invoiceNumber"]).strip(),
        billing_period_start=dates["billingPeriodStart"],
        billing_period_end=dates["billingPeriodEnd"],
        bill_date=dates["billDate"],
        due_date=due_date,
        current_charges=amounts["currentCharges"],
        outstanding=amounts["outstanding"],
        total_due=amounts["totalDue"],
        gst_amount=amounts["gstAmount"],
        discounts=discounts,
        line_items=line_items,
        confidence=float(confidence),
    )


def check_charge_consistency(
    extraction: BillExtractionResult,
    tolerance: Optional[Decimal] = None,
) -> ChargeConsistency:
    """Compare the line-item sum with the bill's own charges.

    The expected sum is ``total_due - outstanding - gst_amount - discounts``.
    The allowed gap is ``max(tolerance, 0.01 * line item count)`` so rounding
    on each line is absorbed.

    Args:
        extraction: Validated extraction
        tolerance: Base tolerance; defaults to ``CHARGE_TOLERANCE``

    Returns:
        ChargeConsistency describing the comparison
    """
    base = Decimal(str(tolerance if tolerance is not None else settings.pipeline.charge_tolerance))
    allowed = max(base, Decimal("0.01") * len(extraction.line_items))

    expected = extraction.total_due - extraction.outstanding - extraction.gst_amount - extraction.discounts
    actual = extraction.line_items_total
    difference = abs(actual - expected)

    return ChargeConsistency(
        consistent=difference <= allowed,
        expected_total=expected,
        line_items_total=actual,
        difference=difference,
        tolerance=allowed,
    )
