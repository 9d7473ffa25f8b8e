"""Unit tests for extraction payload validation and charge consistency."""

from datetime import date
from decimal import Decimal

import pytest

from billtracker.core.exceptions import ValidationError
from billtracker.services.extraction.validator import check_charge_consistency, validate_extraction
from factories import bill_payload, line_item


class TestValidateExtraction:
    """Tests for validate_extraction."""

    def test_valid_payload(self):
        """Test that a well-formed payload is converted to typed values."""
        result = validate_extraction(bill_payload())

        assert result.invoice_number == "B1-100000001"
        assert result.account_number == "BA12345678"
        assert result.billing_period_start == date(2024, 1, 1)
        assert result.total_due == Decimal("100.0")
        assert len(result.line_items) == 1
        assert result.line_items[0].subscription_charge == Decimal("80.0")
        assert result.discounts == Decimal("0")

    @pytest.mark.parametrize("field", ["invoiceNumber", "totalDue", "lineItems", "billDate", "confidence"])
    def test_missing_required_field(self, field):
        """Test that each required field is enforced and named."""
        payload = bill_payload()
        del payload[field]

        with pytest.raises(ValidationError) as exc_info:
            validate_extraction(payload)

        assert exc_info.value.field == field

    def test_non_object_payload(self):
        """Test that a list payload is rejected."""
        with pytest.raises(ValidationError):
            validate_extraction([bill_payload()])

    def test_bad_date_format(self):
        """Test that dates must be ISO formatted."""
        payload = bill_payload()
        payload["billDate"] = "31/01/2024"

        with pytest.raises(ValidationError) as exc_info:
            validate_extraction(payload)

        assert exc_info.value.field == "billDate"

    def test_period_end_before_start(self):
        """Test that an inverted billing period is rejected."""
        payload = bill_payload(period_start="2024-02-01", period_end="2024-01-01")

        with pytest.raises(ValidationError) as exc_info:
            validate_extraction(payload)

        assert exc_info.value.field == "billingPeriodEnd"

    def test_amount_must_be_numeric(self):
        """Test that string amounts are rejected."""
        payload = bill_payload()
        payload["totalDue"] = "100.00"

        with pytest.raises(ValidationError) as exc_info:
            validate_extraction(payload)

        assert exc_info.value.field == "totalDue"

    def test_confidence_range(self):
        """Test that confidence must lie between 0 and 100."""
        payload = bill_payload()
        payload["confidence"] = 140

        with pytest.raises(ValidationError):
            validate_extraction(payload)

    def test_line_item_total_mismatch_names_item(self):
        """Test that an inconsistent line item is reported by index."""
        items = [
            line_item("7771001", 50.0),
            {"serviceNumber": "7771002", "subscriptionCharge": 10.0, "usageCharges": 5.0,
             "otherCharges": 0.0, "totalCharge": 40.0},
        ]

        with pytest.raises(ValidationError) as exc_info:
            validate_extraction(bill_payload(line_items=items))

        assert exc_info.value.field == "lineItems[1].totalCharge"

    def test_line_item_missing_service_number(self):
        """Test that every line item needs a service number."""
        items = [{"totalCharge": 10.0}]

        with pytest.raises(ValidationError) as exc_info:
            validate_extraction(bill_payload(line_items=items))

        assert exc_info.value.field == "lineItems[0].serviceNumber"

    def test_line_item_defaults(self):
        """Test that missing charge parts default and the total is derived."""
        items = [{"serviceNumber": "7771001", "subscriptionCharge": 30.0, "usageCharges": 12.5}]
        payload = bill_payload(line_items=[line_item("7771009", 1.0)])
        payload["lineItems"] = items

        result = validate_extraction(payload)

        item = result.line_items[0]
        assert item.other_charges == Decimal("0")
        assert item.total_charge == Decimal("42.5")

    def test_other_charges_derived_from_total(self):
        """Test that other charges fill the gap when only the total is given."""
        payload = bill_payload()
        payload["lineItems"] = [{"serviceNumber": "7771001", "subscriptionCharge": 30.0, "totalCharge": 35.0}]

        result = validate_extraction(payload)

        assert result.line_items[0].other_charges == Decimal("5.0")


class TestChargeConsistency:
    """Tests for check_charge_consistency."""

    def test_consistent_bill(self):
        """Test that matching totals are consistent."""
        extraction = validate_extraction(bill_payload(line_items=[line_item("1", 60.0), line_item("2", 40.0)]))

        result = check_charge_consistency(extraction)

        assert result.consistent is True
        assert result.expected_total == Decimal("100.0")
        assert result.line_items_total == Decimal("100.0")

    def test_gst_and_outstanding_are_excluded(self):
        """Test that GST and brought-forward amounts are not expected on line items."""
        payload = bill_payload(line_items=[line_item("1", 100.0)], total_due=158.0)
        payload["gstAmount"] = 8.0
        payload["outstanding"] = 50.0

        result = check_charge_consistency(validate_extraction(payload))

        assert result.consistent is True
        assert result.difference == Decimal("0.0")

    def test_inconsistent_bill(self):
        """Test that a large gap is flagged."""
        extraction = validate_extraction(bill_payload(line_items=[line_item("1", 60.0)], total_due=100.0))

        result = check_charge_consistency(extraction)

        assert result.consistent is False
        assert result.difference == Decimal("40.0")

    def test_tolerance_grows_with_line_items(self):
        """Test that per-line rounding is absorbed on long bills."""
        items = [line_item(str(n), 10.0) for n in range(300)]
        extraction = validate_extraction(bill_payload(line_items=items, total_due=3002.5))

        result = check_charge_consistency(extraction, tolerance=Decimal("1.0"))

        assert result.tolerance == Decimal("3.00")
        assert result.consistent is True
