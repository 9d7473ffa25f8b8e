"""Integration tests for duplicate detection precedence."""

from datetime import date

import pytest

from billtracker.schemas.ingestion import DuplicateReason
from billtracker.services.duplicate_detector import DuplicateDetector


@pytest.fixture
async def existing_bill(account_factory, bill_factory):
    account = await account_factory()
    return await bill_factory(account_id=account.id, file_name="january.pdf", file_hash="a" * 64)


class TestPreScanCheck:
    """Tests for DuplicateDetector.check_pre_scan."""

    async def test_invoice_match(self, session, existing_bill):
        check = await DuplicateDetector(session).check_pre_scan("B1-100000001", "b" * 64, "other.pdf")

        assert check.is_duplicate is True
        assert check.reason == DuplicateReason.INVOICE
        assert check.existing_bill_id == existing_bill.id
        assert check.existing_invoice_number == "B1-100000001"
        assert "B1-100000001" in check.message

    async def test_file_hash_match(self, session, existing_bill):
        """Test that identical bytes under another name are a file duplicate."""
        check = await DuplicateDetector(session).check_pre_scan(None, "a" * 64, "renamed.pdf")

        assert check.reason == DuplicateReason.FILE
        assert check.existing_bill_id == existing_bill.id

    async def test_file_name_match(self, session, existing_bill):
        check = await DuplicateDetector(session).check_pre_scan(None, "b" * 64, "january.pdf")

        assert check.reason == DuplicateReason.FILE
        assert check.message == 'File "january.pdf" has already been uploaded.'

    async def test_invoice_takes_precedence_over_file(self, session, existing_bill):
        check = await DuplicateDetector(session).check_pre_scan("B1-100000001", "a" * 64, "january.pdf")

        assert check.reason == DuplicateReason.INVOICE

    async def test_no_match(self, session, existing_bill):
        check = await DuplicateDetector(session).check_pre_scan("B1-999999999", "b" * 64, "new.pdf")

        assert check.is_duplicate is False
        assert check.reason is None
        assert check.existing_bill_id is None


class TestFullCheck:
    """Tests for DuplicateDetector.check_full."""

    async def test_billing_period_match(self, session, existing_bill):
        """Test that a second bill for the same account and period is a duplicate."""
        check = await DuplicateDetector(session).check_full(
            "B1-100000099", "b" * 64, "reissued.pdf", "BA12345678", date(2024, 1, 1), date(2024, 1, 31)
        )

        assert check.reason == DuplicateReason.BILLING_PERIOD
        assert check.existing_bill_id == existing_bill.id

    async def test_file_takes_precedence_over_period(self, session, existing_bill):
        check = await DuplicateDetector(session).check_full(
            "B1-100000099", "a" * 64, "reissued.pdf", "BA12345678", date(2024, 1, 1), date(2024, 1, 31)
        )

        assert check.reason == DuplicateReason.FILE

    async def test_other_period_is_not_duplicate(self, session, existing_bill):
        check = await DuplicateDetector(session).check_full(
            "B1-100000099", "b" * 64, "february.pdf", "BA12345678", date(2024, 2, 1), date(2024, 2, 29)
        )

        assert check.is_duplicate is False

    async def test_review_bill_does_not_block_period(self, session, account_factory, bill_factory):
        """Test that only completed bills count for the billing period check."""
        account = await account_factory()
        await bill_factory(account_id=account.id, requires_review=True)

        check = await DuplicateDetector(session).check_full(
            "B1-100000099", None, "reissued.pdf", "BA12345678", date(2024, 1, 1), date(2024, 1, 31)
        )

        assert check.is_duplicate is False
