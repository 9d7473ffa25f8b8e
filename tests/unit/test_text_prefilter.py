"""Unit tests for the offline invoice/account number prefilter."""

from billtracker.services.pdf.text_prefilter import (
    HEADER_CHARS,
    extract_numbers_from_pdf,
    extract_numbers_from_text,
)
from factories import make_pdf


class TestExtractNumbersFromText:
    """Regex extraction over header text."""

    def test_provider_formats_found(self):
        """Test that provider-format invoice and account numbers are found."""
        text = "DHIRAAGU\nInvoice No: B1-123456789\nAccount: BA12345678\nTotal Due MVR 500.00"

        numbers = extract_numbers_from_text(text)

        assert numbers.invoice_number == "B1-123456789"
        assert numbers.account_number == "BA12345678"
        assert numbers.is_complete is True

    def test_lowercase_text_is_normalised(self):
        """Test that matching is case-insensitive and results are upper-cased."""
        numbers = extract_numbers_from_text("invoice number: b2-00012345 account no ba987654321")

        assert numbers.invoice_number == "B2-00012345"
        assert numbers.account_number == "BA987654321"

    def test_generic_labelled_invoice(self):
        """Test the generic labelled invoice fallback."""
        numbers = extract_numbers_from_text("INVOICE #: INV-4455667\nSERVICE ACCOUNT NO: AC123456789")

        assert numbers.invoice_number == "INV-4455667"
        assert numbers.account_number == "AC123456789"

    def test_invoice_only(self):
        """Test that a missing account number leaves the result incomplete."""
        numbers = extract_numbers_from_text("Bill No: B1-555666777")

        assert numbers.invoice_number == "B1-555666777"
        assert numbers.account_number is None
        assert numbers.is_complete is False

    def test_nothing_found(self):
        """Test text without identifiers."""
        numbers = extract_numbers_from_text("Thank you for choosing us")

        assert numbers.invoice_number is None
        assert numbers.account_number is None

    def test_empty_text(self):
        """Test that empty or missing text is handled."""
        assert extract_numbers_from_text("").invoice_number is None
        assert extract_numbers_from_text(None).account_number is None

    def test_only_header_is_searched(self):
        """Test that identifiers beyond the header window are ignored."""
        text = "x" * (HEADER_CHARS + 10) + " B1-123456789"

        assert extract_numbers_from_text(text).invoice_number is None


class TestExtractNumbersFromPdf:
    """Extraction straight from PDF bytes."""

    def test_reads_text_layer(self):
        """Test that identifiers are read from a generated PDF."""
        numbers = extract_numbers_from_pdf(make_pdf("B1-246813579", "BA11223344"))

        assert numbers.invoice_number == "B1-246813579"
        assert numbers.account_number == "BA11223344"

    def test_unreadable_pdf_yields_empty_result(self):
        """Test that garbage bytes never raise."""
        numbers = extract_numbers_from_pdf(b"definitely not a pdf")

        assert numbers.invoice_number is None
        assert numbers.account_number is None
