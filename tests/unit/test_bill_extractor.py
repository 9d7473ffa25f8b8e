"""Unit tests for the vision-model bill extractor."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from billtracker.core.exceptions import APIClientError, ConfigurationError
from billtracker.schemas.extraction import PageImage, QuickScanStrategy
from billtracker.services.extraction.bill_extractor import BillExtractor


def _page(number: int = 1) -> PageImage:
    return PageImage(page_number=number, data=b"png", width=100, height=140)


@pytest.fixture
def client():
    mock = MagicMock()
    mock.image_part = MagicMock(side_effect=lambda data, mime_type: ("image", data))
    mock.generate_content = AsyncMock()
    return mock


class TestQuickExtract:
    """Tests for BillExtractor.quick_extract."""

    async def test_parses_identifiers(self, client):
        """Test that identifiers and confidence are read from the response."""
        client.generate_content.return_value = (
            '{"invoiceNumber": "B1-123456789", "accountNumber": "BA12345678", "confidence": 88}'
        )

        result = await BillExtractor(client).quick_extract(_page())

        assert result.invoice_number == "B1-123456789"
        assert result.account_number == "BA12345678"
        assert result.confidence == 88
        assert result.strategy == QuickScanStrategy.VISION

    async def test_unknown_values_become_none(self, client):
        """Test that the UNKNOWN placeholder is treated as missing."""
        client.generate_content.return_value = (
            '```json\n{"invoiceNumber": "UNKNOWN", "accountNumber": " ", "confidence": "high"}\n```'
        )

        result = await BillExtractor(client).quick_extract(_page())

        assert result.invoice_number is None
        assert result.account_number is None
        assert result.confidence == 0

    async def test_confidence_is_clamped(self, client):
        client.generate_content.return_value = '{"invoiceNumber": "B1-123456789", "confidence": 140}'

        result = await BillExtractor(client).quick_extract(_page())

        assert result.confidence == 100

    async def test_invalid_json(self, client):
        """Test that a non-JSON response is an external service failure."""
        client.generate_content.return_value = "I could not read this bill."

        with pytest.raises(APIClientError):
            await BillExtractor(client).quick_extract(_page())

    async def test_empty_response(self, client):
        client.generate_content.return_value = ""

        with pytest.raises(APIClientError):
            await BillExtractor(client).quick_extract(_page())


class TestExtractBill:
    """Tests for BillExtractor.extract_bill."""

    async def test_sends_every_page_then_prompt(self, client):
        """Test that all page images precede the prompt in the request."""
        client.generate_content.return_value = '{"invoiceNumber": "B1-123456789", "lineItems": []}'

        payload = await BillExtractor(client).extract_bill([_page(1), _page(2)])

        assert payload["invoiceNumber"] == "B1-123456789"
        contents = client.generate_content.call_args.kwargs["contents"]
        assert len(contents) == 3
        assert isinstance(contents[-1], str)
        config = client.generate_content.call_args.kwargs["generation_config"]
        assert config["response_mime_type"] == "application/json"

    async def test_no_pages(self, client):
        with pytest.raises(APIClientError):
            await BillExtractor(client).extract_bill([])
        client.generate_content.assert_not_called()

    async def test_array_response_rejected(self, client):
        """Test that a JSON array is not accepted as a bill."""
        client.generate_content.return_value = "[1, 2, 3]"

        with pytest.raises(APIClientError):
            await BillExtractor(client).extract_bill([_page()])

    async def test_client_errors_propagate(self, client):
        client.generate_content.side_effect = APIClientError("quota exceeded")

        with pytest.raises(APIClientError, match="quota exceeded"):
            await BillExtractor(client).extract_bill([_page()])


class TestClientConfiguration:
    """Tests for lazy client creation."""

    def test_missing_api_key(self):
        """Test that a missing key is a configuration error, raised on first use."""
        extractor = BillExtractor()
        with patch("billtracker.services.extraction.bill_extractor.settings") as mock_settings:
            mock_settings.gemini_api_key = ""
            with pytest.raises(ConfigurationError):
                extractor.client
