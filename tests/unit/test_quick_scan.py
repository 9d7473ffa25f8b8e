"""Unit tests for the quick scan strategy chain."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from billtracker.core.cancellation import CancellationToken
from billtracker.core.exceptions import ConfigurationError, PipelineCancelled
from billtracker.schemas.extraction import ExtractedNumbers, PageImage, QuickScanResult, QuickScanStrategy
from billtracker.services.extraction import quick_scan
from billtracker.services.extraction.quick_scan import QuickScanner


def _page() -> PageImage:
    return PageImage(page_number=1, data=b"png", width=10, height=10)


@pytest.fixture
def extractor():
    mock = MagicMock()
    mock.quick_extract = AsyncMock(return_value=QuickScanResult(
        invoice_number="B1-999999999",
        account_number="BA99999999",
        confidence=90,
        strategy=QuickScanStrategy.VISION,
    ))
    return mock


@pytest.fixture
def rasterizer():
    mock = MagicMock()
    mock.render_pages = AsyncMock(return_value=[_page()])
    return mock


class TestQuickScanner:
    """Tests for QuickScanner."""

    async def test_text_prefilter_wins_without_vision_call(self, extractor, rasterizer):
        """Test that a text hit skips rendering and the vision model."""
        numbers = ExtractedNumbers(invoice_number="B1-123456789", account_number="BA12345678")
        with patch.object(quick_scan, "extract_numbers_from_pdf", return_value=numbers):
            scanner = QuickScanner(extractor, rasterizer, strategies=["text_prefilter", "vision"])
            result = await scanner.scan("/tmp/bill.pdf")

        assert result.invoice_number == "B1-123456789"
        assert result.strategy == QuickScanStrategy.TEXT_PREFILTER
        assert result.confidence == 95
        rasterizer.render_pages.assert_not_called()
        extractor.quick_extract.assert_not_called()

    async def test_invoice_only_text_confidence(self, extractor, rasterizer):
        """Test the lower confidence when only the invoice is found."""
        numbers = ExtractedNumbers(invoice_number="B1-123456789")
        with patch.object(quick_scan, "extract_numbers_from_pdf", return_value=numbers):
            result = await QuickScanner(extractor, rasterizer, strategies=["text_prefilter"]).scan("/tmp/b.pdf")

        assert result.confidence == 85
        assert result.account_number is None

    async def test_falls_back_to_vision(self, extractor, rasterizer):
        """Test that the vision strategy runs when the text layer is empty."""
        with patch.object(quick_scan, "extract_numbers_from_pdf", return_value=ExtractedNumbers()):
            scanner = QuickScanner(extractor, rasterizer, strategies=["text_prefilter", "vision"])
            result = await scanner.scan("/tmp/bill.pdf")

        assert result.invoice_number == "B1-999999999"
        assert result.strategy == QuickScanStrategy.VISION
        args, kwargs = rasterizer.render_pages.call_args
        assert kwargs["pages"] == [1]

    async def test_no_strategy_succeeds(self, extractor, rasterizer):
        """Test that an exhausted chain yields an empty zero-confidence result."""
        extractor.quick_extract.return_value = QuickScanResult(confidence=10, strategy=QuickScanStrategy.VISION)
        with patch.object(quick_scan, "extract_numbers_from_pdf", return_value=ExtractedNumbers()):
            result = await QuickScanner(extractor, rasterizer).scan("/tmp/bill.pdf")

        assert result.invoice_number is None
        assert result.confidence == 0

    async def test_vision_only_configuration(self, extractor, rasterizer):
        """Test that the chain follows the configured order."""
        with patch.object(quick_scan, "extract_numbers_from_pdf") as text_scan:
            result = await QuickScanner(extractor, rasterizer, strategies=["vision"]).scan("/tmp/bill.pdf")

        text_scan.assert_not_called()
        assert result.strategy == QuickScanStrategy.VISION

    async def test_cancelled_token_stops_scan(self, extractor, rasterizer):
        """Test that a tripped token prevents any strategy from running."""
        token = CancellationToken()
        token.cancel()

        with pytest.raises(PipelineCancelled):
            await QuickScanner(extractor, rasterizer, strategies=["vision"]).scan("/tmp/bill.pdf", token)
        rasterizer.render_pages.assert_not_called()

    def test_unknown_strategy(self, extractor, rasterizer):
        """Test that a misconfigured strategy name is rejected."""
        with pytest.raises(ConfigurationError):
            QuickScanner(extractor, rasterizer, strategies=["ocr"])

    def test_empty_strategy_list(self, extractor, rasterizer):
        """Test that at least one strategy is required."""
        with pytest.raises(ConfigurationError):
            QuickScanner(extractor, rasterizer, strategies=[])
