"""Quick scan: read invoice and account numbers before full extraction.

Strategies run in configured order; the first one that finds an invoice
number wins. The offline text prefilter normally goes first so the vision
model is only called for scanned bills without a text layer.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from billtracker.core.cancellation import CancellationToken
from billtracker.core.config import settings
from billtracker.core.exceptions import ConfigurationError
from billtracker.schemas.extraction import QuickScanResult, QuickScanStrategy
from billtracker.services.extraction.bill_extractor import BillExtractor
from billtracker.services.pdf.rasterizer import PdfRasterizer, quick_scan_options
from billtracker.services.pdf.text_prefilter import extract_numbers_from_pdf
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)

TEXT_BOTH_CONFIDENCE = 95.0
TEXT_INVOICE_ONLY_CONFIDENCE = 85.0

StrategyFn = Callable[[str, CancellationToken], Awaitable[Optional[QuickScanResult]]]


class QuickScanner:
    """Runs the quick-scan strategy chain over a stored PDF."""

    def __init__(
        self,
        extractor: BillExtractor,
        rasterizer: PdfRasterizer,
        strategies: Optional[Sequence[str]] = None,
    ):
        self.extractor = extractor
        self.rasterizer = rasterizer
        handlers: Dict[QuickScanStrategy, StrategyFn] = {
            QuickScanStrategy.TEXT_PREFILTER: self._text_prefilter,
            QuickScanStrategy.VISION: self._vision,
        }
        names = strategies if strategies is not None else settings.pipeline.quick_scan_strategies
        try:
            self.strategies: List[QuickScanStrategy] = [QuickScanStrategy(name) for name in names]
        except ValueError as e:
            raise ConfigurationError(f"Unknown quick scan strategy in {list(names)}", original_error=e)
        if not self.strategies:
            raise ConfigurationError("At least one quick scan strategy must be configured")
        self._handlers = handlers

    async def scan(self, path: str, token: Optional[CancellationToken] = None) -> QuickScanResult:
        """Run strategies in order until one finds an invoice number.

        Args:
            path: Path of the stored PDF
            token: Cancellation token checked between strategies

        Returns:
            The first successful result, else an empty zero-confidence result
        """
        token = token or CancellationToken()
        for strategy in self.strategies:
            token.raise_if_cancelled()
            result = await self._handlers[strategy](path, token)
            if result is not None and result.invoice_number:
                LOGGER.info(
                    f"Quick scan resolved by {strategy.value}",
                    extra={"invoice_number": result.invoice_number, "confidence": result.confidence}
                )
                return result
            LOGGER.info(f"Quick scan strategy {strategy.value} found no invoice number")

        return QuickScanResult(confidence=0)

    async def _text_prefilter(self, path: str, token: CancellationToken) -> Optional[QuickScanResult]:
        numbers = await token.run(asyncio.to_thread(extract_numbers_from_pdf, path))
        if not numbers.invoice_number:
            return None
        return QuickScanResult(
            invoice_number=numbers.invoice_number,
            account_number=numbers.account_number,
            confidence=TEXT_BOTH_CONFIDENCE if numbers.is_complete else TEXT_INVOICE_ONLY_CONFIDENCE,
            strategy=QuickScanStrategy.TEXT_PREFILTER,
        )

    async def _vision(self, path: str, token: CancellationToken) -> Optional[QuickScanResult]:
        pages = await token.run(self.rasterizer.render_pages(path, quick_scan_options(), pages=[1]))
        token.raise_if_cancelled()
        return await token.run(self.extractor.quick_extract(pages[0]))
