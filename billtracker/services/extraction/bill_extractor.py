"""Vision-model extraction of bill data from rendered pages."""

from typing import Any, Dict, List, Optional

from billtracker.core.config import settings
from billtracker.core.exceptions import APIClientError, ConfigurationError
from billtracker.core.gemini_client import GeminiClient
from billtracker.schemas.extraction import PageImage, QuickScanResult, QuickScanStrategy
from billtracker.services.extraction.prompts import QUICK_SCAN_PROMPT, build_extraction_prompt
from billtracker.utils.json_parser import parse_json_safely
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BillExtractor:
    """Sends page images to Gemini and parses the JSON it returns.

    Every failure surfaces as ``APIClientError``: SDK errors, empty
    responses, and responses that are not a JSON object.
    """

    def __init__(self, client: Optional[GeminiClient] = None):
        self._client = client

    @property
    def client(self) -> GeminiClient:
        if self._client is None:
            if not settings.gemini_api_key:
                raise ConfigurationError("GEMINI_API_KEY is not configured")
            self._client = GeminiClient(
                api_key=settings.gemini_api_key,
                model=settings.gemini_model,
                timeout=settings.llm.timeout,
                max_retries=settings.llm.max_retries,
            )
        return self._client

    def _generation_config(self) -> Dict[str, Any]:
        return {
            "temperature": settings.llm.temperature,
            "max_output_tokens": settings.llm.max_output_tokens,
            "response_mime_type": "application/json",
        }

    async def _request_json(self, images: List[PageImage], prompt: str, purpose: str) -> Dict[str, Any]:
        contents = [self.client.image_part(image.data, image.mime_type) for image in images]
        contents.append(prompt)

        text = await self.client.generate_content(
            contents=contents,
            generation_config=self._generation_config(),
        )
        if not text:
            raise APIClientError(f"Empty response from vision model during {purpose}")

        payload = parse_json_safely(text)
        if not isinstance(payload, dict):
            LOGGER.error(
                f"Unparseable {purpose} response",
                extra={"response_preview": text[:200]}
            )
            raise APIClientError(f"Vision model returned invalid JSON during {purpose}")
        return payload

    async def quick_extract(self, image: PageImage) -> QuickScanResult:
        """Read the invoice and account numbers off the first page.

        Args:
            image: First page rendered at quick-scan resolution

        Returns:
            QuickScanResult tagged with the vision strategy
        """
        payload = await self._request_json([image], QUICK_SCAN_PROMPT, "quick scan")

        confidence = payload.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = 0
        result = QuickScanResult(
            invoice_number=_clean_identifier(payload.get("invoiceNumber")),
            account_number=_clean_identifier(payload.get("accountNumber")),
            confidence=min(max(float(confidence), 0.0), 100.0),
            strategy=QuickScanStrategy.VISION,
        )
        LOGGER.info(
            "Quick scan (vision) complete",
            extra={
                "invoice_number": result.invoice_number,
                "account_number": result.account_number,
                "confidence": result.confidence,
            }
        )
        return result

    async def extract_bill(self, images: List[PageImage]) -> Dict[str, Any]:
        """Extract the full bill from all pages.

        Args:
            images: Every page, in order

        Returns:
            The raw payload; validate it with ``validate_extraction``
        """
        if not images:
            raise APIClientError("No page images supplied for extraction")

        payload = await self._request_json(images, build_extraction_prompt(len(images)), "extraction")
        LOGGER.info(
            f"Extraction complete for {len(images)} page(s)",
            extra={
                "invoice_number": payload.get("invoiceNumber"),
                "line_items": len(payload.get("lineItems") or []),
                "confidence": payload.get("confidence"),
            }
        )
        return payload


def _clean_identifier(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.upper() == "UNKNOWN":
        return None
    return text
