"""Offline invoice/account number lookup from the PDF text layer.

Bills with selectable text carry both identifiers in the header, so a
regex pass over the first few thousand characters avoids a vision call.
"""

import re
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Pattern, Union

import pdfplumber

from billtracker.schemas.extraction import ExtractedNumbers
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)

HEADER_CHARS = 3000

# Provider format first, generic fallback last
INVOICE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\b(B\d+-\d{6,12})\b", re.IGNORECASE),
    re.compile(r"\b(?:INVOICE|BILL)\s*(?:NO|NUMBER|#)?[:\s]*(B\d+-?\d{6,12})\b", re.IGNORECASE),
    re.compile(r"\b(?:INVOICE|BILL)\s*(?:NO|NUMBER|#)?[:\s]*([A-Z]{1,3}-?\d{6,12})\b", re.IGNORECASE),
]
ACCOUNT_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\b(BA\d{8,12})\b", re.IGNORECASE),
    re.compile(r"\b(?:ACCOUNT|SERVICE\s*ACCOUNT)\s*(?:NO|NUMBER|#)?[:\s]*(BA\d{8,12})\b", re.IGNORECASE),
    re.compile(r"\b(?:ACCOUNT|SERVICE\s*ACCOUNT)\s*(?:NO|NUMBER|#)?[:\s]*([A-Z]{2}\d{8,12})\b", re.IGNORECASE),
]

MIN_INVOICE_LENGTH = 6
MIN_ACCOUNT_LENGTH = 8

_INVOICE_STRIP = re.compile(r"[^\w-]")
_ACCOUNT_STRIP = re.compile(r"[^\w]")


def _first_match(
    text: str,
    patterns: List[Pattern[str]],
    strip: Pattern[str],
    min_length: int,
) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if not match:
            continue
        candidate = strip.sub("", match.group(1).strip())
        if len(candidate) >= min_length:
            return candidate
    return None


def extract_numbers_from_text(text: str) -> ExtractedNumbers:
    """Apply the invoice and account pattern lists to header text.

    Args:
        text: Raw text; only the first ``HEADER_CHARS`` characters are used

    Returns:
        ExtractedNumbers with whichever identifiers were found
    """
    header = (text or "")[:HEADER_CHARS].upper()
    return ExtractedNumbers(
        invoice_number=_first_match(header, INVOICE_PATTERNS, _INVOICE_STRIP, MIN_INVOICE_LENGTH),
        account_number=_first_match(header, ACCOUNT_PATTERNS, _ACCOUNT_STRIP, MIN_ACCOUNT_LENGTH),
    )


def read_header_text(source: Union[bytes, str, Path], limit: int = HEADER_CHARS) -> str:
    """Read text page by page until ``limit`` characters are collected."""
    handle = BytesIO(source) if isinstance(source, bytes) else source
    collected = ""
    with pdfplumber.open(handle) as pdf:
        for page in pdf.pages:
            collected += (page.extract_text() or "") + "\n"
            if len(collected) >= limit:
                break
    return collected[:limit]


def extract_numbers_from_pdf(source: Union[bytes, str, Path]) -> ExtractedNumbers:
    """Find invoice and account numbers in a PDF's text layer.

    Never raises: unreadable or text-less PDFs yield empty fields.

    Args:
        source: PDF bytes or a filesystem path

    Returns:
        ExtractedNumbers, possibly empty
    """
    try:
        text = read_header_text(source)
    except Exception as e:
        LOGGER.warning(
            f"PDF text extraction failed: {e}",
            extra={"error_type": type(e).__name__}
        )
        return ExtractedNumbers()

    numbers = extract_numbers_from_text(text)
    LOGGER.debug(
        "Text prefilter finished",
        extra={
            "invoice_found": numbers.invoice_number is not None,
            "account_found": numbers.account_number is not None,
            "chars": len(text),
        }
    )
    return numbers
