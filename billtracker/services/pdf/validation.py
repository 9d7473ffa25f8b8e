"""Upload checks run before a file enters the pipeline."""

from pathlib import PurePath
from typing import Optional

import fitz

from billtracker.core.config import settings
from billtracker.core.exceptions import ValidationError
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


def validate_pdf_upload(file_name: str, content: bytes, max_size_bytes: Optional[int] = None) -> int:
    """Check that an upload is a non-empty, parseable PDF within the size limit.

    Args:
        file_name: Original file name
        content: File bytes
        max_size_bytes: Size limit; defaults to ``MAX_UPLOAD_SIZE_MB``

    Returns:
        Page count of the PDF

    Raises:
        ValidationError: If any check fails
    """
    max_size = max_size_bytes if max_size_bytes is not None else settings.max_upload_size_bytes

    if PurePath(file_name or "").suffix.lower() != ".pdf":
        raise ValidationError("Invalid PDF file: File must be a PDF", field="file")
    if not content:
        raise ValidationError("Invalid PDF file: File is empty", field="file")
    if len(content) > max_size:
        raise ValidationError(
            f"Invalid PDF file: File size exceeds maximum of {max_size / (1024 * 1024):g}MB",
            field="file",
        )

    try:
        with fitz.open(stream=content, filetype="pdf") as doc:
            page_count = doc.page_count
    except Exception as e:
        LOGGER.warning(f"Uploaded file {file_name} could not be parsed: {e}")
        raise ValidationError(f"Invalid PDF file: {e}", field="file", original_error=e)

    if page_count == 0:
        raise ValidationError("Invalid PDF file: PDF has no pages", field="file")
    return page_count
