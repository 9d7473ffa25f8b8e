"""Render PDF pages to PNG images with PyMuPDF."""

import asyncio
from typing import Iterable, List, Optional

import fitz

from billtracker.core.config import settings
from billtracker.core.exceptions import RasterizationError
from billtracker.schemas.extraction import PageImage, RenderOptions
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


def full_scan_options() -> RenderOptions:
    return RenderOptions(
        dpi=settings.render.full_dpi,
        max_width=settings.render.full_max_width,
        max_height=settings.render.full_max_height,
    )


def quick_scan_options() -> RenderOptions:
    return RenderOptions(
        dpi=settings.render.quick_dpi,
        max_width=settings.render.quick_max_width,
        max_height=settings.render.quick_max_height,
    )


class PdfRasterizer:
    """Renders pages off the event loop; PyMuPDF calls are blocking."""

    async def page_count(self, path: str) -> int:
        """Number of pages in the PDF.

        Raises:
            RasterizationError: If the file cannot be opened as a PDF
        """
        return await asyncio.to_thread(self._page_count, path)

    async def render_pages(
        self,
        path: str,
        options: Optional[RenderOptions] = None,
        pages: Optional[Iterable[int]] = None,
    ) -> List[PageImage]:
        """Render pages to PNG.

        Args:
            path: PDF path
            options: DPI and bounding box; defaults to the full-scan settings
            pages: 1-indexed pages to render; all pages when None

        Returns:
            One PageImage per rendered page, in page order

        Raises:
            RasterizationError: If rendering fails or yields no pages
        """
        options = options or full_scan_options()
        wanted = sorted(set(pages)) if pages is not None else None
        images = await asyncio.to_thread(self._render, path, options, wanted)
        if not images:
            raise RasterizationError(f"No images generated from PDF {path}")
        LOGGER.info(
            f"Rendered {len(images)} page(s) at {options.dpi} dpi",
            extra={"path": path}
        )
        return images

    @staticmethod
    def _page_count(path: str) -> int:
        try:
            with fitz.open(path) as doc:
                return doc.page_count
        except Exception as e:
            raise RasterizationError(f"Failed to open PDF {path}: {e}", original_error=e)

    @staticmethod
    def _zoom_for(page, options: RenderOptions) -> float:
        # Scale to the requested DPI, shrinking to fit the bounding box
        zoom = options.dpi / 72.0
        rect = page.rect
        if rect.width and rect.height:
            fit = min(options.max_width / rect.width, options.max_height / rect.height)
            zoom = min(zoom, fit)
        return zoom

    def _render(self, path: str, options: RenderOptions, wanted: Optional[List[int]]) -> List[PageImage]:
        images: List[PageImage] = []
        try:
            with fitz.open(path) as doc:
                numbers = wanted or list(range(1, doc.page_count + 1))
                for page_number in numbers:
                    if page_number < 1 or page_number > doc.page_count:
                        raise RasterizationError(
                            f"Page {page_number} out of range (1-{doc.page_count})"
                        )
                    page = doc.load_page(page_number - 1)
                    zoom = self._zoom_for(page, options)
                    pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
                    images.append(
                        PageImage(
                            page_number=page_number,
                            data=pix.tobytes("png"),
                            width=pix.width,
                            height=pix.height,
                        )
                    )
        except RasterizationError:
            raise
        except Exception as e:
            LOGGER.error(f"PDF rendering failed: {e}", exc_info=True)
            raise RasterizationError(f"Failed to render PDF {path}: {e}", original_error=e)
        return images
