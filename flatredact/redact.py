"""
Redaction Application Module - Destroy content by flattening pages

Every page that owns at least one region is rendered to a pixmap, masked,
and replaced by a brand-new page holding only that image. The original
content stream, fonts and text of such a page do not survive. Pages without
regions are copied over untouched.
"""

import logging
import math
import os
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF

from .config import get_fill_rgb
from .exceptions import ConfigurationError, PageRenderError, RedactionCancelled
from .regions import RedactionRegion
from .utils import open_document

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
RectTuple = Tuple[float, float, float, float]


@dataclass(frozen=True)
class RenderedPage:
    """A masked page raster, ready to become a new page"""
    page_index: int
    image: bytes  # PNG
    width: float  # Unscaled page size in points
    height: float
    rotation: int


def _mask_irect(rect: RectTuple, scale: float, bounds: fitz.IRect) -> fitz.IRect:
    # Round outward so partially covered pixels are fully painted
    x0, y0, x1, y1 = rect
    irect = fitz.IRect(
        math.floor(x0 * scale),
        math.floor(y0 * scale),
        math.ceil(x1 * scale),
        math.ceil(y1 * scale),
    )
    return irect & bounds


def render_page_image(pdf_bytes: bytes,
                      page_index: int,
                      rects: Sequence[RectTuple],
                      scale: float = 2.0,
                      fill: str = "black") -> RenderedPage:
    """
    Rasterize one page and paint opaque masks over the given rectangles

    Runs in worker processes, so it takes and returns plain data only.

    Raises:
        PageRenderError: if the page cannot be rendered
    """
    fill_rgb = get_fill_rgb(fill)
    try:
        with open_document(pdf_bytes) as doc:
            page = doc[page_index]
            rotation = page.rotation
            if rotation:
                page.set_rotation(0)

            page_rect = page.rect
            pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)

            for rect in rects:
                irect = _mask_irect(rect, scale, pix.irect)
                if not irect.is_empty:
                    pix.set_rect(irect, fill_rgb)

            image = pix.tobytes("png")
    except PageRenderError:
        raise
    except Exception as e:
        raise PageRenderError(page_index, str(e)) from e

    return RenderedPage(
        page_index=page_index,
        image=image,
        width=page_rect.width,
        height=page_rect.height,
        rotation=rotation,
    )


def _render_job(args) -> RenderedPage:
    return render_page_image(*args)


def _check_cancel(cancel_event) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise RedactionCancelled("Redaction cancelled before completion")


def _render_pages(pdf_bytes: bytes,
                  jobs: List[Tuple[int, List[RectTuple]]],
                  scale: float,
                  fill: str,
                  max_workers: Optional[int],
                  cancel_event,
                  progress_callback: Optional[ProgressCallback]) -> Dict[int, RenderedPage]:
    workers = min(max_workers or os.cpu_count() or 1, len(jobs))
    total = len(jobs)
    rendered = {}

    if workers <= 1:
        for done, (page_index, rects) in enumerate(jobs, start=1):
            _check_cancel(cancel_event)
            rendered[page_index] = render_page_image(pdf_bytes, page_index, rects, scale, fill)
            if progress_callback:
                progress_callback(done, total)
        return rendered

    logger.debug("Rendering %d pages with %d worker processes", total, workers)
    executor = ProcessPoolExecutor(max_workers=workers)
    try:
        futures = [executor.submit(_render_job, (pdf_bytes, page_index, rects, scale, fill))
                   for page_index, rects in jobs]
        # Collect in page order; cancellation is honoured between pages
        for done, future in enumerate(futures, start=1):
            _check_cancel(cancel_event)
            page = future.result()
            rendered[page.page_index] = page
            if progress_callback:
                progress_callback(done, total)
    finally:
        executor.shutdown(wait=True, cancel_futures=True)

    return rendered


def apply_raster_redaction(pdf_bytes: bytes,
                           regions: Iterable[RedactionRegion],
                           scale: float = 2.0,
                           fill: str = "black",
                           max_workers: Optional[int] = None,
                           cancel_event=None,
                           progress_callback: Optional[ProgressCallback] = None) -> Tuple[bytes, Tuple[int, ...]]:
    """
    Apply redactions by rasterizing pages and painting filled rectangles

    Args:
        pdf_bytes: Input document
        regions: Regions to destroy, top-left page points
        scale: Render scale relative to the page size (>= 1)
        fill: Mask color name
        max_workers: Upper bound on rendering processes
        cancel_event: Object with ``is_set()``, checked between pages
        progress_callback: Called with ``(pages_done, pages_total)``

    Returns:
        Tuple of (output PDF bytes, indexes of flattened pages)

    Raises:
        DocumentDecodeError: if the input cannot be opened
        PageRenderError: if any page cannot be rasterized
        RedactionCancelled: if ``cancel_event`` was set
    """
    if scale < 1:
        raise ConfigurationError(f"Render scale must be >= 1, got {scale}")

    with open_document(pdf_bytes) as source:
        page_count = len(source)

        rects_by_page: Dict[int, List[RectTuple]] = {}
        for region in regions:
            if not 0 <= region.page_index < page_count:
                logger.warning("Region on page %d is outside the document (%d pages), ignoring",
                               region.page_index + 1, page_count)
                continue
            rects_by_page.setdefault(region.page_index, []).append(tuple(region.rect))

        jobs = sorted(rects_by_page.items())
        if not jobs:
            logger.info("No regions to redact, document passed through unchanged")
            return pdf_bytes, ()

        _check_cancel(cancel_event)
        rendered = _render_pages(pdf_bytes, jobs, scale, fill, max_workers,
                                 cancel_event, progress_callback)
        _check_cancel(cancel_event)

        output = fitz.open()
        try:
            for page_index in range(page_count):
                page = rendered.get(page_index)
                if page is None:
                    output.insert_pdf(source, from_page=page_index, to_page=page_index)
                    continue

                new_page = output.new_page(width=page.width, height=page.height)
                new_page.insert_image(new_page.rect, stream=page.image)
                if page.rotation:
                    new_page.set_rotation(page.rotation)
                logger.info("Page %d: flattened with %d redactions at scale %.2f",
                            page_index + 1, len(rects_by_page[page_index]), scale)

            data = output.tobytes(garbage=4, deflate=True, clean=True)
        finally:
            output.close()

    return data, tuple(page_index for page_index, _ in jobs)
