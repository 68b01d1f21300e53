"""
Text Layout Extraction - Decode pages into positioned text runs
"""

import fitz  # PyMuPDF
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


# Glyph box height used when a span reports neither a usable bbox nor a size
DEFAULT_RUN_HEIGHT = 12.0

_EXTRACT_FLAGS = (
    fitz.TEXT_PRESERVE_LIGATURES
    | fitz.TEXT_PRESERVE_WHITESPACE
    | fitz.TEXT_MEDIABOX_CLIP
)


@dataclass(frozen=True)
class TextRun:
    """One positioned fragment of decoded text, top-left page coordinates"""
    page_index: int
    text: str
    x: float
    y: float
    width: float
    height: float
    # Horizontal (x0, x1) extent of each character, when known
    char_spans: Optional[Tuple[Tuple[float, float], ...]] = None

    @property
    def rect(self) -> fitz.Rect:
        return fitz.Rect(self.x, self.y, self.x + self.width, self.y + self.height)

    def sub_rect(self, start: int, end: int) -> fitz.Rect:
        """
        Bounding box of characters [start, end) of this run

        Uses measured glyph extents when available, otherwise spreads the
        run width evenly over its characters.
        """
        length = len(self.text)
        start = max(0, start)
        end = min(length, end)
        if length == 0 or start >= end or (start == 0 and end == length):
            return self.rect

        if self.char_spans and len(self.char_spans) == length:
            x0 = min(span[0] for span in self.char_spans[start:end])
            x1 = max(span[1] for span in self.char_spans[start:end])
        else:
            char_width = self.width / length
            x0 = self.x + start * char_width
            x1 = self.x + end * char_width

        return fitz.Rect(x0, self.y, x1, self.y + self.height)


def to_top_left(y: float, page_height: float) -> float:
    """Convert a bottom-left origin ordinate to top-left origin"""
    return page_height - y


def to_bottom_left(y: float, page_height: float) -> float:
    """Convert a top-left origin ordinate back to PDF's native bottom-left origin"""
    return page_height - y


def rect_from_native(x: float, y: float, width: float, height: float,
                     page_height: float) -> fitz.Rect:
    """
    Convert a rectangle anchored at its bottom-left corner in native PDF
    coordinates to a top-left page rectangle
    """
    top = to_top_left(y + height, page_height)
    return fitz.Rect(x, top, x + width, top + height)


def _run_height(bbox: fitz.Rect, size: float) -> float:
    if bbox.height > 0:
        return bbox.height
    if size > 0:
        return size
    return DEFAULT_RUN_HEIGHT


def extract_runs(page: fitz.Page, page_index: Optional[int] = None) -> List[TextRun]:
    """
    Decode a page into text runs in stream order

    Coordinates are in the unrotated page space shared by the renderer and
    the verifier. Blank and image-only pages give an empty list.
    """
    if page_index is None:
        page_index = page.number

    rotation = page.rotation
    if rotation:
        page.set_rotation(0)
    try:
        layout = page.get_text("rawdict", flags=_EXTRACT_FLAGS)
    finally:
        if rotation:
            page.set_rotation(rotation)

    runs = []
    for block in layout.get("blocks", []):
        if block.get("type") != 0:
            continue

        for line in block.get("lines", []):
            for span in line.get("spans", []):
                chars = span.get("chars", [])
                text = "".join(ch["c"] for ch in chars)
                if not text:
                    continue

                bbox = fitz.Rect(span["bbox"])
                height = _run_height(bbox, span.get("size", 0.0))
                char_spans = tuple((ch["bbox"][0], ch["bbox"][2]) for ch in chars)

                runs.append(TextRun(
                    page_index=page_index,
                    text=text,
                    x=bbox.x0,
                    y=bbox.y0,
                    width=bbox.width,
                    height=height,
                    char_spans=char_spans,
                ))

    return runs


def extract_document_runs(doc: fitz.Document) -> Dict[int, List[TextRun]]:
    """
    Extract text runs for every page of a document
    """
    return {page_index: extract_runs(doc[page_index], page_index)
            for page_index in range(len(doc))}
