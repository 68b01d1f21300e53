"""
Redaction regions - the normalized set of page rectangles to destroy
"""

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union

import fitz  # PyMuPDF

from .exceptions import ConfigurationError
from .layout import rect_from_native

logger = logging.getLogger(__name__)

MANUAL = "manual"
LITERAL_SEARCH = "literalSearch"
PATTERN_MATCH = "patternMatch"

DEFAULT_MIN_REGION_SIZE = 1.0


@dataclass(frozen=True)
class RedactionRegion:
    """
    An axis-aligned rectangle on one page, top-left page coordinates

    ``source`` and ``label`` are advisory; rendering ignores them.
    """
    page_index: int
    x: float
    y: float
    width: float
    height: float
    source: Optional[str] = None
    label: Optional[str] = None

    @classmethod
    def from_rect(cls, page_index: int, rect: fitz.Rect, **kwargs) -> "RedactionRegion":
        rect = fitz.Rect(rect)
        return cls(page_index, rect.x0, rect.y0, rect.width, rect.height, **kwargs)

    @property
    def rect(self) -> fitz.Rect:
        return fitz.Rect(self.x, self.y, self.x + self.width, self.y + self.height)

    def scaled(self, factor: float) -> "RedactionRegion":
        return replace(self, x=self.x * factor, y=self.y * factor,
                       width=self.width * factor, height=self.height * factor)

    def expanded(self, margin: float) -> "RedactionRegion":
        return replace(self, x=self.x - margin, y=self.y - margin,
                       width=self.width + 2 * margin, height=self.height + 2 * margin)

    def is_degenerate(self, min_size: float = DEFAULT_MIN_REGION_SIZE) -> bool:
        return self.width <= min_size or self.height <= min_size

    def _key(self):
        return (self.page_index, self.x, self.y, self.width, self.height)


class RegionSet:
    """
    Immutable, ordered collection of admitted redaction regions

    Degenerate regions are dropped (and logged) on admission; exact
    geometric duplicates are collapsed, keeping the first.
    """

    def __init__(self, regions: Iterable[RedactionRegion] = (),
                 min_size: float = DEFAULT_MIN_REGION_SIZE):
        self.min_size = min_size
        admitted = OrderedDict()
        self.rejected: List[RedactionRegion] = []

        for region in regions:
            if region.is_degenerate(min_size):
                logger.warning(
                    "Dropping degenerate region on page %d (%.2f x %.2f)",
                    region.page_index + 1, region.width, region.height
                )
                self.rejected.append(region)
                continue
            admitted.setdefault(region._key(), region)

        self._regions = tuple(admitted.values())

    def __iter__(self) -> Iterator[RedactionRegion]:
        return iter(self._regions)

    def __len__(self) -> int:
        return len(self._regions)

    def __bool__(self) -> bool:
        return bool(self._regions)

    def __repr__(self) -> str:
        return f"RegionSet({len(self)} regions on pages {self.pages()})"

    def by_page(self) -> Dict[int, List[RedactionRegion]]:
        pages: Dict[int, List[RedactionRegion]] = {}
        for region in self._regions:
            pages.setdefault(region.page_index, []).append(region)
        return pages

    def pages(self) -> List[int]:
        return sorted({region.page_index for region in self._regions})

    def union(self, other: Iterable[RedactionRegion]) -> "RegionSet":
        merged = RegionSet(list(self._regions) + list(other), self.min_size)
        merged.rejected = self.rejected + merged.rejected
        return merged

    def scaled(self, factor: float) -> "RegionSet":
        """
        Convert between coordinate scales, e.g. a viewer's canvas scale and
        page points
        """
        if factor <= 0:
            raise ValueError("Scale factor must be positive")
        return RegionSet((r.scaled(factor) for r in self._regions), self.min_size)

    def expanded(self, margin: float) -> "RegionSet":
        """Grow every region by ``margin`` points on each side"""
        return RegionSet((r.expanded(margin) for r in self._regions), self.min_size)


def _region_from_entry(entry: dict, page_index: int, scale: float,
                       page_heights: Optional[Sequence[float]]) -> RedactionRegion:
    if {"x0", "y0", "x1", "y1"} <= set(entry):
        x0, y0, x1, y1 = (float(entry[k]) for k in ("x0", "y0", "x1", "y1"))
        x, y, width, height = min(x0, x1), min(y0, y1), abs(x1 - x0), abs(y1 - y0)
    else:
        x, y = float(entry["x"]), float(entry["y"])
        width, height = float(entry["width"]), float(entry["height"])

    x, y, width, height = (v / scale for v in (x, y, width, height))

    if page_heights is not None:
        if not 0 <= page_index < len(page_heights):
            raise ConfigurationError(f"Region refers to missing page {page_index + 1}")
        rect = rect_from_native(x, y, width, height, page_heights[page_index])
        x, y = rect.x0, rect.y0

    return RedactionRegion(page_index, x, y, width, height,
                           source=MANUAL, label=entry.get("label"))


def load_regions(path: Union[str, Path],
                 scale: float = 1.0,
                 page_heights: Optional[Sequence[float]] = None) -> List[RedactionRegion]:
    """
    Load manually drawn regions from a JSON file

    Two layouts are accepted: an object keyed by 1-based page number holding
    ``{"x0", "y0", "x1", "y1"}`` rectangles, or a list of objects with
    ``page_index``, ``x``, ``y``, ``width`` and ``height``.

    Args:
        path: JSON file
        scale: Coordinate scale the rectangles were drawn at; values are
            divided by it to get page points
        page_heights: When given, coordinates are native PDF (bottom-left
            origin) and are converted using each page's height

    Returns:
        List of manual regions (not yet filtered for degenerate size)
    """
    if scale <= 0:
        raise ConfigurationError("Region scale must be positive")

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read regions from {path}: {e}") from e

    regions = []
    try:
        if isinstance(data, dict):
            for page_str, entries in data.items():
                page_index = int(page_str) - 1
                for entry in entries:
                    regions.append(_region_from_entry(entry, page_index, scale, page_heights))
        elif isinstance(data, list):
            for entry in data:
                regions.append(_region_from_entry(entry, int(entry["page_index"]),
                                                  scale, page_heights))
        else:
            raise ConfigurationError(f"Unsupported region file layout in {path}")
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Malformed region entry in {path}: {e}") from e

    logger.info("Loaded %d manual regions from %s", len(regions), path)
    return regions
