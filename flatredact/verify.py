"""
Verification - prove that no extractable text remains in redacted regions
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from .layout import TextRun, extract_runs
from .regions import RedactionRegion
from .utils import open_document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationReport:
    """
    Outcome of a verification pass

    ``residual_fragments`` holds the literal text of every run found inside a
    redacted zone. It is empty on success and kept either way.
    """
    success: bool
    residual_fragments: Tuple[str, ...] = ()
    regions_checked: int = 0
    margin_applied: float = 0.0

    def summary(self) -> str:
        if self.success:
            return f"Verified: no extractable text in {self.regions_checked} redacted regions"
        return (f"Warning: found {len(self.residual_fragments)} extractable text "
                f"fragments in redacted regions")

    def to_dict(self) -> Dict[str, object]:
        return {
            "success": self.success,
            "residual_fragments": list(self.residual_fragments),
            "regions_checked": self.regions_checked,
            "margin_applied": self.margin_applied,
        }


def rects_overlap(run: TextRun, region: RedactionRegion) -> bool:
    """Axis-aligned overlap test; touching edges do not count"""
    return (run.x < region.x + region.width
            and run.x + run.width > region.x
            and run.y < region.y + region.height
            and run.y + run.height > region.y)


def verify_redaction(pdf_bytes: bytes,
                     regions: Iterable[RedactionRegion],
                     strict_pages: Iterable[int] = (),
                     margin_applied: float = 0.0) -> VerificationReport:
    """
    Re-extract the output document and look for text under every region

    Args:
        pdf_bytes: Redacted document
        regions: The regions whose geometry was used to redact
        strict_pages: Pages that must carry no text at all (flattened pages);
            any run found on them is reported
        margin_applied: Safety margin used to produce the document, recorded
            in the report

    Returns:
        VerificationReport
    """
    regions = list(regions)
    strict_pages = set(strict_pages)
    residual: List[str] = []

    by_page: Dict[int, List[RedactionRegion]] = {}
    for region in regions:
        by_page.setdefault(region.page_index, []).append(region)

    with open_document(pdf_bytes) as doc:
        for page_index in sorted(set(by_page) | strict_pages):
            if not 0 <= page_index < len(doc):
                continue

            runs = [run for run in extract_runs(doc[page_index], page_index)
                    if run.text.strip()]
            if page_index in strict_pages:
                found = runs
            else:
                found = [run for run in runs
                         if any(rects_overlap(run, region) for region in by_page[page_index])]

            for run in found:
                logger.warning("Residual text on page %d at (%.1f, %.1f): %r",
                               page_index + 1, run.x, run.y, run.text)
                residual.append(run.text)

    return VerificationReport(
        success=not residual,
        residual_fragments=tuple(residual),
        regions_checked=len(regions),
        margin_applied=margin_applied,
    )
