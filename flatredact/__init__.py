"""
flatredact - Permanently destroy sensitive content in PDFs

Pages carrying a redaction are flattened to images with opaque masks, so the
covered text is gone rather than hidden. Supports literal text search,
pattern rules (SSN, email, phone, card numbers), manual rectangles, metadata
sanitization and post-redaction verification.
"""

__version__ = "1.0.0"
__author__ = "flatredact"
__email__ = ""

from .config import RedactionConfig, get_fill_color
from .detect import (DEFAULT_RULES, PatternRule, TextMatch, find_matches,
                     find_patterns, find_text, select_rules)
from .exceptions import (ConfigurationError, DocumentDecodeError, PageRenderError,
                         RedactionCancelled, RedactionError)
from .layout import TextRun, extract_runs, to_bottom_left, to_top_left
from .pipeline import (PipelineResult, SanitizedDocument, redact_document,
                       redact_many, sanitize_only)
from .redact import apply_raster_redaction
from .regions import RedactionRegion, RegionSet, load_regions
from .sanitize import read_metadata, sanitize_metadata
from .utils import get_pdf_info, validate_pdf
from .verify import VerificationReport, verify_redaction

__all__ = [
    "RedactionConfig",
    "get_fill_color",
    "DEFAULT_RULES",
    "PatternRule",
    "TextMatch",
    "find_matches",
    "find_patterns",
    "find_text",
    "select_rules",
    "ConfigurationError",
    "DocumentDecodeError",
    "PageRenderError",
    "RedactionCancelled",
    "RedactionError",
    "TextRun",
    "extract_runs",
    "to_bottom_left",
    "to_top_left",
    "PipelineResult",
    "SanitizedDocument",
    "redact_document",
    "redact_many",
    "sanitize_only",
    "apply_raster_redaction",
    "RedactionRegion",
    "RegionSet",
    "load_regions",
    "read_metadata",
    "sanitize_metadata",
    "get_pdf_info",
    "validate_pdf",
    "VerificationReport",
    "verify_redaction",
]
