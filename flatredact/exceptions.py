"""
Exception hierarchy for the redaction pipeline
"""

from typing import Optional


class RedactionError(Exception):
    """Base exception for all flatredact errors"""


class DocumentDecodeError(RedactionError):
    """Raised when the input document cannot be opened or parsed"""


class PageRenderError(RedactionError):
    """Raised when a page cannot be rasterized; fatal for the whole document"""

    def __init__(self, page_index: int, reason: Optional[str] = None):
        self.page_index = page_index
        self.reason = reason
        message = f"Failed to rasterize page {page_index + 1}"
        if reason:
            message += f": {reason}"
        super().__init__(message)

    def __reduce__(self):
        # Keep page_index intact when raised inside a worker process
        return (type(self), (self.page_index, self.reason))


class RedactionCancelled(RedactionError):
    """Raised when a caller cancels rendering between pages"""


class ConfigurationError(RedactionError):
    """Raised for invalid configuration values or region files"""
