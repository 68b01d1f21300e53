"""
PDF Sanitization Module - Remove metadata and active content
"""

import io
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

import pikepdf

from .config import DEFAULT_PRODUCER
from .exceptions import DocumentDecodeError

logger = logging.getLogger(__name__)

# Document-level keys that run code or launch actions when a file is opened
ACTIVE_ROOT_KEYS = ("/OpenAction", "/AA", "/JS", "/JavaScript")
ACTIVE_NAME_TREES = ("/JavaScript", "/EmbeddedFiles")


def pdf_date(moment: datetime) -> str:
    """Format a datetime as a PDF date string"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("D:%Y%m%d%H%M%S+00'00'")


def _open(pdf_bytes: bytes) -> pikepdf.Pdf:
    try:
        return pikepdf.open(io.BytesIO(pdf_bytes))
    except pikepdf.PdfError as e:
        raise DocumentDecodeError(f"Cannot open document for sanitization: {e}") from e


def _remove_metadata(pdf: pikepdf.Pdf) -> int:
    """
    Remove the document info entries and the XMP metadata stream

    Returns:
        Number of metadata items removed
    """
    removed_count = 0

    info = pdf.docinfo
    for key in list(info.keys()):
        del info[key]
        removed_count += 1

    if "/Metadata" in pdf.Root:
        del pdf.Root["/Metadata"]
        removed_count += 1
        logger.debug("Removed XMP metadata stream")

    return removed_count


def strip_active_content(pdf: pikepdf.Pdf) -> int:
    """
    Remove JavaScript, automatic actions and embedded files

    Returns:
        Number of items removed
    """
    removed_count = 0

    for key in ACTIVE_ROOT_KEYS:
        if key in pdf.Root:
            del pdf.Root[key]
            removed_count += 1

    if "/Names" in pdf.Root:
        names = pdf.Root["/Names"]
        for key in ACTIVE_NAME_TREES:
            if key in names:
                del names[key]
                removed_count += 1
        if len(names.keys()) == 0:
            del pdf.Root["/Names"]

    for page in pdf.pages:
        if "/AA" in page.obj:
            del page.obj["/AA"]
            removed_count += 1

    if removed_count:
        logger.info("Removed %d active content entries", removed_count)
    return removed_count


def sanitize_metadata(pdf_bytes: bytes,
                      producer: str = DEFAULT_PRODUCER,
                      now: Optional[datetime] = None,
                      strip_active: bool = True) -> bytes:
    """
    Clear document metadata and stamp the tool's producer tag

    Title, author, subject, keywords and any other document info entries are
    removed, the XMP stream is dropped, and the creation and modification
    dates are set to the sanitization time. Running it again on its own
    output with the same ``now`` gives identical metadata.

    Args:
        pdf_bytes: Input document
        producer: Value for /Producer and /Creator
        now: Sanitization time (defaults to the current UTC time)
        strip_active: Also remove JavaScript, actions and embedded files

    Returns:
        Sanitized PDF bytes
    """
    now = now or datetime.now(timezone.utc)
    stamp = pdf_date(now)

    with _open(pdf_bytes) as pdf:
        removed = _remove_metadata(pdf)
        if strip_active:
            removed += strip_active_content(pdf)

        info = pdf.docinfo
        info["/Producer"] = pikepdf.String(producer)
        info["/Creator"] = pikepdf.String(producer)
        info["/CreationDate"] = pikepdf.String(stamp)
        info["/ModDate"] = pikepdf.String(stamp)

        output = io.BytesIO()
        pdf.save(
            output,
            linearize=False,
            fix_metadata_version=False,
            compress_streams=True,
            object_stream_mode=pikepdf.ObjectStreamMode.generate,
        )

    logger.info("Sanitization complete: removed %d items", removed)
    return output.getvalue()


def read_metadata(pdf_bytes: bytes) -> Dict[str, str]:
    """
    Return the document info dictionary as plain strings, keys without '/'
    """
    with _open(pdf_bytes) as pdf:
        return {key.lstrip("/"): str(value) for key, value in pdf.docinfo.items()}
