"""
Utility functions for PDF redaction
"""

import fitz  # PyMuPDF
import logging
import os
from pathlib import Path
from typing import Any, Dict, Union

from .exceptions import DocumentDecodeError

logger = logging.getLogger(__name__)

PdfSource = Union[str, Path, bytes]


def read_pdf_bytes(source: PdfSource) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    try:
        return Path(source).read_bytes()
    except OSError as e:
        raise DocumentDecodeError(f"Cannot read {source}: {e}") from e


def open_document(pdf_bytes: bytes) -> fitz.Document:
    """
    Open PDF bytes, rejecting anything the pipeline cannot process

    Raises:
        DocumentDecodeError: if the data is not a readable, unencrypted PDF
            with at least one page
    """
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        raise DocumentDecodeError(f"Cannot open document: {e}") from e

    if doc.needs_pass:
        doc.close()
        raise DocumentDecodeError("Document is encrypted")

    if len(doc) == 0:
        doc.close()
        raise DocumentDecodeError("Document has no pages")

    return doc


def validate_pdf(pdf_path: PdfSource) -> bool:
    """
    Validate that a file is a readable PDF

    Args:
        pdf_path: Path to PDF file, or its bytes

    Returns:
        True if valid PDF, False otherwise
    """
    try:
        doc = open_document(read_pdf_bytes(pdf_path))
    except DocumentDecodeError as e:
        logger.debug("Invalid PDF %s: %s", pdf_path if not isinstance(pdf_path, bytes) else "<bytes>", e)
        return False
    doc.close()
    return True


def get_pdf_info(pdf_path: PdfSource) -> Dict[str, Any]:
    """
    Get basic information about a PDF

    Args:
        pdf_path: Path to PDF file, or its bytes

    Returns:
        Dictionary with PDF information
    """
    info = {
        "valid": False,
        "pages": 0,
        "encrypted": False,
        "has_metadata": False,
        "title": "",
        "author": "",
        "subject": "",
        "keywords": "",
        "creator": "",
        "producer": "",
        "creation_date": "",
        "modification_date": "",
        "file_size": 0,
    }

    data = read_pdf_bytes(pdf_path)
    info["file_size"] = len(data)

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        info["error"] = str(e)
        return info

    with doc:
        info["valid"] = len(doc) > 0
        info["pages"] = len(doc)
        info["encrypted"] = doc.is_encrypted

        metadata = doc.metadata or {}
        info["title"] = metadata.get("title") or ""
        info["author"] = metadata.get("author") or ""
        info["subject"] = metadata.get("subject") or ""
        info["keywords"] = metadata.get("keywords") or ""
        info["creator"] = metadata.get("creator") or ""
        info["producer"] = metadata.get("producer") or ""
        info["creation_date"] = metadata.get("creationDate") or ""
        info["modification_date"] = metadata.get("modDate") or ""

    info["has_metadata"] = any(info[k] for k in ("title", "author", "subject", "keywords"))
    return info


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in human-readable format
    """
    size = float(size_bytes)
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size < 1024.0:
            return f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} TB"


def output_name(input_path: Union[str, Path], index: int = 1) -> str:
    """
    Default file name for a redacted copy of ``input_path``

    ``index`` above 1 numbers copies of inputs that share a file name.
    """
    stem = Path(input_path).stem
    if index > 1:
        return f"{stem}-redacted-{index}.pdf"
    return f"{stem}-redacted.pdf"


def atomic_write(path: Union[str, Path], data: bytes) -> None:
    """
    Write bytes to ``path`` through a temporary file so a partial document
    never appears at the destination
    """
    path = Path(path)
    temp_path = path.with_name(path.name + ".tmp")
    try:
        temp_path.write_bytes(data)
        os.replace(temp_path, path)
    finally:
        if temp_path.exists():
            temp_path.unlink()
