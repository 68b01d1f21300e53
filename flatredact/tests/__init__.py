"""
Helpers for building synthetic test documents
"""

import fitz


def make_pdf(pages, metadata=None, page_sizes=None, rotations=None):
    """
    Build a PDF in memory

    Args:
        pages: One list per page of ``(point, text)`` tuples, where point is
            the baseline start in top-left coordinates
        metadata: Optional metadata dict for ``set_metadata``
        page_sizes: Optional ``(width, height)`` per page
        rotations: Optional rotation per page

    Returns:
        PDF bytes
    """
    doc = fitz.open()
    for i, lines in enumerate(pages):
        if page_sizes:
            width, height = page_sizes[i]
            page = doc.new_page(width=width, height=height)
        else:
            page = doc.new_page()
        for point, text in lines:
            page.insert_text(point, text, fontsize=12)
        if rotations and rotations[i]:
            page.set_rotation(rotations[i])
    if metadata:
        doc.set_metadata(metadata)
    data = doc.tobytes()
    doc.close()
    return data


def page_text(pdf_bytes, page_index):
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return doc[page_index].get_text()


def pixel_at(pdf_bytes, page_index, x, y):
    """RGB value of the rendered page at page point (x, y), scale 1"""
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        page = doc[page_index]
        if page.rotation:
            page.set_rotation(0)
        pix = page.get_pixmap(alpha=False)
        return tuple(pix.pixel(int(x), int(y)))


SSN_LINE = ((72, 100), "SSN: 123-45-6789")
