"""PDF utilities: validation, page counting, splitting and rasterising."""
from contextlib import contextmanager
from typing import Iterator

import fitz  # PyMuPDF

from lexivault.exceptions import DocumentCorruptedError, DocumentEmptyError

PDF_CONTENT_TYPE = "application/pdf"
PNG_CONTENT_TYPE = "image/png"


def validate_pdf_bytes(data: bytes) -> None:
    """
    Validate PDF header and basic structure.

    Args:
        data: Raw file content

    Raises:
        DocumentCorruptedError: If the bytes are not a PDF file
    """
    if not data:
        raise DocumentCorruptedError("File is empty.")
    if not data[:1024].lstrip().startswith(b"%PDF-"):
        raise DocumentCorruptedError(
            "File is not a valid PDF. PDF files must start with '%PDF-' header."
        )


@contextmanager
def open_pdf(data: bytes) -> Iterator[fitz.Document]:
    """
    Open PDF bytes with PyMuPDF.

    Raises:
        DocumentCorruptedError: If PyMuPDF cannot parse the document
    """
    validate_pdf_bytes(data)
    try:
        pdf = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise DocumentCorruptedError(f"Failed to open PDF: {str(e)}") from e
    try:
        yield pdf
    finally:
        pdf.close()


def get_page_count(data: bytes) -> int:
    """
    Return the number of pages of a PDF.

    Raises:
        DocumentCorruptedError: If the PDF cannot be parsed
        DocumentEmptyError: If the PDF has no pages
    """
    with open_pdf(data) as pdf:
        page_count = pdf.page_count
    if page_count < 1:
        raise DocumentEmptyError("PDF has no pages.")
    return page_count


def extract_page(pdf: fitz.Document, page_number: int) -> bytes:
    """
    Copy a single page into a standalone PDF.

    Args:
        pdf: Open source document
        page_number: Page to copy (1-indexed)

    Returns:
        Bytes of a one-page PDF
    """
    if page_number < 1 or page_number > pdf.page_count:
        raise ValueError(f"Page {page_number} out of range 1..{pdf.page_count}")

    single = fitz.open()
    try:
        single.insert_pdf(pdf, from_page=page_number - 1, to_page=page_number - 1)
        return single.tobytes(garbage=3, deflate=True)
    finally:
        single.close()


def render_page_png(data: bytes, dpi: int = 200) -> bytes:
    """
    Rasterise the first page of a PDF to PNG.

    Args:
        data: PDF bytes (normally a single-page PDF)
        dpi: Rendering resolution

    Returns:
        PNG image bytes
    """
    with open_pdf(data) as pdf:
        if pdf.page_count < 1:
            raise DocumentEmptyError("PDF has no pages.")
        pixmap = pdf[0].get_pixmap(dpi=dpi)
        return pixmap.tobytes("png")
