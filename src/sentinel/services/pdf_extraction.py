"""
PDF text extraction using pdfplumber with pypdf fallback.

This module provides:
- PDF signature validation to prevent malformed file processing
- Primary extraction using pdfplumber, fallback to pypdf
"""

import io
from typing import Tuple

import pdfplumber
import pypdf
import structlog

from ..errors import InvalidPDFError, PDFExtractionError

logger = structlog.get_logger(__name__)

PAGE_SEPARATOR = "\n\n"


def validate_pdf_signature(file_bytes: bytes) -> bool:
    """
    Validate PDF file signature using magic bytes check.

    Raises:
        InvalidPDFError: If file doesn't have valid PDF signature
    """
    if not file_bytes.lstrip().startswith(b"%PDF"):
        raise InvalidPDFError("Invalid PDF header - missing %PDF magic bytes")
    if len(file_bytes) < 100:
        raise InvalidPDFError("File too small to be a valid PDF")
    return True


def extract_text_with_pdfplumber(file_bytes: bytes) -> Tuple[str, int]:
    """
    Extract text from PDF using pdfplumber (primary method).

    Returns:
        Tuple of (extracted_text, page_count)

    Raises:
        PDFExtractionError: If extraction fails
    """
    try:
        extracted_pages = []
        with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
            page_count = len(pdf.pages)
            for page in pdf.pages:
                text = page.extract_text()
                if text:
                    extracted_pages.append(text)
        return PAGE_SEPARATOR.join(extracted_pages), page_count
    except Exception as e:
        logger.warning("pdfplumber extraction failed, will try fallback", error=str(e))
        raise PDFExtractionError(f"pdfplumber extraction failed: {str(e)}")


def extract_text_with_pypdf_fallback(file_bytes: bytes) -> Tuple[str, int]:
    """
    Extract text from PDF using pypdf (fallback method).

    Raises:
        PDFExtractionError: If extraction fails
    """
    try:
        reader = pypdf.PdfReader(io.BytesIO(file_bytes))
        extracted_pages = [text for text in (page.extract_text() for page in reader.pages) if text]
        return PAGE_SEPARATOR.join(extracted_pages), len(reader.pages)
    except Exception as e:
        logger.error("pypdf fallback extraction also failed", error=str(e))
        raise PDFExtractionError(f"All extraction methods failed: {str(e)}")


def extract_pdf_text(file_bytes: bytes) -> str:
    """
    Main entry point for PDF text extraction with automatic fallback.

    Raises:
        InvalidPDFError: If PDF signature validation fails
        PDFExtractionError: If all extraction methods fail
    """
    validate_pdf_signature(file_bytes)

    try:
        text, page_count = extract_text_with_pdfplumber(file_bytes)
        method = "pdfplumber"
    except PDFExtractionError:
        text, page_count = extract_text_with_pypdf_fallback(file_bytes)
        method = "pypdf_fallback"

    logger.info("PDF extraction complete", method=method, pages=page_count, chars=len(text))
    return text.strip()

