"""
PDF Processor
-------------
Purpose: Turn an uploaded document (PDF or plain text) into page-delimited text.
"""

import io
import logging
import mimetypes
from pathlib import Path
import re
from dataclasses import dataclass, field
from typing import List, Tuple

import pdfplumber
import PyPDF2

from .errors import ExtractionEmpty, UnsupportedDocumentType

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
TEXT_MIMES = ("text/plain", "text/markdown")
PAGE_SEPARATOR = "\n\n"
FAILED_PAGE_MARKER = "[Page {page} - extraction failed]"


@dataclass
class ExtractedDocument:
    """
    Linear text of a document plus where each page starts.

    page_boundaries[i] is the character offset of page i + 1 in ``text``.
    """
    text: str
    page_count: int
    page_boundaries: List[int] = field(default_factory=list)
    failed_pages: List[int] = field(default_factory=list)


def guess_mime_type(file_name: str) -> str:
    """Guess a mime type from a file name, defaulting to PDF."""
    if file_name.lower().endswith(".md"):
        return "text/markdown"
    mime_type, _ = mimetypes.guess_type(file_name)
    return mime_type or PDF_MIME


def clean_text(text: str) -> str:
    """
    Clean extracted text (control characters, trailing spaces, runs of blank lines).

    Blank lines are kept (collapsed to one) because they mark paragraphs.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = ''.join(char for char in text if char.isprintable() or char in '\n\t')
    text = '\n'.join(line.rstrip() for line in text.split('\n'))
    text = re.sub(r"\n\s*\n+", "\n\n", text)
    return text.strip()


def join_pages(pages: List[str]) -> Tuple[str, List[int]]:
    """Join page texts and record the offset where each page starts."""
    boundaries = []
    parts = []
    offset = 0
    for i, page_text in enumerate(pages):
        if i > 0:
            parts.append(PAGE_SEPARATOR)
            offset += len(PAGE_SEPARATOR)
        boundaries.append(offset)
        parts.append(page_text)
        offset += len(page_text)
    return "".join(parts), boundaries


class PDFProcessor:
    """
    Extract text from uploaded documents for RAG ingestion.

    Per-page failures (image-only or corrupted pages) are replaced with a
    placeholder instead of aborting the document. Only a document with no
    usable text on any page is rejected.
    """

    def __init__(self, use_pdfplumber: bool = False):
        """
        Initialize PDF processor.

        Args:
            use_pdfplumber: Use pdfplumber (better layouts) or PyPDF2
        """
        self.use_pdfplumber = use_pdfplumber
        if use_pdfplumber:
            logger.info("Using pdfplumber for PDF extraction")

    def extract(self, file_bytes: bytes, mime_type: str = PDF_MIME) -> ExtractedDocument:
        """
        Extract page-delimited text from raw document bytes.

        Args:
            file_bytes: Uploaded file contents
            mime_type: "application/pdf", "text/plain" or "text/markdown"

        Returns:
            ExtractedDocument with text, page_count and page boundaries

        Raises:
            UnsupportedDocumentType: For any other mime type
            ExtractionEmpty: If no page produced usable text
        """
        mime_type = (mime_type or PDF_MIME).split(";")[0].strip().lower()

        if mime_type == PDF_MIME:
            pages, failed = self._extract_pdf_pages(file_bytes)
        elif mime_type in TEXT_MIMES:
            pages, failed = [file_bytes.decode("utf-8", errors="replace")], []
        else:
            raise UnsupportedDocumentType(f"Unsupported document type: {mime_type}")

        usable = [clean_text(p) for p in pages]
        if not any(usable[i] for i in range(len(usable)) if (i + 1) not in failed):
            raise ExtractionEmpty(
                f"No text extracted from {len(pages)} page(s)"
            )

        page_texts = [
            FAILED_PAGE_MARKER.format(page=i + 1) if (i + 1) in failed else text
            for i, text in enumerate(usable)
        ]
        text, boundaries = join_pages(page_texts)

        logger.info(
            f"✓ Extracted {len(pages)} pages, {len(text)} chars"
            + (f" ({len(failed)} pages failed)" if failed else "")
        )
        return ExtractedDocument(
            text=text,
            page_count=len(pages),
            page_boundaries=boundaries,
            failed_pages=failed,
        )

    def process_pdf(self, pdf_path: str) -> ExtractedDocument:
        """
        Extract text from a document on disk.

        Example:
            >>> processor = PDFProcessor()
            >>> doc = processor.process_pdf("HR_Policy.pdf")
            >>> print(f"Extracted {doc.page_count} pages")
        """
        path = Path(pdf_path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")

        logger.info(f"Processing file: {path.name}")
        return self.extract(path.read_bytes(), guess_mime_type(path.name))

    def _extract_pdf_pages(self, file_bytes: bytes) -> Tuple[List[str], List[int]]:
        """Return (page texts, 1-based numbers of pages that failed)."""
        if self.use_pdfplumber:
            return self._extract_pdfplumber(file_bytes)
        return self._extract_pypdf2(file_bytes)

    def _extract_pypdf2(self, file_bytes: bytes) -> Tuple[List[str], List[int]]:
        try:
            reader = PyPDF2.PdfReader(io.BytesIO(file_bytes))
            page_objects = list(reader.pages)
        except Exception as e:
            logger.error(f"Failed to open PDF: {e}")
            raise ExtractionEmpty(f"Unreadable PDF: {e}")

        pages, failed = [], []
        for page_num, page in enumerate(page_objects, 1):
            try:
                pages.append(page.extract_text() or "")
            except Exception as e:
                logger.warning(f"Failed to extract page {page_num}: {e}")
                pages.append("")
                failed.append(page_num)
        return pages, failed

    def _extract_pdfplumber(self, file_bytes: bytes) -> Tuple[List[str], List[int]]:
        try:
            pdf = pdfplumber.open(io.BytesIO(file_bytes))
        except Exception as e:
            logger.error(f"Failed to open PDF: {e}")
            raise ExtractionEmpty(f"Unreadable PDF: {e}")

        pages, failed = [], []
        with pdf:
            for page_num, page in enumerate(pdf.pages, 1):
                try:
                    pages.append(page.extract_text() or "")
                except Exception as e:
                    logger.warning(f"Failed to extract page {page_num}: {e}")
                    pages.append("")
                    failed.append(page_num)
        return pages, failed
