"""Document parsing utilities with format-aware extractors.

Every extractor turns raw document bytes into ordered page groups. Each group
is chunked independently so page numbers survive into the chunk records.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Mapping, Optional

import openpyxl
import pdfplumber
from docx import Document as DocxDocument
from pptx import Presentation

from docsync.core.exceptions import DocumentDecodeError
from docsync.models.ingestion import FieldValue, stringify_field

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "... [truncated]"


@dataclass(frozen=True)
class PageText:
    page_number: int
    text: str


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def truncate(text: str, limit: Optional[int]) -> str:
    if limit is None or len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def flatten_fields(
    fields: Mapping[str, FieldValue],
    *,
    field_limit: Optional[int] = None,
    document_limit: Optional[int] = None,
) -> str:
    """Render a field map as ``key: value`` lines.

    Overlong single values are cut at ``field_limit`` and the joined text at
    ``document_limit``; both cuts append the truncation marker.
    """

    lines = [f"{name}: {truncate(stringify_field(value), field_limit)}" for name, value in fields.items()]
    content = "\n".join(lines)
    if lines:
        content += "\n"
    return truncate(content, document_limit)


class DocumentParser:
    """Parse raw document bytes into page-grouped plain text."""

    def __init__(self) -> None:
        self._extractors: Dict[str, Callable[[bytes], List[PageText]]] = {
            ".pdf": self._extract_pdf,
            ".docx": self._extract_docx,
            ".doc": self._extract_docx,
            ".xlsx": self._extract_spreadsheet,
            ".xls": self._extract_spreadsheet,
            ".pptx": self._extract_presentation,
            ".ppt": self._extract_presentation,
        }

    def supports(self, name: str) -> bool:
        return PurePosixPath(name).suffix.lower() in self._extractors

    async def parse(self, content: bytes, name: str) -> List[PageText]:
        extension = PurePosixPath(name).suffix.lower()
        extractor = self._extractors.get(extension)
        if extractor is None:
            raise DocumentDecodeError(
                "unsupported_format",
                f"Unsupported file type: {extension or '<none>'}",
                {"document_id": name},
            )

        try:
            pages = await asyncio.to_thread(extractor, content)
        except Exception as exc:
            raise DocumentDecodeError(
                "decode_failed",
                f"Failed to decode {name}: {exc}",
                {"document_id": name, "format": extension},
            ) from exc

        pages = [page for page in pages if page.text]
        logger.debug("Extracted %s page groups from %s", len(pages), name)
        return pages

    @staticmethod
    def _extract_pdf(content: bytes) -> List[PageText]:
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            return [
                PageText(page.page_number, normalize_whitespace(page.extract_text() or ""))
                for page in pdf.pages
            ]

    @staticmethod
    def _extract_docx(content: bytes) -> List[PageText]:
        doc = DocxDocument(io.BytesIO(content))
        text = " ".join(paragraph.text.strip() for paragraph in doc.paragraphs if paragraph.text.strip())
        return [PageText(1, normalize_whitespace(text))]

    @staticmethod
    def _extract_spreadsheet(content: bytes) -> List[PageText]:
        workbook = openpyxl.load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
        try:
            sheets: List[PageText] = []
            for ordinal, sheet in enumerate(workbook.worksheets, start=1):
                cells = [
                    str(cell)
                    for row in sheet.iter_rows(values_only=True)
                    for cell in row
                    if cell is not None and str(cell).strip()
                ]
                sheets.append(PageText(ordinal, normalize_whitespace(" ".join(cells))))
            return sheets
        finally:
            workbook.close()

    @staticmethod
    def _extract_presentation(content: bytes) -> List[PageText]:
        presentation = Presentation(io.BytesIO(content))
        slides: List[PageText] = []
        for ordinal, slide in enumerate(presentation.slides, start=1):
            segments = [
                shape.text.strip()
                for shape in slide.shapes
                if getattr(shape, "has_text_frame", False) and shape.text.strip()
            ]
            slides.append(PageText(ordinal, normalize_whitespace(" ".join(segments))))
        return slides
