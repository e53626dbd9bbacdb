"""Text extraction for uploaded document formats."""

from __future__ import annotations

import io

import docx
import fitz

from classroom_rag.core.errors import ExtractionError, UnsupportedMimeTypeError
from classroom_rag.ingest.types import ExtractedDocument
from classroom_rag.uploads.broker import DOC_MIME, DOCX_MIME, PDF_MIME, TEXT_MIME
from classroom_rag.utils.text import clean_extracted_text


class BaseExtractor:
    """Common extractor interface."""

    mime_types: tuple[str, ...] = ()

    def can_extract(self, mime_type: str) -> bool:
        return mime_type in self.mime_types

    def extract(self, payload: bytes, mime_type: str) -> ExtractedDocument:  # pragma: no cover - interface
        raise NotImplementedError


class TextExtractor(BaseExtractor):
    mime_types = (TEXT_MIME,)

    def extract(self, payload: bytes, mime_type: str) -> ExtractedDocument:
        text = payload.decode("utf-8", errors="replace").lstrip("\ufeff")
        return ExtractedDocument(text=clean_extracted_text(text), mime=mime_type)


class PDFExtractor(BaseExtractor):
    mime_types = (PDF_MIME,)

    def extract(self, payload: bytes, mime_type: str) -> ExtractedDocument:
        try:
            with fitz.open(stream=payload, filetype="pdf") as doc:
                if doc.needs_pass:
                    raise ExtractionError("The PDF is password protected")
                pages = [page.get_text("text", sort=True) for page in doc]
        except (RuntimeError, ValueError) as exc:
            raise ExtractionError(f"Could not read the PDF file: {exc}") from exc
        text = clean_extracted_text("\n\n".join(pages))
        return ExtractedDocument(text=text, mime=mime_type, metadata={"page_count": len(pages)})


class DocxExtractor(BaseExtractor):
    """Word documents; legacy ``.doc`` is accepted only when it is really OOXML."""

    mime_types = (DOCX_MIME, DOC_MIME)

    def extract(self, payload: bytes, mime_type: str) -> ExtractedDocument:
        try:
            document = docx.Document(io.BytesIO(payload))
        except Exception as exc:
            if mime_type == DOC_MIME:
                raise ExtractionError(
                    "Legacy .doc files are only partially supported. Save the file as .docx and upload it again."
                ) from exc
            raise ExtractionError("Could not read the DOCX file") from exc
        paragraphs = [para.text for para in document.paragraphs if para.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    paragraphs.append(" | ".join(cells))
        text = clean_extracted_text("\n\n".join(paragraphs))
        core = document.core_properties
        metadata = {"title": core.title or None, "author": core.author or None}
        return ExtractedDocument(text=text, mime=mime_type, metadata=metadata)


class ExtractorRegistry:
    """Registry that selects an extractor for a MIME type."""

    def __init__(self, min_chars: int = 50) -> None:
        self.min_chars = min_chars
        self._extractors: list[BaseExtractor] = [
            TextExtractor(),
            PDFExtractor(),
            DocxExtractor(),
        ]

    def for_mime(self, mime_type: str) -> BaseExtractor | None:
        for extractor in self._extractors:
            if extractor.can_extract(mime_type):
                return extractor
        return None

    def extract(self, payload: bytes, mime_type: str) -> ExtractedDocument:
        extractor = self.for_mime(mime_type)
        if extractor is None:
            raise UnsupportedMimeTypeError(mime_type)
        extracted = extractor.extract(payload, mime_type)
        meaningful = len("".join(extracted.text.split()))
        if meaningful < self.min_chars:
            raise ExtractionError(
                "Not enough text could be extracted from the document. "
                "It may contain only images or be protected."
            )
        return extracted


__all__ = ["ExtractorRegistry", "BaseExtractor", "TextExtractor", "PDFExtractor", "DocxExtractor"]
