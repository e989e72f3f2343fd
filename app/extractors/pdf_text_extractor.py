"""
Text PDF extractor.

pdfplumber pulls the embedded text layer; the extraction oracle turns it into
records. A document with (almost) no text layer is a scan and is handed to the
OCR extractor instead.
"""

import io
from typing import Optional

import pdfplumber
import structlog
from pdfminer.pdfparser import PDFSyntaxError
from pdfplumber.utils.exceptions import PdfminerException

from app.config import settings
from app.extractors.ai_records import statement_date_from_payload, validate_records
from app.extractors.base import AssetExtractor, LoadedDocument, ParsingError
from app.extractors.ocr_extractor import OcrExtractor
from app.observability.metrics import assets_extracted_total, rows_dropped_total
from app.oracles.classification import OracleError
from app.oracles.prompts import StatementExtractionPrompt
from app.schemas.contracts import ExtractionResult

logger = structlog.get_logger(__name__)


def read_pdf_text(data: bytes) -> tuple[str, int]:
    """Joined text of every page and the page count."""
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        texts = [(page.extract_text() or "") for page in pdf.pages]
        return "\n".join(texts), len(pdf.pages)


def is_scanned(text: str, min_chars: Optional[int] = None) -> bool:
    """Too little embedded text to be anything but an image-only document."""
    return len(text.strip()) < (min_chars or settings.PDF_TEXT_MIN_CHARS)


class PdfTextExtractor(AssetExtractor):
    extractor_name = "pdf_text"
    prompt = StatementExtractionPrompt()

    async def load(self, data: bytes, file_name: str) -> LoadedDocument:
        try:
            text, page_count = read_pdf_text(data)
        except (PdfminerException, PDFSyntaxError, ValueError) as e:
            raise ParsingError(f"Failed to read PDF: {e}", file_name, error_code="UNREADABLE_FILE") from e

        scanned = is_scanned(text)
        logger.info("pdf_loaded", file_name=file_name, pages=page_count,
                    text_chars=len(text.strip()), scanned=scanned)

        return LoadedDocument(
            file_name=file_name,
            document_text=text,
            payload=data,
            page_count=page_count,
            meta={"scanned": scanned},
        )

    async def extract_assets(self, doc: LoadedDocument) -> ExtractionResult:
        if doc.meta.get("scanned"):
            logger.info("pdf_routed_to_ocr", file_name=doc.file_name)
            ocr = OcrExtractor(oracle=self.oracle, tracker=self.tracker)
            return await ocr.extract_assets(doc)

        if not self.oracle.is_enabled:
            raise ParsingError(
                "PDF extraction requires the classification oracle, which is not configured",
                doc.file_name,
                error_code="ORACLE_UNAVAILABLE",
            )

        try:
            payload = await self.oracle.classify_text(
                self.prompt.system_prompt,
                self.prompt.format_user_message(doc.document_text[:settings.PDF_TEXT_MAX_CHARS]),
                operation="extract_pdf_text",
                model=settings.ORACLE_EXTRACTION_MODEL,
                temperature=0.2,
                tracker=self.tracker,
            )
        except OracleError as e:
            raise ParsingError(f"Failed to extract assets from PDF: {e.message}", doc.file_name,
                               error_code="EXTRACTION_ORACLE_FAILED") from e

        assets, dropped = validate_records(payload, doc.file_name)
        if not assets:
            raise ParsingError(
                "No assets found in PDF. Make sure the PDF contains a holdings or portfolio statement.",
                doc.file_name,
                error_code="NO_ASSETS",
            )

        assets_extracted_total.labels(extractor=self.extractor_name).inc(len(assets))
        if dropped:
            rows_dropped_total.labels(extractor=self.extractor_name).inc(dropped)

        logger.info("pdf_text_extracted", file_name=doc.file_name, assets=len(assets), dropped=dropped)

        return ExtractionResult(
            raw_assets=assets,
            document_text=doc.document_text,
            statement_date_hint=statement_date_from_payload(payload),
            rows_dropped=dropped,
            page_count=doc.page_count,
        )
