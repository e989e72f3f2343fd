"""
Scanned PDF extractor.

Pages are rasterised (bounded by OCR_MAX_PAGES), straightened, and sent to the
vision oracle. When the vision oracle is not configured or finds nothing,
Tesseract reads the pages and the text goes through the statement prompt.
"""

import asyncio

import pytesseract
import structlog

from app.config import settings
from app.extractors.ai_records import statement_date_from_payload, validate_records
from app.extractors.base import AssetExtractor, LoadedDocument, ParsingError
from app.observability.metrics import (
    assets_extracted_total, extraction_fallbacks_total, rows_dropped_total,
)
from app.oracles.classification import OracleError
from app.oracles.prompts import StatementExtractionPrompt, VisionExtractionPrompt
from app.pipeline.renderer import (
    RenderError, RenderedPage, count_pages, ocr_page_text, preprocess_page, render_pdf_pages,
)
from app.schemas.contracts import ExtractionResult

logger = structlog.get_logger(__name__)


def render_for_ocr(data: bytes, max_pages: int) -> list[RenderedPage]:
    return [preprocess_page(p) for p in render_pdf_pages(data, max_pages=max_pages)]


def ocr_pages(pages: list[RenderedPage]) -> str:
    texts = []
    for page in pages:
        try:
            texts.append(ocr_page_text(page))
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            logger.warning("tesseract_page_failed", page=page.page_index, error=str(e))
    return "\n".join(t for t in texts if t.strip())


class OcrExtractor(AssetExtractor):
    extractor_name = "pdf_ocr"
    vision_prompt = VisionExtractionPrompt()
    text_prompt = StatementExtractionPrompt()

    async def load(self, data: bytes, file_name: str) -> LoadedDocument:
        page_count = await asyncio.to_thread(count_pages, data)
        return LoadedDocument(file_name=file_name, payload=data, page_count=page_count,
                              meta={"scanned": True})

    async def extract_assets(self, doc: LoadedDocument) -> ExtractionResult:
        file_name = doc.file_name
        max_pages = settings.OCR_MAX_PAGES

        try:
            pages = await asyncio.to_thread(render_for_ocr, doc.payload, max_pages)
        except RenderError as e:
            raise ParsingError(f"Could not rasterise scanned PDF: {e.message}", file_name,
                               error_code=e.error_code) from e

        if not pages:
            raise ParsingError("Scanned PDF has no pages", file_name, error_code="EMPTY_FILE")

        if doc.page_count and doc.page_count > max_pages:
            logger.info("ocr_pages_capped", file_name=file_name, pages=doc.page_count, cap=max_pages)

        assets, dropped, statement_date_hint = [], 0, None
        fallback_used = None
        ocr_text = ""

        if self.oracle.is_enabled:
            try:
                payload = await self.oracle.classify_images(
                    self.vision_prompt.prompt,
                    [p.to_png() for p in pages],
                    operation="extract_pdf_vision",
                    model=settings.ORACLE_VISION_MODEL,
                    tracker=self.tracker,
                )
            except OracleError as e:
                logger.warning("vision_extraction_failed", file_name=file_name, error=e.message)
            else:
                assets, dropped = validate_records(payload, file_name)
                statement_date_hint = statement_date_from_payload(payload)
                fallback_used = "ocr_vision"

        if not assets and settings.ENABLE_TESSERACT:
            ocr_text = await asyncio.to_thread(ocr_pages, pages)
            if ocr_text.strip() and self.oracle.is_enabled:
                extraction_fallbacks_total.labels(fallback="ocr_tesseract").inc()
                try:
                    payload = await self.oracle.classify_text(
                        self.text_prompt.system_prompt,
                        self.text_prompt.format_user_message(ocr_text[:settings.PDF_TEXT_MAX_CHARS]),
                        operation="extract_pdf_ocr_text",
                        model=settings.ORACLE_EXTRACTION_MODEL,
                        temperature=0.2,
                        tracker=self.tracker,
                    )
                except OracleError as e:
                    raise ParsingError(f"Failed to extract assets from scanned PDF: {e.message}",
                                       file_name, error_code="EXTRACTION_ORACLE_FAILED") from e
                assets, ocr_dropped = validate_records(payload, file_name)
                dropped += ocr_dropped
                statement_date_hint = statement_date_from_payload(payload)
                fallback_used = "ocr_tesseract"

        if fallback_used == "ocr_vision":
            extraction_fallbacks_total.labels(fallback="ocr_vision").inc()

        if not assets:
            if not self.oracle.is_enabled:
                reason = ("This PDF appears to be scanned. Reading scanned statements requires "
                          "the classification oracle, which is not configured.")
            else:
                reason = "No assets found in scanned PDF. The image quality may be too low."
            raise ParsingError(reason, file_name, error_code="NO_ASSETS")

        assets_extracted_total.labels(extractor=self.extractor_name).inc(len(assets))
        if dropped:
            rows_dropped_total.labels(extractor=self.extractor_name).inc(dropped)

        logger.info("ocr_extracted", file_name=file_name, pages=len(pages), assets=len(assets),
                    dropped=dropped, fallback=fallback_used)

        return ExtractionResult(
            raw_assets=assets,
            document_text=ocr_text or doc.document_text,
            statement_date_hint=statement_date_hint,
            rows_dropped=dropped,
            fallback_used=fallback_used,
            page_count=doc.page_count or len(pages),
        )
