"""
PDF rasterisation and image preprocessing for the OCR path.

Renders a bounded number of pages in memory, corrects orientation and skew,
and hands back PNG bytes ready for a vision oracle or Tesseract.
"""

import io
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np
import pytesseract
import structlog
from pdf2image import convert_from_bytes, pdfinfo_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
from PIL import Image

from app.config import settings

logger = structlog.get_logger(__name__)


class RenderError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.error_code = "RENDER_FAILED"


@dataclass
class RenderedPage:
    page_index: int
    image: Image.Image
    width: int
    height: int
    dpi: int = 200
    orientation_detected: int = 0
    skew_degrees: float = 0.0

    def to_png(self) -> bytes:
        buf = io.BytesIO()
        self.image.save(buf, format="PNG")
        return buf.getvalue()


# ─── PDF Rendering ────────────────────────────────────────────

def count_pages(pdf_bytes: bytes) -> Optional[int]:
    try:
        info = pdfinfo_from_bytes(pdf_bytes, poppler_path=settings.POPPLER_PATH)
    except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError) as e:
        logger.debug("pdf_page_count_unavailable", reason=str(e))
        return None
    return int(info.get("Pages", 0)) or None


def render_pdf_pages(
    pdf_bytes: bytes,
    max_pages: Optional[int] = None,
    dpi: Optional[int] = None,
) -> list[RenderedPage]:
    """
    Render the first `max_pages` pages of a PDF to in-memory images.
    Pages past the cap are never rasterised.
    """
    max_pages = max_pages or settings.OCR_MAX_PAGES
    dpi = dpi or settings.RENDER_DPI

    try:
        images = convert_from_bytes(
            pdf_bytes,
            dpi=dpi,
            fmt="png",
            first_page=1,
            last_page=max_pages,
            thread_count=2,
            poppler_path=settings.POPPLER_PATH,
        )
    except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError) as e:
        logger.error("pdf_render_failed", error=str(e))
        raise RenderError(f"Failed to render PDF: {e}") from e

    rendered = [
        RenderedPage(page_index=i, image=img, width=img.width, height=img.height, dpi=dpi)
        for i, img in enumerate(images[:max_pages])
    ]

    logger.info("pdf_rendered", page_count=len(rendered), dpi=dpi)
    return rendered


# ─── Orientation Detection ────────────────────────────────────

def detect_and_fix_orientation(page: RenderedPage) -> RenderedPage:
    """Detect page orientation using Tesseract OSD and rotate upright if needed."""
    try:
        osd = pytesseract.image_to_osd(page.image, output_type=pytesseract.Output.DICT)
    except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
        logger.debug("orientation_detection_skipped", page=page.page_index, reason=str(e))
        return page

    rotation = osd.get("rotate", 0)
    conf = osd.get("orientation_conf", 0)

    if rotation != 0 and conf > 0.5:
        page.image = page.image.rotate(-rotation, expand=True)
        page.orientation_detected = rotation
        page.width, page.height = page.image.size
        logger.debug("orientation_corrected", page=page.page_index, rotation=rotation, conf=conf)

    return page


# ─── Skew Detection & Correction ─────────────────────────────

def estimate_skew(gray: np.ndarray) -> Optional[float]:
    """Median angle of near-horizontal Hough lines, or None when there are too few."""
    edges = cv2.Canny(gray, 50, 150, apertureSize=3)
    lines = cv2.HoughLinesP(edges, 1, np.pi / 180, threshold=100,
                            minLineLength=gray.shape[1] * 0.2, maxLineGap=10)

    if lines is None or len(lines) < 3:
        return None

    angles = []
    for line in lines:
        x1, y1, x2, y2 = line[0]
        if x2 != x1:
            angle = np.degrees(np.arctan2(y2 - y1, x2 - x1))
            if abs(angle) < 20:
                angles.append(angle)

    if not angles:
        return None
    return float(np.median(angles))


def detect_and_fix_skew(page: RenderedPage) -> RenderedPage:
    """
    Detect and correct skew using Hough line transform.
    Only corrects small angles (0.5° - 15°).
    """
    rgb = np.array(page.image.convert("RGB"))
    gray = cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)

    try:
        angle = estimate_skew(gray)
    except cv2.error as e:
        logger.debug("skew_detection_skipped", page=page.page_index, reason=str(e))
        return page

    if angle is None or not (0.5 < abs(angle) < 15):
        return page

    h, w = gray.shape[:2]
    M = cv2.getRotationMatrix2D((w // 2, h // 2), angle, 1.0)
    corrected = cv2.warpAffine(rgb, M, (w, h), borderMode=cv2.BORDER_REPLICATE)
    page.image = Image.fromarray(corrected)
    page.skew_degrees = round(angle, 3)
    logger.debug("skew_corrected", page=page.page_index, angle=page.skew_degrees)

    return page


# ─── Full Preprocessing Pipeline ──────────────────────────────

def preprocess_page(page: RenderedPage) -> RenderedPage:
    """Orientation then skew."""
    page = detect_and_fix_orientation(page)
    page = detect_and_fix_skew(page)
    return page


def ocr_page_text(page: RenderedPage, lang: Optional[str] = None) -> str:
    """Plain text of one page via Tesseract (uniform block layout)."""
    return pytesseract.image_to_string(
        page.image,
        lang=lang or settings.TESSERACT_LANG,
        config="--psm 6",
    )
