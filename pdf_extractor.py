"""
pdf_extractor.py - Extract image XObjects and suggested metadata from a PDF.

Uses pikepdf for the object graph and image decoding, pdfminer.six for page
text, and langdetect to guess the document language. Extraction is read-only:
the source bytes are never modified.

Image index order follows the page's /XObject dictionary iteration order,
which is sorted by resource name in pikepdf. That order is not guaranteed to
match the visual reading order of the page.
"""
import base64
import logging
import uuid
from io import BytesIO
from pathlib import Path
from typing import Optional

import pikepdf
from langdetect import DetectorFactory, detect as detect_language
from langdetect.lang_detect_exception import LangDetectException
from pdfminer.high_level import extract_text

import config
import pdf_objects
from errors import PartialExtractionFailure
from models import DocumentMetadata, ImageFormat, ImageRecord
from pdf_objects import PdfKind
from png_codec import rgba_data_url

logger = logging.getLogger(__name__)

# Deterministic language guesses across runs
DetectorFactory.seed = 0

# Filters whose payload is already a self-contained image file
_PASSTHROUGH_FILTERS = {
    "/DCTDecode": (ImageFormat.JPEG, "image/jpeg"),
    "/JPXDecode": (ImageFormat.JPEG2000, "image/jp2"),
}


def extract_images(pdf_bytes: bytes) -> list:
    """Main entry point: list every image XObject, page by page.

    Raises MalformedDocument if the bytes cannot be parsed. A failure on a
    single image is logged and that image is skipped.
    """
    images = []
    with pdf_objects.open_for_read(pdf_bytes) as handle:
        for page_idx, page in enumerate(pdf_objects.iter_pages(handle)):
            page_number = page_idx + 1
            xobjects = _page_xobjects(page, page_number)
            if xobjects is None:
                continue

            img_index = 0
            for name, value in xobjects.items():
                try:
                    record = _extract_image(handle, name, value, page_number, img_index)
                except PartialExtractionFailure as e:
                    logger.warning("Skipping image %s on page %d: %s",
                                   e.name, e.page_number, e)
                    continue
                if record is None:
                    continue
                images.append(record)
                img_index += 1
                logger.debug("Extracted image %s: %dx%d %s on page %d",
                             name, record.width, record.height,
                             record.format.value, page_number)

    logger.info("Extracted %d image(s)", len(images))
    return images


def _page_xobjects(page, page_number: int) -> Optional[pikepdf.Dictionary]:
    """The page's /XObject resource dictionary, or None if it has none."""
    try:
        resources = pdf_objects.resolve_resources(page)
        if resources is None:
            return None
        xobjects = resources.get("/XObject")
    except pikepdf.PdfError as e:
        logger.warning("Could not read resources on page %d: %s", page_number, e)
        return None
    if pdf_objects.classify(xobjects) != PdfKind.DICTIONARY:
        return None
    return xobjects


def _extract_image(handle, name: str, value, page_number: int,
                   img_index: int) -> Optional[ImageRecord]:
    """Build an ImageRecord for one XObject entry.

    Returns None for entries that are not images (forms, fonts, zero-size
    images). Raises PartialExtractionFailure when an image cannot be read.
    """
    obj = pdf_objects.resolve(handle, value)
    if pdf_objects.classify(obj) != PdfKind.STREAM:
        return None
    if pdf_objects.get_name(obj, "/Subtype") != "/Image":
        return None

    width = pdf_objects.get_positive_int(obj, "/Width")
    height = pdf_objects.get_positive_int(obj, "/Height")
    if width is None or height is None:
        return None

    try:
        image_format, data_url = _encode_image(obj, width, height)
    except Exception as e:
        raise PartialExtractionFailure(str(e), page_number=page_number, name=name) from e

    return ImageRecord(
        id=str(uuid.uuid4()),
        page_number=page_number,
        index=img_index,
        width=width,
        height=height,
        format=image_format,
        data_url=data_url,
    )


def _encode_image(stream, width: int, height: int) -> tuple:
    """Produce (ImageFormat, data URL) for an image stream.

    JPEG and JPEG 2000 payloads are passed through untouched. Everything
    else is decoded into RGBA samples and re-encoded as PNG.
    """
    filters = pdf_objects.filter_names(stream)
    if len(filters) == 1 and filters[0] in _PASSTHROUGH_FILTERS:
        image_format, mime = _PASSTHROUGH_FILTERS[filters[0]]
        raw = stream.read_raw_bytes()
        if not raw:
            raise ValueError("empty image stream")
        return image_format, f"data:{mime};base64," + base64.b64encode(raw).decode("ascii")

    pil_image = pikepdf.PdfImage(stream).as_pil_image()
    if pil_image.size != (width, height):
        raise ValueError(f"decoded size {pil_image.size} does not match "
                         f"declared {width}x{height}")
    rgba = pil_image.convert("RGBA").tobytes()
    fmt, data_url = rgba_data_url(width, height, rgba)
    return ImageFormat(fmt), data_url


# ---------------------------------------------------------------------------
# Metadata suggestions
# ---------------------------------------------------------------------------

def read_document_metadata(pdf_bytes: bytes) -> DocumentMetadata:
    """Metadata exactly as stored in the document."""
    with pdf_objects.open_for_read(pdf_bytes) as handle:
        return pdf_objects.read_metadata(handle)


def suggest_metadata(pdf_bytes: bytes, original_name: str = "") -> DocumentMetadata:
    """Stored metadata with a usable title and language filled in.

    Title: the stored title if meaningful, else derived from the file name.
    Language: the stored /Lang, else detected from the first pages' text.
    """
    metadata = read_document_metadata(pdf_bytes)

    if not _is_meaningful_title(metadata.title or ""):
        if original_name:
            metadata.title = (Path(original_name).stem
                              .replace("_", " ").replace("-", " ").title())
        else:
            metadata.title = None

    if not metadata.language:
        metadata.language = detect_document_language(pdf_bytes)

    return metadata


def detect_document_language(pdf_bytes: bytes) -> Optional[str]:
    """Guess the document language from its text; None if there is no text."""
    try:
        text = extract_text(BytesIO(pdf_bytes), maxpages=config.LANGUAGE_DETECTION_PAGES)
    except Exception as e:
        logger.debug("Could not read text for language detection: %s", e)
        return None

    text = " ".join(text.split())[:config.LANGUAGE_DETECTION_CHARS]
    if not text:
        return None
    try:
        return detect_language(text)
    except LangDetectException as e:
        logger.warning("Language detection failed: %s", e)
        return None


def _is_meaningful_title(title: str) -> bool:
    """Check if a title from PDF metadata is meaningful (not a generic placeholder)."""
    if not title or not title.strip():
        return False
    normalized = title.strip().lower()
    generic_titles = {
        "title", "untitled", "document", "doc", "pdf", "file",
        "microsoft word", "powerpoint presentation", "slide 1",
        "new document", "unnamed",
    }
    if normalized in generic_titles:
        return False
    if len(normalized) < 3:
        return False
    return True
