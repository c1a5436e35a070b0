"""
pdf_postprocess.py - Catalog and info-dictionary fixes for accessibility.

Uses pikepdf to apply the document-level requirements:
- caller-supplied title/author/subject/language on the info dictionary
- producer, creator, keywords and creation/modification dates
- /MarkInfo /Marked true, /Suspects false
- /ViewerPreferences /DisplayDocTitle true
- /Lang on the catalog
"""
import logging
from datetime import datetime, timezone
from typing import Optional

import pikepdf

import config
import pdf_objects
from models import DocumentMetadata

logger = logging.getLogger(__name__)


def apply_metadata(handle, metadata: Optional[DocumentMetadata]) -> list:
    """Write the fields present in ``metadata``; absent fields are untouched."""
    if metadata is None:
        return []
    changed = pdf_objects.write_metadata(handle, metadata)
    logger.debug("Metadata fields written: %s", ", ".join(changed) or "none")
    return changed


def stamp_producer(pdf: pikepdf.Pdf, now: Optional[datetime] = None):
    """Stamp producer/creator, keywords and fresh creation/modification dates."""
    now = now or datetime.now(timezone.utc)
    stamp = pdf_date(now)
    docinfo = pdf.docinfo
    docinfo[pikepdf.Name.Producer] = pikepdf.String(config.PRODUCER)
    docinfo[pikepdf.Name.Creator] = pikepdf.String(config.CREATOR)
    docinfo[pikepdf.Name.Keywords] = pikepdf.String(" ".join(config.KEYWORDS))
    docinfo[pikepdf.Name.CreationDate] = pikepdf.String(stamp)
    docinfo[pikepdf.Name.ModDate] = pikepdf.String(stamp)


def pdf_date(dt: datetime) -> str:
    """Format a datetime as a PDF date string (D:YYYYMMDDHHmmSS+HH'mm')."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    offset = dt.utcoffset()
    minutes = int(offset.total_seconds() // 60)
    sign = "+" if minutes >= 0 else "-"
    minutes = abs(minutes)
    return dt.strftime("D:%Y%m%d%H%M%S") + f"{sign}{minutes // 60:02d}'{minutes % 60:02d}'"


# ---------------------------------------------------------------------------
# Catalog-level fixes
# ---------------------------------------------------------------------------

def ensure_mark_info(pdf: pikepdf.Pdf):
    if not isinstance(pdf.Root.get("/MarkInfo"), pikepdf.Dictionary):
        pdf.Root.MarkInfo = pikepdf.Dictionary()
    # Preserve existing keys, only set /Marked and /Suspects
    pdf.Root.MarkInfo[pikepdf.Name.Marked] = True
    pdf.Root.MarkInfo[pikepdf.Name.Suspects] = False


def ensure_viewer_preferences(pdf: pikepdf.Pdf):
    if not isinstance(pdf.Root.get("/ViewerPreferences"), pikepdf.Dictionary):
        pdf.Root.ViewerPreferences = pikepdf.Dictionary()
    pdf.Root.ViewerPreferences[pikepdf.Name.DisplayDocTitle] = True


def ensure_language(pdf: pikepdf.Pdf, language: Optional[str]):
    """Mirror the info-dictionary language onto the catalog /Lang."""
    if language is None:
        return
    if language:
        pdf.Root.Lang = pikepdf.String(language)
    elif "/Lang" in pdf.Root:
        del pdf.Root[pikepdf.Name.Lang]
