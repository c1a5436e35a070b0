"""
accessibility.py - Document workflow: upload, extract, describe, remediate.

AccessibilityService ties storage, the registry and the vision backend to
the extraction and tagging stages. Work on a single document id is
serialized; different documents can be processed concurrently.
"""
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

import config
import pdf_objects
from errors import ExternalServiceError, RemediationError
from models import (
    AccessibilityIssue, AccessibilityReport, AltTextEntry, DocumentMetadata,
    DocumentRecord, ImageRecord, IssueType, ProcessingStatus, WcagLevel,
)
from pdf_extractor import extract_images, suggest_metadata
from pdf_tagger import tag_pdf
from storage import DocumentStorage, DocumentStore, KeyedLock

logger = logging.getLogger(__name__)


@dataclass
class RemediationResult:
    document_id: str
    output_path: Path
    report: AccessibilityReport


class AccessibilityService:

    def __init__(self, storage: DocumentStorage, store: DocumentStore,
                 vision=None, locks: KeyedLock = None,
                 lock_timeout: float = config.DOCUMENT_LOCK_TIMEOUT_SECONDS):
        self.storage = storage
        self.store = store
        self.vision = vision
        self.locks = locks or KeyedLock()
        self.lock_timeout = lock_timeout

    # -----------------------------------------------------------------------
    # Upload
    # -----------------------------------------------------------------------

    def upload_document(self, data: bytes, original_name: str) -> DocumentRecord:
        """Validate and store an uploaded PDF, registering a new record."""
        if len(data) > config.MAX_FILE_SIZE_BYTES:
            raise ValueError(f"'{original_name}' exceeds the {config.MAX_FILE_SIZE_MB} MB limit "
                             f"({len(data) / 1024 / 1024:.1f} MB)")
        with pdf_objects.open_for_read(data) as handle:
            pages = pdf_objects.page_count(handle)

        document_id = self.storage.save_upload(data)
        record = DocumentRecord(
            id=document_id,
            filename=self.storage.upload_path(document_id).name,
            original_name=original_name,
            page_count=pages,
            file_size=len(data),
        )
        self.store.set(record)
        logger.info("Uploaded %s as %s (%d pages)", original_name, document_id, pages)
        return record

    # -----------------------------------------------------------------------
    # Extraction
    # -----------------------------------------------------------------------

    def process_document(self, document_id: str) -> tuple:
        """Extract images and suggested metadata; returns (images, metadata)."""
        record = self.store.require(document_id)
        with self.locks.hold(document_id, self.lock_timeout):
            self.store.update(document_id, status=ProcessingStatus.EXTRACTING)
            try:
                data = self.storage.read_upload(document_id)
                images = extract_images(data)
                metadata = suggest_metadata(data, record.original_name)
            except Exception as e:
                self._fail(document_id, e)
                raise

        self.store.update(document_id, status=ProcessingStatus.UPLOADED,
                          images=images, metadata=metadata)
        return images, metadata

    # -----------------------------------------------------------------------
    # Alt text
    # -----------------------------------------------------------------------

    def generate_alt_texts(self, document_id: str) -> list:
        """Describe every image that has no generated alt text yet.

        A failed description becomes the unavailable sentinel; the rest of
        the document carries on.
        """
        if self.vision is None:
            raise ExternalServiceError("No vision service configured")
        record = self.store.require(document_id)
        self.store.update(document_id, status=ProcessingStatus.GENERATING_ALT_TEXT)

        updated = []
        try:
            for image in record.images:
                b64 = image.base64_data
                if not b64 or image.alt_text_generated:
                    updated.append(image)
                    continue
                try:
                    alt_text = self.vision.generate_alt_text(b64, mime_type=image.mime_type)
                    updated.append(replace(image, alt_text=alt_text, alt_text_generated=True))
                except ExternalServiceError as e:
                    logger.error("Failed to generate alt-text for image %s: %s", image.id, e)
                    updated.append(replace(image, alt_text=config.ALT_TEXT_UNAVAILABLE,
                                           alt_text_generated=False))
        except Exception as e:
            self._fail(document_id, e)
            raise

        self.store.update(document_id, images=updated, status=ProcessingStatus.UPLOADED)
        return updated

    # -----------------------------------------------------------------------
    # Remediation
    # -----------------------------------------------------------------------

    def remediate_document(self, document_id: str, image_alt_texts: list,
                           metadata: Optional[DocumentMetadata] = None) -> RemediationResult:
        """Write a remediated copy of the upload and score it."""
        self.store.require(document_id)
        alt_texts = coerce_alt_texts(image_alt_texts)

        with self.locks.hold(document_id, self.lock_timeout):
            self.store.update(document_id, status=ProcessingStatus.REMEDIATING)
            try:
                data = self.storage.read_upload(document_id)
                outcome = tag_pdf(data, alt_texts, metadata)
                output_path = self.storage.write_output(document_id, outcome.pdf_bytes)
            except Exception as e:
                self._fail(document_id, e)
                raise

        report = build_report(document_id, alt_texts, metadata,
                              structure_tree_added=outcome.structure_tree_added)
        self.store.update(document_id, status=ProcessingStatus.COMPLETED, metadata=metadata)
        logger.info("Remediated %s: %d figure(s), WCAG %s", document_id,
                    outcome.figures_tagged, report.wcag_level.value)
        return RemediationResult(document_id=document_id, output_path=output_path,
                                 report=report)

    def remediate_batch(self, document_ids: list,
                        metadata: Optional[DocumentMetadata] = None) -> list:
        """Remediate several documents with their stored alt texts."""
        results = []
        for document_id in document_ids:
            record = self.store.get(document_id)
            if record is None:
                results.append({"id": document_id, "success": False,
                                 "error": "Document not found"})
                continue
            alt_texts = [AltTextEntry(id=img.id, alt_text=img.alt_text or "")
                         for img in record.images]
            try:
                result = self.remediate_document(document_id, alt_texts, metadata)
            except RemediationError as e:
                results.append({"id": document_id, "success": False, "error": str(e)})
                continue
            results.append({
                "id": document_id,
                "success": True,
                "filename": result.output_path.name,
                "report": result.report.to_dict(),
            })
        return results

    # -----------------------------------------------------------------------
    # Response helpers
    # -----------------------------------------------------------------------

    def handle_extract(self, document_id: str) -> dict:
        """Extract images, reusing a previous extraction when present."""
        try:
            record = self.store.require(document_id)
            if record.images:
                return {"success": True, "images": record.images}
            images, _ = self.process_document(document_id)
        except (RemediationError, TimeoutError) as e:
            logger.error("Image extraction failed for %s: %s", document_id, e)
            return {"success": False, "message": str(e)}
        return {
            "success": True,
            "images": images,
            "message": f"Extracted {len(images)} images from {record.page_count} pages",
        }

    def handle_remediate(self, document_id: str, image_alt_texts: list,
                         metadata: Optional[DocumentMetadata] = None) -> dict:
        try:
            result = self.remediate_document(document_id, image_alt_texts, metadata)
        except (RemediationError, TimeoutError) as e:
            logger.error("Remediation failed for %s: %s", document_id, e)
            return {"success": False, "message": str(e)}
        return {
            "success": True,
            "outputPath": str(result.output_path),
            "report": result.report.to_dict(),
            "message": "PDF remediated successfully",
        }

    def check_vision_status(self) -> dict:
        if self.vision is None:
            return {"connected": False, "modelAvailable": False, "provider": "none"}
        connected = self.vision.check_connection()
        available = self.vision.is_model_available() if connected else False
        return {"connected": connected, "modelAvailable": available,
                "provider": self.vision.name}

    def _fail(self, document_id: str, error: Exception):
        self.store.update(document_id, status=ProcessingStatus.ERROR, error=str(error))


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

def coerce_alt_texts(items: list) -> list:
    """Accept AltTextEntry objects or {"id", "altText"} dicts."""
    entries = []
    for item in items:
        if isinstance(item, AltTextEntry):
            entries.append(item)
        elif isinstance(item, ImageRecord):
            entries.append(AltTextEntry(id=item.id, alt_text=item.alt_text or ""))
        else:
            entries.append(AltTextEntry(
                id=str(item.get("id", "")),
                alt_text=item.get("altText", item.get("alt_text")) or "",
            ))
    return entries


def _is_meaningful_alt_text(alt_text: str) -> bool:
    return bool(alt_text) and alt_text != config.ALT_TEXT_UNAVAILABLE


def build_report(document_id: str, image_alt_texts: list,
                 metadata: Optional[DocumentMetadata] = None,
                 structure_tree_added: bool = True) -> AccessibilityReport:
    issues = []
    metadata = metadata or DocumentMetadata()

    if not metadata.title:
        issues.append(AccessibilityIssue(IssueType.WARNING, "MISSING_TITLE",
                                         "Document title is not set"))
    if not metadata.language:
        issues.append(AccessibilityIssue(IssueType.WARNING, "MISSING_LANGUAGE",
                                         "Document language is not set"))

    missing = sum(1 for e in image_alt_texts if not _is_meaningful_alt_text(e.alt_text))
    if missing:
        issues.append(AccessibilityIssue(
            IssueType.WARNING, "MISSING_ALT_TEXT",
            f"{missing} image(s) are missing meaningful alt-text", count=missing,
        ))

    if not structure_tree_added:
        issues.append(AccessibilityIssue(IssueType.WARNING, "MISSING_STRUCTURE_TREE",
                                         "Structure tree could not be added"))

    return AccessibilityReport(
        document_id=document_id,
        images_processed=len(image_alt_texts),
        alt_texts_added=sum(1 for e in image_alt_texts if _is_meaningful_alt_text(e.alt_text)),
        metadata_added=metadata.present_fields(),
        wcag_level=compute_wcag_level(issues),
        issues=issues,
    )


def compute_wcag_level(issues: list) -> WcagLevel:
    """AA when clean, A with at most two warnings, otherwise partial.

    AAA is never assigned.
    """
    errors = sum(1 for i in issues if i.type == IssueType.ERROR)
    warnings = sum(1 for i in issues if i.type == IssueType.WARNING)
    if errors == 0 and warnings == 0:
        return WcagLevel.AA
    if errors == 0 and warnings <= 2:
        return WcagLevel.A
    return WcagLevel.PARTIAL
