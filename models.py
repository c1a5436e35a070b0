"""
models.py - Shared data structures for the remediation pipeline.

Defines the records that flow between extraction, alt-text generation,
remediation and reporting.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class ImageFormat(Enum):
    JPEG = "jpeg"
    JPEG2000 = "jp2"
    PNG = "png"
    RAW = "raw"


class ProcessingStatus(Enum):
    UPLOADED = "uploaded"
    EXTRACTING = "extracting"
    GENERATING_ALT_TEXT = "generating-alt-text"
    REMEDIATING = "remediating"
    COMPLETED = "completed"
    ERROR = "error"


class WcagLevel(Enum):
    A = "A"
    AA = "AA"
    AAA = "AAA"
    PARTIAL = "partial"


class IssueType(Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass
class ImageRecord:
    """An image XObject found on a page."""
    id: str
    page_number: int
    index: int
    width: int
    height: int
    format: ImageFormat
    data_url: Optional[str] = None
    alt_text: Optional[str] = None
    alt_text_generated: bool = False

    @property
    def base64_data(self) -> Optional[str]:
        """The base64 payload of the data URL, without the header."""
        if not self.data_url or "base64," not in self.data_url:
            return None
        return self.data_url.split("base64,", 1)[1]

    @property
    def mime_type(self) -> str:
        if self.format == ImageFormat.JPEG:
            return "image/jpeg"
        if self.format == ImageFormat.JPEG2000:
            return "image/jp2"
        return "image/png"


@dataclass
class DocumentMetadata:
    """Document-level metadata.

    None means "leave the field alone"; an empty string means "clear it".
    """
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    language: Optional[str] = None
    is_tagged: bool = False

    def present_fields(self) -> list:
        """Names of the fields carrying a non-empty value."""
        return [
            name for name in ("title", "language", "author", "subject")
            if getattr(self, name)
        ]


@dataclass
class AltTextEntry:
    """Alt text supplied for one extracted image."""
    id: str
    alt_text: str = ""


@dataclass
class StructureElement:
    """A node of the logical structure tree written into the PDF."""
    element_type: str
    alt_text: Optional[str] = None
    children: list = field(default_factory=list)


@dataclass
class AccessibilityIssue:
    type: IssueType
    code: str
    message: str
    count: Optional[int] = None


@dataclass
class AccessibilityReport:
    """Summary of what a remediation pass achieved."""
    document_id: str
    images_processed: int
    alt_texts_added: int
    metadata_added: list
    wcag_level: WcagLevel
    issues: list = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def warnings(self) -> list:
        return [i for i in self.issues if i.type == IssueType.WARNING]

    def errors(self) -> list:
        return [i for i in self.issues if i.type == IssueType.ERROR]

    def to_dict(self) -> dict:
        return {
            "documentId": self.document_id,
            "timestamp": self.timestamp.isoformat(),
            "imagesProcessed": self.images_processed,
            "altTextsAdded": self.alt_texts_added,
            "metadataAdded": list(self.metadata_added),
            "wcagLevel": self.wcag_level.value,
            "issues": [
                {
                    "type": i.type.value,
                    "code": i.code,
                    "message": i.message,
                    **({"count": i.count} if i.count is not None else {}),
                }
                for i in self.issues
            ],
        }


@dataclass
class DocumentRecord:
    """Registry entry for one uploaded PDF."""
    id: str
    filename: str
    original_name: str
    page_count: int
    file_size: int
    status: ProcessingStatus = ProcessingStatus.UPLOADED
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    images: list = field(default_factory=list)
    metadata: Optional[DocumentMetadata] = None
    error: str = ""


@dataclass
class RemediationOutcome:
    """Result of rewriting one PDF."""
    pdf_bytes: bytes
    figures_tagged: int = 0
    structure_tree_added: bool = False
