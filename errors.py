"""
errors.py - Exception hierarchy for the remediation pipeline.

Fatal errors (MalformedDocument, SerializationError, DocumentNotFound) are
surfaced to callers. The partial-failure types are raised and caught inside
a single stage so one bad image or a broken structure tree never aborts the
whole document.
"""


class RemediationError(Exception):
    """Base class for all pipeline errors."""


class MalformedDocument(RemediationError):
    """The input bytes are not a parseable PDF object graph."""


class SerializationError(RemediationError):
    """The modified object graph could not be written back to bytes."""


class DocumentNotFound(RemediationError):
    """No upload or registry record exists for a document id."""


class ExternalServiceError(RemediationError):
    """The vision description service failed or timed out."""


class RateLimitError(ExternalServiceError):
    """The vision service rejected a request with HTTP 429."""


class PartialExtractionFailure(RemediationError):
    """A single image could not be extracted."""

    def __init__(self, message: str, page_number: int = 0, name: str = ""):
        super().__init__(message)
        self.page_number = page_number
        self.name = name


class PartialStructureFailure(RemediationError):
    """The structure tree could not be attached to the document."""
