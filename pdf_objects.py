"""
pdf_objects.py - Thin accessor over the pikepdf object model.

Opens PDF bytes, walks pages, resolves references and reads/writes the
document info dictionary. Every object is classified into one closed set of
kinds so traversal code can skip anything exotic instead of raising.
"""
import logging
from decimal import Decimal
from enum import Enum
from io import BytesIO
from typing import Iterator, NamedTuple, Optional

import pikepdf

from errors import MalformedDocument, SerializationError
from models import DocumentMetadata

logger = logging.getLogger(__name__)

# Info dictionary keys for the writable metadata fields
_INFO_KEYS = {
    "title": pikepdf.Name.Title,
    "author": pikepdf.Name.Author,
    "subject": pikepdf.Name.Subject,
    "language": pikepdf.Name.Lang,
}


class PdfKind(Enum):
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    NAME = "name"
    ARRAY = "array"
    DICTIONARY = "dictionary"
    STREAM = "stream"
    REFERENCE = "reference"
    UNKNOWN = "unknown"


class ObjectRef(NamedTuple):
    """An indirect reference: object number + generation."""
    num: int
    gen: int = 0


class PdfHandle:
    """An open document. Owned by one operation; close it when done."""

    def __init__(self, pdf: pikepdf.Pdf, writable: bool = False):
        self.pdf = pdf
        self.writable = writable

    def close(self):
        self.pdf.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


# ---------------------------------------------------------------------------
# Open / save
# ---------------------------------------------------------------------------

def _open(data: bytes, writable: bool) -> PdfHandle:
    if not data or b"%PDF-" not in data[:1024]:
        raise MalformedDocument(f"Not a PDF file (header: {bytes(data[:8])!r})")
    try:
        pdf = pikepdf.Pdf.open(BytesIO(data))
    except pikepdf.PasswordError as e:
        logger.error("PDF is encrypted/password-protected")
        raise MalformedDocument("PDF is encrypted/password-protected") from e
    except pikepdf.PdfError as e:
        logger.error("Could not parse PDF: %s", e)
        raise MalformedDocument(f"Could not parse PDF: {e}") from e
    return PdfHandle(pdf, writable=writable)


def open_for_read(data: bytes) -> PdfHandle:
    return _open(data, writable=False)


def open_for_write(data: bytes) -> PdfHandle:
    return _open(data, writable=True)


def serialize(handle: PdfHandle) -> bytes:
    """Write the (possibly modified) object graph back to bytes."""
    if not handle.writable:
        raise SerializationError("Document was opened read-only")
    buf = BytesIO()
    try:
        handle.pdf.save(buf)
    except (pikepdf.PdfError, RuntimeError, ValueError) as e:
        logger.error("Could not serialize PDF: %s", e)
        raise SerializationError(f"Could not serialize PDF: {e}") from e
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

def page_count(handle: PdfHandle) -> int:
    return len(handle.pdf.pages)


def iter_pages(handle: PdfHandle) -> Iterator[pikepdf.Dictionary]:
    """Yield each page dictionary in document order."""
    for page in handle.pdf.pages:
        yield page.obj


def classify(obj) -> PdfKind:
    """Map a value from the object model onto the closed set of PDF kinds."""
    if obj is None:
        return PdfKind.NULL
    if isinstance(obj, ObjectRef):
        return PdfKind.REFERENCE
    if isinstance(obj, bool):
        return PdfKind.BOOLEAN
    if isinstance(obj, (int, float, Decimal)):
        return PdfKind.NUMBER
    if isinstance(obj, (str, bytes)):
        return PdfKind.STRING
    if not isinstance(obj, pikepdf.Object):
        return PdfKind.UNKNOWN
    # Stream before Dictionary: a stream also answers dictionary lookups
    if isinstance(obj, pikepdf.Stream):
        return PdfKind.STREAM
    if isinstance(obj, pikepdf.Dictionary):
        return PdfKind.DICTIONARY
    if isinstance(obj, pikepdf.Array):
        return PdfKind.ARRAY
    if isinstance(obj, pikepdf.Name):
        return PdfKind.NAME
    if isinstance(obj, pikepdf.String):
        return PdfKind.STRING
    if obj._type_code == pikepdf.ObjectType.null:
        return PdfKind.NULL
    return PdfKind.UNKNOWN


def reference_of(obj) -> Optional[ObjectRef]:
    """The indirect reference for an object, or None if it is direct."""
    try:
        if isinstance(obj, pikepdf.Object) and obj.is_indirect:
            num, gen = obj.objgen
            return ObjectRef(num, gen)
    except (pikepdf.PdfError, ValueError, TypeError):
        pass
    return None


def resolve(handle: PdfHandle, ref):
    """Dereference ``ref`` through the object table.

    Accepts an ObjectRef, an (num, gen) tuple, or an already-loaded object.
    A dangling reference yields None rather than an error.
    """
    if isinstance(ref, tuple):
        num, gen = ref
        try:
            obj = handle.pdf.get_object((num, gen))
        except (pikepdf.PdfError, ValueError, IndexError) as e:
            logger.debug("Dangling reference %d %d R: %s", num, gen, e)
            return None
    else:
        obj = ref
    if classify(obj) == PdfKind.NULL:
        return None
    return obj


def get_name(obj, key: str) -> Optional[str]:
    """The value of a name entry as '/Name', or None if absent or not a name."""
    if classify(obj) not in (PdfKind.DICTIONARY, PdfKind.STREAM):
        return None
    value = obj.get(key)
    if classify(value) != PdfKind.NAME:
        return None
    return str(value)


def get_positive_int(obj, key: str) -> Optional[int]:
    """The value of an integer entry if it is a positive integer."""
    if classify(obj) not in (PdfKind.DICTIONARY, PdfKind.STREAM):
        return None
    value = obj.get(key)
    if classify(value) != PdfKind.NUMBER:
        return None
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            return None
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        return None
    return value


def filter_names(stream) -> list:
    """The stream's /Filter entry as a list of '/Name' strings."""
    value = stream.get("/Filter")
    kind = classify(value)
    if kind == PdfKind.NAME:
        return [str(value)]
    if kind == PdfKind.ARRAY:
        return [str(f) for f in value if classify(f) == PdfKind.NAME]
    return []


def resolve_resources(page) -> Optional[pikepdf.Dictionary]:
    """Get Resources for a page, checking inheritance from the page tree."""
    res = page.get("/Resources")
    if classify(res) == PdfKind.DICTIONARY:
        return res
    # Walk up the page tree with circular reference protection
    parent = page.get("/Parent")
    seen = set()
    while classify(parent) == PdfKind.DICTIONARY:
        ref = reference_of(parent)
        if ref is not None:
            if ref in seen:
                break
            seen.add(ref)
        res = parent.get("/Resources")
        if classify(res) == PdfKind.DICTIONARY:
            return res
        parent = parent.get("/Parent")
    return None


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

def _text(value) -> Optional[str]:
    if classify(value) != PdfKind.STRING:
        return None
    return str(value)


def read_metadata(handle: PdfHandle) -> DocumentMetadata:
    """Read title/author/subject/language and the tagged flag."""
    pdf = handle.pdf
    info = pdf.trailer.get("/Info")
    if classify(info) != PdfKind.DICTIONARY:
        info = pikepdf.Dictionary()

    language = _text(pdf.Root.get("/Lang"))
    if language is None:
        language = _text(info.get("/Lang"))

    mark_info = pdf.Root.get("/MarkInfo")
    is_tagged = False
    if classify(mark_info) == PdfKind.DICTIONARY:
        is_tagged = mark_info.get("/Marked") is True

    return DocumentMetadata(
        title=_text(info.get("/Title")),
        author=_text(info.get("/Author")),
        subject=_text(info.get("/Subject")),
        language=language,
        is_tagged=is_tagged,
    )


def write_metadata(handle: PdfHandle, metadata: DocumentMetadata) -> list:
    """Apply metadata to the info dictionary.

    Fields that are None are left untouched, empty strings remove the entry.
    Returns the names of the fields that were written or cleared.
    """
    if not handle.writable:
        raise ValueError("Document was opened read-only")
    docinfo = handle.pdf.docinfo
    changed = []
    for field_name, key in _INFO_KEYS.items():
        value = getattr(metadata, field_name)
        if value is None:
            continue
        if value == "":
            if key in docinfo:
                del docinfo[key]
        else:
            docinfo[key] = pikepdf.String(value)
        changed.append(field_name)
    return changed
