"""
pdf_tagger.py - Attach a minimal accessibility structure tree to a PDF.

The original page content is left untouched. A StructTreeRoot is added with
one /Document element whose children are /Figure elements carrying the
supplied alt text, in the order the alt texts were given. The ParentTree is
left empty: figures are not linked to marked content on the pages.

Remediation steps run independently. Only opening the source and saving the
result are fatal; a failed structure tree still yields a PDF with the
metadata and catalog fixes applied.
"""
import logging
from collections.abc import Mapping
from typing import Optional

import pikepdf

import pdf_objects
import pdf_postprocess
from errors import PartialStructureFailure
from models import DocumentMetadata, RemediationOutcome, StructureElement

logger = logging.getLogger(__name__)


def remediate_pdf(pdf_bytes: bytes, image_alt_texts: list,
                  metadata: Optional[DocumentMetadata] = None) -> bytes:
    """Return a remediated copy of ``pdf_bytes``."""
    return tag_pdf(pdf_bytes, image_alt_texts, metadata).pdf_bytes


def tag_pdf(pdf_bytes: bytes, image_alt_texts: list,
            metadata: Optional[DocumentMetadata] = None) -> RemediationOutcome:
    """Apply metadata, tagging flags and the structure tree.

    Raises MalformedDocument if the source cannot be opened and
    SerializationError if the result cannot be saved.
    """
    with pdf_objects.open_for_write(pdf_bytes) as handle:
        pdf = handle.pdf

        pdf_postprocess.apply_metadata(handle, metadata)
        pdf_postprocess.stamp_producer(pdf)
        pdf_postprocess.ensure_mark_info(pdf)

        figures = 0
        structure_added = False
        try:
            tree = build_structure_tree(image_alt_texts)
            _attach_structure_tree(pdf, tree)
            figures = len(tree.children)
            structure_added = True
            logger.debug("Added structure tree with %d figure elements", figures)
        except PartialStructureFailure as e:
            logger.warning("Structure tree not added, continuing with metadata only: %s", e)

        pdf_postprocess.ensure_viewer_preferences(pdf)
        pdf_postprocess.ensure_language(pdf, metadata.language if metadata else None)

        output = pdf_objects.serialize(handle)

    return RemediationOutcome(
        pdf_bytes=output,
        figures_tagged=figures,
        structure_tree_added=structure_added,
    )


def build_structure_tree(image_alt_texts: list) -> StructureElement:
    """One /Document root with a /Figure child per non-empty alt text.

    Entries are AltTextEntry objects or {"id", "altText"} mappings.
    """
    root = StructureElement(element_type="Document")
    for entry in image_alt_texts:
        alt_text = _entry_alt_text(entry)
        if alt_text:
            root.children.append(StructureElement(element_type="Figure", alt_text=alt_text))
    return root


def _entry_alt_text(entry) -> str:
    if isinstance(entry, Mapping):
        alt_text = entry.get("altText", entry.get("alt_text"))
    elif hasattr(entry, "alt_text"):
        alt_text = entry.alt_text
    else:
        raise PartialStructureFailure(f"Unsupported alt-text entry: {entry!r}")
    if alt_text is not None and not isinstance(alt_text, str):
        raise PartialStructureFailure(f"Alt text must be a string, got {type(alt_text).__name__}")
    return alt_text or ""


# ---------------------------------------------------------------------------
# Serialization into the object graph
# ---------------------------------------------------------------------------

def _attach_structure_tree(pdf: pikepdf.Pdf, root: StructureElement):
    """Replace any existing structure tree with ``root``."""
    try:
        _remove_existing_structure(pdf)

        parent_tree = pdf.make_indirect(pikepdf.Dictionary({
            "/Nums": pikepdf.Array(),
        }))
        struct_tree_root = pdf.make_indirect(pikepdf.Dictionary({
            "/Type": pikepdf.Name("/StructTreeRoot"),
            "/ParentTree": parent_tree,
            "/ParentTreeNextKey": 0,
        }))
        struct_tree_root[pikepdf.Name.K] = _write_element(pdf, root, struct_tree_root)
        pdf.Root[pikepdf.Name.StructTreeRoot] = struct_tree_root
    except Exception as e:
        raise PartialStructureFailure(f"{type(e).__name__}: {e}") from e


def _write_element(pdf: pikepdf.Pdf, element: StructureElement, parent) -> pikepdf.Object:
    """Register ``element`` and its children as indirect /StructElem objects."""
    elem_dict = {
        "/Type": pikepdf.Name("/StructElem"),
        "/S": pikepdf.Name("/" + element.element_type),
        "/P": parent,
    }
    if element.alt_text:
        elem_dict["/Alt"] = pikepdf.String(element.alt_text)
    elem = pdf.make_indirect(pikepdf.Dictionary(elem_dict))

    kids = [_write_element(pdf, child, elem) for child in element.children]
    elem[pikepdf.Name.K] = pikepdf.Array(kids)
    return elem


def _remove_existing_structure(pdf: pikepdf.Pdf):
    """Remove existing structure tree and related entries."""
    if "/StructTreeRoot" in pdf.Root:
        del pdf.Root[pikepdf.Name.StructTreeRoot]
    for page in pdf.pages:
        if "/StructParents" in page.obj:
            del page.obj[pikepdf.Name.StructParents]
