import threading

import pytest

from errors import DocumentNotFound
from models import DocumentRecord, ProcessingStatus
from storage import DocumentStore, KeyedLock


def _record(document_id="doc"):
    return DocumentRecord(id=document_id, filename=f"{document_id}.pdf",
                          original_name="report.pdf", page_count=1, file_size=10)


# ============================================================================
# DocumentStorage
# ============================================================================


def test_save_and_read_upload(storage):
    document_id = storage.save_upload(b"%PDF-1.7 data")
    assert storage.read_upload(document_id) == b"%PDF-1.7 data"
    assert storage.upload_path(document_id).name == f"{document_id}.pdf"


def test_uploads_are_never_overwritten(storage):
    storage.save_upload(b"first", "fixed")
    with pytest.raises(FileExistsError):
        storage.save_upload(b"second", "fixed")
    assert storage.read_upload("fixed") == b"first"


def test_output_is_replaced_whole(storage):
    path = storage.write_output("doc", b"version one, longer")
    storage.write_output("doc", b"v2")
    assert path.name == "doc_remediated.pdf"
    assert storage.read_output("doc") == b"v2"
    assert [p.name for p in storage.output_dir.iterdir()] == ["doc_remediated.pdf"]


def test_missing_files_raise_not_found(storage):
    with pytest.raises(DocumentNotFound):
        storage.read_upload("nope")
    with pytest.raises(DocumentNotFound):
        storage.read_output("nope")
    assert storage.output_exists("nope") is False


@pytest.mark.parametrize("bad_id", ["", "../escape", "a/b", ".hidden"])
def test_invalid_ids_are_rejected(storage, bad_id):
    with pytest.raises(ValueError):
        storage.upload_path(bad_id)


def test_delete_removes_both_files(storage):
    storage.save_upload(b"in", "doc")
    storage.write_output("doc", b"out")
    storage.delete("doc")
    assert not storage.upload_path("doc").exists()
    assert not storage.output_exists("doc")
    storage.delete("doc")


# ============================================================================
# DocumentStore
# ============================================================================


def test_store_update_returns_copy(store):
    original = _record()
    store.set(original)

    updated = store.update("doc", status=ProcessingStatus.COMPLETED, error="")

    assert updated.status == ProcessingStatus.COMPLETED
    assert original.status == ProcessingStatus.UPLOADED
    assert store.get("doc") is updated
    assert store.update("missing", status=ProcessingStatus.ERROR) is None


def test_store_require_and_delete(store):
    store.set(_record("a"))
    store.set(_record("b"))
    assert {r.id for r in store.all()} == {"a", "b"}
    assert store.delete("a") is True
    assert store.delete("a") is False
    with pytest.raises(DocumentNotFound):
        store.require("a")


# ============================================================================
# KeyedLock
# ============================================================================


def test_same_key_is_exclusive():
    locks = KeyedLock()
    with locks.hold("doc"):
        with pytest.raises(TimeoutError):
            with locks.hold("doc", timeout=0.01):
                pass
    with locks.hold("doc", timeout=0.01):
        pass


def test_different_keys_do_not_block():
    locks = KeyedLock()
    entered = threading.Event()

    def worker():
        with locks.hold("other", timeout=1):
            entered.set()

    with locks.hold("doc"):
        thread = threading.Thread(target=worker)
        thread.start()
        thread.join(timeout=2)
    assert entered.is_set()


def test_released_keys_are_forgotten():
    locks = KeyedLock()
    with locks.hold("doc"):
        assert "doc" in locks._locks
        with pytest.raises(TimeoutError):
            with locks.hold("doc", timeout=0.01):
                pass
        assert "doc" in locks._locks
    assert locks._locks == {}

    for n in range(50):
        with locks.hold(f"doc-{n}"):
            pass
    assert locks._locks == {}
