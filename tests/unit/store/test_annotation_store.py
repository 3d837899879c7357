"""Unit tests for the annotation store and its debounced persistence."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from annoti.errors import StorageIOError
from annoti.models import Anchor, Annotation
from annoti.store.store import AnnotationStore
from tests.conftest import MemoryStorage

DEBOUNCE = 0.01

ANCHOR = Anchor(
    container_path="p:nth-of-type(1)", leaf_ordinal=0, start_offset=6, end_offset=11
)


def _record(annotation_id: str, text: str = "world") -> dict:
    return Annotation(id=annotation_id, source_text=text, anchors=[ANCHOR]).to_record()


async def _open_store(
    storage: MemoryStorage, document_id: str = "doc.md", **kwargs
) -> AnnotationStore:
    store = AnnotationStore(storage, debounce_seconds=DEBOUNCE, **kwargs)
    await store.set_document(document_id)
    return store


async def _settle() -> None:
    """Wait past the debounce window and let the write finish."""
    await asyncio.sleep(DEBOUNCE * 5)


class TestSetDocument:
    """Loading, creating and quarantining a document's annotations."""

    @pytest.mark.asyncio
    async def test_missing_data_creates_empty_store_and_writes(
        self, storage: MemoryStorage
    ) -> None:
        store = await _open_store(storage)

        assert store.annotations == ()
        assert storage.saves == [("doc.md", [])]

    @pytest.mark.asyncio
    async def test_existing_data_is_loaded_in_order(self) -> None:
        storage = MemoryStorage([_record("a", "one"), _record("b", "two")])

        store = await _open_store(storage)

        assert [a.id for a in store.annotations] == ["a", "b"]
        assert storage.saves == []

    @pytest.mark.asyncio
    async def test_corrupt_data_is_quarantined(self, storage: MemoryStorage) -> None:
        storage.corrupt = True
        warnings = MagicMock()

        store = await _open_store(storage, on_warning=warnings)

        assert store.annotations == ()
        assert storage.quarantined == ["doc.md"]
        warnings.assert_called_once()
        assert "doc.md.backup" in warnings.call_args.args[0]

    @pytest.mark.asyncio
    async def test_invalid_records_are_quarantined(self) -> None:
        """Records that fail validation (e.g. empty anchors) count as corrupt."""
        storage = MemoryStorage([{"id": "a", "sourceText": "x", "anchors": []}])
        warnings = MagicMock()

        store = await _open_store(storage, on_warning=warnings)

        assert store.annotations == ()
        assert storage.quarantined == ["doc.md"]
        warnings.assert_called_once()

    @pytest.mark.asyncio
    async def test_load_io_error_never_overwrites_stored_data(self) -> None:
        storage = MemoryStorage([_record("keep-me")])
        storage.load_annotations = AsyncMock(side_effect=StorageIOError("db locked"))
        warnings = MagicMock()
        store = await _open_store(storage, on_warning=warnings)

        store.create("new", [ANCHOR])
        await store.force_flush()

        assert store.load_failed
        assert store.dirty
        assert storage.saves == []
        assert storage.records is not None
        assert [r["id"] for r in storage.records] == ["keep-me"]
        assert "db locked" in warnings.call_args_list[0].args[0]
        assert "Not saving" in warnings.call_args_list[-1].args[0]

    @pytest.mark.asyncio
    async def test_failed_quarantine_never_destroys_corrupt_data(self) -> None:
        storage = MemoryStorage([_record("keep-me")])
        storage.corrupt = True
        storage.quarantine = AsyncMock(side_effect=StorageIOError("backup disk full"))
        warnings = MagicMock()
        store = await _open_store(storage, on_warning=warnings)

        store.create("new", [ANCHOR])
        await store.close()

        assert storage.saves == []
        assert storage.records is not None
        assert [r["id"] for r in storage.records] == ["keep-me"]
        assert "backup failed" in warnings.call_args_list[0].args[0]

    @pytest.mark.asyncio
    async def test_next_successful_load_clears_read_only_state(self) -> None:
        storage = MemoryStorage([_record("keep-me")])
        working = storage.load_annotations
        storage.load_annotations = AsyncMock(side_effect=StorageIOError("db locked"))
        store = await _open_store(storage, "first.md")
        assert store.load_failed

        storage.load_annotations = working
        await store.set_document("second.md")
        store.create("new", [ANCHOR])
        await store.force_flush()

        assert not store.load_failed
        assert [doc for doc, _ in storage.saves] == ["second.md"]

    @pytest.mark.asyncio
    async def test_switching_flushes_previous_document(self) -> None:
        storage = MemoryStorage([_record("a")])
        store = await _open_store(storage, "first.md")
        store.update("a", note="edited")

        storage.records = None
        await store.set_document("second.md")

        saved_ids = [doc for doc, _ in storage.saves]
        assert saved_ids[0] == "first.md"
        assert storage.saves[0][1][0]["note"] == "edited"
        assert store.document_id == "second.md"
        assert store.annotations == ()

    @pytest.mark.asyncio
    async def test_switching_cancels_pending_timer(self) -> None:
        """The previous document's timer never fires against the new document."""
        storage = MemoryStorage([_record("a")])
        store = await _open_store(storage, "first.md")
        store.update("a", note="edited")

        storage.records = None
        await store.set_document("second.md")
        await _settle()

        assert [doc for doc, _ in storage.saves] == ["first.md", "second.md"]


class TestMutations:
    """create / update / delete semantics."""

    @pytest.mark.asyncio
    async def test_create_appends_with_fresh_id(self, storage: MemoryStorage) -> None:
        store = await _open_store(storage)

        first = store.create("world", [ANCHOR], "u1", "Ada")
        second = store.create("other", [ANCHOR])

        assert first.id != second.id
        assert first.author_name == "Ada"
        assert first.created_at == first.updated_at
        assert first.highlight_color == "#ffd700"
        assert [a.id for a in store.annotations] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_create_requires_anchors(self, storage: MemoryStorage) -> None:
        store = await _open_store(storage)
        with pytest.raises(ValidationError):
            store.create("world", [])

    @pytest.mark.asyncio
    async def test_create_rejects_duplicate_id(self, storage: MemoryStorage) -> None:
        store = await _open_store(storage)
        store.create("a", [ANCHOR], annotation_id="same")
        with pytest.raises(ValueError, match="already exists"):
            store.create("b", [ANCHOR], annotation_id="same")

    @pytest.mark.asyncio
    async def test_mutation_without_document_raises(
        self, storage: MemoryStorage
    ) -> None:
        store = AnnotationStore(storage)
        with pytest.raises(RuntimeError, match="No document"):
            store.create("x", [ANCHOR])

    @pytest.mark.asyncio
    async def test_update_patches_and_touches_updated_at(self) -> None:
        storage = MemoryStorage([_record("a")])
        store = await _open_store(storage)
        before = store.get("a")
        assert before is not None

        assert store.update("a", note="hello", note_visible=True)

        after = store.get("a")
        assert after is not None
        assert after.note == "hello"
        assert after.note_visible
        assert after.updated_at >= before.updated_at
        assert after.created_at == before.created_at

    @pytest.mark.asyncio
    async def test_update_unknown_returns_false(self, storage: MemoryStorage) -> None:
        store = await _open_store(storage)
        assert store.update("missing", note="x") is False

    @pytest.mark.asyncio
    async def test_update_rejects_immutable_fields(self) -> None:
        store = await _open_store(MemoryStorage([_record("a")]))
        with pytest.raises(ValueError, match="Cannot update"):
            store.update("a", id="b")
        with pytest.raises(ValueError, match="Cannot update"):
            store.update("a", colour="red")

    @pytest.mark.asyncio
    async def test_update_validates_values(self) -> None:
        store = await _open_store(MemoryStorage([_record("a")]))
        with pytest.raises(ValidationError):
            store.update("a", highlight_type="wavy")

    @pytest.mark.asyncio
    async def test_delete_returns_removed(self) -> None:
        store = await _open_store(MemoryStorage([_record("a"), _record("b")]))

        removed = store.delete("a")

        assert removed is not None
        assert removed.id == "a"
        assert [a.id for a in store.annotations] == ["b"]
        assert store.delete("a") is None

    @pytest.mark.asyncio
    async def test_annotations_view_is_read_only_snapshot(
        self, storage: MemoryStorage
    ) -> None:
        store = await _open_store(storage)
        view = store.annotations
        store.create("x", [ANCHOR])
        assert view == ()
        assert len(store.annotations) == 1


class TestDebouncedFlush:
    """Debounce timing and write serialisation."""

    @pytest.mark.asyncio
    async def test_burst_of_mutations_is_one_write(self) -> None:
        storage = MemoryStorage([_record("a")])
        store = await _open_store(storage)

        for i in range(10):
            store.update("a", note=f"n{i}")
        await _settle()

        assert len(storage.saves) == 1
        assert storage.saves[0][1][0]["note"] == "n9"

    @pytest.mark.asyncio
    async def test_no_write_before_debounce_elapses(self) -> None:
        storage = MemoryStorage([_record("a")])
        store = AnnotationStore(storage, debounce_seconds=10)
        await store.set_document("doc.md")

        store.update("a", note="pending")
        await asyncio.sleep(0)

        assert storage.saves == []
        assert store.dirty
        await store.force_flush()

    @pytest.mark.asyncio
    async def test_force_flush_writes_immediately(self) -> None:
        storage = MemoryStorage([_record("a")])
        store = AnnotationStore(storage, debounce_seconds=10)
        await store.set_document("doc.md")
        store.update("a", note="now")

        await store.force_flush()

        assert len(storage.saves) == 1
        assert not store.dirty

    @pytest.mark.asyncio
    async def test_force_flush_without_changes_is_noop(self) -> None:
        storage = MemoryStorage([_record("a")])
        store = await _open_store(storage)
        await store.force_flush()
        assert storage.saves == []

    @pytest.mark.asyncio
    async def test_mutation_during_write_schedules_another(self) -> None:
        """A change made while a write is in flight is persisted afterwards."""
        storage = MemoryStorage([_record("a")])
        store = await _open_store(storage)
        gate = asyncio.Event()
        original = storage.save_annotations

        async def slow_save(document_id: str, records: list) -> None:
            await gate.wait()
            await original(document_id, records)

        storage.save_annotations = AsyncMock(side_effect=slow_save)

        store.update("a", note="first")
        await asyncio.sleep(DEBOUNCE * 3)  # timer fired, write blocked on gate
        store.update("a", note="second")
        gate.set()
        await _settle()

        notes = [records[0]["note"] for _, records in storage.saves]
        assert notes == ["first", "second"]

    @pytest.mark.asyncio
    async def test_failed_save_warns_and_stays_dirty(self) -> None:
        storage = MemoryStorage([_record("a")])
        warnings = MagicMock()
        store = await _open_store(storage, on_warning=warnings)
        storage.fail_saves = True

        store.update("a", note="x")
        await store.force_flush()

        assert store.dirty
        warnings.assert_called_once()
        assert "disk full" in warnings.call_args.args[0]

        storage.fail_saves = False
        store.update("a", note="y")
        await store.force_flush()
        assert storage.saves[-1][1][0]["note"] == "y"

    @pytest.mark.asyncio
    async def test_close_flushes_and_detaches(self) -> None:
        storage = MemoryStorage([_record("a")])
        store = AnnotationStore(storage, debounce_seconds=10)
        await store.set_document("doc.md")
        store.delete("a")

        await store.close()

        assert storage.saves == [("doc.md", [])]
        assert store.document_id is None
        assert store.annotations == ()


class TestImport:
    @pytest.mark.asyncio
    async def test_import_appends_accepted_only(self) -> None:
        store = await _open_store(MemoryStorage([_record("a", "world")]))
        incoming = [
            Annotation(id="x", source_text="world", anchors=[ANCHOR]),
            Annotation(id="y", source_text="new text", anchors=[ANCHOR]),
        ]

        result = store.import_annotations(incoming)

        assert result.duplicate_count == 1
        assert [a.source_text for a in store.annotations] == ["world", "new text"]
        assert store.annotations[1].id not in {"x", "y"}
