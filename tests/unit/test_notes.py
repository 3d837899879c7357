"""Tests for sticky note placement, dragging, resizing and layering."""

from __future__ import annotations

import pytest

from annoti.config import NotesConfig
from annoti.models import Anchor, NotePosition, NoteSize
from annoti.notes import StickyNoteManager, Viewport
from annoti.store.store import AnnotationStore
from tests.conftest import MemoryStorage

ANCHOR = Anchor(
    container_path="p:nth-of-type(1)", leaf_ordinal=0, start_offset=0, end_offset=5
)


async def _manager(
    viewport: Viewport | None = None,
) -> tuple[StickyNoteManager, AnnotationStore, str]:
    store = AnnotationStore(MemoryStorage(), debounce_seconds=10)
    await store.set_document("doc.md")
    annotation = store.create("Hello", [ANCHOR])
    return StickyNoteManager(store, viewport), store, annotation.id


def _position(store: AnnotationStore, annotation_id: str) -> NotePosition:
    annotation = store.get(annotation_id)
    assert annotation is not None
    return annotation.note_position


class TestWake:
    """Showing a note beside the clicked highlight."""

    @pytest.mark.asyncio
    async def test_pointer_to_content_coordinates(self) -> None:
        """wake(g, 120, 340) with origin (20, 40) and scrollTop 200."""
        viewport = Viewport(container_left=20, container_top=40, scroll_top=200)
        manager, store, gid = await _manager(viewport)

        assert manager.content_position(120, 340) == (100, 500)
        position = manager.wake(gid, 120, 340)

        assert position == NotePosition(x=110, y=510)
        annotation = store.get(gid)
        assert annotation is not None
        assert annotation.note_visible
        assert annotation.note_position == position

    @pytest.mark.asyncio
    async def test_clamped_to_viewport_fraction(self) -> None:
        """x + width never exceeds 90% of the viewport width."""
        manager, _, gid = await _manager(Viewport(width=1000))

        position = manager.wake(gid, 800, 0)

        assert position is not None
        assert position.x == 900 - 280

    @pytest.mark.asyncio
    async def test_never_negative(self) -> None:
        manager, _, gid = await _manager(Viewport(width=200))
        position = manager.wake(gid, 50, 50)
        assert position is not None
        assert position.x == 0

    @pytest.mark.asyncio
    async def test_wake_brings_to_top(self) -> None:
        manager, store, first = await _manager()
        second = store.create("other", [ANCHOR]).id

        manager.wake(first, 0, 0)
        manager.wake(second, 0, 0)

        assert manager.z_index(second) > manager.z_index(first)

    @pytest.mark.asyncio
    async def test_unknown_annotation(self) -> None:
        manager, _, _ = await _manager()
        assert manager.wake("missing", 0, 0) is None


class TestDrag:
    """Dragging is relative to the drag-start position."""

    @pytest.mark.asyncio
    async def test_drag_uses_total_delta(self) -> None:
        manager, store, gid = await _manager()
        store.update(gid, note_position=NotePosition(x=100, y=100))

        manager.begin_drag(gid)
        manager.drag(gid, 10, 10)
        manager.drag(gid, 30, -20)
        manager.end_drag(gid)

        assert _position(store, gid) == NotePosition(x=130, y=80)

    @pytest.mark.asyncio
    async def test_drag_clamps_x_to_overlay(self) -> None:
        manager, store, gid = await _manager(Viewport(overlay_width=1000))
        store.update(gid, note_position=NotePosition(x=100, y=100))

        manager.begin_drag(gid)
        assert manager.drag(gid, 5000, 0) == NotePosition(x=720, y=100)
        assert manager.drag(gid, -5000, 0) == NotePosition(x=0, y=100)

    @pytest.mark.asyncio
    async def test_drag_leaves_y_unclamped(self) -> None:
        manager, store, gid = await _manager()
        manager.begin_drag(gid)
        position = manager.drag(gid, 0, 5000)
        assert position is not None
        assert position.y == 5000

    @pytest.mark.asyncio
    async def test_new_drag_starts_from_current_position(self) -> None:
        manager, store, gid = await _manager()
        manager.begin_drag(gid)
        manager.drag(gid, 50, 0)
        manager.end_drag(gid)

        manager.begin_drag(gid)
        manager.drag(gid, 50, 0)

        assert _position(store, gid).x == 100


class TestResize:
    """Resizing with a floor and a viewport-relative ceiling."""

    @pytest.mark.asyncio
    async def test_resize_grows_from_start_size(self) -> None:
        manager, store, gid = await _manager()
        manager.begin_resize(gid)
        manager.resize(gid, 20, 10)
        size = manager.resize(gid, 40, 20)

        assert size == NoteSize(width=320, height=200)

    @pytest.mark.asyncio
    async def test_resize_floor(self) -> None:
        manager, _, gid = await _manager()
        manager.begin_resize(gid)
        assert manager.resize(gid, -1000, -1000) == NoteSize(width=160, height=100)

    @pytest.mark.asyncio
    async def test_resize_ceiling(self) -> None:
        manager, _, gid = await _manager(Viewport(width=1000, height=500))
        manager.begin_resize(gid)
        assert manager.resize(gid, 5000, 5000) == NoteSize(width=900, height=450)

    @pytest.mark.asyncio
    async def test_custom_floor(self) -> None:
        store = AnnotationStore(MemoryStorage(), debounce_seconds=10)
        await store.set_document("doc.md")
        gid = store.create("Hello", [ANCHOR]).id
        manager = StickyNoteManager(
            store, config=NotesConfig(min_width=200, min_height=150)
        )
        manager.begin_resize(gid)
        assert manager.resize(gid, -1000, -1000) == NoteSize(width=200, height=150)


class TestLayering:
    @pytest.mark.asyncio
    async def test_bring_to_top_is_monotonic(self) -> None:
        manager, _, gid = await _manager()
        first = manager.bring_to_top(gid)
        second = manager.bring_to_top(gid)
        assert second == first + 1
        assert manager.z_index("never-touched") == 0

    @pytest.mark.asyncio
    async def test_hide_persists_visibility(self) -> None:
        manager, store, gid = await _manager()
        manager.wake(gid, 0, 0)

        assert manager.hide(gid)

        annotation = store.get(gid)
        assert annotation is not None
        assert not annotation.note_visible
