"""Sticky note view state: placement, dragging, resizing and layering.

Positions are in content coordinates (relative to the scrolling document,
not the window), so a note stays beside its highlight as the reader
scrolls. Transient interaction state lives here; the persisted parts
(position, size, visibility) are written back through the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from annoti.config import NotesConfig
from annoti.models import NotePosition, NoteSize

if TYPE_CHECKING:
    from annoti.models import Annotation
    from annoti.store.store import AnnotationStore

logger = logging.getLogger(__name__)


@dataclass
class Viewport:
    """Geometry of the scroll container hosting the document.

    Attributes:
        container_left: Scroll container's left edge in viewport coordinates.
        container_top: Scroll container's top edge in viewport coordinates.
        scroll_left: Horizontal scroll offset.
        scroll_top: Vertical scroll offset.
        width: Viewport width.
        height: Viewport height.
        overlay_width: Width of the note overlay layer.
        overlay_height: Height of the note overlay layer.
    """

    container_left: float = 0.0
    container_top: float = 0.0
    scroll_left: float = 0.0
    scroll_top: float = 0.0
    width: float = 1280.0
    height: float = 800.0
    overlay_width: float = 1280.0
    overlay_height: float = 800.0


@dataclass
class _NoteState:
    z_index: int = 0
    drag_origin: NotePosition | None = None
    resize_origin: NoteSize | None = None


class StickyNoteManager:
    """Per-annotation sticky note geometry for one open document.

    Args:
        store: Store receiving persisted position/size/visibility.
        viewport: Current scroll container geometry; callers mutate it in place
            as the window scrolls or resizes.
        config: Offsets, fractions and size floor.
    """

    def __init__(
        self,
        store: AnnotationStore,
        viewport: Viewport | None = None,
        config: NotesConfig | None = None,
    ) -> None:
        self._store = store
        self.viewport = viewport or Viewport()
        self.config = config or NotesConfig()
        self._states: dict[str, _NoteState] = {}
        self._z_counter = 0

    def _state(self, annotation_id: str) -> _NoteState:
        return self._states.setdefault(annotation_id, _NoteState())

    def _annotation(self, annotation_id: str) -> Annotation | None:
        annotation = self._store.get(annotation_id)
        if annotation is None:
            logger.warning("No annotation %s for sticky note", annotation_id)
        return annotation

    def content_position(self, x: float, y: float) -> tuple[float, float]:
        """Convert a pointer position (viewport coords) to content coords."""
        vp = self.viewport
        return (
            x - vp.container_left + vp.scroll_left,
            y - vp.container_top + vp.scroll_top,
        )

    def _clamp_to_viewport(self, x: float, width: float) -> float:
        limit = self.viewport.width * self.config.viewport_fraction
        if x + width > limit:
            x = limit - width
        return max(x, 0.0)

    # --- showing and layering ---

    def wake(self, group_id: str, x: float, y: float) -> NotePosition | None:
        """Show the note for ``group_id`` beside the pointer at ``(x, y)``.

        Returns:
            The new note position, or None for an unknown annotation.
        """
        annotation = self._annotation(group_id)
        if annotation is None:
            return None
        content_x, content_y = self.content_position(x, y)
        note_x = self._clamp_to_viewport(
            content_x + self.config.click_offset_x, annotation.note_size.width
        )
        position = NotePosition(x=note_x, y=content_y + self.config.click_offset_y)
        self.bring_to_top(group_id)
        self._store.update(group_id, note_position=position, note_visible=True)
        return position

    def bring_to_top(self, annotation_id: str) -> int:
        self._z_counter += 1
        self._state(annotation_id).z_index = self._z_counter
        return self._z_counter

    def z_index(self, annotation_id: str) -> int:
        state = self._states.get(annotation_id)
        return state.z_index if state else 0

    def hide(self, annotation_id: str) -> bool:
        if self._annotation(annotation_id) is None:
            return False
        state = self._states.get(annotation_id)
        if state:
            state.drag_origin = None
            state.resize_origin = None
        return self._store.update(annotation_id, note_visible=False)

    # --- dragging ---

    def begin_drag(self, annotation_id: str) -> None:
        annotation = self._annotation(annotation_id)
        if annotation is None:
            return
        self._state(annotation_id).drag_origin = annotation.note_position
        self.bring_to_top(annotation_id)

    def drag(self, annotation_id: str, dx: float, dy: float) -> NotePosition | None:
        """Move to drag-start position plus ``(dx, dy)`` (total since start)."""
        annotation = self._annotation(annotation_id)
        if annotation is None:
            return None
        state = self._state(annotation_id)
        if state.drag_origin is None:
            state.drag_origin = annotation.note_position
        origin = state.drag_origin
        max_x = max(self.viewport.overlay_width - annotation.note_size.width, 0.0)
        position = NotePosition(
            x=min(max(origin.x + dx, 0.0), max_x),
            y=origin.y + dy,
        )
        self._store.update(annotation_id, note_position=position)
        return position

    def end_drag(self, annotation_id: str) -> None:
        state = self._states.get(annotation_id)
        if state:
            state.drag_origin = None

    # --- resizing ---

    def begin_resize(self, annotation_id: str) -> None:
        annotation = self._annotation(annotation_id)
        if annotation is None:
            return
        self._state(annotation_id).resize_origin = annotation.note_size
        self.bring_to_top(annotation_id)

    def resize(self, annotation_id: str, dw: float, dh: float) -> NoteSize | None:
        """Resize to resize-start size plus ``(dw, dh)``, floored and capped."""
        annotation = self._annotation(annotation_id)
        if annotation is None:
            return None
        state = self._state(annotation_id)
        if state.resize_origin is None:
            state.resize_origin = annotation.note_size
        origin = state.resize_origin
        cfg = self.config
        max_w = max(self.viewport.width * cfg.max_fraction, cfg.min_width)
        max_h = max(self.viewport.height * cfg.max_fraction, cfg.min_height)
        size = NoteSize(
            width=min(max(origin.width + dw, cfg.min_width), max_w),
            height=min(max(origin.height + dh, cfg.min_height), max_h),
        )
        self._store.update(annotation_id, note_size=size)
        return size

    def end_resize(self, annotation_id: str) -> None:
        state = self._states.get(annotation_id)
        if state:
            state.resize_origin = None

    def forget(self, annotation_id: str) -> None:
        """Drop transient state for a deleted annotation."""
        self._states.pop(annotation_id, None)
