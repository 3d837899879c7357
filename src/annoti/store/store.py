"""Annotation store: the ordered collection for one open document.

Mutations are applied in memory immediately and persisted by a debounced
flush, so a burst of edits (dragging a sticky note, typing a note) costs a
single write of the whole collection.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from annoti.errors import CorruptPersistedDataError, StorageIOError
from annoti.models import (
    DEFAULT_HIGHLIGHT_COLOR,
    DEFAULT_HIGHLIGHT_TYPE,
    Annotation,
    now_ms,
)
from annoti.store.merge import MergeResult, merge

if TYPE_CHECKING:
    from collections.abc import Iterable

    from annoti.models import Anchor
    from annoti.store.storage import AnnotationStorage

logger = logging.getLogger(__name__)

WarningCallback = Callable[[str], None]

# Fields update() may never touch
_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


class AnnotationStore:
    """Owns the annotations of exactly one open document.

    Args:
        storage: Persistence backend.
        debounce_seconds: Quiet period before a scheduled flush writes.
        on_warning: Receives user-facing warnings (corrupt data, failed saves).
    """

    def __init__(
        self,
        storage: AnnotationStorage,
        *,
        debounce_seconds: float = 0.5,
        on_warning: WarningCallback | None = None,
    ) -> None:
        self._storage = storage
        self.debounce_seconds = debounce_seconds
        self._on_warning = on_warning
        self._document_id: str | None = None
        self._annotations: list[Annotation] = []
        self._dirty = False
        self._load_failed = False
        self._timer: asyncio.Task[None] | None = None
        self._writes: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()

    # --- state ---

    @property
    def document_id(self) -> str | None:
        return self._document_id

    @property
    def annotations(self) -> tuple[Annotation, ...]:
        """Read-only snapshot in collection order."""
        return tuple(self._annotations)

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def load_failed(self) -> bool:
        """True when stored data could be neither read nor backed up.

        Flushes are refused in this state until another document is loaded.
        """
        return self._load_failed

    def get(self, annotation_id: str) -> Annotation | None:
        for annotation in self._annotations:
            if annotation.id == annotation_id:
                return annotation
        return None

    def _index_of(self, annotation_id: str) -> int:
        for index, annotation in enumerate(self._annotations):
            if annotation.id == annotation_id:
                return index
        return -1

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if self._on_warning is not None:
            self._on_warning(message)

    def _require_document(self) -> str:
        if self._document_id is None:
            msg = "No document is open in this annotation store"
            raise RuntimeError(msg)
        return self._document_id

    # --- document lifecycle ---

    async def set_document(self, document_id: str) -> None:
        """Switch to ``document_id`` and load its annotations.

        The previous document's pending changes are written first. Missing
        data gives an empty store plus an initial empty write; unreadable
        data is quarantined and the store starts empty. If the data can be
        neither read nor backed up the store stays read-only for this
        document.
        """
        if self._document_id is not None:
            await self.force_flush()
        self._cancel_timer()
        self._document_id = document_id
        self._annotations = []
        self._dirty = False
        self._load_failed = False

        try:
            records = await self._storage.load_annotations(document_id)
            loaded = (
                None
                if records is None
                else [Annotation.model_validate(r) for r in records]
            )
        except (CorruptPersistedDataError, ValidationError) as exc:
            logger.error("Unreadable annotations for %s: %s", document_id, exc)
            await self._quarantine(document_id)
            return
        except StorageIOError as exc:
            if self._document_id == document_id:
                self._load_failed = True
            self._warn(f"Could not load annotations for {document_id}: {exc}")
            return

        if self._document_id != document_id:
            # Another set_document won while we were loading
            return
        if loaded is None:
            logger.info("No annotations for %s yet; creating empty store", document_id)
            self._dirty = True
            await self._flush()
            return
        self._annotations = loaded
        logger.info("Loaded %d annotations for %s", len(loaded), document_id)

    async def _quarantine(self, document_id: str) -> None:
        try:
            backup = await self._storage.quarantine(document_id)
        except StorageIOError as exc:
            if self._document_id == document_id:
                self._load_failed = True
            self._warn(
                f"Annotations for {document_id} are corrupt; backup failed: {exc}"
            )
            return
        if backup is None:
            self._warn(f"Annotations for {document_id} are corrupt")
        else:
            self._warn(
                f"Annotations for {document_id} are corrupt; backed up to {backup}"
            )

    async def close(self) -> None:
        """Flush pending changes and detach from the document."""
        if self._document_id is None:
            return
        await self.force_flush()
        if self._writes:
            await asyncio.gather(*self._writes, return_exceptions=True)
        logger.debug("Closed annotation store for %s", self._document_id)
        self._document_id = None
        self._annotations = []
        self._dirty = False
        self._load_failed = False

    # --- mutations ---

    def create(
        self,
        source_text: str,
        anchors: Iterable[Anchor],
        author_id: str = "",
        author_name: str = "",
        color: str | None = None,
        highlight_type: str | None = None,
        *,
        annotation_id: str | None = None,
    ) -> Annotation:
        """Append a new annotation and schedule a flush.

        Raises:
            ValidationError: If ``anchors`` is empty or a field is invalid.
        """
        self._require_document()
        stamp = now_ms()
        annotation = Annotation(
            id=annotation_id or str(uuid.uuid4()),
            author_id=author_id,
            author_name=author_name,
            source_text=source_text,
            anchors=list(anchors),
            highlight_color=color or DEFAULT_HIGHLIGHT_COLOR,
            highlight_type=highlight_type or DEFAULT_HIGHLIGHT_TYPE,
            created_at=stamp,
            updated_at=stamp,
        )
        if self.get(annotation.id) is not None:
            msg = f"Annotation {annotation.id} already exists"
            raise ValueError(msg)
        self._annotations.append(annotation)
        self.mark_dirty()
        return annotation

    def update(self, annotation_id: str, **patch: Any) -> bool:
        """Patch fields of one annotation; ``updated_at`` is refreshed.

        Returns:
            False if no annotation has ``annotation_id``.

        Raises:
            ValueError: For unknown or immutable field names.
            ValidationError: If a patched value is invalid.
        """
        self._require_document()
        index = self._index_of(annotation_id)
        if index < 0:
            logger.warning("Update for unknown annotation %s", annotation_id)
            return False
        bad = [
            name
            for name in patch
            if name in _IMMUTABLE_FIELDS or name not in Annotation.model_fields
        ]
        if bad:
            msg = f"Cannot update field(s): {', '.join(sorted(bad))}"
            raise ValueError(msg)

        current = self._annotations[index]
        data = current.model_dump()
        data.update(patch)
        data["updated_at"] = max(now_ms(), current.updated_at)
        self._annotations[index] = Annotation.model_validate(data)
        self.mark_dirty()
        return True

    def delete(self, annotation_id: str) -> Annotation | None:
        """Remove one annotation; returns it so callers can unwrap markers."""
        self._require_document()
        index = self._index_of(annotation_id)
        if index < 0:
            logger.warning("Delete for unknown annotation %s", annotation_id)
            return None
        removed = self._annotations.pop(index)
        self.mark_dirty()
        return removed

    def import_annotations(self, incoming: Iterable[Annotation]) -> MergeResult:
        """Merge an imported batch, appending the accepted annotations."""
        self._require_document()
        result = merge(incoming, self._annotations)
        if result.accepted:
            self._annotations.extend(result.accepted)
            self.mark_dirty()
        logger.info(
            "Imported %d annotations (%d duplicates skipped)",
            len(result.accepted),
            result.duplicate_count,
        )
        return result

    # --- persistence ---

    def mark_dirty(self) -> None:
        self._dirty = True
        self.schedule_flush()

    def schedule_flush(self) -> None:
        """Start or restart the debounce timer.

        Only a timer that is still waiting is cancelled; a flush that has
        already begun writing runs to completion.
        """
        self._cancel_timer()
        self._timer = asyncio.create_task(self._debounced_flush())

    def _cancel_timer(self) -> None:
        task, self._timer = self._timer, None
        if task and not task.done():
            task.cancel()

    async def _debounced_flush(self) -> None:
        try:
            await asyncio.sleep(self.debounce_seconds)
        except asyncio.CancelledError:
            return  # superseded by a newer mutation
        current = asyncio.current_task()
        if self._timer is current:
            self._timer = None
        if current is not None:
            self._writes.add(current)
            current.add_done_callback(self._writes.discard)
        await self._flush()

    async def force_flush(self) -> None:
        """Cancel the debounce timer and write now (after any in-flight write)."""
        self._cancel_timer()
        await self._flush()

    async def _flush(self) -> None:
        async with self._lock:
            document_id = self._document_id
            if not self._dirty or document_id is None:
                return
            if self._load_failed:
                self._warn(
                    f"Not saving annotations for {document_id}: its stored data"
                    " could not be loaded and would be overwritten"
                )
                return
            records = [annotation.to_record() for annotation in self._annotations]
            self._dirty = False
            try:
                await self._storage.save_annotations(document_id, records)
            except Exception as exc:
                logger.exception("Failed to persist annotations for %s", document_id)
                if self._document_id == document_id:
                    self._dirty = True
                self._warn(f"Could not save annotations for {document_id}: {exc}")
                return
            logger.debug("Persisted %d annotations for %s", len(records), document_id)
