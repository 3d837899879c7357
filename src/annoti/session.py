"""One open document: rendered tree, annotation store, markers and notes.

``DocumentSession`` is the surface the view layer talks to. It wires the
pieces together for a single render pass: the marker manager wakes the
sticky note manager, and store mutations are mirrored onto the tree.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from annoti.anchoring.extractor import extract
from annoti.anchoring.markers import HighlightMarkerManager
from annoti.anchoring.restore import RestorationEngine, RestoreReport
from annoti.config import get_settings
from annoti.document.render import render_file
from annoti.models import SourceDocument
from annoti.notes import StickyNoteManager, Viewport
from annoti.store.merge import MergeResult, compute_checksum
from annoti.store.store import AnnotationStore, WarningCallback

if TYPE_CHECKING:
    from collections.abc import Iterable

    from annoti.config import Settings
    from annoti.document.tree import DocumentTree, Selection
    from annoti.models import Annotation
    from annoti.store.storage import AnnotationStorage

logger = logging.getLogger(__name__)


class DocumentSession:
    """Annotating session over one rendered document.

    Args:
        document_id: Storage key of the document (a file path for sidecars).
        tree: Freshly rendered tree for this pass.
        store: Store already switched to ``document_id``.
        settings: Highlight defaults, note geometry and user identity.
        viewport: Initial scroll container geometry.
    """

    def __init__(
        self,
        document_id: str,
        tree: DocumentTree,
        store: AnnotationStore,
        settings: Settings | None = None,
        viewport: Viewport | None = None,
    ) -> None:
        self.document_id = document_id
        self.tree = tree
        self.store = store
        self.settings = settings or get_settings()
        self.markers = HighlightMarkerManager(tree)
        self.notes = StickyNoteManager(store, viewport, self.settings.notes)
        self.markers.on_wake(self._on_marker_wake)
        self._restorer = RestorationEngine(self.markers)
        self.last_report: RestoreReport | None = None

    @classmethod
    async def open(
        cls,
        path: Path,
        storage: AnnotationStorage,
        settings: Settings | None = None,
        *,
        on_warning: WarningCallback | None = None,
        restore: bool = True,
    ) -> DocumentSession:
        """Render ``path``, load its annotations and restore them.

        Raises:
            RendererError: If the document cannot be rendered.
        """
        settings = settings or get_settings()
        tree = render_file(path, settings.render)
        store = AnnotationStore(
            storage,
            debounce_seconds=settings.store.debounce_seconds,
            on_warning=on_warning,
        )
        document_id = str(path)
        await store.set_document(document_id)
        session = cls(document_id, tree, store, settings)
        if restore:
            session.restore()
        return session

    @property
    def annotations(self) -> tuple[Annotation, ...]:
        return self.store.annotations

    def _on_marker_wake(self, group_id: str, x: float, y: float) -> None:
        self.notes.wake(group_id, x, y)

    # --- operations exposed to the view layer ---

    def restore(self) -> RestoreReport:
        """Replay the store onto the tree (once per render pass)."""
        self.last_report = self._restorer.restore(self.store.annotations)
        return self.last_report

    def create(
        self,
        selection: Selection,
        *,
        color: str | None = None,
        highlight_type: str | None = None,
    ) -> Annotation | None:
        """Capture ``selection`` as a new highlighted annotation.

        Returns:
            The annotation, or None when the selection touches no text.
        """
        anchors = extract(selection)
        if not anchors:
            return None
        highlight = self.settings.highlight
        author = self.settings.author
        annotation = self.store.create(
            selection.text,
            anchors,
            author_id=author.id,
            author_name=author.name,
            color=color or highlight.default_color,
            highlight_type=highlight_type or highlight.default_type,
        )
        wrapped = self.markers.wrap(
            annotation.anchors,
            annotation.id,
            annotation.highlight_color,
            annotation.highlight_type,
        )
        logger.info(
            "Created annotation %s (%d anchors, %d markers)",
            annotation.id,
            len(anchors),
            wrapped,
        )
        return annotation

    def update(self, annotation_id: str, **patch: Any) -> bool:
        updated = self.store.update(annotation_id, **patch)
        if updated and {"highlight_color", "highlight_type"} & patch.keys():
            annotation = self.store.get(annotation_id)
            assert annotation is not None
            self.markers.restyle(
                annotation_id, annotation.highlight_color, annotation.highlight_type
            )
        return updated

    def delete(self, annotation_id: str) -> Annotation | None:
        """Delete an annotation and remove every one of its markers."""
        removed = self.store.delete(annotation_id)
        if removed is not None:
            self.markers.unwrap(annotation_id)
            self.notes.forget(annotation_id)
        return removed

    def wake(self, group_id: str, x: float, y: float) -> None:
        """Marker activation at pointer ``(x, y)``."""
        self.markers.activate(group_id, x, y)

    def merge(self, incoming: Iterable[Annotation]) -> MergeResult:
        """Import annotations and highlight the accepted ones."""
        result = self.store.import_annotations(incoming)
        for annotation in result.accepted:
            self.markers.wrap(
                annotation.anchors,
                annotation.id,
                annotation.highlight_color,
                annotation.highlight_type,
            )
        return result

    def source_document(self) -> SourceDocument:
        """Name and checksum of the rendered document for export packages."""
        path = Path(self.document_id)
        content = path.read_bytes() if path.is_file() else self.tree.text
        return SourceDocument(name=path.name, checksum=compute_checksum(content))

    async def close(self) -> None:
        await self.store.close()
