"""Highlight markers: wrap anchor fragments in group-tagged ``mark`` elements.

Every fragment of one annotation carries ``data-group-id=<annotation id>``;
the first fragment rendered for a group also gets the navigable element id
``annotation-<group id>``. Unwrapping replaces each marker with its children
and coalesces the text leaves it leaves behind, so leaf coordinates stay the
same as before the wrap.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from annoti.anchoring.resolve import ResolvedSpan, resolve_anchor
from annoti.document.tree import MARKER_GROUP_ATTR, MARKER_TAG, Element, TextLeaf
from annoti.errors import AnchorResolutionError
from annoti.models import DEFAULT_HIGHLIGHT_COLOR, DEFAULT_HIGHLIGHT_TYPE

if TYPE_CHECKING:
    from collections.abc import Iterable

    from annoti.document.tree import DocumentTree, Node
    from annoti.models import Anchor

logger = logging.getLogger(__name__)

MARKER_CLASS = "annoti-highlight"
PRIMARY_ID_PREFIX = "annotation-"

# (group_id, pointer_x, pointer_y)
WakeCallback = Callable[[str, float, float], None]


def primary_marker_id(group_id: str) -> str:
    return f"{PRIMARY_ID_PREFIX}{group_id}"


def coalesce_text(parent: Element) -> int:
    """Merge adjacent text-leaf children of ``parent``.

    Returns:
        Number of leaves removed by merging.
    """
    merged: list[Node] = []
    removed = 0
    for child in parent.children:
        if isinstance(child, TextLeaf) and merged and isinstance(merged[-1], TextLeaf):
            merged[-1].text += child.text
            child.parent = None
            removed += 1
        else:
            merged.append(child)
    parent.children[:] = merged
    return removed


class HighlightMarkerManager:
    """Wraps and unwraps highlight markers on one live tree.

    Args:
        tree: The rendered tree to mutate.
    """

    def __init__(self, tree: DocumentTree) -> None:
        self._tree = tree
        self._wake_callbacks: list[WakeCallback] = []

    @property
    def tree(self) -> DocumentTree:
        return self._tree

    # --- queries ---

    def markers(self, group_id: str) -> list[Element]:
        """Rendered fragments of ``group_id`` in document order."""
        return [el for el in self._tree.iter_elements() if el.group_id == group_id]

    def group_ids(self) -> list[str]:
        """Distinct rendered group ids in first-appearance order."""
        seen: dict[str, None] = {}
        for el in self._tree.iter_elements():
            if el.group_id is not None:
                seen.setdefault(el.group_id, None)
        return list(seen)

    def marked_text(self, group_id: str) -> str:
        """Concatenated text covered by a group's fragments."""
        return "".join(m.text_content for m in self.markers(group_id))

    # --- wrapping ---

    def _make_marker(
        self, text: str, group_id: str, color: str, highlight_type: str
    ) -> Element:
        attrs = {
            "class": f"{MARKER_CLASS} {MARKER_CLASS}--{highlight_type}",
            MARKER_GROUP_ATTR: group_id,
            "style": f"--annoti-color: {color}",
        }
        if self._tree.find_by_id(primary_marker_id(group_id)) is None:
            attrs = {"id": primary_marker_id(group_id), **attrs}
        return Element(tag=MARKER_TAG, attrs=attrs, children=[TextLeaf(text=text)])

    def wrap_span(
        self,
        span: ResolvedSpan,
        group_id: str,
        color: str | None = None,
        highlight_type: str | None = None,
    ) -> int:
        """Wrap an already-resolved span; returns markers created."""
        color = color or DEFAULT_HIGHLIGHT_COLOR
        highlight_type = highlight_type or DEFAULT_HIGHLIGHT_TYPE
        created = 0

        # Segments were computed before any mutation; each names a distinct node
        for seg in list(span.leaf.segments):
            lo = max(span.start, seg.offset)
            hi = min(span.end, seg.end)
            if lo >= hi:
                continue
            node = seg.node
            parent = node.parent
            if parent is None:
                logger.warning("Leaf segment detached while wrapping %s", group_id)
                continue
            local_lo, local_hi = lo - seg.offset, hi - seg.offset
            before, middle, after = (
                node.text[:local_lo],
                node.text[local_lo:local_hi],
                node.text[local_hi:],
            )
            replacement: list[Node] = []
            if before:
                replacement.append(TextLeaf(text=before))
            marker = self._make_marker(middle, group_id, color, highlight_type)
            replacement.append(marker)
            if after:
                replacement.append(TextLeaf(text=after))
            parent.replace_child(node, replacement)
            created += 1
        return created

    def wrap(
        self,
        anchors: Iterable[Anchor],
        group_id: str,
        color: str | None = None,
        highlight_type: str | None = None,
    ) -> int:
        """Wrap every anchor of one annotation.

        A fragment that fails to resolve is logged and skipped; the rest are
        still wrapped.

        Returns:
            Number of marker elements created.
        """
        count = 0
        for index, anchor in enumerate(anchors):
            try:
                span = resolve_anchor(self._tree, anchor)
            except AnchorResolutionError as exc:
                logger.warning(
                    "Skipping fragment %d of %s: %s", index, group_id, exc
                )
                continue
            count += self.wrap_span(span, group_id, color, highlight_type)
        return count

    def unwrap(self, group_id: str) -> int:
        """Remove every fragment of ``group_id`` and re-merge split leaves.

        Returns:
            Number of markers removed.
        """
        markers = self.markers(group_id)
        parents: list[Element] = []
        for marker in markers:
            parent = marker.parent
            if parent is None:
                continue
            parent.replace_child(marker, list(marker.children))
            if not any(p is parent for p in parents):
                parents.append(parent)
        for parent in parents:
            coalesce_text(parent)
        if markers:
            logger.debug("Unwrapped %d fragments of %s", len(markers), group_id)
        return len(markers)

    def restyle(self, group_id: str, color: str, highlight_type: str) -> int:
        """Update colour and style of a group's existing fragments."""
        markers = self.markers(group_id)
        for marker in markers:
            marker.attrs["class"] = f"{MARKER_CLASS} {MARKER_CLASS}--{highlight_type}"
            marker.attrs["style"] = f"--annoti-color: {color}"
        return len(markers)

    # --- activation ---

    def on_wake(self, callback: WakeCallback) -> None:
        """Subscribe to marker activation (e.g. the sticky note manager)."""
        self._wake_callbacks.append(callback)

    def activate(self, group_id: str, x: float, y: float) -> None:
        """Emit a wake notification for ``group_id`` at pointer ``(x, y)``."""
        if not self.markers(group_id):
            logger.warning("Activation for unrendered group %s", group_id)
        for callback in self._wake_callbacks:
            callback(group_id, x, y)

    def activate_marker(self, marker: Element, x: float, y: float) -> None:
        group_id = marker.group_id
        if group_id is None:
            msg = f"<{marker.tag}> is not a highlight marker"
            raise ValueError(msg)
        self.activate(group_id, x, y)
