"""Resolve a stored anchor against the live tree.

Three steps, each with its own failure: container path → element
(``ContainerNotFoundError``), leaf ordinal → logical leaf
(``LeafNotFoundError``), stored offsets → clamped offsets
(``DegenerateRangeError``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from annoti.document.leaves import LogicalLeaf, logical_leaves
from annoti.document.paths import resolve
from annoti.errors import DegenerateRangeError, LeafNotFoundError

if TYPE_CHECKING:
    from annoti.document.tree import DocumentTree, Element
    from annoti.models import Anchor


@dataclass(frozen=True)
class ResolvedSpan:
    """An anchor mapped onto a live logical leaf."""

    leaf: LogicalLeaf
    start: int
    end: int
    clamped: bool = False


def resolve_container(tree: DocumentTree, anchor: Anchor) -> Element:
    return resolve(tree, anchor.container_path)


def resolve_leaf(container: Element, anchor: Anchor) -> LogicalLeaf:
    leaves = logical_leaves(container)
    if anchor.leaf_ordinal >= len(leaves):
        raise LeafNotFoundError(anchor.container_path, anchor.leaf_ordinal, len(leaves))
    return leaves[anchor.leaf_ordinal]


def clamp_offsets(leaf: LogicalLeaf, anchor: Anchor) -> tuple[int, int, bool]:
    """Clamp stored offsets to the leaf's current length.

    Returns:
        ``(start, end, clamped)``.
    """
    length = len(leaf)
    end = min(anchor.end_offset, length)
    start = anchor.start_offset
    if start >= end:
        raise DegenerateRangeError(start, end)
    return start, end, end != anchor.end_offset


def resolve_anchor(tree: DocumentTree, anchor: Anchor) -> ResolvedSpan:
    """Run all three resolution steps.

    Raises:
        AnchorResolutionError: The relevant subclass for the failing step.
    """
    container = resolve_container(tree, anchor)
    leaf = resolve_leaf(container, anchor)
    start, end, clamped = clamp_offsets(leaf, anchor)
    return ResolvedSpan(leaf=leaf, start=start, end=end, clamped=clamped)
