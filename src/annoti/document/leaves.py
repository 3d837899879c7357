"""Logical text leaves with highlight markers made transparent.

A container's logical leaves are the runs of text it would hold if every
highlight marker were unwrapped: consecutive text nodes and marker elements
form one leaf, any other element child ends the run. Leaf ordinals and
offsets computed this way are identical before a wrap, after it, and after
the matching unwrap, so anchors captured on a highlighted tree restore onto
a fresh one.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from annoti.document.tree import Element, Node, TextLeaf


@dataclass(frozen=True)
class LeafSegment:
    """One physical text node inside a logical leaf."""

    node: TextLeaf
    offset: int  # logical offset of node.text[0]

    @property
    def end(self) -> int:
        return self.offset + len(self.node.text)


@dataclass
class LogicalLeaf:
    """A run of text inside ``container`` addressed by ``ordinal``."""

    container: Element
    ordinal: int
    segments: list[LeafSegment] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(seg.node.text for seg in self.segments)

    def __len__(self) -> int:
        return self.segments[-1].end if self.segments else 0


def container_of(node: Node) -> Element:
    """Nearest non-marker ancestor of ``node``."""
    for ancestor in node.ancestors():
        if not ancestor.is_marker:
            return ancestor
    msg = f"{node!r} is not attached to a tree"
    raise ValueError(msg)


def _collect_marker_text(marker: Element, run: list[TextLeaf]) -> None:
    for node in marker.iter_descendants():
        if isinstance(node, TextLeaf):
            run.append(node)


def logical_leaves(container: Element) -> list[LogicalLeaf]:
    """Split ``container``'s direct text content into logical leaves."""
    runs: list[list[TextLeaf]] = []
    current: list[TextLeaf] | None = None

    for child in container.children:
        if isinstance(child, TextLeaf):
            if current is None:
                current = []
                runs.append(current)
            current.append(child)
        elif isinstance(child, Element) and child.is_marker:
            if current is None:
                current = []
                runs.append(current)
            _collect_marker_text(child, current)
        else:
            current = None

    leaves: list[LogicalLeaf] = []
    for run in runs:
        if not run:
            continue
        leaf = LogicalLeaf(container=container, ordinal=len(leaves))
        offset = 0
        for node in run:
            leaf.segments.append(LeafSegment(node=node, offset=offset))
            offset += len(node.text)
        leaves.append(leaf)
    return leaves


def leaf_position(node: TextLeaf) -> tuple[LogicalLeaf, int]:
    """Locate a physical text node in logical coordinates.

    Returns:
        ``(logical_leaf, base_offset)`` where ``base_offset`` is the logical
        offset of ``node.text[0]``.
    """
    for leaf in logical_leaves(container_of(node)):
        for seg in leaf.segments:
            if seg.node is node:
                return leaf, seg.offset
    msg = f"{node!r} not found among its container's leaves"
    raise ValueError(msg)
