"""Document tree of element and text-leaf nodes.

The renderer produces a ``DocumentTree`` once per render pass. The tree is
read-only for everything except the highlight marker manager, which splits
text leaves and inserts ``mark`` elements tagged with a group id.

``Selection`` is the leaf-span capability: a start and end position inside
text leaves, able to enumerate every leaf it touches in document order.
"""

from __future__ import annotations

import html as html_module
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from collections.abc import Iterator

# Marker elements inserted by the highlight marker manager
MARKER_TAG = "mark"
MARKER_GROUP_ATTR = "data-group-id"

_VOID_TAGS = frozenset(("br", "hr", "img", "input", "meta", "link", "wbr"))


@dataclass(eq=False)
class Node:
    """Base node. Identity-compared; ``parent`` is None only for the root."""

    parent: Element | None = field(default=None, init=False, repr=False)

    @property
    def is_marker(self) -> bool:
        return False

    def ancestors(self) -> Iterator[Element]:
        """Yield parent, grandparent, ... up to the root."""
        node = self.parent
        while node is not None:
            yield node
            node = node.parent


@dataclass(eq=False)
class TextLeaf(Node):
    """Text-bearing leaf node."""

    text: str = ""

    def __len__(self) -> int:
        return len(self.text)

    @property
    def is_whitespace(self) -> bool:
        return not self.text.strip()


@dataclass(eq=False)
class Element(Node):
    """Element node with ordered children."""

    tag: str = "div"
    attrs: dict[str, str] = field(default_factory=dict)
    children: list[Node] = field(default_factory=list)

    def __post_init__(self) -> None:
        for child in self.children:
            child.parent = self

    @property
    def element_id(self) -> str | None:
        return self.attrs.get("id") or None

    @property
    def classes(self) -> list[str]:
        return self.attrs.get("class", "").split()

    @property
    def is_marker(self) -> bool:
        return self.tag == MARKER_TAG and MARKER_GROUP_ATTR in self.attrs

    @property
    def group_id(self) -> str | None:
        """Group id of a highlight marker, None for ordinary elements."""
        return self.attrs.get(MARKER_GROUP_ATTR) if self.is_marker else None

    # --- structure ---

    def append(self, child: Node) -> Node:
        child.parent = self
        self.children.append(child)
        return child

    def index_of(self, child: Node) -> int:
        for i, candidate in enumerate(self.children):
            if candidate is child:
                return i
        msg = f"{child!r} is not a child of <{self.tag}>"
        raise ValueError(msg)

    def replace_child(self, old: Node, new_nodes: list[Node]) -> None:
        """Replace ``old`` with ``new_nodes`` in place."""
        index = self.index_of(old)
        for node in new_nodes:
            node.parent = self
        self.children[index : index + 1] = new_nodes
        old.parent = None

    def element_children(self) -> list[Element]:
        return [c for c in self.children if isinstance(c, Element)]

    # --- traversal ---

    def iter_descendants(self) -> Iterator[Node]:
        """Pre-order walk of all descendants (self excluded)."""
        stack: list[Node] = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            if isinstance(node, Element):
                stack.extend(reversed(node.children))

    def iter_elements(self) -> Iterator[Element]:
        for node in self.iter_descendants():
            if isinstance(node, Element):
                yield node

    def iter_leaves(self) -> Iterator[TextLeaf]:
        for node in self.iter_descendants():
            if isinstance(node, TextLeaf):
                yield node

    @property
    def text_content(self) -> str:
        return "".join(leaf.text for leaf in self.iter_leaves())

    # --- serialisation ---

    def to_html(self) -> str:
        attrs = "".join(
            f' {name}="{html_module.escape(value, quote=True)}"'
            for name, value in self.attrs.items()
        )
        if self.tag in _VOID_TAGS:
            return f"<{self.tag}{attrs}>"
        inner = "".join(_node_html(child) for child in self.children)
        return f"<{self.tag}{attrs}>{inner}</{self.tag}>"


def _node_html(node: Node) -> str:
    if isinstance(node, TextLeaf):
        return html_module.escape(node.text, quote=False)
    assert isinstance(node, Element)
    return node.to_html()


def element(tag: str, *children: Node | str, **attrs: str) -> Element:
    """Build an element; string children become text leaves.

    Attribute names use ``_`` for ``-`` and a trailing ``_`` is dropped, so
    ``element("div", class_="note", data_x="1")`` gives
    ``<div class="note" data-x="1">``.
    """
    nodes = [TextLeaf(text=c) if isinstance(c, str) else c for c in children]
    clean = {name.rstrip("_").replace("_", "-"): value for name, value in attrs.items()}
    return Element(tag=tag, attrs=clean, children=nodes)


class DocumentTree:
    """A rendered document: a synthetic root element plus render metadata.

    Attributes:
        root: Synthetic root; it never contributes a container path segment.
        render_id: Unique id of the render pass that produced this tree.
        restored: Set by the restoration engine after its single pass.
    """

    ROOT_TAG = "#root"

    def __init__(self, children: list[Node] | None = None) -> None:
        self.root = Element(tag=self.ROOT_TAG, children=list(children or []))
        self.render_id = str(uuid4())
        self.restored = False

    def __repr__(self) -> str:
        return f"DocumentTree(render_id={self.render_id!r})"

    def iter_leaves(self) -> Iterator[TextLeaf]:
        return self.root.iter_leaves()

    def iter_elements(self) -> Iterator[Element]:
        return self.root.iter_elements()

    @property
    def text(self) -> str:
        """Concatenated text of every leaf, in document order."""
        return self.root.text_content

    def find_by_id(self, element_id: str) -> Element | None:
        for el in self.iter_elements():
            if el.element_id == element_id:
                return el
        return None

    def to_html(self) -> str:
        return "".join(_node_html(child) for child in self.root.children)

    def select(self, start: int, end: int) -> Selection:
        """Build a selection from offsets into ``self.text``.

        Raises:
            ValueError: If the offsets are out of range or reversed.
        """
        total = len(self.text)
        if not 0 <= start <= end <= total:
            msg = f"Selection [{start}, {end}) outside document text of length {total}"
            raise ValueError(msg)

        leaves = [leaf for leaf in self.iter_leaves() if leaf.text]
        if not leaves:
            msg = "Document has no text to select"
            raise ValueError(msg)

        start_pos: tuple[TextLeaf, int] | None = None
        end_pos: tuple[TextLeaf, int] | None = None
        cursor = 0
        for leaf in leaves:
            leaf_end = cursor + len(leaf.text)
            # Start binds to the leaf it begins inside, end to the leaf it
            # finishes inside, so boundaries never produce empty first/last leaves.
            if start_pos is None and cursor <= start < leaf_end:
                start_pos = (leaf, start - cursor)
            if end_pos is None and cursor < end <= leaf_end:
                end_pos = (leaf, end - cursor)
            cursor = leaf_end

        if start == end:
            # Collapsed: anchor both ends at the same point
            point = start_pos or (leaves[-1], len(leaves[-1].text))
            return Selection(point[0], point[1], point[0], point[1])

        assert start_pos is not None and end_pos is not None
        return Selection(start_pos[0], start_pos[1], end_pos[0], end_pos[1])


def document_order_key(node: Node) -> list[int]:
    """Sibling-index path from the root; compares in document order."""
    key: list[int] = []
    current = node
    while current.parent is not None:
        key.append(current.parent.index_of(current))
        current = current.parent
    key.reverse()
    return key


@dataclass(eq=False)
class Selection:
    """A span between two positions inside text leaves.

    Offsets index into the leaf's own text. The end may precede the start
    (a backwards drag); ``normalised()`` orders them.
    """

    start_leaf: TextLeaf
    start_offset: int
    end_leaf: TextLeaf
    end_offset: int

    def __post_init__(self) -> None:
        if not 0 <= self.start_offset <= len(self.start_leaf.text):
            msg = f"start_offset {self.start_offset} outside leaf"
            raise ValueError(msg)
        if not 0 <= self.end_offset <= len(self.end_leaf.text):
            msg = f"end_offset {self.end_offset} outside leaf"
            raise ValueError(msg)

    @property
    def is_collapsed(self) -> bool:
        return self.start_leaf is self.end_leaf and self.start_offset == self.end_offset

    def normalised(self) -> Selection:
        """Return a selection whose start precedes its end in document order."""
        if self.start_leaf is self.end_leaf:
            if self.start_offset <= self.end_offset:
                return self
            return Selection(
                self.start_leaf, self.end_offset, self.end_leaf, self.start_offset
            )
        if document_order_key(self.start_leaf) <= document_order_key(self.end_leaf):
            return self
        return Selection(
            self.end_leaf, self.end_offset, self.start_leaf, self.start_offset
        )

    def common_ancestor(self) -> Element:
        """Deepest element containing both endpoints."""
        start_chain = list(self.start_leaf.ancestors())
        end_ids = {id(el) for el in self.end_leaf.ancestors()}
        for ancestor in start_chain:
            if id(ancestor) in end_ids:
                return ancestor
        msg = "Selection endpoints belong to different trees"
        raise ValueError(msg)

    def intersecting_leaves(self) -> list[TextLeaf]:
        """Text leaves touched by the selection, in document order.

        Pre-order walk from the common ancestor, collecting from the start
        leaf through the end leaf inclusive.
        """
        sel = self.normalised()
        if sel.start_leaf is sel.end_leaf:
            return [sel.start_leaf]

        leaves: list[TextLeaf] = []
        collecting = False
        for node in sel.common_ancestor().iter_descendants():
            if not isinstance(node, TextLeaf):
                continue
            if node is sel.start_leaf:
                collecting = True
            if collecting:
                leaves.append(node)
            if node is sel.end_leaf:
                break
        return leaves

    @property
    def text(self) -> str:
        """Selected text, as the reader sees it."""
        sel = self.normalised()
        parts: list[str] = []
        for leaf in sel.intersecting_leaves():
            start = sel.start_offset if leaf is sel.start_leaf else 0
            end = sel.end_offset if leaf is sel.end_leaf else len(leaf.text)
            parts.append(leaf.text[start:end])
        return "".join(parts)
