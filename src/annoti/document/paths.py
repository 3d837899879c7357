"""Container paths: stable selector strings identifying an element.

Path generation walks from the element toward the root emitting one segment
per element:

- ``#id`` when the element has an id; ascent stops there.
- ``tag.cls1.cls2`` when it has classes; ascent continues (classes are not
  assumed unique).
- ``tag:nth-of-type(k)`` otherwise, k = 1 + earlier same-tag siblings.

Segments are joined root-first with `` > ``. The synthetic root contributes
no segment and highlight markers are invisible to both generation and
resolution, so paths are identical with or without highlights applied.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from annoti.document.tree import Element
from annoti.errors import ContainerNotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from annoti.document.tree import DocumentTree

PATH_SEPARATOR = " > "

_NTH_SEGMENT = re.compile(r"^(?P<tag>[^\s.#:>]+):nth-of-type\((?P<n>\d+)\)$")
_CLASS_SEGMENT = re.compile(r"^(?P<tag>[^\s.#:>]+)(?P<classes>(?:\.[^\s.#:>]+)+)$")


def nth_of_type(el: Element) -> int:
    """1-based position of ``el`` among same-tag, non-marker siblings."""
    parent = el.parent
    if parent is None:
        return 1
    k = 0
    for sibling in parent.children:
        if sibling is el:
            return k + 1
        if (
            isinstance(sibling, Element)
            and sibling.tag == el.tag
            and not sibling.is_marker
        ):
            k += 1
    msg = f"<{el.tag}> is not among its parent's children"
    raise ValueError(msg)


def _segment_for(el: Element) -> tuple[str, bool]:
    """Return ``(segment, stop_ascending)`` for one element."""
    if el.element_id:
        return f"#{el.element_id}", True
    if el.classes:
        return el.tag + "".join(f".{cls}" for cls in el.classes), False
    return f"{el.tag}:nth-of-type({nth_of_type(el)})", False


def path_of(el: Element) -> str:
    """Compute the container path of ``el``.

    Markers are skipped; the root (an element without a parent) yields the
    empty path.
    """
    segments: list[str] = []
    current: Element | None = el
    while current is not None and current.parent is not None:
        if current.is_marker:
            current = current.parent
            continue
        segment, stop = _segment_for(current)
        segments.append(segment)
        if stop:
            break
        current = current.parent
    segments.reverse()
    return PATH_SEPARATOR.join(segments)


@dataclass(frozen=True)
class _Segment:
    element_id: str | None = None
    tag: str | None = None
    classes: frozenset[str] = frozenset()
    nth: int | None = None

    def matches(self, el: Element) -> bool:
        if el.is_marker:
            return False
        if self.element_id is not None:
            return el.element_id == self.element_id
        if el.tag != self.tag:
            return False
        if self.nth is not None:
            return nth_of_type(el) == self.nth
        return self.classes <= set(el.classes)


def _parse_segment(raw: str) -> _Segment:
    if raw.startswith("#") and len(raw) > 1:
        return _Segment(element_id=raw[1:])
    if match := _NTH_SEGMENT.match(raw):
        return _Segment(tag=match["tag"], nth=int(match["n"]))
    if match := _CLASS_SEGMENT.match(raw):
        classes = frozenset(match["classes"].split(".")[1:])
        return _Segment(tag=match["tag"], classes=classes)
    msg = f"Unrecognised path segment: {raw!r}"
    raise ValueError(msg)


def parse_path(path: str) -> list[_Segment]:
    """Split a container path into matchable segments."""
    if not path.strip():
        return []
    return [_parse_segment(raw.strip()) for raw in path.split(">")]


def _match_rest(el: Element, segments: list[_Segment]) -> Element | None:
    if not segments:
        return el
    head, rest = segments[0], segments[1:]
    for child in el.element_children():
        if head.matches(child):
            found = _match_rest(child, rest)
            if found is not None:
                return found
    return None


def _first_candidates(tree: DocumentTree, head: _Segment) -> Iterator[Element]:
    if head.element_id is not None:
        yield from (el for el in tree.iter_elements() if head.matches(el))
    else:
        yield from (el for el in tree.root.element_children() if head.matches(el))


def find(tree: DocumentTree, path: str) -> Element | None:
    """Return the first element matching ``path`` in document order, or None."""
    try:
        segments = parse_path(path)
    except ValueError:
        return None
    if not segments:
        return tree.root
    head, rest = segments[0], segments[1:]
    for candidate in _first_candidates(tree, head):
        found = _match_rest(candidate, rest)
        if found is not None:
            return found
    return None


def resolve(tree: DocumentTree, path: str) -> Element:
    """Resolve ``path`` against a freshly rendered tree.

    Raises:
        ContainerNotFoundError: If nothing matches.
    """
    found = find(tree, path)
    if found is None:
        raise ContainerNotFoundError(path)
    return found
