"""Document tree, container paths and renderer adapters."""

from annoti.document.leaves import (
    LogicalLeaf,
    container_of,
    leaf_position,
    logical_leaves,
)
from annoti.document.paths import find, path_of, resolve
from annoti.document.tree import DocumentTree, Element, Selection, TextLeaf, element

__all__ = [
    "DocumentTree",
    "Element",
    "LogicalLeaf",
    "Selection",
    "TextLeaf",
    "container_of",
    "element",
    "find",
    "leaf_position",
    "logical_leaves",
    "path_of",
    "resolve",
]
