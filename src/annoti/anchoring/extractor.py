"""Turn a reader's selection into an ordered list of anchors."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from annoti.document.leaves import leaf_position
from annoti.document.paths import path_of
from annoti.models import Anchor

if TYPE_CHECKING:
    from annoti.document.tree import Selection

logger = logging.getLogger(__name__)


def extract(selection: Selection) -> list[Anchor]:
    """Encode ``selection`` as one anchor per touched text leaf.

    Leaves are visited in document order; whitespace-only leaves are
    skipped. The first leaf starts at the selection's start offset, the last
    ends at its end offset, and interior leaves are covered in full. Pieces
    of one logical leaf that an existing highlight split apart collapse back
    into a single anchor.

    Returns:
        Anchors in reading order; empty for a collapsed selection or one
        that touches no eligible leaf.
    """
    if selection.is_collapsed:
        return []

    sel = selection.normalised()
    anchors: list[Anchor] = []

    for node in sel.intersecting_leaves():
        if node.is_whitespace:
            continue
        start = sel.start_offset if node is sel.start_leaf else 0
        end = sel.end_offset if node is sel.end_leaf else len(node.text)
        if start >= end:
            continue

        leaf, base = leaf_position(node)
        path = path_of(leaf.container)

        previous = anchors[-1] if anchors else None
        if (
            previous is not None
            and previous.container_path == path
            and previous.leaf_ordinal == leaf.ordinal
            and previous.end_offset == base + start
        ):
            anchors[-1] = previous.model_copy(update={"end_offset": base + end})
            continue

        anchors.append(
            Anchor(
                container_path=path,
                leaf_ordinal=leaf.ordinal,
                start_offset=base + start,
                end_offset=base + end,
            )
        )

    if not anchors:
        logger.debug("Selection touched no eligible text leaf")
    return anchors
