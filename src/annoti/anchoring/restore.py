"""Replay persisted annotations onto a freshly rendered tree.

Each anchor runs through RESOLVING_CONTAINER → RESOLVING_LEAF →
CLAMPING_OFFSETS and ends WRAPPED or FAILED_FRAGMENT. An annotation with at
least one wrapped fragment is restored (fully or partially); one with none
is reported FAILED and left in the store untouched. Nothing in a pass is
fatal to the rest of the pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from annoti.anchoring.resolve import (
    ResolvedSpan,
    clamp_offsets,
    resolve_container,
    resolve_leaf,
)
from annoti.errors import AnchorResolutionError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from annoti.anchoring.markers import HighlightMarkerManager
    from annoti.models import Anchor, Annotation

logger = logging.getLogger(__name__)


class FragmentState(StrEnum):
    PENDING = "pending"
    RESOLVING_CONTAINER = "resolving_container"
    RESOLVING_LEAF = "resolving_leaf"
    CLAMPING_OFFSETS = "clamping_offsets"
    WRAPPED = "wrapped"
    FAILED_FRAGMENT = "failed_fragment"


class RestoreStatus(StrEnum):
    RESTORED = "restored"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class FragmentResult:
    """Outcome for one anchor of one annotation."""

    index: int
    anchor: Anchor
    state: FragmentState = FragmentState.PENDING
    error: str | None = None
    clamped: bool = False
    markers: int = 0


@dataclass
class AnnotationRestoreResult:
    annotation_id: str
    fragments: list[FragmentResult] = field(default_factory=list)

    @property
    def wrapped(self) -> int:
        return sum(1 for f in self.fragments if f.state is FragmentState.WRAPPED)

    @property
    def status(self) -> RestoreStatus:
        wrapped = self.wrapped
        if wrapped == 0:
            return RestoreStatus.FAILED
        if wrapped < len(self.fragments):
            return RestoreStatus.PARTIAL
        return RestoreStatus.RESTORED


@dataclass
class RestoreReport:
    """Result of one restoration pass.

    Attributes:
        results: Per-annotation outcomes in input order.
        skipped: True when the pass was refused (tree already restored).
    """

    results: list[AnnotationRestoreResult] = field(default_factory=list)
    skipped: bool = False

    def _ids(self, status: RestoreStatus) -> list[str]:
        return [r.annotation_id for r in self.results if r.status is status]

    @property
    def restored(self) -> list[str]:
        return self._ids(RestoreStatus.RESTORED)

    @property
    def partial(self) -> list[str]:
        return self._ids(RestoreStatus.PARTIAL)

    @property
    def failed(self) -> list[str]:
        return self._ids(RestoreStatus.FAILED)

    def get(self, annotation_id: str) -> AnnotationRestoreResult | None:
        for result in self.results:
            if result.annotation_id == annotation_id:
                return result
        return None


class RestorationEngine:
    """Runs the single restoration pass for one rendered tree."""

    def __init__(self, markers: HighlightMarkerManager) -> None:
        self._markers = markers

    def _restore_fragment(
        self, annotation: Annotation, fragment: FragmentResult
    ) -> None:
        tree = self._markers.tree
        anchor = fragment.anchor
        try:
            fragment.state = FragmentState.RESOLVING_CONTAINER
            container = resolve_container(tree, anchor)
            fragment.state = FragmentState.RESOLVING_LEAF
            leaf = resolve_leaf(container, anchor)
            fragment.state = FragmentState.CLAMPING_OFFSETS
            start, end, clamped = clamp_offsets(leaf, anchor)
        except AnchorResolutionError as exc:
            logger.debug(
                "Fragment %d of %s failed at %s: %s",
                fragment.index,
                annotation.id,
                fragment.state,
                exc,
            )
            fragment.state = FragmentState.FAILED_FRAGMENT
            fragment.error = type(exc).__name__
            return

        fragment.clamped = clamped
        fragment.markers = self._markers.wrap_span(
            ResolvedSpan(leaf=leaf, start=start, end=end, clamped=clamped),
            annotation.id,
            annotation.highlight_color,
            annotation.highlight_type,
        )
        fragment.state = FragmentState.WRAPPED

    def restore_one(self, annotation: Annotation) -> AnnotationRestoreResult:
        """Restore a single annotation; all of its fragments in one call."""
        result = AnnotationRestoreResult(
            annotation_id=annotation.id,
            fragments=[
                FragmentResult(index=i, anchor=a)
                for i, a in enumerate(annotation.anchors)
            ],
        )
        for fragment in result.fragments:
            self._restore_fragment(annotation, fragment)

        if result.status is RestoreStatus.FAILED:
            logger.warning(
                "Annotation %s could not be restored (%d fragments failed)",
                annotation.id,
                len(result.fragments),
            )
        elif result.status is RestoreStatus.PARTIAL:
            logger.info(
                "Annotation %s partially restored (%d/%d fragments)",
                annotation.id,
                result.wrapped,
                len(result.fragments),
            )
        return result

    def restore(self, annotations: Iterable[Annotation]) -> RestoreReport:
        """Replay every annotation onto the tree, once per render pass."""
        tree = self._markers.tree
        if tree.restored:
            logger.warning(
                "Tree %s already restored; refusing a second pass", tree.render_id
            )
            return RestoreReport(skipped=True)

        report = RestoreReport()
        for annotation in annotations:
            report.results.append(self.restore_one(annotation))
        tree.restored = True

        logger.info(
            "Restored %d annotations (%d partial, %d failed) on %s",
            len(report.restored),
            len(report.partial),
            len(report.failed),
            tree.render_id,
        )
        return report
