"""Anchor capture, highlight markers and restoration."""

from annoti.anchoring.extractor import extract
from annoti.anchoring.markers import HighlightMarkerManager
from annoti.anchoring.resolve import ResolvedSpan, resolve_anchor
from annoti.anchoring.restore import (
    FragmentState,
    RestorationEngine,
    RestoreReport,
    RestoreStatus,
)

__all__ = [
    "FragmentState",
    "HighlightMarkerManager",
    "ResolvedSpan",
    "RestorationEngine",
    "RestoreReport",
    "RestoreStatus",
    "extract",
    "resolve_anchor",
]
