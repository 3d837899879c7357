"""Exception taxonomy for annotation anchoring and persistence.

Anchor resolution errors are per-fragment and never fatal to a restoration
pass. Storage errors are caught by the store and surfaced as warnings.
"""

from __future__ import annotations


class AnnotiError(Exception):
    """Base class for all annoti errors."""


class AnchorResolutionError(AnnotiError):
    """An anchor could not be mapped onto the live document tree."""


class ContainerNotFoundError(AnchorResolutionError):
    """No element matches the anchor's container path."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Container not found: {path!r}")
        self.path = path


class LeafNotFoundError(AnchorResolutionError):
    """The container has fewer text leaves than the stored ordinal."""

    def __init__(self, path: str, ordinal: int, available: int) -> None:
        super().__init__(
            f"Leaf {ordinal} not found in {path!r} ({available} text leaves)"
        )
        self.path = path
        self.ordinal = ordinal
        self.available = available


class DegenerateRangeError(AnchorResolutionError):
    """Clamped offsets leave nothing to highlight."""

    def __init__(self, start: int, end: int) -> None:
        super().__init__(f"Degenerate range [{start}, {end})")
        self.start = start
        self.end = end


class CorruptPersistedDataError(AnnotiError):
    """Persisted annotations exist but cannot be parsed or validated."""


class StorageIOError(AnnotiError):
    """Reading or writing the storage medium failed."""


class RendererError(AnnotiError):
    """A document could not be turned into a tree."""


class UnsupportedPackageError(AnnotiError):
    """An export package is malformed or has an unknown version."""
