"""Annotation persistence: in-memory store, storage backends and import merge."""

from annoti.store.merge import (
    MergeResult,
    build_package,
    compute_checksum,
    merge,
    parse_package,
)
from annoti.store.migrate import MigrationReport, migrate_sidecars
from annoti.store.sql import SqlStorage
from annoti.store.storage import AnnotationStorage, SidecarFileStorage
from annoti.store.store import AnnotationStore

__all__ = [
    "AnnotationStorage",
    "AnnotationStore",
    "MergeResult",
    "MigrationReport",
    "SidecarFileStorage",
    "SqlStorage",
    "build_package",
    "compute_checksum",
    "merge",
    "migrate_sidecars",
    "parse_package",
]
