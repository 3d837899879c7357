"""Move sidecar ``.ann`` files into another storage backend.

Each ``<document><suffix>`` file in a directory is loaded, validated and
written to the target under the document's path, after which the sidecar
is renamed to ``<name>.backup.migrated`` so a second run skips it. A file
that fails at any step is counted as an error and left in place.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from annoti.errors import CorruptPersistedDataError, StorageIOError
from annoti.models import Annotation
from annoti.store.merge import merge
from annoti.store.storage import SidecarFileStorage

if TYPE_CHECKING:
    from annoti.store.storage import AnnotationStorage

logger = logging.getLogger(__name__)

MIGRATED_SUFFIX = ".backup.migrated"


@dataclass
class MigrationReport:
    """Counts from one migration run.

    Attributes:
        files: Sidecar files migrated (or that would be, on a dry run).
        migrated: Annotations written to the target.
        duplicates: Annotations skipped because the target already had them.
        errors: One ``"<file>: <reason>"`` line per failed sidecar.
    """

    files: int = 0
    migrated: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)


def _load_models(records: list[dict] | None) -> list[Annotation]:
    return [Annotation.model_validate(r) for r in records or []]


async def _migrate_one(
    path: Path,
    document_id: str,
    source: SidecarFileStorage,
    target: AnnotationStorage,
    *,
    dry_run: bool,
) -> tuple[int, int]:
    """Migrate one sidecar; returns (written, duplicates)."""
    if not Path(document_id).is_file():
        msg = f"document {document_id} does not exist"
        raise FileNotFoundError(msg)
    incoming = _load_models(await source.load_annotations(document_id))
    existing = _load_models(await target.load_annotations(document_id))

    if existing:
        result = merge(incoming, existing)
        combined = existing + result.accepted
        written, duplicates = len(result.accepted), result.duplicate_count
    else:
        combined = incoming
        written, duplicates = len(incoming), 0

    if dry_run:
        return written, duplicates
    await target.save_annotations(document_id, [a.to_record() for a in combined])
    backup = path.with_name(f"{path.name}{MIGRATED_SUFFIX}")
    await asyncio.to_thread(path.rename, backup)
    logger.info("Migrated %d annotations from %s", written, path)
    return written, duplicates


async def migrate_sidecars(
    base_dir: Path,
    target: AnnotationStorage,
    *,
    suffix: str = ".ann",
    dry_run: bool = False,
) -> MigrationReport:
    """Copy every sidecar in ``base_dir`` (not recursive) into ``target``.

    Annotation ids and fields are kept as stored. When the target already
    holds annotations for a document, the sidecar's are merged in and
    duplicates by source text are skipped.

    Args:
        base_dir: Directory to scan for ``*<suffix>`` files.
        target: Backend to write to, usually ``SqlStorage``.
        suffix: Sidecar suffix, as configured for ``SidecarFileStorage``.
        dry_run: Count what would move without writing or renaming.
    """
    source = SidecarFileStorage(suffix)
    report = MigrationReport()
    for path in sorted(base_dir.glob(f"*{suffix}")):
        if not path.is_file():
            continue
        document_id = str(path)[: -len(suffix)]
        try:
            written, duplicates = await _migrate_one(
                path, document_id, source, target, dry_run=dry_run
            )
        except (
            CorruptPersistedDataError,
            StorageIOError,
            ValidationError,
            OSError,
        ) as exc:
            logger.warning("Could not migrate %s: %s", path, exc)
            report.errors.append(f"{path}: {exc}")
            continue
        report.files += 1
        report.migrated += written
        report.duplicates += duplicates

    logger.info(
        "Migration complete: %d annotations from %d files, %d errors",
        report.migrated,
        report.files,
        len(report.errors),
    )
    return report
