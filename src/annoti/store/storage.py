"""Storage collaborator protocol and the JSON sidecar-file backend.

Backends move raw annotation records (camelCase dicts); validating them into
models is the store's job. A backend reports missing data as ``None``,
unreadable data as ``CorruptPersistedDataError`` and medium failures as
``StorageIOError``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Protocol

from annoti.errors import CorruptPersistedDataError, StorageIOError
from annoti.models import now_ms

logger = logging.getLogger(__name__)


class AnnotationStorage(Protocol):
    """What the annotation store needs from a persistence backend."""

    async def load_annotations(self, document_id: str) -> list[dict[str, Any]] | None:
        """Return stored records, or None when the document has none yet."""
        ...

    async def save_annotations(
        self, document_id: str, records: list[dict[str, Any]]
    ) -> None:
        """Replace the document's records with ``records``."""
        ...

    async def quarantine(self, document_id: str) -> str | None:
        """Copy unreadable data aside; return where it went (None if nothing)."""
        ...


class SidecarFileStorage:
    """One pretty-printed JSON file beside each document: ``<doc>.ann``.

    Document ids are file paths. Blocking file I/O runs in a worker thread
    so the event loop only suspends at these calls.
    """

    def __init__(self, suffix: str = ".ann") -> None:
        self.suffix = suffix

    def path_for(self, document_id: str) -> Path:
        return Path(f"{document_id}{self.suffix}")

    async def load_annotations(self, document_id: str) -> list[dict[str, Any]] | None:
        path = self.path_for(document_id)
        return await asyncio.to_thread(self._load, path)

    def _load(self, path: Path) -> list[dict[str, Any]] | None:
        if not path.exists():
            return None
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Cannot read {path}: {exc}"
            raise CorruptPersistedDataError(msg) from exc
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            msg = f"{path} is not valid JSON: {exc}"
            raise CorruptPersistedDataError(msg) from exc
        if not isinstance(parsed, list) or not all(
            isinstance(item, dict) for item in parsed
        ):
            msg = f"{path} does not contain a list of annotation objects"
            raise CorruptPersistedDataError(msg)
        return parsed

    async def save_annotations(
        self, document_id: str, records: list[dict[str, Any]]
    ) -> None:
        path = self.path_for(document_id)
        content = json.dumps(records, indent=2, ensure_ascii=False)
        await asyncio.to_thread(self._write_atomic, path, content)
        logger.debug("Wrote %d annotations to %s", len(records), path)

    @staticmethod
    def _write_atomic(path: Path, content: str) -> None:
        tmp = path.with_name(f"{path.name}.tmp")
        try:
            tmp.write_text(content, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            msg = f"Cannot write {path}: {exc}"
            raise StorageIOError(msg) from exc

    async def quarantine(self, document_id: str) -> str | None:
        path = self.path_for(document_id)
        backup = path.with_name(f"{path.name}.backup.{now_ms()}")
        return await asyncio.to_thread(self._copy_aside, path, backup)

    @staticmethod
    def _copy_aside(path: Path, backup: Path) -> str | None:
        if not path.exists():
            return None
        try:
            shutil.copy2(path, backup)
        except OSError as exc:
            msg = f"Cannot back up {path}: {exc}"
            raise StorageIOError(msg) from exc
        logger.warning("Backed up unreadable annotations %s -> %s", path, backup)
        return str(backup)
