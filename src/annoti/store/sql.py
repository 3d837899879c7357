"""SQL storage backend using SQLModel over an async SQLAlchemy engine.

One row per annotation, keyed by document id and kept in collection order
by ``position``. Anchors are stored as a JSON string in ``anchor_data``.
The default URL is a local SQLite file through aiosqlite; any async
SQLAlchemy URL works.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import BigInteger, Column, Text, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import Field, SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from annoti.errors import CorruptPersistedDataError, StorageIOError
from annoti.models import now_ms

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def _epoch_ms_column() -> Any:
    """Create a BIGINT column for epoch-millisecond timestamps."""
    return Column(BigInteger, nullable=False, default=0)


class AnnotationRecord(SQLModel, table=True):
    """Persisted annotation row.

    Attributes:
        id: Annotation id (also the highlight group id).
        document_id: Document the annotation belongs to.
        position: Index in the store's ordered collection.
        anchor_data: JSON-encoded list of anchors.
    """

    __tablename__ = "annotations"

    id: str = Field(primary_key=True)
    document_id: str = Field(index=True)
    position: int = Field(default=0)
    author_id: str = Field(default="")
    author_name: str = Field(default="")
    source_text: str = Field(sa_column=Column(Text, nullable=False))
    note: str = Field(
        default="", sa_column=Column(Text, nullable=False, default="")
    )
    note_visible: bool = Field(default=False)
    note_position_x: float = Field(default=0.0)
    note_position_y: float = Field(default=0.0)
    note_width: float = Field(default=280.0)
    note_height: float = Field(default=180.0)
    highlight_color: str = Field(default="#ffd700")
    highlight_type: str = Field(default="underline")
    anchor_data: str = Field(sa_column=Column(Text, nullable=False))
    created_at: int = Field(default=0, sa_column=_epoch_ms_column())
    updated_at: int = Field(default=0, sa_column=_epoch_ms_column())


def record_to_row(
    document_id: str, position: int, record: dict[str, Any]
) -> AnnotationRecord:
    """Flatten a camelCase annotation record into a table row."""
    note_position = record.get("notePosition") or {}
    note_size = record.get("noteSize") or {}
    return AnnotationRecord(
        id=record["id"],
        document_id=document_id,
        position=position,
        author_id=record.get("authorId", ""),
        author_name=record.get("authorName", ""),
        source_text=record["sourceText"],
        note=record.get("note", ""),
        note_visible=record.get("noteVisible", False),
        note_position_x=note_position.get("x", 0.0),
        note_position_y=note_position.get("y", 0.0),
        note_width=note_size.get("width", 280.0),
        note_height=note_size.get("height", 180.0),
        highlight_color=record.get("highlightColor", "#ffd700"),
        highlight_type=record.get("highlightType", "underline"),
        anchor_data=json.dumps(record["anchors"]),
        created_at=record.get("createdAt", 0),
        updated_at=record.get("updatedAt", 0),
    )


def row_to_record(row: AnnotationRecord) -> dict[str, Any]:
    """Rebuild the camelCase record from a row.

    Raises:
        CorruptPersistedDataError: If ``anchor_data`` is not valid JSON.
    """
    try:
        anchors = json.loads(row.anchor_data)
    except (TypeError, json.JSONDecodeError) as exc:
        msg = f"Annotation {row.id} has unreadable anchor data: {exc}"
        raise CorruptPersistedDataError(msg) from exc
    return {
        "id": row.id,
        "authorId": row.author_id,
        "authorName": row.author_name,
        "sourceText": row.source_text,
        "anchors": anchors,
        "note": row.note,
        "highlightColor": row.highlight_color,
        "highlightType": row.highlight_type,
        "createdAt": row.created_at,
        "updatedAt": row.updated_at,
        "noteVisible": row.note_visible,
        "notePosition": {"x": row.note_position_x, "y": row.note_position_y},
        "noteSize": {"width": row.note_width, "height": row.note_height},
    }


def _raw_row(row: AnnotationRecord) -> dict[str, Any]:
    return row.model_dump()


def _delete_document(document_id: str) -> Any:
    return delete(AnnotationRecord).where(
        AnnotationRecord.document_id == document_id  # type: ignore[arg-type]
    )


_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


class SqlStorage:
    """Annotation storage in a relational database.

    Args:
        url: Async SQLAlchemy URL, e.g. ``sqlite+aiosqlite:///annoti.db``.
        echo: Log SQL statements.
        backup_dir: Where quarantined rows are written as JSON.
    """

    def __init__(
        self, url: str, *, echo: bool = False, backup_dir: Path | None = None
    ) -> None:
        self.url = url
        self.echo = echo
        self.backup_dir = backup_dir or Path("annotation-backups")
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._init_lock = asyncio.Lock()

    async def init(self) -> None:
        """Create the engine and tables; idempotent."""
        async with self._init_lock:
            if self._engine is not None:
                return
            engine = create_async_engine(self.url, echo=self.echo)
            try:
                async with engine.begin() as conn:
                    await conn.run_sync(SQLModel.metadata.create_all)
            except SQLAlchemyError as exc:
                await engine.dispose()
                msg = f"Cannot initialise annotation database: {exc}"
                raise StorageIOError(msg) from exc
            self._engine = engine
            self._session_factory = async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False
            )
            logger.info("Annotation database ready")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        await self.init()
        assert self._session_factory is not None
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                msg = f"Annotation database error: {exc}"
                raise StorageIOError(msg) from exc

    async def _rows(
        self, session: AsyncSession, document_id: str
    ) -> list[AnnotationRecord]:
        result = await session.exec(
            select(AnnotationRecord)
            .where(AnnotationRecord.document_id == document_id)
            .order_by(AnnotationRecord.position)  # type: ignore[arg-type]
        )
        return list(result.all())

    async def load_annotations(
        self, document_id: str
    ) -> list[dict[str, Any]] | None:
        async with self._session() as session:
            rows = await self._rows(session, document_id)
        if not rows:
            return None
        return [row_to_record(row) for row in rows]

    async def save_annotations(
        self, document_id: str, records: list[dict[str, Any]]
    ) -> None:
        async with self._session() as session:
            await session.execute(_delete_document(document_id))
            await session.flush()
            for position, record in enumerate(records):
                session.add(record_to_row(document_id, position, record))
        logger.debug("Saved %d annotations for %s", len(records), document_id)

    async def quarantine(self, document_id: str) -> str | None:
        """Dump the raw rows to a timestamped JSON file, then drop them."""
        async with self._session() as session:
            rows = await self._rows(session, document_id)
            if not rows:
                return None
            raw = [_raw_row(row) for row in rows]
            name = _UNSAFE_FILENAME.sub("_", document_id).strip("_") or "document"
            backup = self.backup_dir / f"{name}.backup.{now_ms()}.json"
            try:
                await asyncio.to_thread(self._write_backup, backup, raw)
            except OSError as exc:
                msg = f"Cannot write backup {backup}: {exc}"
                raise StorageIOError(msg) from exc
            await session.execute(_delete_document(document_id))
        logger.warning(
            "Quarantined %d rows for %s -> %s", len(raw), document_id, backup
        )
        return str(backup)

    @staticmethod
    def _write_backup(path: Path, raw: list[dict[str, Any]]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(raw, indent=2, ensure_ascii=False)
        path.write_text(content, encoding="utf-8")
