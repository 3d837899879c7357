"""Shared pytest fixtures for annoti tests."""

from __future__ import annotations

import shutil
from typing import Any

import pytest

from annoti.config import Settings, StoreConfig, get_settings
from annoti.document.render import tree_from_html
from annoti.document.tree import DocumentTree
from annoti.errors import CorruptPersistedDataError

requires_pandoc = pytest.mark.skipif(
    shutil.which("pandoc") is None, reason="Pandoc not installed"
)

SAMPLE_HTML = (
    "<h1>Title</h1>"
    "<p>Hello world</p>"
    "<p>Second <b>bold</b> paragraph</p>"
    '<div class="note"><p>Inside a note</p></div>'
    '<section id="intro"><p>Intro text</p></section>'
)


class MemoryStorage:
    """In-memory storage backend that records every call.

    Set ``records`` to ``None`` for a document with no data, or set
    ``corrupt`` to make the next load raise.
    """

    def __init__(self, records: list[dict[str, Any]] | None = None) -> None:
        self.records = records
        self.corrupt = False
        self.fail_saves = False
        self.saves: list[tuple[str, list[dict[str, Any]]]] = []
        self.quarantined: list[str] = []

    async def load_annotations(self, document_id: str) -> list[dict[str, Any]] | None:
        if self.corrupt:
            msg = f"{document_id} is unreadable"
            raise CorruptPersistedDataError(msg)
        return None if self.records is None else list(self.records)

    async def save_annotations(
        self, document_id: str, records: list[dict[str, Any]]
    ) -> None:
        if self.fail_saves:
            msg = "disk full"
            raise OSError(msg)
        self.saves.append((document_id, records))
        self.records = records

    async def quarantine(self, document_id: str) -> str | None:
        self.quarantined.append(document_id)
        self.corrupt = False
        self.records = None
        return f"{document_id}.backup"


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Isolated settings with a short debounce."""
    return Settings(  # type: ignore[call-arg]
        _env_file=None, store=StoreConfig(debounce_seconds=0.01)
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def sample_tree() -> DocumentTree:
    return tree_from_html(SAMPLE_HTML)
