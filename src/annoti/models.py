"""Pydantic models for anchors, annotations and export packages.

Persisted and exported JSON uses camelCase keys (``containerPath``,
``sourceText``...). Models accept either camelCase or snake_case on input
and serialise with ``to_record()`` / ``model_dump(by_alias=True)``.
"""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

HighlightType = Literal["underline", "square"]

DEFAULT_HIGHLIGHT_COLOR = "#ffd700"
DEFAULT_HIGHLIGHT_TYPE: HighlightType = "underline"
DEFAULT_NOTE_WIDTH = 280.0
DEFAULT_NOTE_HEIGHT = 180.0

PACKAGE_VERSION = "1.0"


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    def to_record(self) -> dict[str, Any]:
        """Serialise to the camelCase JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


class Anchor(_CamelModel):
    """One contiguous character run inside one text leaf.

    Attributes:
        container_path: Path of the element holding the leaf.
        leaf_ordinal: Index of the leaf among the container's text leaves.
        start_offset: First character (inclusive).
        end_offset: Last character (exclusive).
    """

    model_config = ConfigDict(frozen=True)

    container_path: str
    leaf_ordinal: int = Field(ge=0)
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)

    @model_validator(mode="after")
    def _ordered_offsets(self) -> Anchor:
        if self.start_offset > self.end_offset:
            msg = (
                f"startOffset {self.start_offset} exceeds "
                f"endOffset {self.end_offset}"
            )
            raise ValueError(msg)
        return self


class NotePosition(_CamelModel):
    x: float = 0.0
    y: float = 0.0


class NoteSize(_CamelModel):
    width: float = DEFAULT_NOTE_WIDTH
    height: float = DEFAULT_NOTE_HEIGHT


class Annotation(_CamelModel):
    """A highlight plus its note and sticky-note view state."""

    id: str
    author_id: str = ""
    author_name: str = ""
    source_text: str
    anchors: list[Anchor] = Field(min_length=1)
    note: str = ""
    highlight_color: str = DEFAULT_HIGHLIGHT_COLOR
    highlight_type: HighlightType = DEFAULT_HIGHLIGHT_TYPE
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    note_visible: bool = False
    note_position: NotePosition = Field(default_factory=NotePosition)
    note_size: NoteSize = Field(default_factory=NoteSize)


class SourceDocument(_CamelModel):
    """Identifies the document an export package was taken from."""

    name: str
    checksum: str


class ExportPackage(_CamelModel):
    """Batch export/import package."""

    version: str = PACKAGE_VERSION
    exported_at: int = Field(default_factory=now_ms)
    source_document: SourceDocument | None = None
    annotations: list[Annotation] = Field(default_factory=list)


class SingleAnnotationPackage(_CamelModel):
    """Single-annotation export shape; normalised to ExportPackage on import."""

    version: str
    exported_at: int = Field(default_factory=now_ms)
    source_document: SourceDocument | None = None
    annotation: Annotation
