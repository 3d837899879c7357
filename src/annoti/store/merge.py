"""Import merge and export packaging.

Imported annotations are de-duplicated against the annotations already in
the store by exact ``sourceText`` equality. Duplicates inside one incoming
package are not collapsed against each other.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pydantic import ValidationError

from annoti.errors import UnsupportedPackageError
from annoti.models import (
    PACKAGE_VERSION,
    Annotation,
    ExportPackage,
    SingleAnnotationPackage,
    SourceDocument,
    now_ms,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    """Outcome of merging an incoming batch.

    Attributes:
        accepted: New annotations with fresh ids, in incoming order.
        duplicate_count: Incoming entries dropped as duplicates.
    """

    accepted: list[Annotation] = field(default_factory=list)
    duplicate_count: int = 0


def merge(
    incoming: Iterable[Annotation], existing: Iterable[Annotation]
) -> MergeResult:
    """Select the incoming annotations whose text is not already present.

    Accepted copies get a new id and fresh timestamps; anchors, note and
    view state pass through unchanged.
    """
    known = {annotation.source_text for annotation in existing}
    result = MergeResult()
    for annotation in incoming:
        if annotation.source_text in known:
            result.duplicate_count += 1
            continue
        stamp = now_ms()
        result.accepted.append(
            annotation.model_copy(
                update={
                    "id": str(uuid.uuid4()),
                    "created_at": stamp,
                    "updated_at": stamp,
                },
                deep=True,
            )
        )
    logger.debug(
        "Merge accepted %d, skipped %d duplicates",
        len(result.accepted),
        result.duplicate_count,
    )
    return result


def compute_checksum(content: str | bytes) -> str:
    """SHA-256 hex digest of document content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def build_package(
    annotations: Iterable[Annotation],
    source_document: SourceDocument | None = None,
) -> ExportPackage:
    return ExportPackage(
        version=PACKAGE_VERSION,
        source_document=source_document,
        annotations=list(annotations),
    )


def parse_package(json_text: str) -> ExportPackage:
    """Parse an export file in either the batch or single-annotation shape.

    Raises:
        UnsupportedPackageError: Unreadable JSON, unknown version or shape.
    """
    try:
        raw = json.loads(json_text)
    except json.JSONDecodeError as exc:
        msg = f"Import file is not valid JSON: {exc}"
        raise UnsupportedPackageError(msg) from exc
    if not isinstance(raw, dict):
        msg = "Import file must contain a JSON object"
        raise UnsupportedPackageError(msg)

    version = raw.get("version")
    if version != PACKAGE_VERSION:
        msg = f"Unsupported package version: {version!r}"
        raise UnsupportedPackageError(msg)

    try:
        if "annotation" in raw:
            single = SingleAnnotationPackage.model_validate(raw)
            return ExportPackage(
                version=single.version,
                exported_at=single.exported_at,
                source_document=single.source_document,
                annotations=[single.annotation],
            )
        if "annotations" in raw:
            return ExportPackage.model_validate(raw)
    except ValidationError as exc:
        msg = f"Import package is malformed: {exc.error_count()} errors"
        raise UnsupportedPackageError(msg) from exc

    msg = "Import package has neither 'annotation' nor 'annotations'"
    raise UnsupportedPackageError(msg)
