"""Command-line access to a document's annotations.

Usage:
    annoti show paper.md                      # list annotations and restore status
    annoti export paper.md -o notes.json      # write an export package
    annoti export paper.md --html -o out.html # read-only annotated HTML page
    annoti import paper.md notes.json         # merge a package into the store
    annoti annotate paper.md 120 145 --note "check this"
    annoti migrate ./papers --dry-run         # move .ann sidecars into SQL
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from annoti import setup_logging
from annoti.config import Settings, get_settings
from annoti.errors import AnnotiError
from annoti.html_export import render_readonly_html
from annoti.session import DocumentSession
from annoti.store.merge import build_package, parse_package
from annoti.store.migrate import migrate_sidecars
from annoti.store.sql import SqlStorage
from annoti.store.storage import SidecarFileStorage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from annoti.anchoring.restore import RestoreReport
    from annoti.store.storage import AnnotationStorage

console = Console()


def make_storage(settings: Settings) -> AnnotationStorage:
    """Build the storage backend named by ``STORE__BACKEND``."""
    if settings.store.backend == "sql":
        return SqlStorage(settings.database.url, echo=settings.database.echo)
    return SidecarFileStorage(settings.store.sidecar_suffix)


def _warn(message: str) -> None:
    console.print(f"[yellow]Warning:[/] {message}")


def _status_of(report: RestoreReport | None, annotation_id: str) -> str:
    result = report.get(annotation_id) if report else None
    if result is None:
        return "-"
    return result.status.value


@asynccontextmanager
async def _opened(path: Path, settings: Settings) -> AsyncIterator[DocumentSession]:
    storage = make_storage(settings)
    session = await DocumentSession.open(path, storage, settings, on_warning=_warn)
    try:
        yield session
    finally:
        await session.close()
        if isinstance(storage, SqlStorage):
            await storage.close()


async def _show(path: Path, settings: Settings) -> None:
    async with _opened(path, settings) as session:
        annotations = session.annotations
        console.print(f"[bold]{path.name}[/]: {len(annotations)} annotation(s)")
        if not annotations:
            return
        table = Table(show_header=True, header_style="bold")
        table.add_column("ID", style="dim")
        table.add_column("Text")
        table.add_column("Note")
        table.add_column("Fragments", justify="right")
        table.add_column("Status")
        for annotation in annotations:
            table.add_row(
                annotation.id[:8],
                annotation.source_text,
                annotation.note,
                str(len(annotation.anchors)),
                _status_of(session.last_report, annotation.id),
            )
        console.print(table)


async def _export(
    path: Path, output: Path | None, settings: Settings, *, as_html: bool = False
) -> None:
    async with _opened(path, settings) as session:
        if as_html:
            _write_html(session, output)
            return
        package = build_package(session.annotations, session.source_document())
        text = package.model_dump_json(by_alias=True, indent=2)
        if output is None:
            console.print_json(text)
        else:
            output.write_text(text, encoding="utf-8")
            console.print(
                f"Exported [bold]{len(package.annotations)}[/] annotation(s) "
                f"to {output}"
            )


def _write_html(session: DocumentSession, output: Path | None) -> None:
    page = render_readonly_html(
        session.tree, session.annotations, title=Path(session.document_id).name
    )
    if output is None:
        console.out(page, highlight=False)
        return
    output.write_text(page, encoding="utf-8")
    console.print(
        f"Exported [bold]{len(session.annotations)}[/] annotation(s) "
        f"as HTML to {output}"
    )


async def _import(path: Path, package_path: Path, settings: Settings) -> None:
    package = parse_package(package_path.read_text(encoding="utf-8"))
    async with _opened(path, settings) as session:
        source = package.source_document
        if source is not None:
            current = session.source_document()
            if current.checksum != source.checksum:
                _warn(
                    f"Package was exported from {source.name!r} with different "
                    "content; some highlights may not restore"
                )
        result = session.merge(package.annotations)
        console.print(
            f"Imported [bold]{len(result.accepted)}[/] annotation(s), "
            f"skipped {result.duplicate_count} duplicate(s)"
        )


async def _annotate(
    path: Path, start: int, end: int, note: str, settings: Settings
) -> None:
    async with _opened(path, settings) as session:
        annotation = session.create(session.tree.select(start, end))
        if annotation is None:
            console.print("[red]Error:[/] selection contains no text")
            sys.exit(1)
        if note:
            session.update(annotation.id, note=note)
        console.print(
            f"Created [bold]{annotation.id}[/] over {annotation.source_text!r} "
            f"({len(annotation.anchors)} fragment(s))"
        )


async def _migrate(base_dir: Path, settings: Settings, *, dry_run: bool) -> None:
    target = SqlStorage(settings.database.url, echo=settings.database.echo)
    try:
        report = await migrate_sidecars(
            base_dir,
            target,
            suffix=settings.store.sidecar_suffix,
            dry_run=dry_run,
        )
    finally:
        await target.close()

    for error in report.errors:
        console.print(f"  [red]Error[/] {error}")
    mode = "[yellow]DRY RUN[/] " if dry_run else ""
    console.print(f"{mode}Migration complete:")
    console.print(f"  Files:        {report.files}")
    console.print(f"  Annotations:  {report.migrated}")
    console.print(f"  Duplicates:   {report.duplicates}")
    console.print(f"  Errors:       {len(report.errors)}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="annoti",
        description="Inspect, export, import and migrate document annotations.",
    )
    parser.add_argument(
        "--backend",
        choices=("sidecar", "sql"),
        help="Override STORE__BACKEND for this run.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="List annotations and how they restore.")
    show.add_argument("document", type=Path)

    export = sub.add_parser("export", help="Write an export package.")
    export.add_argument("document", type=Path)
    export.add_argument(
        "-o", "--output", type=Path, help="Output file (default stdout)."
    )
    export.add_argument(
        "--html",
        action="store_true",
        help="Write a read-only HTML page with highlights and sticky notes.",
    )

    imp = sub.add_parser("import", help="Merge an export package into the store.")
    imp.add_argument("document", type=Path)
    imp.add_argument("package", type=Path)

    annotate = sub.add_parser(
        "annotate", help="Highlight a character range of the rendered text."
    )
    annotate.add_argument("document", type=Path)
    annotate.add_argument("start", type=int)
    annotate.add_argument("end", type=int)
    annotate.add_argument("--note", default="")

    migrate = sub.add_parser(
        "migrate", help="Move sidecar files in a directory into the SQL store."
    )
    migrate.add_argument("directory", type=Path)
    migrate.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be migrated without writing anything.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for annotation inspection and exchange."""
    args = _build_parser().parse_args(argv)

    settings = get_settings()
    if args.backend:
        settings = settings.model_copy(
            update={
                "store": settings.store.model_copy(update={"backend": args.backend})
            }
        )
    setup_logging(settings.app.log_dir)

    if args.command == "migrate":
        if not args.directory.is_dir():
            console.print(f"[red]Error:[/] {args.directory} is not a directory")
            sys.exit(1)
    elif not args.document.is_file():
        console.print(f"[red]Error:[/] {args.document} is not a file")
        sys.exit(1)

    try:
        if args.command == "show":
            asyncio.run(_show(args.document, settings))
        elif args.command == "export":
            asyncio.run(
                _export(args.document, args.output, settings, as_html=args.html)
            )
        elif args.command == "import":
            asyncio.run(_import(args.document, args.package, settings))
        elif args.command == "annotate":
            asyncio.run(
                _annotate(args.document, args.start, args.end, args.note, settings)
            )
        elif args.command == "migrate":
            asyncio.run(_migrate(args.directory, settings, dry_run=args.dry_run))
    except (AnnotiError, ValueError, OSError) as exc:
        console.print(f"[red]Error:[/] {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
