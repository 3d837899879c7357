"""Renderer adapters: turn HTML, Markdown or fixed-width text into a tree.

The HTML walk mirrors the character-index walk used for highlight
coordinates: script/style/noscript/template are dropped and whitespace-only
text between block tags is formatting, not content. Markdown goes through
the ``pandoc`` executable. Fixed-width text is wrapped by display units
(CJK = 1 unit, others = 0.5 by default) into one ``<p>`` per visual line.
"""

# Pattern: Functional Core (pure functions; pandoc is the only side effect)

from __future__ import annotations

import logging
import shutil
import subprocess
import unicodedata
from pathlib import Path
from typing import TYPE_CHECKING, Any

from selectolax.lexbor import LexborHTMLParser

from annoti.document.tree import DocumentTree, Element, Node, TextLeaf
from annoti.errors import RendererError

if TYPE_CHECKING:
    from annoti.config import RenderConfig

logger = logging.getLogger(__name__)

# Tags to strip entirely
_STRIP_TAGS = frozenset(("script", "style", "noscript", "template", "head"))

# Containers where whitespace-only text nodes are indentation between tags
_BLOCK_TAGS = frozenset(
    (
        "html",
        "body",
        "table",
        "tbody",
        "thead",
        "tfoot",
        "tr",
        "td",
        "th",
        "ul",
        "ol",
        "li",
        "dl",
        "dt",
        "dd",
        "div",
        "section",
        "article",
        "aside",
        "header",
        "footer",
        "nav",
        "main",
        "figure",
        "figcaption",
        "blockquote",
    )
)

# East Asian widths rendered as a full CJK cell
_WIDE = frozenset(("W", "F"))

# Zero-width BOM and C0 controls other than tab take no room on a line
_IGNORABLE = frozenset(chr(c) for c in (*range(0x00, 0x09), *range(0x0A, 0x20), 0xFEFF))

FIXED_TEXT_CLASS = "fixed-text"


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------


def _convert(node: Any) -> Node | None:
    tag = node.tag

    # selectolax tags text nodes "-text"
    if tag == "-text":
        text = node.text_content
        if not text:
            return None
        parent = node.parent
        if parent is not None and parent.tag in _BLOCK_TAGS and not text.strip():
            return None
        return TextLeaf(text=text)

    # Comments ("_comment") and other non-element nodes
    if tag in _STRIP_TAGS or tag.startswith(("-", "_", "!")):
        return None

    attrs = {name: value or "" for name, value in node.attributes.items()}
    el = Element(tag=tag, attrs=attrs)
    child = node.child
    while child is not None:
        converted = _convert(child)
        if converted is not None:
            el.append(converted)
        child = child.next
    return el


def tree_from_html(html: str) -> DocumentTree:
    """Parse HTML into a ``DocumentTree``; body children become root children."""
    tree = DocumentTree()
    if not html:
        return tree

    parsed = LexborHTMLParser(html)
    body = parsed.body
    source = body if body is not None else parsed.root
    if source is None:
        return tree

    child = source.child
    while child is not None:
        converted = _convert(child)
        if converted is not None:
            tree.root.append(converted)
        child = child.next

    logger.debug(
        "Built tree %s from %d chars of HTML", tree.render_id, len(html)
    )
    return tree


# ---------------------------------------------------------------------------
# Markdown (via pandoc)
# ---------------------------------------------------------------------------


def _pandoc_executable(pandoc_path: str = "") -> str:
    if pandoc_path:
        return pandoc_path
    found = shutil.which("pandoc")
    if found is None:
        msg = "pandoc not found on PATH (set RENDER__PANDOC_PATH)"
        raise RendererError(msg)
    return found


def markdown_to_html(markdown: str, pandoc_path: str = "") -> str:
    """Convert Markdown to an HTML fragment with pandoc.

    Raises:
        RendererError: If pandoc is missing or fails.
    """
    cmd = [_pandoc_executable(pandoc_path), "--from=gfm", "--to=html"]
    try:
        result = subprocess.run(
            cmd,
            input=markdown,
            capture_output=True,
            text=True,
            check=True,
            timeout=60,
        )
    except FileNotFoundError as exc:
        raise RendererError(f"pandoc not executable: {cmd[0]}") from exc
    except subprocess.CalledProcessError as exc:
        raise RendererError(f"pandoc failed: {exc.stderr.strip()}") from exc
    except subprocess.TimeoutExpired as exc:
        raise RendererError("pandoc timed out") from exc
    return result.stdout


def tree_from_markdown(markdown: str, pandoc_path: str = "") -> DocumentTree:
    return tree_from_html(markdown_to_html(markdown, pandoc_path))


# ---------------------------------------------------------------------------
# Fixed-width plain text
# ---------------------------------------------------------------------------


def char_units(char: str, cjk_width: float = 1.0, other_width: float = 0.5) -> float:
    """Display width of one character in line units."""
    if char in _IGNORABLE:
        return 0.0
    if unicodedata.east_asian_width(char) in _WIDE:
        return cjk_width
    return other_width


def wrap_fixed_width(
    text: str,
    line_width: float = 33.0,
    cjk_width: float = 1.0,
    other_width: float = 0.5,
    tab_size: int = 4,
) -> list[str]:
    """Break ``text`` into visual lines no wider than ``line_width`` units.

    Hard newlines are preserved; a character never splits across lines, and
    every line holds at least one character so over-wide glyphs still fit.
    """
    lines: list[str] = []
    for raw in text.expandtabs(tab_size).split("\n"):
        raw = raw.rstrip("\r")
        if not raw:
            lines.append("")
            continue
        current: list[str] = []
        width = 0.0
        for char in raw:
            units = char_units(char, cjk_width, other_width)
            if current and width + units > line_width:
                lines.append("".join(current))
                current, width = [], 0.0
            current.append(char)
            width += units
        lines.append("".join(current))
    return lines


def tree_from_fixed_text(text: str, config: RenderConfig | None = None) -> DocumentTree:
    """Render plain text as ``div.fixed-text`` holding one ``<p>`` per line.

    Empty lines become empty paragraphs so paragraph numbering follows the
    visual layout.
    """
    if config is None:
        lines = wrap_fixed_width(text)
    else:
        lines = wrap_fixed_width(
            text,
            line_width=config.line_width,
            cjk_width=config.cjk_char_width,
            other_width=config.non_cjk_char_width,
            tab_size=config.tab_size,
        )
    container = Element(tag="div", attrs={"class": FIXED_TEXT_CLASS})
    for line in lines:
        para = Element(tag="p")
        if line:
            para.append(TextLeaf(text=line))
        container.append(para)
    return DocumentTree([container])


# ---------------------------------------------------------------------------
# Dispatch by file type
# ---------------------------------------------------------------------------

_HTML_SUFFIXES = frozenset((".html", ".htm", ".xhtml"))
_MARKDOWN_SUFFIXES = frozenset((".md", ".markdown", ".mdown"))


def render_file(path: Path, config: RenderConfig | None = None) -> DocumentTree:
    """Render a document file according to its suffix.

    Raises:
        RendererError: If the file cannot be read or converted.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise RendererError(f"Cannot read {path}: {exc}") from exc

    suffix = path.suffix.lower()
    if suffix in _HTML_SUFFIXES:
        return tree_from_html(content)
    if suffix in _MARKDOWN_SUFFIXES:
        return tree_from_markdown(content, config.pandoc_path if config else "")
    return tree_from_fixed_text(content, config)
