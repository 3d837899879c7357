"""Standalone read-only HTML export of an annotated document.

The restored tree is serialised with its highlight markers in place and
each annotation's sticky note is laid out at its saved position. The
annotation records ride along as a JSON payload so the page can be
re-imported or inspected without the store.
"""

from __future__ import annotations

import html
import json
import logging
from typing import TYPE_CHECKING

from annoti.anchoring.markers import MARKER_CLASS

if TYPE_CHECKING:
    from collections.abc import Iterable

    from annoti.document.tree import DocumentTree
    from annoti.models import Annotation

logger = logging.getLogger(__name__)

PAYLOAD_ELEMENT_ID = "ann-payload"

_DOCUMENT_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: system-ui, sans-serif; line-height: 1.6; margin: 0; }}
.container {{ max-width: 900px; margin: 0 auto; padding: 20px; }}
.document-body {{ position: relative; }}
.{marker} {{
  background: color-mix(in srgb, var(--annoti-color) 30%, transparent);
}}
.{marker}--underline {{ border-bottom: 2px solid var(--annoti-color); }}
.{marker}--square {{ outline: 1px solid var(--annoti-color); }}
.sticky-note {{
  position: absolute; background: #fff9c4; color: #333;
  border: 1px solid #ddd; border-radius: 4px; z-index: 1000;
}}
.sticky-note[hidden] {{ display: none; }}
.note-header {{
  background: #ffd700; padding: 4px 8px; display: flex;
  justify-content: space-between; cursor: move;
}}
.note-author {{ font-weight: bold; font-size: 12px; }}
.note-close {{ background: none; border: none; cursor: pointer; }}
.note-content {{ padding: 10px; font-size: 14px; white-space: pre-wrap; }}
</style>
</head>
<body>
<div class="container">
<h1>{title}</h1>
<div class="document-body">{body}</div>
</div>
{notes}
<script type="application/json" id="{payload_id}">{payload}</script>
<script>
function closeNote(id) {{
  var note = document.querySelector('.sticky-note[data-anno-id="' + id + '"]');
  if (note) note.hidden = true;
}}
document.querySelectorAll('.{marker}').forEach(function (el) {{
  el.addEventListener('click', function () {{
    var id = el.dataset.groupId;
    var note = document.querySelector('.sticky-note[data-anno-id="' + id + '"]');
    if (note) {{ note.hidden = false; note.scrollIntoView({{block: 'center'}}); }}
  }});
}});
</script>
</body>
</html>
"""

_NOTE_TEMPLATE = """<div class="sticky-note" data-anno-id="{id}"
 style="{style}"{hidden}>
<div class="note-header">
<span class="note-author">{author}</span>
<button class="note-close" onclick="closeNote('{id}')">&times;</button>
</div>
<div class="note-content">{note}</div>
</div>"""


def _note_html(annotation: Annotation) -> str:
    position = annotation.note_position
    size = annotation.note_size
    style = (
        f"left: {position.x:.0f}px; top: {position.y:.0f}px; "
        f"width: {size.width:.0f}px; height: {size.height:.0f}px;"
    )
    return _NOTE_TEMPLATE.format(
        id=html.escape(annotation.id, quote=True),
        style=style,
        hidden="" if annotation.note_visible else " hidden",
        author=html.escape(annotation.author_name),
        note=html.escape(annotation.note),
    )


def _payload_json(annotations: list[Annotation]) -> str:
    """Annotation records as JSON with no raw ``<`` to end its ``<script>``."""
    text = json.dumps([a.to_record() for a in annotations], ensure_ascii=False)
    return text.replace("<", "\\u003c")


def render_readonly_html(
    tree: DocumentTree,
    annotations: Iterable[Annotation],
    *,
    title: str = "Annotated",
) -> str:
    """Build a standalone HTML page from a restored tree and its annotations.

    Args:
        tree: Tree with highlight markers already applied.
        annotations: Annotations whose sticky notes to lay out.
        title: Page title and heading.

    Returns:
        The complete HTML document.
    """
    items = list(annotations)
    notes = "\n".join(_note_html(annotation) for annotation in items)
    page = _DOCUMENT_TEMPLATE.format(
        title=html.escape(title),
        marker=MARKER_CLASS,
        body=tree.to_html(),
        notes=notes,
        payload_id=PAYLOAD_ELEMENT_ID,
        payload=_payload_json(items),
    )
    logger.debug("Rendered read-only HTML with %d annotations", len(items))
    return page
