"""
NodeCode Preview Compiler — HTML Emitter
========================================
Turns the subgraph upstream of one PREVIEW node into a single HTML document.

    preview.artifact  <-  root CODE node
    root.style        <-  CSS files
    root.script       <-  JS files
    root.imports      <-  anything, classified by title extension

Bundled sources are walked the same way through their own inputs, so
util.js -> app.js(script) -> index.html carries util.js along and places it
before app.js. Fragments keep connection insertion order and every source
node is used at most once, which also ends cycles. The output is a pure
function of (preview id, nodes, connections).
"""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Sequence, Set

from nodecode.core.GraphPrimitives import Connection, Node
from nodecode.core.GraphTraversal import connected_source, incoming_connections
from nodecode.core.NodePort import SCRIPT_EXTENSIONS, STYLE_EXTENSIONS, port_label

from .templates import (
    PLACEHOLDER_DOCUMENT,
    ROOT_MOUNT_MARKUP,
    bootstrap_script,
    escape_block,
    wrap_script,
)

logger = logging.getLogger(__name__)


def _is_style(node: Node) -> bool:
    return node.title.lower().endswith(STYLE_EXTENSIONS)


def _is_script(node: Node) -> bool:
    return node.title.lower().endswith(SCRIPT_EXTENSIONS)


# ── Fragment collection ───────────────────────────────────────────────────────

class _Bundle:
    def __init__(self) -> None:
        self.css: List[str] = []
        self.js: List[str] = []
        self.titles: List[str] = []

    def add_css(self, node: Node) -> None:
        self.css.append(escape_block(node.content))
        self.titles.append(node.title)

    def add_js(self, node: Node) -> None:
        self.js.append(wrap_script(escape_block(node.content)))
        self.titles.append(node.title)


def _collect(root: Node, nodes: Sequence[Node], connections: Sequence[Connection]) -> _Bundle:
    by_id = {n.id: n for n in nodes}
    used: Set[str] = {root.id}
    bundle = _Bundle()

    def adder(label: str, source: Node) -> Optional[Callable[[Node], None]]:
        if "style" in label:
            return bundle.add_css
        if "script" in label:
            return bundle.add_js
        if "imports" in label:
            if _is_style(source):
                return bundle.add_css
            if _is_script(source):
                return bundle.add_js
            logger.debug(f"Skipping import {source.title!r}: unknown file type")
        return None

    def visit(target: Node) -> None:
        # Depth-first: a source's own inputs land before the source itself.
        for conn in incoming_connections(target.id, connections):
            source = by_id.get(conn.source_node_id)
            if source is None or source.id in used:
                continue
            add = adder(port_label(target.id, conn.target_port_id).lower(), source)
            if add is None:
                continue
            used.add(source.id)
            visit(source)
            add(source)

    visit(root)
    return bundle


# ── Markup ────────────────────────────────────────────────────────────────────

def _strip_bundled_references(markup: str, titles: Sequence[str]) -> str:
    for title in titles:
        ref = r"""["']?(?:\./|/)?""" + re.escape(title) + r"""["']?"""
        markup = re.sub(
            r"<link\b[^>]*\bhref=" + ref + r"[^>]*>", "", markup, flags=re.IGNORECASE,
        )
        markup = re.sub(
            r"<script\b[^>]*\bsrc=" + ref + r"[^>]*>\s*</script\s*>", "", markup, flags=re.IGNORECASE,
        )
    return markup


def _assemble(preview_id: str, markup: str, css: List[str], js: List[str]) -> str:
    lines = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '<meta charset="utf-8">',
        '<meta name="viewport" content="width=device-width, initial-scale=1.0">',
        "<script>",
        bootstrap_script(preview_id),
        "</script>",
        "<style>",
        "\n".join(css),
        "</style>",
        "</head>",
        "<body>",
        markup,
        "<script>",
        "\n".join(js),
        "</script>",
        "</body>",
        "</html>",
    ]
    return "\n".join(lines) + "\n"


# ── Public entry point ────────────────────────────────────────────────────────

def compile_preview(preview_id: str, nodes: Sequence[Node], connections: Sequence[Connection]) -> str:
    root = connected_source(preview_id, "artifact", nodes, connections)
    if root is None:
        return PLACEHOLDER_DOCUMENT

    bundle = _collect(root, nodes, connections)
    css = list(bundle.css)
    js = list(bundle.js)

    if _is_script(root):
        markup = ROOT_MOUNT_MARKUP
        js.append(wrap_script(escape_block(root.content)))
    elif _is_style(root):
        markup = ""
        css.append(escape_block(root.content))
    else:
        markup = _strip_bundled_references(root.content, bundle.titles)

    return _assemble(preview_id, markup, css, js)
