"""Starter project written to a room that has no document yet."""
from __future__ import annotations

from nodecode.core.GraphPrimitives import GraphSnapshot, Node, Position
from nodecode.core.Types import NodeKind


def default_project() -> GraphSnapshot:
    return GraphSnapshot(
        nodes=(
            Node.create(
                "node-1", NodeKind.CODE,
                title="index.html",
                content='<h1>Hello World</h1>\n<link href="style.css" rel="stylesheet">\n<script src="app.js"></script>',
                position=Position(100, 100),
            ),
            Node.create(
                "node-2", NodeKind.CODE,
                title="style.css",
                content="body { background: #222; color: #fff; font-family: sans-serif; }",
                position=Position(100, 450),
            ),
            Node.create("node-3", NodeKind.PREVIEW, position=Position(600, 100)),
        ),
    )
