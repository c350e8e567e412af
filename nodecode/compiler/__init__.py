"""
NodeCode Preview Compiler
=========================
Bundles the CODE nodes wired into a preview into one self-contained HTML
document with the runtime-bridge bootstrap injected first.

Public API
----------
    from nodecode.compiler import compile_preview

    html = compile_preview(preview_id, state.nodes, state.connections)

``PreviewArtifacts`` keeps the last document per running preview and reports
only the ones that changed.
"""

from __future__ import annotations

from .artifacts import PreviewArtifacts
from .emitter import compile_preview
from .templates import PLACEHOLDER_DOCUMENT

__all__ = ["compile_preview", "PreviewArtifacts", "PLACEHOLDER_DOCUMENT"]
