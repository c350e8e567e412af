"""
PreviewArtifacts — compiled documents for running previews, with change detection.

``refresh(state)`` recompiles every running preview and returns only the
artifacts whose text differs from the previous refresh, so callers push a
new document to a sandbox only when it would actually change.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

from nodecode.core.GraphPrimitives import GraphState

from .emitter import compile_preview

logger = logging.getLogger(__name__)


class PreviewArtifacts:
    def __init__(self) -> None:
        self._documents: Dict[str, str] = {}

    def get(self, preview_id: str) -> Optional[str]:
        return self._documents.get(preview_id)

    def refresh(self, state: GraphState) -> Dict[str, str]:
        running = set(state.running_preview_ids)
        for stale in [pid for pid in self._documents if pid not in running]:
            del self._documents[stale]

        changed: Dict[str, str] = {}
        for preview_id in state.running_preview_ids:
            document = compile_preview(preview_id, state.nodes, state.connections)
            if self._documents.get(preview_id) != document:
                self._documents[preview_id] = document
                changed[preview_id] = document

        if changed:
            logger.debug(f"Recompiled previews: {sorted(changed)}")
        return changed

    def forget(self, preview_id: str) -> None:
        self._documents.pop(preview_id, None)
