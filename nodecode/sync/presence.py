from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from nodecode.core.GraphPrimitives import GraphState, PresenceRecord, presence_from_dict, presence_to_dict
from nodecode.core.Types import InteractionKind

logger = logging.getLogger(__name__)

DEFAULT_PRESENCE_TTL_MS = 30_000


def _now_ms() -> int:
    return int(time.time() * 1000)


class PresenceTracker:
    """Filters peer presence records and builds this session's own record."""

    def __init__(
        self,
        session_id: str,
        color: str = "#3b82f6",
        ttl_ms: int = DEFAULT_PRESENCE_TTL_MS,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.session_id = session_id
        self.color = color
        self.ttl_ms = ttl_ms
        self._clock = clock or _now_ms

    def now(self) -> int:
        return self._clock()

    def visible(self, records: Iterable[Dict[str, Any]]) -> Tuple[PresenceRecord, ...]:
        """Peers other than ourselves that were active within the staleness window."""
        now = self._clock()
        peers = []
        for raw in records:
            try:
                record = presence_from_dict(raw)
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Ignoring malformed presence record: {raw!r}")
                continue
            if record.id == self.session_id:
                continue
            if now - record.last_active >= self.ttl_ms:
                continue
            peers.append(record)
        return tuple(peers)

    def own_record(self, state: GraphState, x: float, y: float) -> Dict[str, Any]:
        dragging_id = _first_with(state.interactions, InteractionKind.DRAG)
        editing_id = _first_with(state.interactions, InteractionKind.EDIT)
        dragging_node = state.get_node(dragging_id) if dragging_id else None
        record = PresenceRecord(
            id=self.session_id,
            x=x,
            y=y,
            color=self.color,
            last_active=self._clock(),
            dragging_node_id=dragging_id,
            dragging_position=dragging_node.position if dragging_node else None,
            editing_node_id=editing_id,
        )
        data = presence_to_dict(record)
        # merge-writes must clear fields from an earlier tick
        data.setdefault("draggingNodeId", None)
        data.setdefault("draggingPosition", None)
        data.setdefault("editingNodeId", None)
        return data


def _first_with(interactions: Dict[str, InteractionKind], kind: InteractionKind) -> Optional[str]:
    for node_id, value in interactions.items():
        if value == kind:
            return node_id
    return None
