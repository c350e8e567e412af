"""
RuntimeBridge — host side of the preview sandbox protocol.

Sandbox → host
    log / warn / error / info   appended to the node's log list, in arrival order
    IFRAME_READY                replay the node's shared state as STATE_UPDATE
    BROADCAST_STATE             store the payload as the node's shared state

Host → sandbox
    STATE_UPDATE                sent through SandboxChannel whenever a running
                                preview's shared state differs from what was
                                last sent to that node
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from nodecode.compiler.templates import BRIDGE_SOURCE
from nodecode.core import Actions as A
from nodecode.core.GraphPrimitives import GraphState, LogEntry
from nodecode.core.GraphStore import GraphStore
from nodecode.core.Types import LogType

from .bridge_types import LOG_KINDS, HostMessage, HostMessageKind, SandboxEnvelope, SandboxMessageKind
from .channel import SandboxChannel

logger = logging.getLogger(__name__)

_UNSENT = object()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _same_json(a: Any, b: Any) -> bool:
    """Deep equality as JSON sees it, so True and 1 differ."""
    try:
        return json.dumps(a, sort_keys=True) == json.dumps(b, sort_keys=True)
    except (TypeError, ValueError):
        return a == b


class RuntimeBridge:
    def __init__(
        self,
        store: GraphStore,
        channel: Optional[SandboxChannel] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.store = store
        self.channel = channel or SandboxChannel()
        self._clock = clock or _now_ms
        self._last_sent: Dict[str, Any] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_store_change)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def forget(self, node_id: str) -> None:
        """Drop per-node bookkeeping, e.g. when a preview stops running."""
        self._last_sent.pop(node_id, None)
        self.channel.close(node_id)

    # ------------------------------------------------------------------
    # Host → sandbox
    # ------------------------------------------------------------------

    def _push_state(self, node_id: str, payload: Any) -> None:
        message: HostMessage = {
            "type": HostMessageKind.STATE_UPDATE.value,
            "nodeId": node_id,
            "payload": payload,
        }
        self._last_sent[node_id] = payload
        self.channel.send(node_id, message)

    def sync_shared_state(self, state: Optional[GraphState] = None) -> None:
        """Push STATE_UPDATE to every running preview whose shared state moved."""
        state = state or self.store.state
        for preview_id in state.running_preview_ids:
            node = state.get_node(preview_id)
            if node is None:
                continue
            last = self._last_sent.get(preview_id, _UNSENT)
            if last is _UNSENT:
                if node.shared_state is None:
                    continue
            elif _same_json(last, node.shared_state):
                continue
            self._push_state(preview_id, node.shared_state)

    def _on_store_change(self, action, previous: GraphState, current: GraphState) -> None:
        stopped = set(previous.running_preview_ids) - set(current.running_preview_ids)
        for node_id in stopped:
            self.forget(node_id)
        self.sync_shared_state(current)

    # ------------------------------------------------------------------
    # Sandbox → host
    # ------------------------------------------------------------------

    def _error_log(self, node_id: str, message: str) -> None:
        self.store.dispatch(A.AddLog(node_id, LogEntry(LogType.ERROR, message, self._clock())))

    def handle_message(self, raw: Any) -> bool:
        """Apply one envelope from a sandbox. Returns False if it was dropped."""
        if not isinstance(raw, dict) or raw.get("source") != BRIDGE_SOURCE:
            logger.debug(f"Ignoring message from foreign source: {raw!r}")
            return False

        try:
            envelope = SandboxEnvelope.model_validate(raw)
        except ValidationError as exc:
            node_id = raw.get("nodeId")
            if isinstance(node_id, str) and node_id:
                self._error_log(node_id, f"Malformed bridge message: {exc.errors()[0]['msg']}")
            else:
                logger.debug(f"Dropping malformed bridge message without node id: {raw!r}")
            return False

        node_id = envelope.nodeId

        if envelope.type in LOG_KINDS:
            entry = LogEntry(
                LogType(envelope.type.value),
                envelope.message if envelope.message is not None else "",
                envelope.timestamp if envelope.timestamp is not None else self._clock(),
            )
            self.store.dispatch(A.AddLog(node_id, entry))
            return True

        if envelope.type == SandboxMessageKind.IFRAME_READY:
            node = self.store.state.get_node(node_id)
            if node is not None and node.shared_state is not None:
                self._push_state(node_id, node.shared_state)
            return True

        if envelope.type == SandboxMessageKind.BROADCAST_STATE:
            try:
                json.dumps(envelope.payload)
            except (TypeError, ValueError) as exc:
                self._error_log(node_id, f"Shared state is not serializable: {exc}")
                return False
            self._last_sent[node_id] = envelope.payload
            self.store.dispatch(A.SetSharedState(node_id, envelope.payload))
            return True

        return False
