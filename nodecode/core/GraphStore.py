"""
GraphStore — the authoritative in-process graph state.

``reduce(state, action)`` is a pure function over the closed action set in
``Actions.py``. ``GraphStore`` wraps it with an explicit instance lifecycle:
construct with an initial state, ``dispatch`` actions, ``subscribe`` for
change notifications, ``close`` to drop listeners.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from nodecode.sync.merge import merge_snapshot

from . import Actions as A
from .GraphPrimitives import (
    MINIMIZED_HEIGHT,
    NODE_DEFAULTS,
    GraphState,
    Node,
    Size,
)
from .NodePort import can_connect, find_port

logger = logging.getLogger(__name__)

Listener = Callable[["A.Action", GraphState, GraphState], None]


# ── Helpers ───────────────────────────────────────────────────────────────────

def _map_node(state: GraphState, node_id: str, fn: Callable[[Node], Node]) -> GraphState:
    changed = False
    nodes = []
    for node in state.nodes:
        if node.id == node_id:
            node = fn(node)
            changed = True
        nodes.append(node)
    if not changed:
        return state
    return replace(state, nodes=tuple(nodes))


def connection_error(state: GraphState, conn) -> Optional[str]:
    """Why *conn* cannot be added to *state*, or None if it can."""
    for existing in state.connections:
        if existing.endpoints() == conn.endpoints():
            return "duplicate connection"

    source = state.get_node(conn.source_node_id)
    target = state.get_node(conn.target_node_id)
    if source is None or target is None:
        return "unknown endpoint node"

    source_port = find_port(source.id, source.kind, conn.source_port_id)
    target_port = find_port(target.id, target.kind, conn.target_port_id)
    if source_port is None or target_port is None:
        return "unknown endpoint port"
    if not can_connect(source_port, target_port, source.kind):
        return "incompatible ports"

    if target_port.single_fan_in and any(
        c.target_port_id == conn.target_port_id for c in state.connections
    ):
        return f"port {target_port.id} already has a connection"
    return None


def _minimize(node: Node) -> Node:
    if node.flags.is_minimized:
        restored = node.expanded_size or Size(
            NODE_DEFAULTS[node.kind]["width"], NODE_DEFAULTS[node.kind]["height"]
        )
        node = replace(node, size=restored, expanded_size=None)
        return node.with_flags(is_minimized=False)
    width = min(400, max(160, len(node.title) * 9 + 120))
    node = replace(node, expanded_size=node.size, size=Size(width, MINIMIZED_HEIGHT))
    return node.with_flags(is_minimized=True)


# ── Handlers (one per action class) ───────────────────────────────────────────

def _create_node(state: GraphState, action: A.CreateNode) -> GraphState:
    if state.get_node(action.node.id) is not None:
        return state
    return replace(state, nodes=state.nodes + (action.node,))


def _delete_node(state: GraphState, action: A.DeleteNode) -> GraphState:
    node_id = action.node_id
    if state.get_node(node_id) is None:
        return state
    logs = dict(state.logs)
    logs.pop(node_id, None)
    interactions = dict(state.interactions)
    interactions.pop(node_id, None)
    return replace(
        state,
        nodes=tuple(n for n in state.nodes if n.id != node_id),
        connections=tuple(c for c in state.connections if not c.touches(node_id)),
        running_preview_ids=tuple(i for i in state.running_preview_ids if i != node_id),
        logs=logs,
        interactions=interactions,
    )


def _move_node(state, action: A.MoveNode):
    return _map_node(state, action.node_id, lambda n: replace(n, position=action.position))


def _resize_node(state, action: A.ResizeNode):
    return _map_node(
        state, action.node_id,
        lambda n: replace(n, size=action.size, expanded_size=None).with_flags(is_minimized=False),
    )


def _retype_node(state, action: A.RetypeNode):
    # Connections survive a retype until PruneConnections.
    return _map_node(state, action.node_id, lambda n: replace(n, kind=action.kind))


def _edit_content(state, action: A.EditContent):
    return _map_node(state, action.node_id, lambda n: replace(n, content=action.content))


def _edit_title(state, action: A.EditTitle):
    return _map_node(state, action.node_id, lambda n: replace(n, title=action.title))


def _connect(state: GraphState, action: A.Connect) -> GraphState:
    reason = connection_error(state, action.connection)
    if reason is not None:
        logger.debug(f"Connect rejected ({reason}): {action.connection!r}")
        return state
    return replace(state, connections=state.connections + (action.connection,))


def _disconnect(state, action: A.Disconnect):
    kept = tuple(c for c in state.connections if c.id != action.connection_id)
    if len(kept) == len(state.connections):
        return state
    return replace(state, connections=kept)


def _disconnect_port(state, action: A.DisconnectPort):
    kept = tuple(
        c for c in state.connections
        if c.source_port_id != action.port_id and c.target_port_id != action.port_id
    )
    if len(kept) == len(state.connections):
        return state
    return replace(state, connections=kept)


def _set_running(state, action: A.SetRunning):
    running = tuple(i for i in state.running_preview_ids if i != action.node_id)
    if action.is_running:
        if state.get_node(action.node_id) is None:
            return state
        running = running + (action.node_id,)
    if running == state.running_preview_ids:
        return state
    return replace(state, running_preview_ids=running)


def _add_log(state, action: A.AddLog):
    if state.get_node(action.node_id) is None:
        return state
    logs = dict(state.logs)
    logs[action.node_id] = logs.get(action.node_id, ()) + (action.entry,)
    return replace(state, logs=logs)


def _clear_logs(state, action: A.ClearLogs):
    if state.get_node(action.node_id) is None:
        return state
    logs = dict(state.logs)
    logs[action.node_id] = ()
    return replace(state, logs=logs)


def _set_interaction(state, action: A.SetInteraction):
    interactions = dict(state.interactions)
    if action.interaction is None:
        if action.node_id not in interactions:
            return state
        del interactions[action.node_id]
    else:
        if state.get_node(action.node_id) is None:
            return state
        interactions[action.node_id] = action.interaction
    return replace(state, interactions=interactions)


def _load_snapshot(state, action: A.LoadSnapshot):
    return merge_snapshot(state, action.snapshot, action.keep_node_ids, action.keep_connection_ids)


def _set_shared_state(state, action: A.SetSharedState):
    return _map_node(state, action.node_id, lambda n: replace(n, shared_state=action.state))


def _append_message(state, action: A.AppendMessage):
    return _map_node(state, action.node_id, lambda n: replace(n, messages=n.messages + (action.message,)))


def _update_last_message(state, action: A.UpdateLastMessage):
    def update(node: Node) -> Node:
        if not node.messages:
            return node
        last = node.messages[-1]
        return replace(node, messages=node.messages[:-1] + (last._replace(text=action.text),))
    return _map_node(state, action.node_id, update)


def _set_loading(state, action: A.SetLoading):
    return _map_node(state, action.node_id, lambda n: n.with_flags(is_loading=action.is_loading))


def _set_context_nodes(state, action: A.SetContextNodes):
    return _map_node(state, action.node_id, lambda n: replace(n, context_node_ids=tuple(action.node_ids)))


def _toggle_minimize(state, action: A.ToggleMinimize):
    return _map_node(state, action.node_id, _minimize)


def _update_collaborators(state, action: A.UpdateCollaborators):
    return replace(state, collaborators=tuple(action.collaborators))


def _prune_connections(state, action: A.PruneConnections):
    nodes = state.node_index()

    def alive(conn) -> bool:
        source = nodes.get(conn.source_node_id)
        target = nodes.get(conn.target_node_id)
        if source is None or target is None:
            return False
        return (
            find_port(source.id, source.kind, conn.source_port_id) is not None
            and find_port(target.id, target.kind, conn.target_port_id) is not None
        )

    kept = tuple(c for c in state.connections if alive(c))
    if len(kept) == len(state.connections):
        return state
    logger.info(f"Pruned {len(state.connections) - len(kept)} dangling connection(s)")
    return replace(state, connections=kept)


_HANDLERS: Dict[type, Callable[[GraphState, "A.Action"], GraphState]] = {
    A.CreateNode: _create_node,
    A.DeleteNode: _delete_node,
    A.MoveNode: _move_node,
    A.ResizeNode: _resize_node,
    A.RetypeNode: _retype_node,
    A.EditContent: _edit_content,
    A.EditTitle: _edit_title,
    A.Connect: _connect,
    A.Disconnect: _disconnect,
    A.DisconnectPort: _disconnect_port,
    A.SetRunning: _set_running,
    A.AddLog: _add_log,
    A.ClearLogs: _clear_logs,
    A.SetInteraction: _set_interaction,
    A.LoadSnapshot: _load_snapshot,
    A.SetSharedState: _set_shared_state,
    A.AppendMessage: _append_message,
    A.UpdateLastMessage: _update_last_message,
    A.SetLoading: _set_loading,
    A.SetContextNodes: _set_context_nodes,
    A.ToggleMinimize: _toggle_minimize,
    A.UpdateCollaborators: _update_collaborators,
    A.PruneConnections: _prune_connections,
}


def _check_handlers(handlers) -> None:
    missing = set(A.ACTION_TYPES) - set(handlers)
    if missing:
        raise TypeError(f"GraphStore has no handler for {sorted(t.__name__ for t in missing)}")


_check_handlers(_HANDLERS)


def reduce(state: GraphState, action: "A.Action") -> GraphState:
    handler = _HANDLERS.get(type(action))
    if handler is None:
        raise TypeError(f"Unknown action {type(action).__name__}")
    return handler(state, action)


# ── Store ─────────────────────────────────────────────────────────────────────

class GraphStore:
    """Holds the current GraphState and serializes every mutation through reduce()."""

    def __init__(self, initial: Optional[GraphState] = None) -> None:
        self._state: GraphState = initial or GraphState()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> GraphState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener(action, previous, current)*; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: "A.Action") -> GraphState:
        previous = self._state
        self._state = reduce(previous, action)
        for listener in list(self._listeners):
            try:
                listener(action, previous, self._state)
            except Exception:
                logger.exception(f"GraphStore listener failed on {type(action).__name__}")
        return self._state

    def close(self) -> None:
        self._listeners.clear()
