"""
Interaction-aware snapshot merge.

A remote snapshot can land at any moment, including in the middle of a local
drag or text edit. Local interaction state, not message order, decides which
side wins for each node:

    DRAG  -> keep local position, take everything else from remote
    EDIT  -> keep local content + title, take everything else from remote
    none  -> take the remote node wholesale

The loading flag never travels over the wire, so it always stays local.
"""
from __future__ import annotations

from dataclasses import replace
from typing import FrozenSet

from nodecode.core.GraphPrimitives import GraphSnapshot, GraphState, Node
from nodecode.core.Types import InteractionKind


def merge_node(local: Node, remote: Node, interaction: "InteractionKind | None") -> Node:
    merged = remote
    if interaction == InteractionKind.DRAG:
        merged = replace(remote, position=local.position)
    elif interaction == InteractionKind.EDIT:
        merged = replace(remote, content=local.content, title=local.title)
    if merged.flags.is_loading != local.flags.is_loading:
        merged = merged.with_flags(is_loading=local.flags.is_loading)
    return merged


def merge_snapshot(
    state: GraphState,
    snapshot: GraphSnapshot,
    keep_node_ids: FrozenSet[str] = frozenset(),
    keep_connection_ids: FrozenSet[str] = frozenset(),
) -> GraphState:
    """Fold *snapshot* into *state*.

    ``keep_node_ids`` / ``keep_connection_ids`` name local entities that were
    created here and have not been seen in any remote snapshot yet. They
    survive the merge even though the remote side does not list them.
    """
    local_nodes = state.node_index()
    remote_ids = set()
    nodes = []
    for remote in snapshot.nodes:
        remote_ids.add(remote.id)
        local = local_nodes.get(remote.id)
        if local is None:
            nodes.append(remote)
        else:
            nodes.append(merge_node(local, remote, state.interactions.get(remote.id)))

    for local in state.nodes:
        if local.id not in remote_ids and local.id in keep_node_ids:
            nodes.append(local)

    remote_conn_ids = {c.id for c in snapshot.connections}
    connections = list(snapshot.connections)
    for conn in state.connections:
        if conn.id not in remote_conn_ids and conn.id in keep_connection_ids:
            connections.append(conn)

    surviving = {n.id for n in nodes}
    interactions = {
        node_id: kind for node_id, kind in state.interactions.items() if node_id in surviving
    }

    return replace(
        state,
        nodes=tuple(nodes),
        connections=tuple(connections),
        running_preview_ids=snapshot.running_preview_ids,
        interactions=interactions,
    )
