"""
The closed set of graph actions.

One frozen dataclass per action. ``GraphStore.reduce`` keeps a handler per
class and checks at import time that every class listed in ``ACTION_TYPES``
has one.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, FrozenSet, Optional, Tuple, Union

from .GraphPrimitives import (
    ChatMessage,
    Connection,
    GraphSnapshot,
    LogEntry,
    Node,
    Position,
    PresenceRecord,
    Size,
)
from .Types import InteractionKind, NodeKind


@dataclass(frozen=True)
class CreateNode:
    node: Node


@dataclass(frozen=True)
class DeleteNode:
    node_id: str


@dataclass(frozen=True)
class MoveNode:
    node_id: str
    position: Position


@dataclass(frozen=True)
class ResizeNode:
    node_id: str
    size: Size


@dataclass(frozen=True)
class RetypeNode:
    node_id: str
    kind: NodeKind


@dataclass(frozen=True)
class EditContent:
    node_id: str
    content: str


@dataclass(frozen=True)
class EditTitle:
    node_id: str
    title: str


@dataclass(frozen=True)
class Connect:
    connection: Connection


@dataclass(frozen=True)
class Disconnect:
    connection_id: str


@dataclass(frozen=True)
class DisconnectPort:
    port_id: str


@dataclass(frozen=True)
class SetRunning:
    node_id: str
    is_running: bool


@dataclass(frozen=True)
class AddLog:
    node_id: str
    entry: LogEntry


@dataclass(frozen=True)
class ClearLogs:
    node_id: str


@dataclass(frozen=True)
class SetInteraction:
    node_id: str
    interaction: Optional[InteractionKind]


@dataclass(frozen=True)
class LoadSnapshot:
    snapshot: GraphSnapshot
    # Local-only ids that have not yet round-tripped through the store.
    keep_node_ids: FrozenSet[str] = frozenset()
    keep_connection_ids: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class SetSharedState:
    node_id: str
    state: Any


@dataclass(frozen=True)
class AppendMessage:
    node_id: str
    message: ChatMessage


@dataclass(frozen=True)
class UpdateLastMessage:
    node_id: str
    text: str


@dataclass(frozen=True)
class SetLoading:
    node_id: str
    is_loading: bool


@dataclass(frozen=True)
class SetContextNodes:
    node_id: str
    node_ids: Tuple[str, ...]


@dataclass(frozen=True)
class ToggleMinimize:
    node_id: str


@dataclass(frozen=True)
class UpdateCollaborators:
    collaborators: Tuple[PresenceRecord, ...]


@dataclass(frozen=True)
class PruneConnections:
    pass


Action = Union[
    CreateNode,
    DeleteNode,
    MoveNode,
    ResizeNode,
    RetypeNode,
    EditContent,
    EditTitle,
    Connect,
    Disconnect,
    DisconnectPort,
    SetRunning,
    AddLog,
    ClearLogs,
    SetInteraction,
    LoadSnapshot,
    SetSharedState,
    AppendMessage,
    UpdateLastMessage,
    SetLoading,
    SetContextNodes,
    ToggleMinimize,
    UpdateCollaborators,
    PruneConnections,
]

ACTION_TYPES: Tuple[type, ...] = Action.__args__

# Actions whose effect is part of the persisted snapshot. Anything else
# (logs, loading, interactions, presence) is process-local.
DIRTY_ACTIONS: FrozenSet[type] = frozenset({
    CreateNode,
    DeleteNode,
    MoveNode,
    ResizeNode,
    RetypeNode,
    EditContent,
    EditTitle,
    Connect,
    Disconnect,
    DisconnectPort,
    SetRunning,
    SetSharedState,
    AppendMessage,
    UpdateLastMessage,
    SetContextNodes,
    ToggleMinimize,
    PruneConnections,
})
