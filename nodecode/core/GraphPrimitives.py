from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, NamedTuple, Optional, Tuple

from .Types import InteractionKind, LogType, MessageRole, NodeKind


class Position(NamedTuple):
    x: float
    y: float


class Size(NamedTuple):
    width: float
    height: float


class ChatMessage(NamedTuple):
    role: MessageRole
    text: str


class LogEntry(NamedTuple):
    type: LogType
    message: str
    timestamp: int


# Edges are plain immutable records; identity is the id, uniqueness is the
# four endpoint fields (enforced by the reducer, not here).
class Connection(NamedTuple):
    id: str
    source_node_id: str
    source_port_id: str
    target_node_id: str
    target_port_id: str

    def endpoints(self) -> Tuple[str, str, str, str]:
        return (self.source_node_id, self.source_port_id, self.target_node_id, self.target_port_id)

    def touches(self, node_id: str) -> bool:
        return self.source_node_id == node_id or self.target_node_id == node_id

    def __repr__(self):
        return f"Connection({self.source_port_id} -> {self.target_port_id})"


# Default geometry and title per kind, used when nodes are created without
# explicit values (agent-created files, REST create).
NODE_DEFAULTS: Dict[NodeKind, Dict[str, Any]] = {
    NodeKind.CODE:     {"width": 450, "height": 300, "title": "script.js",      "content": "// Write HTML, CSS, or JS here"},
    NodeKind.PREVIEW:  {"width": 500, "height": 400, "title": "Preview Output", "content": ""},
    NodeKind.TERMINAL: {"width": 400, "height": 200, "title": "Terminal",       "content": ""},
    NodeKind.AGENT:    {"width": 350, "height": 450, "title": "AI Assistant",   "content": ""},
}

MINIMIZED_HEIGHT = 40


@dataclass(frozen=True)
class RuntimeFlags:
    is_loading: bool = False
    is_minimized: bool = False


@dataclass(frozen=True)
class Node:
    id: str
    kind: NodeKind
    title: str
    content: str = ""
    position: Position = Position(0, 0)
    size: Size = Size(450, 300)
    flags: RuntimeFlags = RuntimeFlags()
    expanded_size: Optional[Size] = None
    shared_state: Any = None
    context_node_ids: Tuple[str, ...] = ()
    messages: Tuple[ChatMessage, ...] = ()

    @classmethod
    def create(cls, node_id: str, kind: NodeKind, *,
               title: Optional[str] = None,
               content: Optional[str] = None,
               position: Optional[Position] = None,
               size: Optional[Size] = None) -> "Node":
        """Build a node filled in from NODE_DEFAULTS for its kind."""
        defaults = NODE_DEFAULTS[kind]
        return cls(
            id=node_id,
            kind=kind,
            title=defaults["title"] if title is None else title,
            content=defaults["content"] if content is None else content,
            position=position or Position(0, 0),
            size=size or Size(defaults["width"], defaults["height"]),
        )

    def with_flags(self, **changes: Any) -> "Node":
        return replace(self, flags=replace(self.flags, **changes))


@dataclass(frozen=True)
class PresenceRecord:
    id: str
    x: float = 0
    y: float = 0
    color: str = "#ffffff"
    last_active: int = 0
    dragging_node_id: Optional[str] = None
    dragging_position: Optional[Position] = None
    editing_node_id: Optional[str] = None


@dataclass(frozen=True)
class GraphSnapshot:
    nodes: Tuple[Node, ...] = ()
    connections: Tuple[Connection, ...] = ()
    running_preview_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class GraphState:
    nodes: Tuple[Node, ...] = ()
    connections: Tuple[Connection, ...] = ()
    running_preview_ids: Tuple[str, ...] = ()
    logs: Dict[str, Tuple[LogEntry, ...]] = field(default_factory=dict)
    interactions: Dict[str, InteractionKind] = field(default_factory=dict)
    collaborators: Tuple[PresenceRecord, ...] = ()

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_index(self) -> Dict[str, Node]:
        return {node.id: node for node in self.nodes}

    def logs_for(self, node_id: str) -> Tuple[LogEntry, ...]:
        return self.logs.get(node_id, ())

    def to_snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(
            nodes=self.nodes,
            connections=self.connections,
            running_preview_ids=self.running_preview_ids,
        )


# ── Wire shapes ───────────────────────────────────────────────────────────────
# Snapshot JSON uses camelCase keys. Transient fields (loading flag, logs,
# interaction markers, collaborators) never appear on the wire.

def node_to_dict(node: Node) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": node.id,
        "kind": node.kind.value,
        "title": node.title,
        "content": node.content,
        "position": {"x": node.position.x, "y": node.position.y},
        "size": {"width": node.size.width, "height": node.size.height},
        "isMinimized": node.flags.is_minimized,
    }
    if node.expanded_size is not None:
        data["expandedSize"] = {"width": node.expanded_size.width, "height": node.expanded_size.height}
    if node.shared_state is not None:
        data["sharedState"] = node.shared_state
    if node.context_node_ids:
        data["contextNodeIds"] = list(node.context_node_ids)
    if node.messages:
        data["messages"] = [{"role": m.role.value, "text": m.text} for m in node.messages]
    return data


def node_from_dict(data: Dict[str, Any]) -> Node:
    kind = NodeKind(data["kind"])
    defaults = NODE_DEFAULTS[kind]
    pos = data.get("position") or {}
    size = data.get("size") or {}
    expanded = data.get("expandedSize")
    return Node(
        id=data["id"],
        kind=kind,
        title=data.get("title", defaults["title"]),
        content=data.get("content", ""),
        position=Position(pos.get("x", 0), pos.get("y", 0)),
        size=Size(size.get("width", defaults["width"]), size.get("height", defaults["height"])),
        flags=RuntimeFlags(is_minimized=bool(data.get("isMinimized", False))),
        expanded_size=Size(expanded["width"], expanded["height"]) if expanded else None,
        shared_state=data.get("sharedState"),
        context_node_ids=tuple(data.get("contextNodeIds") or ()),
        messages=tuple(
            ChatMessage(MessageRole(m["role"]), m.get("text", ""))
            for m in data.get("messages") or ()
        ),
    )


def connection_to_dict(conn: Connection) -> Dict[str, str]:
    return {
        "id": conn.id,
        "sourceNodeId": conn.source_node_id,
        "sourcePortId": conn.source_port_id,
        "targetNodeId": conn.target_node_id,
        "targetPortId": conn.target_port_id,
    }


def connection_from_dict(data: Dict[str, Any]) -> Connection:
    return Connection(
        id=data["id"],
        source_node_id=data["sourceNodeId"],
        source_port_id=data["sourcePortId"],
        target_node_id=data["targetNodeId"],
        target_port_id=data["targetPortId"],
    )


def snapshot_to_dict(snapshot: GraphSnapshot) -> Dict[str, Any]:
    return {
        "nodes": [node_to_dict(n) for n in snapshot.nodes],
        "connections": [connection_to_dict(c) for c in snapshot.connections],
        "runningPreviewIds": list(snapshot.running_preview_ids),
    }


def snapshot_from_dict(data: Dict[str, Any]) -> GraphSnapshot:
    return GraphSnapshot(
        nodes=tuple(node_from_dict(n) for n in data.get("nodes") or ()),
        connections=tuple(connection_from_dict(c) for c in data.get("connections") or ()),
        running_preview_ids=tuple(data.get("runningPreviewIds") or ()),
    )


def presence_to_dict(record: PresenceRecord) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": record.id,
        "x": record.x,
        "y": record.y,
        "color": record.color,
        "lastActive": record.last_active,
    }
    if record.dragging_node_id is not None:
        data["draggingNodeId"] = record.dragging_node_id
    if record.dragging_position is not None:
        data["draggingPosition"] = {"x": record.dragging_position.x, "y": record.dragging_position.y}
    if record.editing_node_id is not None:
        data["editingNodeId"] = record.editing_node_id
    return data


def presence_from_dict(data: Dict[str, Any]) -> PresenceRecord:
    dragging = data.get("draggingPosition")
    return PresenceRecord(
        id=data["id"],
        x=data.get("x", 0),
        y=data.get("y", 0),
        color=data.get("color", "#ffffff"),
        last_active=int(data.get("lastActive", 0)),
        dragging_node_id=data.get("draggingNodeId"),
        dragging_position=Position(dragging["x"], dragging["y"]) if dragging else None,
        editing_node_id=data.get("editingNodeId"),
    )
