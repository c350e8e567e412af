from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .GraphPrimitives import Connection, Node
from .NodePort import port_label
from .Types import NodeKind


def incoming_connections(node_id: str, connections: Iterable[Connection]) -> List[Connection]:
    """Connections targeting *node_id*, in insertion order."""
    return [c for c in connections if c.target_node_id == node_id]


def _label_matches(conn: Connection, label: str) -> bool:
    return label.lower() in port_label(conn.target_node_id, conn.target_port_id).lower()


def upstream_by_label(
    node_id: str,
    label: str,
    nodes: Sequence[Node],
    connections: Sequence[Connection],
) -> List[Node]:
    """Source nodes wired into *node_id* on a port whose label contains *label*.

    Order follows connection insertion order and is never re-sorted.
    """
    by_id: Dict[str, Node] = {n.id: n for n in nodes}
    result: List[Node] = []
    for conn in incoming_connections(node_id, connections):
        if not _label_matches(conn, label):
            continue
        source = by_id.get(conn.source_node_id)
        if source is not None:
            result.append(source)
    return result


def connected_source(
    node_id: str,
    label: str,
    nodes: Sequence[Node],
    connections: Sequence[Connection],
) -> Optional[Node]:
    sources = upstream_by_label(node_id, label, nodes, connections)
    return sources[0] if sources else None


def _adjacency(connections: Iterable[Connection]) -> Dict[str, List[str]]:
    adjacency: Dict[str, List[str]] = {}
    for conn in connections:
        adjacency.setdefault(conn.source_node_id, []).append(conn.target_node_id)
        adjacency.setdefault(conn.target_node_id, []).append(conn.source_node_id)
    return adjacency


def related_nodes(
    start_id: str,
    nodes: Sequence[Node],
    connections: Sequence[Connection],
    kind: Optional[NodeKind] = None,
) -> List[Node]:
    """Undirected BFS cluster around *start_id* (start included), optionally filtered by kind."""
    by_id: Dict[str, Node] = {n.id: n for n in nodes}
    adjacency = _adjacency(connections)
    visited: Set[str] = set()
    queue = deque([start_id])
    related: List[Node] = []

    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)

        node = by_id.get(current)
        if node is not None and (kind is None or node.kind == kind):
            related.append(node)

        for neighbour in adjacency.get(current, ()):
            if neighbour not in visited:
                queue.append(neighbour)

    return related


def connected_components(nodes: Sequence[Node], connections: Sequence[Connection]) -> List[List[Node]]:
    """Undirected connectivity over CODE nodes only.

    Edges touching a non-CODE node are ignored, so a preview does not glue two
    otherwise separate file clusters together.
    """
    code_nodes = [n for n in nodes if n.kind == NodeKind.CODE]
    code_ids = {n.id for n in code_nodes}
    adjacency = _adjacency(
        c for c in connections if c.source_node_id in code_ids and c.target_node_id in code_ids
    )
    by_id = {n.id: n for n in code_nodes}

    visited: Set[str] = set()
    components: List[List[Node]] = []
    for node in code_nodes:
        if node.id in visited:
            continue
        component: List[Node] = []
        queue = deque([node.id])
        visited.add(node.id)
        while queue:
            current = queue.popleft()
            component.append(by_id[current])
            for neighbour in adjacency.get(current, ()):
                if neighbour not in visited:
                    visited.add(neighbour)
                    queue.append(neighbour)
        components.append(component)
    return components
