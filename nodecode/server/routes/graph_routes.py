"""
Graph REST routes.

All routes are mounted under /api by main.py and operate on the Workspace
stored on ``app.state.workspace``.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from nodecode.compiler import compile_preview
from nodecode.core import Actions as A
from nodecode.core.GraphPrimitives import (
    Connection,
    Node,
    Position,
    Size,
    connection_to_dict,
    node_to_dict,
    presence_to_dict,
    snapshot_to_dict,
)
from nodecode.core.GraphStore import connection_error
from nodecode.core.GraphTraversal import connected_components
from nodecode.core.NodePort import ports_for
from nodecode.core.Types import InteractionKind, NodeKind
from nodecode.server.state import Workspace

router = APIRouter()


def get_workspace(request: Request) -> Workspace:
    return request.app.state.workspace


def _require_node(ws: Workspace, node_id: str) -> Node:
    node = ws.state.get_node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
    return node


# ── GET /graph ────────────────────────────────────────────────────────────────

@router.get("/graph")
async def get_graph(ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    state = ws.state
    data = snapshot_to_dict(state.to_snapshot())
    data["loadingNodeIds"] = [n.id for n in state.nodes if n.flags.is_loading]
    data["interactions"] = {k: v.value for k, v in state.interactions.items()}
    data["collaborators"] = [presence_to_dict(p) for p in state.collaborators]
    data["syncStatus"] = ws.sync.status.value
    data["lastError"] = ws.sync.last_error
    return data


# ── Nodes ─────────────────────────────────────────────────────────────────────

class PointBody(BaseModel):
    x: float
    y: float


class CreateNodeBody(BaseModel):
    kind: NodeKind
    title: Optional[str] = None
    content: Optional[str] = None
    position: Optional[PointBody] = None


@router.post("/nodes", status_code=201)
async def create_node(body: CreateNodeBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    node = Node.create(
        f"node-{uuid.uuid4().hex}",
        body.kind,
        title=body.title,
        content=body.content,
        position=Position(body.position.x, body.position.y) if body.position else None,
    )
    ws.store.dispatch(A.CreateNode(node))
    return node_to_dict(node)


@router.get("/nodes/{node_id}/ports")
async def get_ports(node_id: str, ws: Workspace = Depends(get_workspace)) -> List[Dict[str, Any]]:
    node = _require_node(ws, node_id)
    return [
        {
            "id": p.id,
            "direction": p.direction.value,
            "label": p.label,
            "singleFanIn": p.single_fan_in,
        }
        for p in ports_for(node.id, node.kind)
    ]


@router.delete("/nodes/{node_id}", status_code=204)
async def delete_node(node_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    _require_node(ws, node_id)
    ws.store.dispatch(A.DeleteNode(node_id))
    return Response(status_code=204)


@router.put("/nodes/{node_id}/position")
async def move_node(node_id: str, body: PointBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    _require_node(ws, node_id)
    ws.store.dispatch(A.MoveNode(node_id, Position(body.x, body.y)))
    return node_to_dict(ws.state.get_node(node_id))


class SizeBody(BaseModel):
    width: float
    height: float


@router.put("/nodes/{node_id}/size")
async def resize_node(node_id: str, body: SizeBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    _require_node(ws, node_id)
    ws.store.dispatch(A.ResizeNode(node_id, Size(body.width, body.height)))
    return node_to_dict(ws.state.get_node(node_id))


class ContentBody(BaseModel):
    content: str


@router.put("/nodes/{node_id}/content")
async def edit_content(node_id: str, body: ContentBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    _require_node(ws, node_id)
    ws.store.dispatch(A.EditContent(node_id, body.content))
    return node_to_dict(ws.state.get_node(node_id))


class TitleBody(BaseModel):
    title: str


@router.put("/nodes/{node_id}/title")
async def edit_title(node_id: str, body: TitleBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    _require_node(ws, node_id)
    ws.store.dispatch(A.EditTitle(node_id, body.title))
    return node_to_dict(ws.state.get_node(node_id))


class KindBody(BaseModel):
    kind: NodeKind


@router.put("/nodes/{node_id}/kind")
async def retype_node(node_id: str, body: KindBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    _require_node(ws, node_id)
    ws.store.dispatch(A.RetypeNode(node_id, body.kind))
    return node_to_dict(ws.state.get_node(node_id))


@router.post("/nodes/{node_id}/minimize")
async def toggle_minimize(node_id: str, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    _require_node(ws, node_id)
    ws.store.dispatch(A.ToggleMinimize(node_id))
    return node_to_dict(ws.state.get_node(node_id))


class InteractionBody(BaseModel):
    interaction: Optional[Literal["drag", "edit"]] = None


@router.put("/nodes/{node_id}/interaction")
async def set_interaction(node_id: str, body: InteractionBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    _require_node(ws, node_id)
    kind = InteractionKind(body.interaction) if body.interaction else None
    ws.sync.set_interaction(node_id, kind)
    return {"nodeId": node_id, "interaction": body.interaction}


class ContextBody(BaseModel):
    nodeIds: List[str]


@router.put("/nodes/{node_id}/context")
async def set_context(node_id: str, body: ContextBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    _require_node(ws, node_id)
    ws.store.dispatch(A.SetContextNodes(node_id, tuple(body.nodeIds)))
    return node_to_dict(ws.state.get_node(node_id))


# ── Connections ───────────────────────────────────────────────────────────────

class ConnectionBody(BaseModel):
    sourceNodeId: str
    sourcePortId: str
    targetNodeId: str
    targetPortId: str


@router.post("/connections", status_code=201)
async def add_connection(body: ConnectionBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    conn = Connection(
        id=f"conn-{uuid.uuid4().hex}",
        source_node_id=body.sourceNodeId,
        source_port_id=body.sourcePortId,
        target_node_id=body.targetNodeId,
        target_port_id=body.targetPortId,
    )
    reason = connection_error(ws.state, conn)
    if reason is not None:
        raise HTTPException(status_code=400, detail=reason)
    ws.store.dispatch(A.Connect(conn))
    return connection_to_dict(conn)


@router.delete("/connections/{connection_id}", status_code=204)
async def delete_connection(connection_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    ws.store.dispatch(A.Disconnect(connection_id))
    return Response(status_code=204)


@router.delete("/ports/{port_id}/connections", status_code=204)
async def disconnect_port(port_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    ws.store.dispatch(A.DisconnectPort(port_id))
    return Response(status_code=204)


@router.post("/maintenance/prune")
async def prune_connections(ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    before = len(ws.state.connections)
    ws.store.dispatch(A.PruneConnections())
    return {"removed": before - len(ws.state.connections)}


@router.get("/export/components")
async def export_components(ws: Workspace = Depends(get_workspace)) -> List[List[Dict[str, Any]]]:
    """CODE-node clusters, one per downloadable project."""
    state = ws.state
    return [
        [{"id": n.id, "title": n.title, "content": n.content} for n in component]
        for component in connected_components(state.nodes, state.connections)
    ]


# ── Previews ──────────────────────────────────────────────────────────────────

class RunningBody(BaseModel):
    running: bool


@router.put("/previews/{node_id}/running")
async def set_running(node_id: str, body: RunningBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    node = _require_node(ws, node_id)
    if node.kind != NodeKind.PREVIEW:
        raise HTTPException(status_code=400, detail=f"Node {node_id} is not a preview")
    ws.store.dispatch(A.SetRunning(node_id, body.running))
    return {"runningPreviewIds": list(ws.state.running_preview_ids)}


@router.get("/previews/{node_id}/artifact", response_class=HTMLResponse)
async def get_artifact(node_id: str, ws: Workspace = Depends(get_workspace)) -> HTMLResponse:
    _require_node(ws, node_id)
    state = ws.state
    html = ws.artifacts.get(node_id) or compile_preview(node_id, state.nodes, state.connections)
    return HTMLResponse(html)


@router.get("/previews/{node_id}/logs")
async def get_logs(node_id: str, ws: Workspace = Depends(get_workspace)) -> List[Dict[str, Any]]:
    return [
        {"type": e.type.value, "message": e.message, "timestamp": e.timestamp}
        for e in ws.state.logs_for(node_id)
    ]


@router.delete("/previews/{node_id}/logs", status_code=204)
async def clear_logs(node_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    ws.store.dispatch(A.ClearLogs(node_id))
    return Response(status_code=204)


# ── AI ────────────────────────────────────────────────────────────────────────

class MessageBody(BaseModel):
    text: str


@router.post("/agents/{node_id}/messages")
async def send_message(node_id: str, body: MessageBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    node = _require_node(ws, node_id)
    if node.kind != NodeKind.AGENT:
        raise HTTPException(status_code=400, detail=f"Node {node_id} is not an agent")
    result = await ws.runner.send_message(node_id, body.text)
    return {
        "agentId": result.agent_id,
        "text": result.text,
        "transcript": result.transcript,
        "createdNodeIds": result.created_node_ids,
        "error": result.error,
    }


def _edit_result(result) -> Dict[str, Any]:
    return {
        "nodeId": result.node_id,
        "fileIds": result.file_ids,
        "transcript": result.transcript,
        "error": result.error,
    }


class FixBody(BaseModel):
    message: str


@router.post("/terminals/{node_id}/fix")
async def fix_error(node_id: str, body: FixBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    node = _require_node(ws, node_id)
    if node.kind != NodeKind.TERMINAL:
        raise HTTPException(status_code=400, detail=f"Node {node_id} is not a terminal")
    return _edit_result(await ws.runner.fix_error(node_id, body.message))


class GenerateBody(BaseModel):
    action: Literal["optimize", "prompt"]
    prompt: Optional[str] = None


@router.post("/nodes/{node_id}/generate")
async def generate(node_id: str, body: GenerateBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    node = _require_node(ws, node_id)
    if node.kind != NodeKind.CODE:
        raise HTTPException(status_code=400, detail=f"Node {node_id} is not a code node")
    try:
        result = await ws.runner.generate(node_id, body.action, body.prompt)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _edit_result(result)


# ── Presence ──────────────────────────────────────────────────────────────────

@router.post("/presence")
async def publish_presence(body: PointBody, ws: Workspace = Depends(get_workspace)) -> Dict[str, Any]:
    await ws.sync.publish_presence(body.x, body.y)
    return {"sessionId": ws.sync.session_id}
