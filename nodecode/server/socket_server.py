"""
Socket.IO server — relays runtime-bridge traffic between sandboxes and the Workspace.

Uses python-socketio in ASGI mode so it can wrap FastAPI.
`create_socket_app(fastapi_app, workspace)` returns the composite ASGI
application to pass to uvicorn.

Events
    in   join_preview {nodeId}   join the preview's room, receive its artifact
    in   bridge       <envelope> sandbox → host message
    out  bridge       <message>  host → sandbox message (STATE_UPDATE)
    out  artifact     {nodeId, html}
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Set

import socketio

from nodecode.server.bridge.bridge_types import HostMessage
from nodecode.server.state import Workspace

logger = logging.getLogger(__name__)


def preview_room(node_id: str) -> str:
    return f"preview:{node_id}"


_pending: Set["asyncio.Task[Any]"] = set()


def _report(task: "asyncio.Task[Any]") -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Socket.IO emit failed: {exc!r}")


def _schedule(coro) -> None:
    """Called from synchronous listeners; emit on the running loop if there is one."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        return
    task = loop.create_task(coro)
    _pending.add(task)
    task.add_done_callback(_report)


def create_socket_server(workspace: Workspace) -> socketio.AsyncServer:
    sio = socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins="*",
        logger=False,
        engineio_logger=False,
    )

    # ── Host → sandbox fan-out ───────────────────────────────────────────────

    def _on_host_message(node_id: str, message: HostMessage) -> None:
        _schedule(sio.emit("bridge", message, to=preview_room(node_id)))

    def _on_artifact(node_id: str, html: str) -> None:
        _schedule(sio.emit("artifact", {"nodeId": node_id, "html": html}, to=preview_room(node_id)))

    workspace.channel.on_message(_on_host_message)
    workspace.on_artifact(_on_artifact)

    # ── Lifecycle events ─────────────────────────────────────────────────────

    @sio.event
    async def connect(sid: str, environ: dict) -> None:
        logger.debug(f"Socket connected: {sid}")

    @sio.event
    async def disconnect(sid: str) -> None:
        logger.debug(f"Socket disconnected: {sid}")

    @sio.event
    async def join_preview(sid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        node_id = (data or {}).get("nodeId")
        if not isinstance(node_id, str) or workspace.state.get_node(node_id) is None:
            return {"ok": False, "error": "unknown preview"}
        await sio.enter_room(sid, preview_room(node_id))
        html = workspace.artifacts.get(node_id)
        if html is not None:
            await sio.emit("artifact", {"nodeId": node_id, "html": html}, to=sid)
        return {"ok": True}

    @sio.event
    async def bridge(sid: str, data: Any) -> Dict[str, Any]:
        return {"ok": workspace.bridge.handle_message(data)}

    return sio


def create_socket_app(fastapi_app: Any, workspace: Workspace) -> socketio.ASGIApp:
    """Wrap *fastapi_app* inside a Socket.IO ASGI application."""
    sio = create_socket_server(workspace)
    return socketio.ASGIApp(sio, other_asgi_app=fastapi_app)
