"""
Runtime-bridge message types shared by the host and the preview sandbox.

Sandbox → host messages arrive as ``SandboxEnvelope`` and are validated with
pydantic. Host → sandbox messages are ``HostMessage`` dicts so they can be
emitted over Socket.IO as-is.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional, TypedDict

from pydantic import BaseModel, ConfigDict


class SandboxMessageKind(str, Enum):
    LOG = "log"
    WARN = "warn"
    ERROR = "error"
    INFO = "info"
    IFRAME_READY = "IFRAME_READY"
    BROADCAST_STATE = "BROADCAST_STATE"


LOG_KINDS = frozenset({
    SandboxMessageKind.LOG,
    SandboxMessageKind.WARN,
    SandboxMessageKind.ERROR,
    SandboxMessageKind.INFO,
})


class HostMessageKind(str, Enum):
    STATE_UPDATE = "STATE_UPDATE"


class SandboxEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source: Literal["preview-iframe"]
    nodeId: str
    type: SandboxMessageKind
    message: Optional[str] = None
    payload: Any = None
    timestamp: Optional[int] = None


class HostMessage(TypedDict):
    type: Literal["STATE_UPDATE"]
    nodeId: str
    payload: Any
