"""
Port resolution.

Ports are never stored. They are derived from (node id, node kind) through a
static table, and their ids are structural: ``{node_id}-{in|out}-{label}``.
That lets connection legality be checked from the ids alone.
"""
from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Tuple

from .Types import NodeKind, PortDirection

logger = logging.getLogger(__name__)


class PortSpec(NamedTuple):
    direction: PortDirection
    label: str
    accepts: Optional[FrozenSet[NodeKind]] = None
    single_fan_in: bool = False


class PortDescriptor(NamedTuple):
    id: str
    node_id: str
    direction: PortDirection
    label: str
    accepts: Optional[FrozenSet[NodeKind]] = None
    single_fan_in: bool = False

    def isInputPort(self) -> bool:
        return self.direction == PortDirection.INPUT

    def isOutputPort(self) -> bool:
        return self.direction == PortDirection.OUTPUT


_CODE_ONLY = frozenset({NodeKind.CODE})

PORT_TABLE: Dict[NodeKind, Tuple[PortSpec, ...]] = {
    NodeKind.CODE: (
        PortSpec(PortDirection.INPUT,  "imports", _CODE_ONLY),
        PortSpec(PortDirection.INPUT,  "style",   _CODE_ONLY),
        PortSpec(PortDirection.INPUT,  "script",  _CODE_ONLY),
        PortSpec(PortDirection.OUTPUT, "artifact"),
    ),
    NodeKind.PREVIEW: (
        PortSpec(PortDirection.INPUT,  "artifact", _CODE_ONLY, single_fan_in=True),
        PortSpec(PortDirection.OUTPUT, "logs"),
    ),
    NodeKind.TERMINAL: (
        PortSpec(PortDirection.INPUT,  "logs", frozenset({NodeKind.PREVIEW})),
    ),
    NodeKind.AGENT: (),
}

STYLE_EXTENSIONS = (".css",)
SCRIPT_EXTENSIONS = (".js", ".mjs", ".cjs", ".jsx")


def port_id(node_id: str, direction: PortDirection, label: str) -> str:
    return f"{node_id}-{direction.value}-{label}"


def port_label(node_id: str, port_id_: str) -> str:
    """The port-local part of an id, i.e. what follows ``{node_id}-``."""
    prefix = f"{node_id}-"
    if port_id_.startswith(prefix):
        return port_id_[len(prefix):]
    return port_id_


def ports_for(node_id: str, kind: NodeKind) -> List[PortDescriptor]:
    return [
        PortDescriptor(
            id=port_id(node_id, spec.direction, spec.label),
            node_id=node_id,
            direction=spec.direction,
            label=spec.label,
            accepts=spec.accepts,
            single_fan_in=spec.single_fan_in,
        )
        for spec in PORT_TABLE[kind]
    ]


def find_port(node_id: str, kind: NodeKind, port_id_: str) -> Optional[PortDescriptor]:
    for port in ports_for(node_id, kind):
        if port.id == port_id_:
            return port
    return None


def can_connect(source_port: PortDescriptor, target_port: PortDescriptor, source_kind: NodeKind) -> bool:
    if not (source_port.isOutputPort() and target_port.isInputPort()):
        logger.debug(f"Rejecting {source_port.id} -> {target_port.id}: direction mismatch")
        return False
    if target_port.accepts is not None and source_kind not in target_port.accepts:
        logger.debug(f"Rejecting {source_port.id} -> {target_port.id}: {source_kind.value} not accepted")
        return False
    return True


def input_label_for_title(title: str) -> str:
    """Which CODE input a file with this title should be wired into."""
    lower = title.lower()
    if lower.endswith(STYLE_EXTENSIONS):
        return "style"
    if lower.endswith(SCRIPT_EXTENSIONS):
        return "script"
    return "imports"
