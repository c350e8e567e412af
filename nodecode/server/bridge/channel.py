"""
SandboxChannel — the host → sandbox direction of the runtime bridge.

Each preview node gets its own asyncio queue, so a consumer can drain the
messages meant for one sandbox in order. Transport listeners (the Socket.IO
server) are called synchronously on every send, the same way TraceEmitter
fans trace events out to sockets.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List

from .bridge_types import HostMessage

logger = logging.getLogger(__name__)

ChannelListener = Callable[[str, HostMessage], None]


class SandboxChannel:
    def __init__(self) -> None:
        self._queues: Dict[str, asyncio.Queue] = {}
        self._listeners: List[ChannelListener] = []

    def on_message(self, callback: ChannelListener) -> Callable[[], None]:
        """Register *callback(node_id, message)*; returns an unsubscribe callable."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def queue_for(self, node_id: str) -> asyncio.Queue:
        queue = self._queues.get(node_id)
        if queue is None:
            queue = self._queues[node_id] = asyncio.Queue()
        return queue

    def send(self, node_id: str, message: HostMessage) -> None:
        self.queue_for(node_id).put_nowait(message)
        for callback in list(self._listeners):
            try:
                callback(node_id, message)
            except Exception:
                logger.exception(f"Sandbox channel listener failed for {node_id}")

    def drain(self, node_id: str) -> List[HostMessage]:
        """Pop every queued message for *node_id* without waiting."""
        queue = self._queues.get(node_id)
        messages: List[HostMessage] = []
        while queue is not None and not queue.empty():
            messages.append(queue.get_nowait())
        return messages

    def close(self, node_id: str) -> None:
        self._queues.pop(node_id, None)
