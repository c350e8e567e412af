"""
SnapshotStore — the document store the sync engine talks to.

One document per room, last write wins:

    {"state": "<snapshot json>", "updatedAt": "<iso8601>", "sessionId": "<writer>"}

plus a per-room presence collection keyed by session id. ``subscribe`` pushes
the current document (or None when the room is empty) immediately, then again
after every write.
"""
from __future__ import annotations

import abc
import copy
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

SnapshotDoc = Dict[str, Any]
SnapshotCallback = Callable[[Optional[SnapshotDoc]], None]
ErrorCallback = Callable[[Exception], None]
PresenceCallback = Callable[[List[Dict[str, Any]]], None]
Unsubscribe = Callable[[], None]


class SnapshotStoreError(RuntimeError):
    """Raised by a store when a read, write or subscription fails."""


class SnapshotStore(abc.ABC):

    @abc.abstractmethod
    def subscribe(
        self,
        room_id: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        ...

    @abc.abstractmethod
    async def write(self, room_id: str, doc: SnapshotDoc) -> None:
        ...

    @abc.abstractmethod
    def subscribe_presence(self, room_id: str, on_records: PresenceCallback) -> Unsubscribe:
        ...

    @abc.abstractmethod
    async def write_presence(self, room_id: str, session_id: str, record: Dict[str, Any]) -> None:
        """Merge *record* into the session's presence entry."""

    @abc.abstractmethod
    async def delete_presence(self, room_id: str, session_id: str) -> None:
        ...


# ── In-memory implementation ──────────────────────────────────────────────────

class InMemorySnapshotStore(SnapshotStore):
    """Process-local store. Every write is delivered to all subscribers of the room."""

    def __init__(self) -> None:
        self._docs: Dict[str, SnapshotDoc] = {}
        self._presence: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._subscribers: Dict[str, List[SnapshotCallback]] = {}
        self._presence_subscribers: Dict[str, List[PresenceCallback]] = {}
        self.fail_writes: Optional[Exception] = None
        self.fail_subscribe: Optional[Exception] = None

    def get(self, room_id: str) -> Optional[SnapshotDoc]:
        doc = self._docs.get(room_id)
        return copy.deepcopy(doc) if doc is not None else None

    def subscribe(self, room_id, on_snapshot, on_error=None):
        callbacks = self._subscribers.setdefault(room_id, [])
        if self.fail_subscribe is not None:
            if on_error is not None:
                on_error(SnapshotStoreError(str(self.fail_subscribe)))
            return lambda: None
        callbacks.append(on_snapshot)
        on_snapshot(self.get(room_id))

        def unsubscribe() -> None:
            if on_snapshot in callbacks:
                callbacks.remove(on_snapshot)

        return unsubscribe

    async def write(self, room_id, doc):
        if self.fail_writes is not None:
            raise SnapshotStoreError(str(self.fail_writes)) from self.fail_writes
        self._docs[room_id] = copy.deepcopy(doc)
        logger.debug(f"Room {room_id!r} written by {doc.get('sessionId')!r}")
        for callback in list(self._subscribers.get(room_id, ())):
            callback(self.get(room_id))

    def subscribe_presence(self, room_id, on_records):
        callbacks = self._presence_subscribers.setdefault(room_id, [])
        callbacks.append(on_records)
        on_records(self.presence_records(room_id))

        def unsubscribe() -> None:
            if on_records in callbacks:
                callbacks.remove(on_records)

        return unsubscribe

    async def write_presence(self, room_id, session_id, record):
        room = self._presence.setdefault(room_id, {})
        room.setdefault(session_id, {}).update(copy.deepcopy(record))
        self._notify_presence(room_id)

    async def delete_presence(self, room_id, session_id):
        if self._presence.get(room_id, {}).pop(session_id, None) is not None:
            self._notify_presence(room_id)

    def presence_records(self, room_id: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._presence.get(room_id, {}).values()]

    def _notify_presence(self, room_id: str) -> None:
        records = self.presence_records(room_id)
        for callback in list(self._presence_subscribers.get(room_id, ())):
            callback(records)
