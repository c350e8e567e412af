"""
SyncEngine — keeps one GraphStore in step with a shared room document.

Inbound
    Every remote document is parsed into a GraphSnapshot and folded into the
    store with ``LoadSnapshot``. Local interaction markers decide which side
    wins per node (see ``merge.py``). Documents written by this session are not
    reloaded, but they still acknowledge locally created ids.

Outbound
    Actions in ``DIRTY_ACTIONS`` restart a single debounce timer. When it fires
    the whole snapshot is written as one document. Failures set the ERROR
    status and wait for the next dirty action; nothing is retried.

Presence
    Peer records are filtered by ``PresenceTracker`` and pushed into the store
    with ``UpdateCollaborators``. ``publish_presence`` writes our own record.
"""
from __future__ import annotations

import asyncio
import datetime
import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

from nodecode.core import Actions as A
from nodecode.core.GraphPrimitives import GraphSnapshot, snapshot_from_dict, snapshot_to_dict
from nodecode.core.GraphStore import GraphStore
from nodecode.core.Types import InteractionKind, SyncStatus

from .debounce import DebounceTimer
from .presence import DEFAULT_PRESENCE_TTL_MS, PresenceTracker
from .snapshot_store import SnapshotDoc, SnapshotStore, SnapshotStoreError

logger = logging.getLogger(__name__)

DEFAULT_SAVE_DEBOUNCE_MS = 800

StatusListener = Callable[[SyncStatus], None]


class SyncEngine:
    def __init__(
        self,
        store: GraphStore,
        snapshots: SnapshotStore,
        room_id: str,
        *,
        session_id: Optional[str] = None,
        debounce_ms: int = DEFAULT_SAVE_DEBOUNCE_MS,
        presence_ttl_ms: int = DEFAULT_PRESENCE_TTL_MS,
        initial_snapshot: Optional[GraphSnapshot] = None,
        color: str = "#3b82f6",
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.store = store
        self.snapshots = snapshots
        self.room_id = room_id
        self.session_id = session_id or f"session-{uuid.uuid4().hex[:9]}"
        self.initial_snapshot = initial_snapshot
        self.presence = PresenceTracker(self.session_id, color=color, ttl_ms=presence_ttl_ms, clock=clock)

        self._status = SyncStatus.OFFLINE
        self.last_error: Optional[str] = None
        self._status_listeners: List[StatusListener] = []
        self._timer = DebounceTimer(debounce_ms, self.save)
        self._unsubscribers: List[Callable[[], None]] = []
        self._pending_node_ids: Set[str] = set()
        self._pending_connection_ids: Set[str] = set()
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return self._status

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def _set_status(self, status: SyncStatus, error: Optional[str] = None) -> None:
        if status == SyncStatus.ERROR:
            self.last_error = error
        if status == self._status:
            return
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Sync status listener failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Attach to the store and the room. Must be called from the running loop."""
        if self._unsubscribers:
            return
        logger.info(f"Sync engine {self.session_id} joining room {self.room_id!r}")
        self._unsubscribers.append(self.store.subscribe(self._on_local_change))
        self._unsubscribers.append(
            self.snapshots.subscribe(self.room_id, self._on_remote_doc, self._on_remote_error)
        )
        self._unsubscribers.append(
            self.snapshots.subscribe_presence(self.room_id, self._on_presence)
        )

    async def stop(self) -> None:
        self._timer.cancel()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        for task in list(self._background):
            await task
        try:
            await self.snapshots.delete_presence(self.room_id, self.session_id)
        except SnapshotStoreError as exc:
            logger.warning(f"Could not remove presence for {self.session_id}: {exc}")
        self._set_status(SyncStatus.OFFLINE)

    # ------------------------------------------------------------------
    # Local side
    # ------------------------------------------------------------------

    def set_interaction(self, node_id: str, interaction: Optional[InteractionKind]) -> None:
        self.store.dispatch(A.SetInteraction(node_id, interaction))

    @property
    def pending_node_ids(self) -> frozenset:
        return frozenset(self._pending_node_ids)

    @property
    def pending_connection_ids(self) -> frozenset:
        return frozenset(self._pending_connection_ids)

    def _on_local_change(self, action, previous, current) -> None:
        if type(action) not in A.DIRTY_ACTIONS:
            return

        previous_nodes = {n.id for n in previous.nodes}
        current_nodes = {n.id for n in current.nodes}
        self._pending_node_ids = (self._pending_node_ids | (current_nodes - previous_nodes)) & current_nodes

        previous_conns = {c.id for c in previous.connections}
        current_conns = {c.id for c in current.connections}
        self._pending_connection_ids = (
            (self._pending_connection_ids | (current_conns - previous_conns)) & current_conns
        )

        self._set_status(SyncStatus.SAVING)
        self._timer.trigger()

    def build_doc(self) -> SnapshotDoc:
        snapshot = self.store.state.to_snapshot()
        return {
            "state": json.dumps(snapshot_to_dict(snapshot)),
            "updatedAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "sessionId": self.session_id,
        }

    async def save(self) -> None:
        try:
            await self.snapshots.write(self.room_id, self.build_doc())
        except SnapshotStoreError as exc:
            logger.error(f"Save failed for room {self.room_id!r}: {exc}")
            self._set_status(SyncStatus.ERROR, str(exc))
            return
        if not self._timer.pending:
            self._set_status(SyncStatus.SYNCED)

    async def flush(self) -> None:
        await self._timer.flush()

    # ------------------------------------------------------------------
    # Remote side
    # ------------------------------------------------------------------

    def reconcile(self, snapshot: GraphSnapshot) -> None:
        self._acknowledge(snapshot)
        self.store.dispatch(A.LoadSnapshot(
            snapshot,
            keep_node_ids=frozenset(self._pending_node_ids),
            keep_connection_ids=frozenset(self._pending_connection_ids),
        ))

    def _acknowledge(self, snapshot: GraphSnapshot) -> None:
        self._pending_node_ids -= {n.id for n in snapshot.nodes}
        self._pending_connection_ids -= {c.id for c in snapshot.connections}

    def _on_remote_doc(self, doc: Optional[SnapshotDoc]) -> None:
        if doc is None:
            self._seed()
            return

        try:
            snapshot = snapshot_from_dict(json.loads(doc["state"]))
        except (KeyError, TypeError, ValueError) as exc:
            logger.error(f"Unreadable document in room {self.room_id!r}: {exc}")
            self._set_status(SyncStatus.ERROR, f"unreadable document: {exc}")
            return

        if doc.get("sessionId") == self.session_id:
            self._acknowledge(snapshot)
            return

        logger.debug(f"Reconciling remote snapshot from {doc.get('sessionId')!r}")
        self.reconcile(snapshot)
        if not self._timer.pending:
            self._set_status(SyncStatus.SYNCED)

    def _on_remote_error(self, error: Exception) -> None:
        logger.error(f"Room subscription error for {self.room_id!r}: {error}")
        self._set_status(SyncStatus.ERROR, str(error))

    def _seed(self) -> None:
        if self.initial_snapshot is None:
            self._set_status(SyncStatus.SYNCED)
            return
        logger.info(f"Room {self.room_id!r} is empty, seeding the default project")
        self.store.dispatch(A.LoadSnapshot(self.initial_snapshot))
        self._spawn(self.save())

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def _on_presence(self, records: List[Dict[str, Any]]) -> None:
        self.store.dispatch(A.UpdateCollaborators(self.presence.visible(records)))

    async def publish_presence(self, x: float, y: float) -> None:
        record = self.presence.own_record(self.store.state, x, y)
        try:
            await self.snapshots.write_presence(self.room_id, self.session_id, record)
        except SnapshotStoreError as exc:
            logger.warning(f"Presence update failed: {exc}")
