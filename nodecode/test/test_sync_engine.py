import asyncio
import json

from nodecode.core import Actions as A
from nodecode.core.GraphPrimitives import (
    GraphSnapshot,
    LogEntry,
    Node,
    Position,
    snapshot_from_dict,
    snapshot_to_dict,
)
from nodecode.core.GraphStore import GraphStore
from nodecode.core.Types import InteractionKind, LogType, NodeKind, SyncStatus
from nodecode.sync.defaults import default_project
from nodecode.sync.snapshot_store import InMemorySnapshotStore
from nodecode.sync.sync_engine import SyncEngine

ROOM = "room"
TICK = 0.05


class CountingStore(InMemorySnapshotStore):
    def __init__(self):
        super().__init__()
        self.writes = []

    async def write(self, room_id, doc):
        self.writes.append(doc)
        await super().write(room_id, doc)


def remote_doc(snapshot, session_id="peer"):
    return {
        "state": json.dumps(snapshot_to_dict(snapshot)),
        "updatedAt": "2026-01-01T00:00:00+00:00",
        "sessionId": session_id,
    }


def make_engine(snapshots, **kwargs):
    store = GraphStore()
    kwargs.setdefault("session_id", "me")
    kwargs.setdefault("debounce_ms", 10)
    engine = SyncEngine(store, snapshots, ROOM, **kwargs)
    return store, engine


class TestSeedingAndWrites:

    def test_empty_room_is_seeded(self):
        async def scenario():
            snapshots = CountingStore()
            store, engine = make_engine(snapshots, initial_snapshot=default_project())
            engine.start()
            await asyncio.sleep(TICK)
            await engine.stop()
            return snapshots, store

        snapshots, store = asyncio.run(scenario())
        assert len(snapshots.writes) == 1
        doc = snapshots.get(ROOM)
        assert doc["sessionId"] == "me"
        titles = [n.title for n in snapshot_from_dict(json.loads(doc["state"])).nodes]
        assert titles == ["index.html", "style.css", "Preview Output"]
        assert [n.title for n in store.state.nodes] == titles

    def test_dirty_burst_writes_once(self):
        async def scenario():
            snapshots = CountingStore()
            store, engine = make_engine(snapshots)
            engine.start()
            store.dispatch(A.CreateNode(Node.create("a", NodeKind.CODE)))
            for x in range(5):
                store.dispatch(A.MoveNode("a", Position(x, 0)))
            saving = engine.status
            await asyncio.sleep(TICK)
            return snapshots, engine, saving

        snapshots, engine, saving = asyncio.run(scenario())
        assert saving == SyncStatus.SAVING
        assert len(snapshots.writes) == 1
        assert engine.status == SyncStatus.SYNCED
        written = snapshot_from_dict(json.loads(snapshots.writes[0]["state"]))
        assert written.nodes[0].position == Position(4, 0)

    def test_transient_actions_do_not_write(self):
        async def scenario():
            snapshots = CountingStore()
            store, engine = make_engine(snapshots)
            engine.start()
            store.dispatch(A.AddLog("p", LogEntry(LogType.LOG, "x", 1)))
            store.dispatch(A.SetInteraction("p", InteractionKind.DRAG))
            store.dispatch(A.SetLoading("p", True))
            await asyncio.sleep(TICK)
            return snapshots

        assert asyncio.run(scenario()).writes == []

    def test_write_failure_sets_error(self):
        async def scenario():
            snapshots = InMemorySnapshotStore()
            store, engine = make_engine(snapshots)
            statuses = []
            engine.on_status(statuses.append)
            engine.start()
            snapshots.fail_writes = ConnectionError("offline")
            store.dispatch(A.CreateNode(Node.create("a", NodeKind.CODE)))
            await asyncio.sleep(TICK)
            return engine, statuses

        engine, statuses = asyncio.run(scenario())
        assert engine.status == SyncStatus.ERROR
        assert engine.last_error == "offline"
        assert statuses == [SyncStatus.SYNCED, SyncStatus.SAVING, SyncStatus.ERROR]

    def test_subscribe_failure_sets_error(self):
        snapshots = InMemorySnapshotStore()
        snapshots.fail_subscribe = PermissionError("denied")
        store, engine = make_engine(snapshots)
        engine.start()
        assert engine.status == SyncStatus.ERROR
        assert engine.last_error == "denied"


class TestReconcile:

    def test_remote_snapshot_is_loaded(self):
        async def scenario():
            snapshots = InMemorySnapshotStore()
            store, engine = make_engine(snapshots)
            engine.start()
            remote = GraphSnapshot(nodes=(Node.create("r", NodeKind.CODE, title="remote.js"),))
            await snapshots.write(ROOM, remote_doc(remote))
            return store

        store = asyncio.run(scenario())
        assert [n.id for n in store.state.nodes] == ["r"]

    def test_own_echo_is_not_reloaded(self):
        async def scenario():
            snapshots = InMemorySnapshotStore()
            store, engine = make_engine(snapshots)
            engine.start()
            store.dispatch(A.CreateNode(Node.create("a", NodeKind.CODE)))
            stale = GraphSnapshot()
            await snapshots.write(ROOM, remote_doc(stale, session_id="me"))
            return store

        store = asyncio.run(scenario())
        assert [n.id for n in store.state.nodes] == ["a"]

    def test_unacknowledged_local_nodes_survive(self):
        async def scenario():
            snapshots = InMemorySnapshotStore()
            store, engine = make_engine(snapshots, debounce_ms=10_000)
            engine.start()
            store.dispatch(A.CreateNode(Node.create("mine", NodeKind.CODE)))
            await snapshots.write(ROOM, remote_doc(GraphSnapshot()))
            survived = store.state.get_node("mine") is not None

            await engine.flush()
            acknowledged = "mine" not in engine.pending_node_ids
            await snapshots.write(ROOM, remote_doc(GraphSnapshot()))
            return survived, acknowledged, store

        survived, acknowledged, store = asyncio.run(scenario())
        assert survived
        assert acknowledged
        assert store.state.get_node("mine") is None

    def test_drag_in_progress_keeps_position(self):
        async def scenario():
            snapshots = InMemorySnapshotStore()
            base = GraphSnapshot(nodes=(Node.create("n", NodeKind.CODE, position=Position(0, 0)),))
            await snapshots.write(ROOM, remote_doc(base))
            store, engine = make_engine(snapshots, debounce_ms=10_000)
            engine.start()

            engine.set_interaction("n", InteractionKind.DRAG)
            store.dispatch(A.MoveNode("n", Position(300, 300)))
            moved = GraphSnapshot(nodes=(Node.create("n", NodeKind.CODE, content="new", position=Position(5, 5)),))
            await snapshots.write(ROOM, remote_doc(moved))
            engine._timer.cancel()
            return store.state.get_node("n")

        node = asyncio.run(scenario())
        assert node.position == Position(300, 300)
        assert node.content == "new"


class TestPresence:

    def test_peers_are_filtered(self):
        async def scenario():
            snapshots = InMemorySnapshotStore()
            store, engine = make_engine(snapshots, clock=lambda: 100_000)
            engine.start()
            await snapshots.write_presence(ROOM, "me", {"id": "me", "lastActive": 100_000})
            await snapshots.write_presence(ROOM, "peer", {"id": "peer", "x": 4, "y": 5, "lastActive": 95_000})
            await snapshots.write_presence(ROOM, "old", {"id": "old", "lastActive": 60_000})
            return store

        store = asyncio.run(scenario())
        assert [c.id for c in store.state.collaborators] == ["peer"]

    def test_publish_and_stop(self):
        async def scenario():
            snapshots = InMemorySnapshotStore()
            store, engine = make_engine(snapshots, clock=lambda: 7)
            engine.start()
            store.dispatch(A.CreateNode(Node.create("n", NodeKind.CODE, position=Position(1, 2))))
            engine.set_interaction("n", InteractionKind.DRAG)
            await engine.publish_presence(10, 20)
            published = snapshots.presence_records(ROOM)
            await engine.stop()
            return published, snapshots.presence_records(ROOM), engine

        published, after_stop, engine = asyncio.run(scenario())
        assert published[0]["id"] == "me"
        assert published[0]["lastActive"] == 7
        assert published[0]["draggingNodeId"] == "n"
        assert published[0]["draggingPosition"] == {"x": 1, "y": 2}
        assert published[0]["editingNodeId"] is None
        assert after_stop == []
        assert engine.status == SyncStatus.OFFLINE
