import asyncio

from nodecode.core import Actions as A
from nodecode.core.GraphPrimitives import LogEntry, Node
from nodecode.core.GraphStore import GraphStore
from nodecode.core.Types import LogType, NodeKind
from nodecode.server.bridge.channel import SandboxChannel
from nodecode.server.bridge.runtime_bridge import RuntimeBridge


def envelope(node_id, type_, **extra):
    data = {"source": "preview-iframe", "nodeId": node_id, "type": type_}
    data.update(extra)
    return data


class TestSandboxToHost:

    def setup_method(self):
        self.store = GraphStore()
        self.store.dispatch(A.CreateNode(Node.create("p", NodeKind.PREVIEW)))
        self.bridge = RuntimeBridge(self.store, clock=lambda: 42)
        self.bridge.start()

    def teardown_method(self):
        self.bridge.stop()

    def test_logs_are_appended_in_arrival_order(self):
        self.bridge.handle_message(envelope("p", "error", message="boom", timestamp=3))
        self.bridge.handle_message(envelope("p", "log", message="hello", timestamp=1))
        self.bridge.handle_message(envelope("p", "error", message="boom", timestamp=3))
        assert self.store.state.logs_for("p") == (
            LogEntry(LogType.ERROR, "boom", 3),
            LogEntry(LogType.LOG, "hello", 1),
            LogEntry(LogType.ERROR, "boom", 3),
        )

    def test_missing_timestamp_uses_clock(self):
        self.bridge.handle_message(envelope("p", "info", message="x"))
        assert self.store.state.logs_for("p") == (LogEntry(LogType.INFO, "x", 42),)

    def test_foreign_source_is_ignored(self):
        before = self.store.state
        assert not self.bridge.handle_message({"source": "devtools", "nodeId": "p", "type": "log"})
        assert not self.bridge.handle_message("not a dict")
        assert self.store.state is before

    def test_malformed_envelope_becomes_error_log(self):
        assert not self.bridge.handle_message(envelope("p", "SHOUT", message="?"))
        logs = self.store.state.logs_for("p")
        assert len(logs) == 1
        assert logs[0].type == LogType.ERROR
        assert logs[0].message.startswith("Malformed bridge message")

    def test_broadcast_state_is_stored(self):
        assert self.bridge.handle_message(envelope("p", "BROADCAST_STATE", payload={"score": 3}))
        assert self.store.state.get_node("p").shared_state == {"score": 3}

    def test_unserializable_broadcast_is_rejected(self):
        assert not self.bridge.handle_message(envelope("p", "BROADCAST_STATE", payload={1, 2}))
        assert self.store.state.get_node("p").shared_state is None
        assert self.store.state.logs_for("p")[0].type == LogType.ERROR


class TestHostToSandbox:

    def setup_method(self):
        self.store = GraphStore()
        self.store.dispatch(A.CreateNode(Node.create("p", NodeKind.PREVIEW)))
        self.channel = SandboxChannel()
        self.sent = []
        self.channel.on_message(lambda node_id, msg: self.sent.append((node_id, msg)))
        self.bridge = RuntimeBridge(self.store, self.channel)
        self.bridge.start()

    def test_no_push_without_state(self):
        self.store.dispatch(A.SetRunning("p", True))
        assert self.sent == []

    def test_push_on_change_only(self):
        self.store.dispatch(A.SetRunning("p", True))
        self.store.dispatch(A.SetSharedState("p", {"n": 1}))
        self.store.dispatch(A.SetSharedState("p", {"n": 1}))
        self.store.dispatch(A.SetSharedState("p", {"n": 2}))
        assert [msg["payload"] for _, msg in self.sent] == [{"n": 1}, {"n": 2}]
        assert all(msg["type"] == "STATE_UPDATE" for _, msg in self.sent)

    def test_change_of_json_type_is_pushed(self):
        self.store.dispatch(A.SetRunning("p", True))
        self.store.dispatch(A.SetSharedState("p", {"on": 1}))
        self.store.dispatch(A.SetSharedState("p", {"on": True}))
        self.store.dispatch(A.SetSharedState("p", {"on": 1.0}))
        self.store.dispatch(A.SetSharedState("p", {"on": 1.0}))
        payloads = [msg["payload"] for _, msg in self.sent]
        assert payloads == [{"on": 1}, {"on": True}, {"on": 1.0}]
        assert [type(p["on"]) for p in payloads] == [int, bool, float]

    def test_key_order_is_not_a_change(self):
        self.store.dispatch(A.SetRunning("p", True))
        self.store.dispatch(A.SetSharedState("p", {"a": 1, "b": 2}))
        self.store.dispatch(A.SetSharedState("p", {"b": 2, "a": 1}))
        assert len(self.sent) == 1

    def test_stopped_previews_get_nothing(self):
        self.store.dispatch(A.SetSharedState("p", {"n": 1}))
        assert self.sent == []

    def test_broadcast_is_not_echoed(self):
        self.store.dispatch(A.SetRunning("p", True))
        self.bridge.handle_message(envelope("p", "BROADCAST_STATE", payload=[1, 2, 3]))
        assert self.sent == []

    def test_iframe_ready_replays_state(self):
        self.store.dispatch(A.SetSharedState("p", {"level": 2}))
        self.bridge.handle_message(envelope("p", "IFRAME_READY"))
        assert self.sent == [("p", {"type": "STATE_UPDATE", "nodeId": "p", "payload": {"level": 2}})]

    def test_iframe_ready_without_state_sends_nothing(self):
        self.bridge.handle_message(envelope("p", "IFRAME_READY"))
        assert self.sent == []

    def test_channel_queues_per_node(self):
        async def scenario():
            self.store.dispatch(A.SetRunning("p", True))
            self.store.dispatch(A.SetSharedState("p", "a"))
            self.store.dispatch(A.SetSharedState("p", "b"))
            queue = self.channel.queue_for("p")
            return [await queue.get(), await queue.get()]

        first, second = asyncio.run(scenario())
        assert (first["payload"], second["payload"]) == ("a", "b")
