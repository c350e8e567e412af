"""
Workspace — wires one GraphStore to its collaborators.

    GraphStore ─┬─ SyncEngine        (room document + presence)
                ├─ RuntimeBridge     (sandbox messages, shared state)
                ├─ PreviewArtifacts  (compiled documents for running previews)
                └─ AgentToolRunner   (LLM turns)

The server builds one Workspace, calls ``start()`` from the running event
loop on startup and ``close()`` on shutdown. Tests build their own with an
in-memory store and a scripted LLM client.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from nodecode.agent.llm_client import LangChainLLMClient, LLMClient
from nodecode.agent.tool_runner import AgentToolRunner
from nodecode.compiler import PreviewArtifacts
from nodecode.config import Settings
from nodecode.core.GraphPrimitives import GraphSnapshot, GraphState
from nodecode.core.GraphStore import GraphStore
from nodecode.server.bridge.channel import SandboxChannel
from nodecode.server.bridge.runtime_bridge import RuntimeBridge
from nodecode.sync.defaults import default_project
from nodecode.sync.snapshot_store import InMemorySnapshotStore, SnapshotStore
from nodecode.sync.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

ArtifactListener = Callable[[str, str], None]


class Workspace:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        snapshots: Optional[SnapshotStore] = None,
        llm: Optional[LLMClient] = None,
        initial_snapshot: Optional[GraphSnapshot] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.store = GraphStore()
        self.snapshots = snapshots or InMemorySnapshotStore()
        self.sync = SyncEngine(
            self.store,
            self.snapshots,
            self.settings.room_id,
            session_id=session_id,
            debounce_ms=self.settings.save_debounce_ms,
            presence_ttl_ms=self.settings.presence_ttl_ms,
            initial_snapshot=initial_snapshot if initial_snapshot is not None else default_project(),
        )
        self.channel = SandboxChannel()
        self.bridge = RuntimeBridge(self.store, self.channel)
        self.artifacts = PreviewArtifacts()
        self.runner = AgentToolRunner(
            self.store,
            llm or LangChainLLMClient(),
            model=self.settings.model,
            timeout_s=self.settings.llm_timeout_s,
        )

        self._artifact_listeners: List[ArtifactListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def state(self) -> GraphState:
        return self.store.state

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        logger.info(f"Starting workspace for room {self.settings.room_id!r}")
        self._unsubscribe = self.store.subscribe(self._on_change)
        self.bridge.start()
        self.sync.start()

    async def close(self) -> None:
        await self.sync.flush()
        await self.sync.stop()
        self.bridge.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.store.close()

    # ── Artifacts ────────────────────────────────────────────────────────────

    def on_artifact(self, listener: ArtifactListener) -> Callable[[], None]:
        """Register *listener(preview_id, html)* for every changed artifact."""
        self._artifact_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._artifact_listeners:
                self._artifact_listeners.remove(listener)

        return unsubscribe

    def _on_change(self, action, previous: GraphState, current: GraphState) -> None:
        for preview_id, html in self.artifacts.refresh(current).items():
            for listener in list(self._artifact_listeners):
                try:
                    listener(preview_id, html)
                except Exception:
                    logger.exception(f"Artifact listener failed for {preview_id}")
