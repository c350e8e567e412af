"""
AgentToolRunner — runs one chat turn for an AGENT node.

The turn streams the model response into the agent's last chat message and
applies each function call to the GraphStore as soon as it arrives. Files are
addressed by title; ``TurnContext`` keeps the title → node id map for the
duration of one turn so that a rename followed by a connect resolves the
new name.

Every tool outcome becomes one bracketed transcript line appended to the model
message, e.g. ``[Created app.js]`` or ``[Error: Could not find file x.js]``.
A failing tool never stops the calls after it, and the loading flags raised at
the start of the turn are always cleared.

The runner also drives two narrower edits: ``fix_error`` hands a terminal
error to the model together with the code behind the linked preview, and
``generate`` rewrites a single CODE node. Every model call is bounded by
``timeout_s``; running out of time is reported like any other LLM failure.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, List, Optional

from nodecode.core import Actions as A
from nodecode.core.GraphPrimitives import ChatMessage, Connection, Node, Position
from nodecode.core.GraphStore import GraphStore, connection_error
from nodecode.core.GraphTraversal import incoming_connections, related_nodes
from nodecode.core.NodePort import input_label_for_title, port_id
from nodecode.core.Types import MessageRole, NodeKind, PortDirection

from . import tools as T
from .llm_client import DEFAULT_MODEL, FunctionCall, LLMChunk, LLMClient, LLMClientError, LLMRequest
from .prompts import (
    FIX_ERROR_INSTRUCTION,
    fix_error_prompt,
    generate_prompts,
    strip_code_fence,
    system_instruction,
    user_prompt,
)

logger = logging.getLogger(__name__)

NEW_FILE_OFFSET_X = -450
NEW_FILE_STRIDE_Y = 50
NEW_FILE_SLOTS = 5
DEFAULT_TIMEOUT_S = 60.0


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


# ── Turn state ────────────────────────────────────────────────────────────────

class TurnContext:
    """Title → node id map scoped to a single agent turn."""

    def __init__(self, nodes) -> None:
        self.files: Dict[str, str] = {}
        for node in nodes:
            if node.kind == NodeKind.CODE:
                self.files[node.title] = node.id

    def __len__(self) -> int:
        return len(self.files)

    def resolve(self, filename: str) -> Optional[str]:
        return self.files.get(filename)

    def register(self, filename: str, node_id: str) -> None:
        self.files[filename] = node_id

    def rename(self, old: str, new: str) -> None:
        node_id = self.files.pop(old)
        self.files[new] = node_id

    def forget(self, filename: str) -> None:
        self.files.pop(filename, None)


@dataclass
class TurnResult:
    agent_id: str
    text: str = ""
    transcript: List[str] = field(default_factory=list)
    created_node_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class EditResult:
    """Outcome of fix_error or generate on *node_id*; *file_ids* are the CODE nodes offered for editing."""

    node_id: str
    file_ids: List[str] = field(default_factory=list)
    text: str = ""
    transcript: List[str] = field(default_factory=list)
    error: Optional[str] = None


# ── Runner ────────────────────────────────────────────────────────────────────

class AgentToolRunner:
    def __init__(
        self,
        store: GraphStore,
        llm: LLMClient,
        model: str = DEFAULT_MODEL,
        id_factory: Optional[Callable[[str], str]] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self.store = store
        self.llm = llm
        self.model = model
        self.timeout_s = timeout_s
        self._new_id = id_factory or _new_id
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tools = {
            T.CREATE_FILE: self._create_file,
            T.UPDATE_FILE: self._update_file,
            T.RENAME_FILE: self._rename_file,
            T.DELETE_FILE: self._delete_file,
            T.CONNECT_FILES: self._connect_files,
        }

    def _lock_for(self, agent_id: str) -> asyncio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = self._locks[agent_id] = asyncio.Lock()
        return lock

    async def _stream(self, request: LLMRequest) -> AsyncIterator[LLMChunk]:
        """Yield the model's chunks; the whole call is bounded by ``timeout_s``."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_s
        iterator = self.llm.stream(request).__aiter__()
        try:
            while True:
                remaining = max(deadline - loop.time(), 0)
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), remaining)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError:
                    raise LLMClientError(f"AI Operation Timed Out ({self.timeout_s:g}s limit).") from None
                yield chunk
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def send_message(self, agent_id: str, text: str) -> TurnResult:
        """Run one turn. Turns on the same agent queue behind each other."""
        async with self._lock_for(agent_id):
            return await self._run_turn(agent_id, text)

    def _loading_cluster(self, agent: Node) -> List[str]:
        state = self.store.state
        ids: List[str] = []
        for node in related_nodes(agent.id, state.nodes, state.connections):
            ids.append(node.id)
        for node_id in (agent.id,) + tuple(agent.context_node_ids):
            if node_id not in ids:
                ids.append(node_id)
        return ids

    async def _run_turn(self, agent_id: str, text: str) -> TurnResult:
        agent = self.store.state.get_node(agent_id)
        if agent is None:
            raise ValueError(f"Unknown agent node {agent_id!r}")

        result = TurnResult(agent_id=agent_id)
        loading_ids = self._loading_cluster(agent)
        for node_id in loading_ids:
            self.store.dispatch(A.SetLoading(node_id, True))

        try:
            self.store.dispatch(A.AppendMessage(agent_id, ChatMessage(MessageRole.USER, text)))

            state = self.store.state
            context_files = [
                n for n in (state.get_node(i) for i in agent.context_node_ids)
                if n is not None and n.kind == NodeKind.CODE
            ]
            request = LLMRequest(
                model=self.model,
                contents=user_prompt(text, context_files),
                system_instruction=system_instruction(context_files),
                tools=T.openai_tools(),
            )

            self.store.dispatch(A.AppendMessage(agent_id, ChatMessage(MessageRole.MODEL, "")))
            ctx = TurnContext(state.nodes)

            async for chunk in self._stream(request):
                if chunk.text:
                    result.text += chunk.text
                    self.store.dispatch(A.UpdateLastMessage(agent_id, result.text))
                for call in chunk.function_calls:
                    line = self.apply_call(ctx, agent_id, call, result)
                    result.transcript.append(line)
                    result.text += "\n" + line
                    self.store.dispatch(A.UpdateLastMessage(agent_id, result.text))

        except Exception as exc:
            logger.exception(f"Agent turn failed for {agent_id}")
            result.error = str(exc)
            self.store.dispatch(A.AppendMessage(agent_id, ChatMessage(MessageRole.MODEL, f"Error: {exc}")))
        finally:
            for node_id in loading_ids + [i for i in result.created_node_ids if i not in loading_ids]:
                self.store.dispatch(A.SetLoading(node_id, False))

        return result

    # ------------------------------------------------------------------
    # Terminal error fixer
    # ------------------------------------------------------------------

    def _fix_targets(self, terminal_id: str) -> List[Node]:
        state = self.store.state
        feeds = incoming_connections(terminal_id, state.connections)
        if not feeds:
            return []
        preview_id = feeds[0].source_node_id
        files: List[Node] = []
        seen = set()
        for conn in incoming_connections(preview_id, state.connections):
            for node in related_nodes(conn.source_node_id, state.nodes, state.connections, kind=NodeKind.CODE):
                if node.id not in seen:
                    seen.add(node.id)
                    files.append(node)
        return files

    async def fix_error(self, terminal_id: str, message: str) -> EditResult:
        """
        Ask the model to repair the CODE cluster behind the preview that feeds
        *terminal_id*. Only ``updateFile`` is offered, and only files of that
        cluster can be addressed. A terminal with no linked preview, or a
        preview with no code, is a no-op.
        """
        terminal = self.store.state.get_node(terminal_id)
        if terminal is None or terminal.kind != NodeKind.TERMINAL:
            raise ValueError(f"Unknown terminal node {terminal_id!r}")

        files = self._fix_targets(terminal_id)
        result = EditResult(node_id=terminal_id, file_ids=[n.id for n in files])
        if not files:
            logger.info(f"Nothing to fix behind terminal {terminal_id}")
            return result

        for node_id in result.file_ids:
            self.store.dispatch(A.SetLoading(node_id, True))
        try:
            request = LLMRequest(
                model=self.model,
                contents=fix_error_prompt(message, files),
                system_instruction=FIX_ERROR_INSTRUCTION,
                tools=T.openai_tools([T.UPDATE_FILE]),
            )
            ctx = TurnContext(files)
            tools = {T.UPDATE_FILE: self._update_file}
            async for chunk in self._stream(request):
                if chunk.text:
                    result.text += chunk.text
                for call in chunk.function_calls:
                    result.transcript.append(self.apply_call(ctx, terminal_id, call, result, tools))
        except Exception as exc:
            logger.exception(f"Error fix failed for terminal {terminal_id}")
            result.error = str(exc)
        finally:
            for node_id in result.file_ids:
                self.store.dispatch(A.SetLoading(node_id, False))

        return result

    # ------------------------------------------------------------------
    # Single-file rewrite
    # ------------------------------------------------------------------

    async def generate(self, node_id: str, action: str, prompt: Optional[str] = None) -> EditResult:
        """Optimize or prompt-edit one CODE node; its content becomes the model's code reply."""
        node = self.store.state.get_node(node_id)
        if node is None or node.kind != NodeKind.CODE:
            raise ValueError(f"Unknown code node {node_id!r}")
        instruction, contents = generate_prompts(action, node.content, prompt)

        result = EditResult(node_id=node_id, file_ids=[node_id])
        self.store.dispatch(A.SetLoading(node_id, True))
        try:
            request = LLMRequest(model=self.model, contents=contents, system_instruction=instruction)
            async for chunk in self._stream(request):
                if chunk.text:
                    result.text += chunk.text
            if result.text:
                self.store.dispatch(A.EditContent(node_id, strip_code_fence(result.text)))
        except Exception as exc:
            logger.exception(f"Generate ({action}) failed for {node_id}")
            result.error = str(exc)
        finally:
            self.store.dispatch(A.SetLoading(node_id, False))

        return result

    # ------------------------------------------------------------------
    # Tool dispatch
    # ------------------------------------------------------------------

    def apply_call(self, ctx: TurnContext, agent_id: str, call: FunctionCall, result, tools=None) -> str:
        handler = (tools if tools is not None else self._tools).get(call.name)
        if handler is None:
            return f"[Error: Unknown tool {call.name}]"
        try:
            return handler(ctx, agent_id, call.args, result)
        except Exception as exc:
            logger.exception(f"Tool {call.name} failed")
            return f"[Error: {call.name} failed: {exc}]"

    def _free_position(self, agent_id: str, ctx: TurnContext) -> Position:
        agent = self.store.state.get_node(agent_id)
        origin = agent.position if agent is not None else Position(0, 0)
        slot = len(ctx) % NEW_FILE_SLOTS
        x = origin.x + NEW_FILE_OFFSET_X
        y = origin.y + slot * NEW_FILE_STRIDE_Y
        taken = {n.position for n in self.store.state.nodes}
        while Position(x, y) in taken:
            y += NEW_FILE_STRIDE_Y
        return Position(x, y)

    def _create_file(self, ctx, agent_id, args, result) -> str:
        filename = args["filename"]
        content = args.get("content") or ""
        existing = ctx.resolve(filename)
        if existing is not None:
            self.store.dispatch(A.EditContent(existing, content))
            return f"[File {filename} already exists, updating...]"

        node = Node.create(
            self._new_id("node"),
            NodeKind.CODE,
            title=filename,
            content=content or "// New file",
            position=self._free_position(agent_id, ctx),
        )
        self.store.dispatch(A.CreateNode(node))
        self.store.dispatch(A.SetLoading(node.id, True))
        ctx.register(filename, node.id)
        result.created_node_ids.append(node.id)
        return f"[Created {filename}]"

    def _update_file(self, ctx, agent_id, args, result) -> str:
        filename = args["filename"]
        content = args["code"] if "code" in args else args["content"]
        node_id = ctx.resolve(filename)
        if node_id is None:
            return f"[Error: Could not find file {filename}]"
        self.store.dispatch(A.EditContent(node_id, content))
        return f"[Updated {filename}]"

    def _rename_file(self, ctx, agent_id, args, result) -> str:
        old = args.get("oldFilename", args.get("oldName"))
        new = args.get("newFilename", args.get("newName"))
        if old is None or new is None:
            raise KeyError("oldFilename/newFilename")
        node_id = ctx.resolve(old)
        if node_id is None:
            return f"[Error: Could not find file {old}]"
        taken = ctx.resolve(new)
        if taken is not None and taken != node_id:
            return f"[Error: Could not rename {old} to {new}: {new} already exists]"
        self.store.dispatch(A.EditTitle(node_id, new))
        ctx.rename(old, new)
        return f"[Renamed {old} to {new}]"

    def _delete_file(self, ctx, agent_id, args, result) -> str:
        filename = args["filename"]
        node_id = ctx.resolve(filename)
        if node_id is None:
            return f"[Error: Could not find file {filename}]"
        self.store.dispatch(A.DeleteNode(node_id))
        ctx.forget(filename)
        return f"[Deleted {filename}]"

    def _connect_files(self, ctx, agent_id, args, result) -> str:
        source_name = args["sourceFilename"]
        target_name = args["targetFilename"]
        source_id = ctx.resolve(source_name)
        target_id = ctx.resolve(target_name)
        if source_id is None or target_id is None:
            return f"[Error: Could not connect {source_name}. File not found.]"

        source = self.store.state.get_node(source_id)
        label = input_label_for_title(source.title if source is not None else source_name)
        conn = Connection(
            id=self._new_id("conn"),
            source_node_id=source_id,
            source_port_id=port_id(source_id, PortDirection.OUTPUT, "artifact"),
            target_node_id=target_id,
            target_port_id=port_id(target_id, PortDirection.INPUT, label),
        )
        reason = connection_error(self.store.state, conn)
        if reason is not None:
            return f"[Error: Could not connect {source_name} -> {target_name}: {reason}]"
        self.store.dispatch(A.Connect(conn))
        return f"[Connected {source_name} -> {target_name}]"
