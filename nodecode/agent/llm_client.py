"""
LLM client contract used by the agent tool runner, plus a LangChain adapter.

    stream(LLMRequest) -> AsyncIterator[LLMChunk]

A chunk carries streamed text, complete function calls, or both. Function
calls are only yielded once their arguments are fully assembled, so the
runner can apply each one as soon as it arrives.
"""
from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class LLMClientError(RuntimeError):
    """Raised by a client adapter when the model call or its stream fails."""


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LLMChunk:
    text: Optional[str] = None
    function_calls: List[FunctionCall] = field(default_factory=list)


@dataclass(frozen=True)
class LLMRequest:
    model: str
    contents: str
    system_instruction: str
    tools: List[Dict[str, Any]] = field(default_factory=list)


class LLMClient(abc.ABC):
    @abc.abstractmethod
    def stream(self, request: LLMRequest) -> AsyncIterator[LLMChunk]:
        ...


# ── LangChain / OpenAI adapter ────────────────────────────────────────────────

def _chunk_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    # content blocks: [{"type": "text", "text": "..."}, ...]
    parts = []
    for block in content or ():
        if isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
        elif isinstance(block, str):
            parts.append(block)
    return "".join(parts)


class _ToolCallBuffer:
    """Accumulates streamed tool-call fragments keyed by their index."""

    def __init__(self) -> None:
        self._calls: Dict[int, Dict[str, str]] = {}

    def add(self, fragment: Dict[str, Any]) -> List[FunctionCall]:
        index = fragment.get("index") or 0
        ready = []
        # a fragment for a later index means every earlier call is complete
        for done in sorted(i for i in self._calls if i < index):
            ready.append(self._finish(done))
        entry = self._calls.setdefault(index, {"name": "", "args": ""})
        entry["name"] += fragment.get("name") or ""
        entry["args"] += fragment.get("args") or ""
        return ready

    def flush(self) -> List[FunctionCall]:
        return [self._finish(i) for i in sorted(self._calls)]

    def _finish(self, index: int) -> FunctionCall:
        entry = self._calls.pop(index)
        raw = entry["args"].strip()
        try:
            args = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            logger.warning(f"Tool call {entry['name']!r} had unparseable arguments: {raw[:200]!r}")
            args = {}
        if not isinstance(args, dict):
            args = {}
        return FunctionCall(entry["name"], args)


class LangChainLLMClient(LLMClient):
    """Streams ``ChatOpenAI`` output with the agent tools bound."""

    def __init__(self, temperature: float = 0.2, **chat_kwargs: Any) -> None:
        self.temperature = temperature
        self.chat_kwargs = chat_kwargs

    def _build_llm(self, request: LLMRequest):
        from langchain_openai import ChatOpenAI

        llm = ChatOpenAI(
            model=request.model,
            temperature=self.temperature,
            streaming=True,
            **self.chat_kwargs,
        )
        if request.tools:
            return llm.bind_tools(request.tools)
        return llm

    async def stream(self, request: LLMRequest) -> AsyncIterator[LLMChunk]:
        from langchain_core.messages import HumanMessage, SystemMessage

        messages = [
            SystemMessage(content=request.system_instruction),
            HumanMessage(content=request.contents),
        ]
        buffer = _ToolCallBuffer()

        try:
            llm = self._build_llm(request)
            async for chunk in llm.astream(messages):
                text = _chunk_text(chunk.content)
                calls: List[FunctionCall] = []
                for fragment in getattr(chunk, "tool_call_chunks", None) or ():
                    calls.extend(buffer.add(fragment))
                if text or calls:
                    yield LLMChunk(text=text or None, function_calls=calls)
        except LLMClientError:
            raise
        except Exception as exc:
            raise LLMClientError(f"{type(exc).__name__}: {exc}") from exc

        remaining = buffer.flush()
        if remaining:
            yield LLMChunk(function_calls=remaining)
