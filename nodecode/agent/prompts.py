from __future__ import annotations

import re
from typing import Optional, Sequence, Tuple

from nodecode.core.GraphPrimitives import Node

_SYSTEM_TEMPLATE = """You are an expert "Vibe Coding" Architect.
Your goal is to build complex, modular web applications in a node-based environment.

CRITICAL RULES:
1. **MODULARITY**: You MUST split code into separate files (HTML, CSS, JS). NEVER dump everything into one file unless explicitly asked for a snippet.
2. **FILE CREATION**: If the user wants a new feature (e.g. "make a game"), you MUST use `createFile` to make `index.html`, `game.js`, `style.css` separately.
3. **CONNECTION**: After creating files, you MUST use `connectFiles` to wire them (e.g. connect `style.css` to `index.html`).
4. **NO CHAT CODE**: Do NOT write code blocks in the text response. ONLY use the tools (`createFile`, `updateFile`) to generate code.
5. **CONTEXT**: You see the files provided in context. If you need to edit them, use `updateFile`.

Current Context Files:
{context_titles}
"""


def _file_context(files: Sequence[Node]) -> str:
    return "\n\n".join(f"Filename: {n.title}\nContent:\n{n.content}" for n in files)


def system_instruction(context_files: Sequence[Node]) -> str:
    titles = ", ".join(n.title for n in context_files) if context_files else "No files selected."
    return _SYSTEM_TEMPLATE.format(context_titles=titles)


def user_prompt(text: str, context_files: Sequence[Node]) -> str:
    return f"User Query: {text}\n\nContext Files Content:\n{_file_context(context_files)}"


# ── Terminal error fixer ──────────────────────────────────────────────────────

FIX_ERROR_INSTRUCTION = "You are an automated error fixer. Analyze the error and fix it using 'updateFile'."


def fix_error_prompt(message: str, files: Sequence[Node]) -> str:
    return f"Error Message: {message}\n\nFiles:\n{_file_context(files)}\n\nFix the error using the updateFile tool."


# ── Single-file rewrite ───────────────────────────────────────────────────────

OPTIMIZE = "optimize"
PROMPT = "prompt"

_GENERATE_INSTRUCTIONS = {
    OPTIMIZE: "You are an expert developer. OPTIMIZE the code. Do NOT minify. Maintain functionality. Return ONLY the code.",
    PROMPT: "You are an expert developer. MODIFY the code as requested. Return ONLY the code.",
}

_FENCE_OPEN = re.compile(r"^```[\w]*\n")
_FENCE_CLOSE = re.compile(r"\n```$")


def generate_prompts(action: str, content: str, prompt: Optional[str] = None) -> Tuple[str, str]:
    """Return (system instruction, user prompt) for an optimize or prompt rewrite."""
    if action not in _GENERATE_INSTRUCTIONS:
        raise ValueError(f"Unknown generate action {action!r}")
    if action == OPTIMIZE:
        user = f"Please optimize the following code:\n\n{content}"
    else:
        if not prompt:
            raise ValueError("A prompt is required to modify code")
        user = f"User Request: {prompt}\n\nCurrent Code:\n{content}"
    return _GENERATE_INSTRUCTIONS[action], user


def strip_code_fence(text: str) -> str:
    return _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text))
