"""
Function declarations offered to the model. Agent turns get all of them, the
terminal error fixer only updateFile.

Each entry is an OpenAI-format function schema; ``openai_tools()`` wraps them
in the ``{"type": "function", "function": ...}`` envelope that
``ChatOpenAI.bind_tools`` accepts.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

CREATE_FILE = "createFile"
UPDATE_FILE = "updateFile"
RENAME_FILE = "renameFile"
DELETE_FILE = "deleteFile"
CONNECT_FILES = "connectFiles"


def _string(description: str) -> Dict[str, str]:
    return {"type": "string", "description": description}


TOOL_DECLARATIONS: List[Dict[str, Any]] = [
    {
        "name": CREATE_FILE,
        "description": (
            "Create a new code file (node) in the workspace. Use this to split code into "
            "modules (e.g. style.css or game.js). Do not put CSS/JS in HTML unless very small."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "filename": _string("Name of the file (e.g. script.js)"),
                "content": _string("Initial content of the file."),
            },
            "required": ["filename", "content"],
        },
    },
    {
        "name": CONNECT_FILES,
        "description": (
            "Connect two files together using wires. Source is the dependency "
            "(e.g. style.css), target is the importer (e.g. index.html)."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "sourceFilename": _string("The file providing functionality (e.g. style.css, script.js)"),
                "targetFilename": _string("The file importing functionality (e.g. index.html)"),
            },
            "required": ["sourceFilename", "targetFilename"],
        },
    },
    {
        "name": UPDATE_FILE,
        "description": (
            "Update the code content of a specific file. ALWAYS provide the FULL content "
            "of the file, not just the diff."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "filename": _string("The exact name of the file to update (e.g. script.js, index.html)."),
                "code": _string("The NEW full content of the file."),
            },
            "required": ["filename", "code"],
        },
    },
    {
        "name": RENAME_FILE,
        "description": "Rename a specific file node, e.g. to change its extension.",
        "parameters": {
            "type": "object",
            "properties": {
                "oldFilename": _string("The current name of the file."),
                "newFilename": _string("The new name for the file."),
            },
            "required": ["oldFilename", "newFilename"],
        },
    },
    {
        "name": DELETE_FILE,
        "description": "Delete a specific file/node from the workspace.",
        "parameters": {
            "type": "object",
            "properties": {
                "filename": _string("The name of the file to delete."),
            },
            "required": ["filename"],
        },
    },
]


def openai_tools(names: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
    """All declarations, or only those in *names* (declaration order is kept)."""
    return [
        {"type": "function", "function": decl}
        for decl in TOOL_DECLARATIONS
        if names is None or decl["name"] in names
    ]
