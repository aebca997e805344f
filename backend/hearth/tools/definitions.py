"""Registry of the note-management tools the chat model may call."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ParameterType = Literal["string", "boolean", "number", "array"]


@dataclass(slots=True, frozen=True)
class ToolParameter:
    name: str
    type: ParameterType
    description: str
    required: bool = False


@dataclass(slots=True, frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = ()

    @property
    def required_parameters(self) -> list[str]:
        return [param.name for param in self.parameters if param.required]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": [
                {"name": p.name, "type": p.type, "description": p.description, "required": p.required}
                for p in self.parameters
            ],
        }


@dataclass(slots=True)
class ToolCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "arguments": self.arguments}


@dataclass(slots=True)
class ToolResult:
    success: bool
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload


def _param(name: str, type_: ParameterType, description: str, required: bool = False) -> ToolParameter:
    return ToolParameter(name=name, type=type_, description=description, required=required)


TOOL_DEFINITIONS: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        "create_folder",
        "Create a new folder in the notes. Can create nested folders.",
        (_param("path", "string", 'The path of the folder to create (e.g., "Projects/2024" or "Inbox")', True),),
    ),
    ToolDefinition(
        "delete_folder",
        "Delete an empty folder. Will fail if the folder contains files.",
        (
            _param("path", "string", "The path of the folder to delete", True),
            _param("force", "boolean", "If true, delete the folder and all contents recursively. Use with caution!"),
        ),
    ),
    ToolDefinition(
        "create_note",
        "Create a new note with optional content.",
        (
            _param(
                "path",
                "string",
                'The path for the new note including filename (e.g., "Projects/my-note.md"). '
                "Will add .md extension if missing.",
                True,
            ),
            _param("content", "string", "Initial content for the note. Can include frontmatter, headers, etc."),
            _param("overwrite", "boolean", "If true, overwrite an existing file. Default is false."),
        ),
    ),
    ToolDefinition(
        "move_note",
        "Move a note to a different folder. The filename stays the same unless newName is provided.",
        (
            _param("sourcePath", "string", 'Current path of the note (e.g., "Inbox/my-note.md" or just "my-note")', True),
            _param("destinationFolder", "string", 'Destination folder path (e.g., "Projects/Active"). Empty for root.', True),
            _param("newName", "string", "Optional new name for the note (without .md extension)"),
        ),
    ),
    ToolDefinition(
        "rename_note",
        "Rename a note in place.",
        (
            _param("path", "string", "Current path of the note", True),
            _param("newName", "string", "New name for the note (without .md extension)", True),
        ),
    ),
    ToolDefinition(
        "delete_note",
        "Delete a note (moves it to the trash folder).",
        (_param("path", "string", "Path of the note to delete", True),),
    ),
    ToolDefinition(
        "append_to_note",
        "Append content to the end of an existing note.",
        (
            _param("path", "string", "Path of the note to append to", True),
            _param("content", "string", "Content to append", True),
        ),
    ),
    ToolDefinition(
        "prepend_to_note",
        "Prepend content to the beginning of an existing note (after frontmatter if present).",
        (
            _param("path", "string", "Path of the note to prepend to", True),
            _param("content", "string", "Content to prepend", True),
        ),
    ),
    ToolDefinition(
        "search_notes",
        "Search for notes by name or content.",
        (
            _param("query", "string", "Search query (file name pattern or text to find)", True),
            _param("searchContent", "boolean", "If true, search within note content. Otherwise only names."),
        ),
    ),
    ToolDefinition(
        "list_folder_contents",
        "List all files and subfolders in a folder.",
        (
            _param("path", "string", 'Folder path to list. Use empty string or "/" for root.'),
            _param("recursive", "boolean", "If true, list contents recursively. Default is false."),
        ),
    ),
    ToolDefinition(
        "get_note_content",
        "Read the full content of a note.",
        (_param("path", "string", "Path of the note to read", True),),
    ),
    ToolDefinition(
        "add_tag",
        "Add a tag to a note's frontmatter.",
        (
            _param("path", "string", "Path of the note", True),
            _param("tag", "string", "Tag to add (without # prefix)", True),
        ),
    ),
    ToolDefinition(
        "remove_tag",
        "Remove a tag from a note's frontmatter.",
        (
            _param("path", "string", "Path of the note", True),
            _param("tag", "string", "Tag to remove (without # prefix)", True),
        ),
    ),
    ToolDefinition(
        "update_frontmatter",
        "Update or add a frontmatter property in a note.",
        (
            _param("path", "string", "Path of the note", True),
            _param("property", "string", "Property name to set", True),
            _param("value", "string", "Value to set (parsed as JSON if possible)", True),
        ),
    ),
)

_TOOLS_BY_NAME = {tool.name: tool for tool in TOOL_DEFINITIONS}
DESTRUCTIVE_TOOLS = frozenset({"delete_note", "delete_folder"})
READ_ONLY_TOOLS = frozenset({"search_notes", "list_folder_contents", "get_note_content"})

_INSTRUCTIONS = """## Tool Calling Instructions

You can execute actions on the user's notes. When the user asks you to create, move,
delete or rename something, you MUST include a tool block. Saying you did it without
a tool block does nothing.

Include a fenced code block with the language tag `tool`:

```tool
{"tool": "tool_name", "arguments": {"param1": "value1"}}
```

For multiple actions, include multiple tool blocks:

```tool
{"tool": "create_folder", "arguments": {"path": "Inbox"}}
```
```tool
{"tool": "move_note", "arguments": {"sourcePath": "Welcome", "destinationFolder": "Inbox"}}
```

Rules:
1. If the user asks to CREATE/MOVE/DELETE/RENAME anything, use a tool.
2. Never claim an action happened without including its tool block.
3. Put a brief message before the tool blocks; text after them is not shown.

### Available Tools
"""


def get_tool(name: str) -> ToolDefinition | None:
    return _TOOLS_BY_NAME.get(name)


def is_destructive_tool(name: str) -> bool:
    return name in DESTRUCTIVE_TOOLS


def is_modifying_tool(name: str) -> bool:
    return name not in READ_ONLY_TOOLS


def generate_tool_descriptions() -> str:
    """Tool-usage section appended to the chat system prompt."""
    lines = [_INSTRUCTIONS]
    for tool in TOOL_DEFINITIONS:
        lines.append(f"**{tool.name}**: {tool.description}")
        if tool.parameters:
            lines.append("Parameters:")
            for param in tool.parameters:
                flag = "(required)" if param.required else "(optional)"
                lines.append(f"  - `{param.name}` {flag}: {param.description}")
        lines.append("")
    return "\n".join(lines)


__all__ = [
    "ToolParameter",
    "ToolDefinition",
    "ToolCall",
    "ToolResult",
    "TOOL_DEFINITIONS",
    "DESTRUCTIVE_TOOLS",
    "READ_ONLY_TOOLS",
    "get_tool",
    "is_destructive_tool",
    "is_modifying_tool",
    "generate_tool_descriptions",
]
