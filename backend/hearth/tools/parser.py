"""Locate tool calls embedded in free-form model output."""

from __future__ import annotations

import re
from typing import Any, Iterator

import orjson

from hearth.core.errors import ParseError
from hearth.core.logging import get_logger
from hearth.tools.definitions import ToolCall

logger = get_logger(__name__)

_TOOL_FENCE_RE = re.compile(r"```tool\b[ \t]*\n?([\s\S]*?)```")
_JSON_FENCE_RE = re.compile(r"```json\b[ \t]*\n?([\s\S]*?)```")
_ANY_FENCE_RE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE_RE = re.compile(r"`[^`\n]*`")
_TOOL_KEY_RE = re.compile(r'"tool"\s*:')
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def parse_tool_calls(text: str) -> list[ToolCall]:
    """Tool calls in order: ``tool`` fences, then ``json`` fences, then bare objects.

    Exact repeats are dropped within each strategy but not across them.
    """
    calls: list[ToolCall] = []
    for strategy in (_tool_fence_calls, _json_fence_calls, _bare_object_calls):
        seen: set[bytes] = set()
        for _, call in strategy(text):
            key = _call_key(call)
            if key in seen:
                continue
            seen.add(key)
            calls.append(call)
    return calls


def remove_tool_blocks(text: str) -> str:
    """Display text: everything before the first tool invocation.

    Narration after the tool calls is dropped on purpose; models tend to
    restate content the tools have already written.
    """
    starts = [match.start() for match in _TOOL_FENCE_RE.finditer(text)]
    starts.extend(start for start, _ in _json_fence_calls(text))
    starts.extend(start for start, _ in _bare_object_calls(text))
    head = text[: min(starts)] if starts else text
    return _BLANK_LINES_RE.sub("\n\n", head).strip()


def has_tool_calls(text: str) -> bool:
    return bool(parse_tool_calls(text))


def find_balanced_object(text: str, start: int) -> int | None:
    """Index just past the ``}`` closing the object opened at `start`.

    Braces inside JSON strings, including escaped quotes, are ignored.
    """
    if start >= len(text) or text[start] != "{":
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index + 1
    return None


# Internal helpers -------------------------------------------------


def _tool_fence_calls(text: str) -> Iterator[tuple[int, ToolCall]]:
    for match in _TOOL_FENCE_RE.finditer(text):
        try:
            yield match.start(), _parse_call(match.group(1))
        except ParseError as exc:
            logger.warning("Skipping malformed tool block: %s", exc)


def _json_fence_calls(text: str) -> Iterator[tuple[int, ToolCall]]:
    for match in _JSON_FENCE_RE.finditer(text):
        body = match.group(1)
        if '"tool"' not in body:
            continue
        try:
            yield match.start(), _parse_call(body)
        except ParseError as exc:
            logger.debug("Ignoring json block without a usable tool call: %s", exc)


def _bare_object_calls(text: str) -> Iterator[tuple[int, ToolCall]]:
    masked = _mask_code(text)
    start = masked.find("{")
    while start != -1:
        end = find_balanced_object(masked, start)
        if end is None or not _TOOL_KEY_RE.search(masked, start, end):
            start = masked.find("{", end or start + 1)
            continue
        try:
            call = _parse_call(text[start:end])
        except ParseError:
            try:
                call = _parse_call(masked[start:end])
            except ParseError as exc:
                logger.debug("No tool call in object at %s: %s", start, exc)
                start = masked.find("{", start + 1)
                continue
        yield start, call
        start = masked.find("{", end)


def _mask_code(text: str) -> str:
    """Blank out fenced blocks and inline code while keeping offsets stable."""

    def blank(match: re.Match[str]) -> str:
        return re.sub(r"[^\n]", " ", match.group(0))

    return _INLINE_CODE_RE.sub(blank, _ANY_FENCE_RE.sub(blank, text))


def _parse_call(raw: str) -> ToolCall:
    try:
        payload = orjson.loads(raw.strip())
    except orjson.JSONDecodeError as exc:
        raise ParseError(f"Invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ParseError("Tool call must be a JSON object")
    name = payload.get("tool")
    if not isinstance(name, str) or not name:
        raise ParseError('Tool call is missing a "tool" name')
    arguments: Any = payload.get("arguments") or {}
    if not isinstance(arguments, dict):
        raise ParseError(f'Arguments for "{name}" must be an object')
    return ToolCall(name=name, arguments=arguments)


def _call_key(call: ToolCall) -> bytes:
    return orjson.dumps({"tool": call.name, "arguments": call.arguments}, option=orjson.OPT_SORT_KEYS)


__all__ = ["parse_tool_calls", "remove_tool_blocks", "has_tool_calls", "find_balanced_object"]
