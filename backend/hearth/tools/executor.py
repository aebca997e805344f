"""Execute parsed tool calls against the document store."""

from __future__ import annotations

import re
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Callable

import orjson

from hearth.core.errors import PathSafetyError, ToolExecutionError
from hearth.core.logging import get_logger, log_context
from hearth.ingest.documents import DOCUMENT_SUFFIX, DocumentStore
from hearth.tools.definitions import ToolCall, ToolResult, get_tool

logger = get_logger(__name__)

SEARCH_RESULT_LIMIT = 20

_ILLEGAL_CHARS_RE = re.compile(r'[<>:"|?*]')
_REPEATED_SLASH_RE = re.compile(r"/+")
_TRUE_STRINGS = frozenset({"true", "yes", "1"})

Handler = Callable[[dict[str, Any]], Awaitable[ToolResult]]


def sanitize_path(raw: str, root: Path | None = None) -> str:
    """Normalise a model-supplied path into a corpus-relative one.

    Absolute paths are accepted only when they point inside `root`; any
    ``..`` segment is rejected outright.
    """
    path = raw.strip().replace("\\", "/")
    if path.startswith("/") and path.strip("/"):
        path = _relative_to_root(raw, path, root)
    path = _ILLEGAL_CHARS_RE.sub("", path)
    path = _REPEATED_SLASH_RE.sub("/", path).strip("/")
    segments = [segment for segment in path.split("/") if segment not in ("", ".")]
    if any(segment == ".." for segment in segments):
        raise PathSafetyError(f'Invalid path: "{raw}" attempts to access files outside the notes folder')
    return "/".join(segments)


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return False


class ToolExecutor:
    """Runs one tool call at a time; failures come back as unsuccessful results."""

    def __init__(self, documents: DocumentStore, root: Path | None = None) -> None:
        self.documents = documents
        self.root = root.expanduser().resolve() if root is not None else None
        self._handlers: dict[str, Handler] = {
            "create_folder": self._create_folder,
            "delete_folder": self._delete_folder,
            "create_note": self._create_note,
            "move_note": self._move_note,
            "rename_note": self._rename_note,
            "delete_note": self._delete_note,
            "append_to_note": self._append_to_note,
            "prepend_to_note": self._prepend_to_note,
            "search_notes": self._search_notes,
            "list_folder_contents": self._list_folder_contents,
            "get_note_content": self._get_note_content,
            "add_tag": self._add_tag,
            "remove_tag": self._remove_tag,
            "update_frontmatter": self._update_frontmatter,
        }

    async def execute(self, call: ToolCall) -> ToolResult:
        tool = get_tool(call.name)
        handler = self._handlers.get(call.name)
        if tool is None or handler is None:
            return ToolResult(False, f"Unknown tool: {call.name}")
        for name in tool.required_parameters:
            if name not in call.arguments:
                return ToolResult(False, f"Missing required parameter: {name}")
        try:
            return await handler(call.arguments)
        except ToolExecutionError as exc:
            logger.warning("Tool %s rejected: %s", call.name, exc, extra=log_context(tool=call.name))
            return ToolResult(False, f"Error executing {call.name}: {exc}")
        except Exception as exc:
            logger.warning("Tool %s failed", call.name, exc_info=True, extra=log_context(tool=call.name))
            return ToolResult(False, f"Error executing {call.name}: {exc}")

    async def find_file(self, reference: str) -> str | None:
        """Resolve a loose note reference: exact, +.md, basename, then substring."""
        path = self.sanitize(reference)
        if not path:
            return None
        if await self._is_note(path):
            return path
        if not path.lower().endswith(DOCUMENT_SUFFIX):
            with_suffix = path + DOCUMENT_SUFFIX
            if await self._is_note(with_suffix):
                return with_suffix
        needle = _strip_suffix(path).lower()
        documents = await self.documents.list_documents()
        for document in documents:
            if PurePosixPath(document).stem.lower() == needle:
                return document
        lowered = path.lower()
        for document in documents:
            candidate = document.lower()
            if needle in candidate or candidate in (lowered, lowered + DOCUMENT_SUFFIX):
                return document
        return None

    def sanitize(self, raw: str) -> str:
        return sanitize_path(raw, self.root)

    # Folder operations ------------------------------------------------

    async def _create_folder(self, args: dict[str, Any]) -> ToolResult:
        path = self._required_path(args, "path")
        if await self.documents.exists(path):
            if await self.documents.is_folder(path):
                return ToolResult(True, f'Folder "{path}" already exists.')
            return ToolResult(False, f'A file with the name "{path}" already exists.')
        await self.documents.create_folder(path)
        return ToolResult(True, f'Created folder "{path}".')

    async def _delete_folder(self, args: dict[str, Any]) -> ToolResult:
        path = self._required_path(args, "path")
        force = coerce_bool(args.get("force"))
        if not await self.documents.exists(path):
            return ToolResult(False, f'Folder "{path}" not found.')
        if not await self.documents.is_folder(path):
            return ToolResult(False, f'"{path}" is not a folder.')
        if not force and await self.documents.list_folder(path):
            return ToolResult(False, f'Folder "{path}" is not empty. Use force=true to delete recursively.')
        await self.documents.delete_folder(path)
        suffix = " and all its contents" if force else ""
        return ToolResult(True, f'Deleted folder "{path}"{suffix}.')

    # Note operations --------------------------------------------------

    async def _create_note(self, args: dict[str, Any]) -> ToolResult:
        raw = _string_arg(args, "path")
        if not raw.strip().lower().endswith(DOCUMENT_SUFFIX):
            raw = raw.strip() + DOCUMENT_SUFFIX
        path = self.sanitize(raw)
        content = _string_arg(args, "content")
        overwrite = coerce_bool(args.get("overwrite"))
        if await self.documents.exists(path):
            if not overwrite:
                return ToolResult(False, f'Note "{path}" already exists. Use overwrite=true to replace.')
            if await self.documents.is_folder(path):
                return ToolResult(False, f'"{path}" is not a file.')
            await self.documents.write_text(path, content)
            return ToolResult(True, f'Overwrote note "{path}".')
        await self.documents.create(path, content)
        return ToolResult(True, f'Created note "{path}".')

    async def _move_note(self, args: dict[str, Any]) -> ToolResult:
        reference = _string_arg(args, "sourcePath")
        source = await self.find_file(reference)
        if source is None:
            return ToolResult(False, f'Note "{reference}" not found.')
        destination = self.sanitize(_string_arg(args, "destinationFolder"))
        new_name = _string_arg(args, "newName")
        filename = _note_filename(self.sanitize(new_name)) if new_name.strip() else PurePosixPath(source).name
        new_path = f"{destination}/{filename}" if destination else filename
        if new_path == source:
            return ToolResult(True, f'"{source}" is already at "{new_path}".')
        if await self.documents.exists(new_path):
            return ToolResult(False, f'A note already exists at "{new_path}".')
        if destination and not await self.documents.exists(destination):
            await self.documents.create_folder(destination)
        await self.documents.move(source, new_path)
        return ToolResult(True, f'Moved "{source}" to "{new_path}".')

    async def _rename_note(self, args: dict[str, Any]) -> ToolResult:
        reference = _string_arg(args, "path")
        source = await self.find_file(reference)
        if source is None:
            return ToolResult(False, f'Note "{reference}" not found.')
        new_name = self._required_path(args, "newName")
        parent = PurePosixPath(source).parent.as_posix()
        filename = _note_filename(new_name)
        new_path = filename if parent == "." else f"{parent}/{filename}"
        if new_path == source:
            return ToolResult(True, f'"{source}" already has that name.')
        if await self.documents.exists(new_path):
            return ToolResult(False, f'A note already exists at "{new_path}".')
        await self.documents.move(source, new_path)
        return ToolResult(True, f'Renamed "{PurePosixPath(source).stem}" to "{_strip_suffix(new_name)}".')

    async def _delete_note(self, args: dict[str, Any]) -> ToolResult:
        reference = _string_arg(args, "path")
        path = await self.find_file(reference)
        if path is None:
            return ToolResult(False, f'Note "{reference}" not found.')
        await self.documents.trash(path)
        return ToolResult(True, f'Deleted note "{path}" (moved to trash).')

    async def _append_to_note(self, args: dict[str, Any]) -> ToolResult:
        reference = _string_arg(args, "path")
        path = await self.find_file(reference)
        if path is None:
            return ToolResult(False, f'Note "{reference}" not found.')
        await self.documents.append_text(path, "\n" + _string_arg(args, "content"))
        return ToolResult(True, f'Appended content to "{path}".')

    async def _prepend_to_note(self, args: dict[str, Any]) -> ToolResult:
        reference = _string_arg(args, "path")
        path = await self.find_file(reference)
        if path is None:
            return ToolResult(False, f'Note "{reference}" not found.')
        await self.documents.prepend_text(path, _string_arg(args, "content") + "\n")
        return ToolResult(True, f'Prepended content to "{path}".')

    # Search and information -------------------------------------------

    async def _search_notes(self, args: dict[str, Any]) -> ToolResult:
        query = _string_arg(args, "query").strip().lower()
        search_content = coerce_bool(args.get("searchContent"))
        results: list[str] = []
        for document in await self.documents.list_documents():
            if query in PurePosixPath(document).stem.lower() or query in document.lower():
                results.append(document)
            elif search_content:
                try:
                    text = await self.documents.read_text(document)
                except OSError as exc:
                    logger.warning("Could not read %s during search: %s", document, exc)
                    continue
                if query in text.lower():
                    results.append(document)
            if len(results) >= SEARCH_RESULT_LIMIT:
                break
        if not results:
            return ToolResult(True, f'No notes found matching "{query}".', data=[])
        listing = "\n".join(f"- {result}" for result in results)
        return ToolResult(True, f"Found {len(results)} matching notes:\n{listing}", data=results)

    async def _list_folder_contents(self, args: dict[str, Any]) -> ToolResult:
        path = self.sanitize(_string_arg(args, "path"))
        recursive = coerce_bool(args.get("recursive"))
        if path:
            if not await self.documents.exists(path):
                return ToolResult(False, f'Folder "{path}" not found.')
            if not await self.documents.is_folder(path):
                return ToolResult(False, f'"{path}" is not a folder.')
        entries = await self.documents.list_folder(path, recursive=recursive)
        prefix = f"{path}/" if path else ""
        contents = [
            entry.path[len(prefix) :] + ("/" if entry.is_folder else "")
            for entry in entries
        ]
        label = path or "notes root"
        listing = "\n".join(f"- {item}" for item in contents) if contents else "(empty)"
        return ToolResult(True, f'Contents of "{label}":\n{listing}', data=contents)

    async def _get_note_content(self, args: dict[str, Any]) -> ToolResult:
        reference = _string_arg(args, "path")
        path = await self.find_file(reference)
        if path is None:
            return ToolResult(False, f'Note "{reference}" not found.')
        content = await self.documents.read_text(path)
        return ToolResult(True, f'Content of "{path}":\n\n{content}', data=content)

    # Tags and frontmatter ---------------------------------------------

    async def _add_tag(self, args: dict[str, Any]) -> ToolResult:
        reference = _string_arg(args, "path")
        tag = _string_arg(args, "tag").strip().lstrip("#")
        if not tag:
            raise ToolExecutionError("Tag must not be empty")
        path = await self.find_file(reference)
        if path is None:
            return ToolResult(False, f'Note "{reference}" not found.')

        def mutate(frontmatter: dict[str, Any]) -> None:
            tags = _tag_list(frontmatter.get("tags"))
            if tag not in tags:
                tags.append(tag)
            frontmatter["tags"] = tags

        await self.documents.read_write_frontmatter(path, mutate)
        return ToolResult(True, f'Added tag "{tag}" to "{path}".')

    async def _remove_tag(self, args: dict[str, Any]) -> ToolResult:
        reference = _string_arg(args, "path")
        tag = _string_arg(args, "tag").strip().lstrip("#")
        path = await self.find_file(reference)
        if path is None:
            return ToolResult(False, f'Note "{reference}" not found.')
        removed = False

        def mutate(frontmatter: dict[str, Any]) -> None:
            nonlocal removed
            if "tags" not in frontmatter:
                return
            tags = _tag_list(frontmatter["tags"])
            if tag in tags:
                tags.remove(tag)
                removed = True
            if tags:
                frontmatter["tags"] = tags
            else:
                del frontmatter["tags"]

        await self.documents.read_write_frontmatter(path, mutate)
        if removed:
            return ToolResult(True, f'Removed tag "{tag}" from "{path}".')
        return ToolResult(True, f'Tag "{tag}" was not found in "{path}".')

    async def _update_frontmatter(self, args: dict[str, Any]) -> ToolResult:
        reference = _string_arg(args, "path")
        prop = _string_arg(args, "property").strip()
        if not prop:
            raise ToolExecutionError("Property name must not be empty")
        value = _parse_value(args.get("value"))
        path = await self.find_file(reference)
        if path is None:
            return ToolResult(False, f'Note "{reference}" not found.')

        def mutate(frontmatter: dict[str, Any]) -> None:
            frontmatter[prop] = value

        await self.documents.read_write_frontmatter(path, mutate)
        return ToolResult(True, f'Updated property "{prop}" in "{path}".')

    # Internal helpers -------------------------------------------------

    def _required_path(self, args: dict[str, Any], key: str) -> str:
        path = self.sanitize(_string_arg(args, key))
        if not path:
            raise ToolExecutionError(f'Argument "{key}" must not be empty')
        return path

    async def _is_note(self, path: str) -> bool:
        return await self.documents.exists(path) and not await self.documents.is_folder(path)


def _relative_to_root(raw: str, path: str, root: Path | None) -> str:
    if root is not None:
        try:
            return Path(path).resolve().relative_to(root).as_posix()
        except ValueError:
            pass
    raise PathSafetyError(f'Invalid path: "{raw}" attempts to access files outside the notes folder')


def _string_arg(args: dict[str, Any], key: str, default: str = "") -> str:
    value = args.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ToolExecutionError(f'Argument "{key}" must be a string, got {type(value).__name__}')
    return value


def _parse_value(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return orjson.loads(value)
    except orjson.JSONDecodeError:
        return value


def _tag_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


def _strip_suffix(path: str) -> str:
    return path[: -len(DOCUMENT_SUFFIX)] if path.lower().endswith(DOCUMENT_SUFFIX) else path


def _note_filename(name: str) -> str:
    return _strip_suffix(name) + DOCUMENT_SUFFIX


__all__ = ["ToolExecutor", "sanitize_path", "coerce_bool", "SEARCH_RESULT_LIMIT"]
