"""Document store backing indexing and tool execution."""

from __future__ import annotations

import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Protocol

import yaml

from hearth.core.errors import ParseError, PathSafetyError
from hearth.core.logging import get_logger
from hearth.utils.time import now_ms

logger = get_logger(__name__)

DOCUMENT_SUFFIX = ".md"
TRASH_DIR = ".trash"

_FRONTMATTER_BLOCK_RE = re.compile(r"\A---[ \t]*\n(?:---|(.*?)\n---)[ \t]*(?:\n|\Z)", re.DOTALL)

FrontmatterMutator = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class FolderEntry:
    path: str
    is_folder: bool


class DocumentStore(Protocol):
    """Collaborator interface the core uses for every storage access.

    Paths are corpus-relative POSIX strings such as ``Projects/plan.md``.
    """

    async def read_text(self, path: str) -> str: ...

    async def list_documents(self) -> list[str]: ...

    async def create(self, path: str, content: str) -> None: ...

    async def write_text(self, path: str, content: str) -> None: ...

    async def move(self, path: str, new_path: str) -> None: ...

    async def trash(self, path: str) -> None: ...

    async def append_text(self, path: str, content: str) -> None: ...

    async def prepend_text(self, path: str, content: str) -> None: ...

    async def read_write_frontmatter(self, path: str, mutator: FrontmatterMutator) -> dict[str, Any]: ...

    async def get_modified_time(self, path: str) -> int: ...

    async def exists(self, path: str) -> bool: ...

    async def is_folder(self, path: str) -> bool: ...

    async def create_folder(self, path: str) -> None: ...

    async def delete_folder(self, path: str) -> None: ...

    async def list_folder(self, path: str, recursive: bool = False) -> list[FolderEntry]: ...

    async def list_folders(self) -> list[str]: ...


class FileSystemDocumentStore:
    """Markdown files under a root directory; deletes go to ``.trash/``."""

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser().resolve()

    def resolve(self, path: str) -> Path:
        """Absolute location of `path`, refusing anything outside the root."""
        target = (self.root / path.strip("/")).resolve()
        if target != self.root and not target.is_relative_to(self.root):
            raise PathSafetyError(f'Path "{path}" resolves outside the notes folder')
        return target

    def relative(self, absolute: Path) -> str | None:
        """Corpus-relative form of `absolute`, or None when outside the root."""
        try:
            return absolute.expanduser().resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None

    async def read_text(self, path: str) -> str:
        return self.resolve(path).read_text(encoding="utf-8")

    async def list_documents(self) -> list[str]:
        if not self.root.exists():
            return []
        documents = [
            file.relative_to(self.root).as_posix()
            for file in self.root.rglob(f"*{DOCUMENT_SUFFIX}")
            if file.is_file() and not _is_hidden(file.relative_to(self.root))
        ]
        return sorted(documents)

    async def create(self, path: str, content: str) -> None:
        target = self.resolve(path)
        if target.exists():
            raise FileExistsError(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    async def write_text(self, path: str, content: str) -> None:
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    async def move(self, path: str, new_path: str) -> None:
        source = self.resolve(path)
        destination = self.resolve(new_path)
        if not source.exists():
            raise FileNotFoundError(path)
        if destination.exists():
            raise FileExistsError(new_path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        source.rename(destination)

    async def trash(self, path: str) -> None:
        source = self.resolve(path)
        if not source.exists():
            raise FileNotFoundError(path)
        destination = self.root / TRASH_DIR / source.relative_to(self.root)
        if destination.exists():
            destination = destination.with_name(f"{destination.stem}-{now_ms()}{destination.suffix}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(os.fspath(source), os.fspath(destination))
        logger.info("Moved %s to trash", path)

    async def append_text(self, path: str, content: str) -> None:
        target = self.resolve(path)
        existing = target.read_text(encoding="utf-8")
        target.write_text(existing + content, encoding="utf-8")

    async def prepend_text(self, path: str, content: str) -> None:
        """Insert `content` at the top of the body, after any frontmatter block."""
        target = self.resolve(path)
        existing = target.read_text(encoding="utf-8")
        match = _FRONTMATTER_BLOCK_RE.match(existing)
        if match:
            head, body = existing[: match.end()], existing[match.end() :]
            if not head.endswith("\n"):
                head += "\n"
            target.write_text(head + content + body, encoding="utf-8")
        else:
            target.write_text(content + existing, encoding="utf-8")

    async def read_write_frontmatter(self, path: str, mutator: FrontmatterMutator) -> dict[str, Any]:
        target = self.resolve(path)
        text = target.read_text(encoding="utf-8")
        frontmatter, body = split_frontmatter(text, source=path)
        mutator(frontmatter)
        target.write_text(render_frontmatter(frontmatter) + body, encoding="utf-8")
        return frontmatter

    async def get_modified_time(self, path: str) -> int:
        return int(self.resolve(path).stat().st_mtime * 1000)

    async def exists(self, path: str) -> bool:
        return self.resolve(path).exists()

    async def is_folder(self, path: str) -> bool:
        return self.resolve(path).is_dir()

    async def create_folder(self, path: str) -> None:
        self.resolve(path).mkdir(parents=True, exist_ok=True)

    async def delete_folder(self, path: str) -> None:
        """Move a folder and everything under it to the trash."""
        folder = self.resolve(path)
        if folder == self.root:
            raise PathSafetyError("Refusing to delete the notes folder itself")
        if not folder.is_dir():
            raise NotADirectoryError(path)
        await self.trash(path)

    async def list_folder(self, path: str, recursive: bool = False) -> list[FolderEntry]:
        folder = self.resolve(path)
        if not folder.is_dir():
            raise NotADirectoryError(path)
        children = folder.rglob("*") if recursive else folder.iterdir()
        entries = [
            FolderEntry(path=child.relative_to(self.root).as_posix(), is_folder=child.is_dir())
            for child in children
            if not _is_hidden(child.relative_to(self.root))
        ]
        return sorted(entries, key=lambda entry: (not entry.is_folder, entry.path.lower()))

    async def list_folders(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(
            child.relative_to(self.root).as_posix()
            for child in self.root.rglob("*")
            if child.is_dir() and not _is_hidden(child.relative_to(self.root))
        )


def split_frontmatter(text: str, source: str = "<text>") -> tuple[dict[str, Any], str]:
    """Parse a leading YAML block; returns ({}, text) when there is none."""
    match = _FRONTMATTER_BLOCK_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1) or "") or {}
    except yaml.YAMLError as exc:
        raise ParseError(f"Invalid frontmatter in {source}: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError(f"Frontmatter in {source} is not a mapping")
    return data, text[match.end() :]


def render_frontmatter(frontmatter: dict[str, Any]) -> str:
    if not frontmatter:
        return ""
    dumped = yaml.safe_dump(frontmatter, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{dumped}---\n"


def _is_hidden(relative: Path | PurePosixPath) -> bool:
    return any(part.startswith(".") for part in relative.parts)


__all__ = [
    "DocumentStore",
    "FileSystemDocumentStore",
    "FolderEntry",
    "split_frontmatter",
    "render_frontmatter",
    "DOCUMENT_SUFFIX",
    "TRASH_DIR",
]
