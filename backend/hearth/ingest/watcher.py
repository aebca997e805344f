"""Filesystem watcher that feeds corpus changes into the indexing queue."""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from hearth.core.logging import get_logger
from hearth.ingest.documents import DOCUMENT_SUFFIX

logger = get_logger(__name__)

# (kind, path, dest_path) with corpus-relative paths; kind is created/modified/deleted/moved.
FileEventCallback = Callable[[str, str, "str | None"], None]


class CorpusEventHandler(PatternMatchingEventHandler):
    """Translate watchdog events into corpus-relative callbacks on the event loop."""

    def __init__(self, root: Path, loop: asyncio.AbstractEventLoop, callback: FileEventCallback) -> None:
        super().__init__(
            patterns=[f"*{DOCUMENT_SUFFIX}"],
            ignore_patterns=["*/.*/*"],
            ignore_directories=True,
            case_sensitive=False,
        )
        self.root = root
        self.loop = loop
        self.callback = callback

    def on_created(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self._dispatch("created", event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self._dispatch("modified", event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self._dispatch("deleted", event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self._dispatch("moved", event.src_path, event.dest_path)

    def _dispatch(self, kind: str, src: str | bytes, dest: str | bytes | None = None) -> None:
        path = self._relative(src)
        if path is None:
            return
        dest_path = self._relative(dest) if dest is not None else None
        self.loop.call_soon_threadsafe(self.callback, kind, path, dest_path)

    def _relative(self, raw: str | bytes) -> str | None:
        text = raw.decode() if isinstance(raw, bytes) else raw
        try:
            return Path(text).resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None


class Watcher:
    """High-level wrapper around a watchdog observer for one corpus root."""

    def __init__(self, root: Path, callback: FileEventCallback) -> None:
        self.root = root.expanduser().resolve()
        self.callback = callback
        self._observer: BaseObserver | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        with self._lock:
            if self._observer is not None:
                return
            handler = CorpusEventHandler(self.root, loop or asyncio.get_running_loop(), self.callback)
            observer = Observer()
            observer.schedule(handler, str(self.root), recursive=True)
            observer.start()
            self._observer = observer
        logger.info("Watching %s for changes", self.root)

    def stop(self) -> None:
        with self._lock:
            if self._observer is None:
                return
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


__all__ = ["Watcher", "CorpusEventHandler", "FileEventCallback"]
