"""Chunking utilities."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

from hearth.ingest.types import Chunk

_HEADER_RE = re.compile(r"^#{1,6}[ \t]+.+$", re.MULTILINE)
_LEADING_FRONTMATTER_RE = re.compile(r"^---[ \t]*\n(?:---|[\s\S]*?\n---)[ \t]*(?:\n|$)")
_FRONTMATTER_RE = re.compile(r"^---[ \t]*\n(?:---|([\s\S]*?)\n---)[ \t]*(?:\n|$)")
_CODE_FENCE_RE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")
_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\([^)]+\)")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_TAG_RE = re.compile(r"<[^>\n]+>")
_SPACES_RE = re.compile(r"[ \t\f\v]+")
_TRAILING_SPACE_RE = re.compile(r" +\n")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_SENTENCE_BREAKS = (". ", "! ", "? ", ".\n", "!\n", "?\n")

CODE_BLOCK_PLACEHOLDER = "[code block]"


@dataclass(slots=True)
class Section:
    header: str
    content: str
    offset: int


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    overlap: int = 200,
    respect_headers: bool = True,
    min_chunk_size: int = 100,
) -> list[Chunk]:
    """Split text into overlapping chunks snapped to natural boundaries.

    The text is cleaned first; offsets refer to the cleaned text. When
    `respect_headers` is set each heading section is chunked on its own and
    the heading line is prefixed to every chunk it produced.
    """
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")
    if not text or not text.strip():
        return []

    cleaned = clean_text(text)
    if not cleaned:
        return []
    if len(cleaned) <= chunk_size:
        return [Chunk(content=cleaned, start_offset=0, end_offset=len(cleaned), sequence_index=0)]

    sections = split_sections(cleaned) if respect_headers else [Section(header="", content=cleaned, offset=0)]
    chunks: list[Chunk] = []
    for section in sections:
        for start, end, content in _chunk_section(section.content, chunk_size, overlap, min_chunk_size):
            chunks.append(
                Chunk(
                    content=f"{section.header}\n\n{content}" if section.header else content,
                    start_offset=section.offset + start,
                    end_offset=section.offset + end,
                    sequence_index=len(chunks),
                )
            )
    return chunks


def split_sections(text: str) -> list[Section]:
    """Partition text on heading lines; each section remembers its heading."""
    sections: list[Section] = []
    header = ""
    last_end = 0
    for match in _HEADER_RE.finditer(text):
        _append_section(sections, text, header, last_end, match.start())
        header = match.group(0).strip()
        last_end = match.end()
    _append_section(sections, text, header, last_end, len(text))
    if not sections:
        sections.append(Section(header="", content=text, offset=0))
    return sections


def clean_text(text: str) -> str:
    """Strip markup noise before embedding. Not reversible."""
    cleaned = text.replace("\r\n", "\n")
    cleaned = _LEADING_FRONTMATTER_RE.sub("", cleaned, count=1)
    cleaned = _CODE_FENCE_RE.sub(CODE_BLOCK_PLACEHOLDER, cleaned)
    cleaned = _INLINE_CODE_RE.sub(r"\1", cleaned)
    cleaned = _IMAGE_RE.sub(r"\1", cleaned)
    cleaned = _LINK_RE.sub(r"\1", cleaned)
    cleaned = _TAG_RE.sub("", cleaned)
    cleaned = _SPACES_RE.sub(" ", cleaned)
    cleaned = _TRAILING_SPACE_RE.sub("\n", cleaned)
    cleaned = _BLANK_LINES_RE.sub("\n\n", cleaned)
    return cleaned.strip()


def extract_frontmatter(text: str) -> dict[str, Any] | None:
    """Best-effort parse of a leading `---` key: value block; None if absent."""
    match = _FRONTMATTER_RE.match(text.replace("\r\n", "\n"))
    if not match:
        return None
    result: dict[str, Any] = {}
    for line in (match.group(1) or "").split("\n"):
        key, sep, raw_value = line.partition(":")
        key = key.strip()
        value = raw_value.strip()
        if not sep or not key or not value:
            continue
        result[key] = _coerce_scalar(value)
    return result


# Internal helpers -------------------------------------------------


def _append_section(sections: list[Section], text: str, header: str, start: int, end: int) -> None:
    raw = text[start:end]
    content = raw.strip()
    if not content:
        return
    offset = start + (len(raw) - len(raw.lstrip()))
    sections.append(Section(header=header, content=content, offset=offset))


def _chunk_section(text: str, chunk_size: int, overlap: int, min_chunk_size: int) -> list[list[Any]]:
    if len(text) <= chunk_size:
        return [[0, len(text), text]]

    spans: list[list[Any]] = []
    start = 0
    length = len(text)
    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            candidate = _find_break_point(text, start, end)
            if candidate > start + min_chunk_size:
                end = candidate

        content = text[start:end].strip()
        if content and (len(content) >= min_chunk_size or not spans):
            spans.append([start, end, content])
        elif spans:
            previous = spans[-1]
            previous[1] = end
            previous[2] = text[previous[0] : end].strip()

        if end >= length:
            break
        next_start = end - overlap
        # Overlap must never stall the window.
        start = next_start if next_start > start else end
    return spans


def _find_break_point(text: str, start: int, max_end: int) -> int:
    window = text[start:max_end]

    paragraph = window.rfind("\n\n")
    if paragraph > 0:
        return start + paragraph + 2

    sentence = max(window.rfind(marker) for marker in _SENTENCE_BREAKS)
    if sentence > 0:
        return start + sentence + 2

    newline = window.rfind("\n")
    if newline > 0:
        return start + newline + 1

    space = window.rfind(" ")
    if space > 0:
        return start + space + 1

    return max_end


def _coerce_scalar(value: str) -> Any:
    if value == "true":
        return True
    if value == "false":
        return False
    if value.startswith("[") and value.endswith("]"):
        inner = value[1:-1].strip()
        if not inner:
            return []
        return [_unquote(item.strip()) for item in inner.split(",")]
    try:
        return int(value)
    except ValueError:
        pass
    try:
        number = float(value)
    except ValueError:
        return _unquote(value)
    return number if math.isfinite(number) else value


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


__all__ = ["chunk_text", "clean_text", "extract_frontmatter", "split_sections", "Section", "CODE_BLOCK_PLACEHOLDER"]
