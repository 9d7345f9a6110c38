"""Editing-surface abstractions: documents and cursor positions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

_LINE_SPLIT_RE = re.compile(r"\r?\n")


def split_lines(text: str) -> list[str]:
    """Split on ``\\n`` or ``\\r\\n``; an empty string yields one empty line."""
    return _LINE_SPLIT_RE.split(text)


@dataclass(frozen=True)
class Position:
    """Zero-based cursor position."""

    line: int
    character: int


@runtime_checkable
class Document(Protocol):
    """What the core needs to know about an open document."""

    @property
    def source_id(self) -> str: ...

    @property
    def line_count(self) -> int: ...

    @property
    def is_dirty(self) -> bool: ...

    def line_at(self, index: int) -> str: ...


class TextDocument:
    """In-memory document used by the HTTP service and tests."""

    def __init__(self, text: str, source_id: str = "", *, is_dirty: bool = False) -> None:
        self._lines = split_lines(text)
        self._source_id = source_id
        self._is_dirty = is_dirty

    @classmethod
    def from_lines(cls, lines: list[str], source_id: str = "", *, is_dirty: bool = False) -> TextDocument:
        return cls("\n".join(lines), source_id, is_dirty=is_dirty)

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def line_count(self) -> int:
        return len(self._lines)

    @property
    def is_dirty(self) -> bool:
        return self._is_dirty

    def line_at(self, index: int) -> str:
        return self._lines[index]

    def text(self) -> str:
        return "\n".join(self._lines)


def document_lines(document: Document, start: int, end: int) -> list[str]:
    """Return lines ``start..end`` inclusive; an inverted range yields nothing."""
    return [document.line_at(i) for i in range(start, end + 1)]


def lines_before(document: Document, position: Position, count: int) -> list[str]:
    """Up to ``count`` lines preceding the cursor line."""
    start = max(0, position.line - count)
    return [document.line_at(i) for i in range(start, position.line)]


def lines_after(document: Document, position: Position, count: int) -> list[str]:
    """Up to ``count`` lines following the cursor line."""
    end = min(document.line_count - 1, position.line + count)
    return [document.line_at(i) for i in range(position.line + 1, end + 1)]
