"""Bounded, deduplicated store of recently seen code used as extra context.

New chunks land in a pending queue and are promoted one at a time into the
active ring on a timer, so the context sent with requests changes slowly and
the inference server can re-prime its prompt cache between requests.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterable

from infill.background import BackgroundExecutor
from infill.core.config import InfillConfig
from infill.core.document import Document, Position, document_lines, split_lines
from infill.core.types import ContextChunk

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.9
MIN_CHUNK_LINES = 3

Primer = Callable[[list[ContextChunk]], Awaitable[None]]


def jaccard_similarity(lines_a: Iterable[str], lines_b: Iterable[str]) -> float:
    """Intersection over union of two sets of lines; two empty sets score 1."""
    set_a = set(lines_a)
    set_b = set(lines_b)
    if not set_a and not set_b:
        return 1.0
    return len(set_a & set_b) / len(set_a | set_b)


class ContextWindowManager:
    """Owns the active ring and the pending queue of context chunks."""

    def __init__(
        self,
        cfg: InfillConfig,
        *,
        primer: Primer | None = None,
        executor: BackgroundExecutor | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cfg = cfg
        self._primer = primer
        self._executor = executor
        self._rng = rng or random.Random()
        self._clock = clock
        self._lock = threading.Lock()
        self._ring: deque[ContextChunk] = deque()
        self._queue: deque[ContextChunk] = deque()
        self.evictions = 0
        self.last_request_started_at = clock()
        self.last_pick_line = -9999

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def ring_capacity(self) -> int:
        return self._cfg.ring_n_chunks

    @property
    def queue_capacity(self) -> int:
        return self._cfg.max_queued_chunks

    def reconfigure(self, cfg: InfillConfig) -> None:
        """Apply new limits, trimming the ring and queue to fit."""
        with self._lock:
            self._cfg = cfg
            while len(self._ring) > max(0, cfg.ring_n_chunks):
                self._ring.popleft()
            while len(self._queue) > cfg.max_queued_chunks:
                self._queue.popleft()

    def mark_request_started(self) -> None:
        self.last_request_started_at = self._clock()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def active_chunks(self) -> list[ContextChunk]:
        with self._lock:
            return list(self._ring)

    def queued_chunks(self) -> list[ContextChunk]:
        with self._lock:
            return list(self._queue)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "active": len(self._ring),
                "ring_capacity": self.ring_capacity,
                "queued": len(self._queue),
                "queue_capacity": self.queue_capacity,
                "evictions": self.evictions,
            }

    # ------------------------------------------------------------------
    # Chunk selection
    # ------------------------------------------------------------------

    def _window(self, lines: list[str]) -> list[str]:
        chunk_size = self._cfg.ring_chunk_size
        if len(lines) + 1 < chunk_size:
            return list(lines)
        half = chunk_size // 2
        start = self._rng.randint(0, max(0, len(lines) - half))
        return list(lines[start:min(start + half, len(lines))])

    def select_chunk(
        self,
        lines: list[str],
        allow_mutable_source: bool,
        deduplicate: bool,
        source: Document,
    ) -> ContextChunk | None:
        """Queue a chunk built from ``lines``; returns it, or ``None`` if rejected."""
        if not allow_mutable_source and source.is_dirty:
            return None
        if self.ring_capacity <= 0:
            return None
        if len(lines) < MIN_CHUNK_LINES:
            return None

        chunk = ContextChunk.from_lines(self._window(lines), source.source_id)

        with self._lock:
            if deduplicate:
                if any(c.text == chunk.text for c in self._ring) or any(
                    c.text == chunk.text for c in self._queue
                ):
                    return None
                self._ring = self._drop_similar(self._ring, chunk)
                self._queue = self._drop_similar(self._queue, chunk)

            while len(self._queue) >= self.queue_capacity:
                self._queue.popleft()
            self._queue.append(chunk)
            queued = len(self._queue)
        logger.debug("Queued %d-line chunk from %r (queued=%d)", len(chunk.lines), chunk.source_id, queued)
        return chunk

    def _drop_similar(self, chunks: deque[ContextChunk], new: ContextChunk) -> deque[ContextChunk]:
        kept: deque[ContextChunk] = deque()
        for existing in chunks:
            if jaccard_similarity(existing.lines, new.lines) > SIMILARITY_THRESHOLD:
                self.evictions += 1
            else:
                kept.append(existing)
        return kept

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def promote(self) -> bool:
        """Move the oldest queued chunk into the ring; returns whether one moved."""
        settle_s = self._cfg.ring_update_min_time_last_compl / 1000
        with self._lock:
            if not self._queue:
                return False
            if self._clock() - self.last_request_started_at < settle_s:
                return False
            self._ring.append(self._queue.popleft())
            while len(self._ring) > max(0, self.ring_capacity):
                self._ring.popleft()
            snapshot = list(self._ring)
        logger.debug("Promoted chunk (active=%d)", len(snapshot))
        self._prime(snapshot)
        return True

    def _prime(self, chunks: list[ContextChunk]) -> None:
        if self._primer is None or self._executor is None:
            return
        primer = self._primer
        self._executor.submit(lambda: primer(chunks), name="prime")

    # ------------------------------------------------------------------
    # Collection from documents
    # ------------------------------------------------------------------

    def collect_around_cursor(self, line: int, source: Document) -> ContextChunk | None:
        """Capture ``ring_chunk_size`` lines centred on ``line``."""
        half = self._cfg.ring_chunk_size // 2
        lines = document_lines(
            source,
            max(0, line - half),
            min(line + half, source.line_count - 1),
        )
        return self.select_chunk(lines, True, True, source)

    def collect_surrounding_cursor(
        self, position: Position, source: Document, beyond_distance: int | None = None,
    ) -> bool:
        """Capture context above and below the local prefix/suffix windows.

        Only fires once the cursor has moved more than ``beyond_distance``
        lines from the previous collection point.
        """
        if beyond_distance is None:
            beyond_distance = self._cfg.max_last_pick_line_distance
        if abs(position.line - self.last_pick_line) <= beyond_distance:
            return False

        cfg = self._cfg
        last = source.line_count - 1
        before = document_lines(
            source,
            max(0, position.line - cfg.ring_scope),
            max(0, position.line - cfg.n_prefix),
        )
        self.select_chunk(before, True, False, source)
        after = document_lines(
            source,
            min(last, position.line + cfg.n_suffix),
            min(last, position.line + cfg.n_suffix + cfg.ring_chunk_size),
        )
        self.select_chunk(after, True, False, source)
        self.last_pick_line = position.line
        return True

    def on_document_saved(self, source: Document, cursor_line: int | None = None) -> ContextChunk | None:
        """Capture context after a save; the whole file unless it is the active editor."""
        if cursor_line is not None:
            return self.collect_around_cursor(cursor_line, source)
        lines = document_lines(source, 0, source.line_count - 1)
        return self.select_chunk(lines, False, True, source)

    def on_clipboard(self, text: str, source: Document) -> ContextChunk | None:
        """Capture copied or cut text."""
        return self.select_chunk(split_lines(text), True, True, source)

    def on_active_editor_changed(
        self,
        previous: tuple[Document, int] | None,
        current: tuple[Document, int] | None,
    ) -> None:
        """Capture around the cursor of both the editor left and the one entered."""
        for entry in (previous, current):
            if entry is not None:
                document, line = entry
                self.collect_around_cursor(line, document)
