"""Tests for the context window manager (active ring + pending queue)."""

from __future__ import annotations

import asyncio
import random

import pytest

from infill.background import BackgroundExecutor
from infill.context import ContextWindowManager, jaccard_similarity
from infill.core.config import InfillConfig
from infill.core.document import Position, TextDocument
from infill.core.types import ContextChunk


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _doc(n: int, *, source_id: str = "file.py", is_dirty: bool = False, tag: str = "line") -> TextDocument:
    return TextDocument.from_lines([f"{tag} {i}" for i in range(n)], source_id, is_dirty=is_dirty)


def _lines(tag: str, n: int) -> list[str]:
    return [f"{tag} {i}" for i in range(n)]


@pytest.fixture()
def clean() -> TextDocument:
    return _doc(1, source_id="clean.py")


def _manager(**overrides) -> ContextWindowManager:
    base = {
        "ring_n_chunks": 2,
        "max_queued_chunks": 3,
        "ring_chunk_size": 64,
        "ring_update_min_time_last_compl": 0,
    }
    base.update(overrides)
    return ContextWindowManager(InfillConfig(**base), rng=random.Random(0))


# ---------------------------------------------------------------------------
# ContextChunk
# ---------------------------------------------------------------------------


class TestContextChunk:
    def test_lines_derived_from_text(self):
        assert ContextChunk(text="a\nb\nc\n").lines == ("a", "b", "c")

    def test_from_lines_keeps_text_and_lines_together(self):
        chunk = ContextChunk.from_lines(["x = 1", "", "y = 2"], "f.py")
        assert chunk.text == "x = 1\n\ny = 2\n"
        assert chunk.lines == ("x = 1", "", "y = 2")

    def test_lines_not_serialized(self):
        assert "lines" not in ContextChunk(text="a\n").model_dump()

    def test_text_only_chunks_are_not_near_duplicates(self, clean):
        mgr = _manager()
        mgr.select_chunk(_lines("a", 4), True, True, clean)
        other = ContextChunk(text="b 0\nb 1\nb 2\nb 3\n")
        assert jaccard_similarity(mgr.queued_chunks()[0].lines, other.lines) == 0.0


# ---------------------------------------------------------------------------
# Jaccard similarity
# ---------------------------------------------------------------------------


class TestJaccard:
    def test_identical(self):
        assert jaccard_similarity(["a", "b"], ["a", "b"]) == 1.0

    def test_disjoint(self):
        assert jaccard_similarity(["a"], ["b"]) == 0.0

    def test_both_empty(self):
        assert jaccard_similarity([], []) == 1.0

    def test_one_empty(self):
        assert jaccard_similarity([], ["a"]) == 0.0

    def test_symmetric_and_bounded(self):
        a, b = ["x", "y", "z"], ["y", "z", "w", "v"]
        ab, ba = jaccard_similarity(a, b), jaccard_similarity(b, a)
        assert ab == ba == pytest.approx(2 / 5)
        assert 0.0 <= ab <= 1.0

    def test_set_semantics_ignore_repeats_and_order(self):
        assert jaccard_similarity(["a", "a", "b"], ["b", "a"]) == 1.0


# ---------------------------------------------------------------------------
# select_chunk
# ---------------------------------------------------------------------------


class TestSelectChunkRejections:
    def test_fewer_than_three_lines(self, clean):
        mgr = _manager()
        assert mgr.select_chunk(["a", "b"], True, True, clean) is None
        assert mgr.queued_chunks() == []
        assert mgr.active_chunks() == []

    def test_dirty_source_when_mutation_not_allowed(self):
        mgr = _manager()
        dirty = _doc(1, is_dirty=True)
        assert mgr.select_chunk(_lines("a", 5), False, True, dirty) is None
        assert mgr.select_chunk(_lines("a", 5), True, True, dirty) is not None

    def test_zero_ring_capacity(self, clean):
        mgr = _manager(ring_n_chunks=0)
        assert mgr.select_chunk(_lines("a", 5), True, True, clean) is None
        assert mgr.queued_chunks() == []


class TestSelectChunkSizing:
    def test_small_input_used_whole(self, clean):
        mgr = _manager(ring_chunk_size=8)
        chunk = mgr.select_chunk(_lines("a", 5), True, True, clean)
        assert chunk is not None
        assert chunk.text == "a 0\na 1\na 2\na 3\na 4\n"
        assert chunk.lines == tuple(_lines("a", 5))
        assert chunk.source_id == "clean.py"

    def test_large_input_sampled_with_injected_rng(self, clean):
        lines = _lines("a", 20)
        mgr = ContextWindowManager(
            InfillConfig(ring_chunk_size=8, ring_n_chunks=2), rng=random.Random(7),
        )
        chunk = mgr.select_chunk(lines, True, True, clean)
        start = random.Random(7).randint(0, 20 - 4)
        assert chunk is not None
        assert list(chunk.lines) == lines[start:start + 4]
        assert chunk.text == "\n".join(lines[start:start + 4]) + "\n"

    def test_boundary_one_below_chunk_size_is_sampled(self, clean):
        mgr = _manager(ring_chunk_size=8)
        chunk = mgr.select_chunk(_lines("a", 7), True, True, clean)
        assert chunk is not None
        assert len(chunk.lines) == 4


class TestDeduplication:
    def test_exact_duplicate_rejected(self, clean):
        mgr = _manager()
        assert mgr.select_chunk(_lines("a", 5), True, True, clean) is not None
        assert mgr.select_chunk(_lines("a", 5), True, True, clean) is None
        assert len(mgr.queued_chunks()) == 1

    def test_exact_duplicate_of_active_chunk_rejected(self, clean):
        mgr = _manager()
        mgr.select_chunk(_lines("a", 5), True, True, clean)
        assert mgr.promote() is True
        assert mgr.select_chunk(_lines("a", 5), True, True, clean) is None

    def test_duplicates_allowed_without_dedup(self, clean):
        mgr = _manager()
        mgr.select_chunk(_lines("a", 5), True, False, clean)
        mgr.select_chunk(_lines("a", 5), True, False, clean)
        assert len(mgr.queued_chunks()) == 2

    def test_near_duplicate_replaced(self, clean):
        mgr = _manager()
        base = _lines("a", 10)
        mgr.select_chunk(base, True, True, clean)
        mgr.select_chunk(base + ["extra"], True, True, clean)
        queued = mgr.queued_chunks()
        assert len(queued) == 1
        assert queued[0].lines[-1] == "extra"
        assert mgr.evictions == 1

    def test_near_duplicate_removed_from_ring_and_queue(self, clean):
        mgr = _manager(max_queued_chunks=4)
        base = _lines("a", 20)
        mgr.select_chunk(base, True, True, clean)
        mgr.promote()
        mgr.select_chunk(base + ["q"], True, False, clean)
        mgr.select_chunk(base + ["r"], True, True, clean)
        assert mgr.active_chunks() == []
        assert [c.lines[-1] for c in mgr.queued_chunks()] == ["r"]
        assert mgr.evictions == 2

    def test_threshold_is_strict(self, clean):
        mgr = _manager()
        base = _lines("a", 9)
        mgr.select_chunk(base, True, True, clean)
        mgr.select_chunk(base + ["b"], True, True, clean)
        assert len(mgr.queued_chunks()) == 2
        assert mgr.evictions == 0

    def test_dissimilar_chunks_kept(self, clean):
        mgr = _manager()
        mgr.select_chunk(_lines("a", 5), True, True, clean)
        mgr.select_chunk(_lines("b", 5), True, True, clean)
        assert len(mgr.queued_chunks()) == 2


class TestQueueBound:
    def test_oldest_dropped_on_overflow(self, clean):
        mgr = _manager(max_queued_chunks=3)
        for tag in "abcde":
            mgr.select_chunk(_lines(tag, 4), True, True, clean)
        assert len(mgr.queued_chunks()) == 3
        assert [c.lines[0] for c in mgr.queued_chunks()] == ["c 0", "d 0", "e 0"]

    def test_queue_never_exceeds_capacity(self, clean):
        mgr = _manager(max_queued_chunks=2)
        for i in range(25):
            mgr.select_chunk(_lines(f"t{i}", 3), True, i % 2 == 0, clean)
            assert len(mgr.queued_chunks()) <= 2


# ---------------------------------------------------------------------------
# Promotion
# ---------------------------------------------------------------------------


class TestPromote:
    def test_empty_queue_is_noop(self):
        mgr = _manager()
        assert mgr.promote() is False
        assert mgr.active_chunks() == []

    def test_waits_for_settle_time(self, clean):
        clock = FakeClock(0.0)
        mgr = ContextWindowManager(
            InfillConfig(ring_update_min_time_last_compl=3000), clock=clock,
        )
        mgr.select_chunk(_lines("a", 4), True, True, clean)
        mgr.mark_request_started()
        clock.now = 1.0
        assert mgr.promote() is False
        clock.now = 3.5
        assert mgr.promote() is True
        assert len(mgr.active_chunks()) == 1
        assert mgr.queued_chunks() == []

    def test_moves_oldest_first(self, clean):
        mgr = _manager()
        mgr.select_chunk(_lines("a", 4), True, True, clean)
        mgr.select_chunk(_lines("b", 4), True, True, clean)
        mgr.promote()
        assert [c.lines[0] for c in mgr.active_chunks()] == ["a 0"]
        assert [c.lines[0] for c in mgr.queued_chunks()] == ["b 0"]

    def test_ring_bounded_evicting_oldest(self, clean):
        mgr = _manager(ring_n_chunks=2, max_queued_chunks=5)
        for tag in "abcde":
            mgr.select_chunk(_lines(tag, 4), True, True, clean)
        for _ in range(5):
            mgr.promote()
            assert len(mgr.active_chunks()) <= 2
        assert [c.lines[0] for c in mgr.active_chunks()] == ["d 0", "e 0"]

    def test_primes_with_ring_snapshot(self, clean, make_client):
        client = make_client()

        async def _run():
            executor = BackgroundExecutor()
            mgr = ContextWindowManager(
                InfillConfig(ring_update_min_time_last_compl=0),
                primer=client.prime,
                executor=executor,
            )
            mgr.select_chunk(_lines("a", 4), True, True, clean)
            mgr.promote()
            await executor.drain()
            return mgr

        mgr = asyncio.run(_run())
        assert client.primed == [mgr.active_chunks()]

    def test_priming_failure_is_swallowed(self, clean):
        async def _failing(chunks):
            raise ConnectionError("down")

        async def _run():
            executor = BackgroundExecutor()
            mgr = ContextWindowManager(
                InfillConfig(ring_update_min_time_last_compl=0),
                primer=_failing,
                executor=executor,
            )
            mgr.select_chunk(_lines("a", 4), True, True, clean)
            assert mgr.promote() is True
            await executor.drain()
            return executor

        executor = asyncio.run(_run())
        assert executor.failures == 1


# ---------------------------------------------------------------------------
# Collection from documents
# ---------------------------------------------------------------------------


class TestCollect:
    def test_around_cursor_window(self):
        mgr = ContextWindowManager(InfillConfig(ring_chunk_size=8), rng=random.Random(3))
        doc = _doc(100)
        chunk = mgr.collect_around_cursor(50, doc)
        assert chunk is not None
        assert len(chunk.lines) == 4
        assert set(chunk.lines) <= {f"line {i}" for i in range(46, 55)}

    def test_around_cursor_clamped_at_document_start(self):
        mgr = ContextWindowManager(InfillConfig(ring_chunk_size=64))
        doc = _doc(10)
        chunk = mgr.collect_around_cursor(0, doc)
        assert chunk is not None
        assert chunk.lines == tuple(f"line {i}" for i in range(10))

    def test_around_cursor_allows_dirty_source(self):
        mgr = _manager()
        assert mgr.collect_around_cursor(2, _doc(6, is_dirty=True)) is not None

    def test_surrounding_cursor_collects_before_and_after(self):
        cfg = InfillConfig(
            ring_scope=20, n_prefix=5, n_suffix=3, ring_chunk_size=64,
            max_last_pick_line_distance=4, max_queued_chunks=8,
        )
        mgr = ContextWindowManager(cfg)
        doc = _doc(100, is_dirty=True)
        assert mgr.collect_surrounding_cursor(Position(50, 0), doc) is True
        before, after = mgr.queued_chunks()
        assert before.lines == tuple(f"line {i}" for i in range(30, 46))
        assert after.lines == tuple(f"line {i}" for i in range(53, 100))
        assert mgr.last_pick_line == 50

    def test_surrounding_cursor_requires_distance(self):
        cfg = InfillConfig(max_last_pick_line_distance=4, n_prefix=2, n_suffix=2, ring_scope=10)
        mgr = ContextWindowManager(cfg)
        doc = _doc(40)
        assert mgr.collect_surrounding_cursor(Position(20, 0), doc) is True
        queued = len(mgr.queued_chunks())
        assert mgr.collect_surrounding_cursor(Position(23, 0), doc) is False
        assert len(mgr.queued_chunks()) == queued
        assert mgr.collect_surrounding_cursor(Position(25, 0), doc) is True
        assert mgr.last_pick_line == 25

    def test_surrounding_cursor_near_top_skips_short_window(self):
        cfg = InfillConfig(n_prefix=256, n_suffix=64, ring_scope=1024)
        mgr = ContextWindowManager(cfg)
        doc = _doc(3)
        mgr.collect_surrounding_cursor(Position(1, 0), doc)
        assert mgr.queued_chunks() == []
        assert mgr.last_pick_line == 1

    def test_saved_document_without_cursor_takes_whole_file(self):
        mgr = _manager()
        doc = _doc(5)
        chunk = mgr.on_document_saved(doc)
        assert chunk is not None
        assert chunk.lines == tuple(f"line {i}" for i in range(5))

    def test_saved_dirty_document_without_cursor_rejected(self):
        mgr = _manager()
        assert mgr.on_document_saved(_doc(5, is_dirty=True)) is None

    def test_saved_active_document_uses_cursor(self):
        mgr = ContextWindowManager(InfillConfig(ring_chunk_size=8), rng=random.Random(1))
        chunk = mgr.on_document_saved(_doc(100), cursor_line=80)
        assert chunk is not None
        assert set(chunk.lines) <= {f"line {i}" for i in range(76, 85)}

    def test_clipboard_text(self, clean):
        mgr = _manager()
        assert mgr.on_clipboard("a\nb", clean) is None
        chunk = mgr.on_clipboard("a\r\nb\nc", clean)
        assert chunk is not None
        assert chunk.text == "a\nb\nc\n"

    def test_active_editor_change_collects_both(self):
        mgr = _manager(max_queued_chunks=4)
        mgr.on_active_editor_changed((_doc(10, tag="old"), 3), (_doc(10, tag="new"), 5))
        assert [c.lines[0] for c in mgr.queued_chunks()] == ["old 0", "new 0"]


class TestReconfigure:
    def test_shrinks_ring_and_queue(self, clean):
        mgr = _manager(ring_n_chunks=3, max_queued_chunks=3)
        for tag in "abc":
            mgr.select_chunk(_lines(tag, 4), True, True, clean)
            mgr.promote()
        for tag in "def":
            mgr.select_chunk(_lines(tag, 4), True, True, clean)
        mgr.reconfigure(InfillConfig(ring_n_chunks=1, max_queued_chunks=1))
        assert [c.lines[0] for c in mgr.active_chunks()] == ["c 0"]
        assert [c.lines[0] for c in mgr.queued_chunks()] == ["f 0"]

    def test_stats(self, clean):
        mgr = _manager()
        mgr.select_chunk(_lines("a", 4), True, True, clean)
        assert mgr.stats() == {
            "active": 0,
            "ring_capacity": 2,
            "queued": 1,
            "queue_capacity": 3,
            "evictions": 0,
        }
