"""Shared test fixtures for infill."""

from __future__ import annotations

import asyncio

import pytest

from infill.core.config import InfillConfig, get_config
from infill.core.types import ContextChunk, InfillRequest, InfillResponse
from infill.inference.base import InferenceClient


class FakeInferenceClient(InferenceClient):
    """Scripted inference client.

    Each call pops the next item from ``script``: a string (or ``None``) is
    returned as the response content, an exception is raised. Once the script
    is exhausted ``default`` is returned.
    """

    def __init__(self, script=None, *, default=None, delay=0.0, gate=None):
        self.script = list(script or [])
        self.default = default
        self.delay = delay
        self.gate = gate
        self.calls: list[InfillRequest] = []
        self.primed: list[list[ContextChunk]] = []
        self.active = 0
        self.max_active = 0

    async def infill(self, request: InfillRequest) -> InfillResponse:
        self.calls.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            elif self.delay:
                await asyncio.sleep(self.delay)
            item = self.script.pop(0) if self.script else self.default
            if isinstance(item, BaseException):
                raise item
            return InfillResponse(content=item)
        finally:
            self.active -= 1

    async def prime(self, chunks: list[ContextChunk]) -> None:
        self.primed.append(list(chunks))


@pytest.fixture(autouse=True)
def _clear_config_cache():
    """Reset the cached process config around each test."""
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture()
def make_client():
    """Factory for :class:`FakeInferenceClient` instances."""
    return FakeInferenceClient


@pytest.fixture()
def cfg() -> InfillConfig:
    """Small limits and no settle time, so tests stay fast."""
    return InfillConfig(
        max_cache_keys=16,
        ring_n_chunks=4,
        ring_chunk_size=64,
        max_queued_chunks=4,
        ring_update_min_time_last_compl=0,
        delay_before_compl_request=1,
    )
