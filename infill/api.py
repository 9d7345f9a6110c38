"""infill API: local HTTP service exposing the completion core to editor plugins.

Endpoints:
- POST /v1/complete: Suggestion for a cursor position
- POST /v1/cache/force-next: Bypass the cache for the next request
- POST /v1/context/chunk: Queue copied/cut text as extra context
- POST /v1/context/saved: Capture context from a saved document
- POST /v1/accept/{mode}: Text to insert for a partial accept (``line`` or ``word``)
- GET  /v1/status: Status-line text and counters
- GET  /v1/diagnostics: Event log, active context and cache dump
- GET  /v1/health: Health check

Example usage::

    curl -X POST http://localhost:8013/v1/complete \\
        -H "Content-Type: application/json" \\
        -d '{"text": "def add(a, b):\\n    ", "position": {"line": 1, "character": 4}}'
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse

from .coordinator import CompletionRequest, RequestCoordinator
from .core.config import InfillConfig
from .core.document import Position, TextDocument
from .core.types import (
    ChunkRequest,
    ChunkResponse,
    CompleteRequest,
    CompleteResponse,
    DocumentSavedRequest,
    HealthResponse,
    PositionModel,
    StatusResponse,
)
from .inference import get_inference_client
from .inference.base import InferenceClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    coordinator: RequestCoordinator | None = getattr(app.state, "coordinator", None)
    if coordinator is not None:
        coordinator.start()
    try:
        yield
    finally:
        if coordinator is not None:
            await coordinator.stop()


web_app = FastAPI(
    title="infill API",
    description="Cached, context-aware fill-in-the-middle code completion",
    version="0.1.0",
    lifespan=_lifespan,
)


def configure_web_app(cfg: InfillConfig, client: InferenceClient | None = None) -> RequestCoordinator:
    """Inject a coordinator built from ``cfg`` into the process-local app."""
    if client is None:
        client = get_inference_client("llama", cfg)
    coordinator = RequestCoordinator(cfg, client)
    web_app.state.coordinator = coordinator
    return coordinator


def _coordinator(request: Request) -> RequestCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(status_code=503, detail="Completion service is not configured")
    return coordinator


@web_app.post("/v1/complete", response_model=CompleteResponse)
async def complete(body: CompleteRequest, request: Request) -> CompleteResponse:
    """Return a suggestion for the cursor in the posted document."""
    coordinator = _coordinator(request)
    document = TextDocument(body.text, body.source_id, is_dirty=body.is_dirty)
    if body.position.line >= document.line_count:
        raise HTTPException(
            status_code=422,
            detail=f"line {body.position.line} is outside a {document.line_count}-line document",
        )
    position = Position(body.position.line, body.position.character)
    result = await coordinator.complete(
        CompletionRequest(document=document, position=position, trigger=body.trigger)
    )
    if not result.items:
        return CompleteResponse(outcome=result.outcome)
    item = result.items[0]
    return CompleteResponse(
        outcome=result.outcome,
        suggestion=item.text,
        position=PositionModel(line=item.position.line, character=item.position.character),
    )


@web_app.post("/v1/cache/force-next")
async def force_next(request: Request) -> dict[str, bool]:
    _coordinator(request).force_next_request()
    return {"forced": True}


def _chunk_response(coordinator: RequestCoordinator, queued: bool) -> ChunkResponse:
    stats = coordinator.context.stats()
    return ChunkResponse(queued=queued, active_chunks=stats["active"], queued_chunks=stats["queued"])


@web_app.post("/v1/context/chunk", response_model=ChunkResponse)
async def add_chunk(body: ChunkRequest, request: Request) -> ChunkResponse:
    coordinator = _coordinator(request)
    source = TextDocument(body.text, body.source_id, is_dirty=body.is_dirty)
    chunk = coordinator.context.on_clipboard(body.text, source)
    return _chunk_response(coordinator, chunk is not None)


@web_app.post("/v1/context/saved", response_model=ChunkResponse)
async def document_saved(body: DocumentSavedRequest, request: Request) -> ChunkResponse:
    coordinator = _coordinator(request)
    source = TextDocument(body.text, body.source_id)
    if body.cursor_line is not None and body.cursor_line >= source.line_count:
        raise HTTPException(status_code=422, detail="cursor_line is outside the document")
    chunk = coordinator.context.on_document_saved(source, body.cursor_line)
    return _chunk_response(coordinator, chunk is not None)


@web_app.post("/v1/accept/{mode}")
async def accept(mode: Literal["line", "word"], request: Request) -> dict[str, str | None]:
    coordinator = _coordinator(request)
    text = coordinator.accept_first_line() if mode == "line" else coordinator.accept_first_word()
    return {"insert": text}


@web_app.get("/v1/status", response_model=StatusResponse)
async def status(request: Request) -> StatusResponse:
    coordinator = _coordinator(request)
    stats = coordinator.stats()
    return StatusResponse(
        text=coordinator.status_text(),
        active_chunks=int(stats["active_chunks"]),
        queued_chunks=int(stats["queued_chunks"]),
        evictions=int(stats["evictions"]),
        cache_size=int(stats["cache_size"]),
        cache_capacity=int(stats["cache_capacity"]),
        in_flight=bool(stats["in_flight"]),
    )


@web_app.get("/v1/diagnostics", response_class=PlainTextResponse)
async def diagnostics(request: Request) -> PlainTextResponse:
    return PlainTextResponse(_coordinator(request).dump_diagnostics())


@web_app.get("/v1/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()
