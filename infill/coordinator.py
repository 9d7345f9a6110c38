"""Request coordinator: single-flight completion requests with caching and prefetch.

Only one inference call is outstanding per process. Later requests poll until
the current one clears, giving up early if the editor cancels them. After a
suggestion is served, likely follow-up requests are prefetched in the
background so that accepting a suggestion line by line is answered from cache.
Background calls (prefetch, context priming) take the same in-flight slot
without waiting and are skipped when it is busy.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from infill.background import BackgroundExecutor, PeriodicTask
from infill.cache import CacheKeyService, LRUStore
from infill.context import ContextWindowManager
from infill.core.config import InfillConfig
from infill.core.document import Document, Position, lines_after, lines_before, split_lines
from infill.core.errors import TransportFault
from infill.core.types import (
    CompletionOutcome,
    CompletionResult,
    ContextChunk,
    InfillRequest,
    InfillResponse,
    InlineSuggestion,
    SuggestionDetails,
    TriggerKind,
)
from infill.inference.base import InferenceClient
from infill.status import cached_text, response_text, thinking_text
from infill.validation import normalize, should_discard, strip_trailing_blank_lines

logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]

_LEADING_BLANKS_RE = re.compile(r"^[ \t]*")

UNREACHABLE_NOTICE = "Error getting response. Please check if the inference server is running."


class CancellationToken:
    """Cooperative cancellation flag set by the editing surface."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class CompletionRequest:
    """A request for a suggestion at ``position`` in ``document``."""

    document: Document
    position: Position
    trigger: TriggerKind = "automatic"
    token: CancellationToken = field(default_factory=CancellationToken)


def _log_notice(message: str) -> None:
    logger.warning("%s", message)


def _indent_of(text: str) -> int:
    return len(text) - len(text.lstrip())


def _first_word(line: str) -> str:
    leading = _LEADING_BLANKS_RE.match(line)
    return (leading.group(0) if leading else "") + line.lstrip().split(" ")[0]


class RequestCoordinator:
    """Serves completion requests for one editor process."""

    def __init__(
        self,
        cfg: InfillConfig,
        client: InferenceClient,
        *,
        executor: BackgroundExecutor | None = None,
        context: ContextWindowManager | None = None,
        notifier: Notifier | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._cfg = cfg
        self._client = client
        self._clock = clock
        self._sleep = sleep
        self._notifier = notifier or _log_notice
        self._gate = asyncio.Lock()
        self.in_flight = False
        self.executor = executor or BackgroundExecutor()
        self.context = context or ContextWindowManager(
            cfg, primer=self._prime_context, executor=self.executor, rng=rng, clock=clock,
        )
        self.store = LRUStore(cfg.max_cache_keys)
        self.keys = CacheKeyService(self.store)
        self.last_request_started_at = clock()
        self._force_next = False
        self.last_suggestion: SuggestionDetails | None = None
        self.status = ""
        self._events: deque[str] = deque(maxlen=cfg.max_events_in_log)
        self._promoter = PeriodicTask(
            self.context.promote, cfg.ring_update_ms / 1000, name="promote-context",
        )

    @property
    def config(self) -> InfillConfig:
        return self._cfg

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start periodic context promotion. Requires a running event loop."""
        self._promoter.start()

    async def stop(self) -> None:
        await self._promoter.stop()
        await self.executor.shutdown()
        await self._client.aclose()

    def reconfigure(self, cfg: InfillConfig) -> None:
        """Apply changed settings. A new cache capacity rebuilds the cache empty."""
        capacity_changed = cfg.max_cache_keys != self.store.capacity
        self._cfg = cfg
        if capacity_changed:
            self.store.resize(cfg.max_cache_keys)
        self.context.reconfigure(cfg)
        self._events = deque(self._events, maxlen=cfg.max_events_in_log)
        self._promoter.interval_s = cfg.ring_update_ms / 1000
        logger.info("Configuration updated (cache rebuilt: %s)", capacity_changed)

    def force_next_request(self) -> None:
        """Bypass the cache for the next request only."""
        self._force_next = True

    # ------------------------------------------------------------------
    # Event log and notices
    # ------------------------------------------------------------------

    def _log_event(self, group: str, event: str, details: str = "") -> None:
        entry = f"{int(time.time() * 1000)}, {group}, {event}, {details.replace(',', ' ')}"
        self._events.append(entry)
        logger.info("%s %s %s", group, event, details)

    def events(self) -> list[str]:
        return list(self._events)

    def status_text(self) -> str:
        """Latest status-line text for the editor."""
        return self.status

    def _notify(self, message: str) -> None:
        try:
            self._notifier(message)
        except Exception:
            logger.warning("Notifier failed for %r", message, exc_info=True)

    def _finish(self, group: str, outcome: CompletionOutcome, event: str, details: str = "") -> CompletionResult:
        self._log_event(group, event, details)
        return CompletionResult(outcome)

    # ------------------------------------------------------------------
    # Single-flight gate
    # ------------------------------------------------------------------

    async def _acquire(self, token: CancellationToken) -> bool:
        while True:
            async with self._gate:
                if not self.in_flight:
                    self.in_flight = True
                    self.last_request_started_at = self._clock()
                    self.context.mark_request_started()
                    return True
            await self._sleep(self._cfg.delay_before_compl_request / 1000)
            if token.cancelled:
                return False

    async def _try_acquire(self) -> bool:
        """Take the in-flight slot for background work only if it is free."""
        async with self._gate:
            if self.in_flight:
                return False
            self.in_flight = True
            return True

    async def _prime_context(self, chunks: list[ContextChunk]) -> None:
        if not await self._try_acquire():
            logger.debug("Skipping context priming; a request is in flight")
            return
        try:
            await self._client.prime(chunks)
        finally:
            self.in_flight = False

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        """Return a suggestion for ``request``; never raises for service faults."""
        group = f"GET_COMPLETION_{int(time.time() * 1000)}"
        if not self._cfg.auto and request.trigger == "automatic":
            return self._finish(group, "manual_only", "MANUAL_MODE_AUTOMATIC_TRIGGERING_RETURN")

        if not await self._acquire(request.token):
            return self._finish(group, "cancelled", "CANCELLATION_TOKEN_RETURN", "waiting")
        try:
            return await self._complete(request, group)
        finally:
            self.in_flight = False

    async def _complete(self, request: CompletionRequest, group: str) -> CompletionResult:
        cfg = self._cfg
        document, position = request.document, request.position
        line_text = document.line_at(position.line)
        line_prefix = line_text[:position.character]
        line_suffix = line_text[position.character:]

        if request.trigger == "automatic" and len(line_suffix) > cfg.max_line_suffix:
            return self._finish(group, "suffix_too_long", "TOO_LONG_SUFFIX_RETURN")

        prefix = "\n".join(lines_before(document, position, cfg.n_prefix)) + "\n"
        suffix = line_suffix + "\n" + "\n".join(lines_after(document, position, cfg.n_suffix)) + "\n"
        prompt = line_prefix

        forced, self._force_next = self._force_next, False
        completion = None if forced else self.keys.lookup_with_backtracking(prefix, suffix, prompt)
        is_cached = completion is not None
        response: InfillResponse | None = None

        if not is_cached:
            if request.token.cancelled:
                return self._finish(group, "cancelled", "CANCELLATION_TOKEN_RETURN", "just before server request")
            self.status = thinking_text(cfg)
            try:
                response = await self._client.infill(
                    InfillRequest(
                        prefix=prefix,
                        suffix=suffix,
                        prompt=prompt,
                        context_chunks=self.context.active_chunks(),
                        n_predict=cfg.n_predict,
                        max_prompt_ms=cfg.t_max_prompt_ms,
                        max_predict_ms=cfg.t_max_predict_ms,
                        indent_hint=_indent_of(line_text),
                    )
                )
            except Exception as exc:
                return self._fail(group, exc)
            completion = response.content

        if completion is None or completion.strip() == "":
            self.status = response_text(cfg, None, self.context.stats(), self._elapsed_ms())
            return self._finish(group, "no_suggestion", "NO_SUGGESTION_RETURN")

        suggestion_lines = strip_trailing_blank_lines(split_lines(completion))
        if should_discard(
            suggestion_lines,
            lines_after(document, position, document.line_count),
            line_prefix,
            line_suffix,
            position.line == document.line_count - 1,
        ):
            self.status = response_text(cfg, None, self.context.stats(), self._elapsed_ms())
            return self._finish(group, "discarded", "DISCARD_SUGGESTION_RETURN")

        text = normalize(suggestion_lines, line_suffix)
        if not is_cached:
            self.keys.put(prefix, suffix, prompt, text)
        self.last_suggestion = SuggestionDetails(
            suggestion=text, position=position, prefix=prefix, suffix=suffix, prompt=prompt,
        )
        if is_cached:
            self.status = cached_text(cfg, self.store.size(), self._elapsed_ms())
        else:
            self.status = response_text(cfg, response, self.context.stats(), self._elapsed_ms())

        self._schedule_follow_ups(request, prefix, suffix, prompt, line_suffix, suggestion_lines)

        self._log_event(group, "NORMAL_RETURN", suggestion_lines[0])
        return CompletionResult(
            "cache_hit" if is_cached else "server",
            (InlineSuggestion(text=text, position=position),),
        )

    def _elapsed_ms(self) -> int:
        return int((self._clock() - self.last_request_started_at) * 1000)

    def _fail(self, group: str, exc: Exception) -> CompletionResult:
        unreachable = isinstance(exc, TransportFault) and exc.unreachable
        logger.warning("Completion request failed: %s", exc, exc_info=not isinstance(exc, TransportFault))
        self._notify(UNREACHABLE_NOTICE if unreachable else f"Error getting response: {exc}")
        return self._finish(group, "failed", "ERROR_RETURN", str(exc) or type(exc).__name__)

    def _schedule_follow_ups(
        self,
        request: CompletionRequest,
        prefix: str,
        suffix: str,
        prompt: str,
        line_suffix: str,
        suggestion_lines: list[str],
    ) -> None:
        token = request.token
        if line_suffix.strip() == "":
            async def _continuation() -> None:
                if not token.cancelled:
                    await self.prefetch_continuation(prefix, suffix, prompt, suggestion_lines)

            async def _full_accept() -> None:
                if not token.cancelled:
                    self.prefetch_full_accept(prefix, suffix, prompt, suggestion_lines)

            self.executor.submit(_continuation, name="prefetch-continuation")
            self.executor.submit(_full_accept, name="prefetch-full-accept")

        async def _collect() -> None:
            if not token.cancelled:
                self.context.collect_surrounding_cursor(request.position, request.document)

        self.executor.submit(_collect, name="collect-context")

    # ------------------------------------------------------------------
    # Speculative prefetch
    # ------------------------------------------------------------------

    def _continuation_fragments(
        self, prefix: str, prompt: str, suggestion_lines: list[str],
    ) -> tuple[str, str]:
        if len(suggestion_lines) == 1:
            return prefix, prompt + suggestion_lines[0]
        future_prefix = prefix + prompt + "\n".join(suggestion_lines[:-1]) + "\n"
        prefix_lines = split_lines(future_prefix[:-1])
        budget = self._cfg.n_prefix
        if len(prefix_lines) > budget:
            future_prefix = "\n".join(prefix_lines[len(prefix_lines) - budget:]) + "\n"
        return future_prefix, suggestion_lines[-1]

    async def prefetch_continuation(
        self, prefix: str, suffix: str, prompt: str, suggestion_lines: list[str],
    ) -> bool:
        """Cache what the server would suggest once the first line is accepted."""
        if not suggestion_lines:
            return False
        future_prefix, future_prompt = self._continuation_fragments(prefix, prompt, suggestion_lines)
        if self.keys.contains(future_prefix, suffix, future_prompt):
            return False
        if not await self._try_acquire():
            logger.debug("Skipping continuation prefetch; a request is in flight")
            return False

        cfg = self._cfg
        try:
            response = await self._client.infill(
                InfillRequest(
                    prefix=future_prefix,
                    suffix=suffix,
                    prompt=future_prompt,
                    context_chunks=self.context.active_chunks(),
                    n_predict=cfg.n_predict,
                    max_prompt_ms=cfg.t_max_prompt_ms,
                    max_predict_ms=cfg.t_max_predict_ms,
                    indent_hint=_indent_of(prompt),
                )
            )
        finally:
            self.in_flight = False
        if response.is_blank():
            return False
        lines = strip_trailing_blank_lines(split_lines(response.content or ""))
        self.keys.put(future_prefix, suffix, future_prompt, "\n".join(lines))
        logger.debug("Prefetched continuation (%d lines)", len(lines))
        return True

    def prefetch_full_accept(
        self, prefix: str, suffix: str, prompt: str, suggestion_lines: list[str],
    ) -> bool:
        """Cache the remaining lines of a multi-line suggestion for after its first line."""
        if len(suggestion_lines) <= 1:
            return False
        future_prefix = prefix + prompt + suggestion_lines[0] + "\n"
        if self.keys.contains(future_prefix, suffix, ""):
            return False
        self.keys.put(future_prefix, suffix, "", "\n".join(suggestion_lines[1:]))
        return True

    # ------------------------------------------------------------------
    # Partial accept
    # ------------------------------------------------------------------

    def accept_first_line(self) -> str | None:
        """Text to insert when only the first line of the last suggestion is accepted."""
        if self.last_suggestion is None or not self.last_suggestion.suggestion:
            return None
        lines = split_lines(self.last_suggestion.suggestion)
        if lines[0].strip() == "" and len(lines) > 1:
            return "\n" + lines[1]
        return lines[0]

    def accept_first_word(self) -> str | None:
        """Text to insert when only the first word of the last suggestion is accepted."""
        if self.last_suggestion is None or not self.last_suggestion.suggestion:
            return None
        lines = split_lines(self.last_suggestion.suggestion)
        word = _first_word(lines[0])
        if word == "" and len(lines) > 1:
            return "\n" + _first_word(lines[1])
        return word

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, int | bool]:
        context = self.context.stats()
        return {
            "active_chunks": context["active"],
            "queued_chunks": context["queued"],
            "evictions": context["evictions"],
            "cache_size": self.store.size(),
            "cache_capacity": self.store.capacity,
            "in_flight": self.in_flight,
        }

    def dump_diagnostics(self) -> str:
        """Events (newest first), active context chunks and cache entries as text."""
        events = "".join(f"{entry}\n" for entry in reversed(self._events))
        chunks = "".join(
            f"Time: {int(chunk.created_at * 1000)}\nFile Name: {chunk.source_id}\nText:\n{chunk.text}\n\n"
            for chunk in self.context.active_chunks()
        )
        cache = "".join(
            f"Key: {key}\nCompletion:\n{value}\n\n" for key, value in self.store.entries()
        )
        separator = "\n\n------------------------------\n"
        return (
            f"Events:\n{events}{separator}Extra context: \n{chunks}"
            f"{separator}Completion cache: \n{cache}"
        )
