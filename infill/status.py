"""Status-line text shown by editor plugins."""

from __future__ import annotations

from infill.core.config import InfillConfig
from infill.core.types import InfillResponse

_UI_TEXT: dict[str, dict[str, str]] = {
    "en": {"no suggestion": "no suggestion", "thinking...": "thinking..."},
    "bg": {"no suggestion": "нямам предложение", "thinking...": "мисля..."},
    "de": {"no suggestion": "kein Vorschlag", "thinking...": "Ich denke..."},
    "ru": {"no suggestion": "нет предложения", "thinking...": "думаю..."},
    "es": {"no suggestion": "ninguna propuesta", "thinking...": "pensando..."},
    "cn": {"no suggestion": "无建议", "thinking...": "思考..."},
    "fr": {"no suggestion": "pas de suggestion", "thinking...": "pense..."},
}

LABEL = "infill"


def ui_text(key: str, language: str) -> str:
    """Translate a UI string, falling back to English."""
    texts = _UI_TEXT.get(language, _UI_TEXT["en"])
    return texts.get(key, key)


def _fmt(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.2f}"


def thinking_text(cfg: InfillConfig) -> str:
    return f"{LABEL} | {ui_text('thinking...', cfg.language)}"


def response_text(
    cfg: InfillConfig,
    response: InfillResponse | None,
    context: dict[str, int],
    elapsed_ms: int,
) -> str:
    """Status after a server round trip, with or without a suggestion."""
    ring = (
        f"r: {context['active']} / {context['ring_capacity']}, e: {context['evictions']}, "
        f"q: {context['queued']} / {context['queue_capacity']}"
    )
    if response is None or response.is_blank():
        no_suggestion = ui_text("no suggestion", cfg.language)
        if cfg.show_info:
            return f"{LABEL} | {no_suggestion} | {ring} | t: {elapsed_ms} ms"
        return f"{LABEL} | {no_suggestion} | t: {elapsed_ms} ms"
    if not cfg.show_info:
        return f"{LABEL} | t: {elapsed_ms} ms"
    t = response.timings
    return (
        f"{LABEL} | c: {response.tokens_cached} / {response.n_ctx}, {ring} | "
        f"p: {t.prompt_n} ({_fmt(t.prompt_ms)} ms, {_fmt(t.prompt_per_second)} t/s) | "
        f"g: {t.predicted_n} ({_fmt(t.predicted_ms)} ms, {_fmt(t.predicted_per_second)} t/s) | "
        f"t: {elapsed_ms} ms"
    )


def cached_text(cfg: InfillConfig, cache_size: int, elapsed_ms: int) -> str:
    """Status after a suggestion was served from the cache."""
    if cfg.show_info:
        return f"{LABEL} | C: {cache_size} / {cfg.max_cache_keys} | t: {elapsed_ms} ms"
    return f"{LABEL} | t: {elapsed_ms} ms"
