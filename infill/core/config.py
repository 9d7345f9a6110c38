"""Centralized configuration for the completion core.

Configuration is resolved from two sources:

1. **YAML config**: loaded via Hydra from ``infill/core/configs/``
2. **Environment variables**: used only for secrets and the config selector

The YAML profile is selected by ``INFILL_CONFIG_NAME`` (default: ``"default"``).

Usage::

    from infill.core.config import get_config

    cfg = get_config()
    cfg.max_cache_keys
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_CONFIG_DIR = str(Path(__file__).parent / "configs")

# ---------------------------------------------------------------------------
# YAML loading via Hydra Compose API
# ---------------------------------------------------------------------------

def _load_yaml_config(config_name: str) -> dict[str, object]:
    """Load a YAML config via Hydra Compose API.

    Returns an empty dict if the config file is missing or malformed.
    """
    try:
        from hydra import compose, initialize_config_dir
        from omegaconf import OmegaConf

        abs_dir = os.path.abspath(_CONFIG_DIR)
        with initialize_config_dir(version_base=None, config_dir=abs_dir):
            cfg = compose(config_name=config_name)
        container = OmegaConf.to_container(cfg, resolve=True)
        if isinstance(container, dict):
            return container  # type: ignore[return-value]
        return {}
    except Exception:
        logger.debug("Failed to load YAML config %r, falling back to defaults", config_name)
        return {}


# ---------------------------------------------------------------------------
# YAML value helpers
# ---------------------------------------------------------------------------

def _yaml_str(yaml: dict[str, object], key: str, default: str = "") -> str:
    val = yaml.get(key)
    return str(val) if val is not None else default


def _yaml_int(yaml: dict[str, object], key: str, default: int = 0) -> int:
    val = yaml.get(key)
    return int(str(val)) if val is not None else default


def _yaml_float(yaml: dict[str, object], key: str, default: float = 0.0) -> float:
    val = yaml.get(key)
    return float(str(val)) if val is not None else default


def _yaml_bool(yaml: dict[str, object], key: str, default: bool = False) -> bool:
    val = yaml.get(key)
    if val is None:
        return default
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _secret(name: str, default: str = "") -> str:
    """Read a secret from an environment variable."""
    raw = os.environ.get(name)
    return raw.strip() if raw is not None else default


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InfillConfig:
    """Options consumed by the completion core.

    Time values ending in ``_ms`` are milliseconds.
    """

    endpoint: str = "http://127.0.0.1:8012"
    api_key: str = ""
    auto: bool = True
    n_prefix: int = 256
    n_suffix: int = 64
    n_predict: int = 128
    t_max_prompt_ms: int = 500
    t_max_predict_ms: int = 2500
    show_info: bool = True
    max_line_suffix: int = 8
    max_cache_keys: int = 250
    ring_n_chunks: int = 16
    ring_chunk_size: int = 64
    ring_scope: int = 1024
    ring_update_ms: int = 1000
    language: str = "en"
    ring_update_min_time_last_compl: int = 3000  # settle time before promotion
    max_last_pick_line_distance: int = 32
    max_queued_chunks: int = 16
    delay_before_compl_request: int = 150  # poll interval while another request is in flight
    max_events_in_log: int = 250
    request_timeout_s: float = 30.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "endpoint", _trim_trailing_slash(self.endpoint))
        self.validate()

    def validate(self) -> None:
        """Reject values the core cannot run with."""
        positive = (
            "max_cache_keys",
            "max_queued_chunks",
            "ring_chunk_size",
            "ring_update_ms",
            "delay_before_compl_request",
            "max_events_in_log",
        )
        for name in positive:
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if self.ring_chunk_size < 2:
            raise ConfigurationError(
                f"ring_chunk_size must be at least 2, got {self.ring_chunk_size!r}"
            )
        non_negative = (
            "ring_n_chunks",
            "n_prefix",
            "n_suffix",
            "n_predict",
            "ring_scope",
            "max_line_suffix",
            "ring_update_min_time_last_compl",
            "max_last_pick_line_distance",
        )
        for name in non_negative:
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ConfigurationError(f"{name} must be a non-negative integer, got {value!r}")
        if self.request_timeout_s <= 0:
            raise ConfigurationError(
                f"request_timeout_s must be positive, got {self.request_timeout_s!r}"
            )

    def replace(self, **changes: object) -> InfillConfig:
        """Return a validated copy with ``changes`` applied."""
        return dataclasses.replace(self, **changes)  # type: ignore[arg-type]


def _trim_trailing_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def load_config(config_name: str) -> InfillConfig:
    """Build an :class:`InfillConfig` from a named YAML profile."""
    yaml = _load_yaml_config(config_name)
    defaults = InfillConfig()
    return InfillConfig(
        endpoint=_yaml_str(yaml, "endpoint", defaults.endpoint),
        api_key=_secret("INFILL_API_KEY"),
        auto=_yaml_bool(yaml, "auto", defaults.auto),
        n_prefix=_yaml_int(yaml, "n_prefix", defaults.n_prefix),
        n_suffix=_yaml_int(yaml, "n_suffix", defaults.n_suffix),
        n_predict=_yaml_int(yaml, "n_predict", defaults.n_predict),
        t_max_prompt_ms=_yaml_int(yaml, "t_max_prompt_ms", defaults.t_max_prompt_ms),
        t_max_predict_ms=_yaml_int(yaml, "t_max_predict_ms", defaults.t_max_predict_ms),
        show_info=_yaml_bool(yaml, "show_info", defaults.show_info),
        max_line_suffix=_yaml_int(yaml, "max_line_suffix", defaults.max_line_suffix),
        max_cache_keys=_yaml_int(yaml, "max_cache_keys", defaults.max_cache_keys),
        ring_n_chunks=_yaml_int(yaml, "ring_n_chunks", defaults.ring_n_chunks),
        ring_chunk_size=_yaml_int(yaml, "ring_chunk_size", defaults.ring_chunk_size),
        ring_scope=_yaml_int(yaml, "ring_scope", defaults.ring_scope),
        ring_update_ms=_yaml_int(yaml, "ring_update_ms", defaults.ring_update_ms),
        language=_yaml_str(yaml, "language", defaults.language),
        ring_update_min_time_last_compl=_yaml_int(
            yaml, "ring_update_min_time_last_compl", defaults.ring_update_min_time_last_compl,
        ),
        max_last_pick_line_distance=_yaml_int(
            yaml, "max_last_pick_line_distance", defaults.max_last_pick_line_distance,
        ),
        max_queued_chunks=_yaml_int(yaml, "max_queued_chunks", defaults.max_queued_chunks),
        delay_before_compl_request=_yaml_int(
            yaml, "delay_before_compl_request", defaults.delay_before_compl_request,
        ),
        max_events_in_log=_yaml_int(yaml, "max_events_in_log", defaults.max_events_in_log),
        request_timeout_s=_yaml_float(yaml, "request_timeout_s", defaults.request_timeout_s),
    )


@lru_cache(maxsize=1)
def get_config() -> InfillConfig:
    """Return the process config selected by ``INFILL_CONFIG_NAME``.

    The result is cached; call ``get_config.cache_clear()`` to re-read
    (useful in tests).
    """
    config_name = os.environ.get("INFILL_CONFIG_NAME", "default").strip().lower()
    return load_config(config_name)
