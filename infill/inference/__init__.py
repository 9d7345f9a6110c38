"""Inference client abstraction.

Factory function to get the client for a given backend kind.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from infill.core.config import InfillConfig

    from .base import BackendKind, InferenceClient


def get_inference_client(kind: BackendKind, cfg: InfillConfig) -> InferenceClient:
    """Return the inference client for ``kind``."""
    if kind == "llama":
        from .llama import LlamaServerClient

        return LlamaServerClient(cfg=cfg)
    raise ValueError(f"Unsupported inference backend: {kind!r}")
