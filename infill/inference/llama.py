"""llama.cpp ``/infill`` client.

Posts fill-in-the-middle requests to a llama.cpp server over HTTP.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from infill.core.config import InfillConfig
from infill.core.errors import TransportFault
from infill.core.types import ContextChunk, InfillRequest, InfillResponse

from .base import InferenceClient

logger = logging.getLogger(__name__)

_TOP_K = 40
_TOP_P = 0.99


class LlamaServerClient(InferenceClient):
    """Inference client that talks to a llama.cpp server."""

    def __init__(self, cfg: InfillConfig, client: httpx.AsyncClient | None = None) -> None:
        self._cfg = cfg
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._cfg.request_timeout_s, connect=5.0),
            )
        return self._client

    def _url(self) -> str:
        return f"{self._cfg.endpoint}/infill"

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._cfg.api_key:
            headers["Authorization"] = f"Bearer {self._cfg.api_key}"
        return headers

    def build_payload(self, request: InfillRequest) -> dict[str, Any]:
        """Translate an :class:`InfillRequest` into the server's JSON body."""
        return {
            "input_prefix": request.prefix,
            "input_suffix": request.suffix,
            "input_extra": [chunk.to_wire() for chunk in request.context_chunks],
            "prompt": request.prompt,
            "n_predict": request.n_predict,
            "top_k": _TOP_K,
            "top_p": _TOP_P,
            "stream": False,
            "n_indent": request.indent_hint,
            "samplers": ["top_k", "top_p", "infill"],
            "cache_prompt": True,
            "t_max_prompt_ms": request.max_prompt_ms,
            "t_max_predict_ms": request.max_predict_ms,
        }

    def build_prime_payload(self, chunks: list[ContextChunk]) -> dict[str, Any]:
        return {
            "input_prefix": "",
            "input_suffix": "",
            "input_extra": [chunk.to_wire() for chunk in chunks],
            "prompt": "",
            "n_predict": 1,
            "top_k": _TOP_K,
            "top_p": _TOP_P,
            "stream": False,
            "samplers": ["temperature"],
            "cache_prompt": True,
            "t_max_prompt_ms": 1,
            "t_max_predict_ms": 1,
        }

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        client = self._get_client()
        try:
            resp = await client.post(self._url(), json=body, headers=self._headers())
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise TransportFault(
                f"Inference server unreachable at {self._cfg.endpoint}: {exc}",
                unreachable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportFault(f"Inference request failed: {exc}") from exc
        if resp.status_code != httpx.codes.OK:
            raise TransportFault(
                f"Inference server returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        return resp

    async def infill(self, request: InfillRequest) -> InfillResponse:
        resp = await self._post(self.build_payload(request))
        try:
            data = resp.json()
        except ValueError as exc:
            raise TransportFault("Inference server returned a non-JSON body") from exc
        if not data:
            return InfillResponse()
        if isinstance(data, dict):
            generation = data.get("generation_settings") or {}
            if isinstance(generation, dict) and "n_ctx" in generation:
                data = {**data, "n_ctx": generation["n_ctx"]}
        try:
            return InfillResponse.model_validate(data)
        except ValidationError as exc:
            raise TransportFault(f"Unexpected inference response shape: {exc}") from exc

    async def prime(self, chunks: list[ContextChunk]) -> None:
        await self._post(self.build_prime_payload(chunks))
        logger.debug("Primed inference server with %d chunks", len(chunks))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
