"""Abstract inference collaborator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

from infill.core.types import ContextChunk, InfillRequest, InfillResponse

BackendKind = Literal["llama"]


class InferenceClient(ABC):
    """Fill-in-the-middle generation service used by the request coordinator."""

    @abstractmethod
    async def infill(self, request: InfillRequest) -> InfillResponse:
        """Generate a completion for the cursor described by ``request``.

        Raises :class:`~infill.core.errors.TransportFault` when the service
        cannot be reached or answers with a non-success status.
        """

    @abstractmethod
    async def prime(self, chunks: list[ContextChunk]) -> None:
        """Warm the server's prompt cache with updated context; the response is ignored."""

    async def aclose(self) -> None:
        """Release transport resources. Default is a no-op."""
