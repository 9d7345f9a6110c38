"""infill: completion-serving core for fill-in-the-middle code completion."""

from .coordinator import CancellationToken, CompletionRequest, RequestCoordinator
from .core.config import InfillConfig, get_config, load_config
from .core.document import Position, TextDocument
from .core.errors import ConfigurationError, TransportFault

__all__ = [
    "CancellationToken",
    "CompletionRequest",
    "ConfigurationError",
    "InfillConfig",
    "Position",
    "RequestCoordinator",
    "TextDocument",
    "TransportFault",
    "get_config",
    "load_config",
]
