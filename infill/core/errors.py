"""Exception types shared across the completion core."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when a configuration value is out of range.

    Always fatal at construction time; values are never coerced.
    """


class TransportFault(RuntimeError):
    """The inference service could not be reached or answered with an error."""

    def __init__(self, message: str, *, unreachable: bool = False, status_code: int | None = None) -> None:
        super().__init__(message)
        self.unreachable = unreachable
        self.status_code = status_code
