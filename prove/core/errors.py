from __future__ import annotations

from typing import Any


class ProveError(Exception):
    """Base class for gate errors; `details` is JSON-serializable evidence for the report."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ConfigurationError(ProveError):
    """Invalid configuration, task descriptor or problem analysis. Aborts the run before any check."""


class ToolInvocationError(ProveError):
    """An external tool could not be started or exited unexpectedly."""


class DataFormatError(ProveError):
    """Unparsable coverage map, diff or evidence document."""


class AmbiguousPhaseError(ProveError):
    """Conflicting TDD phase signals of equal weight."""
