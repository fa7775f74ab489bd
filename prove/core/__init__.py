"""Lowest-level prove utilities.

Dependency direction rules:
- prove.core must not import prove.checks, prove.runner or prove.cli
"""

from prove.core.digest import canonical_json_bytes, sha256_bytes
from prove.core.errors import (
	AmbiguousPhaseError,
	ConfigurationError,
	DataFormatError,
	ProveError,
	ToolInvocationError,
)

__all__ = [
	"AmbiguousPhaseError",
	"ConfigurationError",
	"DataFormatError",
	"ProveError",
	"ToolInvocationError",
	"canonical_json_bytes",
	"sha256_bytes",
]
