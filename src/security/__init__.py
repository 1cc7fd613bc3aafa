"""Security classifiers guarding side-effecting tools.

Each classifier is a pure function of its input and static configuration.
Together they are heuristics, not a replacement for OS-level process or
user isolation.
"""

from security.outcome import SecurityError, ValidationOutcome
from security.paths import ACCESS_DENIED, PathValidator, canonicalize, validate_path
from security.commands import CommandValidator
from security.queries import is_read_only, validate_query

__all__ = [
    "SecurityError",
    "ValidationOutcome",
    "ACCESS_DENIED",
    "PathValidator",
    "canonicalize",
    "validate_path",
    "CommandValidator",
    "is_read_only",
    "validate_query",
]
