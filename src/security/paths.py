"""Filesystem sandboxing.

Every path a tool touches is canonicalized (absolute, normalized and with
symlinks resolved) and must then lie inside one of the canonicalized
allowed roots. This is a heuristic gate, not OS-level isolation.
"""

import os
from pathlib import Path
from typing import Iterable, Sequence

from shared.logging import get_logger
from security.outcome import ValidationOutcome

logger = get_logger(__name__)

ACCESS_DENIED = "Access denied: path outside allowed directories"


def canonicalize(path: str | os.PathLike[str]) -> Path:
    """
    Resolve ``path`` to its absolute, symlink-free form.

    Components that do not exist yet are kept as given after the deepest
    existing ancestor has been resolved.

    Raises:
        OSError: If the path cannot be resolved (symlink loop, unreadable
            parent) or its final component is a dangling symlink.
    """
    # ".." must be applied after symlinks are followed, never lexically
    absolute = Path(path).absolute()
    if absolute.is_symlink() and not absolute.exists():
        raise OSError(f"Dangling symlink: {path}")
    return absolute.resolve(strict=False)


def is_within(path: Path, root: Path) -> bool:
    """True if ``path`` equals ``root`` or is one of its descendants."""
    return path == root or root in path.parents


class PathValidator:
    """
    Validates paths against a fixed set of allowed roots.

    Roots are canonicalized once at construction, so a root that is itself
    a symlink is compared by its target.
    """

    def __init__(self, allowed_roots: Iterable[str | os.PathLike[str]]) -> None:
        roots: list[Path] = []
        for root in allowed_roots:
            try:
                roots.append(canonicalize(root))
            except (OSError, RuntimeError) as e:
                logger.warning("Ignoring unresolvable sandbox root", root=str(root), error=str(e))
        self._roots: tuple[Path, ...] = tuple(roots)

    @property
    def roots(self) -> Sequence[Path]:
        return self._roots

    def validate(self, path: str | os.PathLike[str]) -> ValidationOutcome[Path]:
        """
        Check that ``path`` canonicalizes to a location inside an allowed root.

        Args:
            path: Absolute or relative (to the working directory) path

        Returns:
            Success carrying the canonical path, or a failure reason
        """
        if not os.fspath(path):
            return ValidationOutcome.failure("Access denied: empty path")

        if "\x00" in os.fspath(path):
            return ValidationOutcome.failure("Access denied: invalid path")

        try:
            canonical = canonicalize(path)
        except (OSError, RuntimeError, ValueError) as e:
            logger.warning("Path canonicalization failed", path=str(path), error=str(e))
            return ValidationOutcome.failure(f"Access denied: cannot resolve path {path}")

        if not any(is_within(canonical, root) for root in self._roots):
            logger.warning("Path outside sandbox", path=str(path))
            return ValidationOutcome.failure(ACCESS_DENIED)

        return ValidationOutcome.success(canonical)


def validate_path(
    path: str | os.PathLike[str],
    allowed_roots: Iterable[str | os.PathLike[str]]
) -> ValidationOutcome[Path]:
    """Functional form of ``PathValidator(allowed_roots).validate(path)``."""
    return PathValidator(allowed_roots).validate(path)
