"""Shell command sandboxing.

A command passes only if its leading token is on a closed allowlist and no
dangerous pattern matches the base command, any single argument, or the
reconstructed command line.
"""

import re
from typing import Iterable, Optional, Sequence

from shared.logging import get_logger
from security.outcome import ValidationOutcome

logger = get_logger(__name__)


# Name -> signature of a known-destructive command shape
DANGEROUS_PATTERNS: dict[str, re.Pattern[str]] = {
    # r/R and f anywhere in the option run (clustered, separate or long form), then an absolute path
    "recursive forced deletion": re.compile(
        r"\brm"
        r"(?=(?:\s+-[\w-]+)*?\s+(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)(?=\s))"
        r"(?=(?:\s+-[\w-]+)*?\s+(?:-[a-zA-Z]*f[a-zA-Z]*|--force)(?=\s))"
        r"(?:\s+-[\w-]+)+\s+/"
    ),
    "raw disk write": re.compile(r"\bdd\s+if="),
    "fork bomb": re.compile(r":(\s*\(\s*\))?(\s*)\{(\s*):(.*)\|(.*):(.*)&(.*);"),
    "filesystem formatting": re.compile(r"\bmkfs(\.|\s|$)"),
    "privilege escalation (sudo)": re.compile(r"\bsudo\b"),
    "privilege escalation (su)": re.compile(r"(^|[\s;&|])su(\s+|$)"),
    # octal modes granting other-write, or symbolic a/o write grants
    "world-writable permissions": re.compile(
        r"\bchmod\s+(-[a-zA-Z]+\s+)*[0-7]{0,3}[2367]\b"
        r"|\bchmod\s+(-[a-zA-Z]+\s+)*([ugoa]*[+=-][rwxXst]*,)*[ug]*[ao][ugoa]*[+=][rwxXst]*w"
    ),
}


def leading_token(command: str) -> str:
    """Return the first whitespace-delimited token of ``command``."""
    parts = command.strip().split(maxsplit=1)
    return parts[0] if parts else ""


def find_dangerous_pattern(text: str) -> Optional[str]:
    """Return the name of the first dangerous pattern found in ``text``."""
    for name, pattern in DANGEROUS_PATTERNS.items():
        if pattern.search(text):
            return name
    return None


class CommandValidator:
    """
    Two-stage validator for shell commands.

    Stage one is the allowlist on the leading token. Stage two checks the
    dangerous patterns against three surfaces independently: the base
    command, each argument, and the joined command line.
    """

    def __init__(self, allowed_commands: Iterable[str]) -> None:
        self._allowed = frozenset(c.strip() for c in allowed_commands if c.strip())

    @property
    def allowed_commands(self) -> frozenset[str]:
        return self._allowed

    def validate(
        self,
        command: str,
        args: Optional[Sequence[str]] = None
    ) -> ValidationOutcome[str]:
        """
        Validate a command and its arguments.

        Args:
            command: Base command, possibly with inline arguments
            args: Additional arguments

        Returns:
            Success carrying the command string, or a failure reason
        """
        args = list(args or [])
        base = leading_token(command)

        if not base:
            return ValidationOutcome.failure("Command not allowed: empty command")

        if base not in self._allowed:
            logger.warning("Command rejected by allowlist", command=base)
            return ValidationOutcome.failure(f"Command not allowed: {base}")

        match = find_dangerous_pattern(command)
        if match:
            logger.warning("Dangerous pattern in command", pattern=match)
            return ValidationOutcome.failure(
                f"Dangerous pattern detected in command: {match}"
            )

        for index, arg in enumerate(args):
            match = find_dangerous_pattern(arg)
            if match:
                logger.warning("Dangerous pattern in argument", pattern=match, index=index)
                return ValidationOutcome.failure(
                    f"Dangerous pattern detected in argument {index} ({arg!r}): {match}"
                )

        full_line = " ".join([command.strip(), *args])
        match = find_dangerous_pattern(full_line)
        if match:
            logger.warning("Dangerous pattern in command line", pattern=match)
            return ValidationOutcome.failure(
                f"Dangerous pattern detected in command line: {match}"
            )

        return ValidationOutcome.success(command)
