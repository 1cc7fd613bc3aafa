"""Role-based access control for MCP tools.

Scopes follow the ``action:resource`` format (``read:filesystem``,
``execute:bash``) and arrive in the token's ``scope`` claim. Every tool
declares the scopes that may invoke it; unknown tools are always denied.
"""

from typing import Iterable, Mapping, Optional

from shared.logging import get_logger

logger = get_logger(__name__)

ADMIN_SCOPE = "admin:*"

TOOL_SCOPES: dict[str, frozenset[str]] = {
    # Filesystem
    "readFile": frozenset({"read:filesystem", ADMIN_SCOPE}),
    "listDirectory": frozenset({"read:filesystem", ADMIN_SCOPE}),
    "writeFile": frozenset({"write:filesystem", ADMIN_SCOPE}),
    "createDirectory": frozenset({"write:filesystem", ADMIN_SCOPE}),
    "deleteFile": frozenset({"write:filesystem", ADMIN_SCOPE}),

    # Shell
    "execute": frozenset({"execute:bash", ADMIN_SCOPE}),

    # Source control
    "status": frozenset({"read:github", ADMIN_SCOPE}),
    "log": frozenset({"read:github", ADMIN_SCOPE}),
    "branch": frozenset({"read:github", "write:github", ADMIN_SCOPE}),
    "commit": frozenset({"write:github", ADMIN_SCOPE}),
    "push": frozenset({"write:github", ADMIN_SCOPE}),
    "clone": frozenset({"write:github", ADMIN_SCOPE}),

    # Knowledge graph
    "createEntities": frozenset({"write:memory", ADMIN_SCOPE}),
    "createRelations": frozenset({"write:memory", ADMIN_SCOPE}),
    "searchNodes": frozenset({"read:memory", ADMIN_SCOPE}),
    "openNodes": frozenset({"read:memory", ADMIN_SCOPE}),

    # PostgreSQL
    "postgresQuery": frozenset({"read:database", ADMIN_SCOPE}),
    "postgresGetSchema": frozenset({"read:database", ADMIN_SCOPE}),
    "postgresTestConnection": frozenset({"read:database", ADMIN_SCOPE}),

    # Resources
    "resourcesList": frozenset({"read:resources", ADMIN_SCOPE}),
    "resourcesRead": frozenset({"read:resources", ADMIN_SCOPE}),
    "resourcesCreate": frozenset({"write:resources", ADMIN_SCOPE}),
    "resourcesDelete": frozenset({"write:resources", ADMIN_SCOPE}),
}

ALL_SCOPES: frozenset[str] = frozenset().union(*TOOL_SCOPES.values())


def parse_scopes(scope_string: Optional[str]) -> frozenset[str]:
    """
    Parse the scope claim of a token.

    Scopes can be space-separated, comma-separated, or both.
    """
    if not scope_string or not scope_string.strip():
        return frozenset()
    return frozenset(
        scope.strip()
        for scope in scope_string.replace(",", " ").split()
        if scope.strip()
    )


class RbacAuthorizer:
    """
    Decides whether a scope set may invoke a tool.

    Resolution order:
    1. Unknown tool: deny, whatever the scopes.
    2. Caller holds the admin scope: allow.
    3. Allow iff caller scopes intersect the tool's declared scopes.
    """

    def __init__(self, tool_scopes: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        source = TOOL_SCOPES if tool_scopes is None else tool_scopes
        self._tool_scopes: dict[str, frozenset[str]] = {
            name: frozenset(scopes) for name, scopes in source.items()
        }

    @property
    def known_tools(self) -> frozenset[str]:
        return frozenset(self._tool_scopes)

    def is_authorized(self, tool_name: str, user_scopes: Iterable[str]) -> bool:
        """
        Check if the given scopes are authorized to use a tool.

        Args:
            tool_name: Name of the tool to check
            user_scopes: Scopes held by the caller

        Returns:
            True if authorized, False otherwise
        """
        required = self._tool_scopes.get(tool_name)
        if required is None:
            logger.warning("Access denied (unknown tool)", tool=tool_name)
            return False

        scopes = frozenset(user_scopes)

        if ADMIN_SCOPE in scopes:
            logger.debug("Access granted (admin)", tool=tool_name)
            return True

        if scopes & required:
            logger.debug("Access granted", tool=tool_name, scopes=sorted(scopes))
            return True

        logger.warning(
            "Access denied (scope mismatch)",
            tool=tool_name,
            user_scopes=sorted(scopes),
            required_scopes=sorted(required)
        )
        return False

    def required_scopes(self, tool_name: str) -> frozenset[str]:
        """Get the scopes accepted for a tool (empty for unknown tools)."""
        return self._tool_scopes.get(tool_name, frozenset())

    def validate_scopes(self, scopes: Iterable[str]) -> bool:
        """Check that every scope is one the gateway knows about."""
        known = frozenset().union(*self._tool_scopes.values()) | {ADMIN_SCOPE}
        invalid = frozenset(scopes) - known
        if invalid:
            logger.warning("Invalid scopes detected", scopes=sorted(invalid))
            return False
        return True


_authorizer: Optional[RbacAuthorizer] = None


def get_authorizer() -> RbacAuthorizer:
    """Get the global authorizer instance."""
    global _authorizer
    if _authorizer is None:
        _authorizer = RbacAuthorizer()
    return _authorizer
