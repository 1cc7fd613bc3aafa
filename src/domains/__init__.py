"""Tool Domains.

Each domain contains:
- Tool definitions and input schemas
- The operations behind them
- The security checks guarding them

Domains are isolated with no cross-domain calls or shared state.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcp_server.registry import ToolRegistry
    from shared.config import Settings


def load_all_domains(registry: "ToolRegistry", settings: "Settings") -> None:
    """
    Load and register all tool domains.

    This is called at MCP Gateway startup to register every
    domain's tools with the registry.
    """
    from domains.bash import register_bash_domain
    from domains.database import register_database_domain
    from domains.filesystem import register_filesystem_domain
    from domains.memory import register_memory_domain
    from domains.resources import register_resources_domain
    from domains.source_control import register_git_domain

    register_filesystem_domain(registry, settings.filesystem)
    register_bash_domain(registry, settings.bash)
    register_git_domain(registry, settings.git)
    register_memory_domain(registry, settings.memory)
    register_database_domain(registry, settings.postgres)
    register_resources_domain(registry, settings.resources)


__all__ = ["load_all_domains"]
