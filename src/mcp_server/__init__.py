"""MCP Gateway - Tool registry, authentication, authorization and dispatch.

The gateway is the authoritative component for tool execution.
It registers tools, authenticates callers, enforces scopes, dispatches
JSON-RPC calls to domains, and audits all executions.
"""

from mcp_server.registry import ToolRegistry
from mcp_server.dispatcher import McpDispatcher
from mcp_server.auth import (
    Authenticator,
    can_invoke,
    create_authenticator,
    current_principal,
)
from mcp_server.rbac import RbacAuthorizer
from mcp_server.audit import AuditLogger

__all__ = [
    "ToolRegistry",
    "McpDispatcher",
    "Authenticator",
    "can_invoke",
    "create_authenticator",
    "current_principal",
    "RbacAuthorizer",
    "AuditLogger",
]
