"""Shared models, configuration and utilities for the MCP Gateway."""

from shared.models import (
    AuditEntry,
    Principal,
    TextContent,
    ToolDefinition,
    ToolResult,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "AuditEntry",
    "Principal",
    "TextContent",
    "ToolDefinition",
    "ToolResult",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
