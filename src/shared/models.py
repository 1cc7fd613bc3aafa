"""Core data models for the MCP Gateway.

This module defines the shared data structures used across the gateway:
tool definitions, the uniform tool result envelope, the authenticated
principal and audit entries.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ToolDefinition(BaseModel):
    """
    Discoverable description of a tool.

    Serialized with the wire field name ``inputSchema``.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Unique tool name")
    description: str = Field(..., description="Clear description for LLM usage")
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        alias="inputSchema",
        description="JSON Schema for input validation"
    )


class TextContent(BaseModel):
    """A single text item of a tool result."""
    type: Literal["text"] = "text"
    text: str


class ToolResult(BaseModel):
    """
    Uniform outcome of a tool invocation.

    When ``is_error`` is set, the first content item carries the
    human-readable failure reason.
    """
    model_config = ConfigDict(populate_by_name=True)

    content: list[TextContent] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def success(cls, text: str) -> "ToolResult":
        """Create a success result with a single text item."""
        return cls(content=[TextContent(text=text)])

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        """Create an error result carrying ``message`` as the reason."""
        return cls(content=[TextContent(text=message)], is_error=True)

    @property
    def first_text(self) -> Optional[str]:
        return self.content[0].text if self.content else None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Principal(BaseModel):
    """Verified caller identity, valid for the duration of one request."""
    subject: str
    scopes: frozenset[str] = Field(default_factory=frozenset)
    issuer: str = ""
    audience: list[str] = Field(default_factory=list)


class AuditEntry(BaseModel):
    """
    Audit log entry for tool invocations.

    Captures caller, tool, arguments, timestamp and outcome.
    """
    id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Caller
    subject: str
    scopes: list[str] = Field(default_factory=list)

    # Invocation
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    # Outcome
    is_error: bool = False
    error: Optional[str] = None
    execution_time_ms: float = 0

    # Correlation
    request_id: Optional[str] = None
