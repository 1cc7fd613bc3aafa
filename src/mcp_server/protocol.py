"""JSON-RPC 2.0 envelope models for the MCP endpoint."""

import json
import re
from enum import IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"


class ErrorCode(IntEnum):
    """JSON-RPC 2.0 error codes."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Application range (-32000 to -32099): tool execution failures
    TOOL_ERROR = -32000


class RpcRequest(BaseModel):
    """Incoming JSON-RPC request. ``id`` is opaque and may be absent."""
    model_config = ConfigDict(extra="ignore")

    jsonrpc: str = Field(default=JSONRPC_VERSION)
    id: Any = None
    method: str = Field(..., min_length=1)
    # Shape is checked per method so tools/call can answer "invalid params"
    params: Any = None


class RpcError(BaseModel):
    code: int
    message: str
    data: Optional[Any] = None


class RpcResponse(BaseModel):
    """Outgoing JSON-RPC response carrying exactly one of result or error."""
    jsonrpc: str = Field(default=JSONRPC_VERSION)
    id: Any = None
    result: Optional[dict[str, Any]] = None
    error: Optional[RpcError] = None

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "RpcResponse":
        if (self.result is None) == (self.error is None):
            raise ValueError("Response must carry exactly one of result or error")
        return self

    @classmethod
    def success(cls, request_id: Any, result: dict[str, Any]) -> "RpcResponse":
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls,
        request_id: Any,
        code: ErrorCode,
        message: str,
        data: Optional[Any] = None
    ) -> "RpcResponse":
        return cls(id=request_id, error=RpcError(code=int(code), message=message, data=data))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        """Serialize with ``id`` always present and the unused member omitted."""
        body: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            body["error"] = self.error.model_dump(exclude_none=True)
        else:
            body["result"] = self.result
        return body


# "id": <number | string | null> as a member of the outermost object
_ID_PATTERN = re.compile(
    r'"id"\s*:\s*(-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?|"(?:[^"\\]|\\.)*"|null)'
)


def _top_level_id_match(raw: str) -> Optional[re.Match[str]]:
    """Find an ``"id"`` key at nesting depth one, skipping string contents."""
    depth = 0
    in_string = False
    escaped = False
    for index, char in enumerate(raw):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            if depth == 1:
                match = _ID_PATTERN.match(raw, index)
                if match:
                    return match
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
    return None


def extract_request_id(raw: str) -> Any:
    """
    Best-effort extraction of the request ``id`` before strict decoding.

    Lets a syntactically broken request still receive an error response
    correlated to its id. Returns None when no id can be recovered.
    """
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        parsed = None
    else:
        return parsed.get("id") if isinstance(parsed, dict) else None

    match = _top_level_id_match(raw)
    if match is None:
        return None
    try:
        return json.loads(match.group(1))
    except (json.JSONDecodeError, ValueError):
        return None
