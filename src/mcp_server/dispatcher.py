"""JSON-RPC dispatcher for the MCP Gateway.

Decodes requests, authenticates the caller, authorizes tool calls,
invokes tools through the registry and encodes the responses. Every
failure leaves this module as an RpcResponse, never as an exception.
"""

import json
import time
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from shared.logging import get_logger, request_context
from shared.models import Principal, ToolResult
from mcp_server.audit import AuditLogger
from mcp_server.auth import (
    AuthenticationError,
    Authenticator,
    can_invoke,
    reset_current_principal,
    set_current_principal,
)
from mcp_server.protocol import (
    PROTOCOL_VERSION,
    ErrorCode,
    RpcRequest,
    RpcResponse,
    extract_request_id,
)
from mcp_server.rbac import RbacAuthorizer, get_authorizer
from mcp_server.registry import ToolRegistry

logger = get_logger(__name__)


MethodHandler = Callable[[RpcRequest, Principal], Awaitable[RpcResponse]]
ParamsCheck = Callable[[RpcRequest], Optional[RpcResponse]]


class McpDispatcher:
    """
    Routes JSON-RPC requests to method handlers.

    Supported methods: ``initialize``, ``tools/list`` and ``tools/call``.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        authenticator: Authenticator,
        authorizer: Optional[RbacAuthorizer] = None,
        audit_logger: Optional[AuditLogger] = None,
        server_name: str = "mcp-gateway",
        server_version: str = "1.0.0"
    ) -> None:
        self.registry = registry
        self.authenticator = authenticator
        self.authorizer = authorizer or get_authorizer()
        self.audit_logger = audit_logger
        self.server_name = server_name
        self.server_version = server_version

        self._handlers: dict[str, MethodHandler] = {
            "initialize": self._handle_initialize,
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
        }
        # Run before authentication: malformed params are rejected first
        self._params_checks: dict[str, ParamsCheck] = {
            "tools/call": self._check_tools_call_params,
        }

    async def dispatch(
        self,
        raw_body: bytes | str,
        credentials: Optional[str] = None
    ) -> RpcResponse:
        """
        Handle one raw request body.

        Args:
            raw_body: Request body as received from the transport
            credentials: Bearer token, if the caller sent one

        Returns:
            The response to send back
        """
        request_id: Any = None
        try:
            if isinstance(raw_body, bytes):
                try:
                    raw = raw_body.decode("utf-8")
                except UnicodeDecodeError:
                    return RpcResponse.failure(
                        None, ErrorCode.PARSE_ERROR, "Parse error: body is not valid UTF-8"
                    )
            else:
                raw = raw_body

            # Recover the id first so a broken body still gets a correlated reply
            request_id = extract_request_id(raw)

            payload = json.loads(raw)
            if not isinstance(payload, dict):
                return RpcResponse.failure(
                    request_id,
                    ErrorCode.INVALID_REQUEST,
                    "Invalid request: expected a JSON object"
                )

            try:
                request = RpcRequest.model_validate(payload)
            except ValidationError as e:
                fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
                return RpcResponse.failure(
                    request_id,
                    ErrorCode.INVALID_REQUEST,
                    f"Invalid request: {fields}"
                )

            request_id = request.id
            logger.info("Received JSON-RPC request", method=request.method, id=request.id)
            return await self._route(request, credentials)

        except json.JSONDecodeError as e:
            logger.warning("Malformed JSON-RPC body", error=str(e), id=request_id)
            return RpcResponse.failure(
                request_id, ErrorCode.INTERNAL_ERROR, f"Internal error: invalid JSON ({e.msg})"
            )
        except Exception as e:
            logger.error("Failed to handle MCP request", error=str(e), exc_info=True)
            return RpcResponse.failure(request_id, ErrorCode.INTERNAL_ERROR, "Internal error")

    async def _route(self, request: RpcRequest, credentials: Optional[str]) -> RpcResponse:
        handler = self._handlers.get(request.method)
        if handler is None:
            return RpcResponse.failure(
                request.id,
                ErrorCode.METHOD_NOT_FOUND,
                f"Method not found: {request.method}"
            )

        check = self._params_checks.get(request.method)
        if check is not None:
            invalid = check(request)
            if invalid is not None:
                return invalid

        try:
            principal = self.authenticator.authenticate(credentials)
        except AuthenticationError as e:
            return RpcResponse.failure(
                request.id, ErrorCode.TOOL_ERROR, f"Authentication failed: {e}"
            )

        token = set_current_principal(principal)
        try:
            with request_context(request_id=request.id, method=request.method, subject=principal.subject):
                return await handler(request, principal)
        finally:
            reset_current_principal(token)

    async def _handle_initialize(self, request: RpcRequest, principal: Principal) -> RpcResponse:
        return RpcResponse.success(request.id, {
            "protocolVersion": PROTOCOL_VERSION,
            "serverInfo": {
                "name": self.server_name,
                "version": self.server_version,
            },
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
            },
        })

    async def _handle_tools_list(self, request: RpcRequest, principal: Principal) -> RpcResponse:
        tools = [tool.model_dump(by_alias=True) for tool in self.registry.list_tools()]
        return RpcResponse.success(request.id, {"tools": tools})

    def _check_tools_call_params(self, request: RpcRequest) -> Optional[RpcResponse]:
        params = request.params
        if not isinstance(params, dict):
            return self._invalid_params(request, "params required for tools/call")

        name = params.get("name")
        if not isinstance(name, str) or not name:
            return self._invalid_params(request, "'name' field required")

        if "arguments" not in params:
            return self._invalid_params(request, "'arguments' field required")

        if not isinstance(params["arguments"], dict):
            return self._invalid_params(request, "'arguments' must be an object")
        return None

    async def _handle_tools_call(self, request: RpcRequest, principal: Principal) -> RpcResponse:
        name = request.params["name"]
        arguments = request.params["arguments"]

        started = time.perf_counter()
        result = await self.call_tool(name, arguments, principal)
        elapsed_ms = (time.perf_counter() - started) * 1000

        if self.audit_logger is not None:
            await self.audit_logger.log(
                principal,
                name,
                arguments,
                result,
                execution_time_ms=elapsed_ms,
                request_id=None if request.id is None else str(request.id),
            )

        if result.is_error:
            return RpcResponse.failure(
                request.id,
                ErrorCode.TOOL_ERROR,
                result.first_text or "Tool execution failed"
            )
        return RpcResponse.success(request.id, result.to_wire())

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any],
        principal: Principal
    ) -> ToolResult:
        """
        Authorize and invoke a tool.

        Unregistered tools are reported as not found without touching the
        authorizer; registered tools missing from the scope table are denied.
        """
        if not self.registry.has_tool(name):
            return await self.registry.invoke(name, arguments)

        if not can_invoke(name, principal, self.authorizer):
            return ToolResult.error(f"Access denied: insufficient scope for tool '{name}'")

        return await self.registry.invoke(name, arguments)

    @staticmethod
    def _invalid_params(request: RpcRequest, reason: str) -> RpcResponse:
        return RpcResponse.failure(
            request.id, ErrorCode.INVALID_PARAMS, f"Invalid params: {reason}"
        )
