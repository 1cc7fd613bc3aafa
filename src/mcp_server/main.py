"""MCP Gateway - FastAPI Application.

Exposes the JSON-RPC endpoint and a few operational routes. The
gateway has no LLM or UI logic - only tool registration, authentication,
authorization, dispatch and auditing.
"""

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel

from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging
from shared.models import Principal
from mcp_server.audit import AuditLogger
from mcp_server.auth import AuthDependency, create_authenticator, security
from mcp_server.dispatcher import McpDispatcher
from mcp_server.protocol import PROTOCOL_VERSION, ErrorCode
from mcp_server.registry import ToolRegistry, get_registry
from domains import load_all_domains

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    tool_count: int


class InfoResponse(BaseModel):
    """Server identity and capabilities."""
    name: str
    version: str
    protocol_version: str
    authentication: str
    capabilities: dict[str, Any]
    tool_count: int


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ToolRegistry] = None
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Settings to use; loaded from the environment when omitted
        registry: Registry to populate; the process-wide one when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        app_settings = settings or get_settings()
        setup_logging(
            app_settings.log_level,
            json_output=app_settings.environment == "production",
            service=app_settings.server.name,
        )

        logger.info("Starting MCP Gateway", name=app_settings.server.name)

        # Authentication strategy is fixed for the lifetime of the process
        authenticator = create_authenticator(app_settings.jwt)

        audit_logger = AuditLogger(
            log_path=app_settings.server.audit_log_path,
            enabled=app_settings.server.enable_audit
        )

        tool_registry = registry if registry is not None else get_registry()
        load_all_domains(tool_registry, app_settings)

        app.state.settings = app_settings
        app.state.registry = tool_registry
        app.state.audit_logger = audit_logger
        app.state.auth = AuthDependency(authenticator, realm=app_settings.jwt.realm)
        app.state.dispatcher = McpDispatcher(
            registry=tool_registry,
            authenticator=authenticator,
            audit_logger=audit_logger,
            server_name=app_settings.server.name,
            server_version=app_settings.server.version,
        )

        logger.info(
            "MCP Gateway started",
            tool_count=tool_registry.size(),
            authentication="jwt" if authenticator.enabled else "disabled"
        )

        yield

        # Shutdown
        logger.info("Shutting down MCP Gateway")
        await audit_logger.flush()

    app = FastAPI(
        title="MCP Gateway",
        description="JSON-RPC gateway exposing sandboxed tools",
        version="1.0.0",
        lifespan=lifespan
    )

    def get_dispatcher(request: Request) -> McpDispatcher:
        dispatcher = getattr(request.app.state, "dispatcher", None)
        if dispatcher is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Server not initialized"
            )
        return dispatcher

    def get_current_principal(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
    ) -> Principal:
        """Dependency to get the authenticated caller."""
        get_dispatcher(request)
        return request.app.state.auth(credentials)

    @app.get("/", tags=["System"])
    async def root(request: Request):
        app_settings: Settings = request.app.state.settings
        return {
            "name": app_settings.server.name,
            "version": app_settings.server.version,
            "endpoint": "/mcp",
        }

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check(request: Request):
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=request.app.state.settings.server.version,
            tool_count=request.app.state.registry.size()
        )

    @app.get("/ready", tags=["System"])
    async def readiness(request: Request):
        """Ready once the dispatcher has been built and tools are registered."""
        registry: Optional[ToolRegistry] = getattr(request.app.state, "registry", None)
        if getattr(request.app.state, "dispatcher", None) is None or registry is None or registry.size() == 0:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Not ready"
            )
        return {"status": "ready"}

    @app.get("/info", response_model=InfoResponse, tags=["System"])
    async def info(request: Request):
        """Server identity, capabilities and tool count."""
        dispatcher = get_dispatcher(request)
        return InfoResponse(
            name=dispatcher.server_name,
            version=dispatcher.server_version,
            protocol_version=PROTOCOL_VERSION,
            authentication="jwt" if dispatcher.authenticator.enabled else "disabled",
            capabilities={
                "tools": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
            },
            tool_count=dispatcher.registry.size(),
        )

    @app.get("/tools/list", tags=["Tools"])
    async def list_tools(
        request: Request,
        principal: Principal = Depends(get_current_principal)
    ):
        """Discovery snapshot of every registered tool."""
        tools = [tool.model_dump(by_alias=True) for tool in request.app.state.registry.list_tools()]
        return {"tools": tools, "count": len(tools)}

    @app.post("/mcp", tags=["MCP"])
    async def mcp_endpoint(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
    ):
        """
        JSON-RPC 2.0 endpoint.

        Supports ``initialize``, ``tools/list`` and ``tools/call``.
        """
        dispatcher = get_dispatcher(request)
        body = await request.body()
        response = await dispatcher.dispatch(
            body, credentials.credentials if credentials else None
        )

        status_code = status.HTTP_200_OK
        if response.error is not None and response.error.code == ErrorCode.INTERNAL_ERROR:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return JSONResponse(content=response.to_wire(), status_code=status_code)

    return app


app = create_app()


def main():
    """Run the MCP Gateway."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "mcp_server.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()
