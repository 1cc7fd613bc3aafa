"""Resources domain - files addressed by ``resource://`` URIs.

A URI maps to a path under the resources directory and goes through the
same symlink-resolving path validator as the filesystem tools.
"""

import base64
import binascii
import mimetypes
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from shared.config import ResourcesSettings
from shared.logging import get_logger
from shared.models import ToolResult
from shared.schema import create_schema, string_property
from domains.base import BaseDomain
from mcp_server.registry import ToolRegistry
from security.outcome import ValidationOutcome
from security.paths import PathValidator

logger = get_logger(__name__)

URI_SCHEME = "resource://"

TEXT_MIME_TYPES = {"application/json", "application/xml", "application/yaml", "application/x-yaml"}

mimetypes.add_type("text/markdown", ".md")
mimetypes.add_type("application/yaml", ".yaml")
mimetypes.add_type("application/yaml", ".yml")


def is_text_mime(mime_type: str) -> bool:
    return mime_type.startswith("text/") or mime_type in TEXT_MIME_TYPES


def guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or "application/octet-stream"


class ResourcesDomain(BaseDomain):
    """
    Resources Domain.

    Provides tools for listing, reading, creating and deleting resources.
    Text resources are returned as-is, binary ones base64-encoded.
    """

    name = "resources"

    def __init__(self, settings: ResourcesSettings) -> None:
        self.settings = settings
        self.root = Path(settings.path).absolute()
        self.root.mkdir(parents=True, exist_ok=True)
        self.validator = PathValidator([self.root])

    def resolve_uri(self, uri: str) -> ValidationOutcome[Path]:
        """Map a resource URI to a validated path under the resources root."""
        if not uri.startswith(URI_SCHEME):
            return ValidationOutcome.failure(f"Invalid resource URI: {uri}")

        relative = uri[len(URI_SCHEME):]
        if not relative.strip():
            return ValidationOutcome.failure(f"Invalid resource URI: {uri}")

        return self.validator.validate(str(self.root / relative))

    def _uri_for(self, path: Path) -> str:
        root = self.validator.roots[0]
        return URI_SCHEME + path.relative_to(root).as_posix()

    # Operations

    async def list_resources(self) -> ToolResult:
        return await self._run("list resources", self._list_resources)

    def _list_resources(self) -> ToolResult:
        root = self.validator.roots[0]
        lines = []
        for path in sorted(p for p in root.rglob("*") if p.is_file()):
            if not self.validator.validate(path).ok:
                logger.warning("Skipping resource outside the resources root", path=str(path))
                continue
            meta = self._metadata(path)
            lines.append(
                f"{meta['uri']} ({meta['mimeType']}, {meta['size']} bytes, modified {meta['modified']})"
            )
            if meta.get("description"):
                lines.append(f"  {meta['description']}")

        return ToolResult.success("\n".join(lines) if lines else "No resources found")

    def _metadata(self, path: Path) -> dict[str, Any]:
        stat = path.stat()
        mime_type = guess_mime_type(path)
        meta: dict[str, Any] = {
            "uri": self._uri_for(path),
            "name": path.name,
            "mimeType": mime_type,
            "size": stat.st_size,
            "modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
        }
        if path.suffix == ".md":
            with open(path, encoding="utf-8", errors="replace") as f:
                for line in f:
                    if line.startswith("#"):
                        meta["description"] = line.lstrip("#").strip()
                        break
        return meta

    async def read_resource(self, uri: str) -> ToolResult:
        outcome = self.resolve_uri(uri)
        if not outcome.ok:
            return self._rejected(outcome)
        return await self._run("read resource", self._read_resource, outcome.unwrap(), uri)

    def _read_resource(self, path: Path, uri: str) -> ToolResult:
        if not path.is_file():
            return ToolResult.error(f"Resource not found: {uri}")

        mime_type = guess_mime_type(path)
        if is_text_mime(mime_type):
            return ToolResult.success(path.read_text(encoding="utf-8"))
        return ToolResult.success(base64.b64encode(path.read_bytes()).decode("ascii"))

    async def create_resource(
        self,
        name: str,
        content: str,
        mime_type: str = "text/plain"
    ) -> ToolResult:
        uri = URI_SCHEME + name
        outcome = self.resolve_uri(uri)
        if not outcome.ok:
            return self._rejected(outcome)
        return await self._run("create resource", self._create_resource, outcome.unwrap(), uri, content, mime_type)

    def _create_resource(self, path: Path, uri: str, content: str, mime_type: str) -> ToolResult:
        if path.exists():
            return ToolResult.error(f"Resource already exists: {uri}")

        if is_text_mime(mime_type):
            data = content.encode("utf-8")
        else:
            try:
                data = base64.b64decode(content, validate=True)
            except binascii.Error:
                return ToolResult.error("Binary resources must be base64-encoded")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

        logger.info("Created resource", uri=uri, size=len(data))
        return ToolResult.success(f"Resource created: {self._uri_for(path)}")

    async def delete_resource(self, uri: str) -> ToolResult:
        outcome = self.resolve_uri(uri)
        if not outcome.ok:
            return self._rejected(outcome)
        return await self._run("delete resource", self._delete_resource, outcome.unwrap(), uri)

    def _delete_resource(self, path: Path, uri: str) -> ToolResult:
        if not path.exists():
            return ToolResult.error(f"Resource not found: {uri}")
        if path.is_dir():
            return ToolResult.error(f"Resource is a directory: {uri}")

        path.unlink()
        logger.info("Deleted resource", uri=uri)
        return ToolResult.success(f"Resource deleted: {uri}")

    # Registration

    def register(self, registry: ToolRegistry) -> None:
        async def list_resources(args: dict) -> ToolResult:
            return await self.list_resources()

        async def read_resource(args: dict) -> ToolResult:
            return await self.read_resource(args["uri"])

        async def create_resource(args: dict) -> ToolResult:
            return await self.create_resource(
                args["name"], args["content"], args.get("mimeType", "text/plain")
            )

        async def delete_resource(args: dict) -> ToolResult:
            return await self.delete_resource(args["uri"])

        uri_property = string_property(f"Resource URI ({URI_SCHEME}<path>)")

        registry.register(
            name="resourcesList",
            description="List available resources",
            input_schema=create_schema({}),
            handler=list_resources,
        )
        registry.register(
            name="resourcesRead",
            description="Read a resource by URI",
            input_schema=create_schema({"uri": uri_property}, required=["uri"]),
            handler=read_resource,
        )
        registry.register(
            name="resourcesCreate",
            description="Create a new resource",
            input_schema=create_schema(
                {
                    "name": string_property("Resource path relative to the resources directory"),
                    "content": string_property("Text content, or base64 for binary types"),
                    "mimeType": string_property("MIME type", default="text/plain"),
                },
                required=["name", "content"],
            ),
            handler=create_resource,
        )
        registry.register(
            name="resourcesDelete",
            description="Delete a resource by URI",
            input_schema=create_schema({"uri": uri_property}, required=["uri"]),
            handler=delete_resource,
        )

        logger.info("Resources domain registered", tool_count=4)


def register_resources_domain(registry: ToolRegistry, settings: ResourcesSettings) -> ResourcesDomain:
    """Create the resources domain and register its tools."""
    domain = ResourcesDomain(settings)
    domain.register(registry)
    return domain
