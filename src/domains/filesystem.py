"""Filesystem domain - sandboxed file and directory operations.

Every operation validates its path against the allowed directories
immediately before the filesystem call.
"""

import os
import shutil
from enum import Enum
from pathlib import Path

from shared.config import FilesystemSettings
from shared.logging import get_logger
from shared.models import ToolResult
from shared.schema import (
    boolean_property,
    create_schema,
    integer_property,
    string_property,
)
from domains.base import BaseDomain
from mcp_server.registry import ToolRegistry
from security.paths import PathValidator

logger = get_logger(__name__)

ENCODINGS = ["UTF-8", "ISO-8859-1", "US-ASCII"]


class WriteMode(str, Enum):
    CREATE = "CREATE"
    OVERWRITE = "OVERWRITE"
    APPEND = "APPEND"


class FilesystemDomain(BaseDomain):
    """
    Filesystem Domain.

    Provides tools for:
    - Reading and writing files
    - Listing, creating and deleting directories
    """

    name = "filesystem"

    def __init__(self, settings: FilesystemSettings) -> None:
        self.settings = settings
        self.validator = PathValidator(settings.allowed_directories)
        self._extensions = {e.lstrip(".").lower() for e in settings.allowed_extensions}

    def _extension_allowed(self, path: Path) -> bool:
        if not self._extensions or "" in self._extensions:
            return True
        extension = path.suffix.lstrip(".").lower()
        return extension == "" or extension in self._extensions

    # Operations

    async def read_file(self, path: str, encoding: str = "UTF-8") -> ToolResult:
        outcome = self.validator.validate(path)
        if not outcome.ok:
            return self._rejected(outcome)
        return await self._run("read file", self._read_file, outcome.unwrap(), path, encoding)

    def _read_file(self, target: Path, path: str, encoding: str) -> ToolResult:
        if not target.exists():
            return ToolResult.error(f"File does not exist: {path}")
        if not target.is_file():
            return ToolResult.error(f"Path is not a file: {path}")
        if not self._extension_allowed(target):
            return ToolResult.error("File extension not allowed")

        size = target.stat().st_size
        if size > self.settings.max_file_size:
            return ToolResult.error(
                f"File too large: {size} bytes exceeds {self.settings.max_file_size} bytes"
            )

        content = target.read_text(encoding=encoding)
        logger.info("Read file", path=path, characters=len(content))
        return ToolResult.success(content)

    async def write_file(
        self,
        path: str,
        content: str,
        mode: WriteMode = WriteMode.CREATE
    ) -> ToolResult:
        outcome = self.validator.validate(path)
        if not outcome.ok:
            return self._rejected(outcome)
        return await self._run("write file", self._write_file, outcome.unwrap(), path, content, mode)

    def _write_file(self, target: Path, path: str, content: str, mode: WriteMode) -> ToolResult:
        if not self._extension_allowed(target):
            return ToolResult.error("File extension not allowed")
        if target.is_dir():
            return ToolResult.error(f"Path is a directory: {path}")
        if len(content.encode("utf-8")) > self.settings.max_file_size:
            return ToolResult.error(
                f"Content too large: exceeds {self.settings.max_file_size} bytes"
            )

        if mode is WriteMode.CREATE and target.exists():
            return ToolResult.error("File already exists")

        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "a" if mode is WriteMode.APPEND else "w", encoding="utf-8") as f:
            f.write(content)

        logger.info("Wrote file", path=path, characters=len(content), mode=mode.value)
        return ToolResult.success(f"File written successfully: {target.name}")

    async def list_directory(
        self,
        path: str,
        recursive: bool = False,
        max_depth: int = 2
    ) -> ToolResult:
        outcome = self.validator.validate(path)
        if not outcome.ok:
            return self._rejected(outcome)
        return await self._run(
            "list directory", self._list_directory, outcome.unwrap(), path, recursive, max_depth
        )

    def _list_directory(
        self,
        target: Path,
        path: str,
        recursive: bool,
        max_depth: int
    ) -> ToolResult:
        if not target.exists():
            return ToolResult.error(f"Directory does not exist: {path}")
        if not target.is_dir():
            return ToolResult.error(f"Path is not a directory: {path}")

        entries: list[str] = []
        depth_limit = max_depth if recursive else 1

        def walk(directory: Path, depth: int) -> None:
            for entry in sorted(directory.iterdir(), key=lambda p: p.name):
                is_dir = entry.is_dir() and not entry.is_symlink()
                size = entry.lstat().st_size if entry.is_file() else 0
                kind = "dir" if is_dir else "file"
                entries.append(f"{kind}: {entry.relative_to(target)} ({size} bytes)")
                if is_dir and depth < depth_limit:
                    walk(entry, depth + 1)

        walk(target, 1)

        logger.info("Listed directory", path=path, entries=len(entries))
        return ToolResult.success("\n".join(entries) if entries else "(empty directory)")

    async def create_directory(self, path: str, recursive: bool = True) -> ToolResult:
        outcome = self.validator.validate(path)
        if not outcome.ok:
            return self._rejected(outcome)
        return await self._run("create directory", self._create_directory, outcome.unwrap(), path, recursive)

    def _create_directory(self, target: Path, path: str, recursive: bool) -> ToolResult:
        if target.exists():
            return ToolResult.error("Directory already exists")

        target.mkdir(parents=recursive)
        logger.info("Created directory", path=path)
        return ToolResult.success(f"Directory created successfully: {target.name}")

    async def delete_file(self, path: str, recursive: bool = False) -> ToolResult:
        outcome = self.validator.validate(path)
        if not outcome.ok:
            return self._rejected(outcome)
        return await self._run("delete", self._delete_file, outcome.unwrap(), path, recursive)

    def _delete_file(self, target: Path, path: str, recursive: bool) -> ToolResult:
        if not target.exists() and not target.is_symlink():
            return ToolResult.error("File or directory does not exist")
        if target in self.validator.roots:
            return ToolResult.error("Refusing to delete an allowed root directory")

        if target.is_dir():
            if any(target.iterdir()) and not recursive:
                return ToolResult.error(
                    "Directory is not empty. Use recursive=true to delete non-empty directories"
                )
            if recursive:
                shutil.rmtree(target)
            else:
                target.rmdir()
        else:
            os.remove(target)

        logger.info("Deleted", path=path)
        return ToolResult.success(f"Deleted successfully: {target.name}")

    # Registration

    def register(self, registry: ToolRegistry) -> None:
        async def read_file(args: dict) -> ToolResult:
            return await self.read_file(args["path"], args.get("encoding", "UTF-8"))

        async def write_file(args: dict) -> ToolResult:
            mode = WriteMode(args.get("mode", WriteMode.CREATE.value))
            return await self.write_file(args["path"], args["content"], mode)

        async def list_directory(args: dict) -> ToolResult:
            return await self.list_directory(
                args["path"], args.get("recursive", False), args.get("maxDepth", 2)
            )

        async def create_directory(args: dict) -> ToolResult:
            return await self.create_directory(args["path"], args.get("recursive", True))

        async def delete_file(args: dict) -> ToolResult:
            return await self.delete_file(args["path"], args.get("recursive", False))

        registry.register(
            name="readFile",
            description="Read the contents of a file from the filesystem",
            input_schema=create_schema(
                {
                    "path": string_property("Absolute or relative path to the file"),
                    "encoding": string_property("File encoding", ENCODINGS, default="UTF-8"),
                },
                required=["path"],
            ),
            handler=read_file,
        )
        registry.register(
            name="writeFile",
            description="Write content to a file in the filesystem",
            input_schema=create_schema(
                {
                    "path": string_property("Path to the file"),
                    "content": string_property("Content to write"),
                    "mode": string_property(
                        "Write mode: CREATE (fail if exists), OVERWRITE (replace), APPEND (add to end)",
                        [m.value for m in WriteMode],
                        default=WriteMode.CREATE.value,
                    ),
                },
                required=["path", "content"],
            ),
            handler=write_file,
        )
        registry.register(
            name="listDirectory",
            description="List files and directories in a directory",
            input_schema=create_schema(
                {
                    "path": string_property("Path to the directory"),
                    "recursive": boolean_property("List recursively", default=False),
                    "maxDepth": integer_property("Maximum recursion depth", 1, 10, default=2),
                },
                required=["path"],
            ),
            handler=list_directory,
        )
        registry.register(
            name="createDirectory",
            description="Create a new directory in the filesystem",
            input_schema=create_schema(
                {
                    "path": string_property("Path to the directory to create"),
                    "recursive": boolean_property(
                        "Create parent directories if they don't exist", default=True
                    ),
                },
                required=["path"],
            ),
            handler=create_directory,
        )
        registry.register(
            name="deleteFile",
            description="Delete a file or directory from the filesystem",
            input_schema=create_schema(
                {
                    "path": string_property("Path to the file or directory to delete"),
                    "recursive": boolean_property("Delete directories recursively", default=False),
                },
                required=["path"],
            ),
            handler=delete_file,
        )

        logger.info("Filesystem domain registered", tool_count=5)


def register_filesystem_domain(registry: ToolRegistry, settings: FilesystemSettings) -> FilesystemDomain:
    """Create the filesystem domain and register its tools."""
    domain = FilesystemDomain(settings)
    domain.register(registry)
    return domain
