"""Configuration management for the MCP Gateway.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached for performance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """HTTP server and gateway identity."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    name: str = Field(default="mcp-gateway")
    version: str = Field(default="1.0.0")
    enable_audit: bool = Field(default=True)
    audit_log_path: str = Field(default="logs/audit.log")

    model_config = SettingsConfigDict(
        env_prefix="MCP_SERVER_",
        env_file=".env",
        extra="ignore"
    )


class JWTSettings(BaseSettings):
    """Token verification. Without a public key authentication is pass-through."""
    issuer: str = Field(default="mcp-frontend")
    audience: str = Field(default="mcp-server")
    realm: str = Field(default="MCP Server")
    expiration_minutes: int = Field(default=15, gt=0)
    public_key: Optional[str] = Field(default=None, description="PEM encoded RSA public key")
    private_key: Optional[str] = Field(default=None, description="PEM encoded RSA private key")

    model_config = SettingsConfigDict(
        env_prefix="JWT_",
        env_file=".env",
        extra="ignore"
    )

    @property
    def enabled(self) -> bool:
        return bool(self.public_key and self.public_key.strip())


class FilesystemSettings(BaseSettings):
    """Filesystem sandbox."""
    allowed_directories: list[str] = Field(default_factory=lambda: ["./workspace"])
    max_file_size: int = Field(default=10 * 1024 * 1024, gt=0)
    # Extensions without the leading dot; empty means any extension
    allowed_extensions: list[str] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_prefix="FILESYSTEM_",
        env_file=".env",
        extra="ignore"
    )


class BashSettings(BaseSettings):
    """Shell command execution."""
    allowed_commands: list[str] = Field(
        default_factory=lambda: [
            "ls", "cat", "echo", "pwd", "grep", "find",
            "head", "tail", "wc", "git", "mkdir", "touch",
        ]
    )
    working_directory: str = Field(default="./workspace")
    timeout_seconds: float = Field(default=30, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="BASH_",
        env_file=".env",
        extra="ignore"
    )


class GitSettings(BaseSettings):
    """Source control repository."""
    repo_path: str = Field(default="./workspace/repo")
    token: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(
        env_prefix="GIT_",
        env_file=".env",
        extra="ignore"
    )


class MemorySettings(BaseSettings):
    """Knowledge graph storage."""
    storage_path: str = Field(default="./data/memory")

    model_config = SettingsConfigDict(
        env_prefix="MEMORY_",
        env_file=".env",
        extra="ignore"
    )


class PostgresSettings(BaseSettings):
    """PostgreSQL connection used by the read-only query tools."""
    host: str = Field(default="localhost")
    port: int = Field(default=5432)
    database: str = Field(default="postgres")
    username: str = Field(default="postgres")
    password: str = Field(default="")
    max_rows: int = Field(default=1000, gt=0)
    connect_timeout: int = Field(default=5, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=".env",
        extra="ignore"
    )


class ResourcesSettings(BaseSettings):
    """Resource store exposed through resource:// URIs."""
    path: str = Field(default="./resources")

    model_config = SettingsConfigDict(
        env_prefix="RESOURCES_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Component settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    jwt: JWTSettings = Field(default_factory=JWTSettings)
    filesystem: FilesystemSettings = Field(default_factory=FilesystemSettings)
    bash: BashSettings = Field(default_factory=BashSettings)
    git: GitSettings = Field(default_factory=GitSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    resources: ResourcesSettings = Field(default_factory=ResourcesSettings)

    model_config = SettingsConfigDict(
        env_prefix="MCP_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        data = load_yaml_config(path)
        return cls(**data)


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("MCP_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
