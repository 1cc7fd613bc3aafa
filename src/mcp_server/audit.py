"""Audit logging for the MCP Gateway.

Logs all tool invocations for compliance and debugging.
Captures: caller, tool, arguments, timestamp, outcome.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiofiles

from shared.logging import get_logger
from shared.models import AuditEntry, Principal, ToolResult

logger = get_logger(__name__)


class AuditLogger:
    """
    Audit logger for tool invocations.

    All invocations are logged with:
    - Caller subject and scopes
    - Tool name
    - Arguments (with sensitive data redaction)
    - Timestamp
    - Outcome
    """

    # Argument names containing any of these are redacted
    SENSITIVE_PARAMS = {"password", "token", "secret", "api_key", "apikey", "credential"}

    def __init__(
        self,
        log_path: str = "logs/audit.log",
        enabled: bool = True,
        buffer_size: int = 100
    ) -> None:
        self.log_path = Path(log_path)
        self.enabled = enabled
        self.buffer_size = buffer_size
        self._buffer: list[AuditEntry] = []
        self._lock = asyncio.Lock()

        if self.enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def _is_sensitive(self, key: str) -> bool:
        lowered = key.lower()
        return any(marker in lowered for marker in self.SENSITIVE_PARAMS)

    def _redact_sensitive(self, params: dict[str, Any]) -> dict[str, Any]:
        """Redact sensitive arguments, including inside nested objects and lists."""
        return {
            key: "[REDACTED]" if self._is_sensitive(key) else self._redact_value(value)
            for key, value in params.items()
        }

    def _redact_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self._redact_sensitive(value)
        if isinstance(value, list):
            return [self._redact_value(item) for item in value]
        return value

    def create_entry(
        self,
        principal: Principal,
        tool_name: str,
        arguments: dict[str, Any],
        result: ToolResult,
        execution_time_ms: float = 0,
        request_id: Optional[str] = None
    ) -> AuditEntry:
        """
        Create an audit entry from invocation data.

        Args:
            principal: Caller identity
            tool_name: Invoked tool
            arguments: Tool arguments
            result: Tool result
            execution_time_ms: Wall-clock duration
            request_id: JSON-RPC id of the request, if any

        Returns:
            Audit entry
        """
        return AuditEntry(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            subject=principal.subject,
            scopes=sorted(principal.scopes),
            tool_name=tool_name,
            arguments=self._redact_sensitive(arguments),
            is_error=result.is_error,
            error=result.first_text if result.is_error else None,
            execution_time_ms=execution_time_ms,
            request_id=request_id,
        )

    async def log(
        self,
        principal: Principal,
        tool_name: str,
        arguments: dict[str, Any],
        result: ToolResult,
        execution_time_ms: float = 0,
        request_id: Optional[str] = None
    ) -> None:
        """Log a tool invocation."""
        if not self.enabled:
            return

        entry = self.create_entry(
            principal, tool_name, arguments, result, execution_time_ms, request_id
        )

        logger.info(
            "Tool invoked",
            audit_id=entry.id,
            subject=entry.subject,
            tool=entry.tool_name,
            is_error=entry.is_error,
            execution_time_ms=entry.execution_time_ms
        )

        # Buffer for batch file writing
        async with self._lock:
            self._buffer.append(entry)

            if len(self._buffer) >= self.buffer_size:
                await self._flush()

    async def _flush(self) -> None:
        """Flush buffered entries to file."""
        if not self._buffer:
            return

        entries_to_write = self._buffer.copy()
        self._buffer.clear()

        try:
            async with aiofiles.open(self.log_path, "a") as f:
                for entry in entries_to_write:
                    await f.write(entry.model_dump_json() + "\n")
        except OSError as e:
            logger.error("Failed to write audit log", error=str(e))
            # Keep entries for the next flush
            self._buffer.extend(entries_to_write)

    async def flush(self) -> None:
        """Public method to flush audit buffer."""
        async with self._lock:
            await self._flush()
