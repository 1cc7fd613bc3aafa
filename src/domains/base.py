"""Base class for tool domains.

A domain owns one family of privileged operations (filesystem, shell,
source control, database, ...). Each domain:
- Declares its tools and registers them with the ToolRegistry
- Runs the relevant security classifier before touching a resource
- Runs blocking work off the event loop
- Returns every outcome, including failures, as a ToolResult
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable

from shared.logging import get_logger
from shared.models import ToolResult
from mcp_server.registry import ToolRegistry
from security.outcome import ValidationOutcome

logger = get_logger(__name__)


class BaseDomain(ABC):
    """
    Base class for tool domains.

    Each domain:
    - Handles one kind of resource only
    - Holds configuration, never per-request state
    - Never raises past its tool handlers
    """

    name: str = "base"

    @abstractmethod
    def register(self, registry: ToolRegistry) -> None:
        """Register all tools of this domain."""

    async def _run(
        self,
        action: str,
        func: Callable[..., ToolResult],
        *args: Any,
        **kwargs: Any
    ) -> ToolResult:
        """
        Run blocking work in a worker thread.

        Any exception becomes an error result naming the failed action.
        """
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except Exception as e:
            logger.error(f"Failed to {action}", domain=self.name, error=str(e), exc_info=True)
            return ToolResult.error(f"Failed to {action}: {e}")

    @staticmethod
    def _rejected(outcome: ValidationOutcome[Any]) -> ToolResult:
        """Error result for a failed security check."""
        return ToolResult.error(outcome.reason or "Request rejected")
