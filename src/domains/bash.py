"""Bash domain - allowlisted command execution.

Commands are never handed to a shell. The validated command line is
split into an argv and run as a subprocess in its own process group,
so a timeout can kill everything the command spawned.
"""

import asyncio
import os
import shlex
import signal
from pathlib import Path
from typing import Optional

from shared.config import BashSettings
from shared.logging import get_logger
from shared.models import ToolResult
from shared.schema import array_property, create_schema, map_property, string_property
from domains.base import BaseDomain
from mcp_server.registry import ToolRegistry
from security.commands import CommandValidator

logger = get_logger(__name__)


class BashDomain(BaseDomain):
    """
    Bash Domain.

    Provides a single ``execute`` tool restricted to an allowlist of
    base commands.
    """

    name = "bash"

    def __init__(self, settings: BashSettings) -> None:
        self.settings = settings
        self.validator = CommandValidator(settings.allowed_commands)
        self.working_directory = Path(settings.working_directory).absolute()
        self.working_directory.mkdir(parents=True, exist_ok=True)

    async def execute(
        self,
        command: str,
        args: Optional[list[str]] = None,
        env: Optional[dict[str, str]] = None
    ) -> ToolResult:
        """
        Execute an allowlisted command.

        A non-zero exit status is reported as an error result carrying
        the same output text as a successful run.
        """
        args = list(args or [])
        outcome = self.validator.validate(command, args)
        if not outcome.ok:
            logger.warning("Command rejected", command=command, reason=outcome.reason)
            return self._rejected(outcome)

        try:
            argv = shlex.split(command) + args
        except ValueError as e:
            return ToolResult.error(f"Invalid command: {e}")

        process_env = {**os.environ, **(env or {})}
        timeout = self.settings.timeout_seconds

        logger.info("Executing command", argv=argv, cwd=str(self.working_directory))

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.working_directory,
                env=process_env,
                start_new_session=True
            )
        except OSError as e:
            logger.error("Failed to start command", command=command, error=str(e))
            return ToolResult.error(f"Failed to execute command: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            self._kill_process_group(proc)
            await proc.wait()
            logger.warning("Command timed out", command=command, timeout=timeout)
            return ToolResult.error(f"Command timed out after {timeout:g} seconds")

        exit_code = proc.returncode if proc.returncode is not None else -1
        output = self._format_output(
            " ".join(argv),
            exit_code,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

        logger.info("Command finished", command=command, exit_code=exit_code)
        if exit_code != 0:
            return ToolResult.error(output)
        return ToolResult.success(output)

    @staticmethod
    def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    @staticmethod
    def _format_output(command_line: str, exit_code: int, stdout: str, stderr: str) -> str:
        lines = [f"Command: {command_line}", f"Exit code: {exit_code}"]
        if stdout:
            lines.append(f"\nStdout:\n{stdout}")
        if stderr:
            lines.append(f"\nStderr:\n{stderr}")
        return "\n".join(lines)

    def register(self, registry: ToolRegistry) -> None:
        async def execute(args: dict) -> ToolResult:
            return await self.execute(args["command"], args.get("args"), args.get("env"))

        registry.register(
            name="execute",
            description=(
                "Execute an allowlisted shell command. Allowed commands: "
                + ", ".join(sorted(self.validator.allowed_commands))
            ),
            input_schema=create_schema(
                {
                    "command": string_property("Command to execute"),
                    "args": array_property("Command arguments", {"type": "string"}),
                    "env": map_property("Additional environment variables", {"type": "string"}),
                },
                required=["command"],
            ),
            handler=execute,
        )

        logger.info("Bash domain registered", tool_count=1)


def register_bash_domain(registry: ToolRegistry, settings: BashSettings) -> BashDomain:
    """Create the bash domain and register its tools."""
    domain = BashDomain(settings)
    domain.register(registry)
    return domain
