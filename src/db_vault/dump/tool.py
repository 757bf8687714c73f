"""Native dump tool strategy (mysqldump / pg_dump as a subprocess)."""

import asyncio
import logging
import os
import re
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from db_vault.config.models import BinarySettings
from db_vault.dialects.base import Dialect, EngineVariant
from db_vault.dump.models import StrategyOutcome
from db_vault.errors import (
    DatabaseConnectionError,
    ToolExecutionError,
    ToolUnavailableError,
)

if TYPE_CHECKING:
    from db_vault.factory import ResolvedTarget

logger = logging.getLogger(__name__)

# Tool stderr lines meaning the locator or credentials are wrong
_CONNECTION_FAILURE_RE = re.compile(
    r"password authentication failed"
    r"|Access denied for user"
    r"|could not translate host name"
    r"|Unknown MySQL server host"
    r"|Can't connect to MySQL server"
    r"|Connection refused",
    re.IGNORECASE,
)

_STDERR_TAIL = 500


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def locate_tool(dialect: Dialect, binaries: BinarySettings) -> str | None:
    """Find the dialect's dump tool.

    Search order: the ``MYSQLDUMP_PATH`` / ``PG_DUMP_PATH`` environment
    variable, the configured binaries directory, then ``PATH``.

    Returns:
        Path to an executable, or None.
    """
    env_override = os.environ.get(dialect.tool_env_var)
    if env_override:
        if _is_executable(Path(env_override)):
            return env_override
        logger.warning(
            "%s=%s is not an executable file; ignoring", dialect.tool_env_var, env_override
        )

    configured_dir = (
        binaries.mysql_path if dialect.variant is EngineVariant.MYSQL else binaries.postgres_path
    )
    if configured_dir is not None:
        candidate = Path(configured_dir) / dialect.tool_name
        if _is_executable(candidate):
            return str(candidate)

    return shutil.which(dialect.tool_name)


class NativeToolStrategy:
    """Run the engine's own dump tool, writing its stdout to the output file.

    Args:
        binaries: Configured tool directories.
        timeout: Seconds before the subprocess is killed.
    """

    name = "native-tool"
    fallback = False

    def __init__(self, binaries: BinarySettings, timeout: float | None = None) -> None:
        self._binaries = binaries
        self._timeout = timeout

    async def run(self, resolved: "ResolvedTarget", output_path: Path) -> StrategyOutcome:
        dialect = resolved.dialect
        binary = locate_tool(dialect, self._binaries)
        if binary is None:
            return StrategyOutcome.skipped(
                self.name,
                ToolUnavailableError(
                    f"{dialect.tool_name} not found", target=resolved.name, stage="dump"
                ),
            )

        argv, extra_env = dialect.tool_command(binary, resolved.url)
        env = {**os.environ, **extra_env}
        logger.info("Running %s for %s", dialect.tool_name, resolved.name)

        with open(output_path, "wb") as out:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *argv, stdout=out, stderr=asyncio.subprocess.PIPE, env=env
                )
            except OSError as e:
                return StrategyOutcome.skipped(
                    self.name,
                    ToolUnavailableError(
                        f"Cannot execute {binary}: {e}", target=resolved.name, stage="dump"
                    ),
                )
            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), self._timeout)
            except TimeoutError:
                proc.kill()
                await proc.wait()
                return StrategyOutcome.failed(
                    self.name,
                    ToolExecutionError(
                        f"{dialect.tool_name} timed out after {self._timeout}s",
                        target=resolved.name,
                        stage="dump",
                    ),
                )

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()[-_STDERR_TAIL:]
            if _CONNECTION_FAILURE_RE.search(message):
                raise DatabaseConnectionError(
                    f"{dialect.tool_name} could not connect: {message}",
                    target=resolved.name,
                    stage="dump",
                )
            return StrategyOutcome.failed(
                self.name,
                ToolExecutionError(
                    f"{dialect.tool_name} exited with code {proc.returncode}: {message}",
                    returncode=proc.returncode,
                    target=resolved.name,
                    stage="dump",
                ),
            )
        return StrategyOutcome.ok(self.name)
