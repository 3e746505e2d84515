"""
Engine process control through pg_ctl.

Invariants:
    - All operations run as the engine principal
    - start(wait_until_ready=True) returns only once the engine accepts
      connections; callers query the database right after
    - stop() requests a graceful shutdown and never kills the process
    - reload() only re-reads the settings file; settings that need a
      restart (listen_addresses, shared_preload_libraries) are not applied
"""

from __future__ import annotations

import logging

from ..config import PathsConfig
from .runner import CommandRunner

logger = logging.getLogger(__name__)


class EngineController:
    """Starts, stops and reloads the engine.

    Example:
        >>> engine = EngineController(runner, config.paths)
        >>> await engine.start(wait_until_ready=True)
        >>> await engine.is_running()
        True
    """

    def __init__(self, runner: CommandRunner, paths: PathsConfig, stop_mode: str = "fast") -> None:
        self.runner = runner
        self.paths = paths
        self.stop_mode = stop_mode

    def _pg_ctl(self, action: str, *extra: str) -> list[str]:
        return [self.paths.binary("pg_ctl"), action, "-D", self.paths.data_dir, *extra]

    async def start(self, wait_until_ready: bool = True) -> None:
        """Start the engine in the background."""
        logger.info("Starting engine", extra={"data_dir": self.paths.data_dir})
        extra = ["-w"] if wait_until_ready else ["-W"]
        if self.paths.config_dir:
            extra += ["-o", f"-c config_file={self.paths.settings_file}"]
        # The postmaster inherits our stdout/stderr so its log reaches the container log
        await self.runner.run(self._pg_ctl("start", *extra), capture=False)
        logger.info("Engine started")

    async def stop(self) -> None:
        """Request a graceful shutdown and wait for it."""
        logger.info("Stopping engine", extra={"mode": self.stop_mode})
        await self.runner.run(self._pg_ctl("stop", "-m", self.stop_mode, "-w"))

    async def reload(self) -> None:
        """Ask the engine to re-read its settings file."""
        logger.info("Reloading engine configuration")
        await self.runner.run(self._pg_ctl("reload"))

    async def is_running(self) -> bool:
        """Whether a postmaster is running for the data directory."""
        result = await self.runner.run(self._pg_ctl("status"), check=False)
        return result.ok
