"""
Supervisor for the BDR node.

The supervisor owns the engine process for the lifetime of the container:
- Translates OS signals into ControlEvents on a single-consumer queue
- Runs the bootstrap sequence as a task, so signals are honoured while
  bootstrap blocks on an unbounded wait
- Monitors the engine and exits once it is gone

Signal mapping:
    SIGHUP            -> RELOAD     (engine re-reads its settings)
    SIGTERM, SIGINT   -> SHUTDOWN   (graceful engine stop, exit 0)
    SIGUSR1           -> DEBUG_ON   (trace every command)
    SIGUSR2           -> DEBUG_OFF  (stop tracing)

Invariants:
    - Signal handlers only enqueue; all actions run in the supervisor loop
    - The engine is never killed, only asked to stop
    - Engine death (crash or requested) is reported as exit 0
    - Bootstrap failure stops the engine and exits 1
    - Exited children are reaped only after bootstrap, between commands

How to change safely:
    - New signals need a ControlEvent and a branch in handle_event()
    - Keep handle_event() free of unbounded waits
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from enum import Enum
from typing import Awaitable, Dict, List, Optional, Protocol

from .bootstrap import BootstrapSequence
from .config import NodeConfig
from .engine.controller import EngineController
from .engine.runner import CommandRunner, Principal
from .engine.sql import SqlClient
from .errors import BdrNodeError, CommandError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_ABNORMAL = 2

PACKAGE_LOGGER = "dbaas.bdrnode"


class ControlEvent(Enum):
    """Lifecycle actions requested from outside the process."""

    RELOAD = "reload"
    SHUTDOWN = "shutdown"
    DEBUG_ON = "debug_on"
    DEBUG_OFF = "debug_off"


SIGNAL_EVENTS: Dict[signal.Signals, ControlEvent] = {
    signal.SIGHUP: ControlEvent.RELOAD,
    signal.SIGTERM: ControlEvent.SHUTDOWN,
    signal.SIGINT: ControlEvent.SHUTDOWN,
    signal.SIGUSR1: ControlEvent.DEBUG_ON,
    signal.SIGUSR2: ControlEvent.DEBUG_OFF,
}


class ControlChannel:
    """Queue of control events fed by OS signal handlers.

    Example:
        >>> channel = ControlChannel()
        >>> channel.install()
        >>> event = await channel.get()
    """

    def __init__(self) -> None:
        self._queue: Optional[asyncio.Queue[ControlEvent]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._installed: List[signal.Signals] = []

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Register handlers for every mapped signal on the loop."""
        self._loop = loop or asyncio.get_running_loop()
        for sig, event in SIGNAL_EVENTS.items():
            self._loop.add_signal_handler(sig, self.publish, event, sig)
            self._installed.append(sig)

    def remove(self) -> None:
        """Unregister the handlers installed by install()."""
        if self._loop is None:
            return
        for sig in self._installed:
            self._loop.remove_signal_handler(sig)
        self._installed.clear()

    def _events(self) -> asyncio.Queue[ControlEvent]:
        # Created on first use so the queue belongs to the loop that runs it
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def publish(self, event: ControlEvent, sig: Optional[int] = None) -> None:
        if sig is not None:
            logger.info(f"Received signal {signal.Signals(sig).name}, queuing {event.value}")
        self._events().put_nowait(event)

    async def get(self) -> ControlEvent:
        return await self._events().get()


def reap_orphans() -> List[int]:
    """Collect every exited child without blocking.

    As PID 1 the controller inherits the postmaster that pg_ctl daemonizes.
    A crashed postmaster stays a zombie until reaped, and pg_ctl status
    reports a zombie as running.

    Returns:
        Pids that were reaped
    """
    reaped = []
    while True:
        try:
            pid, status = os.waitpid(-1, os.WNOHANG)
        except ChildProcessError:
            break
        if pid == 0:
            break
        reaped.append(pid)
        logger.info(f"Reaped exited child {pid} (wait status {status})")
    return reaped


class Bootstrap(Protocol):
    def run(self) -> Awaitable[object]: ...


class Supervisor:
    """Top-level control loop.

    Attributes:
        engine: Engine controller
        runner: Command runner (tracing is toggled here)
        bootstrap: Bootstrap sequence run once at startup
        channel: Control event queue
        monitor_interval: Seconds between liveness checks after bootstrap
    """

    def __init__(
        self,
        engine: EngineController,
        runner: CommandRunner,
        bootstrap: Bootstrap,
        channel: Optional[ControlChannel] = None,
        monitor_interval: float = 60.0,
    ) -> None:
        self.engine = engine
        self.runner = runner
        self.bootstrap = bootstrap
        self.channel = channel or ControlChannel()
        self.monitor_interval = monitor_interval
        self._bootstrap_task: Optional[asyncio.Task] = None
        self._saved_level: Optional[int] = None

    @classmethod
    def from_config(cls, config: NodeConfig) -> Supervisor:
        """Build the supervisor and every component it drives."""
        principal = Principal(config.engine.user)
        runner = CommandRunner(
            principal,
            privilege_drop_command=config.engine.privilege_drop_command,
            environment=config.child_environment(),
        )
        engine = EngineController(runner, config.paths, stop_mode=config.engine.stop_mode)
        sql = SqlClient(runner, psql=config.paths.binary("psql"))
        return cls(
            engine=engine,
            runner=runner,
            bootstrap=BootstrapSequence.from_config(config, runner, engine, sql),
            monitor_interval=config.engine.monitor_interval,
        )

    @property
    def bootstrapping(self) -> bool:
        return self._bootstrap_task is not None and not self._bootstrap_task.done()

    def set_tracing(self, enabled: bool) -> None:
        """Turn command tracing and debug logging on or off."""
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        if enabled:
            if self._saved_level is None:
                self._saved_level = package_logger.level
            package_logger.setLevel(logging.DEBUG)
        elif self._saved_level is not None:
            package_logger.setLevel(self._saved_level)
            self._saved_level = None
        self.runner.trace = enabled
        logger.info(f"Command tracing {'enabled' if enabled else 'disabled'}")

    async def _stop_engine(self) -> None:
        try:
            if await self.engine.is_running():
                await self.engine.stop()
        except CommandError as e:
            logger.error(f"Engine stop failed: {e}")

    async def _cancel_bootstrap(self) -> None:
        if not self.bootstrapping:
            return
        logger.info("Cancelling bootstrap")
        self._bootstrap_task.cancel()
        try:
            await self._bootstrap_task
        except asyncio.CancelledError:
            pass
        except BdrNodeError as e:
            logger.warning(f"Bootstrap ended with {e} while cancelling")

    async def handle_event(self, event: ControlEvent) -> Optional[int]:
        """Apply a control event.

        Returns:
            Exit code if the event ends the process, else None
        """
        if event is ControlEvent.RELOAD:
            try:
                await self.engine.reload()
            except CommandError as e:
                logger.warning(f"Reload failed: {e}")
            return None

        if event is ControlEvent.SHUTDOWN:
            logger.info("Shutdown requested")
            await self._cancel_bootstrap()
            await self._stop_engine()
            return EXIT_OK

        self.set_tracing(event is ControlEvent.DEBUG_ON)
        return None

    async def _bootstrap_finished(self) -> Optional[int]:
        """Collect the bootstrap result; returns an exit code on failure."""
        error = self._bootstrap_task.exception()
        if error is None:
            logger.info("Bootstrap finished, monitoring engine")
            return None
        logger.error(f"Bootstrap failed: {error}", exc_info=error)
        await self._stop_engine()
        return EXIT_FAILURE

    async def run(self) -> Optional[int]:
        """Run bootstrap and monitor the engine until the process should exit.

        Returns:
            Process exit code
        """
        self.channel.install()
        self._bootstrap_task = asyncio.create_task(self.bootstrap.run())
        next_event: Optional[asyncio.Future] = None
        collected = False
        try:
            while True:
                if next_event is None:
                    next_event = asyncio.ensure_future(self.channel.get())

                waiters = {next_event}
                if self.bootstrapping:
                    waiters.add(self._bootstrap_task)
                    timeout = None
                else:
                    timeout = self.monitor_interval
                done, _ = await asyncio.wait(
                    waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )

                if next_event in done:
                    event = next_event.result()
                    next_event = None
                    exit_code = await self.handle_event(event)
                    if exit_code is not None:
                        return exit_code

                if self.bootstrapping:
                    continue
                if not collected:
                    collected = True
                    exit_code = await self._bootstrap_finished()
                    if exit_code is not None:
                        return exit_code

                # No command is in flight here, so only orphans are collected
                reap_orphans()
                if not await self.engine.is_running():
                    logger.info("Engine is no longer running")
                    return EXIT_OK
        finally:
            if next_event is not None:
                next_event.cancel()
            await self._cancel_bootstrap()
            self.channel.remove()
