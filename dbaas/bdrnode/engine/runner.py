"""
Command runner for engine tools.

Every interaction with the engine (initdb, pg_ctl, postgres --single, psql,
openssl) goes through CommandRunner, which:
- Drops privileges to the engine principal via a prefix command (gosu)
- Hands children a sanitized environment (no superuser password)
- Optionally traces each command line, like `set -x`

Invariants:
    - Commands are awaited one at a time; the controller never runs two
      engine commands concurrently
    - Data passed on stdin is never logged
    - check=True turns a non-zero exit into CommandError

How to change safely:
    - Keep secrets out of argv; pass them on stdin instead
    - Test privilege dropping in the container image, not only locally
"""

from __future__ import annotations

import asyncio
import logging
import os
import pwd
import shlex
import subprocess
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from ..errors import CommandError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a finished command.

    Attributes:
        argv: Command line that was executed (after the privilege prefix)
        returncode: Exit status
        stdout: Captured standard output ("" when not captured)
        stderr: Captured standard error ("" when not captured)
    """

    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class Principal:
    """The unprivileged OS user the engine runs as.

    Example:
        >>> postgres = Principal("postgres")
        >>> postgres.adjust_owner("/var/lib/postgresql")
    """

    def __init__(self, name: str = "postgres") -> None:
        self.name = name

    @property
    def uid(self) -> int:
        return pwd.getpwnam(self.name).pw_uid

    @property
    def gid(self) -> int:
        return pwd.getpwnam(self.name).pw_gid

    def is_current_user(self) -> bool:
        try:
            return os.geteuid() == self.uid
        except KeyError:
            return False

    def adjust_owner(self, path: str) -> None:
        """Give ownership of a path to this principal."""
        os.chown(path, self.uid, self.gid)


class CommandRunner:
    """Runs external commands for the controller.

    Attributes:
        principal: Engine principal commands are switched to
        privilege_drop_command: Tool used for the switch (e.g. gosu)
        environment: Environment handed to every child
        trace: Whether command lines are logged before execution
    """

    def __init__(
        self,
        principal: Principal,
        privilege_drop_command: str = "gosu",
        environment: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.principal = principal
        self.privilege_drop_command = privilege_drop_command
        self.environment = dict(environment or {})
        self.trace = False

    def _prefix(self, as_engine_user: bool) -> List[str]:
        if not as_engine_user or self.principal.is_current_user():
            return []
        return [self.privilege_drop_command, self.principal.name]

    async def run(
        self,
        argv: Sequence[str],
        *,
        as_engine_user: bool = True,
        input: Optional[str] = None,
        capture: bool = True,
        check: bool = True,
    ) -> CommandResult:
        """Run a command and wait for it to exit.

        Args:
            argv: Command and arguments
            as_engine_user: Switch to the engine principal first
            input: Text written to the command's stdin
            capture: Capture stdout/stderr (False inherits the controller's streams)
            check: Raise CommandError on non-zero exit

        Returns:
            CommandResult for the finished command

        Raises:
            CommandError: If check is set and the command fails
        """
        full_argv = self._prefix(as_engine_user) + list(argv)
        if self.trace:
            logger.info(f"+ {shlex.join(full_argv)}")

        pipe = subprocess.PIPE if capture else None
        try:
            process = await asyncio.create_subprocess_exec(
                *full_argv,
                stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
                stdout=pipe,
                stderr=pipe,
                env=self.environment,
            )
        except FileNotFoundError:
            result = CommandResult(full_argv, 127, "", f"Command not found: {full_argv[0]}")
        else:
            stdout, stderr = await process.communicate(
                input.encode("utf-8") if input is not None else None
            )
            result = CommandResult(
                argv=full_argv,
                returncode=process.returncode,
                stdout=stdout.decode("utf-8", "replace") if stdout else "",
                stderr=stderr.decode("utf-8", "replace") if stderr else "",
            )

        logger.debug(f"{full_argv[0]} exited with {result.returncode}")
        if check and not result.ok:
            raise CommandError(full_argv, result.returncode, result.stderr)
        return result
