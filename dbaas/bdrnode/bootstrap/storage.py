"""
First-time storage initialization.

Storage is "initialized" once the data directory holds PG_VERSION. Until
then the initializer runs initdb and two single-user sessions (no listener,
so nothing else can connect): one assigns the superuser password, the other
creates the target database.

Invariants:
    - Initialization runs at most once per data directory
    - A second call is a no-op and touches nothing
    - The password travels on stdin only and never reaches an error message
    - Any failure aborts; a half-initialized directory is left for inspection
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from ..config import IdentityConfig, PathsConfig
from ..engine.runner import CommandRunner, Principal
from ..engine.sql import quote_ident, quote_literal
from ..errors import CommandError, InitializationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageResult:
    """Outcome of ensure_initialized().

    Attributes:
        freshly_initialized: Whether this call created the storage
    """

    freshly_initialized: bool


class StorageInitializer:
    """Creates the engine's data directory exactly once.

    Example:
        >>> storage = StorageInitializer(runner, principal, config.paths, config.identity)
        >>> result = await storage.ensure_initialized()
        >>> result.freshly_initialized
        True
    """

    def __init__(
        self,
        runner: CommandRunner,
        principal: Principal,
        paths: PathsConfig,
        identity: IdentityConfig,
        locale: str = "en_US.UTF-8",
    ) -> None:
        self.runner = runner
        self.principal = principal
        self.paths = paths
        self.identity = identity
        self.locale = locale

    def is_initialized(self) -> bool:
        return os.path.exists(self.paths.version_marker)

    async def ensure_initialized(self) -> StorageResult:
        """Initialize storage if the version marker is absent.

        Raises:
            InitializationError: If any privileged step fails.
        """
        if self.is_initialized():
            logger.info("Storage already initialized", extra={"data_dir": self.paths.data_dir})
            return StorageResult(freshly_initialized=False)

        data_dir = self.paths.data_dir
        logger.info("Initializing storage", extra={"data_dir": data_dir})
        try:
            self._prepare_directories()
            await self.runner.run(
                [
                    self.paths.binary("initdb"),
                    "-D",
                    data_dir,
                    f"--locale={self.locale}",
                    "--encoding=UTF8",
                ]
            )
            await self._single_user(
                f"ALTER USER postgres WITH PASSWORD {quote_literal(self.identity.superuser_password)};",
                secret=True,
            )
            await self._single_user(f"CREATE DATABASE {quote_ident(self.identity.database_name)};")
        except (CommandError, OSError) as e:
            raise InitializationError(f"Storage initialization failed: {e}", data_dir) from e

        logger.info(
            "Storage initialized",
            extra={"data_dir": data_dir, "database": self.identity.database_name},
        )
        return StorageResult(freshly_initialized=True)

    def _prepare_directories(self) -> None:
        os.makedirs(self.paths.data_dir, mode=0o700, exist_ok=True)
        self.principal.adjust_owner(self.paths.storage_root)
        # Every directory between the root and the data directory
        path = os.path.abspath(self.paths.data_dir)
        root = os.path.abspath(self.paths.storage_root)
        while path != root and path != os.path.dirname(path):
            self.principal.adjust_owner(path)
            path = os.path.dirname(path)

    async def _single_user(self, statement: str, secret: bool = False) -> None:
        argv = [
            self.paths.binary("postgres"),
            "--single",
            "-D",
            self.paths.data_dir,
            "-c",
            "exit_on_error=on",
        ]
        if secret:
            # The server log must not echo the failing statement
            argv += ["-c", "log_min_error_statement=panic"]
        argv.append("postgres")

        result = await self.runner.run(argv, input=statement + "\n", check=not secret)
        if not result.ok:
            # stderr is withheld; it may quote the statement
            raise CommandError(result.argv, result.returncode)
