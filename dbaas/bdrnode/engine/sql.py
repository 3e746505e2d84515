"""
SQL access to the running engine through psql.

The controller runs as root and reaches the engine over the local socket as
the postgres principal (peer authentication), so queries are issued with
psql through the CommandRunner rather than a network driver.

Invariants:
    - SQL is sent on stdin, never on argv (it may embed DSNs with passwords)
    - ON_ERROR_STOP is always set; a failing statement raises CommandError
    - Query output is unaligned, tuples-only: one row per line, '|' separated
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .runner import CommandRunner

logger = logging.getLogger(__name__)


def quote_literal(value: str) -> str:
    """Quote a string as an SQL literal.

    Example:
        >>> quote_literal("o'brien")
        "'o''brien'"
    """
    escaped = value.replace("'", "''")
    if "\\" in escaped:
        return "E'" + escaped.replace("\\", "\\\\") + "'"
    return f"'{escaped}'"


def quote_ident(value: str) -> str:
    """Quote an SQL identifier."""
    return '"' + value.replace('"', '""') + '"'


class SqlClient:
    """Executes SQL against the local engine.

    Example:
        >>> sql = SqlClient(runner, psql="/usr/lib/postgresql/9.4/bin/psql")
        >>> await sql.query_value("SELECT 1")
        '1'
    """

    def __init__(self, runner: CommandRunner, psql: str = "psql") -> None:
        self.runner = runner
        self.psql = psql

    def _argv(self, database: Optional[str], *extra: str) -> List[str]:
        argv = [self.psql, "-X", "-q", "-v", "ON_ERROR_STOP=1", "--no-password"]
        if database:
            argv += ["-d", database]
        return argv + list(extra)

    async def execute(self, sql: str, database: Optional[str] = None) -> None:
        """Execute statements, discarding output."""
        await self.runner.run(self._argv(database, "-f", "-"), input=sql)

    async def query_rows(self, sql: str, database: Optional[str] = None) -> List[List[str]]:
        """Execute a query and return its rows as lists of strings."""
        result = await self.runner.run(
            self._argv(database, "-t", "-A", "-F", "|", "-f", "-"),
            input=sql,
        )
        return [line.split("|") for line in result.stdout.splitlines() if line]

    async def query_value(self, sql: str, database: Optional[str] = None) -> Optional[str]:
        """Execute a query and return the first column of the first row."""
        rows = await self.query_rows(sql, database)
        if not rows:
            return None
        return rows[0][0]

    async def execute_file(self, path: str, database: Optional[str] = None) -> None:
        """Run an SQL script file."""
        logger.info(f"Applying SQL script {path}" + (f" to {database}" if database else ""))
        await self.runner.run(self._argv(database, "-f", path))
