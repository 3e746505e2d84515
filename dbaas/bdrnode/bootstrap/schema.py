"""
One-time SQL scripts applied during bootstrap.

Two optional scripts are supported:
- the system script (INIT_SYSTEM_SQL), run against the default database
  right after the first start, before membership is coordinated;
- the database script (INIT_DATABASE_SQL), run against the target database
  by the founder only, once the group has at least two running members.

Invariants:
    - Neither script runs on a restart of existing storage
    - A joiner never runs the database script, even on fresh storage;
      the founder's DDL replicates to it
    - The topology wait is unbounded unless a timeout is configured
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from ..engine.sql import SqlClient
from ..membership.coordinator import GroupRole, MembershipCoordinator
from ..waits import poll_until

logger = logging.getLogger(__name__)


class SchemaApplier:
    """Applies the bootstrap SQL scripts at their gates."""

    def __init__(
        self,
        sql: SqlClient,
        coordinator: MembershipCoordinator,
        system_script: Optional[str] = None,
        database_script: Optional[str] = None,
        topology_poll_interval: float = 5.0,
        topology_min_members: int = 2,
        wait_timeout: Optional[float] = None,
    ) -> None:
        self.sql = sql
        self.coordinator = coordinator
        self.system_script = system_script
        self.database_script = database_script
        self.topology_poll_interval = topology_poll_interval
        self.topology_min_members = topology_min_members
        self.wait_timeout = wait_timeout

    @staticmethod
    def _usable(variable: str, path: Optional[str]) -> bool:
        if not path:
            return False
        if not os.path.isfile(path):
            logger.warning(f"{variable} is not a file, skipping: {path}")
            return False
        return True

    async def apply_system_script(self, fresh: bool) -> bool:
        """Run the system-wide script on fresh storage.

        Returns:
            True if the script was applied
        """
        if not fresh or not self._usable("INIT_SYSTEM_SQL", self.system_script):
            return False
        await self.sql.execute_file(self.system_script)
        return True

    async def wait_for_topology(self) -> None:
        """Block until enough group members are running."""

        async def stable() -> bool:
            return await self.coordinator.running_members() >= self.topology_min_members

        await poll_until(
            stable,
            self.topology_poll_interval,
            description=f"{self.topology_min_members} running group members",
            timeout=self.wait_timeout,
        )

    async def apply_database_script(self, fresh: bool, role: GroupRole) -> bool:
        """Run the database script on fresh storage, founder only.

        Returns:
            True if the script was applied
        """
        if not fresh or role is not GroupRole.FOUNDER:
            return False
        if not self._usable("INIT_DATABASE_SQL", self.database_script):
            return False
        await self.wait_for_topology()
        await self.sql.execute_file(self.database_script, self.coordinator.database)
        return True
