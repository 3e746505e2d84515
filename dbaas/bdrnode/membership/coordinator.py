"""
Replication group membership.

After the engine accepts connections, the coordinator makes sure this node
belongs to a BDR group: it installs the extension if needed, exits early if
the node is already registered, and otherwise either creates the group
(Founder) or joins it through the rendezvous DSN (Joiner).

The catalog is the source of truth. Nothing is cached between calls, so a
restarted controller re-derives the state from bdr.bdr_nodes.

Invariants:
    - Role is Joiner iff a rendezvous DSN is configured
    - A node already present in bdr.bdr_nodes is never created or joined again
    - A Joiner returns only once its node_status is 'r'
    - Waits are unbounded unless a timeout is configured

How to change safely:
    - Only the four introspection queries below may be relied on
    - Keep every value quoted with quote_literal; DSNs contain passwords
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..config import IdentityConfig
from ..engine.sql import SqlClient, quote_literal
from ..errors import CommandError, MembershipError
from ..waits import poll_until

logger = logging.getLogger(__name__)

EXTENSION_SCHEMA = "bdr"
READY_STATUS = "r"


class GroupRole(Enum):
    """How this node enters the replication group."""

    FOUNDER = "founder"
    JOINER = "joiner"


def select_role(join_dsn: Optional[str]) -> GroupRole:
    """Joiner when a rendezvous DSN is configured, Founder otherwise."""
    return GroupRole.JOINER if join_dsn else GroupRole.FOUNDER


@dataclass(frozen=True)
class MembershipOutcome:
    """Result of coordinate().

    Attributes:
        role: Role selected for this node
        already_registered: Whether the node was already a member
    """

    role: GroupRole
    already_registered: bool


class MembershipCoordinator:
    """Creates or joins the BDR group for this node.

    Example:
        >>> coordinator = MembershipCoordinator(sql, config.identity)
        >>> outcome = await coordinator.coordinate()
        >>> outcome.role
        <GroupRole.FOUNDER: 'founder'>
    """

    def __init__(
        self,
        sql: SqlClient,
        identity: IdentityConfig,
        join_poll_interval: float = 1.0,
        role_poll_interval: float = 1.0,
        role_grace_period: float = 2.0,
        wait_timeout: Optional[float] = None,
    ) -> None:
        self.sql = sql
        self.identity = identity
        self.join_poll_interval = join_poll_interval
        self.role_poll_interval = role_poll_interval
        self.role_grace_period = role_grace_period
        self.wait_timeout = wait_timeout

    @property
    def database(self) -> str:
        return self.identity.database_name

    # Introspection

    async def extension_installed(self) -> bool:
        value = await self.sql.query_value(
            f"SELECT 1 FROM pg_namespace WHERE nspname = {quote_literal(EXTENSION_SCHEMA)}",
            self.database,
        )
        return value == "1"

    async def registered_count(self) -> int:
        value = await self.sql.query_value(
            "SELECT count(*) FROM bdr.bdr_nodes "
            f"WHERE node_name = {quote_literal(self.identity.node_name)}",
            self.database,
        )
        return int(value or 0)

    async def node_status(self, node_name: Optional[str] = None) -> Optional[str]:
        return await self.sql.query_value(
            "SELECT node_status FROM bdr.bdr_nodes "
            f"WHERE node_name = {quote_literal(node_name or self.identity.node_name)}",
            self.database,
        )

    async def role_exists(self, role_name: str) -> bool:
        value = await self.sql.query_value(
            f"SELECT 1 FROM pg_roles WHERE rolname = {quote_literal(role_name)}"
        )
        return value == "1"

    # Steps

    async def wait_for_dependency_role(self, role_name: str) -> None:
        """Block until role_name exists, then wait the grace period."""

        async def exists() -> bool:
            return await self.role_exists(role_name)

        await poll_until(
            exists,
            self.role_poll_interval,
            description=f"role {role_name!r}",
            timeout=self.wait_timeout,
        )
        await asyncio.sleep(self.role_grace_period)

    async def ensure_extension(self) -> bool:
        """Install btree_gist and bdr if the bdr schema is missing.

        Returns:
            True if the extension was installed by this call
        """
        if await self.extension_installed():
            return False
        logger.info("Installing replication extension", extra={"database": self.database})
        await self.sql.execute(
            "CREATE EXTENSION IF NOT EXISTS btree_gist;\nCREATE EXTENSION IF NOT EXISTS bdr;\n",
            self.database,
        )
        return True

    async def create_group(self) -> None:
        logger.info("Creating replication group", extra={"node_name": self.identity.node_name})
        await self.sql.execute(
            "SELECT bdr.bdr_group_create(\n"
            f"    local_node_name := {quote_literal(self.identity.node_name)},\n"
            f"    node_external_dsn := {quote_literal(self.identity.external_dsn)},\n"
            f"    node_local_dsn := {quote_literal(self.identity.local_dsn)}\n"
            ");\n",
            self.database,
        )

    async def join_group(self, join_dsn: str) -> None:
        logger.info("Joining replication group", extra={"node_name": self.identity.node_name})
        await self.sql.execute(
            "SELECT bdr.bdr_group_join(\n"
            f"    local_node_name := {quote_literal(self.identity.node_name)},\n"
            f"    node_external_dsn := {quote_literal(self.identity.external_dsn)},\n"
            f"    join_using_dsn := {quote_literal(join_dsn)},\n"
            f"    node_local_dsn := {quote_literal(self.identity.local_dsn)}\n"
            ");\n",
            self.database,
        )

    async def wait_until_ready(self) -> None:
        """Block until this node reports ready in bdr.bdr_nodes."""

        async def ready() -> bool:
            return await self.node_status() == READY_STATUS

        await poll_until(
            ready,
            self.join_poll_interval,
            description=f"node {self.identity.node_name!r} to become ready",
            timeout=self.wait_timeout,
        )

    async def coordinate(self, wait_for_role: Optional[str] = None) -> MembershipOutcome:
        """Make this node a member of the group.

        Args:
            wait_for_role: Role that must exist before replication starts

        Returns:
            MembershipOutcome describing what happened

        Raises:
            MembershipError: If the extension rejects create or join
        """
        role = select_role(self.identity.join_dsn)

        if wait_for_role:
            await self.wait_for_dependency_role(wait_for_role)

        try:
            await self.ensure_extension()

            if await self.registered_count() > 0:
                logger.info(
                    "Node already registered, skipping membership setup",
                    extra={"node_name": self.identity.node_name},
                )
                return MembershipOutcome(role=role, already_registered=True)

            if role is GroupRole.JOINER:
                await self.join_group(self.identity.join_dsn)
            else:
                await self.create_group()
        except CommandError as e:
            raise MembershipError(
                f"Membership setup failed as {role.value}: {e.message}",
                self.identity.node_name,
            ) from e

        if role is GroupRole.JOINER:
            await self.wait_until_ready()

        logger.info(
            "Node is a group member",
            extra={"node_name": self.identity.node_name, "role": role.value},
        )
        return MembershipOutcome(role=role, already_registered=False)

    async def running_members(self) -> int:
        """Number of members whose status is ready."""
        value = await self.sql.query_value(
            f"SELECT count(*) FROM bdr.bdr_nodes WHERE node_status = {quote_literal(READY_STATUS)}",
            self.database,
        )
        return int(value or 0)
