"""
Membership status tool for a BDR node.

Prints every member of the replication group as seen by the local engine.
Meant for `docker exec` and readiness checks.

Usage:
    bdrnode-status
    bdrnode-status --json

Invariants:
    - Reads the same environment as the controller; the password is optional
    - Read-only: issues SELECTs only
    - Exit code 1 when the extension is not installed or the query fails
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence

from ..config import NodeConfig
from ..engine.runner import CommandRunner, Principal
from ..engine.sql import SqlClient
from ..errors import BdrNodeError
from ..membership.coordinator import READY_STATUS, MembershipCoordinator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemberStatus:
    """One row of bdr.bdr_nodes."""

    node_name: str
    node_status: str

    @property
    def ready(self) -> bool:
        return self.node_status == READY_STATUS


class StatusCLI:
    """Queries membership through the coordinator's SQL client.

    Example:
        >>> cli = StatusCLI(coordinator)
        >>> members = await cli.members()
    """

    def __init__(self, coordinator: MembershipCoordinator) -> None:
        self.coordinator = coordinator

    async def members(self) -> Optional[List[MemberStatus]]:
        """List group members, or None if the extension is missing."""
        if not await self.coordinator.extension_installed():
            return None
        rows = await self.coordinator.sql.query_rows(
            "SELECT node_name, node_status FROM bdr.bdr_nodes ORDER BY node_name",
            self.coordinator.database,
        )
        return [MemberStatus(node_name=row[0], node_status=row[1]) for row in rows]

    def render(self, members: List[MemberStatus], local_node: str, as_json: bool = False) -> str:
        if as_json:
            return json.dumps(
                [dict(asdict(m), ready=m.ready, local=m.node_name == local_node) for m in members],
                indent=2,
            )
        if not members:
            return "No group members registered"
        lines = [f"{'NODE':<32} {'STATUS':<8} READY"]
        for member in members:
            marker = " *" if member.node_name == local_node else ""
            lines.append(
                f"{member.node_name + marker:<32} {member.node_status:<8} {'yes' if member.ready else 'no'}"
            )
        return "\n".join(lines)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point for the status tool."""
    parser = argparse.ArgumentParser(description="BDR node membership status")
    parser.add_argument("--json", action="store_true", help="Output JSON")
    args = parser.parse_args(argv)

    try:
        config = NodeConfig.from_env(require_password=False)
    except BdrNodeError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    runner = CommandRunner(
        Principal(config.engine.user),
        privilege_drop_command=config.engine.privilege_drop_command,
        environment=config.child_environment(),
    )
    sql = SqlClient(runner, psql=config.paths.binary("psql"))
    cli = StatusCLI(MembershipCoordinator(sql, config.identity))

    try:
        members = asyncio.run(cli.members())
    except BdrNodeError as e:
        print(f"Status query failed: {e}", file=sys.stderr)
        sys.exit(1)

    if members is None:
        print("Replication extension is not installed", file=sys.stderr)
        sys.exit(1)

    print(cli.render(members, config.identity.node_name, as_json=args.json))
    sys.exit(0)


if __name__ == "__main__":
    main()
