"""
Replication group membership for the BDR node.

Invariants:
    - Membership state is always read from the engine, never cached
    - Only the founder creates a group; joiners go through a rendezvous peer
"""

from .coordinator import (
    GroupRole,
    MembershipCoordinator,
    MembershipOutcome,
    select_role,
)

__all__ = [
    "GroupRole",
    "MembershipCoordinator",
    "MembershipOutcome",
    "select_role",
]
