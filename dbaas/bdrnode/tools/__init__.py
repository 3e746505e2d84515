"""
CLI tools for BDR node administration.

This module provides command-line tools for:
- status: List replication group members and their readiness

Invariants:
    - Tools are read-only
    - Tools use the same environment as the controller
"""

from .status_cli import MemberStatus, StatusCLI

__all__ = ["MemberStatus", "StatusCLI"]
