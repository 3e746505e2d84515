"""
Boundary to the database engine.

This package wraps every external process the controller talks to:
- CommandRunner: runs tools as the engine principal
- SqlClient: executes SQL through psql over the local socket
- EngineController: pg_ctl start/stop/reload/status

Invariants:
    - The controller never talks to the engine except through this package
    - Engine commands are issued one at a time
"""

from .controller import EngineController
from .runner import CommandResult, CommandRunner, Principal
from .sql import SqlClient, quote_ident, quote_literal

__all__ = [
    "CommandResult",
    "CommandRunner",
    "EngineController",
    "Principal",
    "SqlClient",
    "quote_ident",
    "quote_literal",
]
