"""
Bootstrap steps for a BDR node.

This package brings local storage and configuration into shape before the
engine joins a replication group:
- StorageInitializer: initdb, superuser password, target database (once)
- SecurityProvisioner: self-signed TLS pair (once), pg_hba.conf (every start)
- SettingsEnforcer: mandatory BDR settings and PGCONF_ overrides
- SchemaApplier: optional system and database SQL scripts
- BootstrapSequence: runs all of the above in order

Invariants:
    - One-time steps are guarded by on-disk markers, never by memory
    - Access rules and settings are re-applied on every start
"""

from .schema import SchemaApplier
from .security import SecurityProvisioner, render_access_rules
from .sequence import BootstrapOutcome, BootstrapSequence
from .settings import MANDATORY_SETTINGS, SettingsEnforcer, SettingsFile
from .storage import StorageInitializer, StorageResult

__all__ = [
    "BootstrapOutcome",
    "BootstrapSequence",
    "MANDATORY_SETTINGS",
    "SchemaApplier",
    "SecurityProvisioner",
    "SettingsEnforcer",
    "SettingsFile",
    "StorageInitializer",
    "StorageResult",
    "render_access_rules",
]
