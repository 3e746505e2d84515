"""
bdrnode - Bootstrap and supervision for a PostgreSQL BDR node.

This package turns a container with an empty volume into a running member
of a multi-master BDR replication group, and keeps supervising the engine
afterwards:

Architecture:
    ┌────────────┐   signals   ┌────────────────┐
    │ OS / k8s   │────────────▶│  Supervisor    │◀── ControlChannel (queue)
    └────────────┘             └───────┬────────┘
                                       │ runs once
                                       ▼
                          ┌──────────────────────────┐
                          │    BootstrapSequence     │
                          └──────────────────────────┘
           │            │            │            │             │
           ▼            ▼            ▼            ▼             ▼
      ┌─────────┐ ┌──────────┐ ┌──────────┐ ┌──────────┐ ┌────────────┐
      │ Storage │ │ Security │ │ Settings │ │  Schema  │ │ Membership │
      └────┬────┘ └────┬─────┘ └────┬─────┘ └────┬─────┘ └─────┬──────┘
           └───────────┴──────┬─────┴────────────┴─────────────┘
                              ▼
                 initdb / pg_ctl / postgres --single / psql
                      (as postgres, via CommandRunner)

Invariants:
    - Configuration is read from the environment exactly once
    - One-time steps are guarded by on-disk state (PG_VERSION, server.key)
    - Membership state is always read back from the engine
    - All waits are unbounded unless BOOTSTRAP_WAIT_TIMEOUT_SECONDS is set

How to change safely:
    - Keep engine access inside the engine package
    - Test new bootstrap steps against both fresh and existing storage
"""

from ._version import __version__

__all__ = ["__version__"]
