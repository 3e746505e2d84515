"""
Bootstrap sequence for a BDR node.

Runs the one-time and every-start steps in order:

    storage -> TLS -> settings -> access rules -> start engine
      -> system script -> [dependency role] -> membership -> database script

Invariants:
    - The engine is started only after settings and access rules are written
    - Every SQL step runs after start(wait_until_ready=True) returned
    - Fresh-only steps key off StorageResult.freshly_initialized

How to change safely:
    - Keep settings enforcement before the first engine start; wal_level and
      shared_preload_libraries need a restart to change
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import NodeConfig
from ..engine.controller import EngineController
from ..engine.runner import CommandRunner, Principal
from ..engine.sql import SqlClient
from ..membership.coordinator import GroupRole, MembershipCoordinator
from .schema import SchemaApplier
from .security import SecurityProvisioner
from .settings import SettingsEnforcer
from .storage import StorageInitializer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BootstrapOutcome:
    """What the bootstrap did.

    Attributes:
        freshly_initialized: Storage was created by this run
        role: Role selected for the node
        already_registered: Node was already a group member
        system_script_applied: INIT_SYSTEM_SQL ran
        database_script_applied: INIT_DATABASE_SQL ran
    """

    freshly_initialized: bool
    role: GroupRole
    already_registered: bool
    system_script_applied: bool
    database_script_applied: bool


class BootstrapSequence:
    """Brings a node from any state to a running group member.

    Example:
        >>> sequence = BootstrapSequence.from_config(config, runner, engine, sql)
        >>> outcome = await sequence.run()
    """

    def __init__(
        self,
        config: NodeConfig,
        engine: EngineController,
        storage: StorageInitializer,
        security: SecurityProvisioner,
        settings: SettingsEnforcer,
        coordinator: MembershipCoordinator,
        schema: SchemaApplier,
    ) -> None:
        self.config = config
        self.engine = engine
        self.storage = storage
        self.security = security
        self.settings = settings
        self.coordinator = coordinator
        self.schema = schema

    @classmethod
    def from_config(
        cls,
        config: NodeConfig,
        runner: CommandRunner,
        engine: EngineController,
        sql: SqlClient,
    ) -> BootstrapSequence:
        """Wire all bootstrap components from configuration."""
        principal = runner.principal
        settings = SettingsEnforcer(config.paths.settings_file, config.settings_overrides)
        coordinator = MembershipCoordinator(
            sql,
            config.identity,
            join_poll_interval=config.bootstrap.join_poll_interval,
            role_poll_interval=config.bootstrap.role_poll_interval,
            role_grace_period=config.bootstrap.role_grace_period,
            wait_timeout=config.bootstrap.wait_timeout,
        )
        return cls(
            config=config,
            engine=engine,
            storage=StorageInitializer(
                runner,
                principal,
                config.paths,
                config.identity,
                locale=config.bootstrap.locale,
            ),
            security=SecurityProvisioner(
                runner,
                principal,
                config.paths,
                settings,
                cert_days=config.bootstrap.ssl_cert_days,
            ),
            settings=settings,
            coordinator=coordinator,
            schema=SchemaApplier(
                sql,
                coordinator,
                system_script=config.bootstrap.system_script,
                database_script=config.bootstrap.database_script,
                topology_poll_interval=config.bootstrap.topology_poll_interval,
                topology_min_members=config.bootstrap.topology_min_members,
                wait_timeout=config.bootstrap.wait_timeout,
            ),
        )

    async def run(self) -> BootstrapOutcome:
        """Run every bootstrap step in order."""
        storage = await self.storage.ensure_initialized()
        fresh = storage.freshly_initialized

        await self.security.ensure_tls(self.config.identity)
        self.settings.enforce_all()
        self.security.write_access_rules(self.config.bootstrap.access_rules_extra)

        await self.engine.start(wait_until_ready=True)

        system_applied = await self.schema.apply_system_script(fresh)

        membership = await self.coordinator.coordinate(self.config.bootstrap.wait_for_role)

        database_applied = await self.schema.apply_database_script(fresh, membership.role)

        outcome = BootstrapOutcome(
            freshly_initialized=fresh,
            role=membership.role,
            already_registered=membership.already_registered,
            system_script_applied=system_applied,
            database_script_applied=database_applied,
        )
        logger.info(
            "Bootstrap complete",
            extra={
                "fresh": fresh,
                "role": outcome.role.value,
                "already_registered": outcome.already_registered,
                "system_script": system_applied,
                "database_script": database_applied,
            },
        )
        return outcome
