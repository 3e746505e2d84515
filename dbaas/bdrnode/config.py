"""
Configuration management for the BDR node controller.

All configuration is done via environment variables - no config files are
read by the controller itself. The environment is parsed exactly once at
startup into frozen dataclasses; no component re-reads os.environ afterwards.

Invariants:
    - POSTGRES_PASSWORD and POSTGRES_DB are required; missing values raise
      ConfigError before any side effect
    - Secrets are never logged or exposed in error messages
    - child_environment() never contains the superuser password

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Keep the PGCONF_ prefix semantics stable; operators rely on it
    - Document new variables in the Attributes of their section dataclass
"""

from __future__ import annotations

import logging
import os
import re
import socket
from dataclasses import dataclass, field
from typing import Dict, Mapping, MutableMapping, Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

ENGINE_PORT = 5432
SETTINGS_PREFIX = "PGCONF_"
SECRET_VARIABLES = ("POSTGRES_PASSWORD",)

_DSN_NEEDS_QUOTING = re.compile(r"[\s'\\]")


def quote_dsn_value(value: str) -> str:
    """Quote a value for a libpq key=value connection string."""
    if value and not _DSN_NEEDS_QUOTING.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def build_dsn(**params: object) -> str:
    """Build a libpq connection string, skipping None values.

    Example:
        >>> build_dsn(host="node1", port=5432, dbname="app")
        'host=node1 port=5432 dbname=app'
    """
    return " ".join(
        f"{key}={quote_dsn_value(str(value))}" for key, value in params.items() if value is not None
    )


def redact_dsn(dsn: str) -> str:
    """Mask the password in a connection string for logging."""
    return re.sub(r"password=('(?:[^'\\]|\\.)*'|\S+)", "password=***", dsn)


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}", variable=name)


def _env_float(environ: Mapping[str, str], name: str) -> Optional[float]:
    raw = environ.get(name, "")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}", variable=name)


@dataclass(frozen=True)
class IdentityConfig:
    """Node identity and credentials.

    Attributes:
        node_name: Name this node registers under in the replication group
        superuser_password: Password assigned to the postgres superuser
        database_name: Database that is created and replicated
        external_dsn: Connection string peers use to reach this node
        join_dsn: Rendezvous DSN of an existing member (None = found a group)
    """

    node_name: str
    superuser_password: str = field(repr=False)
    database_name: str
    external_dsn: str = field(repr=False)
    join_dsn: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str], require_password: bool = True
    ) -> IdentityConfig:
        """Load identity from environment variables.

        Args:
            environ: Environment mapping
            require_password: Fail when POSTGRES_PASSWORD is missing

        Raises:
            ConfigError: If POSTGRES_PASSWORD or POSTGRES_DB is missing.
        """
        password = environ.get("POSTGRES_PASSWORD", "")
        if not password and require_password:
            raise ConfigError("POSTGRES_PASSWORD is required", variable="POSTGRES_PASSWORD")
        database = environ.get("POSTGRES_DB", "")
        if not database:
            raise ConfigError("POSTGRES_DB is required", variable="POSTGRES_DB")

        node_name = environ.get("NODE_NAME") or socket.gethostname()
        external_dsn = environ.get("BDR_EXTERNAL_DSN") or build_dsn(
            host=node_name,
            port=ENGINE_PORT,
            dbname=database,
            user="postgres",
            password=password or None,
        )

        join_dsn = environ.get("BDR_JOIN_DSN") or None
        if join_dsn and "=" not in join_dsn:
            # A bare host name: connect to the peer the same way peers reach us
            join_dsn = build_dsn(
                host=join_dsn,
                port=ENGINE_PORT,
                dbname=database,
                user="postgres",
                password=password or None,
            )

        return cls(
            node_name=node_name,
            superuser_password=password,
            database_name=database,
            external_dsn=external_dsn,
            join_dsn=join_dsn,
        )

    @property
    def local_dsn(self) -> str:
        """DSN the extension uses to reach this node over the local socket."""
        return build_dsn(port=ENGINE_PORT, dbname=self.database_name, user="postgres")


@dataclass(frozen=True)
class PathsConfig:
    """Filesystem layout of the engine installation.

    Attributes:
        major_version: Engine major version (selects binaries and storage)
        cluster_name: Cluster name under the version directory
        storage_root: Parent of all versioned data directories
        bin_dir: Directory holding initdb, pg_ctl, postgres and psql
        config_dir: Directory holding postgresql.conf and pg_hba.conf
    """

    major_version: str = "9.4"
    cluster_name: str = "main"
    storage_root: str = "/var/lib/postgresql"
    bin_dir: str = "/usr/lib/postgresql/9.4/bin"
    config_dir: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> PathsConfig:
        """Load configuration from environment variables."""
        major = environ.get("PG_MAJOR", "9.4")
        return cls(
            major_version=major,
            cluster_name=environ.get("PG_CLUSTER", "main"),
            storage_root=environ.get("PG_STORAGE_ROOT", "/var/lib/postgresql"),
            bin_dir=environ.get("PG_BIN_DIR", f"/usr/lib/postgresql/{major}/bin"),
            config_dir=environ.get("PG_CONFIG_DIR") or None,
        )

    @property
    def data_dir(self) -> str:
        return os.path.join(self.storage_root, self.major_version, self.cluster_name)

    @property
    def settings_dir(self) -> str:
        return self.config_dir or self.data_dir

    @property
    def version_marker(self) -> str:
        return os.path.join(self.data_dir, "PG_VERSION")

    @property
    def settings_file(self) -> str:
        return os.path.join(self.settings_dir, "postgresql.conf")

    @property
    def access_rules_file(self) -> str:
        return os.path.join(self.settings_dir, "pg_hba.conf")

    @property
    def tls_key_file(self) -> str:
        return os.path.join(self.data_dir, "server.key")

    @property
    def tls_cert_file(self) -> str:
        return os.path.join(self.data_dir, "server.crt")

    def binary(self, name: str) -> str:
        """Absolute path of an engine binary."""
        return os.path.join(self.bin_dir, name)


@dataclass(frozen=True)
class BootstrapConfig:
    """One-time bootstrap behaviour.

    Attributes:
        locale: Locale passed to initdb (encoding is always UTF8)
        system_script: SQL file applied system-wide on first initialization
        database_script: SQL file applied to the target database by the founder
        wait_for_role: Role that must exist before replication starts
        access_rules_extra: Verbatim pg_hba.conf lines appended last
        ssl_cert_days: Validity of the self-signed certificate
        wait_timeout: Optional deadline applied to every polling wait
        role_poll_interval: Seconds between dependency-role checks
        role_grace_period: Seconds to wait after the role appears
        join_poll_interval: Seconds between join readiness checks
        topology_poll_interval: Seconds between running-member checks
        topology_min_members: Running members required before the database script
    """

    locale: str = "en_US.UTF-8"
    system_script: Optional[str] = None
    database_script: Optional[str] = None
    wait_for_role: Optional[str] = None
    access_rules_extra: str = ""
    ssl_cert_days: int = 3650
    wait_timeout: Optional[float] = None
    role_poll_interval: float = 1.0
    role_grace_period: float = 2.0
    join_poll_interval: float = 1.0
    topology_poll_interval: float = 5.0
    topology_min_members: int = 2

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> BootstrapConfig:
        """Load configuration from environment variables."""
        return cls(
            locale=environ.get("PG_LOCALE", "en_US.UTF-8"),
            system_script=environ.get("INIT_SYSTEM_SQL") or None,
            database_script=environ.get("INIT_DATABASE_SQL") or None,
            wait_for_role=environ.get("BDR_WAIT_FOR_ROLE") or None,
            access_rules_extra=environ.get("PG_HBA_EXTRA", ""),
            ssl_cert_days=_env_int(environ, "SSL_CERT_DAYS", 3650),
            wait_timeout=_env_float(environ, "BOOTSTRAP_WAIT_TIMEOUT_SECONDS"),
        )


@dataclass(frozen=True)
class EngineConfig:
    """Engine process supervision.

    Attributes:
        user: Principal the engine and all its tools run as
        privilege_drop_command: Tool used to switch to that principal
        stop_mode: pg_ctl shutdown mode (smart or fast; never immediate)
        monitor_interval: Seconds between liveness checks
    """

    user: str = "postgres"
    privilege_drop_command: str = "gosu"
    stop_mode: str = "fast"
    monitor_interval: float = 60.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> EngineConfig:
        """Load configuration from environment variables."""
        monitor_interval = _env_float(environ, "MONITOR_INTERVAL_SECONDS")
        return cls(
            user=environ.get("ENGINE_USER", "postgres"),
            privilege_drop_command=environ.get("PRIVILEGE_DROP_COMMAND", "gosu"),
            stop_mode=environ.get("ENGINE_STOP_MODE", "fast"),
            monitor_interval=60.0 if monitor_interval is None else monitor_interval,
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=environ.get("LOG_LEVEL", "INFO"),
            log_format=environ.get("LOG_FORMAT", "json"),
        )


def settings_overrides_from_env(environ: Mapping[str, str]) -> Dict[str, str]:
    """Collect PGCONF_<KEY> variables as lowercase setting keys.

    Variables are returned in sorted order so enforcement is deterministic.
    """
    overrides: Dict[str, str] = {}
    for name in sorted(environ):
        if name.startswith(SETTINGS_PREFIX) and len(name) > len(SETTINGS_PREFIX):
            overrides[name[len(SETTINGS_PREFIX):].lower()] = environ[name]
    return overrides


@dataclass(frozen=True)
class NodeConfig:
    """Complete controller configuration.

    Attributes:
        identity: Node identity and credentials
        paths: Engine filesystem layout
        bootstrap: One-time bootstrap behaviour
        engine: Engine supervision settings
        observability: Logging settings
        settings_overrides: PGCONF_ overrides, prefix stripped
        environment: Sanitized environment for child processes
    """

    identity: IdentityConfig
    paths: PathsConfig = field(default_factory=PathsConfig)
    bootstrap: BootstrapConfig = field(default_factory=BootstrapConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    settings_overrides: Mapping[str, str] = field(default_factory=dict)
    environment: Mapping[str, str] = field(default_factory=dict, repr=False)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        require_password: bool = True,
    ) -> NodeConfig:
        """Load complete configuration from environment variables.

        Args:
            environ: Environment mapping (defaults to os.environ)
            require_password: Fail when POSTGRES_PASSWORD is missing

        Returns:
            NodeConfig with all sections populated.

        Raises:
            ConfigError: If required configuration is missing or invalid.
        """
        if environ is None:
            environ = os.environ
        environ = dict(environ)

        config = cls(
            identity=IdentityConfig.from_env(environ, require_password),
            paths=PathsConfig.from_env(environ),
            bootstrap=BootstrapConfig.from_env(environ),
            engine=EngineConfig.from_env(environ),
            observability=ObservabilityConfig.from_env(environ),
            settings_overrides=settings_overrides_from_env(environ),
            environment={k: v for k, v in environ.items() if k not in SECRET_VARIABLES},
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if self.engine.stop_mode not in ("smart", "fast"):
            raise ConfigError(
                f"ENGINE_STOP_MODE must be 'smart' or 'fast', got {self.engine.stop_mode!r}",
                variable="ENGINE_STOP_MODE",
            )
        if self.engine.monitor_interval <= 0:
            raise ConfigError("MONITOR_INTERVAL_SECONDS must be positive", "MONITOR_INTERVAL_SECONDS")
        if self.bootstrap.wait_timeout is not None and self.bootstrap.wait_timeout <= 0:
            raise ConfigError(
                "BOOTSTRAP_WAIT_TIMEOUT_SECONDS must be positive",
                variable="BOOTSTRAP_WAIT_TIMEOUT_SECONDS",
            )

        for variable, path in (
            ("INIT_SYSTEM_SQL", self.bootstrap.system_script),
            ("INIT_DATABASE_SQL", self.bootstrap.database_script),
        ):
            if path and not os.path.isfile(path):
                logger.warning(f"{variable} points to a missing file: {path}. It will be skipped.")

    def child_environment(self) -> Dict[str, str]:
        """Environment for subprocesses, without secrets."""
        return dict(self.environment)

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Node configuration loaded",
            extra={
                "node_name": self.identity.node_name,
                "database": self.identity.database_name,
                "external_dsn": redact_dsn(self.identity.external_dsn),
                "join_dsn": redact_dsn(self.identity.join_dsn) if self.identity.join_dsn else None,
                "data_dir": self.paths.data_dir,
                "settings_file": self.paths.settings_file,
                "wait_for_role": self.bootstrap.wait_for_role,
                "system_script": self.bootstrap.system_script,
                "database_script": self.bootstrap.database_script,
                "settings_overrides": sorted(self.settings_overrides),
                "log_level": self.observability.log_level,
            },
        )


def scrub_secrets(environ: Optional[MutableMapping[str, str]] = None) -> None:
    """Remove secret variables from the live process environment."""
    if environ is None:
        environ = os.environ
    for name in SECRET_VARIABLES:
        environ.pop(name, None)
