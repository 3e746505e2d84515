"""
TLS material and access rules.

Invariants:
    - The key pair is generated at most once (skipped when server.key exists)
    - The key is mode 0600 and both files belong to the engine principal
    - pg_hba.conf is rewritten on every startup, in first-match-wins order:
      local peer rules for postgres, then hostssl md5 rules for everyone,
      then the operator's extra block verbatim
    - TLS is switched on in the settings file before rules that require it
"""

from __future__ import annotations

import logging
import os
from typing import List

from ..config import IdentityConfig, PathsConfig
from ..engine.runner import CommandRunner, Principal
from .settings import SettingsEnforcer

logger = logging.getLogger(__name__)

PEER_RULES = (
    "local   all             postgres                                peer",
    "local   replication     postgres                                peer",
)

SSL_RULES = (
    "hostssl all             all             0.0.0.0/0               md5",
    "hostssl all             all             ::/0                    md5",
    "hostssl replication     all             0.0.0.0/0               md5",
    "hostssl replication     all             ::/0                    md5",
)


def render_access_rules(extra_rules: str = "") -> str:
    """Render pg_hba.conf content.

    Args:
        extra_rules: Operator-supplied lines appended as-is

    Returns:
        File content ending with a newline
    """
    lines: List[str] = ["# Managed by bdrnode; rewritten on every start", ""]
    lines += PEER_RULES
    lines += SSL_RULES
    if extra_rules.strip():
        lines.append("")
        lines.append("# Extra rules (PG_HBA_EXTRA)")
        lines += extra_rules.strip("\n").splitlines()
    return "\n".join(lines) + "\n"


class SecurityProvisioner:
    """Provisions the node's TLS pair and access rules.

    Example:
        >>> security = SecurityProvisioner(runner, principal, paths, settings)
        >>> await security.ensure_tls(config.identity)
        >>> security.write_access_rules(config.bootstrap.access_rules_extra)
    """

    def __init__(
        self,
        runner: CommandRunner,
        principal: Principal,
        paths: PathsConfig,
        settings: SettingsEnforcer,
        cert_days: int = 3650,
    ) -> None:
        self.runner = runner
        self.principal = principal
        self.paths = paths
        self.settings = settings
        self.cert_days = cert_days

    async def ensure_tls(self, identity: IdentityConfig) -> bool:
        """Generate a self-signed pair for the node if none exists.

        Returns:
            True if a new pair was generated
        """
        key_file = self.paths.tls_key_file
        cert_file = self.paths.tls_cert_file
        if os.path.exists(key_file):
            logger.info("TLS key already present, not regenerating", extra={"key_file": key_file})
            return False

        logger.info("Generating self-signed TLS certificate", extra={"cn": identity.node_name})
        await self.runner.run(
            [
                "openssl",
                "req",
                "-new",
                "-x509",
                "-nodes",
                "-days",
                str(self.cert_days),
                "-subj",
                f"/CN={identity.node_name}",
                "-keyout",
                key_file,
                "-out",
                cert_file,
            ],
            as_engine_user=False,
        )
        os.chmod(key_file, 0o600)
        self.principal.adjust_owner(key_file)
        self.principal.adjust_owner(cert_file)
        return True

    def write_access_rules(self, extra_rules: str = "") -> None:
        """Enable TLS and rewrite pg_hba.conf."""
        self.settings.apply_settings(
            {
                "ssl": "on",
                "ssl_cert_file": f"'{self.paths.tls_cert_file}'",
                "ssl_key_file": f"'{self.paths.tls_key_file}'",
            }
        )

        path = self.paths.access_rules_file
        # Truncate and rewrite; the previous content is never merged
        with open(path, "w") as f:
            f.write(render_access_rules(extra_rules))
        logger.info("Access rules written", extra={"path": path, "extra": bool(extra_rules.strip())})
