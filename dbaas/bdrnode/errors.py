"""
Error types for the BDR node controller.

This module defines the exception hierarchy raised during bootstrap and
supervision:
- BdrNodeError: Base exception
- ConfigError: Required environment missing or invalid
- CommandError: An external command exited non-zero
- InitializationError: First-time storage initialization failed
- SettingsError / MissingSettingError: Settings file could not be updated
- MembershipError: Group create/join could not be issued
- WaitTimeoutError: An opt-in deadline on a polling wait expired

Invariants:
    - All errors inherit from BdrNodeError
    - Secrets (passwords, DSNs with passwords) never appear in messages
    - Command errors carry argv and exit status for operator inspection
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence


class BdrNodeError(Exception):
    """Base exception for all controller errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "BDRNODE_ERROR"
        self.details = details or {}


class ConfigError(BdrNodeError, ValueError):
    """Configuration is missing or invalid.

    Raised before any side effect, so the process can exit cleanly.
    """

    def __init__(self, message: str, variable: Optional[str] = None) -> None:
        super().__init__(message, code="CONFIG_ERROR", details={"variable": variable})
        self.variable = variable


class CommandError(BdrNodeError):
    """An external command failed.

    Attributes:
        argv: Command line that was executed
        returncode: Exit status
        stderr: Captured standard error (may be empty)
    """

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        message = f"Command {argv[0]!r} exited with status {returncode}"
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(
            message,
            code="COMMAND_ERROR",
            details={"argv": list(argv), "returncode": returncode},
        )
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr


class InitializationError(BdrNodeError):
    """First-time storage initialization failed.

    The data directory is left as-is for operator inspection.
    """

    def __init__(self, message: str, data_dir: Optional[str] = None) -> None:
        super().__init__(message, code="INITIALIZATION_ERROR", details={"data_dir": data_dir})
        self.data_dir = data_dir


class SettingsError(BdrNodeError):
    """The settings file could not be read or updated."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, code="SETTINGS_ERROR", details={"path": path})
        self.path = path


class MissingSettingError(SettingsError):
    """A key has no template line in the settings file.

    The settings file must pre-declare every key that is enforced,
    commented out if necessary.
    """

    def __init__(self, key: str, path: Optional[str] = None) -> None:
        super().__init__(f"Setting {key!r} is not declared in {path or 'settings file'}", path)
        self.code = "MISSING_SETTING"
        self.details["key"] = key
        self.key = key


class MembershipError(BdrNodeError):
    """Replication group membership could not be established."""

    def __init__(self, message: str, node_name: Optional[str] = None) -> None:
        super().__init__(message, code="MEMBERSHIP_ERROR", details={"node_name": node_name})
        self.node_name = node_name


class WaitTimeoutError(BdrNodeError):
    """A polling wait exceeded its caller-supplied deadline."""

    def __init__(self, description: str, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout:g}s waiting for {description}",
            code="WAIT_TIMEOUT",
            details={"description": description, "timeout": timeout},
        )
        self.description = description
        self.timeout = timeout
