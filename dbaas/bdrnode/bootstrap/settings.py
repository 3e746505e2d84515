"""
Settings file enforcement for postgresql.conf.

SettingsFile is a structured key -> value view over the engine's settings
file. The file written by initdb declares every recognized setting, most of
them commented out, and that template is the contract: a key can only be set
if a line for it (commented or not) already exists.

Invariants:
    - After set(key, value) exactly one active line for key exists
    - Setting a key that has no template line raises MissingSettingError
    - The file is replaced atomically on save()
    - Mandatory replication settings are applied before user overrides, so a
      PGCONF_ override of the same key wins

How to change safely:
    - New mandatory settings must exist in every supported major version's
      template
    - Values are written verbatim; quoting is the caller's responsibility
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from typing import List, Mapping, Optional, Tuple

from ..errors import MissingSettingError, SettingsError

logger = logging.getLogger(__name__)

# Settings BDR needs to work at all
MANDATORY_SETTINGS: Tuple[Tuple[str, str], ...] = (
    ("max_replication_slots", "10"),
    ("max_wal_senders", "10"),
    ("shared_preload_libraries", "'bdr'"),
    ("track_commit_timestamp", "on"),
    ("wal_level", "'logical'"),
    ("log_destination", "'stderr'"),
)

DEFAULT_SETTINGS: Tuple[Tuple[str, str], ...] = (("listen_addresses", "'*'"),)


def _key_pattern(key: str) -> re.Pattern:
    return re.compile(r"^\s*(#\s*)?" + re.escape(key) + r"\s*=")


class SettingsFile:
    """Line-preserving editor for a postgresql.conf style file.

    Example:
        >>> settings = SettingsFile.load("/var/lib/postgresql/9.4/main/postgresql.conf")
        >>> settings.set("wal_level", "'logical'")
        >>> settings.save()
    """

    def __init__(self, path: str, lines: List[str]) -> None:
        self.path = path
        self.lines = lines

    @classmethod
    def load(cls, path: str) -> SettingsFile:
        """Read a settings file.

        Raises:
            SettingsError: If the file cannot be read.
        """
        try:
            with open(path) as f:
                return cls(path, f.read().splitlines())
        except OSError as e:
            raise SettingsError(f"Cannot read settings file {path}: {e}", path)

    def set(self, key: str, value: str) -> None:
        """Set key to value, uncommenting its template line.

        Raises:
            MissingSettingError: If no line declares key.
        """
        pattern = _key_pattern(key)
        found = False
        for index, line in enumerate(self.lines):
            match = pattern.match(line)
            if not match:
                continue
            if not found:
                self.lines[index] = f"{key} = {value}"
                found = True
            elif match.group(1) is None:
                # Duplicate active line; keep the first one authoritative
                self.lines[index] = f"#{line}"
        if not found:
            raise MissingSettingError(key, self.path)

    def get(self, key: str) -> Optional[str]:
        """Value of the active line for key, if any."""
        pattern = re.compile(r"^\s*" + re.escape(key) + r"\s*=\s*(.*?)\s*(#.*)?$")
        for line in self.lines:
            match = pattern.match(line)
            if match:
                return match.group(1)
        return None

    def save(self) -> None:
        """Atomically replace the file with the edited lines."""
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".postgresql.conf.")
        try:
            with os.fdopen(fd, "w") as f:
                f.write("\n".join(self.lines) + "\n")
            if os.path.exists(self.path):
                st = os.stat(self.path)
                os.chmod(tmp_path, st.st_mode & 0o7777)
                try:
                    os.chown(tmp_path, st.st_uid, st.st_gid)
                except PermissionError:
                    logger.debug(f"Cannot preserve ownership of {self.path}")
            os.replace(tmp_path, self.path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise SettingsError(f"Cannot write settings file {self.path}: {e}", self.path)


class SettingsEnforcer:
    """Applies mandatory and user-supplied settings.

    Attributes:
        path: Settings file location
        overrides: PGCONF_ overrides, prefix stripped (applied last)
    """

    def __init__(self, path: str, overrides: Optional[Mapping[str, str]] = None) -> None:
        self.path = path
        self.overrides = dict(overrides or {})

    def apply_setting(self, key: str, value: str) -> None:
        """Set a single key and persist the file."""
        self.apply_settings({key: value})

    def apply_settings(self, settings: Mapping[str, str]) -> None:
        """Set several keys in one read-modify-write pass."""
        settings_file = SettingsFile.load(self.path)
        for key, value in settings.items():
            settings_file.set(key, value)
        settings_file.save()

    def enforce_all(self) -> List[str]:
        """Apply mandatory settings, the listen default, then overrides.

        Returns:
            Keys whose active value changed
        """
        settings_file = SettingsFile.load(self.path)
        # Later entries win: overrides replace mandatory values and defaults
        planned = dict(MANDATORY_SETTINGS + DEFAULT_SETTINGS)
        planned.update(self.overrides)
        changed = sorted(key for key, value in planned.items() if settings_file.get(key) != value)
        for key, value in planned.items():
            settings_file.set(key, value)
        settings_file.save()
        logger.info(
            "Settings enforced",
            extra={
                "path": self.path,
                "overrides": sorted(self.overrides),
                "changed": changed,
            },
        )
        return changed
