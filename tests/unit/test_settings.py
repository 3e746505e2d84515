"""
Unit tests for settings file enforcement.

Tests cover:
- Template line replacement
- Exactly one active line per enforced key
- Override precedence over mandatory values
- Missing template lines
"""

import pytest

from dbaas.bdrnode.bootstrap.settings import (
    MANDATORY_SETTINGS,
    SettingsEnforcer,
    SettingsFile,
)
from dbaas.bdrnode.errors import MissingSettingError, SettingsError
from tests.fakes import TEMPLATE_SETTINGS


def active_lines(path, key):
    with open(path) as f:
        return [
            line for line in f.read().splitlines()
            if line.split("=")[0].strip() == key
        ]


class TestSettingsFile:
    """Tests for SettingsFile."""

    @pytest.fixture
    def conf(self, tmp_path):
        path = tmp_path / "postgresql.conf"
        path.write_text(TEMPLATE_SETTINGS)
        return str(path)

    def test_uncomments_template_line(self, conf):
        settings = SettingsFile.load(conf)
        settings.set("wal_level", "'logical'")
        settings.save()
        assert active_lines(conf, "wal_level") == ["wal_level = 'logical'"]

    def test_replaces_active_line(self, conf):
        settings = SettingsFile.load(conf)
        settings.set("max_connections", "200")
        assert settings.get("max_connections") == "200"

    def test_duplicate_active_lines_commented(self, tmp_path):
        path = tmp_path / "postgresql.conf"
        path.write_text("wal_level = minimal\nfoo = 1\nwal_level = replica\n")
        settings = SettingsFile.load(str(path))
        settings.set("wal_level", "'logical'")
        settings.save()
        assert active_lines(str(path), "wal_level") == ["wal_level = 'logical'"]
        assert "#wal_level = replica" in path.read_text()

    def test_prefix_keys_not_confused(self, conf):
        """Setting ssl must not touch ssl_cert_file."""
        settings = SettingsFile.load(conf)
        settings.set("ssl", "on")
        assert settings.get("ssl") == "on"
        assert settings.get("ssl_cert_file") is None

    def test_missing_key_raises(self, conf):
        settings = SettingsFile.load(conf)
        with pytest.raises(MissingSettingError) as exc:
            settings.set("bdr.default_apply_delay", "0")
        assert exc.value.key == "bdr.default_apply_delay"
        assert isinstance(exc.value, SettingsError)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(SettingsError):
            SettingsFile.load(str(tmp_path / "absent.conf"))

    def test_get_ignores_trailing_comment(self, conf):
        assert SettingsFile.load(conf).get("max_connections") == "100"

    def test_save_preserves_other_lines(self, conf):
        settings = SettingsFile.load(conf)
        settings.set("ssl", "on")
        settings.save()
        with open(conf) as f:
            content = f.read()
        assert "# PostgreSQL configuration file" in content
        assert "#listen_addresses = 'localhost'" in content


class TestSettingsEnforcer:
    """Tests for SettingsEnforcer."""

    @pytest.fixture
    def conf(self, tmp_path):
        path = tmp_path / "postgresql.conf"
        path.write_text(TEMPLATE_SETTINGS)
        return str(path)

    def test_mandatory_settings_enforced(self, conf):
        SettingsEnforcer(conf).enforce_all()
        for key, value in MANDATORY_SETTINGS:
            assert active_lines(conf, key) == [f"{key} = {value}"]

    def test_mandatory_settings_override_prior_values(self, tmp_path):
        path = tmp_path / "postgresql.conf"
        path.write_text(
            TEMPLATE_SETTINGS + "wal_level = minimal\nmax_wal_senders = 0\n"
        )
        SettingsEnforcer(str(path)).enforce_all()
        assert active_lines(str(path), "wal_level") == ["wal_level = 'logical'"]
        assert active_lines(str(path), "max_wal_senders") == ["max_wal_senders = 10"]

    def test_listen_default(self, conf):
        SettingsEnforcer(conf).enforce_all()
        assert active_lines(conf, "listen_addresses") == ["listen_addresses = '*'"]

    def test_override_wins_over_mandatory(self, conf):
        SettingsEnforcer(conf, {"max_replication_slots": "20"}).enforce_all()
        assert active_lines(conf, "max_replication_slots") == ["max_replication_slots = 20"]

    def test_override_applied(self, conf):
        SettingsEnforcer(conf, {"max_connections": "300"}).enforce_all()
        assert active_lines(conf, "max_connections") == ["max_connections = 300"]

    def test_enforcement_is_idempotent(self, conf):
        SettingsEnforcer(conf).enforce_all()
        with open(conf) as f:
            first = f.read()
        SettingsEnforcer(conf).enforce_all()
        with open(conf) as f:
            assert f.read() == first

    def test_reports_changed_keys(self, conf):
        changed = SettingsEnforcer(conf, {"max_connections": "100"}).enforce_all()
        assert "wal_level" in changed
        assert "listen_addresses" in changed
        # Already active with the same value
        assert "max_connections" not in changed

        assert SettingsEnforcer(conf, {"max_connections": "300"}).enforce_all() == [
            "max_connections"
        ]

    def test_unknown_override_fails(self, conf):
        with pytest.raises(MissingSettingError):
            SettingsEnforcer(conf, {"no_such_setting": "1"}).enforce_all()

    def test_apply_setting(self, conf):
        SettingsEnforcer(conf).apply_setting("ssl", "on")
        assert active_lines(conf, "ssl") == ["ssl = on"]
