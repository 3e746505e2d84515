"""
Unit tests for the membership status tool.
"""

import json

import pytest

from dbaas.bdrnode.config import IdentityConfig
from dbaas.bdrnode.membership import MembershipCoordinator
from dbaas.bdrnode.tools import status_cli
from dbaas.bdrnode.tools.status_cli import MemberStatus, StatusCLI
from tests.fakes import FakeSqlClient


def make_cli(sql):
    identity = IdentityConfig(
        node_name="node1",
        superuser_password="",
        database_name="app",
        external_dsn="host=node1",
    )
    return StatusCLI(MembershipCoordinator(sql, identity))


class TestStatusCLI:
    """Tests for StatusCLI."""

    @pytest.mark.asyncio
    async def test_no_extension(self):
        assert await make_cli(FakeSqlClient()).members() is None

    @pytest.mark.asyncio
    async def test_members_sorted(self):
        sql = FakeSqlClient()
        sql.extension = True
        sql.nodes = {"node2": "i", "node1": "r"}

        members = await make_cli(sql).members()

        assert members == [MemberStatus("node1", "r"), MemberStatus("node2", "i")]
        assert [m.ready for m in members] == [True, False]

    def test_render_table_marks_local(self):
        output = make_cli(FakeSqlClient()).render(
            [MemberStatus("node1", "r"), MemberStatus("node2", "i")], "node1"
        )
        lines = output.splitlines()
        assert lines[0].startswith("NODE")
        assert lines[1].startswith("node1 *")
        assert lines[1].endswith("yes")
        assert lines[2].endswith("no")

    def test_render_empty(self):
        assert "No group members" in make_cli(FakeSqlClient()).render([], "node1")

    def test_render_json(self):
        output = make_cli(FakeSqlClient()).render([MemberStatus("node1", "r")], "node1", as_json=True)
        assert json.loads(output) == [
            {"node_name": "node1", "node_status": "r", "ready": True, "local": True}
        ]


class TestMain:
    """Tests for the status entry point."""

    @pytest.fixture(autouse=True)
    def env(self, monkeypatch):
        monkeypatch.setenv("NODE_NAME", "node1")
        monkeypatch.setenv("POSTGRES_DB", "app")
        monkeypatch.delenv("POSTGRES_PASSWORD", raising=False)

    def test_prints_members(self, monkeypatch, capsys):
        async def members(self):
            return [MemberStatus("node1", "r")]

        monkeypatch.setattr(status_cli.StatusCLI, "members", members)

        with pytest.raises(SystemExit) as exc:
            status_cli.main(["--json"])

        assert exc.value.code == 0
        assert json.loads(capsys.readouterr().out)[0]["local"] is True

    def test_missing_extension_exits_1(self, monkeypatch, capsys):
        async def members(self):
            return None

        monkeypatch.setattr(status_cli.StatusCLI, "members", members)

        with pytest.raises(SystemExit) as exc:
            status_cli.main([])

        assert exc.value.code == 1
        assert "not installed" in capsys.readouterr().err

    def test_missing_database_exits_1(self, monkeypatch, capsys):
        monkeypatch.delenv("POSTGRES_DB")

        with pytest.raises(SystemExit) as exc:
            status_cli.main([])

        assert exc.value.code == 1
        assert "POSTGRES_DB" in capsys.readouterr().err
