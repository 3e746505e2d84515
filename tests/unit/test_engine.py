"""
Unit tests for the engine boundary.

Tests cover:
- CommandRunner privilege prefix, stdin, errors and tracing
- SqlClient argv and result parsing
- SQL quoting helpers
- EngineController pg_ctl invocations
"""

import logging
import sys

import pytest

from dbaas.bdrnode.config import PathsConfig
from dbaas.bdrnode.engine.controller import EngineController
from dbaas.bdrnode.engine.runner import CommandResult, CommandRunner, Principal
from dbaas.bdrnode.engine.sql import SqlClient, quote_ident, quote_literal
from dbaas.bdrnode.errors import CommandError
from tests.fakes import FakePrincipal, FakeRunner


class TestCommandRunner:
    """Tests for CommandRunner against real processes."""

    @pytest.fixture
    def runner(self):
        return CommandRunner(FakePrincipal(), environment={"PATH": "/usr/bin:/bin"})

    def test_prefix_drops_privileges(self, runner):
        assert runner._prefix(True) == ["gosu", "postgres"]
        assert runner._prefix(False) == []

    def test_no_prefix_when_already_engine_user(self, runner, monkeypatch):
        monkeypatch.setattr(runner.principal, "is_current_user", lambda: True)
        assert runner._prefix(True) == []

    def test_unknown_principal_is_not_current_user(self):
        assert Principal("no-such-user-bdrnode").is_current_user() is False

    @pytest.mark.asyncio
    async def test_captures_output_and_stdin(self, runner):
        result = await runner.run(["cat"], as_engine_user=False, input="hello\n")
        assert result.ok
        assert result.stdout == "hello\n"

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises(self, runner):
        with pytest.raises(CommandError) as exc:
            await runner.run(["false"], as_engine_user=False)
        assert exc.value.returncode == 1
        assert exc.value.argv == ["false"]

    @pytest.mark.asyncio
    async def test_nonzero_exit_unchecked(self, runner):
        result = await runner.run(["false"], as_engine_user=False, check=False)
        assert result.returncode == 1
        assert not result.ok

    @pytest.mark.asyncio
    async def test_missing_command(self, runner):
        result = await runner.run(["no-such-binary-bdrnode"], as_engine_user=False, check=False)
        assert result.returncode == 127

    @pytest.mark.asyncio
    async def test_environment_passed_to_child(self):
        runner = CommandRunner(FakePrincipal(), environment={"PATH": "/usr/bin:/bin", "X": "1"})
        result = await runner.run(["env"], as_engine_user=False)
        assert "X=1" in result.stdout.splitlines()
        assert "POSTGRES_PASSWORD" not in result.stdout

    @pytest.mark.asyncio
    async def test_trace_logs_argv_not_stdin(self, runner, caplog):
        runner.trace = True
        with caplog.at_level(logging.INFO, logger="dbaas.bdrnode.engine.runner"):
            await runner.run(["cat"], as_engine_user=False, input="top-secret")
        assert "+ cat" in caplog.text
        assert "top-secret" not in caplog.text

    @pytest.mark.asyncio
    async def test_no_trace_by_default(self, runner, caplog):
        with caplog.at_level(logging.INFO, logger="dbaas.bdrnode.engine.runner"):
            await runner.run(["true"], as_engine_user=False)
        assert "+ true" not in caplog.text


class TestQuoting:
    """Tests for SQL quoting helpers."""

    def test_literal(self):
        assert quote_literal("app") == "'app'"
        assert quote_literal("o'brien") == "'o''brien'"

    def test_literal_backslash(self):
        assert quote_literal("a\\b") == "E'a\\\\b'"

    def test_ident(self):
        assert quote_ident("app") == '"app"'
        assert quote_ident('we"ird') == '"we""ird"'


class TestSqlClient:
    """Tests for SqlClient."""

    @pytest.fixture
    def runner(self):
        return FakeRunner()

    @pytest.fixture
    def sql(self, runner):
        return SqlClient(runner, psql="/pg/bin/psql")

    @pytest.mark.asyncio
    async def test_execute_sends_sql_on_stdin(self, sql, runner):
        await sql.execute("SELECT 1;", "app")
        (call,) = runner.calls
        assert call["argv"][0] == "/pg/bin/psql"
        assert "ON_ERROR_STOP=1" in call["argv"]
        assert call["argv"][call["argv"].index("-d") + 1] == "app"
        assert call["argv"][-2:] == ["-f", "-"]
        assert call["input"] == "SELECT 1;"
        assert call["as_engine_user"] is True

    @pytest.mark.asyncio
    async def test_no_database_flag_when_system_wide(self, sql, runner):
        await sql.execute("SELECT 1;")
        assert "-d" not in runner.calls[0]["argv"]

    @pytest.mark.asyncio
    async def test_query_rows(self, sql, runner):
        runner.on("psql", lambda argv, input: CommandResult(argv, 0, "n1|r\nn2|i\n"))
        assert await sql.query_rows("SELECT ...") == [["n1", "r"], ["n2", "i"]]

    @pytest.mark.asyncio
    async def test_query_value_empty(self, sql, runner):
        runner.on("psql", lambda argv, input: CommandResult(argv, 0, ""))
        assert await sql.query_value("SELECT ...") is None

    @pytest.mark.asyncio
    async def test_query_value_first_column(self, sql, runner):
        runner.on("psql", lambda argv, input: CommandResult(argv, 0, "3\n"))
        assert await sql.query_value("SELECT count(*) ...") == "3"

    @pytest.mark.asyncio
    async def test_execute_file(self, sql, runner):
        await sql.execute_file("/init/schema.sql", "app")
        argv = runner.calls[0]["argv"]
        assert argv[-2:] == ["-f", "/init/schema.sql"]
        assert runner.calls[0]["input"] is None

    @pytest.mark.asyncio
    async def test_failure_raises(self, sql, runner):
        runner.on("psql", lambda argv, input: CommandResult(argv, 3, "", "ERROR: boom"))
        with pytest.raises(CommandError):
            await sql.execute("SELECT broken;")


class TestEngineController:
    """Tests for EngineController."""

    @pytest.fixture
    def runner(self):
        return FakeRunner()

    @pytest.fixture
    def paths(self):
        return PathsConfig(storage_root="/data", bin_dir="/pg/bin")

    @pytest.fixture
    def engine(self, runner, paths):
        return EngineController(runner, paths)

    @pytest.mark.asyncio
    async def test_start_waits(self, engine, runner):
        await engine.start(wait_until_ready=True)
        call = runner.calls[0]
        assert call["argv"] == ["/pg/bin/pg_ctl", "start", "-D", "/data/9.4/main", "-w"]
        assert call["capture"] is False
        assert call["as_engine_user"] is True

    @pytest.mark.asyncio
    async def test_start_no_wait(self, engine, runner):
        await engine.start(wait_until_ready=False)
        assert runner.calls[0]["argv"][-1] == "-W"

    @pytest.mark.asyncio
    async def test_start_with_config_dir(self, runner):
        paths = PathsConfig(storage_root="/data", bin_dir="/pg/bin", config_dir="/etc/pg")
        await EngineController(runner, paths).start()
        assert runner.calls[0]["argv"][-2:] == ["-o", "-c config_file=/etc/pg/postgresql.conf"]

    @pytest.mark.asyncio
    async def test_stop_is_graceful(self, engine, runner):
        await engine.stop()
        argv = runner.calls[0]["argv"]
        assert argv[1] == "stop"
        assert argv[argv.index("-m") + 1] == "fast"

    @pytest.mark.asyncio
    async def test_reload(self, engine, runner):
        await engine.reload()
        assert runner.calls[0]["argv"][:2] == ["/pg/bin/pg_ctl", "reload"]

    @pytest.mark.asyncio
    async def test_is_running(self, engine, runner):
        assert await engine.is_running() is True
        runner.on("pg_ctl", lambda argv, input: CommandResult(argv, 3))
        assert await engine.is_running() is False
