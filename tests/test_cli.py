"""
Command line tests against a SQLite file database.
"""
import asyncio
from datetime import datetime, timezone

import click
import pytest
from click.testing import CliRunner

from caracol.cli import catalog, cli
from caracol.cli.common import TIME, echo_table
from caracol.core.database import Database
from caracol.models.schemas.collection import DataPoint
from caracol.services.secrets import SecretType


@pytest.fixture
def dburl(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'caracol.db'}"

    async def create():
        db = Database(url)
        await db.create_all()
        await db.dispose()

    asyncio.run(create())
    return url


def invoke(dburl, *args, env=None):
    runner = CliRunner()
    return runner.invoke(cli, ["--log-format", "text", "--dburl", dburl, *args], env=env)


class TestCatalogCommands:
    """Tests for provider, source and query commands."""

    def test_add_and_list(self, dburl):
        result = invoke(
            dburl, "provider", "add", "--name", "grafana", "--api-type", "grafanacloud",
            "--api-url", "https://stack.grafana.net", "--auth-type", "bearer_token",
        )
        assert result.exit_code == 0, result.output
        provider_id = result.output.strip()

        result = invoke(dburl, "source", "add", "--name", "prom", "--provider-id", provider_id, "--dataset", "uid")
        assert result.exit_code == 0, result.output
        source_id = result.output.strip()

        result = invoke(
            dburl, "query", "add", "--name", "requests", "--source-id", source_id, "--query", "up",
            "--query-type", "prometheus", "--interval", "daily", "--start", "2024-01-01T13:30:00Z",
        )
        assert result.exit_code == 0, result.output

        result = invoke(dburl, "query", "list")
        assert result.exit_code == 0, result.output
        assert "requests" in result.output
        assert "2024-01-01T00:00:00Z" in result.output

    def test_check_env(self, dburl):
        invoke(
            dburl, "provider", "add", "--name", "es", "--api-type", "elasticsearch",
            "--api-url", "https://es:9200", "--auth-type", "basic_auth",
        )

        result = invoke(dburl, "provider", "check-env", env={"CARACOL_PROVIDER1_USERNAME": "u"})
        assert result.exit_code == 1
        assert "CARACOL_PROVIDER1_PASSWORD" in result.output

        env = {"CARACOL_PROVIDER1_USERNAME": "u", "CARACOL_PROVIDER1_PASSWORD": "p"}
        assert invoke(dburl, "provider", "check-env", env=env).exit_code == 0

    def test_unsaved_query_is_dispatched(self, dburl, monkeypatch):
        provider_id = invoke(
            dburl, "provider", "add", "--name", "grafana", "--api-type", "grafanacloud",
            "--api-url", "https://stack.grafana.net", "--auth-type", "bearer_token",
        ).output.strip()
        source_id = invoke(
            dburl, "source", "add", "--name", "prom", "--provider-id", provider_id, "--dataset", "uid",
        ).output.strip()
        dispatched = []

        async def fake_dispatch(definition, seq, secrets):
            dispatched.append((definition, seq, secrets))
            return DataPoint(seq=seq, time=definition.seq_time(seq), value=4.5)

        monkeypatch.setattr(catalog, "dispatch_query", fake_dispatch)

        result = invoke(
            dburl, "query", "test", "--source-id", source_id, "--query", "up", "--query-type", "prometheus",
            "--interval", "hourly", "--start", "2024-01-01T00:30:00Z", "--seq", "2",
            env={"CARACOL_PROVIDER1_BEARER_TOKEN": "token"},
        )

        assert result.exit_code == 0, result.output
        definition, seq, secrets = dispatched[0]
        assert definition.id is None
        assert definition.start == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert definition.dataset == "uid"
        assert seq == 2
        assert secrets == {SecretType.BEARER_TOKEN: "token"}
        assert "2024-01-01T02:00:00Z" in result.output
        assert "4.5" in result.output

    def test_unknown_query_is_reported(self, dburl):
        result = invoke(dburl, "collection", "gaps", "--id", "7")

        assert result.exit_code == 1
        assert "query 7 not found" in result.output


class TestHelpers:
    """Tests for CLI parameter types and output."""

    def test_time_formats(self):
        expected = datetime(2024, 1, 1, tzinfo=timezone.utc)

        assert TIME.convert("2024-01-01T00:00:00Z", None, None) == expected
        assert TIME.convert("1704067200", None, None) == expected

    def test_bad_time(self):
        with pytest.raises(click.BadParameter):
            TIME.convert("yesterday", None, None)

    def test_echo_table(self, capsys):
        echo_table(["seq", "value"], [(1, 2.5), (10, None)])

        lines = capsys.readouterr().out.splitlines()
        assert lines[0].split() == ["SEQ", "VALUE"]
        assert lines[1].split() == ["1", "2.5"]
        assert lines[2].split() == ["10"]
