"""Tests for the erection-readiness command line."""

import pytest
from typer.testing import CliRunner

from erection_readiness import cli
from erection_readiness.config import Settings
from erection_readiness.logging_config import configure_logging

runner = CliRunner()


@pytest.fixture
def cli_session(db_session, monkeypatch):
    """Route the CLI's sessions to the in-memory test database."""
    configure_logging(Settings(log_level="WARNING", log_format="console"), force=True)
    monkeypatch.setattr(cli, "configure_logging", lambda: None)
    monkeypatch.setattr(cli, "get_session_local", lambda: lambda: db_session)
    return db_session


def test_recompute_json(cli_session, project, seed):
    seed.task(project, hold_area=True)
    project_id = project.id

    result = runner.invoke(cli.app, ["recompute", project_id, "--json"])

    assert result.exit_code == 0
    assert f"\"project_id\": \"{project_id}\"" in result.stdout
    assert "\"tasks_evaluated\": 1" in result.stdout
    assert "\"constraints_opened\": 1" in result.stdout


def test_recompute_table(cli_session, project):
    result = runner.invoke(cli.app, ["recompute", project.id])
    assert result.exit_code == 0
    assert "Tasks evaluated" in result.stdout


def test_validate_edge(cli_session, project, seed):
    first = seed.task(project)
    second = seed.task(project, predecessor_ids=[first.id])
    ids = (project.id, first.id, second.id)

    ok = runner.invoke(cli.app, ["validate-edge", ids[2], ids[1], "--project", ids[0]])
    assert ok.exit_code == 0

    cyclic = runner.invoke(cli.app, ["validate-edge", ids[1], ids[2], "--project", ids[0]])
    assert cyclic.exit_code == 1
    assert "CYCLE_DETECTED" in cyclic.stdout


def test_check_cycles_clean(cli_session, project, seed):
    seed.task(project)
    result = runner.invoke(cli.app, ["check-cycles", project.id])
    assert result.exit_code == 0
    assert "No cycles found" in result.stdout
