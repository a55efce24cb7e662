"""Unit tests for the asana_sync.main CLI module."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from asana_sync.main import cli
from asana_sync.orchestrator import SyncOutcome
from asana_sync.rules.models import TaskResult

RULES_YAML = """
rules:
  - when:
      event: pull_request
      action: opened
    then:
      update_fields:
        "1201": "In Review"
"""

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def no_logging_setup():
    """Keep the global structlog configuration out of CLI tests."""
    with patch("asana_sync.main.configure_logging") as mock_configure:
        yield mock_configure


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def action_env(monkeypatch, tmp_path: Path):
    """Environment of a workflow step running the action."""
    event_path = tmp_path / "event.json"
    event_path.write_text(
        json.dumps(
            {
                "action": "opened",
                "pull_request": {
                    "number": 42,
                    "title": "feat: Dark mode",
                    "body": "https://app.asana.com/0/1100/2001",
                    "user": {"login": "octocat"},
                },
            }
        )
    )
    monkeypatch.setenv("INPUT_ASANA_TOKEN", "asana-token")
    monkeypatch.setenv("INPUT_GITHUB_TOKEN", "gh-token")
    monkeypatch.setenv("INPUT_RULES", RULES_YAML)
    monkeypatch.setenv("INPUT_USER_MAPPINGS", "")
    monkeypatch.setenv("INPUT_DRY_RUN", "false")
    monkeypatch.delenv("INPUT_INTEGRATION_SECRET", raising=False)
    monkeypatch.setenv("GITHUB_EVENT_NAME", "pull_request")
    monkeypatch.setenv("GITHUB_EVENT_PATH", str(event_path))
    monkeypatch.setenv("GITHUB_REPOSITORY", "acme/widgets")
    monkeypatch.setenv("GITHUB_OUTPUT", str(tmp_path / "output"))
    return tmp_path


# =============================================================================
# run
# =============================================================================


class TestRunCommand:
    """Tests for the run command."""

    def test_writes_outputs(self, cli_runner, action_env) -> None:
        """Should sync the event and write step outputs."""
        outcome = SyncOutcome(
            task_ids=["2001"],
            results=[TaskResult(gid="2001", name="Dark mode", url="u", success=True)],
            tasks_updated=1,
        )

        with patch("asana_sync.main.SyncOrchestrator") as mock_orchestrator:
            mock_orchestrator.return_value.run = AsyncMock(return_value=outcome)
            result = cli_runner.invoke(cli, ["run"])

        assert result.exit_code == 0, result.output
        config, asana, github = mock_orchestrator.call_args[0]
        assert len(config.rules) == 1
        assert asana.dry_run is False
        assert github.repo_path == "/repos/acme/widgets"
        event_name, payload = mock_orchestrator.return_value.run.call_args[0]
        assert event_name == "pull_request"
        assert payload["pull_request"]["number"] == 42
        assert (action_env / "output").read_text() == "task_ids=2001\ntasks_updated=1\n"

    def test_invalid_rules_exit_1(self, cli_runner, action_env, monkeypatch) -> None:
        """Should fail the step on invalid rules."""
        monkeypatch.setenv("INPUT_RULES", "rules: []")

        result = cli_runner.invoke(cli, ["run"])

        assert result.exit_code == 1
        assert "Error: rules array cannot be empty" in result.output

    def test_missing_input_exit_1(self, cli_runner, action_env, monkeypatch) -> None:
        """Should fail the step when a required input is missing."""
        monkeypatch.delenv("INPUT_ASANA_TOKEN")

        result = cli_runner.invoke(cli, ["run"])

        assert result.exit_code == 1
        assert "asana_token" in result.output

    def test_unsupported_event_exit_1(self, cli_runner, action_env, monkeypatch) -> None:
        """Should fail the step for events it cannot handle."""
        monkeypatch.setenv("GITHUB_EVENT_NAME", "push")

        result = cli_runner.invoke(cli, ["run"])

        assert result.exit_code == 1
        assert "Unsupported event: push" in result.output

    def test_sync_errors_do_not_fail_step(self, cli_runner, action_env) -> None:
        """Should report unexpected errors without failing the workflow."""
        with patch("asana_sync.main.SyncOrchestrator") as mock_orchestrator:
            mock_orchestrator.return_value.run = AsyncMock(side_effect=RuntimeError("boom"))
            result = cli_runner.invoke(cli, ["run"])

        assert result.exit_code == 0
        assert "Action error: boom" in result.output
        assert not (action_env / "output").exists()

    def test_no_outputs_when_nothing_done(self, cli_runner, action_env) -> None:
        """Should not write outputs when nothing was synced."""
        with patch("asana_sync.main.SyncOrchestrator") as mock_orchestrator:
            mock_orchestrator.return_value.run = AsyncMock(return_value=SyncOutcome())
            result = cli_runner.invoke(cli, ["run"])

        assert result.exit_code == 0
        assert not (action_env / "output").exists() or (action_env / "output").read_text() == ""


# =============================================================================
# validate
# =============================================================================


class TestValidateCommand:
    """Tests for the validate command."""

    def test_valid_file(self, cli_runner, tmp_path: Path) -> None:
        """Should report the number of rules."""
        rules_file = tmp_path / "rules.yml"
        rules_file.write_text(RULES_YAML + 'user_mappings:\n  octocat: "1300"\n')

        result = cli_runner.invoke(cli, ["validate", str(rules_file)])

        assert result.exit_code == 0
        assert "Rules configuration is valid: 1 rule(s)" in result.output
        assert "User mappings: 1" in result.output

    def test_invalid_file(self, cli_runner, tmp_path: Path) -> None:
        """Should exit 1 with the validation error."""
        rules_file = tmp_path / "rules.yml"
        rules_file.write_text("rules:\n  - when: {event: pull_request}\n    then: {update_fields: {status: x}}\n")

        result = cli_runner.invoke(cli, ["validate", str(rules_file)])

        assert result.exit_code == 1
        assert "Rule 0: Invalid field GID 'status' (must be numeric)" in result.output

    def test_missing_file(self, cli_runner, tmp_path: Path) -> None:
        """Should exit 1 for a missing file."""
        result = cli_runner.invoke(cli, ["validate", str(tmp_path / "missing.yml")])

        assert result.exit_code == 1
        assert "Rules file not found" in result.output

    def test_help(self, cli_runner) -> None:
        """Should list the commands."""
        result = cli_runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "run" in result.output
        assert "validate" in result.output

    def test_log_level_option(self, cli_runner, tmp_path: Path, no_logging_setup) -> None:
        """Should configure logging with the requested level."""
        rules_file = tmp_path / "rules.yml"
        rules_file.write_text(RULES_YAML)

        result = cli_runner.invoke(cli, ["--log-level", "DEBUG", "validate", str(rules_file)])

        assert result.exit_code == 0
        no_logging_setup.assert_called_once_with("DEBUG")
