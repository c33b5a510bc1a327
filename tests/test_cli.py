"""
Tests for the folio CLI.

Each test runs in an empty project directory with an isolated config
home; records live in .folio/records.json under that directory.
"""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from folio.cli import app

runner = CliRunner()


@pytest.fixture
def project(isolated_config, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """An empty project with two known users, acting as Dana."""
    project_dir = tmp_path / "project"
    project_dir.mkdir()
    (project_dir / ".folio.json").write_text(
        json.dumps(
            {
                "users": [
                    {"id": "u_dana", "name": "Dana", "team": "Auto"},
                    {"id": "u_lee", "name": "Lee", "team": "POS"},
                ]
            }
        )
    )
    monkeypatch.chdir(project_dir)
    monkeypatch.setenv("FOLIO_USER", "u_dana")
    return project_dir


def create(title: str, *args: str) -> str:
    result = runner.invoke(app, ["records", "create", title, "--quarter", "Q4 2025", *args])
    assert result.exit_code == 0, result.output
    return json.loads(
        runner.invoke(app, ["records", "list", "--json"]).output
    )[-1]["id"]


def show(record_id: str) -> dict:
    result = runner.invoke(app, ["records", "show", record_id, "--json"])
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


class TestApp:
    """Test the top-level app."""

    def test_version(self) -> None:
        """Test the version command."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "folio version" in result.output

    def test_help_lists_command_groups(self) -> None:
        """Test that every command group is registered."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for group in ("records", "workflows", "validate", "audit"):
            assert group in result.output


class TestRecordCommands:
    """Test the records subcommands."""

    def test_create_applies_on_create_workflows(self, project) -> None:
        """Test creation, id generation and team classification."""
        result = runner.invoke(app, ["records", "create", "Billing revamp", "-q", "Q4 2025"])
        assert result.exit_code == 0, result.output
        assert "Created: Q425-001" in result.output
        assert "Asset class: Auto" in result.output

        stored = json.loads((project / ".folio" / "records.json").read_text())
        assert [r["id"] for r in stored["records"]] == ["Q425-001"]

    def test_list_filters(self, project) -> None:
        """Test list filters and JSON output."""
        create("Billing revamp")
        create("Kiosk pilot", "--owner", "u_lee")

        result = runner.invoke(app, ["records", "list", "--owner", "u_lee", "--json"])
        assert result.exit_code == 0
        assert [r["title"] for r in json.loads(result.output)] == ["Kiosk pilot"]

        result = runner.invoke(app, ["records", "list"])
        assert "Total: 2 records" in result.output

    def test_list_invalid_status(self, project) -> None:
        """Test that unknown statuses are rejected."""
        result = runner.invoke(app, ["records", "list", "--status", "Someday"])
        assert result.exit_code == 2
        assert "Invalid value" in result.output

    def test_show_unknown_record(self, project) -> None:
        """Test the not-found error and exit code."""
        result = runner.invoke(app, ["records", "show", "Q425-999"])
        assert result.exit_code == 2
        assert "Record not found: Q425-999" in result.output

    def test_edit_field(self, project) -> None:
        """Test a field edit and its audit trail."""
        record_id = create("Billing revamp")
        result = runner.invoke(app, ["records", "edit", record_id, "status", "At Risk"])
        assert result.exit_code == 0, result.output
        assert "Status = At Risk" in result.output
        assert show(record_id)["status"] == "At Risk"

        result = runner.invoke(app, ["audit", "log", record_id, "--json"])
        entries = json.loads(result.output)
        assert entries[-1]["field"] == "status"
        assert entries[-1]["new_value"] == "At Risk"
        assert entries[-1]["actor"] == "Dana"

    def test_edit_effort_starts_record(self, project) -> None:
        """Test that logging effort moves a record to In Progress."""
        record_id = create("Billing revamp")
        result = runner.invoke(app, ["records", "edit", record_id, "actual-effort", "1.5"])
        assert result.exit_code == 0, result.output
        assert "Status: In Progress" in result.output

    def test_edit_clear_and_errors(self, project) -> None:
        """Test --clear and invalid edit input."""
        record_id = create("Billing revamp", "--eta", "2025-12-15")
        result = runner.invoke(app, ["records", "edit", record_id, "eta", "--clear"])
        assert result.exit_code == 0, result.output
        assert show(record_id)["eta"] is None

        result = runner.invoke(app, ["records", "edit", record_id, "colour", "red"])
        assert result.exit_code == 2
        result = runner.invoke(app, ["records", "edit", record_id, "status"])
        assert result.exit_code == 2
        assert "Missing value" in result.output
        result = runner.invoke(app, ["records", "edit", record_id, "status", "Someday"])
        assert result.exit_code == 2
        assert "Invalid value for 'status'" in result.output

    def test_delete_and_restore(self, project) -> None:
        """Test soft deletion from the command line."""
        record_id = create("Billing revamp")
        assert runner.invoke(app, ["records", "delete", record_id]).exit_code == 0
        assert json.loads(runner.invoke(app, ["records", "list", "--json"]).output) == []
        listed = json.loads(runner.invoke(app, ["records", "list", "--all", "--json"]).output)
        assert listed[0]["status"] == "Deleted"

        result = runner.invoke(app, ["records", "restore", record_id])
        assert result.exit_code == 0
        assert "Not Started" in result.output

    def test_comment(self, project) -> None:
        """Test posting a comment."""
        record_id = create("Billing revamp")
        result = runner.invoke(
            app, ["records", "comment", record_id, "Blocked on vendor", "-m", "u_lee"]
        )
        assert result.exit_code == 0, result.output
        [comment] = show(record_id)["comments"]
        assert comment["text"] == "Blocked on vendor"
        assert comment["mentioned_user_ids"] == ["u_lee"]


class TestWorkflowCommands:
    """Test the workflows subcommands."""

    def test_list(self, project) -> None:
        """Test that system workflows are listed."""
        result = runner.invoke(app, ["workflows", "list"])
        assert result.exit_code == 0
        assert "system-auto-at-risk" in result.output
        assert "system-weekly-reminder" in result.output

    def test_run_by_id(self, project) -> None:
        """Test running the at-risk workflow on demand."""
        record_id = create("Billing revamp", "--eta", "2020-01-31")
        result = runner.invoke(app, ["workflows", "run", "system-auto-at-risk"])
        assert result.exit_code == 0, result.output
        assert "1 record(s) affected" in result.output
        assert show(record_id)["status"] == "At Risk"

    def test_run_unknown(self, project) -> None:
        """Test that unknown workflows are user errors."""
        result = runner.invoke(app, ["workflows", "run", "nope"])
        assert result.exit_code == 2

    def test_tick_at_nine(self, project) -> None:
        """Test a scheduled tick at a given time."""
        record_id = create("Billing revamp", "--eta", "2020-01-31")
        result = runner.invoke(app, ["workflows", "tick", "--at", "09:00"])
        assert result.exit_code == 0, result.output
        assert "1 record(s) affected" in result.output
        assert show(record_id)["status"] == "At Risk"

    def test_tick_nothing_due(self, project) -> None:
        """Test a tick when no schedule matches."""
        result = runner.invoke(app, ["workflows", "tick", "--at", "03:17"])
        assert result.exit_code == 0
        assert "No workflows due" in result.output

    def test_tick_option_errors(self, project) -> None:
        """Test invalid tick options."""
        assert runner.invoke(app, ["workflows", "tick", "--at", "nine"]).exit_code == 2
        result = runner.invoke(app, ["workflows", "tick", "--at", "09:00", "--watch"])
        assert result.exit_code == 2


class TestValidateAndAudit:
    """Test the validate and audit subcommands."""

    def test_validate_effort(self, project) -> None:
        """Test effort validation output."""
        create("Billing revamp")
        result = runner.invoke(app, ["validate", "effort", "--json"])
        [validation] = json.loads(result.output)
        assert validation["owner_id"] == "u_dana"
        assert validation["flagged"] is False
        assert result.exit_code == 0

    def test_duplicates(self, project) -> None:
        """Test detecting and removing duplicate ids in storage."""
        data_dir = project / ".folio"
        data_dir.mkdir()
        (data_dir / "records.json").write_text(
            json.dumps(
                {
                    "records": [
                        {"id": "Q425-001", "title": "A"},
                        {"id": "Q425-001", "title": "A copy"},
                        {"id": "Q425-002", "title": "B"},
                    ]
                }
            )
        )
        result = runner.invoke(app, ["audit", "duplicates"])
        assert result.exit_code == 1
        assert "Q425-001 x2" in result.output

        result = runner.invoke(app, ["audit", "duplicates", "--fix"])
        assert result.exit_code == 0
        assert "Removed 1 duplicate record(s)" in result.output
        stored = json.loads((data_dir / "records.json").read_text())
        assert [r["title"] for r in stored["records"]] == ["A", "B"]

        result = runner.invoke(app, ["audit", "duplicates"])
        assert result.exit_code == 0

    def test_empty_audit_log(self, project) -> None:
        """Test the audit log with nothing recorded."""
        result = runner.invoke(app, ["audit", "log"])
        assert result.exit_code == 0
        assert "No changes recorded" in result.output
