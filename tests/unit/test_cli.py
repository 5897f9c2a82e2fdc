"""Unit tests for the command-line interface."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from plansmith import __version__
from plansmith.cli.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch: pytest.MonkeyPatch, mock_settings) -> None:
    """Keep loguru sinks out of the runner's captured streams."""
    monkeypatch.setattr("plansmith.cli.main.configure_logging", lambda settings: None)


@pytest.fixture
def plan_file(tmp_path: Path, sample_tasks: list) -> Path:
    path = tmp_path / "plan.json"
    path.write_text(json.dumps({"tasks": [t.to_dict() for t in sample_tasks]}))
    return path


class TestCli:
    """Tests for CLI commands."""

    def test_version(self) -> None:
        """Test the version command and flag."""
        assert __version__ in runner.invoke(app, ["version"]).output
        assert __version__ in runner.invoke(app, ["--version"]).output

    def test_decompose_offline(self, tmp_path: Path) -> None:
        """Test that offline decomposition writes the fallback plan."""
        output = tmp_path / "out.json"
        result = runner.invoke(
            app,
            ["decompose", "Export invoices as CSV", "--id", "F-3", "--offline", "-o", str(output)],
        )

        assert result.exit_code == 0
        assert "fallback" in result.output
        data = json.loads(output.read_text())
        assert [t["id"] for t in data["tasks"]] == ["F-3.1"]
        assert data["used_fallback"] is True
        assert data["dependency_graph"] == {"F-3.1": []}

    def test_rank(self, plan_file: Path) -> None:
        """Test ranking a saved plan."""
        result = runner.invoke(app, ["rank", str(plan_file)])

        assert result.exit_code == 0
        assert "F-1.1" in result.output
        assert "average score: 32.75" in result.output

    def test_critical_path(self, plan_file: Path) -> None:
        """Test the critical path view."""
        result = runner.invoke(app, ["critical-path", str(plan_file)])

        assert result.exit_code == 0
        assert "115 min" in result.output
        assert "Wave 1:" in result.output

    def test_missing_plan(self, tmp_path: Path) -> None:
        """Test a plan path that does not exist."""
        result = runner.invoke(app, ["rank", str(tmp_path / "nope.json")])
        assert result.exit_code == 1
