"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work against a
throwaway sqlite database and the shipped curriculum.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


@pytest.fixture
def database(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


def run_cli_command(command: str, database: str | None = None, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python -m src.cli.nexus_cli')
        database: SQLAlchemy URL appended as --database
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    args = [sys.executable, "-m", "src.cli.nexus_cli", *command.split()]
    if database:
        args += ["--database", database]

    result = subprocess.run(
        args,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
        env={**os.environ, "COLUMNS": "200", "PYTHONIOENCODING": "utf-8"},
    )

    return result.returncode, result.stdout, result.stderr


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "nexus" in stdout.lower()
        assert "Commands" in stdout

    @pytest.mark.parametrize(
        "command",
        ["init-db", "add-student", "record", "scores", "reviews", "profile", "unlock", "choose", "tree"],
    )
    def test_command_help(self, command):
        code, stdout, stderr = run_cli_command(f"{command} --help")
        assert code == 0, f"{command} --help failed: {stderr}"
        assert "Usage" in stdout


class TestCLIFlow:
    """Drive one student through the shipped curriculum."""

    def test_init_db(self, database):
        code, stdout, stderr = run_cli_command("init-db", database)
        assert code == 0, stderr
        assert "Database initialized" in stdout

    def test_student_flow(self, database):
        code, stdout, stderr = run_cli_command("add-student s1 --name Sam --grade 4 --domain math", database)
        assert code == 0, stderr
        assert "Registered" in stdout

        for _ in range(4):
            code, stdout, stderr = run_cli_command("record s1 frac-intro 1.0 --latency 4000", database)
            assert code == 0, stderr
        code, stdout, stderr = run_cli_command("record s1 frac-intro 1.0 --latency 4000", database)
        assert code == 0, stderr
        assert "Proficient" in stdout
        assert "frac-visual" in stdout

        code, stdout, stderr = run_cli_command("scores s1", database)
        assert code == 0, stderr
        assert "frac-intro" in stdout

        code, stdout, stderr = run_cli_command("choose s1 frac-visual", database)
        assert code == 0, stderr
        assert "frac-area" in stdout

        code, stdout, stderr = run_cli_command("tree s1 --domain math", database)
        assert code == 0, stderr
        assert "Symbolic fractions" in stdout

        for command in ("reviews s1", "profile s1", "unlock s1"):
            code, stdout, stderr = run_cli_command(command, database)
            assert code == 0, f"{command} failed: {stderr}"

    def test_unknown_student_exits_nonzero(self, database):
        code, stdout, stderr = run_cli_command("profile nobody", database)
        assert code == 1
        assert "not_found" in stdout

    def test_invalid_credit_exits_nonzero(self, database):
        run_cli_command("add-student s1", database)
        code, stdout, stderr = run_cli_command("record s1 frac-intro 1.5", database)
        assert code == 1
        assert "invalid_input" in stdout

    def test_review_forecast(self, database):
        run_cli_command("add-student s1", database)
        code, stdout, stderr = run_cli_command("reviews s1 --forecast --days 3", database)
        assert code == 0, stderr
        assert "Review Forecast" in stdout

    def test_huge_review_window_exits_nonzero(self, database):
        run_cli_command("add-student s1", database)
        code, stdout, stderr = run_cli_command("reviews s1 --days 1000000000", database)
        assert code == 1
        assert "invalid_input" in stdout
