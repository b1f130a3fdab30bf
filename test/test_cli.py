from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from pydeskagent import main as cli
from pydeskagent.session.models import Message
from pydeskagent.session.store import SessionStore


@pytest.fixture
def runner(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> CliRunner:
    monkeypatch.setattr("pydeskagent.config.loader.user_config_dir", lambda app: str(tmp_path / "no-config"))
    return CliRunner()


class TestEditCommand:
    def test_dry_run_leaves_file(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "a.txt"
        path.write_text("alpha\nbeta\n")
        result = runner.invoke(cli.app, ["edit", str(path), "--old", "beta", "--new", "gamma", "--dry-run"])
        assert result.exit_code == 0
        assert path.read_text() == "alpha\nbeta\n"

    def test_writes_file(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "a.txt"
        path.write_text("alpha\nbeta\n")
        result = runner.invoke(cli.app, ["edit", str(path), "--old", "beta", "--new", "gamma"])
        assert result.exit_code == 0
        assert path.read_text() == "alpha\ngamma\n"

    def test_ambiguous_fails(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "a.txt"
        path.write_text("x\nx\n")
        result = runner.invoke(cli.app, ["edit", str(path), "--old", "x", "--new", "y"])
        assert result.exit_code == 1
        assert path.read_text() == "x\nx\n"


class TestScriptCommand:
    def test_runs_scripted_turns(self, runner: CliRunner, tmp_path: Path) -> None:
        work = tmp_path / "work"
        work.mkdir()
        (work / "notes.txt").write_text("hello\n")
        script = tmp_path / "script.yaml"
        script.write_text(
            "- tool_calls:\n"
            "    - id: c1\n"
            "      name: edit\n"
            "      arguments: {file_path: notes.txt, old_string: hello, new_string: bye}\n"
            "- Edited.\n"
        )
        result = runner.invoke(cli.app, ["script", str(script), "--prompt", "edit it", "--cwd", str(work), "--yes"])
        assert result.exit_code == 0, result.output
        assert (work / "notes.txt").read_text() == "bye\n"
        assert "done" in result.output

    def test_denied_confirmation(self, runner: CliRunner, tmp_path: Path) -> None:
        work = tmp_path / "work"
        work.mkdir()
        script = tmp_path / "script.json"
        script.write_text('[{"tool_calls": [{"id": "c1", "name": "write", "arguments": {"path": "x.txt", "content": "x"}}]}, "ok"]')
        result = runner.invoke(cli.app, ["script", str(script), "-p", "write", "--cwd", str(work)], input="n\n")
        assert result.exit_code == 0, result.output
        assert not (work / "x.txt").exists()


class TestSandboxCommand:
    def test_reports_containment(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli.app, ["sandbox", str(tmp_path / "other"), "--boundary", str(tmp_path / "box")])
        assert result.exit_code == 0
        assert "permission required" in result.output


class TestSessionsCommand:
    def test_lists_persisted_sessions(self, runner: CliRunner, tmp_path: Path) -> None:
        store = SessionStore(tmp_path / "sessions")
        store.create_session("alpha", working_directory=str(tmp_path))
        store.append_message("alpha", Message(role="user", content="hi"))
        store.create_session("beta")

        result = runner.invoke(cli.app, ["sessions", "--root", str(tmp_path / "sessions")])
        assert result.exit_code == 0, result.output
        assert "alpha" in result.output
        assert "beta" in result.output
