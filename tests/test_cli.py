# tests/test_cli.py

from __future__ import annotations

import json
import os
import shlex
import sys

import pytest

from agent_dispatch.cli import main as cli_main
from agent_dispatch.cli.bootstrap import create_initial_state
from agent_dispatch.config import Settings


@pytest.fixture()
def cli_settings(monkeypatch, tmp_path) -> Settings:
    for name in list(os.environ):
        if name.startswith("AGENT_DISPATCH_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    monkeypatch.setenv("AGENT_DISPATCH_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("AGENT_DISPATCH_TICK_INTERVAL_SECONDS", "0.01")
    monkeypatch.setenv("AGENT_DISPATCH_RETRY_DELAY_SECONDS", "0")
    monkeypatch.setenv("AGENT_DISPATCH_SHELL_WORKERS", "1")
    settings = Settings.from_env()

    monkeypatch.setattr(cli_main, "get_settings", lambda: settings)
    monkeypatch.setattr(cli_main, "setup_logging", lambda **_: None)
    return settings


def test_bootstrap_registers_builtin_workers(cli_settings) -> None:
    state = create_initial_state(settings=cli_settings)

    ids = [w["id"] for w in state.scheduler.list_workers()]
    assert ids == ["shell-1", "echo"]
    assert state.archive is not None
    assert cli_settings.archive_db_path.exists()


def test_run_echo_task_prints_report(cli_settings, capsys) -> None:
    code = cli_main.main(["run", "hello there", "--priority", "high", "--wait-seconds", "5"])

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["execution_summary"]["status"] == "completed"
    assert out["execution_summary"]["priority"] == "high"
    assert out["result"]["echo"] == "hello there"


def test_run_failing_shell_command_exits_1(cli_settings, capsys) -> None:
    command = " ".join(shlex.quote(a) for a in [sys.executable, "-c", "import sys; sys.exit(4)"])
    code = cli_main.main(["run", "fail", "--command", command, "--max-attempts", "2", "--wait-seconds", "10"])

    out = json.loads(capsys.readouterr().out)
    assert code == 1
    assert out["execution_summary"]["status"] == "failed"
    assert out["execution_summary"]["attempts"] == 2


def test_run_rejects_bad_priority_with_exit_2(cli_settings, capsys) -> None:
    code = cli_main.main(["run", "x", "--priority", "urgent"])

    assert code == 2
    assert "Unknown priority" in capsys.readouterr().err


def test_report_reads_persistent_archive(cli_settings, capsys) -> None:
    assert cli_main.main(["run", "archived one", "--wait-seconds", "5"]) == 0
    task_id = json.loads(capsys.readouterr().out)["task_id"]

    assert cli_main.main(["report"]) == 0
    system = json.loads(capsys.readouterr().out)
    assert system["overview"]["total_tasks"] == 1
    assert system["recent_activity"][0]["task_id"] == task_id

    assert cli_main.main(["report", "--task", task_id]) == 0
    assert json.loads(capsys.readouterr().out)["task_id"] == task_id

    assert cli_main.main(["report", "--task", "task_missing"]) == 1
