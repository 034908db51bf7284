from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any

import pytest
import yaml

import ralphloop.commands as commands_module


def _state_path(repo: Path) -> Path:
    return repo / ".gemini" / "ralph" / "state.json"


def _read_state(repo: Path) -> dict[str, Any]:
    return json.loads(_state_path(repo).read_text(encoding="utf-8"))


def _run(repo: Path, *argv: str) -> int:
    return commands_module.main(["--state-file", str(_state_path(repo)), *argv])


def _run_hook(
    repo: Path,
    payload: dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> tuple[int, dict[str, Any], str]:
    monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(payload)))
    exit_code = _run(repo, "hook")
    captured = capsys.readouterr()
    return exit_code, json.loads(captured.out.strip()), captured.err


# ---------------------------------------------------------------------------
# setup
# ---------------------------------------------------------------------------


def test_setup_writes_initial_record(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path, "setup", "Task") == 0

    state = _read_state(tmp_path)
    assert state["active"] is True
    assert state["current_iteration"] == 1
    assert state["max_iterations"] == 5
    assert state["completion_promise"] == ""
    assert state["original_prompt"] == "Task"
    assert state["started_at"][:4].isdigit()

    captured = capsys.readouterr()
    assert "Max Iterations: 5" in captured.out
    assert "RALPH IS LISTENING" not in captured.out
    assert "Ralph: I'm helping!" in captured.err


def test_setup_parses_options_after_prompt(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path, "setup", "Task", "--max-iterations", "5", "--completion-promise", "DONE") == 0

    state = _read_state(tmp_path)
    assert state["max_iterations"] == 5
    assert state["completion_promise"] == "DONE"
    assert "You must OUTPUT: <promise>DONE</promise>" in capsys.readouterr().out


def test_setup_parses_leading_options(tmp_path: Path) -> None:
    assert _run(tmp_path, "setup", "--max-iterations", "3", "Fix", "it") == 0

    state = _read_state(tmp_path)
    assert state["original_prompt"] == "Fix it"
    assert state["max_iterations"] == 3


def test_setup_accepts_combined_argument_string(tmp_path: Path) -> None:
    assert _run(tmp_path, "setup", "/ralph:loop Task --max-iterations 10 --completion-promise FINISHED") == 0

    state = _read_state(tmp_path)
    assert state["original_prompt"] == "Task"
    assert state["max_iterations"] == 10
    assert state["completion_promise"] == "FINISHED"


def test_setup_uses_policy_defaults(tmp_path: Path) -> None:
    policy_path = tmp_path / ".gemini" / "ralph_policy.yaml"
    policy_path.parent.mkdir(parents=True)
    policy_path.write_text(yaml.safe_dump({"defaults": {"max_iterations": 8}}), encoding="utf-8")

    assert _run(tmp_path, "setup", "Task") == 0

    assert _read_state(tmp_path)["max_iterations"] == 8


@pytest.mark.parametrize(
    ("argv", "message"),
    [
        ((), "No task specified"),
        (("Task", "--max-iterations", "zero"), "Invalid iteration limit: 'zero'"),
        (("Task", "--completion-promise"), "Missing promise text"),
    ],
)
def test_setup_usage_errors_exit_non_zero(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
    argv: tuple[str, ...],
    message: str,
) -> None:
    assert _run(tmp_path, "setup", *argv) == 1

    assert message in capsys.readouterr().err
    assert not _state_path(tmp_path).exists()


def test_setup_unwritable_state_dir_exits_non_zero(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / ".gemini").write_text("not a directory", encoding="utf-8")

    assert _run(tmp_path, "setup", "Task") == 1
    assert "ralph setup: ERROR" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# cancel
# ---------------------------------------------------------------------------


def test_cancel_is_idempotent(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path, "setup", "Task") == 0
    capsys.readouterr()

    assert _run(tmp_path, "cancel") == 0
    first = capsys.readouterr()
    assert "cancelled: true" in first.out
    assert "cleaned up my toys" in first.err
    assert not _state_path(tmp_path).parent.exists()

    assert _run(tmp_path, "cancel") == 0
    second = capsys.readouterr()
    assert "cancelled: false" in second.out
    assert "wasn't doing anything anyway" in second.err


# ---------------------------------------------------------------------------
# hook
# ---------------------------------------------------------------------------


def test_hook_without_loop_allows(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code, verdict, err = _run_hook(tmp_path, {"prompt": "hi"}, monkeypatch, capsys)

    assert exit_code == 0
    assert verdict == {"decision": "allow"}
    assert err == ""
    assert not (tmp_path / ".gemini").exists()


def test_hook_drives_loop_to_iteration_cap(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(tmp_path, "setup", "Task", "--max-iterations", "3") == 0
    capsys.readouterr()

    _, first, first_err = _run_hook(
        tmp_path,
        {"prompt": "/ralph:loop Task --max-iterations 3", "prompt_response": "step 1"},
        monkeypatch,
        capsys,
    )
    assert first["decision"] == "deny"
    assert first["reason"] == "Task"
    assert first["clearContext"] is True
    assert "Ralph: I'm doing a circle! Iteration 1 is done." in first_err

    _, second, _ = _run_hook(tmp_path, {"prompt": "", "prompt_response": "step 2"}, monkeypatch, capsys)
    assert second["decision"] == "deny"
    assert _read_state(tmp_path)["current_iteration"] == 3

    _, last, last_err = _run_hook(tmp_path, {"prompt": "", "prompt_response": "step 3"}, monkeypatch, capsys)
    assert last["decision"] == "allow"
    assert last["continue"] is False
    assert "iteration limit" in last["stopReason"]
    assert "gone around 3 times" in last_err
    assert not _state_path(tmp_path).exists()


def test_hook_stops_on_completion_promise(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(tmp_path, "setup", "Task", "--completion-promise", "DONE") == 0
    capsys.readouterr()

    _, verdict, _ = _run_hook(
        tmp_path,
        {"prompt": "Task", "prompt_response": "I am finished. <promise>DONE</promise>"},
        monkeypatch,
        capsys,
    )

    assert verdict["decision"] == "allow"
    assert verdict["continue"] is False
    assert not _state_path(tmp_path).exists()


def test_hook_malformed_payload_still_decides(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(tmp_path, "setup", "Task") == 0
    capsys.readouterr()
    monkeypatch.setattr("sys.stdin", io.StringIO("garbage"))

    assert _run(tmp_path, "hook") == 0

    assert json.loads(capsys.readouterr().out)["decision"] == "deny"
    assert _read_state(tmp_path)["current_iteration"] == 2


def test_hook_persona_can_be_disabled(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    policy_path = tmp_path / ".gemini" / "ralph_policy.yaml"
    policy_path.parent.mkdir(parents=True)
    policy_path.write_text(yaml.safe_dump({"persona": False}), encoding="utf-8")
    assert _run(tmp_path, "setup", "Task") == 0
    capsys.readouterr()

    _, verdict, err = _run_hook(tmp_path, {"prompt": ""}, monkeypatch, capsys)

    assert verdict["decision"] == "deny"
    assert err == ""


def test_hook_continues_loop_started_with_quoted_prompt(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    invocation = '/ralph:loop "Solve \'The Riddle\'" --max-iterations 3'
    assert _run(tmp_path, "setup", invocation) == 0
    assert _read_state(tmp_path)["original_prompt"] == "Solve 'The Riddle'"
    capsys.readouterr()

    _, verdict, _ = _run_hook(tmp_path, {"prompt": invocation, "prompt_response": "..."}, monkeypatch, capsys)

    assert verdict["decision"] == "deny"
    assert verdict["reason"] == "Solve 'The Riddle'"
    assert _read_state(tmp_path)["current_iteration"] == 2


def test_hook_survives_unwritable_log(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    logs_path = tmp_path / ".gemini" / "logs"
    logs_path.parent.mkdir(parents=True)
    logs_path.write_text("not a directory", encoding="utf-8")
    assert _run(tmp_path, "setup", "Task") == 0
    capsys.readouterr()

    exit_code, verdict, err = _run_hook(tmp_path, {"prompt": "Something else"}, monkeypatch, capsys)

    assert exit_code == 0
    assert verdict["decision"] == "allow"
    assert "prompt mismatch" in verdict["systemMessage"]
    assert "ralph: WARNING could not write log" in err
    assert not _state_path(tmp_path).exists()


def test_hook_reports_write_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(tmp_path, "setup", "Task") == 0
    capsys.readouterr()

    def _fail_store(path: Path, state: dict[str, Any]) -> None:
        raise commands_module.StateError(f"failed to write state file {path}: disk full")

    monkeypatch.setattr("ralphloop.controller._store_state", _fail_store)
    monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps({"prompt": ""})))

    assert _run(tmp_path, "hook") == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "ralph hook: ERROR failed to write state file" in captured.err


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


def test_status_reports_inactive_and_active(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path, "status") == 0
    assert "active: false" in capsys.readouterr().out

    assert _run(tmp_path, "setup", "Task", "--max-iterations", "4") == 0
    capsys.readouterr()

    assert _run(tmp_path, "status") == 0
    out = capsys.readouterr().out
    assert "active: True" in out
    assert "max_iterations: 4" in out
    assert "original_prompt: Task" in out


def test_status_unreadable_record_errors(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state_path = _state_path(tmp_path)
    state_path.parent.mkdir(parents=True)
    state_path.write_text("oops", encoding="utf-8")

    assert _run(tmp_path, "status") == 1
    assert "ralph status: ERROR" in capsys.readouterr().err


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert commands_module.main([]) == 2
    assert "ralph loop command line interface" in capsys.readouterr().out
