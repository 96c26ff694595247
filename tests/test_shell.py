from __future__ import annotations

from pathlib import Path
import subprocess

import pytest

from gitrelay.observability import configure_logging
from gitrelay.shell import CommandError, _preview, run_result


def test_run_result_passes_cwd_and_input(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    called: dict[str, object] = {}

    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        called["args"] = args
        called["kwargs"] = kwargs
        return subprocess.CompletedProcess(args=["echo"], returncode=0, stdout="ok", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = run_result(["echo", "hello"], cwd=tmp_path, input_text="hi")

    assert result.stdout == "ok"
    kwargs = called["kwargs"]
    assert isinstance(kwargs, dict)
    assert kwargs["cwd"] == str(tmp_path)
    assert kwargs["input"] == "hi"
    assert kwargs["check"] is False
    assert kwargs["env"] is None


def test_run_result_overlays_env_on_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    called: dict[str, object] = {}

    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        _ = args
        called["env"] = kwargs["env"]
        return subprocess.CompletedProcess(args=["gh"], returncode=0, stdout="", stderr="")

    monkeypatch.setenv("GITRELAY_TEST_KEEP", "1")
    monkeypatch.setattr(subprocess, "run", fake_run)

    run_result(["gh"], env={"GH_TOKEN": "secret"})

    env = called["env"]
    assert isinstance(env, dict)
    assert env["GH_TOKEN"] == "secret"
    assert env["GITRELAY_TEST_KEEP"] == "1"


def test_run_result_keeps_failure_output(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        _ = args, kwargs
        return subprocess.CompletedProcess(args=["gh"], returncode=1, stdout="o", stderr="e")

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = run_result(["gh"])
    assert (result.returncode, result.stdout, result.stderr) == (1, "o", "e")


def test_run_result_missing_binary_raises_command_error(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        _ = args, kwargs
        raise FileNotFoundError("gh")

    monkeypatch.setattr(subprocess, "run", fake_run)
    configure_logging(verbose=True)

    with pytest.raises(CommandError, match="could not be started"):
        run_result(["gh", "api"])
    assert "event=command_spawn_failed command=gh" in capsys.readouterr().err


def test_preview_handles_empty_and_truncation() -> None:
    assert _preview("") == "<empty>"
    assert _preview("x" * 10, limit=4) == "xxxx..."
