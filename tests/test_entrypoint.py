from __future__ import annotations

import runpy

import pytest


def test_module_entrypoint_invokes_cli_main(monkeypatch: pytest.MonkeyPatch) -> None:
    called: list[bool] = []
    monkeypatch.setattr("gitrelay.cli.main", lambda: called.append(True))

    runpy.run_module("gitrelay.__main__", run_name="__main__")

    assert called == [True]
