from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
import logging
import os
import subprocess


class CommandError(RuntimeError):
    pass


LOGGER = logging.getLogger("gitrelay.shell")


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


def _preview(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def run_result(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_text: str | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    merged_env: dict[str, str] | None = None
    if env is not None:
        merged_env = dict(os.environ)
        merged_env.update(env)
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd) if cwd else None,
            input=input_text,
            env=merged_env,
            text=True,
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        LOGGER.error(
            "event=command_spawn_failed command=%s error=%s",
            argv[0] if argv else "<empty>",
            _preview(str(exc)),
        )
        raise CommandError(f"Command could not be started\ncmd: {' '.join(argv)}\n{exc}") from exc
    return CommandResult(returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)

