from __future__ import annotations

from pathlib import Path
import sys
from typing import TextIO
import uuid


def set_output(output_path: Path | None, name: str, value: str) -> None:
    """Append a step output for later workflow steps; no-op outside Actions."""
    _append_key_value(output_path, name, value)


def export_variable(env_path: Path | None, name: str, value: str) -> None:
    _append_key_value(env_path, name, value)


def error_annotation(message: str, *, stream: TextIO | None = None) -> None:
    out = stream if stream is not None else sys.stdout
    escaped = message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")
    out.write(f"::error::{escaped}\n")
    out.flush()


def _append_key_value(path: Path | None, name: str, value: str) -> None:
    if path is None:
        return
    with path.open("a", encoding="utf-8") as fh:
        if "\n" in value:
            delimiter = f"ghadelimiter_{uuid.uuid4().hex}"
            fh.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")
        else:
            fh.write(f"{name}={value}\n")
