from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
import sys
import tomllib
from typing import cast


DEFAULT_TRIGGER_PHRASE = "@gitrelay"
DEFAULT_BRANCH_PREFIX = "gitrelay/"
DEFAULT_SERVER_URL = "https://github.com"


@dataclass(frozen=True)
class TriggerConfig:
    trigger_phrase: str = DEFAULT_TRIGGER_PHRASE
    assignee_trigger: str | None = None
    direct_prompt: str | None = None


@dataclass(frozen=True)
class PipelineConfig:
    github_token: str | None
    event_name: str
    event_path: Path
    actor: str
    repository: str | None
    run_id: str | None
    server_url: str
    workspace: Path
    runner_temp: Path
    output_path: Path | None
    env_path: Path | None
    trigger: TriggerConfig
    branch_prefix: str = DEFAULT_BRANCH_PREFIX
    tool_server_command: tuple[str, ...] = ()

    @property
    def run_url(self) -> str | None:
        if not self.repository or not self.run_id:
            return None
        return f"{self.server_url}/{self.repository}/actions/runs/{self.run_id}"


@dataclass(frozen=True)
class ToolServerConfig:
    github_token: str
    owner: str
    repo: str
    branch: str
    repo_dir: Path


class ConfigError(ValueError):
    pass


def load_pipeline_config(
    environ: Mapping[str, str],
    *,
    config_path: Path | None = None,
) -> PipelineConfig:
    file_data: dict[str, object] = {}
    if config_path is not None:
        with config_path.open("rb") as fh:
            try:
                file_data = tomllib.load(fh)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc
    trigger_data = _optional_table(file_data, "trigger") or {}
    tool_server_data = _optional_table(file_data, "tool_server") or {}

    trigger = TriggerConfig(
        trigger_phrase=_env(environ, "TRIGGER_PHRASE")
        or _str_with_default(trigger_data, "trigger_phrase", DEFAULT_TRIGGER_PHRASE),
        assignee_trigger=_env(environ, "ASSIGNEE_TRIGGER")
        or _optional_str(trigger_data, "assignee_trigger"),
        direct_prompt=_env(environ, "DIRECT_PROMPT"),
    )
    branch_prefix = _env(environ, "BRANCH_PREFIX") or _str_with_default(
        trigger_data, "branch_prefix", DEFAULT_BRANCH_PREFIX
    )
    if branch_prefix.startswith("/") or ".." in branch_prefix or " " in branch_prefix:
        raise ConfigError(f"branch_prefix is not a valid ref prefix: {branch_prefix!r}")

    tool_server_command = _tuple_of_str(tool_server_data, "command")
    if not tool_server_command:
        tool_server_command = (sys.executable, "-m", "gitrelay", "serve-tools")

    workspace = Path(_env(environ, "GITHUB_WORKSPACE") or Path.cwd())
    output_path = _env(environ, "GITHUB_OUTPUT")
    env_path = _env(environ, "GITHUB_ENV")

    return PipelineConfig(
        github_token=_env(environ, "OVERRIDE_GITHUB_TOKEN") or _env(environ, "GITHUB_TOKEN"),
        event_name=_require_env(environ, "GITHUB_EVENT_NAME"),
        event_path=Path(_require_env(environ, "GITHUB_EVENT_PATH")),
        actor=_require_env(environ, "GITHUB_ACTOR"),
        repository=_env(environ, "GITHUB_REPOSITORY"),
        run_id=_env(environ, "GITHUB_RUN_ID"),
        server_url=(_env(environ, "GITHUB_SERVER_URL") or DEFAULT_SERVER_URL).rstrip("/"),
        workspace=workspace,
        runner_temp=Path(_env(environ, "RUNNER_TEMP") or workspace / ".gitrelay"),
        output_path=Path(output_path) if output_path else None,
        env_path=Path(env_path) if env_path else None,
        trigger=trigger,
        branch_prefix=branch_prefix,
        tool_server_command=tool_server_command,
    )


def load_tool_server_config(environ: Mapping[str, str]) -> ToolServerConfig:
    return ToolServerConfig(
        github_token=_require_env(environ, "GITHUB_TOKEN"),
        owner=_require_env(environ, "REPO_OWNER"),
        repo=_require_env(environ, "REPO_NAME"),
        branch=_require_env(environ, "BRANCH_NAME"),
        repo_dir=Path(_env(environ, "REPO_DIR") or Path.cwd()),
    )


def _env(environ: Mapping[str, str], key: str) -> str | None:
    value = environ.get(key)
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _require_env(environ: Mapping[str, str], key: str) -> str:
    value = _env(environ, key)
    if value is None:
        raise ConfigError(f"{key} environment variable is required")
    return value


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _tuple_of_str(data: dict[str, object], key: str) -> tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{key} must be a list of strings")
        out.append(item)
    return tuple(out)
