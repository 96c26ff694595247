"""Ordered gates that turn a GitHub event into a prepared agent run.

Each stage takes the accumulated :class:`PipelineState` and returns a tagged
:class:`StageResult`. ``ok`` and ``degraded`` continue with the new state,
``skip`` ends the run successfully without touching anything else, and
``fatal`` ends it as a failure. Stages run strictly in order.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
import json
import logging
from pathlib import Path
from typing import Literal, TypeVar

from gitrelay.action_outputs import export_variable, set_output
from gitrelay.branches import BranchCreationFailed, resolve_branch
from gitrelay.config import PipelineConfig
from gitrelay.context import (
    ContextError,
    contains_trigger,
    has_write_permission,
    is_human_user_type,
    load_event_payload,
    parse_trigger_context,
)
from gitrelay.github_data import GitHubDataSnapshot, fetch_github_data
from gitrelay.github_gateway import GitHubError, GitHubGateway
from gitrelay.models import (
    BranchInfo,
    TrackingComment,
    TrackingCommentState,
    TriggerContext,
)
from gitrelay.observability import log_event, log_warning_event
from gitrelay.tool_server import tool_server_launch_config
from gitrelay.tracking_comment import TrackingCommentManager


LOGGER = logging.getLogger("gitrelay.pipeline")

StageKind = Literal["ok", "degraded", "skip", "fatal"]
PipelineStatus = Literal["completed", "skipped", "failed"]
GatewayFactory = Callable[[str, str, str], GitHubGateway]
T = TypeVar("T")


@dataclass(frozen=True)
class PipelineState:
    token: str | None = None
    context: TriggerContext | None = None
    github: GitHubGateway | None = None
    initial_comment: TrackingComment | None = None
    comment: TrackingComment | None = None
    comment_state: TrackingCommentState | None = None
    data: GitHubDataSnapshot | None = None
    branch: BranchInfo | None = None
    tool_server_config: str | None = None
    context_file: Path | None = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class StageResult:
    kind: StageKind
    state: PipelineState
    detail: str | None = None

    @classmethod
    def ok(cls, state: PipelineState) -> StageResult:
        return cls(kind="ok", state=state)

    @classmethod
    def degraded(cls, state: PipelineState, detail: str) -> StageResult:
        return cls(
            kind="degraded",
            state=replace(state, warnings=(*state.warnings, detail)),
            detail=detail,
        )

    @classmethod
    def skip(cls, state: PipelineState, detail: str) -> StageResult:
        return cls(kind="skip", state=state, detail=detail)

    @classmethod
    def fatal(cls, state: PipelineState, detail: str) -> StageResult:
        return cls(kind="fatal", state=state, detail=detail)


@dataclass(frozen=True)
class PipelineOutcome:
    status: PipelineStatus
    state: PipelineState
    stage: str | None = None
    detail: str | None = None


Stage = Callable[[PipelineState], StageResult]


def _default_gateway_factory(owner: str, repo: str, token: str) -> GitHubGateway:
    return GitHubGateway(owner, repo, token=token)


class TriggerPipeline:
    def __init__(
        self,
        config: PipelineConfig,
        *,
        gateway_factory: GatewayFactory = _default_gateway_factory,
    ) -> None:
        self._config = config
        self._gateway_factory = gateway_factory

    def stages(self) -> tuple[tuple[str, Stage], ...]:
        return (
            ("acquire_credential", self._acquire_credential),
            ("parse_context", self._parse_context),
            ("check_write_permission", self._check_write_permission),
            ("check_trigger", self._check_trigger),
            ("check_human_actor", self._check_human_actor),
            ("post_tracking_comment", self._post_tracking_comment),
            ("fetch_data", self._fetch_data),
            ("resolve_branch", self._resolve_branch),
            ("finalize_tracking_comment", self._finalize_tracking_comment),
            ("handoff", self._handoff),
        )

    def run(self) -> PipelineOutcome:
        log_event(LOGGER, "pipeline_started", event_name=self._config.event_name)
        state = PipelineState()
        for name, stage in self.stages():
            result = stage(state)
            state = result.state
            if result.kind == "fatal":
                log_warning_event(LOGGER, "pipeline_stage_failed", stage=name, detail=result.detail)
                return self._finish(
                    PipelineOutcome(status="failed", state=state, stage=name, detail=result.detail)
                )
            if result.kind == "skip":
                log_event(LOGGER, "trigger_not_found", stage=name, detail=result.detail)
                return self._finish(
                    PipelineOutcome(status="skipped", state=state, stage=name, detail=result.detail)
                )
            if result.kind == "degraded":
                log_warning_event(
                    LOGGER, "pipeline_stage_degraded", stage=name, detail=result.detail
                )
            else:
                log_event(LOGGER, "pipeline_stage_finished", stage=name)
        return self._finish(PipelineOutcome(status="completed", state=state))

    def _finish(self, outcome: PipelineOutcome) -> PipelineOutcome:
        log_event(
            LOGGER,
            "pipeline_finished",
            status=outcome.status,
            stage=outcome.stage,
            comment_id=outcome.state.comment.comment_id if outcome.state.comment else None,
        )
        return outcome

    def _acquire_credential(self, state: PipelineState) -> StageResult:
        token = self._config.github_token
        if not token:
            return StageResult.fatal(
                state, "A GitHub token is required (set GITHUB_TOKEN or OVERRIDE_GITHUB_TOKEN)"
            )
        return StageResult.ok(replace(state, token=token))

    def _parse_context(self, state: PipelineState) -> StageResult:
        token = _require(state.token, "credential")
        try:
            payload = load_event_payload(self._config.event_path)
            context = parse_trigger_context(
                event_name=self._config.event_name,
                payload=payload,
                actor=self._config.actor,
                run_id=self._config.run_id,
                repository=self._config.repository,
            )
        except ContextError as exc:
            return StageResult.fatal(state, f"Invalid event context: {exc}")
        github = self._gateway_factory(context.owner, context.repo, token)
        return StageResult.ok(replace(state, context=context, github=github))

    def _check_write_permission(self, state: PipelineState) -> StageResult:
        context, github = _require_context(state)
        try:
            permission = github.get_collaborator_permission(context.actor)
        except GitHubError as exc:
            return StageResult.fatal(
                state, f"Failed to check permissions for {context.actor}: {exc}"
            )
        if not has_write_permission(permission):
            return StageResult.fatal(
                state,
                f"Actor {context.actor} does not have write permissions to the repository "
                f"(permission: {permission or 'none'})",
            )
        return StageResult.ok(state)

    def _check_trigger(self, state: PipelineState) -> StageResult:
        context, _github = _require_context(state)
        if not contains_trigger(context, self._config.trigger):
            return StageResult.skip(state, "No trigger found, skipping remaining steps")
        return StageResult.ok(state)

    def _check_human_actor(self, state: PipelineState) -> StageResult:
        context, github = _require_context(state)
        try:
            user_type = github.get_user_type(context.actor)
        except GitHubError as exc:
            return StageResult.fatal(state, f"Failed to look up actor {context.actor}: {exc}")
        if not is_human_user_type(user_type):
            return StageResult.fatal(
                state,
                f"Workflow initiated by non-human actor: {context.actor} (type: {user_type})",
            )
        return StageResult.ok(state)

    def _post_tracking_comment(self, state: PipelineState) -> StageResult:
        try:
            comment = self._comment_manager(state).post_initial()
        except GitHubError as exc:
            return StageResult.fatal(state, f"Failed to create tracking comment: {exc}")
        return StageResult.ok(
            replace(state, initial_comment=comment, comment=comment, comment_state="posted")
        )

    def _fetch_data(self, state: PipelineState) -> StageResult:
        context, github = _require_context(state)
        try:
            data = fetch_github_data(github, context)
        except GitHubError as exc:
            return StageResult.fatal(state, f"Failed to fetch GitHub data: {exc}")
        return StageResult.ok(replace(state, data=data))

    def _resolve_branch(self, state: PipelineState) -> StageResult:
        context, github = _require_context(state)
        data = _require(state.data, "GitHub data snapshot")
        try:
            branch = resolve_branch(github, context, data, branch_prefix=self._config.branch_prefix)
        except BranchCreationFailed as exc:
            return StageResult.fatal(state, str(exc))
        return StageResult.ok(replace(state, branch=branch))

    def _finalize_tracking_comment(self, state: PipelineState) -> StageResult:
        initial = _require(state.initial_comment, "initial tracking comment")
        branch = _require(state.branch, "branch info")
        try:
            outcome = self._comment_manager(state).finalize(initial, branch)
        except GitHubError as exc:
            return StageResult.fatal(state, f"Failed to update tracking comment: {exc}")
        next_state = replace(state, comment=outcome.comment, comment_state=outcome.state)
        if outcome.pr_lookup_error is not None:
            return StageResult.degraded(
                next_state,
                f"Pull request lookup failed, kept original comment: {outcome.pr_lookup_error}",
            )
        return StageResult.ok(next_state)

    def _handoff(self, state: PipelineState) -> StageResult:
        context, _github = _require_context(state)
        token = _require(state.token, "credential")
        branch = _require(state.branch, "branch info")
        comment = _require(state.comment, "tracking comment")
        data = _require(state.data, "GitHub data snapshot")
        tool_server_config = tool_server_launch_config(
            command=self._config.tool_server_command,
            github_token=token,
            owner=context.owner,
            repo=context.repo,
            branch=branch.current_branch,
            repo_dir=self._config.workspace,
        )
        context_file = self._config.runner_temp / "gitrelay" / "github-context.json"
        handoff = {
            "repository": context.full_name,
            "event_name": context.event_name,
            "event_action": context.event_action,
            "entity_number": context.entity_number,
            "is_pr": context.is_pr,
            "actor": context.actor,
            "tracking_comment_id": comment.comment_id,
            "default_branch": branch.default_branch,
            "current_branch": branch.current_branch,
            "work_branch": branch.work_branch,
            "data": data.to_json_dict(),
        }
        try:
            context_file.parent.mkdir(parents=True, exist_ok=True)
            context_file.write_text(json.dumps(handoff, indent=2), encoding="utf-8")
            output_path = self._config.output_path
            set_output(output_path, "contains_trigger", "true")
            set_output(output_path, "mcp_config", tool_server_config)
            set_output(output_path, "tracking_comment_id", str(comment.comment_id))
            set_output(output_path, "branch_name", branch.current_branch)
            set_output(output_path, "default_branch", branch.default_branch)
            set_output(output_path, "work_branch", branch.work_branch or "")
            set_output(output_path, "context_file", str(context_file))
            export_variable(self._config.env_path, "GITRELAY_COMMENT_ID", str(comment.comment_id))
        except OSError as exc:
            return StageResult.fatal(state, f"Failed to write handoff outputs: {exc}")
        return StageResult.ok(
            replace(state, tool_server_config=tool_server_config, context_file=context_file)
        )

    def _comment_manager(self, state: PipelineState) -> TrackingCommentManager:
        context, github = _require_context(state)
        return TrackingCommentManager(
            github,
            context,
            server_url=self._config.server_url,
            run_url=self._config.run_url,
        )


def _require_context(state: PipelineState) -> tuple[TriggerContext, GitHubGateway]:
    if state.context is None or state.github is None:
        raise RuntimeError("Pipeline stage ran before the trigger context was parsed")
    return state.context, state.github


def _require(value: T | None, what: str) -> T:
    if value is None:
        raise RuntimeError(f"Pipeline stage ran before the {what} was available")
    return value
