from __future__ import annotations

import logging
from typing import Protocol

from gitrelay.github_data import GitHubDataSnapshot
from gitrelay.github_gateway import GitHubApiError, GitHubError
from gitrelay.models import BranchInfo, TriggerContext
from gitrelay.observability import log_event


LOGGER = logging.getLogger("gitrelay.branches")


class BranchGateway(Protocol):
    def get_branch_sha(self, branch: str) -> str: ...

    def create_branch(self, branch: str, sha: str) -> None: ...


class BranchCreationFailed(RuntimeError):
    pass


def work_branch_name(prefix: str, issue_number: int) -> str:
    return f"{prefix}issue-{issue_number}"


def resolve_branch(
    github: BranchGateway,
    context: TriggerContext,
    snapshot: GitHubDataSnapshot,
    *,
    branch_prefix: str,
) -> BranchInfo:
    default_branch = snapshot.repository.default_branch

    if context.is_pr:
        if snapshot.pull_request is None:
            raise BranchCreationFailed(
                f"Pull request #{context.entity_number} data is missing; cannot resolve head branch"
            )
        head_ref = snapshot.pull_request.head_ref
        log_event(
            LOGGER,
            "branch_resolved",
            mode="pull_request_head",
            pr_number=context.entity_number,
            branch=head_ref,
        )
        return BranchInfo(default_branch=default_branch, current_branch=head_ref, work_branch=None)

    branch = work_branch_name(branch_prefix, context.entity_number)
    try:
        base_sha = github.get_branch_sha(default_branch)
    except GitHubError as exc:
        raise BranchCreationFailed(
            f"Could not read tip of default branch {default_branch!r}: {exc}"
        ) from exc

    mode = "created"
    try:
        github.create_branch(branch, base_sha)
    except GitHubApiError as exc:
        if exc.status_code != 422 or not _branch_exists(github, branch):
            raise BranchCreationFailed(f"Could not create branch {branch!r}: {exc}") from exc
        mode = "reused"
    except GitHubError as exc:
        raise BranchCreationFailed(f"Could not create branch {branch!r}: {exc}") from exc

    log_event(
        LOGGER,
        "branch_resolved",
        mode=mode,
        issue_number=context.entity_number,
        branch=branch,
        base_branch=default_branch,
        base_sha=base_sha,
    )
    return BranchInfo(default_branch=default_branch, current_branch=branch, work_branch=branch)


def _branch_exists(github: BranchGateway, branch: str) -> bool:
    try:
        github.get_branch_sha(branch)
    except GitHubApiError as exc:
        if exc.status_code == 404:
            return False
        raise BranchCreationFailed(f"Could not inspect existing branch {branch!r}: {exc}") from exc
    except GitHubError as exc:
        raise BranchCreationFailed(f"Could not inspect existing branch {branch!r}: {exc}") from exc
    return True
