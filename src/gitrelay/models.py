from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal


IssueState = Literal["open", "closed", "all"]
TrackingCommentState = Literal["posted", "redirected", "linked"]


@dataclass(frozen=True)
class TriggerContext:
    owner: str
    repo: str
    entity_number: int
    is_pr: bool
    actor: str
    event_name: str
    event_action: str | None
    run_id: str | None
    payload: Mapping[str, object] = field(repr=False, compare=False)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class RepositoryInfo:
    full_name: str
    default_branch: str


@dataclass(frozen=True)
class Issue:
    number: int
    title: str
    body: str
    html_url: str
    state: str
    author_login: str
    labels: tuple[str, ...]


@dataclass(frozen=True)
class PullRequest:
    number: int
    html_url: str


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    title: str
    body: str
    html_url: str
    state: str
    author_login: str
    head_ref: str
    base_ref: str
    head_sha: str
    draft: bool


@dataclass(frozen=True)
class IssueComment:
    comment_id: int
    body: str
    user_login: str
    html_url: str
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class IssueSummary:
    issue_id: int
    number: int
    title: str
    state: str
    html_url: str
    user_login: str
    labels: tuple[str, ...]
    assignees: tuple[str, ...]
    created_at: str
    updated_at: str
    comments: int


@dataclass(frozen=True)
class CreatedIssue:
    issue_id: int
    number: int
    title: str
    state: str
    html_url: str
    created_at: str


@dataclass(frozen=True)
class CreatedPullRequest:
    pr_id: int
    number: int
    title: str
    state: str
    html_url: str
    head_ref: str
    base_ref: str
    created_at: str


@dataclass(frozen=True)
class GitCommit:
    sha: str
    message: str
    author_name: str
    author_date: str
    tree_sha: str


@dataclass(frozen=True)
class BranchInfo:
    default_branch: str
    current_branch: str
    work_branch: str | None


@dataclass(frozen=True)
class TrackingComment:
    comment_id: int
    target_number: int
    body: str


@dataclass(frozen=True)
class CommitResult:
    sha: str
    message: str
    author: str
    date: str
    tree_sha: str
    paths: tuple[str, ...]
