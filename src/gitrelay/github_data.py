from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
from typing import Protocol

from gitrelay.models import (
    Issue,
    IssueComment,
    PullRequestSnapshot,
    RepositoryInfo,
    TriggerContext,
)
from gitrelay.observability import log_event


LOGGER = logging.getLogger("gitrelay.github_data")


class DataGateway(Protocol):
    def get_repository(self) -> RepositoryInfo: ...

    def get_issue(self, issue_number: int) -> Issue: ...

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot: ...

    def list_issue_comments(self, issue_number: int) -> list[IssueComment]: ...

    def list_pull_request_files(self, pr_number: int) -> tuple[str, ...]: ...


@dataclass(frozen=True)
class GitHubDataSnapshot:
    repository: RepositoryInfo
    issue: Issue | None
    pull_request: PullRequestSnapshot | None
    comments: tuple[IssueComment, ...]
    changed_files: tuple[str, ...]

    def to_json_dict(self) -> dict[str, object]:
        return {
            "repository": asdict(self.repository),
            "issue": asdict(self.issue) if self.issue is not None else None,
            "pull_request": asdict(self.pull_request) if self.pull_request is not None else None,
            "comments": [asdict(comment) for comment in self.comments],
            "changed_files": list(self.changed_files),
        }


def fetch_github_data(github: DataGateway, context: TriggerContext) -> GitHubDataSnapshot:
    repository = github.get_repository()
    issue: Issue | None = None
    pull_request: PullRequestSnapshot | None = None
    changed_files: tuple[str, ...] = ()
    if context.is_pr:
        pull_request = github.get_pull_request(context.entity_number)
        changed_files = github.list_pull_request_files(context.entity_number)
    else:
        issue = github.get_issue(context.entity_number)
    comments = tuple(github.list_issue_comments(context.entity_number))

    log_event(
        LOGGER,
        "github_data_fetched",
        repo_full_name=repository.full_name,
        entity_number=context.entity_number,
        is_pr=context.is_pr,
        comment_count=len(comments),
        changed_file_count=len(changed_files),
    )
    return GitHubDataSnapshot(
        repository=repository,
        issue=issue,
        pull_request=pull_request,
        comments=comments,
        changed_files=changed_files,
    )
