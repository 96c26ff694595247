from __future__ import annotations

import json

from gitrelay.github_data import fetch_github_data
from gitrelay.models import (
    Issue,
    IssueComment,
    PullRequestSnapshot,
    RepositoryInfo,
    TriggerContext,
)


class FakeDataGateway:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def get_repository(self) -> RepositoryInfo:
        self.calls.append("repository")
        return RepositoryInfo(full_name="acme/widgets", default_branch="main")

    def get_issue(self, issue_number: int) -> Issue:
        self.calls.append(f"issue:{issue_number}")
        return Issue(
            number=issue_number,
            title="Bug",
            body="b",
            html_url="u",
            state="open",
            author_login="alice",
            labels=("bug",),
        )

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot:
        self.calls.append(f"pull:{pr_number}")
        return PullRequestSnapshot(
            number=pr_number,
            title="PR",
            body="",
            html_url="u",
            state="open",
            author_login="bob",
            head_ref="feature",
            base_ref="main",
            head_sha="abc",
            draft=True,
        )

    def list_issue_comments(self, issue_number: int) -> list[IssueComment]:
        self.calls.append(f"comments:{issue_number}")
        return [IssueComment(1, "hello", "alice", "u", "c", "u")]

    def list_pull_request_files(self, pr_number: int) -> tuple[str, ...]:
        self.calls.append(f"files:{pr_number}")
        return ("a.py", "b.py")


def _context(*, is_pr: bool) -> TriggerContext:
    return TriggerContext(
        owner="acme",
        repo="widgets",
        entity_number=4,
        is_pr=is_pr,
        actor="alice",
        event_name="issue_comment",
        event_action="created",
        run_id=None,
        payload={},
    )


def test_issue_snapshot() -> None:
    github = FakeDataGateway()

    snapshot = fetch_github_data(github, _context(is_pr=False))

    assert github.calls == ["repository", "issue:4", "comments:4"]
    assert snapshot.issue is not None and snapshot.issue.title == "Bug"
    assert snapshot.pull_request is None
    assert snapshot.changed_files == ()


def test_pull_request_snapshot_is_json_serializable() -> None:
    github = FakeDataGateway()

    snapshot = fetch_github_data(github, _context(is_pr=True))

    assert github.calls == ["repository", "pull:4", "files:4", "comments:4"]
    data = json.loads(json.dumps(snapshot.to_json_dict()))
    assert data["pull_request"]["head_ref"] == "feature"
    assert data["changed_files"] == ["a.py", "b.py"]
    assert data["comments"][0]["body"] == "hello"
    assert data["issue"] is None
