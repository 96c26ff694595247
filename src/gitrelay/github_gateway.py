from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Literal, cast
from urllib.parse import quote, urlencode

from gitrelay.models import (
    CreatedIssue,
    CreatedPullRequest,
    GitCommit,
    Issue,
    IssueComment,
    IssueSummary,
    PullRequest,
    PullRequestSnapshot,
    RepositoryInfo,
)
from gitrelay.observability import log_event
from gitrelay.shell import run_result


LOGGER = logging.getLogger("gitrelay.github_gateway")
_PAGE_SIZE = 100


class GitHubError(RuntimeError):
    """Base class for failures talking to the GitHub API."""


class GitHubTransportError(GitHubError):
    """gh could not produce an HTTP response (network, auth, missing binary)."""


class GitHubApiError(GitHubError):
    """GitHub answered with a non-2xx status."""

    def __init__(self, *, method: str, path: str, status_code: int, body: str) -> None:
        self.method = method
        self.path = path
        self.status_code = status_code
        self.body = body
        message = body.strip() or "<empty>"
        super().__init__(f"GitHub API {method} {path} failed with status {status_code}: {message}")


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    token: str | None = field(default=None, repr=False, compare=False)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def get_repository(self) -> RepositoryInfo:
        payload_obj = self._api_object("GET", self._repo_path(""), what="repository")
        info = RepositoryInfo(
            full_name=_as_string(payload_obj.get("full_name")) or self.full_name,
            default_branch=_as_string(payload_obj.get("default_branch")),
        )
        if not info.default_branch:
            raise GitHubError("Unexpected GitHub response: repository has no default_branch")
        log_event(LOGGER, "github_read", endpoint="repository", repo_full_name=info.full_name)
        return info

    def get_collaborator_permission(self, login: str) -> str:
        path = self._repo_path(f"/collaborators/{quote(login, safe='')}/permission")
        payload_obj = self._api_object("GET", path, what="collaborator permission")
        permission = _as_string(payload_obj.get("permission")).strip().lower()
        log_event(
            LOGGER,
            "github_read",
            endpoint="collaborator_permission",
            login=login,
            permission=permission,
        )
        return permission

    def get_user_type(self, login: str) -> str:
        payload_obj = self._api_object("GET", f"/users/{quote(login, safe='')}", what="user")
        user_type = _as_string(payload_obj.get("type"))
        log_event(LOGGER, "github_read", endpoint="user", login=login, user_type=user_type)
        return user_type

    def get_issue(self, issue_number: int) -> Issue:
        payload_obj = self._api_object(
            "GET", self._repo_path(f"/issues/{issue_number}"), what="issue"
        )
        user_obj = _as_object_dict(payload_obj.get("user"))
        issue = Issue(
            number=_as_int(payload_obj.get("number"), field="number"),
            title=_as_string(payload_obj.get("title")),
            body=_as_string(payload_obj.get("body")),
            html_url=_as_string(payload_obj.get("html_url")),
            state=_as_string(payload_obj.get("state")),
            author_login=_as_login(user_obj.get("login") if user_obj else None),
            labels=_label_names(payload_obj.get("labels")),
        )
        log_event(LOGGER, "github_read", endpoint="issue", issue_number=issue.number)
        return issue

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot:
        payload_obj = self._api_object(
            "GET", self._repo_path(f"/pulls/{pr_number}"), what="pull request"
        )
        head = _as_object_dict(payload_obj.get("head"))
        base = _as_object_dict(payload_obj.get("base"))
        if head is None or base is None:
            raise GitHubError("Unexpected GitHub response: missing pull request head/base")
        user_obj = _as_object_dict(payload_obj.get("user"))

        snapshot = PullRequestSnapshot(
            number=_as_int(payload_obj.get("number"), field="number"),
            title=_as_string(payload_obj.get("title")),
            body=_as_string(payload_obj.get("body")),
            html_url=_as_string(payload_obj.get("html_url")),
            state=_as_string(payload_obj.get("state")),
            author_login=_as_login(user_obj.get("login") if user_obj else None),
            head_ref=_as_string(head.get("ref")),
            base_ref=_as_string(base.get("ref")),
            head_sha=_as_string(head.get("sha")),
            draft=bool(payload_obj.get("draft")),
        )
        log_event(LOGGER, "github_read", endpoint="pull_request", pr_number=snapshot.number)
        return snapshot

    def list_issue_comments(self, issue_number: int) -> list[IssueComment]:
        comments: list[IssueComment] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = self._repo_path(f"/issues/{issue_number}/comments?{query}")
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubError("Unexpected GitHub response: expected list of issue comments")

            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                comments.append(_parse_issue_comment(item_obj))
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_comments",
            issue_number=issue_number,
            count=len(comments),
        )
        return comments

    def list_pull_request_files(self, pr_number: int) -> tuple[str, ...]:
        files: list[str] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = self._repo_path(f"/pulls/{pr_number}/files?{query}")
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubError(
                    "Unexpected GitHub response: expected list of pull request files"
                )

            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                filename = item_obj.get("filename")
                if isinstance(filename, str) and filename:
                    files.append(filename)
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_files",
            pr_number=pr_number,
            count=len(files),
        )
        return tuple(files)

    def create_issue_comment(self, issue_number: int, body: str) -> IssueComment:
        path = self._repo_path(f"/issues/{issue_number}/comments")
        payload_obj = self._api_object("POST", path, payload={"body": body}, what="comment")
        comment = _parse_issue_comment(payload_obj)
        log_event(
            LOGGER,
            "github_issue_comment_posted",
            issue_number=issue_number,
            comment_id=comment.comment_id,
        )
        return comment

    def update_issue_comment(self, comment_id: int, body: str) -> IssueComment:
        path = self._repo_path(f"/issues/comments/{comment_id}")
        payload_obj = self._api_object("PATCH", path, payload={"body": body}, what="comment")
        comment = _parse_issue_comment(payload_obj)
        log_event(LOGGER, "github_issue_comment_updated", comment_id=comment_id)
        return comment

    def find_pull_request_by_head(
        self,
        *,
        head: str,
        state: Literal["open", "all"] = "open",
    ) -> PullRequest | None:
        if state not in {"open", "all"}:
            raise ValueError("state must be 'open' or 'all'")
        query = urlencode(
            {"state": state, "head": f"{self.owner}:{head}", "per_page": str(_PAGE_SIZE)}
        )
        payload = self._api_json("GET", self._repo_path(f"/pulls?{query}"))
        if not isinstance(payload, list):
            raise GitHubError("Unexpected GitHub response: expected list for pull request lookup")

        candidates: list[PullRequest] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            candidates.append(
                PullRequest(
                    number=_as_int(item_obj.get("number"), field="number"),
                    html_url=_as_string(item_obj.get("html_url")),
                )
            )

        if not candidates:
            log_event(
                LOGGER,
                "github_read",
                endpoint="pull_request_lookup_by_head",
                head=head,
                state=state,
                found=False,
            )
            return None

        selected = max(candidates, key=lambda pr: pr.number)
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_lookup_by_head",
            head=head,
            state=state,
            found=True,
            pr_number=selected.number,
        )
        return selected

    def get_branch_sha(self, branch: str) -> str:
        path = self._repo_path(f"/git/ref/heads/{_quote_ref(branch)}")
        payload_obj = self._api_object("GET", path, what="ref")
        target = _as_object_dict(payload_obj.get("object"))
        sha = _as_string(target.get("sha") if target else None)
        if not sha:
            raise GitHubError(f"Unexpected GitHub response: ref heads/{branch} has no sha")
        log_event(LOGGER, "github_read", endpoint="ref", branch=branch, sha=sha)
        return sha

    def create_branch(self, branch: str, sha: str) -> None:
        self._api_json(
            "POST",
            self._repo_path("/git/refs"),
            payload={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        log_event(LOGGER, "github_write", endpoint="create_ref", branch=branch, sha=sha)

    def update_branch(self, branch: str, sha: str, *, force: bool = False) -> None:
        path = self._repo_path(f"/git/refs/heads/{_quote_ref(branch)}")
        self._api_json("PATCH", path, payload={"sha": sha, "force": force})
        log_event(
            LOGGER, "github_write", endpoint="update_ref", branch=branch, sha=sha, force=force
        )

    def get_commit(self, sha: str) -> GitCommit:
        payload_obj = self._api_object(
            "GET", self._repo_path(f"/git/commits/{sha}"), what="commit"
        )
        commit = _parse_git_commit(payload_obj)
        log_event(LOGGER, "github_read", endpoint="git_commit", sha=sha)
        return commit

    def create_tree(self, *, base_tree: str, entries: list[dict[str, object]]) -> str:
        payload_obj = self._api_object(
            "POST",
            self._repo_path("/git/trees"),
            payload={"base_tree": base_tree, "tree": entries},
            what="tree",
        )
        tree_sha = _as_string(payload_obj.get("sha"))
        if not tree_sha:
            raise GitHubError("Unexpected GitHub response: tree has no sha")
        log_event(
            LOGGER,
            "github_write",
            endpoint="create_tree",
            base_tree=base_tree,
            entry_count=len(entries),
            tree_sha=tree_sha,
        )
        return tree_sha

    def create_commit(self, *, message: str, tree_sha: str, parents: list[str]) -> GitCommit:
        payload_obj = self._api_object(
            "POST",
            self._repo_path("/git/commits"),
            payload={"message": message, "tree": tree_sha, "parents": parents},
            what="commit",
        )
        commit = _parse_git_commit(payload_obj)
        log_event(
            LOGGER,
            "github_write",
            endpoint="create_commit",
            sha=commit.sha,
            parent_count=len(parents),
        )
        return commit

    def create_issue(
        self,
        *,
        title: str,
        body: str,
        assignees: list[str] | None = None,
        labels: list[str] | None = None,
        milestone: int | None = None,
    ) -> CreatedIssue:
        request: dict[str, object] = {"title": title, "body": body}
        if assignees:
            request["assignees"] = assignees
        if labels:
            request["labels"] = labels
        if milestone:
            request["milestone"] = milestone
        payload_obj = self._api_object(
            "POST", self._repo_path("/issues"), payload=request, what="issue"
        )
        created = CreatedIssue(
            issue_id=_as_int(payload_obj.get("id"), field="id"),
            number=_as_int(payload_obj.get("number"), field="number"),
            title=_as_string(payload_obj.get("title")),
            state=_as_string(payload_obj.get("state")),
            html_url=_as_string(payload_obj.get("html_url")),
            created_at=_as_string(payload_obj.get("created_at")),
        )
        log_event(
            LOGGER,
            "github_issue_created",
            repo_full_name=self.full_name,
            issue_number=created.number,
        )
        return created

    def create_pull_request(
        self,
        *,
        title: str,
        head: str,
        base: str,
        body: str,
        draft: bool | None = None,
        maintainer_can_modify: bool | None = None,
    ) -> CreatedPullRequest:
        request: dict[str, object] = {"title": title, "head": head, "base": base, "body": body}
        if draft is not None:
            request["draft"] = draft
        if maintainer_can_modify is not None:
            request["maintainer_can_modify"] = maintainer_can_modify
        try:
            payload_obj = self._api_object(
                "POST", self._repo_path("/pulls"), payload=request, what="pull request"
            )
            head_obj = _as_object_dict(payload_obj.get("head"))
            base_obj = _as_object_dict(payload_obj.get("base"))
            created = CreatedPullRequest(
                pr_id=_as_int(payload_obj.get("id"), field="id"),
                number=_as_int(payload_obj.get("number"), field="number"),
                title=_as_string(payload_obj.get("title")),
                state=_as_string(payload_obj.get("state")),
                html_url=_as_string(payload_obj.get("html_url")),
                head_ref=_as_string(head_obj.get("ref") if head_obj else None),
                base_ref=_as_string(base_obj.get("ref") if base_obj else None),
                created_at=_as_string(payload_obj.get("created_at")),
            )
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_pr_create_failed",
                repo_full_name=self.full_name,
                base=base,
                head=head,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_pr_created",
            repo_full_name=self.full_name,
            pr_number=created.number,
            pr_url=created.html_url,
            base=base,
            head=head,
        )
        return created

    def list_issues(
        self,
        *,
        state: str | None = None,
        labels: str | None = None,
        assignee: str | None = None,
        creator: str | None = None,
        sort: str | None = None,
        direction: str | None = None,
        per_page: int | None = None,
        page: int | None = None,
    ) -> list[IssueSummary]:
        query_items: dict[str, object] = {}
        for key, value in (
            ("state", state),
            ("labels", labels),
            ("assignee", assignee),
            ("creator", creator),
            ("sort", sort),
            ("direction", direction),
            ("per_page", per_page),
            ("page", page),
        ):
            if value:
                query_items[key] = value
        path = self._repo_path("/issues")
        if query_items:
            path = f"{path}?{urlencode(query_items)}"
        payload = self._api_json("GET", path)
        if not isinstance(payload, list):
            raise GitHubError("Unexpected GitHub response: expected list for issues")

        issues: list[IssueSummary] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            user_obj = _as_object_dict(item_obj.get("user"))
            issues.append(
                IssueSummary(
                    issue_id=_as_int(item_obj.get("id"), field="id"),
                    number=_as_int(item_obj.get("number"), field="number"),
                    title=_as_string(item_obj.get("title")),
                    state=_as_string(item_obj.get("state")),
                    html_url=_as_string(item_obj.get("html_url")),
                    user_login=_as_string(user_obj.get("login") if user_obj else None),
                    labels=_label_names(item_obj.get("labels")),
                    assignees=_assignee_logins(item_obj.get("assignees")),
                    created_at=_as_string(item_obj.get("created_at")),
                    updated_at=_as_string(item_obj.get("updated_at")),
                    comments=_as_optional_int(item_obj.get("comments")) or 0,
                )
            )
        log_event(LOGGER, "github_read", endpoint="issues", count=len(issues))
        return issues

    def _repo_path(self, suffix: str) -> str:
        return f"/repos/{self.owner}/{self.name}{suffix}"

    def _api_object(
        self,
        method: str,
        path: str,
        payload: dict[str, object] | None = None,
        *,
        what: str,
    ) -> dict[str, object]:
        result = self._api_json(method, path, payload)
        payload_obj = _as_object_dict(result)
        if payload_obj is None:
            raise GitHubError(f"Unexpected GitHub response: expected object for {what}")
        return payload_obj

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        cmd = ["gh", "api", "--method", method_upper, "--include", path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        env = {"GH_TOKEN": self.token} if self.token else None

        result = run_result(cmd, input_text=stdin_payload, env=env)
        try:
            status_code, _headers, body = _parse_http_response(result.stdout)
        except GitHubError as exc:
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                exit_code=result.returncode,
                error=_preview_for_log(result.stderr),
            )
            raise GitHubTransportError(
                f"GitHub {method_upper} {path} produced no HTTP response "
                f"(exit {result.returncode}): {result.stderr.strip() or exc}"
            ) from exc

        if status_code < 200 or status_code >= 300:
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                status_code=status_code,
                error=_preview_for_log(body),
            )
            raise GitHubApiError(
                method=method_upper, path=path, status_code=status_code, body=body
            )

        if not body.strip():
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise GitHubError(
                f"Unexpected GitHub response for {method_upper} {path}: invalid JSON"
            ) from exc


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index
            break

    if status_line_index < 0:
        raise GitHubError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise GitHubError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise GitHubError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _quote_ref(branch: str) -> str:
    return quote(branch, safe="/")


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _parse_issue_comment(item_obj: dict[str, object]) -> IssueComment:
    user_obj = _as_object_dict(item_obj.get("user"))
    return IssueComment(
        comment_id=_as_int(item_obj.get("id"), field="id"),
        body=_as_string(item_obj.get("body")),
        user_login=_as_string(user_obj.get("login") if user_obj else None),
        html_url=_as_string(item_obj.get("html_url")),
        created_at=_as_string(item_obj.get("created_at")),
        updated_at=_as_string(item_obj.get("updated_at")),
    )


def _parse_git_commit(payload_obj: dict[str, object]) -> GitCommit:
    author_obj = _as_object_dict(payload_obj.get("author"))
    tree_obj = _as_object_dict(payload_obj.get("tree"))
    sha = _as_string(payload_obj.get("sha"))
    if not sha:
        raise GitHubError("Unexpected GitHub response: commit has no sha")
    return GitCommit(
        sha=sha,
        message=_as_string(payload_obj.get("message")),
        author_name=_as_string(author_obj.get("name") if author_obj else None),
        author_date=_as_string(author_obj.get("date") if author_obj else None),
        tree_sha=_as_string(tree_obj.get("sha") if tree_obj else None),
    )


def _label_names(labels_obj: object) -> tuple[str, ...]:
    label_names: list[str] = []
    if isinstance(labels_obj, list):
        for entry in labels_obj:
            entry_obj = _as_object_dict(entry)
            if entry_obj is None:
                continue
            name = entry_obj.get("name")
            if isinstance(name, str):
                label_names.append(name)
    return tuple(label_names)


def _assignee_logins(assignees_obj: object) -> tuple[str, ...]:
    logins: list[str] = []
    if isinstance(assignees_obj, list):
        for entry in assignees_obj:
            entry_obj = _as_object_dict(entry)
            if entry_obj is None:
                continue
            login = entry_obj.get("login")
            if isinstance(login, str):
                logins.append(login)
    return tuple(logins)


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_login(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubError(f"Unexpected GitHub response type for {field}")


def _as_optional_int(value: object) -> int | None:
    if value is None:
        return None
    return _as_int(value, field="optional int field")
