from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import pytest

from gitrelay.github_gateway import (
    GitHubApiError,
    GitHubError,
    GitHubGateway,
    GitHubTransportError,
    _as_int,
    _as_string,
    _parse_http_response,
    _preview_for_log,
)
from gitrelay.shell import CommandResult


ApiCall = tuple[str, str, dict[str, object] | None]


def _http(status: int, body: object, *, reason: str = "OK") -> str:
    text = body if isinstance(body, str) else json.dumps(body)
    return f"HTTP/2.0 {status} {reason}\nContent-Type: application/json\n\n{text}"


def _fake_api(
    monkeypatch: pytest.MonkeyPatch, responses: dict[tuple[str, str], object]
) -> list[ApiCall]:
    calls: list[ApiCall] = []

    def fake_api(
        self: GitHubGateway, method: str, path: str, payload: dict[str, object] | None = None
    ) -> object:
        _ = self
        calls.append((method, path, payload))
        base_path = path.split("?", 1)[0]
        return responses[(method, base_path)]

    monkeypatch.setattr(GitHubGateway, "_api_json", fake_api)
    return calls


def test_api_json_runs_gh_with_token_and_parses_body(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, object] = {}

    def fake_run_result(argv: list[str], **kwargs: object) -> CommandResult:
        seen["argv"] = argv
        seen["kwargs"] = kwargs
        return CommandResult(returncode=0, stdout=_http(200, {"ok": True}), stderr="")

    monkeypatch.setattr("gitrelay.github_gateway.run_result", fake_run_result)
    gateway = GitHubGateway("o", "r", token="tok")

    assert gateway._api_json("GET", "/repos/o/r") == {"ok": True}
    assert seen["argv"] == ["gh", "api", "--method", "GET", "--include", "/repos/o/r"]
    kwargs = seen["kwargs"]
    assert isinstance(kwargs, dict)
    assert kwargs["env"] == {"GH_TOKEN": "tok"}
    assert kwargs["input_text"] is None


def test_api_json_sends_payload_on_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, object] = {}

    def fake_run_result(argv: list[str], **kwargs: object) -> CommandResult:
        seen["argv"] = argv
        seen["input"] = kwargs["input_text"]
        return CommandResult(returncode=0, stdout=_http(201, {"id": 1}), stderr="")

    monkeypatch.setattr("gitrelay.github_gateway.run_result", fake_run_result)
    gateway = GitHubGateway("o", "r")

    gateway._api_json("POST", "/repos/o/r/issues", payload={"title": "t"})

    assert seen["argv"] == [
        "gh",
        "api",
        "--method",
        "POST",
        "--include",
        "/repos/o/r/issues",
        "--input",
        "-",
    ]
    assert json.loads(str(seen["input"])) == {"title": "t"}


def test_api_json_raises_api_error_with_status_and_body(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "gitrelay.github_gateway.run_result",
        lambda argv, **kwargs: CommandResult(
            returncode=1,
            stdout=_http(422, {"message": "Update is not a fast forward"}, reason="Unprocessable"),
            stderr="gh: Update is not a fast forward (HTTP 422)",
        ),
    )
    gateway = GitHubGateway("o", "r")

    with pytest.raises(GitHubApiError) as excinfo:
        gateway._api_json("PATCH", "/repos/o/r/git/refs/heads/main", payload={"sha": "x"})

    assert excinfo.value.status_code == 422
    assert "fast forward" in excinfo.value.body
    assert "status 422" in str(excinfo.value)


def test_api_json_without_http_response_is_transport_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        "gitrelay.github_gateway.run_result",
        lambda argv, **kwargs: CommandResult(
            returncode=4, stdout="", stderr="error connecting to api.github.com"
        ),
    )

    with pytest.raises(GitHubTransportError, match="error connecting"):
        GitHubGateway("o", "r")._api_json("GET", "/repos/o/r")


def test_api_json_empty_success_body_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "gitrelay.github_gateway.run_result",
        lambda argv, **kwargs: CommandResult(
            returncode=0, stdout="HTTP/2.0 204 No Content\n\n", stderr=""
        ),
    )
    assert GitHubGateway("o", "r")._api_json("DELETE", "/x") is None


def test_get_branch_sha_and_commit(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _fake_api(
        monkeypatch,
        {
            ("GET", "/repos/o/r/git/ref/heads/gitrelay/issue-7"): {
                "ref": "refs/heads/gitrelay/issue-7",
                "object": {"sha": "base"},
            },
            ("GET", "/repos/o/r/git/commits/base"): {
                "sha": "base",
                "message": "m",
                "author": {"name": "A", "date": "2024-01-01T00:00:00Z"},
                "tree": {"sha": "tree0"},
            },
        },
    )
    gateway = GitHubGateway("o", "r")

    assert gateway.get_branch_sha("gitrelay/issue-7") == "base"
    commit = gateway.get_commit("base")

    assert commit.tree_sha == "tree0"
    assert commit.author_name == "A"
    assert [call[1] for call in calls] == [
        "/repos/o/r/git/ref/heads/gitrelay/issue-7",
        "/repos/o/r/git/commits/base",
    ]


def test_get_branch_sha_rejects_missing_sha(monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_api(monkeypatch, {("GET", "/repos/o/r/git/ref/heads/main"): {"object": {}}})
    with pytest.raises(GitHubError, match="has no sha"):
        GitHubGateway("o", "r").get_branch_sha("main")


def test_git_write_endpoints_send_expected_payloads(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _fake_api(
        monkeypatch,
        {
            ("POST", "/repos/o/r/git/refs"): {"ref": "refs/heads/b"},
            ("POST", "/repos/o/r/git/trees"): {"sha": "tree1"},
            ("POST", "/repos/o/r/git/commits"): {
                "sha": "c1",
                "message": "msg",
                "author": {"name": "bot", "date": "d"},
                "tree": {"sha": "tree1"},
            },
            ("PATCH", "/repos/o/r/git/refs/heads/b"): {"object": {"sha": "c1"}},
        },
    )
    gateway = GitHubGateway("o", "r")
    entries: list[dict[str, object]] = [
        {"path": "a.txt", "mode": "100644", "type": "blob", "content": "A"}
    ]

    gateway.create_branch("b", "base")
    tree_sha = gateway.create_tree(base_tree="tree0", entries=entries)
    commit = gateway.create_commit(message="msg", tree_sha=tree_sha, parents=["base"])
    gateway.update_branch("b", commit.sha)

    assert calls[0][2] == {"ref": "refs/heads/b", "sha": "base"}
    assert calls[1][2] == {"base_tree": "tree0", "tree": entries}
    assert calls[2][2] == {"message": "msg", "tree": "tree1", "parents": ["base"]}
    assert calls[3][2] == {"sha": "c1", "force": False}


def test_permission_and_user_type(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _fake_api(
        monkeypatch,
        {
            ("GET", "/repos/o/r/collaborators/alice/permission"): {"permission": "Write"},
            ("GET", "/users/alice"): {"login": "alice", "type": "User"},
        },
    )
    gateway = GitHubGateway("o", "r")

    assert gateway.get_collaborator_permission("alice") == "write"
    assert gateway.get_user_type("alice") == "User"
    assert len(calls) == 2


def test_get_repository_requires_default_branch(monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_api(monkeypatch, {("GET", "/repos/o/r"): {"full_name": "o/r"}})
    with pytest.raises(GitHubError, match="default_branch"):
        GitHubGateway("o", "r").get_repository()


def test_get_pull_request_reads_head_and_base_refs(monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_api(
        monkeypatch,
        {
            ("GET", "/repos/o/r/pulls/5"): {
                "number": 5,
                "title": "T",
                "body": None,
                "html_url": "u",
                "state": "open",
                "user": {"login": "Bob"},
                "head": {"ref": "feature", "sha": "h"},
                "base": {"ref": "main", "sha": "b"},
                "draft": False,
            }
        },
    )
    pr = GitHubGateway("o", "r").get_pull_request(5)
    assert (pr.head_ref, pr.base_ref, pr.head_sha) == ("feature", "main", "h")
    assert pr.body == ""
    assert pr.author_login == "bob"


def test_list_issue_comments_paginates(monkeypatch: pytest.MonkeyPatch) -> None:
    pages: list[int] = []

    def fake_api(
        self: GitHubGateway, method: str, path: str, payload: dict[str, object] | None = None
    ) -> object:
        _ = self, method, payload
        page = int(parse_qs(urlparse(path).query)["page"][0])
        pages.append(page)
        count = 100 if page == 1 else 3
        return [
            {"id": page * 1000 + i, "body": "b", "user": {"login": "u"}} for i in range(count)
        ]

    monkeypatch.setattr(GitHubGateway, "_api_json", fake_api)

    comments = GitHubGateway("o", "r").list_issue_comments(9)
    assert pages == [1, 2]
    assert len(comments) == 103
    assert comments[-1].comment_id == 2002


def test_create_and_update_issue_comment(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _fake_api(
        monkeypatch,
        {
            ("POST", "/repos/o/r/issues/3/comments"): {"id": 11, "body": "hi"},
            ("PATCH", "/repos/o/r/issues/comments/11"): {"id": 11, "body": "bye"},
        },
    )
    gateway = GitHubGateway("o", "r")

    created = gateway.create_issue_comment(3, "hi")
    updated = gateway.update_issue_comment(11, "bye")

    assert created.comment_id == 11
    assert updated.body == "bye"
    assert calls[1][2] == {"body": "bye"}


def test_find_pull_request_by_head(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")

    def fake_api(
        self: GitHubGateway, method: str, path: str, payload: dict[str, object] | None = None
    ) -> object:
        _ = self, payload
        assert method == "GET"
        params = parse_qs(urlparse(path).query)
        assert params["head"] == ["o:gitrelay/issue-7"]
        assert params["state"] == ["open"]
        return [
            {"number": 99, "html_url": "https://example/pr/99"},
            {"number": 101, "html_url": "https://example/pr/101"},
        ]

    monkeypatch.setattr(GitHubGateway, "_api_json", fake_api)
    pr = gateway.find_pull_request_by_head(head="gitrelay/issue-7")
    assert pr is not None
    assert pr.number == 101


def test_find_pull_request_by_head_returns_none_when_no_match(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(GitHubGateway, "_api_json", lambda self, method, path, payload=None: [])
    assert GitHubGateway("o", "r").find_pull_request_by_head(head="x") is None


def test_find_pull_request_by_head_rejects_non_list_payload(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        GitHubGateway, "_api_json", lambda self, method, path, payload=None: {"bad": "shape"}
    )
    with pytest.raises(GitHubError, match="expected list for pull request lookup"):
        GitHubGateway("o", "r").find_pull_request_by_head(head="x")


def test_create_issue_omits_empty_optionals(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _fake_api(
        monkeypatch,
        {
            ("POST", "/repos/o/r/issues"): {
                "id": 1,
                "number": 2,
                "title": "t",
                "state": "open",
                "html_url": "u",
                "created_at": "c",
            }
        },
    )
    created = GitHubGateway("o", "r").create_issue(title="t", body="b", labels=["bug"])
    assert created.number == 2
    assert calls[0][2] == {"title": "t", "body": "b", "labels": ["bug"]}


def test_create_pull_request_passes_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _fake_api(
        monkeypatch,
        {
            ("POST", "/repos/o/r/pulls"): {
                "id": 7,
                "number": 8,
                "title": "t",
                "state": "open",
                "html_url": "u",
                "head": {"ref": "feature"},
                "base": {"ref": "main"},
                "created_at": "c",
            }
        },
    )
    created = GitHubGateway("o", "r").create_pull_request(
        title="t", head="feature", base="main", body="b", draft=True
    )
    assert (created.head_ref, created.base_ref) == ("feature", "main")
    assert calls[0][2] == {
        "title": "t",
        "head": "feature",
        "base": "main",
        "body": "b",
        "draft": True,
    }


def test_list_issues_builds_query_and_simplifies(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _fake_api(
        monkeypatch,
        {
            ("GET", "/repos/o/r/issues"): [
                {
                    "id": 1,
                    "number": 4,
                    "title": "Bug",
                    "state": "open",
                    "html_url": "u",
                    "user": {"login": "alice"},
                    "labels": [{"name": "bug"}],
                    "assignees": [{"login": "bob"}],
                    "created_at": "c",
                    "updated_at": "u2",
                    "comments": 3,
                },
                "skip",
            ]
        },
    )
    issues = GitHubGateway("o", "r").list_issues(state="open", labels="bug", per_page=10)

    params = parse_qs(urlparse(calls[0][1]).query)
    assert params == {"state": ["open"], "labels": ["bug"], "per_page": ["10"]}
    assert len(issues) == 1
    assert issues[0].labels == ("bug",)
    assert issues[0].assignees == ("bob",)
    assert issues[0].comments == 3


def test_parse_http_response_handles_crlf_and_headers() -> None:
    status, headers, body = _parse_http_response(
        'HTTP/2.0 200 OK\r\nETag: "x"\r\nX-Other: y\r\n\r\n{"a": 1}'
    )
    assert status == 200
    assert headers["etag"] == '"x"'
    assert json.loads(body) == {"a": 1}


def test_parse_http_response_rejects_garbage() -> None:
    with pytest.raises(GitHubError, match="missing HTTP status line"):
        _parse_http_response("not http")
    with pytest.raises(GitHubError, match="status line"):
        _parse_http_response("HTTP/2.0 abc")


def test_scalar_helpers() -> None:
    assert _as_string(None) == ""
    assert _as_string(3) == "3"
    assert _as_int("12", field="n") == 12
    with pytest.raises(GitHubError):
        _as_int(True, field="n")
    assert _preview_for_log("") == "<empty>"
    assert _preview_for_log("y" * 10, limit=3) == "yyy..."
