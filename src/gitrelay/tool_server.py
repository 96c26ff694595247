"""MCP tool server exposing repository mutations to the coding agent.

The server is launched by the agent runtime over stdio with a fixed
owner/repo/branch. Commit and delete tools always target that branch; the
issue and pull request tools take owner/repo per call.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Annotated, Literal

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from gitrelay.commit_engine import AtomicCommitEngine, build_commit_request
from gitrelay.config import ToolServerConfig
from gitrelay.github_gateway import GitHubGateway
from gitrelay.models import CommitResult
from gitrelay.observability import log_event, log_warning_event


LOGGER = logging.getLogger("gitrelay.tool_server")
SERVER_NAME = "github_file_ops"
SERVER_TITLE = "GitHub File Operations Server"

GatewayFactory = Callable[[str, str, str], GitHubGateway]


@dataclass(frozen=True)
class ToolOutcome:
    ok: bool
    text: str


def tool_server_launch_config(
    *,
    command: tuple[str, ...],
    github_token: str,
    owner: str,
    repo: str,
    branch: str,
    repo_dir: Path,
) -> str:
    if not command:
        raise ValueError("tool server command must not be empty")
    config = {
        "mcpServers": {
            SERVER_NAME: {
                "command": command[0],
                "args": list(command[1:]),
                "env": {
                    "GITHUB_TOKEN": github_token,
                    "REPO_OWNER": owner,
                    "REPO_NAME": repo,
                    "BRANCH_NAME": branch,
                    "REPO_DIR": str(repo_dir),
                },
            }
        }
    }
    return json.dumps(config, indent=2)


def _default_gateway_factory(owner: str, repo: str, token: str) -> GitHubGateway:
    return GitHubGateway(owner, repo, token=token)


class FileOpsService:
    def __init__(
        self,
        config: ToolServerConfig,
        *,
        gateway_factory: GatewayFactory = _default_gateway_factory,
    ) -> None:
        self._config = config
        self._gateway_factory = gateway_factory
        self._engine = AtomicCommitEngine(
            gateway_factory(config.owner, config.repo, config.github_token),
            repo_dir=config.repo_dir,
        )

    def commit_files(self, files: list[str], message: str) -> dict[str, object]:
        request = build_commit_request(self._config.branch, files, message)
        result = self._engine.commit_files(request)
        return _commit_payload(result, paths_key="files")

    def delete_files(self, paths: list[str], message: str) -> dict[str, object]:
        request = build_commit_request(self._config.branch, paths, message)
        result = self._engine.delete_files(request)
        return _commit_payload(result, paths_key="deletedFiles")

    def create_issue(
        self,
        *,
        owner: str,
        repo: str,
        title: str,
        body: str,
        assignees: list[str] | None = None,
        labels: list[str] | None = None,
        milestone: int | None = None,
    ) -> dict[str, object]:
        created = self._gateway(owner, repo).create_issue(
            title=title, body=body, assignees=assignees, labels=labels, milestone=milestone
        )
        return {
            "id": created.issue_id,
            "number": created.number,
            "title": created.title,
            "state": created.state,
            "html_url": created.html_url,
            "created_at": created.created_at,
        }

    def update_issue_comment(self, *, owner: str, repo: str, comment_id: str, body: str) -> str:
        try:
            numeric_id = int(comment_id.strip())
        except ValueError as exc:
            raise ValueError(f"commentId must be a numeric comment id, got {comment_id!r}") from exc
        self._gateway(owner, repo).update_issue_comment(numeric_id, body)
        return f"Comment {numeric_id} updated successfully"

    def create_pull_request(
        self,
        *,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        draft: bool | None = None,
        maintainer_can_modify: bool | None = None,
    ) -> dict[str, object]:
        created = self._gateway(owner, repo).create_pull_request(
            title=title,
            head=head,
            base=base,
            body=body,
            draft=draft,
            maintainer_can_modify=maintainer_can_modify,
        )
        return {
            "id": created.pr_id,
            "number": created.number,
            "title": created.title,
            "state": created.state,
            "html_url": created.html_url,
            "head": created.head_ref,
            "base": created.base_ref,
            "created_at": created.created_at,
        }

    def list_issues(
        self,
        *,
        owner: str,
        repo: str,
        state: str | None = None,
        labels: str | None = None,
        assignee: str | None = None,
        creator: str | None = None,
        sort: str | None = None,
        direction: str | None = None,
        per_page: int | None = None,
        page: int | None = None,
    ) -> list[dict[str, object]]:
        if per_page is not None and not 1 <= per_page <= 100:
            raise ValueError("per_page must be between 1 and 100")
        issues = self._gateway(owner, repo).list_issues(
            state=state,
            labels=labels,
            assignee=assignee,
            creator=creator,
            sort=sort,
            direction=direction,
            per_page=per_page,
            page=page,
        )
        return [
            {
                "id": issue.issue_id,
                "number": issue.number,
                "title": issue.title,
                "state": issue.state,
                "html_url": issue.html_url,
                "user": issue.user_login,
                "labels": list(issue.labels),
                "assignees": list(issue.assignees),
                "created_at": issue.created_at,
                "updated_at": issue.updated_at,
                "comments": issue.comments,
            }
            for issue in issues
        ]

    def _gateway(self, owner: str, repo: str) -> GitHubGateway:
        return self._gateway_factory(owner, repo, self._config.github_token)


def invoke_tool(name: str, call: Callable[[], object]) -> ToolOutcome:
    try:
        result = call()
    except Exception as exc:  # noqa: BLE001
        log_warning_event(
            LOGGER,
            "tool_invocation_failed",
            tool=name,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return ToolOutcome(ok=False, text=f"Error: {exc}")
    log_event(LOGGER, "tool_invoked", tool=name)
    if isinstance(result, str):
        return ToolOutcome(ok=True, text=result)
    return ToolOutcome(ok=True, text=json.dumps(result, indent=2))


def _unwrap(outcome: ToolOutcome) -> str:
    if not outcome.ok:
        raise ToolError(outcome.text)
    return outcome.text


def _commit_payload(result: CommitResult, *, paths_key: str) -> dict[str, object]:
    return {
        "commit": {
            "sha": result.sha,
            "message": result.message,
            "author": result.author,
            "date": result.date,
        },
        paths_key: [{"path": path} for path in result.paths],
        "tree": {"sha": result.tree_sha},
    }


def build_server(service: FileOpsService) -> FastMCP:
    server = FastMCP(SERVER_TITLE)

    @server.tool(
        name="commit_files",
        description=(
            "Commit one or more files to a repository in a single commit "
            "(this will commit them atomically in the remote repository)"
        ),
    )
    def commit_files(
        files: Annotated[
            list[str],
            Field(
                description=(
                    "Array of file paths relative to repository root "
                    '(e.g. ["src/main.py", "README.md"]). All files must exist locally.'
                )
            ),
        ],
        message: Annotated[str, Field(description="Commit message")],
    ) -> str:
        return _unwrap(invoke_tool("commit_files", lambda: service.commit_files(files, message)))

    @server.tool(
        name="delete_files",
        description="Delete one or more files from a repository in a single commit",
    )
    def delete_files(
        paths: Annotated[
            list[str],
            Field(description="Array of file paths to delete relative to repository root"),
        ],
        message: Annotated[str, Field(description="Commit message")],
    ) -> str:
        return _unwrap(invoke_tool("delete_files", lambda: service.delete_files(paths, message)))

    @server.tool(name="create_issue", description="Create a new issue in a GitHub repository")
    def create_issue(
        owner: Annotated[str, Field(description="Repository owner")],
        repo: Annotated[str, Field(description="Repository name")],
        title: Annotated[str, Field(description="Issue title")],
        body: Annotated[str, Field(description="Issue body/description")],
        assignees: Annotated[
            list[str] | None, Field(description="Array of usernames to assign")
        ] = None,
        labels: Annotated[list[str] | None, Field(description="Array of label names")] = None,
        milestone: Annotated[int | None, Field(description="Milestone number")] = None,
    ) -> str:
        return _unwrap(
            invoke_tool(
                "create_issue",
                lambda: service.create_issue(
                    owner=owner,
                    repo=repo,
                    title=title,
                    body=body,
                    assignees=assignees,
                    labels=labels,
                    milestone=milestone,
                ),
            )
        )

    @server.tool(name="update_issue_comment", description="Update a GitHub issue comment")
    def update_issue_comment(
        owner: Annotated[str, Field(description="Repository owner")],
        repo: Annotated[str, Field(description="Repository name")],
        commentId: Annotated[str, Field(description="Comment ID to update")],  # noqa: N803
        body: Annotated[str, Field(description="New comment body")],
    ) -> str:
        return _unwrap(
            invoke_tool(
                "update_issue_comment",
                lambda: service.update_issue_comment(
                    owner=owner, repo=repo, comment_id=commentId, body=body
                ),
            )
        )

    @server.tool(
        name="create_pull_request",
        description="Create a new pull request in a GitHub repository",
    )
    def create_pull_request(
        owner: Annotated[str, Field(description="Repository owner")],
        repo: Annotated[str, Field(description="Repository name")],
        title: Annotated[str, Field(description="Pull request title")],
        body: Annotated[str, Field(description="Pull request body/description")],
        head: Annotated[
            str, Field(description="The name of the branch where your changes are implemented")
        ],
        base: Annotated[
            str, Field(description="The name of the branch you want the changes pulled into")
        ],
        draft: Annotated[
            bool | None, Field(description="Whether to create the pull request as a draft")
        ] = None,
        maintainer_can_modify: Annotated[
            bool | None, Field(description="Whether maintainers can modify the pull request")
        ] = None,
    ) -> str:
        return _unwrap(
            invoke_tool(
                "create_pull_request",
                lambda: service.create_pull_request(
                    owner=owner,
                    repo=repo,
                    title=title,
                    body=body,
                    head=head,
                    base=base,
                    draft=draft,
                    maintainer_can_modify=maintainer_can_modify,
                ),
            )
        )

    @server.tool(name="list_issues", description="List issues in a GitHub repository")
    def list_issues(
        owner: Annotated[str, Field(description="Repository owner")],
        repo: Annotated[str, Field(description="Repository name")],
        state: Annotated[
            Literal["open", "closed", "all"] | None, Field(description="Issue state filter")
        ] = None,
        labels: Annotated[
            str | None, Field(description="Comma-separated list of label names")
        ] = None,
        assignee: Annotated[str | None, Field(description="Filter by assignee username")] = None,
        creator: Annotated[str | None, Field(description="Filter by creator username")] = None,
        sort: Annotated[
            Literal["created", "updated", "comments"] | None, Field(description="Sort order")
        ] = None,
        direction: Annotated[
            Literal["asc", "desc"] | None, Field(description="Sort direction")
        ] = None,
        per_page: Annotated[
            int | None, Field(description="Number of results per page (max 100)")
        ] = None,
        page: Annotated[int | None, Field(description="Page number")] = None,
    ) -> str:
        return _unwrap(
            invoke_tool(
                "list_issues",
                lambda: service.list_issues(
                    owner=owner,
                    repo=repo,
                    state=state,
                    labels=labels,
                    assignee=assignee,
                    creator=creator,
                    sort=sort,
                    direction=direction,
                    per_page=per_page,
                    page=page,
                ),
            )
        )

    return server


def run_tool_server(config: ToolServerConfig) -> None:
    log_event(
        LOGGER,
        "tool_server_started",
        repo_full_name=f"{config.owner}/{config.repo}",
        branch=config.branch,
        repo_dir=str(config.repo_dir),
    )
    build_server(FileOpsService(config)).run()
