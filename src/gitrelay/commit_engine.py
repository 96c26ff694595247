"""Single-commit writes and deletions against a remote branch.

Every operation re-reads the branch ref, builds a sparse tree on top of the
tip's tree, creates one commit parented on that tip, and advances the ref with
``force=false``. If another writer moved the ref in between, the host rejects
the update and :class:`RefConflict` is raised; nothing is retried here.
"""

from __future__ import annotations

from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Protocol

from gitrelay.github_gateway import GitHubApiError, GitHubError
from gitrelay.models import CommitResult, GitCommit
from gitrelay.observability import log_event


LOGGER = logging.getLogger("gitrelay.commit_engine")
_BLOB_MODE = "100644"
_DEFAULT_READ_WORKERS = 8


class CommitGateway(Protocol):
    def get_branch_sha(self, branch: str) -> str: ...

    def get_commit(self, sha: str) -> GitCommit: ...

    def create_tree(self, *, base_tree: str, entries: list[dict[str, object]]) -> str: ...

    def create_commit(self, *, message: str, tree_sha: str, parents: list[str]) -> GitCommit: ...

    def update_branch(self, branch: str, sha: str, *, force: bool = False) -> None: ...


class CommitError(RuntimeError):
    """A commit operation failed at ``step``; no ref was advanced."""

    def __init__(self, message: str, *, step: str) -> None:
        super().__init__(message)
        self.step = step


class RefNotFound(CommitError):
    pass


class CommitNotFound(CommitError):
    pass


class LocalFileMissing(CommitError):
    pass


class LocalFileUnreadable(CommitError):
    pass


class RefConflict(CommitError):
    """The branch moved since it was read; callers may re-run the whole commit."""


class CommitStepFailed(CommitError):
    pass


@dataclass(frozen=True)
class CommitRequest:
    branch: str
    paths: tuple[str, ...]
    message: str


def normalize_repo_path(path: str) -> str:
    if path.startswith("/"):
        return path[1:]
    return path


def build_commit_request(branch: str, paths: list[str], message: str) -> CommitRequest:
    if not paths:
        raise ValueError("at least one path is required")
    if not message.strip():
        raise ValueError("commit message must be non-empty")
    normalized = tuple(dict.fromkeys(normalize_repo_path(path) for path in paths))
    if any(not path for path in normalized):
        raise ValueError("paths must name a file below the repository root")
    return CommitRequest(branch=branch, paths=normalized, message=message)


class AtomicCommitEngine:
    def __init__(
        self,
        github: CommitGateway,
        *,
        repo_dir: Path,
        max_read_workers: int = _DEFAULT_READ_WORKERS,
    ) -> None:
        if max_read_workers < 1:
            raise ValueError("max_read_workers must be >= 1")
        self._github = github
        self._repo_dir = repo_dir
        self._max_read_workers = max_read_workers

    def commit_files(self, request: CommitRequest) -> CommitResult:
        base_sha, base_tree_sha = self._resolve_base(request.branch)
        entries = self._read_local_entries(request.paths)
        return self._apply(request, base_sha=base_sha, base_tree_sha=base_tree_sha, entries=entries)

    def delete_files(self, request: CommitRequest) -> CommitResult:
        base_sha, base_tree_sha = self._resolve_base(request.branch)
        # sha=None removes the path; absent paths are a host-side no-op.
        entries: list[dict[str, object]] = [
            {"path": path, "mode": _BLOB_MODE, "type": "blob", "sha": None}
            for path in request.paths
        ]
        return self._apply(request, base_sha=base_sha, base_tree_sha=base_tree_sha, entries=entries)

    def _resolve_base(self, branch: str) -> tuple[str, str]:
        try:
            base_sha = self._github.get_branch_sha(branch)
        except GitHubApiError as exc:
            if exc.status_code == 404:
                raise RefNotFound(
                    f"Branch {branch!r} does not exist: {exc}", step="get_ref"
                ) from exc
            raise _step_failed("get_ref", exc) from exc
        except GitHubError as exc:
            raise _step_failed("get_ref", exc) from exc

        try:
            base_commit = self._github.get_commit(base_sha)
        except GitHubApiError as exc:
            if exc.status_code == 404:
                raise CommitNotFound(
                    f"Tip commit {base_sha} of branch {branch!r} is missing: {exc}",
                    step="get_commit",
                ) from exc
            raise _step_failed("get_commit", exc) from exc
        except GitHubError as exc:
            raise _step_failed("get_commit", exc) from exc
        if not base_commit.tree_sha:
            raise CommitNotFound(
                f"Tip commit {base_sha} of branch {branch!r} has no tree", step="get_commit"
            )
        return base_sha, base_commit.tree_sha

    def _read_local_entries(self, paths: tuple[str, ...]) -> list[dict[str, object]]:
        workers = min(self._max_read_workers, len(paths))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="commit-read") as pool:
            futures = [pool.submit(self._read_entry, path) for path in paths]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()
            for future in futures:
                if future not in done:
                    continue
                error = future.exception()
                if error is not None:
                    raise error
            return [future.result() for future in futures]

    def _read_entry(self, path: str) -> dict[str, object]:
        local_path = self._repo_dir / path
        try:
            content = local_path.read_bytes().decode("utf-8")
        except FileNotFoundError as exc:
            raise LocalFileMissing(
                f"Local file {path!r} does not exist under {self._repo_dir}",
                step="read_local_files",
            ) from exc
        except IsADirectoryError as exc:
            raise LocalFileMissing(
                f"Local path {path!r} is a directory, not a file", step="read_local_files"
            ) from exc
        except UnicodeDecodeError as exc:
            raise LocalFileUnreadable(
                f"Local file {path!r} is not valid UTF-8 text", step="read_local_files"
            ) from exc
        except OSError as exc:
            raise LocalFileUnreadable(
                f"Local file {path!r} could not be read: {exc}", step="read_local_files"
            ) from exc
        return {"path": path, "mode": _BLOB_MODE, "type": "blob", "content": content}

    def _apply(
        self,
        request: CommitRequest,
        *,
        base_sha: str,
        base_tree_sha: str,
        entries: list[dict[str, object]],
    ) -> CommitResult:
        try:
            tree_sha = self._github.create_tree(base_tree=base_tree_sha, entries=entries)
        except GitHubError as exc:
            raise _step_failed("create_tree", exc) from exc

        try:
            commit = self._github.create_commit(
                message=request.message, tree_sha=tree_sha, parents=[base_sha]
            )
        except GitHubError as exc:
            raise _step_failed("create_commit", exc) from exc

        try:
            self._github.update_branch(request.branch, commit.sha, force=False)
        except GitHubApiError as exc:
            if exc.status_code in {409, 422}:
                log_event(
                    LOGGER,
                    "commit_failed",
                    branch=request.branch,
                    step="update_ref",
                    reason="ref_conflict",
                    base_sha=base_sha,
                    orphaned_commit_sha=commit.sha,
                )
                raise RefConflict(
                    f"Branch {request.branch!r} moved since {base_sha}; update rejected: {exc}",
                    step="update_ref",
                ) from exc
            raise _step_failed("update_ref", exc) from exc
        except GitHubError as exc:
            raise _step_failed("update_ref", exc) from exc

        log_event(
            LOGGER,
            "commit_created",
            branch=request.branch,
            base_sha=base_sha,
            sha=commit.sha,
            path_count=len(request.paths),
        )
        return CommitResult(
            sha=commit.sha,
            message=commit.message,
            author=commit.author_name,
            date=commit.author_date,
            tree_sha=tree_sha,
            paths=request.paths,
        )


def _step_failed(step: str, exc: GitHubError) -> CommitStepFailed:
    log_event(
        LOGGER,
        "commit_failed",
        step=step,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return CommitStepFailed(f"Commit step {step} failed: {exc}", step=step)
