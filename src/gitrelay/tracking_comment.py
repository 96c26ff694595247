"""The single status comment shown to humans for one triggering event.

The comment starts on the triggering issue or pull request. When an issue run
works on a branch that already backs an open pull request, a fresh comment is
created on that pull request and becomes the one to update; the issue comment
is left alone. Otherwise a newly created branch is linked from the original
comment.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Literal, Protocol
from urllib.parse import quote

from gitrelay.github_gateway import GitHubError
from gitrelay.models import (
    BranchInfo,
    IssueComment,
    PullRequest,
    TrackingComment,
    TrackingCommentState,
    TriggerContext,
)
from gitrelay.observability import log_event, log_warning_event


LOGGER = logging.getLogger("gitrelay.tracking_comment")
WORKING_INDICATOR = "🤖 gitrelay is working on this..."


class CommentGateway(Protocol):
    def create_issue_comment(self, issue_number: int, body: str) -> IssueComment: ...

    def update_issue_comment(self, comment_id: int, body: str) -> IssueComment: ...

    def find_pull_request_by_head(
        self, *, head: str, state: Literal["open", "all"] = "open"
    ) -> PullRequest | None: ...


@dataclass(frozen=True)
class TrackingCommentOutcome:
    comment: TrackingComment
    state: TrackingCommentState
    pr_lookup_error: str | None = None


def working_comment_body(run_url: str | None) -> str:
    if run_url is None:
        return WORKING_INDICATOR
    return f"{WORKING_INDICATOR}\n\n[View job run]({run_url})"


def branch_url(server_url: str, full_name: str, branch: str) -> str:
    return f"{server_url}/{full_name}/tree/{quote(branch, safe='/')}"


def with_branch_link(body: str, *, branch: str, url: str) -> str:
    return f"{body}\n\n[View branch `{branch}`]({url})"


class TrackingCommentManager:
    def __init__(
        self,
        github: CommentGateway,
        context: TriggerContext,
        *,
        server_url: str,
        run_url: str | None = None,
    ) -> None:
        self._github = github
        self._context = context
        self._server_url = server_url
        self._run_url = run_url

    def post_initial(self) -> TrackingComment:
        body = working_comment_body(self._run_url)
        created = self._github.create_issue_comment(self._context.entity_number, body)
        comment = TrackingComment(
            comment_id=created.comment_id,
            target_number=self._context.entity_number,
            body=created.body or body,
        )
        log_event(
            LOGGER,
            "tracking_comment_posted",
            target_number=comment.target_number,
            comment_id=comment.comment_id,
        )
        return comment

    def finalize(self, initial: TrackingComment, branch_info: BranchInfo) -> TrackingCommentOutcome:
        work_branch = branch_info.work_branch
        if work_branch is None:
            return TrackingCommentOutcome(comment=initial, state="posted")

        lookup_error: str | None = None
        if not self._context.is_pr:
            try:
                pull_request = self._github.find_pull_request_by_head(head=work_branch)
            except GitHubError as exc:
                # A failed lookup is indistinguishable from "no PR" downstream.
                lookup_error = str(exc)
                pull_request = None
                log_warning_event(
                    LOGGER,
                    "tracking_comment_pr_lookup_failed",
                    branch=work_branch,
                    error_type=type(exc).__name__,
                    error=lookup_error,
                )
            if pull_request is not None:
                return TrackingCommentOutcome(
                    comment=self._redirect(pull_request, work_branch), state="redirected"
                )

        return TrackingCommentOutcome(
            comment=self._link(initial, work_branch),
            state="linked",
            pr_lookup_error=lookup_error,
        )

    def _redirect(self, pull_request: PullRequest, branch: str) -> TrackingComment:
        body = working_comment_body(self._run_url)
        created = self._github.create_issue_comment(pull_request.number, body)
        comment = TrackingComment(
            comment_id=created.comment_id,
            target_number=pull_request.number,
            body=created.body or body,
        )
        log_event(
            LOGGER,
            "tracking_comment_redirected",
            branch=branch,
            from_number=self._context.entity_number,
            pr_number=pull_request.number,
            comment_id=comment.comment_id,
        )
        return comment

    def _link(self, initial: TrackingComment, branch: str) -> TrackingComment:
        url = branch_url(self._server_url, self._context.full_name, branch)
        body = with_branch_link(initial.body, branch=branch, url=url)
        updated = self._github.update_issue_comment(initial.comment_id, body)
        log_event(
            LOGGER,
            "tracking_comment_linked",
            branch=branch,
            comment_id=initial.comment_id,
        )
        return TrackingComment(
            comment_id=initial.comment_id,
            target_number=initial.target_number,
            body=updated.body or body,
        )
