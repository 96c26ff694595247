from __future__ import annotations

from collections.abc import Mapping
import json
import logging
from pathlib import Path
import re
from typing import cast

from gitrelay.config import TriggerConfig
from gitrelay.models import TriggerContext
from gitrelay.observability import log_event


LOGGER = logging.getLogger("gitrelay.context")

_PULL_REQUEST_EVENTS = frozenset(
    {"pull_request", "pull_request_target", "pull_request_review", "pull_request_review_comment"}
)
_WRITE_PERMISSIONS = frozenset({"admin", "maintain", "write"})


class ContextError(ValueError):
    """The inbound event cannot be turned into a trigger context."""


def load_event_payload(path: Path) -> dict[str, object]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ContextError(f"Could not read event payload {path}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ContextError(f"Event payload {path} is not valid JSON: {exc}") from exc
    payload_obj = _as_object_dict(payload)
    if payload_obj is None:
        raise ContextError(f"Event payload {path} must be a JSON object")
    return payload_obj


def parse_trigger_context(
    *,
    event_name: str,
    payload: Mapping[str, object],
    actor: str,
    run_id: str | None = None,
    repository: str | None = None,
) -> TriggerContext:
    owner, repo = _repository_coordinates(payload, repository)

    if event_name in {"issue_comment", "issues"}:
        issue = _require_object(payload, "issue", event_name)
        entity_number = _require_number(issue, event_name)
        is_pr = event_name == "issue_comment" and issue.get("pull_request") is not None
    elif event_name in _PULL_REQUEST_EVENTS:
        pull_request = _require_object(payload, "pull_request", event_name)
        entity_number = _require_number(pull_request, event_name)
        is_pr = True
    else:
        raise ContextError(f"Unsupported event type: {event_name}")

    action = payload.get("action")
    context = TriggerContext(
        owner=owner,
        repo=repo,
        entity_number=entity_number,
        is_pr=is_pr,
        actor=actor,
        event_name=event_name,
        event_action=action if isinstance(action, str) else None,
        run_id=run_id,
        payload=payload,
    )
    log_event(
        LOGGER,
        "context_parsed",
        repo_full_name=context.full_name,
        event_name=event_name,
        event_action=context.event_action,
        entity_number=entity_number,
        is_pr=is_pr,
        actor=actor,
    )
    return context


def trigger_pattern(phrase: str) -> re.Pattern[str]:
    return re.compile(rf"(^|\s){re.escape(phrase)}([\s.,!?;:]|$)")


def contains_trigger(context: TriggerContext, trigger: TriggerConfig) -> bool:
    if trigger.direct_prompt:
        log_event(LOGGER, "trigger_matched", source="direct_prompt")
        return True

    payload = context.payload
    if context.event_name == "issues" and context.event_action == "assigned":
        if trigger.assignee_trigger:
            assignee = _as_object_dict(payload.get("assignee"))
            login = assignee.get("login") if assignee else None
            if isinstance(login, str) and login == trigger.assignee_trigger.lstrip("@"):
                log_event(LOGGER, "trigger_matched", source="assignee", assignee=login)
                return True
        return False

    pattern = trigger_pattern(trigger.trigger_phrase)
    for source, text in _trigger_texts(context):
        if pattern.search(text):
            log_event(LOGGER, "trigger_matched", source=source)
            return True
    return False


def has_write_permission(permission: str) -> bool:
    return permission.strip().lower() in _WRITE_PERMISSIONS


def is_human_user_type(user_type: str) -> bool:
    return user_type == "User"


def _trigger_texts(context: TriggerContext) -> list[tuple[str, str]]:
    payload = context.payload
    texts: list[tuple[str, str]] = []
    if context.event_name == "issues":
        # Only a newly opened issue is matched on its own text.
        if context.event_action != "opened":
            return texts
        issue = _as_object_dict(payload.get("issue")) or {}
        texts.append(("issue_body", _as_string(issue.get("body"))))
        texts.append(("issue_title", _as_string(issue.get("title"))))
    elif context.event_name in {"pull_request", "pull_request_target"}:
        pull_request = _as_object_dict(payload.get("pull_request")) or {}
        texts.append(("pull_request_body", _as_string(pull_request.get("body"))))
        texts.append(("pull_request_title", _as_string(pull_request.get("title"))))
    elif context.event_name == "pull_request_review":
        review = _as_object_dict(payload.get("review")) or {}
        texts.append(("review_body", _as_string(review.get("body"))))
    elif context.event_name in {"issue_comment", "pull_request_review_comment"}:
        comment = _as_object_dict(payload.get("comment")) or {}
        texts.append(("comment_body", _as_string(comment.get("body"))))
    return texts


def _repository_coordinates(
    payload: Mapping[str, object], repository: str | None
) -> tuple[str, str]:
    repo_obj = _as_object_dict(payload.get("repository"))
    if repo_obj is not None:
        owner_obj = _as_object_dict(repo_obj.get("owner"))
        owner = owner_obj.get("login") if owner_obj else None
        name = repo_obj.get("name")
        if isinstance(owner, str) and owner and isinstance(name, str) and name:
            return owner, name
    if repository and repository.count("/") == 1:
        owner, name = repository.split("/", 1)
        if owner and name:
            return owner, name
    raise ContextError("Event payload does not identify the repository owner and name")


def _require_object(
    payload: Mapping[str, object], key: str, event_name: str
) -> dict[str, object]:
    value = _as_object_dict(payload.get(key))
    if value is None:
        raise ContextError(f"{event_name} event payload is missing the {key!r} object")
    return value


def _require_number(entity: dict[str, object], event_name: str) -> int:
    number = entity.get("number")
    if isinstance(number, bool) or not isinstance(number, int) or number < 1:
        raise ContextError(f"{event_name} event payload has no valid entity number")
    return number


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if isinstance(value, str):
        return value
    return ""
