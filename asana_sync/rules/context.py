"""
Event context construction.

Projects a raw GitHub Actions event payload into the typed ``RuleContext``
that conditions are matched against, and turns contexts into the plain
dictionaries templates are evaluated against.

Only ``pull_request`` and ``issues`` events are supported; any other event
name is rejected rather than silently ignored.
"""

from dataclasses import asdict
from typing import Any

import structlog

from asana_sync.exceptions import ConfigurationError
from asana_sync.rules.models import (
    MARK_COMPLETE_KEY,
    IssueInfo,
    PullRequestInfo,
    RuleContext,
    TaskResult,
)

log = structlog.get_logger(__name__)

SUPPORTED_EVENTS = ("pull_request", "issues")


def _login(user: dict[str, Any] | None) -> str | None:
    if not user:
        return None
    return user.get("login")


def _label_names(record: dict[str, Any]) -> tuple[str, ...] | None:
    labels = record.get("labels")
    if not isinstance(labels, list):
        return None
    return tuple(label["name"] for label in labels if isinstance(label, dict) and "name" in label)


def build_rule_context(
    event_name: str,
    payload: dict[str, Any],
    comments: str | None = None,
    has_asana_tasks: bool = False,
    user_mappings: dict[str, str] | None = None,
) -> RuleContext:
    """Build the rule context for one event.

    Args:
        event_name: GitHub event name (``GITHUB_EVENT_NAME``)
        payload: Webhook payload (contents of ``GITHUB_EVENT_PATH``)
        comments: Pre-fetched comments, concatenated; None when not fetched
        has_asana_tasks: Whether the body already references Asana tasks
        user_mappings: GitHub login to Asana user GID mapping

    Returns:
        The read-only context for matching and templating

    Raises:
        ConfigurationError: If the event is unsupported or the payload lacks
            the record the event name implies.
    """
    action = payload.get("action") or ""
    pr: PullRequestInfo | None = None
    issue: IssueInfo | None = None

    if event_name == "pull_request":
        record = payload.get("pull_request")
        if not record:
            raise ConfigurationError("No pull_request in GitHub payload")
        pr = PullRequestInfo(
            number=record["number"],
            title=record.get("title") or "",
            body=record.get("body") or "",
            merged=bool(record.get("merged", False)),
            draft=bool(record.get("draft", False)),
            author=_login(record.get("user")) or "",
            assignee=_login(record.get("assignee")),
            base_ref=(record.get("base") or {}).get("ref", ""),
            head_ref=(record.get("head") or {}).get("ref", ""),
            url=record.get("html_url") or "",
        )
    elif event_name == "issues":
        record = payload.get("issue")
        if not record:
            raise ConfigurationError("No issue in GitHub payload")
        issue = IssueInfo(
            number=record["number"],
            title=record.get("title") or "",
            body=record.get("body") or "",
            author=_login(record.get("user")) or "",
            assignee=_login(record.get("assignee")),
            url=record.get("html_url") or "",
            state=record.get("state") or "open",
        )
    else:
        raise ConfigurationError(
            f"Unsupported event: {event_name}. Supported events: {', '.join(SUPPORTED_EVENTS)}"
        )

    label = None
    if isinstance(payload.get("label"), dict):
        label = payload["label"].get("name")

    context = RuleContext(
        event_name=event_name,
        action=action,
        has_asana_tasks=has_asana_tasks,
        pr=pr,
        issue=issue,
        label=label,
        labels=_label_names(record),
        comments=comments,
        user_mappings=user_mappings,
    )

    log.debug(
        "rule_context_built",
        event_name=event_name,
        action=action,
        number=(pr or issue).number,
        has_asana_tasks=has_asana_tasks,
        labels=list(context.labels) if context.labels is not None else None,
    )
    return context


def template_context(context: RuleContext) -> dict[str, Any]:
    """Dictionary view of a rule context for template evaluation.

    Keys: ``pr``, ``issue``, ``event`` (``name``, ``action``), ``label``
    (``name``), ``labels``, ``comments``, ``userMappings``. Absent parts are
    None so that templates referencing them render as empty strings.
    """
    return {
        "pr": asdict(context.pr) if context.pr else None,
        "issue": asdict(context.issue) if context.issue else None,
        "event": {"name": context.event_name, "action": context.action},
        "label": {"name": context.label} if context.label is not None else None,
        "labels": list(context.labels) if context.labels is not None else None,
        "comments": context.comments,
        "userMappings": dict(context.user_mappings) if context.user_mappings else None,
    }


def build_comment_context(
    context: RuleContext,
    task_results: list[TaskResult],
    field_updates: dict[str, str],
) -> dict[str, Any]:
    """Build the context ``post_pr_comment`` templates are evaluated against.

    Comment templates run after tasks were updated or created, so besides the
    event data they can report what actually happened.

    Args:
        context: Rule context of the run
        task_results: Per-task outcomes from the update or create step
        field_updates: Field updates the engine produced

    Returns:
        Template context with the keys of :func:`template_context` plus
        ``tasks``, ``updates`` (``fields``, ``mark_complete``) and
        ``summary`` (``total``, ``success``, ``failed``).
    """
    success_count = sum(1 for result in task_results if result.success)

    comment_context = template_context(context)
    comment_context.update(
        {
            "tasks": [asdict(result) for result in task_results],
            "updates": {
                "fields": [
                    {"gid": gid, "value": value}
                    for gid, value in field_updates.items()
                    if gid != MARK_COMPLETE_KEY
                ],
                "mark_complete": MARK_COMPLETE_KEY in field_updates,
            },
            "summary": {
                "total": len(task_results),
                "success": success_count,
                "failed": len(task_results) - success_count,
            },
        }
    )
    return comment_context
