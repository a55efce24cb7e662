"""Pytest configuration and shared fixtures."""

from typing import Any

import pytest

from asana_sync.rules.context import build_rule_context
from asana_sync.rules.models import Rule, RuleContext


def make_pr_payload(
    action: str = "opened",
    body: str = "",
    merged: bool = False,
    draft: bool = False,
    labels: list[str] | None = None,
    label: str | None = None,
    author: str = "octocat",
    title: str = "feat(api): Add widget endpoint",
) -> dict[str, Any]:
    """Build a pull_request webhook payload."""
    payload: dict[str, Any] = {
        "action": action,
        "pull_request": {
            "number": 42,
            "title": title,
            "body": body,
            "merged": merged,
            "draft": draft,
            "user": {"login": author},
            "assignee": None,
            "base": {"ref": "main"},
            "head": {"ref": "feature/widgets"},
            "html_url": "https://github.com/acme/widgets/pull/42",
            "labels": [{"name": name} for name in (labels or [])],
        },
    }
    if label is not None:
        payload["label"] = {"name": label}
    return payload


def make_issue_payload(action: str = "opened", body: str = "", author: str = "octocat") -> dict[str, Any]:
    """Build an issues webhook payload."""
    return {
        "action": action,
        "issue": {
            "number": 7,
            "title": "Widgets render upside down",
            "body": body,
            "user": {"login": author},
            "html_url": "https://github.com/acme/widgets/issues/7",
            "state": "open",
            "labels": [{"name": "bug"}],
        },
    }


def make_rules(*rules: dict[str, Any]) -> list[Rule]:
    """Build rule models from plain dictionaries."""
    return [Rule.model_validate(rule) for rule in rules]


@pytest.fixture
def pr_payload() -> dict[str, Any]:
    """An opened, non-draft pull request."""
    return make_pr_payload(body="Fixes the widget endpoint.\n\nBUILD-456")


@pytest.fixture
def issue_payload() -> dict[str, Any]:
    """An opened issue."""
    return make_issue_payload()


@pytest.fixture
def pr_context(pr_payload: dict[str, Any]) -> RuleContext:
    """Rule context for the opened pull request."""
    return build_rule_context("pull_request", pr_payload, has_asana_tasks=True)


@pytest.fixture
def issue_context(issue_payload: dict[str, Any]) -> RuleContext:
    """Rule context for the opened issue."""
    return build_rule_context("issues", issue_payload)
