"""
Template helpers.

Every helper receives the root template context as its first argument,
followed by the arguments written in the template::

    {{extract_from_body "JIRA-(\\d+)"}}
    {{or (map_github_to_asana pr.author) "1200000000000001"}}

Helpers never raise on bad input; they return an empty string instead so
that one broken expression does not blank out the whole template.
"""

import re
from collections.abc import Callable
from typing import Any

import structlog
from jinja2 import Undefined

from asana_sync.rendering.markdown import markdown_to_html, sanitize_markdown

log = structlog.get_logger(__name__)

CONVENTIONAL_COMMIT_TYPES = (
    "feat", "fix", "chore", "docs", "style", "refactor", "perf", "test", "build", "ci", "revert",
)  # fmt: skip

CONVENTIONAL_PREFIX_PATTERN = re.compile(
    r"^\s*(?:" + "|".join(CONVENTIONAL_COMMIT_TYPES) + r")(?:\([^)]*\))?!?:\s*",
    re.IGNORECASE,
)

# Named groups written for JavaScript engines: (?<name>...)
JS_NAMED_GROUP_PATTERN = re.compile(r"\(\?<(?=[A-Za-z_])")


def _text(value: Any) -> str:
    if value is None or isinstance(value, Undefined):
        return ""
    return str(value)


def _record_field(root: dict[str, Any], name: str) -> str:
    """Field of the PR, falling back to the issue."""
    record = root.get("pr") or root.get("issue") or {}
    return _text(record.get(name))


def extract_from_text(pattern: Any, text: str) -> str:
    """Apply a pattern to text.

    Returns:
        The first capture group when the pattern has one, otherwise the full
        match. Empty string when nothing matches or the pattern is invalid.
    """
    pattern = _text(pattern)
    try:
        regex = re.compile(JS_NAMED_GROUP_PATTERN.sub("(?P<", pattern))
    except re.error as e:
        log.error("invalid_regex_pattern", pattern=pattern, error=str(e))
        return ""

    match = regex.search(text)
    if match is None:
        return ""
    if regex.groups and match.group(1) is not None:
        return match.group(1)
    return match.group(0)


def extract_from_body(root: dict[str, Any], pattern: Any = None, *_: Any) -> str:
    return extract_from_text(pattern, _record_field(root, "body"))


def extract_from_title(root: dict[str, Any], pattern: Any = None, *_: Any) -> str:
    return extract_from_text(pattern, _record_field(root, "title"))


def extract_from_comments(root: dict[str, Any], pattern: Any = None, *_: Any) -> str:
    """Extract from pre-fetched comments.

    Comments are only fetched when a rule template uses this helper; see
    ``asana_sync.rules.analysis``.
    """
    return extract_from_text(pattern, _text(root.get("comments")))


def clean_title(root: dict[str, Any], title: Any = None, *_: Any) -> str:
    """Strip a conventional-commit prefix such as ``feat(api): `` or ``fix!: ``."""
    return CONVENTIONAL_PREFIX_PATTERN.sub("", _text(title), count=1)


def sanitize_markdown_helper(root: dict[str, Any], text: Any = None, *_: Any) -> str:
    return sanitize_markdown(_text(text))


def markdown_to_html_helper(root: dict[str, Any], text: Any = None, *_: Any) -> str:
    return markdown_to_html(_text(text))


def map_github_to_asana(root: dict[str, Any], login: Any = None, *_: Any) -> str:
    """Asana user GID for a GitHub login, empty when unmapped."""
    mappings = root.get("userMappings") or {}
    return mappings.get(_text(login), "")


def first_truthy(root: dict[str, Any], *values: Any) -> Any:
    """``or``: first truthy argument, otherwise an empty string."""
    for value in values:
        if value and not isinstance(value, Undefined):
            return value
    return ""


HELPERS: dict[str, Callable[..., Any]] = {
    "extract_from_body": extract_from_body,
    "extract_from_title": extract_from_title,
    "extract_from_comments": extract_from_comments,
    "clean_title": clean_title,
    "sanitize_markdown": sanitize_markdown_helper,
    "markdown_to_html": markdown_to_html_helper,
    "map_github_to_asana": map_github_to_asana,
    "or": first_truthy,
}
