"""
Rules configuration validation.

Validation runs once on the parsed YAML, before any model is built or any
rule executes, and stops at the first problem with a message naming the rule
index and the offending key, e.g.::

    Rule 2: Invalid field GID 'status' (must be numeric)

Only structure is checked; nothing here talks to Asana or GitHub.
"""

import re
from typing import Any

from asana_sync.exceptions import RulesValidationError

NUMERIC_ID_PATTERN = re.compile(r"^\d+$")

WHEN_KEYS = ("event", "action", "merged", "draft", "label", "has_labels", "has_asana_tasks", "author")
THEN_KEYS = ("update_fields", "mark_complete", "post_pr_comment", "attach_pr_to_tasks", "create_task")

# Actions that operate on tasks already linked from the PR/issue body
UPDATE_ACTIONS = ("update_fields", "mark_complete", "attach_pr_to_tasks")


def _is_numeric_id(value: Any) -> bool:
    return isinstance(value, str) and bool(NUMERIC_ID_PATTERN.match(value))


def _check_string_or_list(when: dict[str, Any], key: str, index: int) -> None:
    if key not in when:
        return
    value = when[key]
    if isinstance(value, str):
        return
    if not isinstance(value, list):
        raise RulesValidationError(f"'{key}' must be a string or array", rule_index=index)
    if not value:
        raise RulesValidationError(f"'{key}' array cannot be empty", rule_index=index)
    if not all(isinstance(item, str) for item in value):
        raise RulesValidationError(f"'{key}' array must contain only strings", rule_index=index)


def _check_boolean(block: dict[str, Any], key: str, index: int) -> None:
    if key in block and not isinstance(block[key], bool):
        raise RulesValidationError(f"'{key}' must be a boolean", rule_index=index)


def validate_rules_config(config: Any) -> None:
    """Validate a parsed rules configuration.

    Args:
        config: Parsed YAML document (``{"rules": [...], "user_mappings": {...}}``)

    Raises:
        RulesValidationError: On the first violation found
    """
    if not isinstance(config, dict) or not isinstance(config.get("rules"), list):
        raise RulesValidationError("rules must be an array")

    rules = config["rules"]
    if not rules:
        raise RulesValidationError("rules array cannot be empty")

    for index, rule in enumerate(rules):
        validate_rule(rule, index)

    if config.get("user_mappings") is not None:
        validate_user_mappings(config["user_mappings"])

    if not isinstance(config.get("comment_on_pr_when_asana_url_missing", False), bool):
        raise RulesValidationError("comment_on_pr_when_asana_url_missing must be a boolean")


def validate_user_mappings(mappings: Any) -> None:
    """Validate a GitHub login to Asana user GID mapping."""
    if not isinstance(mappings, dict):
        raise RulesValidationError("user_mappings must be an object")
    for login, user_gid in mappings.items():
        if not isinstance(login, str) or not isinstance(user_gid, str):
            raise RulesValidationError(f"user_mappings entry '{login}' must map a string to a string")


def validate_rule(rule: Any, index: int) -> None:
    """Validate one rule.

    Raises:
        RulesValidationError: With the rule index as message prefix
    """
    if not isinstance(rule, dict):
        raise RulesValidationError("Rule must be an object", rule_index=index)

    when = rule.get("when")
    if not when:
        raise RulesValidationError("Missing 'when' block", rule_index=index)
    if not isinstance(when, dict):
        raise RulesValidationError("'when' must be an object", rule_index=index)

    _validate_when(when, index)

    then = rule.get("then")
    if not then:
        raise RulesValidationError("Missing 'then' block", rule_index=index)
    if not isinstance(then, dict):
        raise RulesValidationError("'then' must be an object", rule_index=index)

    _validate_then(then, when, index)


def _validate_when(when: dict[str, Any], index: int) -> None:
    if not isinstance(when.get("event"), str) or not when["event"]:
        raise RulesValidationError("'event' must be a string", rule_index=index)

    for key in ("action", "has_labels", "author"):
        _check_string_or_list(when, key, index)

    for key in ("merged", "draft", "has_asana_tasks"):
        _check_boolean(when, key, index)

    if "label" in when and not isinstance(when["label"], str):
        raise RulesValidationError("'label' must be a string", rule_index=index)


def _validate_then(then: dict[str, Any], when: dict[str, Any], index: int) -> None:
    if not any(key in then for key in THEN_KEYS):
        raise RulesValidationError(
            f"'then' must contain at least one action ({', '.join(THEN_KEYS)})",
            rule_index=index,
        )

    _check_boolean(then, "mark_complete", index)
    _check_boolean(then, "attach_pr_to_tasks", index)

    if "post_pr_comment" in then and not isinstance(then["post_pr_comment"], str):
        raise RulesValidationError("'post_pr_comment' must be a string", rule_index=index)

    update_actions = [key for key in UPDATE_ACTIONS if key in then]
    has_asana_tasks = when.get("has_asana_tasks", True)

    if "create_task" in then:
        if update_actions:
            raise RulesValidationError(
                f"'create_task' cannot be combined with {', '.join(update_actions)}",
                rule_index=index,
            )
        if has_asana_tasks:
            raise RulesValidationError(
                "'create_task' requires 'has_asana_tasks: false'",
                rule_index=index,
            )
        _validate_create_task(then["create_task"], index)
    elif update_actions and not has_asana_tasks:
        raise RulesValidationError(
            f"{', '.join(update_actions)} requires linked Asana tasks "
            "(remove 'has_asana_tasks: false')",
            rule_index=index,
        )

    if "update_fields" in then:
        _validate_field_map(then["update_fields"], "update_fields", index, allow_empty=False)


def _validate_field_map(fields: Any, key: str, index: int, allow_empty: bool) -> None:
    if not isinstance(fields, dict):
        raise RulesValidationError(f"'{key}' must be an object", rule_index=index)

    if not fields and not allow_empty:
        raise RulesValidationError(f"'{key}' cannot be empty", rule_index=index)

    for gid, value in fields.items():
        if not _is_numeric_id(gid):
            raise RulesValidationError(f"Invalid field GID '{gid}' (must be numeric)", rule_index=index)
        if not isinstance(value, str):
            raise RulesValidationError(f"Value for field '{gid}' must be a string", rule_index=index)


def _validate_create_task(create_task: Any, index: int) -> None:
    if not isinstance(create_task, dict):
        raise RulesValidationError("'create_task' must be an object", rule_index=index)

    for key in ("project", "workspace"):
        if key not in create_task:
            raise RulesValidationError(f"create_task.{key} is required", rule_index=index)
        if not _is_numeric_id(create_task[key]):
            raise RulesValidationError(
                f"create_task.{key} must be a numeric GID string", rule_index=index
            )

    if "section" in create_task and not _is_numeric_id(create_task["section"]):
        raise RulesValidationError("create_task.section must be a numeric GID string", rule_index=index)

    title = create_task.get("title")
    if not isinstance(title, str) or not title:
        raise RulesValidationError("create_task.title is required", rule_index=index)

    if "notes" in create_task and "html_notes" in create_task:
        raise RulesValidationError(
            "create_task cannot have both 'notes' and 'html_notes'", rule_index=index
        )

    for key in ("notes", "html_notes", "assignee"):
        if key in create_task and not isinstance(create_task[key], str):
            raise RulesValidationError(f"create_task.{key} must be a string", rule_index=index)

    if "initial_fields" in create_task:
        _validate_field_map(create_task["initial_fields"], "create_task.initial_fields", index, allow_empty=True)
