"""
Rule execution.

``execute_rules`` is a single pass over the rule list in declared order. Each
matching rule contributes to independent accumulators:

    - field updates: per field GID, the last matching rule wins
    - comment templates: appended raw, evaluated later against the comment
      context once task outcomes are known
    - task creation specs: appended in rule order
    - ``mark_complete`` / ``attach_pr_to_tasks``: OR across matching rules

Rule order therefore only affects which value a field ends up with.
"""

from typing import Any

import structlog

from asana_sync.exceptions import RuleEvaluationError
from asana_sync.rendering.engine import evaluate_template
from asana_sync.rules.context import template_context
from asana_sync.rules.matcher import matches_condition
from asana_sync.rules.models import (
    MARK_COMPLETE_KEY,
    CreateTaskAction,
    CreateTaskSpec,
    Rule,
    RuleContext,
    RuleExecutionResult,
)

log = structlog.get_logger(__name__)


def evaluate_create_task_spec(
    action: CreateTaskAction,
    context: dict[str, Any],
    rule_index: int,
) -> CreateTaskSpec:
    """Resolve the templates of a ``create_task`` action.

    Args:
        action: The configured action
        context: Template context
        rule_index: Index of the rule, for error messages

    Returns:
        The resolved creation spec

    Raises:
        RuleEvaluationError: If the title resolves to an empty string
    """
    title = evaluate_template(action.title, context)
    if not title:
        raise RuleEvaluationError("create_task.title evaluated to empty string", rule_index=rule_index)

    notes = evaluate_template(action.notes, context) if action.notes else None
    html_notes = evaluate_template(action.html_notes, context) if action.html_notes else None

    assignee = None
    if action.assignee:
        # Empty means the user mapping had no entry
        assignee = evaluate_template(action.assignee, context) or None

    initial_fields: dict[str, str] = {}
    for field_gid, template in action.initial_fields.items():
        try:
            value = evaluate_template(template, context)
        except Exception as e:
            log.warning(
                "initial_field_evaluation_failed",
                rule_index=rule_index,
                field_gid=field_gid,
                error=str(e),
            )
            continue
        if value != "":
            initial_fields[field_gid] = value

    return CreateTaskSpec(
        action=action,
        title=title,
        notes=notes,
        html_notes=html_notes,
        assignee=assignee,
        initial_fields=initial_fields,
    )


def execute_rules(rules: list[Rule] | tuple[Rule, ...], context: RuleContext) -> RuleExecutionResult:
    """Execute all matching rules and collect their effects.

    Args:
        rules: Rules in declared order
        context: Event context

    Returns:
        Aggregated field updates, comment templates, creation specs and flags
    """
    result = RuleExecutionResult()
    mark_complete = False
    values = template_context(context)

    for index, rule in enumerate(rules):
        if not matches_condition(rule.when, context):
            log.debug("rule_condition_not_met", rule_index=index)
            continue

        log.debug("rule_matched", rule_index=index)
        action = rule.then

        if action.create_task is not None:
            try:
                spec = evaluate_create_task_spec(action.create_task, values, index)
            except RuleEvaluationError as e:
                log.error("create_task_evaluation_failed", rule_index=index, error=e.message)
            else:
                result.task_creation_specs.append(spec)
                log.debug("task_creation_planned", rule_index=index, title=spec.title)

        for field_gid, template in action.update_fields.items():
            try:
                value = evaluate_template(template, values)
            except Exception as e:
                log.error("field_evaluation_failed", rule_index=index, field_gid=field_gid, error=str(e))
                continue

            # Only exactly "" is skipped; whitespace is a value
            if value == "":
                log.debug("field_skipped_empty", rule_index=index, field_gid=field_gid)
                continue

            result.field_updates[field_gid] = value
            log.debug("field_update_planned", rule_index=index, field_gid=field_gid, value=value)

        if action.mark_complete:
            mark_complete = True

        if action.attach_pr_to_tasks:
            result.attach_pr_to_tasks = True
            log.debug("pr_attachment_planned", rule_index=index)

        if action.post_pr_comment:
            result.comment_templates.append(action.post_pr_comment)
            log.debug("comment_planned", rule_index=index, template_number=len(result.comment_templates))

    if mark_complete:
        result.field_updates[MARK_COMPLETE_KEY] = "true"

    log.info(
        "rules_executed",
        rules=len(rules),
        field_updates=len(result.custom_field_updates),
        mark_complete=mark_complete,
        comments=len(result.comment_templates),
        tasks_to_create=len(result.task_creation_specs),
        attach_pr_to_tasks=result.attach_pr_to_tasks,
    )
    return result
