"""Condition matching.

A condition is a flat conjunction: every clause that is present must hold,
absent clauses impose no constraint, and there is no OR/NOT/nesting across
clauses. List-valued clauses accept any one of their values.
"""

from asana_sync.rules.models import Condition, RuleContext


def _as_tuple(value: str | tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def matches_condition(condition: Condition, context: RuleContext) -> bool:
    """Check whether a condition matches the current context.

    Args:
        condition: Rule ``when`` block
        context: Current event context

    Returns:
        True if all specified clauses match (AND logic)
    """
    if condition.event != context.event_name:
        return False

    if condition.action is not None and context.action not in _as_tuple(condition.action):
        return False

    # merged/draft only exist on pull requests; without one they fail
    if condition.merged is not None:
        if context.pr is None or context.pr.merged != condition.merged:
            return False

    if condition.draft is not None:
        if context.pr is None or context.pr.draft != condition.draft:
            return False

    if condition.label is not None:
        if context.label is None or context.label != condition.label:
            return False

    if condition.has_labels is not None:
        present = context.labels or ()
        if not any(label in present for label in _as_tuple(condition.has_labels)):
            return False

    if condition.has_asana_tasks is not None and condition.has_asana_tasks != context.has_asana_tasks:
        return False

    if condition.author is not None and context.author not in _as_tuple(condition.author):
        return False

    return True
