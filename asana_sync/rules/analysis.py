"""Static analysis of rule templates."""

import re
from collections.abc import Iterable, Iterator

from asana_sync.rules.models import Rule


def iter_rule_templates(rule: Rule) -> Iterator[str]:
    """Yield every template string of a rule."""
    action = rule.then
    yield from action.update_fields.values()
    if action.post_pr_comment:
        yield action.post_pr_comment

    create_task = action.create_task
    if create_task is not None:
        yield create_task.title
        for template in (create_task.notes, create_task.html_notes, create_task.assignee):
            if template:
                yield template
        yield from create_task.initial_fields.values()


def rules_use_helper(rules: Iterable[Rule], helper_name: str) -> bool:
    """Check whether any rule template calls a helper.

    Used to skip expensive lookups, such as fetching PR comments, when no
    template needs them.

    Args:
        rules: Rules to scan
        helper_name: Helper to look for (e.g. ``extract_from_comments``)

    Returns:
        True if a template calls the helper, either directly
        (``{{helper ...}}``) or as a sub-expression (``(helper ...)``)
    """
    pattern = re.compile(r"(?:\{\{~?|\()\s*" + re.escape(helper_name) + r"(?=[\s)}])")
    return any(pattern.search(template) for rule in rules for template in iter_rule_templates(rule))
