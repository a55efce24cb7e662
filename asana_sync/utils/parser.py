"""Parse Asana task references out of pull request and issue bodies."""

import re

# https://app.asana.com/0/<project>/<task> and the newer .../<task>/f form
ASANA_TASK_URL_PATTERN = re.compile(r"https://app\.asana\.com/\d+/\d+/(\d+)")


def _task_ids(text: str | None) -> list[str]:
    if not text:
        return []
    seen: dict[str, None] = {}
    for match in ASANA_TASK_URL_PATTERN.finditer(text):
        seen.setdefault(match.group(1), None)
    return list(seen)


def extract_asana_task_ids(
    body: str | None,
    previous_body: str | None = None,
) -> tuple[list[str], bool]:
    """Extract Asana task IDs from body text.

    Matches URLs like ``https://app.asana.com/0/1234567890/9876543210`` and
    returns the task IDs (last numeric segment), de-duplicated, in order of
    first appearance.

    Args:
        body: Current PR/issue body
        previous_body: Body before an ``edited`` event, if known

    Returns:
        Tuple of (task_ids, changed). ``changed`` is True when no previous
        body is given, otherwise whether the set of referenced tasks differs.
    """
    task_ids = _task_ids(body)

    if previous_body is None:
        return task_ids, True

    changed = set(task_ids) != set(_task_ids(previous_body))
    return task_ids, changed
