"""Template rendering for rule templates.

Templates use mustache syntax and are executed by a sandboxed Jinja2
environment. ``evaluate_template`` never raises.

Example:
    >>> from asana_sync.rendering import evaluate_template
    >>> evaluate_template("PR #{{pr.number}}", {"pr": {"number": 42}})
    'PR #42'
"""

from asana_sync.rendering.engine import TemplateEngine, evaluate_template
from asana_sync.rendering.markdown import markdown_to_html, sanitize_markdown

__all__ = [
    "TemplateEngine",
    "evaluate_template",
    "markdown_to_html",
    "sanitize_markdown",
]
