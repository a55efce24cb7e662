"""Rule engine.

Matches a GitHub event against the user's ``when``/``then`` rules and folds
the matching rules into one ``RuleExecutionResult``. Everything here is pure;
the clients in ``asana_sync.providers`` act on the result.

Key Components:
    - build_rule_context: Project a webhook payload into a RuleContext
    - matches_condition: AND-only condition matching
    - execute_rules: Single pass over the rules
    - validate_rules_config: Structural validation with rule-indexed errors
    - rules_use_helper: Template analysis
"""

from asana_sync.rules.analysis import rules_use_helper
from asana_sync.rules.context import build_comment_context, build_rule_context, template_context
from asana_sync.rules.engine import execute_rules
from asana_sync.rules.matcher import matches_condition
from asana_sync.rules.models import (
    Action,
    Condition,
    CreateTaskAction,
    CreateTaskSpec,
    Rule,
    RuleContext,
    RuleExecutionResult,
    RulesConfig,
    TaskResult,
)
from asana_sync.rules.validator import validate_rules_config

__all__ = [
    "Action",
    "Condition",
    "CreateTaskAction",
    "CreateTaskSpec",
    "Rule",
    "RuleContext",
    "RuleExecutionResult",
    "RulesConfig",
    "TaskResult",
    "build_comment_context",
    "build_rule_context",
    "execute_rules",
    "matches_condition",
    "rules_use_helper",
    "template_context",
    "validate_rules_config",
]
