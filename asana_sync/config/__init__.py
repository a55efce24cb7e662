"""Configuration for the action.

Key Components:
    - ActionSettings: ``INPUT_*`` inputs of the workflow step
    - GitHubEnvironment: ``GITHUB_*`` run metadata, payload and outputs
    - load_rules_config: Validate the rules YAML into a RulesConfig

Example:
    >>> from asana_sync.config import parse_rules_yaml, load_rules_config
    >>> config = load_rules_config(parse_rules_yaml(text))
    >>> len(config.rules)
    2
"""

from asana_sync.config.loader import load_rules_config, load_rules_file, parse_rules_yaml, parse_user_mappings
from asana_sync.config.settings import ActionSettings, GitHubEnvironment

__all__ = [
    "ActionSettings",
    "GitHubEnvironment",
    "load_rules_config",
    "load_rules_file",
    "parse_rules_yaml",
    "parse_user_mappings",
]
