"""
Rules configuration loading.

Turns the ``rules`` and ``user_mappings`` inputs into a validated, immutable
``RulesConfig``. Any problem surfaces as a ``ConfigurationError`` so that the
run stops before a single rule executes.
"""

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from asana_sync.exceptions import ConfigurationError
from asana_sync.rules.models import RulesConfig
from asana_sync.rules.validator import validate_rules_config, validate_user_mappings

log = structlog.get_logger(__name__)


def parse_rules_yaml(text: str) -> dict[str, Any]:
    """Parse the rules YAML document.

    Raises:
        ConfigurationError: If the YAML is malformed or has no ``rules`` list
    """
    try:
        parsed = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML: {e}") from e

    if not isinstance(parsed, dict) or not isinstance(parsed.get("rules"), list):
        raise ConfigurationError("Invalid YAML: Invalid rules configuration structure")

    for rule in parsed["rules"]:
        _stringify_field_keys(rule)
    return parsed


def _stringify_field_keys(rule: Any) -> None:
    """Unquoted GIDs (``1201: "In Review"``) load as ints; field maps key by string."""
    then = rule.get("then") if isinstance(rule, dict) else None
    if not isinstance(then, dict):
        return

    field_maps = [then.get("update_fields")]
    if isinstance(then.get("create_task"), dict):
        field_maps.append(then["create_task"].get("initial_fields"))

    for fields in field_maps:
        if isinstance(fields, dict):
            for key in [key for key in fields if isinstance(key, int) and not isinstance(key, bool)]:
                fields[str(key)] = fields.pop(key)


def parse_user_mappings(text: str | None) -> dict[str, str]:
    """Parse the ``user_mappings`` input (YAML or JSON).

    Returns:
        GitHub login to Asana user GID, empty when the input is unset

    Raises:
        ConfigurationError: If the input is not a string-to-string mapping
    """
    if not text or not text.strip():
        return {}

    try:
        parsed = yaml.safe_load(text)
        validate_user_mappings(parsed)
    except (yaml.YAMLError, ConfigurationError) as e:
        raise ConfigurationError(f"Invalid user_mappings YAML: {e}") from e

    log.info("user_mappings_loaded", count=len(parsed))
    return parsed


def load_rules_config(
    raw: dict[str, Any],
    user_mappings: dict[str, str] | None = None,
    integration_secret: str | None = None,
) -> RulesConfig:
    """Validate a parsed rules document and build the immutable config.

    Mappings given inline in the rules document are merged with (and
    overridden by) the ``user_mappings`` input.

    Raises:
        RulesValidationError: If the document fails validation
        ConfigurationError: If the models cannot be built
    """
    validate_rules_config(raw)

    mappings = dict(raw.get("user_mappings") or {})
    mappings.update(user_mappings or {})

    try:
        config = RulesConfig(
            rules=tuple(raw["rules"]),
            user_mappings=mappings,
            integration_secret=integration_secret,
            comment_on_pr_when_asana_url_missing=raw.get("comment_on_pr_when_asana_url_missing", False),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    log.info("rules_loaded", count=len(config.rules), user_mappings=len(mappings))
    return config


def load_rules_file(path: str | Path) -> RulesConfig:
    """Load and validate a rules YAML file.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    rules_file = Path(path)
    if not rules_file.exists():
        raise ConfigurationError(f"Rules file not found: {path}")

    try:
        text = rules_file.read_text()
    except OSError as e:
        raise ConfigurationError(f"Cannot read rules file: {path}") from e

    return load_rules_config(parse_rules_yaml(text))
