"""Tests for asana_sync/config/loader.py - rules configuration loading."""

from pathlib import Path

import pytest

from asana_sync.exceptions import ConfigurationError, RulesValidationError
from asana_sync.config.loader import load_rules_config, load_rules_file, parse_rules_yaml, parse_user_mappings

RULES_YAML = """
comment_on_pr_when_asana_url_missing: true
user_mappings:
  octocat: "1300"
rules:
  - when:
      event: pull_request
      action: [opened, reopened]
      draft: false
    then:
      update_fields:
        1201: "In Review"
  - when:
      event: pull_request
      action: opened
      has_asana_tasks: false
    then:
      create_task:
        project: "1100"
        workspace: "1000"
        title: "{{clean_title pr.title}}"
        initial_fields:
          1202: "{{pr.number}}"
"""


class TestParseRulesYaml:
    """Tests for parse_rules_yaml."""

    def test_parses_document(self) -> None:
        """Should parse the rules and stringify unquoted field GIDs."""
        raw = parse_rules_yaml(RULES_YAML)

        assert raw["rules"][0]["then"]["update_fields"] == {"1201": "In Review"}
        assert raw["rules"][1]["then"]["create_task"]["initial_fields"] == {"1202": "{{pr.number}}"}

    def test_invalid_yaml(self) -> None:
        """Should report YAML syntax errors."""
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            parse_rules_yaml("rules: [unclosed")

    @pytest.mark.parametrize("text", ["", "just text", "rules: {}", "- a\n- b"])
    def test_wrong_structure(self, text: str) -> None:
        """Should require a mapping with a rules list."""
        with pytest.raises(ConfigurationError, match="Invalid rules configuration structure"):
            parse_rules_yaml(text)


class TestParseUserMappings:
    """Tests for parse_user_mappings."""

    def test_yaml(self) -> None:
        """Should parse a YAML mapping."""
        assert parse_user_mappings('octocat: "1300"\nhubot: "1301"') == {"octocat": "1300", "hubot": "1301"}

    def test_json(self) -> None:
        """Should parse a JSON mapping."""
        assert parse_user_mappings('{"octocat": "1300"}') == {"octocat": "1300"}

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_unset(self, text) -> None:
        """Should return an empty mapping for an unset input."""
        assert parse_user_mappings(text) == {}

    @pytest.mark.parametrize("text", ["[a, b]", "octocat: 1300", "{unclosed"])
    def test_invalid(self, text: str) -> None:
        """Should reject anything but a string-to-string mapping."""
        with pytest.raises(ConfigurationError, match="Invalid user_mappings YAML"):
            parse_user_mappings(text)


class TestLoadRulesConfig:
    """Tests for load_rules_config."""

    def test_builds_config(self) -> None:
        """Should build the immutable configuration."""
        config = load_rules_config(parse_rules_yaml(RULES_YAML), integration_secret="s3cret")

        assert len(config.rules) == 2
        assert config.rules[0].when.action == ("opened", "reopened")
        assert config.rules[1].then.create_task.project == "1100"
        assert config.user_mappings == {"octocat": "1300"}
        assert config.integration_secret.get_secret_value() == "s3cret"
        assert "s3cret" not in repr(config)
        assert config.comment_on_pr_when_asana_url_missing is True

    def test_input_mappings_override_inline(self) -> None:
        """Should merge the user_mappings input over inline mappings."""
        config = load_rules_config(
            parse_rules_yaml(RULES_YAML),
            user_mappings={"octocat": "1999", "hubot": "1301"},
        )

        assert config.user_mappings == {"octocat": "1999", "hubot": "1301"}

    def test_validation_errors_propagate(self) -> None:
        """Should raise validation errors before building models."""
        raw = {"rules": [{"when": {"event": "pull_request"}, "then": {"update_fields": {"status": "x"}}}]}

        with pytest.raises(RulesValidationError, match="Rule 0: Invalid field GID 'status'"):
            load_rules_config(raw)

    def test_flag_defaults_to_false(self) -> None:
        """Should not prompt for missing links unless asked to."""
        raw = {"rules": [{"when": {"event": "pull_request"}, "then": {"mark_complete": True}}]}

        assert load_rules_config(raw).comment_on_pr_when_asana_url_missing is False


class TestLoadRulesFile:
    """Tests for load_rules_file."""

    def test_loads_file(self, tmp_path: Path) -> None:
        """Should load and validate a rules file."""
        rules_file = tmp_path / "rules.yml"
        rules_file.write_text(RULES_YAML)

        assert len(load_rules_file(rules_file).rules) == 2

    def test_missing_file(self, tmp_path: Path) -> None:
        """Should report a missing file."""
        with pytest.raises(ConfigurationError, match="Rules file not found"):
            load_rules_file(tmp_path / "missing.yml")
