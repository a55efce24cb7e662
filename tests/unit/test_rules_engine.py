"""Tests for asana_sync/rules/engine.py - rule execution."""

from conftest import make_issue_payload, make_pr_payload, make_rules

from asana_sync.rules.context import build_rule_context
from asana_sync.rules.engine import execute_rules
from asana_sync.rules.models import MARK_COMPLETE_KEY


def pr_context(**kwargs):
    has_asana_tasks = kwargs.pop("has_asana_tasks", True)
    user_mappings = kwargs.pop("user_mappings", None)
    return build_rule_context(
        "pull_request",
        make_pr_payload(**kwargs),
        has_asana_tasks=has_asana_tasks,
        user_mappings=user_mappings,
    )


# =============================================================================
# Field updates
# =============================================================================


class TestFieldUpdates:
    """Tests for update_fields aggregation."""

    def test_last_matching_rule_wins(self) -> None:
        """Should keep the value of the last matching rule for a field."""
        rules = make_rules(
            {"when": {"event": "pull_request"}, "then": {"update_fields": {"1": "First"}}},
            {"when": {"event": "issues"}, "then": {"update_fields": {"1": "Issue"}}},
            {"when": {"event": "pull_request", "action": "closed"}, "then": {"update_fields": {"1": "Closed"}}},
            {"when": {"event": "pull_request", "action": "opened"}, "then": {"update_fields": {"1": "Second"}}},
        )

        result = execute_rules(rules, pr_context())

        assert result.field_updates == {"1": "Second"}

    def test_fields_from_several_rules_are_merged(self) -> None:
        """Should combine different fields from different rules."""
        rules = make_rules(
            {"when": {"event": "pull_request"}, "then": {"update_fields": {"1": "In Review"}}},
            {"when": {"event": "pull_request"}, "then": {"update_fields": {"2": "{{pr.number}}"}}},
        )

        result = execute_rules(rules, pr_context())

        assert result.field_updates == {"1": "In Review", "2": "42"}

    def test_empty_value_is_skipped(self) -> None:
        """Should not write a field whose template renders to an empty string."""
        rules = make_rules(
            {
                "when": {"event": "pull_request"},
                "then": {"update_fields": {"1": '{{extract_from_body "X-(\\d+)"}}'}},
            }
        )

        result = execute_rules(rules, pr_context(body="No reference here"))

        assert result.field_updates == {}
        assert "1" not in result.field_updates

    def test_empty_value_does_not_clear_earlier_value(self) -> None:
        """Should keep an earlier rule's value when a later one renders empty."""
        rules = make_rules(
            {"when": {"event": "pull_request"}, "then": {"update_fields": {"1": "Fallback"}}},
            {
                "when": {"event": "pull_request"},
                "then": {"update_fields": {"1": '{{extract_from_body "X-(\\d+)"}}'}},
            },
        )

        assert execute_rules(rules, pr_context()).field_updates == {"1": "Fallback"}

    def test_whitespace_value_is_kept(self) -> None:
        """Should treat whitespace-only output as a value."""
        rules = make_rules({"when": {"event": "pull_request"}, "then": {"update_fields": {"1": " "}}})

        assert execute_rules(rules, pr_context()).field_updates == {"1": " "}

    def test_extraction_result_is_written(self) -> None:
        """Should write the first capture group of an extraction."""
        rules = make_rules(
            {
                "when": {"event": "pull_request"},
                "then": {"update_fields": {"1": '{{extract_from_body "BUILD-(\\d+)"}}'}},
            }
        )

        result = execute_rules(rules, pr_context(body="This is BUILD-456 from CI"))

        assert result.field_updates == {"1": "456"}

    def test_broken_template_only_skips_its_field(self) -> None:
        """Should isolate template failures to the field that failed."""
        rules = make_rules(
            {
                "when": {"event": "pull_request"},
                "then": {"update_fields": {"1": "{{#if pr.draft}}unclosed", "2": "ok"}},
            }
        )

        assert execute_rules(rules, pr_context()).field_updates == {"2": "ok"}


# =============================================================================
# Flags and comments
# =============================================================================


class TestFlagsAndComments:
    """Tests for mark_complete, attach_pr_to_tasks and post_pr_comment."""

    def test_mark_complete_if_any_matching_rule_sets_it(self) -> None:
        """Should add the completion sentinel regardless of rule order."""
        rules = make_rules(
            {"when": {"event": "pull_request"}, "then": {"mark_complete": True}},
            {"when": {"event": "pull_request"}, "then": {"update_fields": {"1": "Done"}}},
        )

        result = execute_rules(rules, pr_context())

        assert result.field_updates == {"1": "Done", MARK_COMPLETE_KEY: "true"}
        assert result.mark_complete is True
        assert result.custom_field_updates == {"1": "Done"}

    def test_no_mark_complete_when_no_matching_rule_sets_it(self) -> None:
        """Should not complete tasks when only non-matching rules ask for it."""
        rules = make_rules(
            {"when": {"event": "pull_request"}, "then": {"update_fields": {"1": "A"}}},
            {"when": {"event": "pull_request"}, "then": {"update_fields": {"2": "B"}}},
            {"when": {"event": "pull_request", "merged": True}, "then": {"mark_complete": True}},
        )

        result = execute_rules(rules, pr_context())

        assert MARK_COMPLETE_KEY not in result.field_updates
        assert result.mark_complete is False

    def test_attach_pr_is_aggregated(self) -> None:
        """Should request PR attachment when any matching rule does."""
        rules = make_rules(
            {"when": {"event": "pull_request"}, "then": {"attach_pr_to_tasks": True}},
            {"when": {"event": "pull_request"}, "then": {"attach_pr_to_tasks": False}},
        )

        assert execute_rules(rules, pr_context()).attach_pr_to_tasks is True

    def test_comment_templates_collected_raw_in_order(self) -> None:
        """Should keep comment templates unevaluated, in rule order."""
        rules = make_rules(
            {"when": {"event": "pull_request"}, "then": {"post_pr_comment": "Updated {{summary.total}} task(s)"}},
            {"when": {"event": "issues"}, "then": {"post_pr_comment": "never"}},
            {"when": {"event": "pull_request"}, "then": {"post_pr_comment": "Second"}},
        )

        result = execute_rules(rules, pr_context())

        assert result.comment_templates == ["Updated {{summary.total}} task(s)", "Second"]

    def test_nothing_matches(self) -> None:
        """Should return an empty result when no rule matches."""
        rules = make_rules({"when": {"event": "issues"}, "then": {"mark_complete": True}})

        result = execute_rules(rules, pr_context())

        assert result.is_empty
        assert result.field_updates == {}


# =============================================================================
# Task creation
# =============================================================================


CREATE_RULE = {
    "when": {"event": "pull_request", "action": "opened", "has_asana_tasks": False},
    "then": {
        "create_task": {
            "project": "1100",
            "workspace": "1000",
            "section": "1110",
            "title": "{{clean_title pr.title}}",
            "notes": "{{pr.url}}",
            "assignee": "{{map_github_to_asana pr.author}}",
            "initial_fields": {"1201": "In Review", "1202": '{{extract_from_body "X-(\\d+)"}}'},
        }
    },
}


class TestTaskCreation:
    """Tests for create_task resolution."""

    def test_resolves_create_task_spec(self) -> None:
        """Should evaluate every template of the create_task action."""
        context = pr_context(has_asana_tasks=False, user_mappings={"octocat": "1300"})

        result = execute_rules(make_rules(CREATE_RULE), context)

        assert len(result.task_creation_specs) == 1
        spec = result.task_creation_specs[0]
        assert spec.title == "Add widget endpoint"
        assert spec.notes == "https://github.com/acme/widgets/pull/42"
        assert spec.html_notes is None
        assert spec.assignee == "1300"
        assert spec.initial_fields == {"1201": "In Review"}
        assert spec.action.project == "1100"

    def test_unmapped_assignee_is_none(self) -> None:
        """Should leave the assignee unset when the mapping has no entry."""
        result = execute_rules(make_rules(CREATE_RULE), pr_context(has_asana_tasks=False))

        assert result.task_creation_specs[0].assignee is None

    def test_empty_title_skips_only_that_rule(self) -> None:
        """Should drop a rule whose title renders empty and keep going."""
        empty_title = {
            "when": {"event": "pull_request", "has_asana_tasks": False},
            "then": {"create_task": {"project": "1", "workspace": "2", "title": "{{pr.missing}}"}},
        }
        rules = make_rules(empty_title, CREATE_RULE)

        result = execute_rules(rules, pr_context(has_asana_tasks=False))

        assert [spec.title for spec in result.task_creation_specs] == ["Add widget endpoint"]

    def test_not_created_when_tasks_are_linked(self) -> None:
        """Should not match a create rule when the PR already links tasks."""
        result = execute_rules(make_rules(CREATE_RULE), pr_context(has_asana_tasks=True))

        assert result.task_creation_specs == []


# =============================================================================
# End to end
# =============================================================================


class TestLifecycleScenario:
    """Opened and merged PR against a two-rule policy."""

    RULES = [
        {
            "when": {"event": "pull_request", "action": "opened", "draft": False},
            "then": {"update_fields": {"1": "In Review"}},
        },
        {
            "when": {"event": "pull_request", "action": "closed", "merged": True},
            "then": {"update_fields": {"1": "Shipped"}, "mark_complete": True},
        },
    ]

    def test_opened_pull_request(self) -> None:
        """Should set the review state without completing the task."""
        result = execute_rules(make_rules(*self.RULES), pr_context(action="opened"))

        assert result.field_updates == {"1": "In Review"}

    def test_merged_pull_request(self) -> None:
        """Should set the shipped state and complete the task."""
        result = execute_rules(make_rules(*self.RULES), pr_context(action="closed", merged=True))

        assert result.field_updates == {"1": "Shipped", MARK_COMPLETE_KEY: "true"}

    def test_issue_event_matches_nothing(self) -> None:
        """Should not match PR rules for an issue."""
        context = build_rule_context("issues", make_issue_payload(), has_asana_tasks=True)

        assert execute_rules(make_rules(*self.RULES), context).is_empty
