"""
End-to-end sync of one GitHub event.

The orchestrator runs the pure rule engine and hands its result to the Asana
and GitHub clients:

    1. Find Asana task links in the PR/issue body
    2. Fetch PR comments, only if a template uses ``extract_from_comments``
    3. Build the rule context and execute the rules
    4. Either create tasks (when a ``create_task`` rule matched) or update
       the linked tasks, optionally attaching the PR to them
    5. Post the comment templates against the outcome

Per-task failures are reported in the outcome, never raised.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from asana_sync.providers.asana import AsanaClient, PullRequestMetadata, TaskDetails
from asana_sync.providers.github import GitHubClient
from asana_sync.rules.analysis import rules_use_helper
from asana_sync.rules.context import build_comment_context, build_rule_context
from asana_sync.rules.engine import execute_rules
from asana_sync.rules.models import RuleContext, RuleExecutionResult, RulesConfig, TaskResult
from asana_sync.utils.logging_config import bind_event_context
from asana_sync.utils.parser import extract_asana_task_ids

log = structlog.get_logger(__name__)


@dataclass
class SyncOutcome:
    """What a run did, exposed as step outputs."""

    task_ids: list[str] = field(default_factory=list)
    results: list[TaskResult] = field(default_factory=list)
    tasks_created: int | None = None
    tasks_updated: int | None = None

    @property
    def failed(self) -> list[TaskResult]:
        return [result for result in self.results if not result.success]

    def outputs(self) -> dict[str, str]:
        """Step outputs (``task_ids`` plus ``tasks_created`` or ``tasks_updated``)."""
        outputs: dict[str, str] = {}
        if self.tasks_created is None and self.tasks_updated is None:
            return outputs

        outputs["task_ids"] = ",".join(self.task_ids)
        if self.tasks_created is not None:
            outputs["tasks_created"] = str(self.tasks_created)
        if self.tasks_updated is not None:
            outputs["tasks_updated"] = str(self.tasks_updated)
        return outputs


def _pr_metadata(context: RuleContext) -> PullRequestMetadata | None:
    record = context.pr or context.issue
    if record is None:
        return None
    return PullRequestMetadata(number=record.number, title=record.title, body=record.body, url=record.url)


class SyncOrchestrator:
    """Runs the rule set for one event against Asana and GitHub."""

    def __init__(self, config: RulesConfig, asana: AsanaClient, github: GitHubClient):
        self.config = config
        self.asana = asana
        self.github = github

    async def run(self, event_name: str, payload: dict[str, Any]) -> SyncOutcome:
        """Sync one event.

        Args:
            event_name: GitHub event name
            payload: Webhook payload

        Returns:
            The outcome of the run

        Raises:
            ConfigurationError: If the event is unsupported or malformed
        """
        record = payload.get("pull_request") or payload.get("issue") or {}
        number = record.get("number")
        bind_event_context(event_name, payload.get("action"), number)

        task_ids, _ = extract_asana_task_ids(record.get("body") or "")
        has_asana_tasks = bool(task_ids)

        comments = None
        if rules_use_helper(self.config.rules, "extract_from_comments"):
            if number:
                log.info("fetching_comments", number=number)
                comments = await self.github.fetch_comments(number)
            else:
                log.warning("comments_unavailable", reason="no PR or issue number in payload")
                comments = ""

        context = build_rule_context(
            event_name,
            payload,
            comments=comments,
            has_asana_tasks=has_asana_tasks,
            user_mappings=dict(self.config.user_mappings),
        )
        log.info(
            "event_received",
            event_name=context.event_name,
            action=context.action,
            number=number,
            has_asana_tasks=has_asana_tasks,
        )

        result = execute_rules(self.config.rules, context)

        if result.task_creation_specs:
            return await self._create_tasks(context, result)

        if task_ids:
            return await self._update_tasks(context, result, task_ids)

        log.info("no_asana_tasks_found", number=number)
        if self.config.comment_on_pr_when_asana_url_missing and context.pr is not None:
            await self.github.post_missing_asana_url_prompt(context.pr.number)
        return SyncOutcome()

    async def _create_tasks(self, context: RuleContext, result: RuleExecutionResult) -> SyncOutcome:
        pr = _pr_metadata(context)
        assert pr is not None

        log.info("creating_tasks", count=len(result.task_creation_specs))
        created = await self.asana.create_all_tasks(result.task_creation_specs, pr)

        if context.pr is not None:
            for task in created:
                if task.success:
                    await self.github.append_asana_link(pr.number, task.name, task.url)

        if result.comment_templates:
            comment_context = build_comment_context(context, created, result.field_updates)
            await self.github.post_comment_templates(result.comment_templates, pr.number, comment_context)

        outcome = SyncOutcome(
            task_ids=[task.gid for task in created if task.success],
            results=created,
            tasks_created=sum(1 for task in created if task.success),
        )
        log.info(
            "creation_summary",
            created=outcome.tasks_created,
            requested=len(result.task_creation_specs),
            failed=[task.name for task in outcome.failed],
        )
        return outcome

    async def _update_tasks(
        self,
        context: RuleContext,
        result: RuleExecutionResult,
        task_ids: list[str],
    ) -> SyncOutcome:
        log.info("asana_tasks_found", task_ids=task_ids)

        if not result.field_updates and not result.comment_templates and not result.attach_pr_to_tasks:
            log.info("no_rules_matched")
            return SyncOutcome()

        pr = _pr_metadata(context)
        assert pr is not None
        attach = result.attach_pr_to_tasks and context.pr is not None
        if attach and not self.asana.integration_secret:
            log.warning("attach_pr_skipped", reason="integration_secret not configured")
            attach = False

        task_details: list[TaskDetails] = []
        if result.comment_templates or attach:
            task_details = await self.asana.fetch_all_task_details(task_ids)

        task_results = await self.asana.update_all_tasks(task_ids, task_details, result.field_updates)

        if attach:
            await self.asana.attach_pr_to_existing_tasks(task_results, pr)

        if result.comment_templates:
            comment_context = build_comment_context(context, task_results, result.field_updates)
            await self.github.post_comment_templates(result.comment_templates, pr.number, comment_context)

        outcome = SyncOutcome(
            task_ids=list(task_ids),
            results=task_results,
            tasks_updated=sum(1 for task in task_results if task.success),
        )
        log.info(
            "update_summary",
            total=len(task_results),
            successful=outcome.tasks_updated,
            failed=[task.gid for task in outcome.failed],
        )
        return outcome
