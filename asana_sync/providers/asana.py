"""Asana client: task updates, task creation and PR attachment."""

import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from asana_sync.exceptions import ExternalServiceError
from asana_sync.providers.base import RestClient
from asana_sync.providers.fields import CustomFieldSchema, FieldSchemaCache, coerce_field_value
from asana_sync.rules.models import MARK_COMPLETE_KEY, CreateTaskSpec, TaskResult
from asana_sync.utils.connection_pool import HTTPConnectionPool
from asana_sync.utils.retry import async_retry

log = structlog.get_logger(__name__)

ASANA_API_BASE = "https://app.asana.com/api/1.0"
INTEGRATION_BASE_URL = "https://github.integrations.asana.plus"
INTEGRATION_WIDGET_PATH = "/custom/v1/actions/widget"
INTEGRATION_TIMEOUT = 30.0

# Notes longer than this are shortened in dry-run logs
DRY_RUN_PREVIEW_LENGTH = 100


def task_url_fallback(task_gid: str) -> str:
    return f"https://app.asana.com/0/0/{task_gid}/f"


def _preview(text: str) -> str:
    if len(text) > DRY_RUN_PREVIEW_LENGTH:
        return text[:DRY_RUN_PREVIEW_LENGTH] + "..."
    return text


@dataclass(frozen=True)
class TaskDetails:
    """Name and link of an existing task."""

    gid: str
    name: str
    url: str

    @classmethod
    def placeholder(cls, task_gid: str) -> "TaskDetails":
        """Details used when the task could not be fetched."""
        return cls(gid=task_gid, name=f"Task {task_gid}", url=task_url_fallback(task_gid))


@dataclass(frozen=True)
class PullRequestMetadata:
    """The PR fields sent to the Asana GitHub integration."""

    number: int
    title: str
    body: str
    url: str


class AsanaClient(RestClient):
    """Client for the Asana REST API.

    Tasks are processed one at a time so that a failure is always attributed
    to the task that caused it. In dry-run mode reads still happen but every
    write is logged instead of sent.
    """

    service = "Asana"

    def __init__(
        self,
        token: str,
        integration_secret: str | None = None,
        dry_run: bool = False,
        schema_cache: FieldSchemaCache | None = None,
        pool: HTTPConnectionPool | None = None,
        integration_pool: HTTPConnectionPool | None = None,
    ):
        """Initialize the client.

        Args:
            token: Asana personal access token
            integration_secret: Secret for the Asana GitHub integration widget;
                PR attachment is skipped without it
            dry_run: Log writes instead of performing them
            schema_cache: Field schema cache shared across the run
            pool: Connection pool for the Asana API (created on connect)
            integration_pool: Connection pool for the integration endpoint
        """
        token = token.strip() if token else token
        super().__init__(
            base_url=ASANA_API_BASE,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            pool=pool,
        )
        self.integration_secret = integration_secret
        self.dry_run = dry_run
        self.schema_cache = schema_cache if schema_cache is not None else FieldSchemaCache()
        self._integration_pool = integration_pool

    async def disconnect(self) -> None:
        await super().disconnect()
        if self._integration_pool is not None:
            await self._integration_pool.close()
            self._integration_pool = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and unwrap the ``data`` envelope."""
        response = await self._send(method, path, **kwargs)
        return response.json().get("data")

    # ------------------------------------------------------------------
    # Custom fields
    # ------------------------------------------------------------------

    @async_retry()
    async def get_custom_field(self, field_gid: str) -> CustomFieldSchema:
        """Fetch a custom field definition."""
        log.info("fetch_custom_field", field_gid=field_gid)
        data = await self._request("GET", f"/custom_fields/{field_gid}")
        return CustomFieldSchema.from_api(data)

    async def get_field_schema(self, field_gid: str) -> CustomFieldSchema:
        """Field definition from the cache, fetched on first use."""
        schema = self.schema_cache.get(field_gid)
        if schema is None:
            schema = await self.get_custom_field(field_gid)
            self.schema_cache.set(schema)
        return schema

    async def coerce_fields(self, field_values: dict[str, str]) -> dict[str, Any]:
        """Coerce rendered values for their fields, dropping the ones that do not fit.

        Args:
            field_values: Field GID to rendered value

        Returns:
            Field GID to API value, for the fields that passed
        """
        custom_fields: dict[str, Any] = {}
        for field_gid, raw_value in field_values.items():
            if field_gid == MARK_COMPLETE_KEY:
                continue
            try:
                schema = await self.get_field_schema(field_gid)
            except ExternalServiceError as e:
                log.error("field_schema_unavailable", field_gid=field_gid, error=str(e))
                continue

            value = coerce_field_value(schema, raw_value)
            if value is None:
                continue

            custom_fields[field_gid] = value
            log.info(
                "field_value_coerced",
                field_gid=field_gid,
                field_type=schema.type,
                raw_value=raw_value,
                value=value,
            )
        return custom_fields

    # ------------------------------------------------------------------
    # Existing tasks
    # ------------------------------------------------------------------

    @async_retry()
    async def fetch_task_details(self, task_gid: str) -> TaskDetails:
        """Fetch name and permalink of a task."""
        log.debug("fetch_task_details", task_gid=task_gid)
        task = await self._request(
            "GET", f"/tasks/{task_gid}", params={"opt_fields": "gid,name,permalink_url"}
        )
        return TaskDetails(
            gid=task["gid"],
            name=task.get("name") or "",
            url=task.get("permalink_url") or task_url_fallback(task["gid"]),
        )

    async def fetch_all_task_details(self, task_gids: list[str]) -> list[TaskDetails]:
        """Fetch details for several tasks, substituting placeholders on failure."""
        log.info("fetch_all_task_details", count=len(task_gids))

        results = []
        for task_gid in task_gids:
            try:
                results.append(await self.fetch_task_details(task_gid))
            except ExternalServiceError as e:
                log.warning("task_details_unavailable", task_gid=task_gid, error=str(e))
                results.append(TaskDetails.placeholder(task_gid))
        return results

    @async_retry()
    async def _put_task(self, task_gid: str, data: dict[str, Any]) -> Any:
        return await self._request("PUT", f"/tasks/{task_gid}", json={"data": data})

    async def update_task_fields(self, task_gid: str, field_updates: dict[str, str]) -> None:
        """Apply field updates (and completion) to one task in a single PUT.

        Fields whose value does not fit are skipped; when nothing is left to
        change no request is sent.

        Raises:
            ExternalServiceError: If the update request fails
        """
        mark_complete = MARK_COMPLETE_KEY in field_updates
        custom_fields = await self.coerce_fields(field_updates)

        if not custom_fields and not mark_complete:
            log.warning("no_valid_fields_to_update", task_gid=task_gid)
            return

        data: dict[str, Any] = {"custom_fields": custom_fields}
        if mark_complete:
            data["completed"] = True

        if self.dry_run:
            log.info(
                "dry_run_update_task",
                task_gid=task_gid,
                custom_fields=custom_fields,
                mark_complete=mark_complete,
            )
            return

        log.info("update_task", task_gid=task_gid, fields=len(custom_fields), mark_complete=mark_complete)
        await self._put_task(task_gid, data)
        log.info("task_updated", task_gid=task_gid)

    async def update_all_tasks(
        self,
        task_gids: list[str],
        task_details: list[TaskDetails],
        field_updates: dict[str, str],
    ) -> list[TaskResult]:
        """Update every task with the same field updates.

        Args:
            task_gids: Tasks to update
            task_details: Details parallel to ``task_gids``; may be shorter
                (or empty) when details were not fetched
            field_updates: Field GID to rendered value

        Returns:
            One result per task, in order
        """
        results = []
        for index, task_gid in enumerate(task_gids):
            details = task_details[index] if index < len(task_details) else TaskDetails.placeholder(task_gid)
            try:
                if field_updates:
                    await self.update_task_fields(task_gid, field_updates)
            except ExternalServiceError as e:
                log.error("task_update_failed", task_gid=task_gid, error=str(e))
                results.append(TaskResult(gid=details.gid, name=details.name, url=details.url, success=False))
            else:
                results.append(TaskResult(gid=details.gid, name=details.name, url=details.url, success=True))
        return results

    # ------------------------------------------------------------------
    # Task creation
    # ------------------------------------------------------------------

    @async_retry()
    async def _post_task(self, data: dict[str, Any]) -> Any:
        return await self._request("POST", "/tasks", json={"data": data})

    async def build_task_data(self, spec: CreateTaskSpec) -> dict[str, Any]:
        """Request body for creating a task from a resolved spec."""
        action = spec.action
        data: dict[str, Any] = {
            "name": spec.title,
            "projects": [action.project],
            "workspace": action.workspace,
        }
        if action.section:
            data["memberships"] = [{"project": action.project, "section": action.section}]
        if spec.notes:
            data["notes"] = spec.notes
        if spec.html_notes:
            data["html_notes"] = spec.html_notes
        if spec.assignee:
            data["assignee"] = spec.assignee
        if spec.initial_fields:
            custom_fields = await self.coerce_fields(spec.initial_fields)
            if custom_fields:
                data["custom_fields"] = custom_fields
        return data

    async def create_task(self, spec: CreateTaskSpec, pr: PullRequestMetadata) -> TaskResult:
        """Create a task, drop the token owner as follower and attach the PR.

        Removing the follower and attaching the PR are best effort; only the
        creation itself can fail the task.

        Raises:
            ExternalServiceError: If the task cannot be created
        """
        log.debug("create_task", title=spec.title, project=spec.action.project)
        data = await self.build_task_data(spec)

        if self.dry_run:
            task_gid = f"dry-run-{int(time.time() * 1000)}"
            task_url = f"https://app.asana.com/0/{spec.action.project}/{task_gid}"
            log.info(
                "dry_run_create_task",
                title=spec.title,
                project=spec.action.project,
                workspace=spec.action.workspace,
                section=spec.action.section,
                notes=_preview(spec.notes) if spec.notes else None,
                html_notes=_preview(spec.html_notes) if spec.html_notes else None,
                assignee=spec.assignee,
                initial_fields=spec.initial_fields,
            )
        else:
            task = await self._post_task(data)
            task_gid = task["gid"]
            task_url = task.get("permalink_url") or f"https://app.asana.com/0/{spec.action.project}/{task_gid}"
            log.info("task_created", task_gid=task_gid, url=task_url)

        # The token owner is added as follower automatically
        try:
            await self.remove_task_followers(task_gid, ["me"])
        except ExternalServiceError as e:
            log.warning("remove_follower_failed", task_gid=task_gid, error=str(e))

        if self.integration_secret:
            await self.attach_pr_via_integration(task_url, pr)

        return TaskResult(gid=task_gid, name=spec.title, url=task_url, success=True)

    async def create_all_tasks(self, specs: list[CreateTaskSpec], pr: PullRequestMetadata) -> list[TaskResult]:
        """Create a task per spec; a failed creation yields an unsuccessful result."""
        results = []
        for spec in specs:
            try:
                results.append(await self.create_task(spec, pr))
            except ExternalServiceError as e:
                log.error("task_creation_failed", title=spec.title, error=str(e))
                results.append(TaskResult(gid="", name=spec.title, url="", success=False))
        return results

    @async_retry()
    async def _remove_follower(self, task_gid: str, follower: str) -> Any:
        return await self._request(
            "POST", f"/tasks/{task_gid}/removeFollowers", json={"data": {"followers": [follower]}}
        )

    async def remove_task_followers(self, task_gid: str, followers: list[str]) -> None:
        """Remove followers (user GIDs, emails or ``me``) from a task."""
        if self.dry_run:
            log.info("dry_run_remove_followers", task_gid=task_gid, followers=followers)
            return

        for follower in followers:
            log.debug("remove_follower", task_gid=task_gid, follower=follower)
            await self._remove_follower(task_gid, follower)

    # ------------------------------------------------------------------
    # PR attachment
    # ------------------------------------------------------------------

    @async_retry()
    async def _list_attachments(self, task_gid: str) -> list[dict[str, Any]]:
        return await self._request(
            "GET",
            "/attachments",
            params={"parent": task_gid, "opt_fields": "gid,name,resource_subtype,view_url"},
        )

    async def check_pr_already_linked(self, task_gid: str, pr_url: str) -> bool:
        """Whether a task already has an attachment for the PR.

        Returns False when attachments cannot be listed, so that attaching
        is attempted rather than silently skipped.
        """
        try:
            attachments = await self._list_attachments(task_gid)
        except ExternalServiceError as e:
            log.warning("attachment_check_failed", task_gid=task_gid, error=str(e))
            return False

        linked = any(
            attachment.get("view_url") == pr_url or pr_url in (attachment.get("name") or "")
            for attachment in attachments or []
        )
        log.debug("attachment_check", task_gid=task_gid, pr_url=pr_url, linked=linked)
        return linked

    async def attach_pr_via_integration(self, task_url: str, pr: PullRequestMetadata) -> bool:
        """Attach a PR to a task through the Asana GitHub integration widget.

        Never raises: the task work is already done when this runs, so a
        failed attachment is only reported.

        Returns:
            True if the integration accepted the attachment
        """
        if not self.integration_secret:
            log.warning("integration_secret_missing", task_url=task_url)
            return False

        if self.dry_run:
            log.info("dry_run_attach_pr", task_url=task_url, pr_number=pr.number, pr_url=pr.url)
            return False

        payload = {
            "pullRequestDescription": f"{pr.body or ''}\n\n---\n\nAsana task: [{task_url}]({task_url})",
            "pullRequestName": pr.title,
            "pullRequestNumber": pr.number,
            "pullRequestURL": pr.url,
        }

        if self._integration_pool is None:
            self._integration_pool = HTTPConnectionPool(
                base_url=INTEGRATION_BASE_URL,
                timeout=INTEGRATION_TIMEOUT,
                headers={
                    "Authorization": f"Bearer {self.integration_secret}",
                    "Content-Type": "application/json",
                },
            )

        try:
            response = await self._integration_pool.post(INTEGRATION_WIDGET_PATH, json=payload)
        except httpx.TimeoutException:
            log.warning("integration_attachment_timeout", task_url=task_url, timeout=INTEGRATION_TIMEOUT)
            return False
        except httpx.HTTPError as e:
            log.warning("integration_attachment_failed", task_url=task_url, error=str(e))
            return False

        if response.is_error:
            log.warning(
                "integration_attachment_failed",
                task_url=task_url,
                status_code=response.status_code,
                response=response.text,
            )
            return False

        log.info("pr_attached_via_integration", task_url=task_url, pr_url=pr.url)
        return True

    async def attach_pr_to_existing_tasks(self, task_results: list[TaskResult], pr: PullRequestMetadata) -> None:
        """Attach the PR to every successfully updated task not yet linked to it."""
        log.info("attach_pr_to_existing_tasks", count=len(task_results), pr_url=pr.url)

        for result in task_results:
            if not result.success:
                continue

            if not self.dry_run and await self.check_pr_already_linked(result.gid, pr.url):
                log.info("pr_already_linked", task_gid=result.gid)
                continue

            await self.attach_pr_via_integration(result.url, pr)
