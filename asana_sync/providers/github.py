"""GitHub client for PR comments and PR body updates."""

from collections.abc import Callable
from typing import Any

import structlog

from asana_sync.exceptions import ExternalServiceError
from asana_sync.providers.base import RestClient
from asana_sync.rendering.engine import evaluate_template
from asana_sync.utils.connection_pool import HTTPConnectionPool
from asana_sync.utils.retry import async_retry

log = structlog.get_logger(__name__)

GITHUB_API_URL = "https://api.github.com"
COMMENTS_PER_PAGE = 100

MISSING_URL_PROMPT = (
    "Please add the Asana task URL to this PR description so the workflow can update "
    "the Asana custom fields.\n\nExample:\n- https://app.asana.com/0/<project_id>/<task_id>"
)
MISSING_URL_PROMPT_MARKER = "Please add the Asana task URL to this PR description"


class GitHubClient(RestClient):
    """Client for the GitHub REST API, scoped to one repository.

    Comment failures never raise: a missing comment must not turn a
    successful Asana update into a failed workflow run.
    """

    service = "GitHub"

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        api_url: str = GITHUB_API_URL,
        dry_run: bool = False,
        pool: HTTPConnectionPool | None = None,
    ):
        """Initialize the client.

        Args:
            token: GitHub token
            owner: Repository owner
            repo: Repository name
            api_url: REST API base URL (differs on GitHub Enterprise Server)
            dry_run: Log writes instead of performing them
            pool: Connection pool (created on connect)
        """
        token = token.strip() if token else token
        super().__init__(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            pool=pool,
        )
        self.owner = owner
        self.repo = repo
        self.dry_run = dry_run

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    @async_retry()
    async def list_comment_bodies(self, number: int) -> list[str]:
        """Bodies of the comments on a PR or issue, oldest first."""
        response = await self._send(
            "GET",
            f"{self.repo_path}/issues/{number}/comments",
            params={"per_page": COMMENTS_PER_PAGE},
        )
        return [comment.get("body") or "" for comment in response.json()]

    async def fetch_comments(self, number: int) -> str:
        """All comment bodies joined by newlines, empty on failure."""
        try:
            bodies = await self.list_comment_bodies(number)
        except ExternalServiceError as e:
            log.warning("fetch_comments_failed", number=number, error=str(e))
            return ""

        log.info("comments_fetched", number=number, count=len(bodies))
        return "\n".join(bodies)

    @async_retry()
    async def _create_comment(self, number: int, body: str) -> Any:
        response = await self._send("POST", f"{self.repo_path}/issues/{number}/comments", json={"body": body})
        return response.json()

    async def post_comment(self, number: int, body: str) -> bool:
        """Post a comment.

        Returns:
            True if the comment was posted
        """
        if self.dry_run:
            log.info("dry_run_post_comment", number=number, body=body)
            return False

        try:
            await self._create_comment(number, body)
        except ExternalServiceError as e:
            log.error("post_comment_failed", number=number, error=str(e))
            return False

        log.info("comment_posted", number=number)
        return True

    async def post_comment_templates(
        self,
        templates: list[str],
        number: int,
        comment_context: dict[str, Any],
        evaluate: Callable[[str, dict[str, Any]], str] = evaluate_template,
    ) -> int:
        """Render and post comment templates, skipping empties and duplicates.

        A template that renders to exactly ``""`` is skipped, as is one whose
        text already exists as a comment (including comments posted earlier
        in the same call).

        Returns:
            Number of comments posted
        """
        if not templates:
            return 0

        try:
            existing = {body for body in await self.list_comment_bodies(number) if body}
        except ExternalServiceError as e:
            log.warning("comment_dedup_fetch_failed", number=number, error=str(e))
            existing = set()

        posted = 0
        for index, template in enumerate(templates, start=1):
            body = evaluate(template, comment_context)

            if body == "":
                log.info("comment_skipped_empty", index=index, total=len(templates))
                continue
            if body in existing:
                log.info("comment_skipped_duplicate", index=index, total=len(templates))
                continue

            if await self.post_comment(number, body):
                posted += 1
            existing.add(body)

        return posted

    @async_retry()
    async def get_pull_request(self, number: int) -> dict[str, Any]:
        response = await self._send("GET", f"{self.repo_path}/pulls/{number}")
        return response.json()

    @async_retry()
    async def _update_pull_request_body(self, number: int, body: str) -> Any:
        response = await self._send("PATCH", f"{self.repo_path}/pulls/{number}", json={"body": body})
        return response.json()

    async def append_asana_link(self, number: int, task_name: str, task_url: str) -> bool:
        """Append a link to a created task to the PR description.

        The current body is re-read first so that edits made since the event
        fired are kept, and a link already present is not added twice.

        Returns:
            True if the description was updated
        """
        if self.dry_run:
            log.info("dry_run_append_asana_link", number=number, task_name=task_name, task_url=task_url)
            return False

        try:
            pull_request = await self.get_pull_request(number)
            body = pull_request.get("body") or ""
            if task_url in body:
                log.info("asana_link_already_present", number=number, task_url=task_url)
                return False

            link = f"Asana task: [{task_name}]({task_url})"
            new_body = f"{body.rstrip()}\n\n{link}" if body.strip() else link
            await self._update_pull_request_body(number, new_body)
        except ExternalServiceError as e:
            log.error("append_asana_link_failed", number=number, error=str(e))
            return False

        log.info("asana_link_appended", number=number, task_url=task_url)
        return True

    async def post_missing_asana_url_prompt(self, number: int) -> bool:
        """Ask for an Asana task link, unless that was already asked.

        Returns:
            True if the prompt was posted
        """
        try:
            bodies = await self.list_comment_bodies(number)
        except ExternalServiceError as e:
            log.warning("missing_url_prompt_failed", number=number, error=str(e))
            return False

        if any(MISSING_URL_PROMPT_MARKER in body for body in bodies):
            log.info("missing_url_prompt_already_posted", number=number)
            return False

        return await self.post_comment(number, MISSING_URL_PROMPT)
