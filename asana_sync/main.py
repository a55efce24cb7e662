"""CLI entry point for the Asana sync action."""

import asyncio
import sys

import click
import structlog

from asana_sync.config.loader import load_rules_config, load_rules_file, parse_rules_yaml, parse_user_mappings
from asana_sync.config.settings import ActionSettings, GitHubEnvironment
from asana_sync.exceptions import ConfigurationError
from asana_sync.orchestrator import SyncOrchestrator, SyncOutcome
from asana_sync.providers.asana import AsanaClient
from asana_sync.providers.fields import FieldSchemaCache
from asana_sync.providers.github import GitHubClient
from asana_sync.rules.models import RulesConfig
from asana_sync.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)


@click.group()
@click.option("--log-level", default="INFO", envvar="ASANA_SYNC_LOG_LEVEL", help="Logging level")
def cli(log_level: str) -> None:
    """asana-sync: Sync GitHub pull requests and issues with Asana tasks."""
    configure_logging(log_level)


@cli.command()
def run() -> None:
    """Sync the triggering GitHub event (run inside GitHub Actions).

    Configuration problems exit with status 1. Failures while syncing are
    logged but never fail the workflow.
    """
    try:
        settings = ActionSettings.from_environment()
        environment = GitHubEnvironment.from_environment()
        integration_secret = (
            settings.integration_secret.get_secret_value() if settings.integration_secret else None
        )
        config = load_rules_config(
            parse_rules_yaml(settings.rules),
            user_mappings=parse_user_mappings(settings.user_mappings),
            integration_secret=integration_secret,
        )
        payload = environment.load_payload()
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    if settings.dry_run:
        log.info("dry_run_enabled")

    try:
        outcome = asyncio.run(_sync(settings, environment, config, payload))
    except ConfigurationError as e:
        # Unsupported event or malformed payload
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        # Never fail the workflow for sync errors
        click.echo(f"Action error: {e}", err=True)
        log.error("action_failed", error=str(e), exc_info=True)
        return

    environment.write_outputs(outcome.outputs())


async def _sync(
    settings: ActionSettings,
    environment: GitHubEnvironment,
    config: RulesConfig,
    payload: dict,
) -> SyncOutcome:
    asana = AsanaClient(
        token=settings.asana_token.get_secret_value(),
        integration_secret=(
            config.integration_secret.get_secret_value() if config.integration_secret else None
        ),
        dry_run=settings.dry_run,
        schema_cache=FieldSchemaCache(),
    )
    github = GitHubClient(
        token=settings.github_token.get_secret_value(),
        owner=environment.owner,
        repo=environment.repo,
        api_url=environment.api_url,
        dry_run=settings.dry_run,
    )

    async with asana, github:
        orchestrator = SyncOrchestrator(config, asana, github)
        return await orchestrator.run(environment.event_name, payload)


@cli.command()
@click.argument("path", type=click.Path(dir_okay=False))
def validate(path: str) -> None:
    """Validate a rules YAML file without contacting any service."""
    try:
        config = load_rules_file(path)
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    click.echo(f"Rules configuration is valid: {len(config.rules)} rule(s)")
    if config.user_mappings:
        click.echo(f"User mappings: {len(config.user_mappings)}")


if __name__ == "__main__":
    cli()
