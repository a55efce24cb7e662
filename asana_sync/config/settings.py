"""
Action settings loaded from the GitHub Actions environment.

GitHub exposes every ``with:`` input of a workflow step as an ``INPUT_<NAME>``
environment variable and the run metadata as ``GITHUB_*`` variables, so both
map directly onto pydantic-settings classes.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from asana_sync.exceptions import ConfigurationError


class ActionSettings(BaseSettings):
    """Inputs of the action step.

    Example workflow step::

        - uses: org/asana-github-sync@v2
          with:
            asana_token: ${{ secrets.ASANA_TOKEN }}
            github_token: ${{ github.token }}
            rules: |
              rules:
                - when: {event: pull_request, action: opened}
                  then: {update_fields: {"1201": "In Review"}}
    """

    model_config = SettingsConfigDict(
        env_prefix="INPUT_",
        case_sensitive=False,
    )

    asana_token: SecretStr = Field(..., description="Asana personal access token")
    github_token: SecretStr = Field(..., description="GitHub token for reading and commenting on PRs")
    rules: str = Field(..., description="Rules YAML document")
    user_mappings: str | None = Field(
        default=None, description="GitHub login to Asana user GID mapping (YAML or JSON)"
    )
    integration_secret: SecretStr | None = Field(
        default=None, description="Secret for the Asana GitHub integration widget"
    )
    dry_run: bool = Field(default=False, description="Log intended changes without writing")

    @field_validator("user_mappings", "integration_secret", mode="before")
    @classmethod
    def _empty_as_none(cls, value: Any) -> Any:
        # Unset optional inputs arrive as empty strings
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("dry_run", mode="before")
    @classmethod
    def _empty_as_false(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return False
        return value

    @classmethod
    def from_environment(cls) -> ActionSettings:
        """Load settings, converting validation failures to ConfigurationError."""
        try:
            return cls()
        except ValidationError as e:
            missing = [".".join(str(part) for part in error["loc"]) for error in e.errors()]
            raise ConfigurationError(f"Invalid or missing action inputs: {', '.join(missing)}") from e


class GitHubEnvironment(BaseSettings):
    """Run metadata GitHub Actions provides to every step."""

    model_config = SettingsConfigDict(
        env_prefix="GITHUB_",
        case_sensitive=False,
    )

    event_name: str = Field(..., description="Name of the triggering event")
    event_path: Path = Field(..., description="Path to the webhook payload JSON")
    repository: str = Field(..., description="owner/name of the repository")
    api_url: str = Field(default="https://api.github.com", description="GitHub REST API base URL")
    output: Path | None = Field(default=None, description="File step outputs are appended to")

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.repository.split("/", 1)[1]

    @classmethod
    def from_environment(cls) -> GitHubEnvironment:
        try:
            return cls()
        except ValidationError as e:
            raise ConfigurationError(f"Not running inside GitHub Actions: {e}") from e

    def load_payload(self) -> dict[str, Any]:
        """Read the webhook payload of the triggering event.

        Raises:
            ConfigurationError: If the payload file is missing or not JSON
        """
        try:
            with open(self.event_path) as f:
                payload = json.load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read event payload: {self.event_path}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid event payload JSON: {e}") from e

        if not isinstance(payload, dict):
            raise ConfigurationError("Event payload must be a JSON object")
        return payload

    def write_outputs(self, outputs: dict[str, str]) -> None:
        """Append step outputs to ``GITHUB_OUTPUT``."""
        if self.output is None:
            return
        with open(self.output, "a") as f:
            for name, value in outputs.items():
                f.write(f"{name}={value}\n")
