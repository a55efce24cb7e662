"""Clients for the services the action writes to.

Key Components:
    - AsanaClient: Field updates, task creation, PR attachment
    - GitHubClient: PR comments and PR description links
"""

from asana_sync.providers.asana import AsanaClient
from asana_sync.providers.github import GitHubClient

__all__ = [
    "AsanaClient",
    "GitHubClient",
]
