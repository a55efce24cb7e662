"""asana-sync: a GitHub Action that keeps Asana tasks in step with pull requests and issues."""

__version__ = "2.0.0"
