"""Shared utilities: logging, retry, HTTP pooling and task link parsing."""
