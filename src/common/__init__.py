"""Common utilities for the workflow engine service."""

__all__ = [
    "settings",
    "setup_otel",
    "setup_logging",
    "setup_metrics",
    "get_session",
]
