"""
Provides common, stateless utility functions used across the application.

This module is a collection of simple, reusable helper functions that do not
fit into a more specific module and have no external dependencies other than
standard Python libraries.
"""
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Returns the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def iso_timestamp() -> str:
    """
    Generates an ISO-8601 timestamp string for the current UTC time.

    Returns:
        A string such as '2025-08-07T13:48:30.123456+00:00'.
    """
    return utc_now().isoformat()
