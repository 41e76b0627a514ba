"""
Retry policy shared by the HTTP adapters.
"""

from combinators import RetryPolicy

from tracklease.errors import LeaseError


def is_transient(error: LeaseError) -> bool:
    return error.transient


def transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def backoff(times: int = 3, initial: float = 0.2, max_delay: float = 5.0) -> RetryPolicy[LeaseError]:
    """Exponential backoff with jitter, only for transient errors."""
    return RetryPolicy.exponential_jitter(
        times,
        initial=initial,
        max_delay=max(max_delay, initial),
        retry_on=is_transient,
    )


__all__ = ("is_transient", "transient_status", "backoff")
