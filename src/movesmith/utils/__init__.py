"""Utility exports for caching and concurrency helpers."""

from movesmith.utils.cache import TTLCache
from movesmith.utils.concurrency import (
    CancellationToken,
    Settled,
    gather_settled,
    run_with_timeout,
)

__all__ = [
    "CancellationToken",
    "Settled",
    "TTLCache",
    "gather_settled",
    "run_with_timeout",
]
