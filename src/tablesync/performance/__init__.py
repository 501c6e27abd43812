"""Concurrency control for fetch tasks."""

from .pool import (
    AsyncRateLimiter,
    FetchPool
)

__all__ = [
    "AsyncRateLimiter",
    "FetchPool",
]
