"""
Request-scoped subject cache using contextvars.

The resolved Subject (including its pre-computed admin flag) is stored here
for the duration of one request, so the admin allow-list is consulted at most
once per request. Middleware resets the cache at the start of every request,
so a Subject never outlives the request that resolved it.

The cache is task-local (like thread-local for async), so parallel
requests don't see each other's subjects.
"""

from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rowguard.services.policy.types import Subject

# Note: default=None is safer than default={} (mutable defaults)
_request_subjects: ContextVar[dict[str, "Subject"] | None] = ContextVar(
    "request_subjects", default=None
)


def _subjects() -> dict[str, "Subject"]:
    cache = _request_subjects.get()
    if cache is None:
        cache = {}
        _request_subjects.set(cache)
    return cache


def get_cached_subject(token_key: str) -> "Subject | None":
    """Return the subject already resolved for this token in the current request."""
    return _subjects().get(token_key)


def cache_subject(token_key: str, subject: "Subject") -> None:
    """Remember the subject resolved for this token until the request ends."""
    _subjects()[token_key] = subject


def clear_request_cache() -> None:
    """Reset the cache. Called by middleware at the start of each request."""
    _request_subjects.set({})
