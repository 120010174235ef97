"""
Identity resolution.

Turns the verified claims of a Supabase access token into a Subject. The
admin flag is computed here, once per request, by asking an admin allow-list
collaborator; rule predicates only ever read the result. Nothing in this
module reads the resource store or the policy registry.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any, Protocol

from cachetools import TTLCache  # type: ignore[import-untyped]

from rowguard.config import Settings
from rowguard.services.policy.exceptions import IdentityError
from rowguard.services.policy.types import ANON_ROLE, AUTHENTICATED_ROLE, SERVICE_ROLE, Subject

logger = logging.getLogger(__name__)

# Verified JWT claims (sub, email, role, app_metadata, ...) or None when unauthenticated
AuthContext = Mapping[str, Any] | None


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ─────────────────────────────────────────────────────────────────────────────
# Admin allow-lists
# ─────────────────────────────────────────────────────────────────────────────


class AdminAllowList(Protocol):
    async def is_admin(self, subject_id: str | None, email: str | None) -> bool: ...


class EmailAdminAllowList:
    """Static allow-list of admin emails (the ADMIN_EMAILS setting)."""

    def __init__(self, emails: Iterable[str]):
        self._emails = frozenset(normalize_email(e) for e in emails if e and e.strip())

    @property
    def emails(self) -> frozenset[str]:
        return self._emails

    async def is_admin(self, subject_id: str | None, email: str | None) -> bool:
        return bool(email) and normalize_email(email) in self._emails  # type: ignore[arg-type]


class DatabaseAdminAllowList:
    """
    Allow-list backed by the ``admin_emails`` table.

    Lookups are cached briefly per email so a burst of requests from one
    admin costs one query.
    """

    def __init__(self, session_maker: Callable[[], Any], *, ttl_seconds: int = 60):
        self._session_maker = session_maker
        self._cache: TTLCache[str, bool] = TTLCache(maxsize=1024, ttl=ttl_seconds)

    async def is_admin(self, subject_id: str | None, email: str | None) -> bool:
        if not email:
            return False
        key = normalize_email(email)
        if key in self._cache:
            return self._cache[key]

        from rowguard.domain.admin_email_operations import admin_email_ops

        async with self._session_maker() as session:
            listed = await admin_email_ops.is_listed(session, key)
        self._cache[key] = listed
        return listed

    def invalidate(self) -> None:
        self._cache.clear()


class CompositeAdminAllowList:
    """Admin if any member list says so."""

    def __init__(self, *allow_lists: AdminAllowList):
        self.allow_lists = allow_lists

    async def is_admin(self, subject_id: str | None, email: str | None) -> bool:
        for allow_list in self.allow_lists:
            if await allow_list.is_admin(subject_id, email):
                return True
        return False


def build_admin_allow_list(
    settings: Settings, session_maker: Callable[[], Any] | None = None
) -> AdminAllowList:
    """Pick the allow-list configured by ``admin_allowlist_source``."""
    static = EmailAdminAllowList(settings.admin_emails)
    if settings.admin_allowlist_source == "settings":
        return static

    if session_maker is None:
        from rowguard.core.database import async_session_maker

        session_maker = async_session_maker
    database = DatabaseAdminAllowList(session_maker)
    if settings.admin_allowlist_source == "database":
        return database
    return CompositeAdminAllowList(static, database)


# ─────────────────────────────────────────────────────────────────────────────
# Resolver
# ─────────────────────────────────────────────────────────────────────────────


def _optional_str(claims: Mapping[str, Any], key: str) -> str | None:
    value = claims.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise IdentityError(f"Claim '{key}' must be a string, got {type(value).__name__}")
    return value.strip() or None


class IdentityResolver:
    """Builds a Subject from verified token claims."""

    def __init__(self, allow_list: AdminAllowList):
        self.allow_list = allow_list

    async def resolve(self, context: AuthContext) -> Subject:
        """
        Resolve claims into a Subject.

        ``None`` means no credentials and yields the anonymous subject.
        Raises IdentityError when the claims are malformed.
        """
        if context is None:
            return Subject.anonymous()
        if not isinstance(context, Mapping):
            raise IdentityError("Auth context must be a mapping of claims")

        role = _optional_str(context, "role")
        subject_id = _optional_str(context, "sub")

        if subject_id is None:
            if role == SERVICE_ROLE:
                return Subject.service()
            if role in (None, ANON_ROLE):
                return Subject.anonymous()
            raise IdentityError("Token has no subject id")

        email = _optional_str(context, "email")
        if email is not None:
            email = normalize_email(email)

        app_metadata = context.get("app_metadata") or {}
        if not isinstance(app_metadata, Mapping):
            raise IdentityError("Claim 'app_metadata' must be an object")
        extra_roles = app_metadata.get("roles") or []
        if not isinstance(extra_roles, list | tuple) or not all(
            isinstance(r, str) for r in extra_roles
        ):
            raise IdentityError("Claim 'app_metadata.roles' must be a list of strings")

        roles = frozenset({role or AUTHENTICATED_ROLE, *extra_roles})
        attributes = MappingProxyType(
            {key: value for key, value in app_metadata.items() if key != "roles"}
        )

        return Subject(
            id=subject_id,
            email=email,
            roles=roles,
            is_admin=await self._check_admin(subject_id, email),
            attributes=attributes,
        )

    async def resolve_or_anonymous(self, context: AuthContext) -> Subject:
        """Resolve, falling back to the anonymous subject when the claims are malformed."""
        try:
            return await self.resolve(context)
        except IdentityError as e:
            logger.warning(f"[identity] Falling back to anonymous: {e}")
            return Subject.anonymous()

    async def _check_admin(self, subject_id: str, email: str | None) -> bool:
        try:
            return await self.allow_list.is_admin(subject_id, email)
        except Exception as e:
            logger.exception(f"[identity] Admin allow-list lookup failed for {subject_id}: {e}")
            return False
