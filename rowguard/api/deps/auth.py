"""Token validation and subject resolution dependencies.

This module provides:
- JWT validation against Supabase JWKS
- Subject resolution (anonymous on any identity failure)
- Admin gate for the policy admin endpoints
"""

import hashlib
import logging
from typing import Annotated, Any

import httpx
from cachetools import TTLCache  # type: ignore[import-untyped]
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from jose.backends import ECKey

from rowguard.config import settings
from rowguard.core.exceptions import ForbiddenError
from rowguard.core.request_cache import cache_subject, get_cached_subject
from rowguard.services.identity import IdentityResolver, build_admin_allow_list
from rowguard.services.policy.exceptions import IdentityError
from rowguard.services.policy.types import Subject

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# JWKS with TTL to handle key rotation
_JWKS_KEY = "jwks"
_jwks_cache: TTLCache[str, dict[str, Any]] = TTLCache(
    maxsize=1, ttl=settings.jwks_cache_ttl_seconds
)


async def _fetch_jwks() -> dict[str, Any]:
    """Fetch JWKS from Supabase and update the cache."""
    async with httpx.AsyncClient() as client:
        response = await client.get(settings.supabase_jwks_url)
        response.raise_for_status()
        jwks = response.json()
    _jwks_cache[_JWKS_KEY] = jwks
    return jwks


async def get_jwks(force_refresh: bool = False) -> dict[str, Any]:
    """Fetch and cache JWKS from Supabase."""
    if not force_refresh and _JWKS_KEY in _jwks_cache:
        return _jwks_cache[_JWKS_KEY]
    return await _fetch_jwks()


def get_signing_key(jwks: dict[str, Any], token: str) -> ECKey:
    """Get the signing key from JWKS that matches the token's kid."""
    unverified_header = jwt.get_unverified_header(token)
    kid = unverified_header.get("kid")

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return ECKey(key, algorithm="ES256")

    raise ValueError("Unable to find matching key in JWKS")


async def decode_token(token: str) -> dict[str, Any]:
    """
    Verify a Supabase access token and return its claims.

    Raises IdentityError if the token cannot be verified.
    """
    if not settings.jwks_enabled:
        raise IdentityError("Token verification is not configured (SUPABASE_JWKS_URL)")

    try:
        jwks = await get_jwks()
        signing_key = get_signing_key(jwks, token)
        return jwt.decode(
            token, signing_key, algorithms=["ES256"], audience=settings.jwt_audience
        )
    except (JWTError, ValueError) as first_error:
        # Key rotation may have occurred - force a JWKS refresh and retry once
        try:
            logger.info("JWT validation failed with cached JWKS, forcing refresh")
            jwks = await get_jwks(force_refresh=True)
            signing_key = get_signing_key(jwks, token)
            return jwt.decode(
                token, signing_key, algorithms=["ES256"], audience=settings.jwt_audience
            )
        except (JWTError, ValueError, httpx.HTTPError) as e:
            raise IdentityError(f"Could not validate credentials: {e}") from first_error
    except httpx.HTTPError as e:
        raise IdentityError(f"Could not fetch JWKS: {e}") from e


_identity_resolver: IdentityResolver | None = None


def get_identity_resolver() -> IdentityResolver:
    """Process-wide resolver, built on first use from the configured allow-list."""
    global _identity_resolver
    if _identity_resolver is None:
        _identity_resolver = IdentityResolver(build_admin_allow_list(settings))
    return _identity_resolver


async def get_current_subject(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Subject:
    """
    Resolve the caller into a Subject.

    Never fails: missing, invalid or unverifiable credentials all resolve to
    the anonymous subject, which policies then deny as appropriate. The
    subject is cached for the rest of the request.
    """
    if not credentials:
        return Subject.anonymous()

    token = credentials.credentials
    token_key = hashlib.sha256(token.encode()).hexdigest()
    cached = get_cached_subject(token_key)
    if cached is not None:
        return cached

    try:
        claims = await decode_token(token)
    except IdentityError as e:
        logger.warning(f"[identity] Treating request as anonymous: {e}")
        subject = Subject.anonymous()
    else:
        subject = await resolver.resolve_or_anonymous(claims)

    cache_subject(token_key, subject)
    return subject


CurrentSubject = Annotated[Subject, Depends(get_current_subject)]


async def require_admin(subject: CurrentSubject) -> Subject:
    """Allow only subjects resolved as admins."""
    if not subject.is_admin:
        raise ForbiddenError("Admin access required")
    return subject


AdminSubject = Annotated[Subject, Depends(require_admin)]
