"""
Reorder Engine Security Utilities

Bearer-token handling for the reorder API: Auth0 (JWKS, RS256) when
configured, local HS256 tokens in local/dev/test.
"""

import time
from datetime import datetime, timedelta

import httpx
import structlog
from jose import JWTError, jwt

from core.config import get_settings

logger = structlog.get_logger()

_JWKS_CACHE: dict[str, tuple[float, dict]] = {}


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Issue a local HS256 token (dev tooling and tests)."""
    settings = get_settings()
    claims = data.copy()
    claims["exp"] = datetime.utcnow() + (expires_delta or timedelta(hours=24))
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _is_local_env() -> bool:
    return get_settings().app_env.strip().lower() in {"", "local", "dev", "development", "test"}


def _auth0_issuer() -> str:
    settings = get_settings()
    if settings.auth0_issuer:
        return settings.auth0_issuer.rstrip("/")
    domain = settings.auth0_domain.strip()
    if not domain:
        return ""
    if domain.startswith(("http://", "https://")):
        return domain.rstrip("/")
    return f"https://{domain}"


def _get_jwks(issuer: str) -> dict | None:
    ttl = max(60, int(get_settings().auth0_jwks_cache_ttl_seconds))
    now = time.time()
    cached = _JWKS_CACHE.get(issuer)
    if cached and cached[0] > now:
        return cached[1]

    try:
        with httpx.Client(timeout=5.0) as client:
            resp = client.get(f"{issuer}/.well-known/jwks.json")
            resp.raise_for_status()
        payload = resp.json()
    except (httpx.HTTPError, ValueError):
        logger.warning("auth.jwks_fetch_failed", issuer=issuer, exc_info=True)
        return None

    if isinstance(payload, dict) and isinstance(payload.get("keys"), list):
        _JWKS_CACHE[issuer] = (now + ttl, payload)
        return payload
    return None


def _decode_auth0_token(token: str) -> dict | None:
    issuer = _auth0_issuer()
    audience = get_settings().auth0_audience
    if not issuer or not audience:
        return None

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except JWTError:
        return None
    if not kid:
        return None

    jwks = _get_jwks(issuer)
    key = next((k for k in (jwks or {}).get("keys", []) if k.get("kid") == kid), None)
    if key is None:
        return None

    try:
        return jwt.decode(token, key, algorithms=["RS256"], audience=audience, issuer=issuer)
    except JWTError:
        return None


def decode_access_token(token: str) -> dict | None:
    """Claims of a valid token, or None."""
    settings = get_settings()

    claims = _decode_auth0_token(token)
    if claims is not None:
        return claims

    # Outside local envs an Auth0-configured deployment accepts Auth0 tokens only.
    if settings.auth0_domain and settings.auth0_audience and not _is_local_env():
        return None

    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
