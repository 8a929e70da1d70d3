"""
Reorder Engine API Dependencies

Dependency injection for DB sessions, auth, the KV job store, and the
analysis orchestrator.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings, get_settings
from db.kv_store import KeyValueStore, RedisKeyValueStore
from db.session import AsyncSessionLocal
from inventory.analysis import AnalysisOrchestrator, Dispatcher

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

_kv_store: RedisKeyValueStore | None = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return AsyncSessionLocal


def get_app_settings() -> Settings:
    return get_settings()


def get_kv_store() -> KeyValueStore:
    """Process-wide Redis-backed job/forecast store."""
    global _kv_store
    if _kv_store is None:
        _kv_store = RedisKeyValueStore.from_url(settings.redis_url)
    return _kv_store


async def close_kv_store() -> None:
    global _kv_store
    if _kv_store is not None:
        await _kv_store.close()
        _kv_store = None


def get_dispatcher() -> Dispatcher:
    from workers.celery_app import dispatch_analysis

    return dispatch_analysis


def get_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    kv: KeyValueStore = Depends(get_kv_store),
    app_settings: Settings = Depends(get_app_settings),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(session_factory, kv, app_settings, dispatcher=dispatcher)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {"sub": "dev-user", "email": "dev@reorder.local"}

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload
