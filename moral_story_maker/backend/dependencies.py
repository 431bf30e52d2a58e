"""Dependency injection for FastAPI."""

from functools import lru_cache
from typing import Any

from fastapi import Depends, Request

from moral_story_maker.backend.storage.objects import LocalObjectStore, SupabaseObjectStore
from moral_story_maker.common.auth import parse_bearer
from moral_story_maker.common.config import (
    SUPABASE_SERVICE_ROLE_KEY,
    USE_LOCAL_DB,
    supabase_enabled,
)
from moral_story_maker.common.errors import AuthenticationRequired, Forbidden


@lru_cache
def get_database() -> Any:
    """LocalDatabase in local mode, SupabaseDatabase otherwise (cached)."""
    if USE_LOCAL_DB or not supabase_enabled():
        from moral_story_maker.common.db import LocalDatabase

        return LocalDatabase()
    from moral_story_maker.backend.storage.supabase_db import SupabaseDatabase

    return SupabaseDatabase()


@lru_cache
def get_object_store() -> Any:
    """Supabase Storage when configured, else the local media directory (cached)."""
    if supabase_enabled() and not USE_LOCAL_DB:
        return SupabaseObjectStore()
    return LocalObjectStore()


async def require_user_id(request: Request, db: Any = Depends(get_database)) -> str:
    token = parse_bearer(request.headers.get("authorization", ""))
    if not token:
        raise AuthenticationRequired("No authorization header")
    user_id = await db.get_user_id(token)
    if not user_id:
        raise AuthenticationRequired("Invalid token")
    return user_id


async def require_admin(
    user_id: str = Depends(require_user_id), db: Any = Depends(get_database)
) -> str:
    if not await db.is_admin(user_id):
        raise Forbidden("Admin access required.")
    return user_id


async def require_muxer_caller(request: Request, db: Any = Depends(get_database)) -> str:
    """The service key when one is configured, otherwise a signed-in user."""
    if SUPABASE_SERVICE_ROLE_KEY:
        token = parse_bearer(request.headers.get("authorization", ""))
        if token != SUPABASE_SERVICE_ROLE_KEY:
            raise AuthenticationRequired("Muxing requires the service key.")
        return "service"
    return await require_user_id(request, db)
