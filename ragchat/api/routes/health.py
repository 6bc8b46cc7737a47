"""
Health check endpoint.
"""

import time
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ragchat.api.dependencies import get_session_cache, get_store
from ragchat.session.cache import SessionCache
from ragchat.store.base import ChatStore

router = APIRouter(tags=["health"])

# Track startup time for uptime
_start_time: Optional[float] = None


def set_start_time(t: float):
    """Set application start time."""
    global _start_time
    _start_time = t


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    store_connected: bool
    cached_sessions: int
    uptime_seconds: float


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: ChatStore = Depends(get_store),
    cache: SessionCache = Depends(get_session_cache),
):
    """Service health: store reachability, cache size, uptime."""
    store_connected = await store.health_check()

    uptime_seconds = 0.0
    if _start_time:
        uptime_seconds = round(time.time() - _start_time, 2)

    return HealthResponse(
        status="healthy" if store_connected else "degraded",
        store_connected=store_connected,
        cached_sessions=len(cache),
        uptime_seconds=uptime_seconds,
    )
