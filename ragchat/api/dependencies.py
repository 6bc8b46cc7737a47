"""
FastAPI dependency injection for ragchat services.
"""

from fastapi import Request

from ragchat.core.pipeline import ChatPipeline
from ragchat.session.cache import SessionCache
from ragchat.store.base import ChatStore


def get_pipeline(request: Request) -> ChatPipeline:
    """Get ChatPipeline singleton from lifespan state."""
    return request.app.state.pipeline


def get_session_cache(request: Request) -> SessionCache:
    """Get SessionCache singleton from lifespan state."""
    return request.app.state.session_cache


def get_store(request: Request) -> ChatStore:
    """Get ChatStore singleton from lifespan state."""
    return request.app.state.store
