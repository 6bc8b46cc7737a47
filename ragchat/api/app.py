"""
ragchat FastAPI application.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ragchat.api.routes import health, sessions
from ragchat.core.pipeline import ChatPipeline
from ragchat.session.cache import SessionCache
from ragchat.shared.config import settings
from ragchat.shared.exceptions import (
    BudgetExhaustedError,
    CacheInconsistencyError,
    EmbeddingError,
    GenerationError,
    InvalidRequestError,
    PersistenceError,
    RagChatError,
    RetrievalError,
)
from ragchat.shared.logging import get_logger
from ragchat.store.base import ChatStore

logger = get_logger(__name__)

_STATUS_BY_ERROR = [
    (InvalidRequestError, 400),
    (CacheInconsistencyError, 404),
    (BudgetExhaustedError, 413),
    (EmbeddingError, 502),
    (RetrievalError, 502),
    (GenerationError, 502),
    (PersistenceError, 503),
]


def status_for(error: RagChatError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


async def _ragchat_error_handler(request: Request, exc: RagChatError) -> JSONResponse:
    body = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, PersistenceError):
        body["cache_ahead_of_store"] = exc.cache_ahead_of_store
    return JSONResponse(status_code=status_for(exc), content=body)


def create_app(
    store: Optional[ChatStore] = None,
    embedder=None,
    llm=None
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Components not passed in are built from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting ragchat API")

        app_store = store
        if app_store is None:
            from ragchat.store.mongo import MongoChatStore

            app_store = MongoChatStore()
            for collection in settings.mongo.vector_collections:
                try:
                    await app_store.ensure_vector_index(collection)
                except PersistenceError as e:
                    logger.warning("Vector index check failed (MongoDB may be unavailable): %s", e)

        app_embedder = embedder
        if app_embedder is None:
            from ragchat.shared.embeddings import EmbeddingClient
            app_embedder = EmbeddingClient()

        app_llm = llm
        if app_llm is None:
            from ragchat.shared.llm import LLMClient
            app_llm = LLMClient()

        cache = SessionCache(app_store)
        app.state.store = app_store
        app.state.session_cache = cache
        app.state.pipeline = ChatPipeline(cache, app_store, app_embedder, app_llm)

        health.set_start_time(time.time())

        logger.info("ragchat API ready")
        yield

        logger.info("Shutting down ragchat API")
        await app_store.close()
        logger.info("ragchat API stopped")

    app = FastAPI(
        title="ragchat",
        description="Retrieval-augmented chat over vectorized MongoDB collections",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RagChatError, _ragchat_error_handler)

    app.include_router(health.router)
    app.include_router(sessions.router)

    @app.get("/")
    async def root():
        return {"service": "ragchat", "status": "running"}

    return app


def main():
    """CLI entry point for uvicorn."""
    import uvicorn

    uvicorn.run(
        "ragchat.api.app:create_app",
        factory=True,
        host=settings.api.host,
        port=settings.api.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
