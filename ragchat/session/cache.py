"""
In-memory cache of chat sessions kept in step with the persistent store.

Each session id has its own asyncio lock; inserting, removing or refreshing
sessions goes through a separate structural lock. Writes pass through a gate
that a refresh closes, so a refresh never reads the store while a write is
still in flight. Cache mutations happen before the matching store write, so
a failed write leaves the cache ahead of the store and is reported as such.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from ragchat.session.models import Message, MessageState, Session
from ragchat.shared.exceptions import (
    CacheInconsistencyError,
    InvalidRequestError,
    PersistenceError,
)
from ragchat.shared.logging import get_logger, log_with_context
from ragchat.store.base import ChatStore

logger = get_logger(__name__)


def _require_id(session_id: Optional[str], action: str) -> str:
    if session_id is None or not str(session_id).strip():
        raise InvalidRequestError(f"{action}: session id is required")
    return session_id


class SessionCache:
    """Process-lifetime session cache with per-session locking."""

    def __init__(self, store: ChatStore):
        self.store = store
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._structure_lock = asyncio.Lock()
        self._refresh_lock = asyncio.Lock()
        # Open while no refresh is running; idle while no write is in flight
        self._writes_open = asyncio.Event()
        self._writes_open.set()
        self._writes_idle = asyncio.Event()
        self._writes_idle.set()
        self._writers = 0

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def _lookup(self, session_id: str, action: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            log_with_context(
                logger, logging.ERROR, "Session not found in cache",
                session_id=session_id, action=action
            )
            raise CacheInconsistencyError(session_id, action)
        return session

    @asynccontextmanager
    async def _writing(self):
        """Register an in-flight write; waits while a refresh is running."""
        while not self._writes_open.is_set():
            await self._writes_open.wait()
        self._writers += 1
        self._writes_idle.clear()
        try:
            yield
        finally:
            # No awaits here so a cancelled writer always deregisters
            self._writers -= 1
            if not self._writers:
                self._writes_idle.set()

    def _write_done(self, _task: asyncio.Future):
        self._writers -= 1
        if not self._writers:
            self._writes_idle.set()

    async def _persist(self, write) -> None:
        """
        Run a store write shielded from cancellation of the caller.

        The write counts as in flight until it actually finishes, even when
        the caller was cancelled and stopped waiting for it.
        """
        self._writers += 1
        self._writes_idle.clear()
        task = asyncio.ensure_future(write)
        task.add_done_callback(self._write_done)
        await asyncio.shield(task)

    @asynccontextmanager
    async def _refreshing(self):
        """Close the write gate and wait for in-flight writes to finish."""
        async with self._refresh_lock:
            self._writes_open.clear()
            try:
                await self._writes_idle.wait()
                yield
            finally:
                self._writes_open.set()

    def get_session(self, session_id: Optional[str]) -> Session:
        """Return the cached session record."""
        session_id = _require_id(session_id, "get_session")
        return self._lookup(session_id, "get_session")

    async def list_sessions(self) -> List[Session]:
        """
        Reload all sessions from the store, replacing the cache wholesale.

        Messages are not read; every session comes back NOT_LOADED. Waits for
        in-flight writes first and holds new ones back until the cache is
        replaced, so no persisted update is read back stale.

        Raises:
            CacheInconsistencyError: If the store returns the same id twice
        """
        async with self._refreshing(), self._structure_lock:
            sessions = await self.store.get_sessions()

            refreshed: Dict[str, Session] = {}
            for session in sessions:
                if session.session_id in refreshed:
                    log_with_context(
                        logger, logging.ERROR, "Duplicate session id in store",
                        session_id=session.session_id, action="list_sessions"
                    )
                    raise CacheInconsistencyError(
                        session.session_id, "list_sessions", "appears more than once in the store"
                    )
                refreshed[session.session_id] = session

            self._sessions = refreshed
            self._locks = {sid: self._locks.get(sid) or asyncio.Lock() for sid in refreshed}

        logger.debug(f"Session cache refreshed with {len(refreshed)} sessions")
        return list(refreshed.values())

    async def get_messages(self, session_id: Optional[str]) -> List[Message]:
        """
        Return a session's messages, reading them from the store once.

        Args:
            session_id: Chat session identifier

        Returns:
            Messages in insertion order (a copy of the cached list)
        """
        session_id = _require_id(session_id, "get_messages")
        self._lookup(session_id, "get_messages")

        async with self._lock_for(session_id):
            session = await self._hydrate(session_id, "get_messages")
            return list(session.messages)

    async def _hydrate(self, session_id: str, action: str) -> Session:
        """Load messages for a NOT_LOADED session. Caller holds the session lock."""
        session = self._lookup(session_id, action)
        if session.message_state == MessageState.NOT_LOADED:
            messages = await self.store.get_session_messages(session_id)
            # The session may have been dropped by a refresh while we waited
            session = self._lookup(session_id, action)
            if session.message_state == MessageState.NOT_LOADED:
                session.load_messages(messages)
        return session

    async def create_session(self) -> Session:
        """Create a session, cache it, then persist it."""
        session = Session()
        session.load_messages([])

        async with self._writing():
            async with self._structure_lock:
                self._sessions[session.session_id] = session
                self._locks[session.session_id] = asyncio.Lock()

            try:
                await self._persist(self.store.insert_session(session))
            except PersistenceError as e:
                e.cache_ahead_of_store = True
                log_with_context(
                    logger, logging.ERROR, f"Session created in cache but not persisted: {e}",
                    session_id=session.session_id, action="create_session"
                )
                raise

        log_with_context(
            logger, logging.INFO, "Session created",
            session_id=session.session_id, action="create_session"
        )
        return session

    async def rename_session(self, session_id: Optional[str], name: str) -> Session:
        """Rename a session in the cache, then in the store."""
        session_id = _require_id(session_id, "rename_session")
        if not name or not name.strip():
            raise InvalidRequestError("rename_session: name must not be empty")
        self._lookup(session_id, "rename_session")

        async with self._writing(), self._lock_for(session_id):
            session = self._lookup(session_id, "rename_session")
            session.name = name.strip()
            try:
                await self._persist(self.store.update_session(session))
            except PersistenceError as e:
                e.cache_ahead_of_store = True
                log_with_context(
                    logger, logging.ERROR, f"Rename not persisted: {e}",
                    session_id=session_id, action="rename_session"
                )
                raise
        return session

    async def delete_session(self, session_id: Optional[str]):
        """Remove a session from the cache, then delete it and its messages from the store."""
        session_id = _require_id(session_id, "delete_session")

        async with self._writing():
            async with self._structure_lock:
                self._lookup(session_id, "delete_session")
                lock = self._lock_for(session_id)

            async with lock:
                async with self._structure_lock:
                    if self._sessions.pop(session_id, None) is None:
                        raise CacheInconsistencyError(session_id, "delete_session")
                    self._locks.pop(session_id, None)

                try:
                    await self._persist(self.store.delete_session_and_messages(session_id))
                except PersistenceError as e:
                    e.cache_ahead_of_store = True
                    log_with_context(
                        logger, logging.ERROR, f"Delete not persisted: {e}",
                        session_id=session_id, action="delete_session"
                    )
                    raise

        log_with_context(
            logger, logging.INFO, "Session deleted",
            session_id=session_id, action="delete_session"
        )

    async def append_turn(
        self,
        session_id: Optional[str],
        prompt_message: Message,
        completion_message: Message
    ) -> Session:
        """
        Add a prompt/completion pair and persist it with the session in one batch.

        The token counter grows by the prompt's tokens plus the completion's
        prompt and completion tokens. The cache is updated in one step with
        no await in between, and the session lock is held until the store
        write has finished, so readers of this session never see the new
        messages before the write was attempted.

        Raises:
            CacheInconsistencyError: If the session is not cached
            PersistenceError: With ``cache_ahead_of_store=True`` if the write failed
        """
        session_id = _require_id(session_id, "append_turn")
        for message in (prompt_message, completion_message):
            if message.session_id != session_id:
                raise InvalidRequestError(
                    f"append_turn: message belongs to {message.session_id}, not {session_id}"
                )
        self._lookup(session_id, "append_turn")

        async with self._writing(), self._lock_for(session_id):
            session = await self._hydrate(session_id, "append_turn")

            added_tokens = (
                prompt_message.tokens
                + (completion_message.prompt_tokens or 0)
                + completion_message.tokens
            )
            session.add_message(prompt_message)
            session.add_message(completion_message)
            session.tokens_used += added_tokens

            try:
                await self._persist(
                    self.store.upsert_session_batch(session, prompt_message, completion_message)
                )
            except PersistenceError as e:
                e.cache_ahead_of_store = True
                log_with_context(
                    logger, logging.ERROR,
                    f"Turn cached but not persisted, cache is ahead of store: {e}",
                    session_id=session_id, action="append_turn"
                )
                raise

        log_with_context(
            logger, logging.DEBUG, f"Turn appended (+{added_tokens} tokens)",
            session_id=session_id, action="append_turn"
        )
        return session
