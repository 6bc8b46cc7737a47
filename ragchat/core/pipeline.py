"""
Chat pipeline: one user turn from prompt to persisted completion.

embed -> retrieve -> conversation window -> budget -> generate -> persist
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ragchat.core.budget import ContextBudgetAllocator
from ragchat.session.cache import SessionCache
from ragchat.session.models import Message, Participant
from ragchat.session.window import build_conversation_window
from ragchat.shared.config import settings
from ragchat.shared.exceptions import InvalidRequestError, RagChatError
from ragchat.shared.logging import get_logger, log_with_context, session_scope
from ragchat.store.base import ChatStore

logger = get_logger(__name__)


class TurnState(str, Enum):
    """Stages of a chat turn."""
    IDLE = "Idle"
    EMBEDDING = "Embedding"
    RETRIEVING = "Retrieving"
    WINDOW_BUILDING = "WindowBuilding"
    BUDGET_ALLOCATING = "BudgetAllocating"
    GENERATING = "Generating"
    PERSISTING = "Persisting"
    DONE = "Done"
    FAILED = "Failed"


@dataclass
class TurnResult:
    """Outcome of a chat turn. Use ``unwrap()`` to get the text or raise."""
    session_id: Optional[str]
    state: TurnState
    completion: Optional[str] = None
    error: Optional[RagChatError] = None
    failed_at: Optional[TurnState] = None
    trimmed: bool = False

    @property
    def ok(self) -> bool:
        return self.state == TurnState.DONE

    def unwrap(self) -> str:
        if self.error is not None:
            raise self.error
        return self.completion


class ChatPipeline:
    """Wires the session cache, retrieval and generation together."""

    def __init__(
        self,
        cache: SessionCache,
        store: ChatStore,
        embedder,
        llm,
        allocator: Optional[ContextBudgetAllocator] = None,
        max_conversation_tokens: Optional[int] = None,
        collections: Optional[List[str]] = None
    ):
        self.cache = cache
        self.store = store
        self.embedder = embedder
        self.llm = llm
        self.allocator = allocator or ContextBudgetAllocator()
        self.max_conversation_tokens = (
            max_conversation_tokens if max_conversation_tokens is not None
            else settings.llm.max_conversation_tokens
        )
        self.collections = collections if collections is not None else settings.mongo.vector_collections

    async def get_chat_completion(
        self,
        session_id: Optional[str],
        user_prompt: str,
        collection_name: str
    ) -> TurnResult:
        """
        Answer a user prompt grounded in documents from one collection.

        Args:
            session_id: Chat session identifier
            user_prompt: The user's question, sent to the model untouched
            collection_name: Vectorized collection to search

        Returns:
            TurnResult in state DONE with the completion, or FAILED with the
            error and the state the turn failed in
        """
        with session_scope(session_id):
            return await self._run_turn(session_id, user_prompt, collection_name)

    async def _run_turn(
        self,
        session_id: Optional[str],
        user_prompt: str,
        collection_name: str
    ) -> TurnResult:
        state = TurnState.IDLE
        trimmed = False

        try:
            self._validate(session_id, user_prompt, collection_name)

            state = TurnState.EMBEDDING
            prompt_vector, prompt_tokens = await self.embedder.embed(user_prompt)
            # Created now so its timestamp precedes the completion's
            prompt_message = Message(
                session_id=session_id,
                sender=Participant.USER,
                tokens=prompt_tokens,
                text=user_prompt,
            )

            state = TurnState.RETRIEVING
            documents = await self.store.vector_search(collection_name, prompt_vector)
            retrieved_text = self.store.documents_to_text(documents)

            state = TurnState.WINDOW_BUILDING
            history = await self.cache.get_messages(session_id)
            conversation = build_conversation_window(history, self.max_conversation_tokens)

            state = TurnState.BUDGET_ALLOCATING
            context = self.allocator.allocate(retrieved_text, conversation, user_prompt)
            trimmed = context.trimmed

            state = TurnState.GENERATING
            completion = await self.llm.complete(
                context.augmented_content,
                context.conversation_and_prompt,
                session_id=session_id
            )
            completion_message = Message(
                session_id=session_id,
                sender=Participant.ASSISTANT,
                tokens=completion.completion_tokens,
                prompt_tokens=completion.prompt_tokens,
                text=completion.text,
            )

            state = TurnState.PERSISTING
            await self.cache.append_turn(session_id, prompt_message, completion_message)

        except RagChatError as e:
            log_with_context(
                logger, logging.ERROR,
                f"ChatPipeline.get_chat_completion(): {type(e).__name__}: {e}",
                session_id=session_id, action="get_chat_completion", state=state.value
            )
            return TurnResult(
                session_id=session_id,
                state=TurnState.FAILED,
                error=e,
                failed_at=state,
                trimmed=trimmed,
            )
        except Exception:
            log_with_context(
                logger, logging.ERROR, "Unexpected failure in chat turn",
                session_id=session_id, action="get_chat_completion",
                state=state.value, exc_info=True
            )
            raise

        log_with_context(
            logger, logging.INFO, "Chat turn completed",
            session_id=session_id, action="get_chat_completion",
            documents=len(documents), trimmed=trimmed
        )
        return TurnResult(
            session_id=session_id,
            state=TurnState.DONE,
            completion=completion.text,
            trimmed=trimmed,
        )

    async def summarize_session_name(self, session_id: Optional[str], prompt: str) -> str:
        """
        Ask the LLM for a short label and rename the session with it.

        A blank label leaves the current name in place.
        """
        if not session_id:
            raise InvalidRequestError("summarize_session_name: session id is required")
        session = self.cache.get_session(session_id)

        try:
            name = (await self.llm.summarize(prompt, session_id=session_id) or "").strip()
            if not name:
                log_with_context(
                    logger, logging.WARNING, "Summary came back empty, keeping session name",
                    session_id=session_id, action="summarize_session_name"
                )
                return session.name
            await self.cache.rename_session(session_id, name)
        except RagChatError as e:
            log_with_context(
                logger, logging.ERROR, f"ChatPipeline.summarize_session_name(): {e}",
                session_id=session_id, action="summarize_session_name"
            )
            raise
        return name

    def _validate(self, session_id: Optional[str], user_prompt: str, collection_name: str):
        if not session_id:
            raise InvalidRequestError("session id is required")
        if not user_prompt or not user_prompt.strip():
            raise InvalidRequestError("user prompt must not be empty")
        if collection_name not in self.collections:
            raise InvalidRequestError(
                f"unknown collection {collection_name!r}; expected one of {self.collections}"
            )
        # Fail before any external call if the session is not cached
        self.cache.get_session(session_id)
