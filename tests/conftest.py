"""
Pytest fixtures for ragchat tests.
"""

from typing import Any, Dict, List, Sequence
from unittest.mock import AsyncMock

import pytest

from ragchat.session.cache import SessionCache
from ragchat.session.models import Message, Session
from ragchat.shared.exceptions import PersistenceError, RetrievalError
from ragchat.shared.llm import Completion
from ragchat.shared.tokens import Tokenizer
from ragchat.store.base import ChatStore


class WordTokenizer(Tokenizer):
    """One token per space-separated word. Gives exact, predictable counts."""

    def __init__(self):
        self.encoding_name = "words"
        self._vocab: Dict[str, int] = {}
        self._words: List[str] = []

    def encode(self, text: str) -> List[int]:
        if not text:
            return []
        ids = []
        for word in text.split(" "):
            if word not in self._vocab:
                self._vocab[word] = len(self._words)
                self._words.append(word)
            ids.append(self._vocab[word])
        return ids

    def decode(self, tokens: Sequence[int]) -> str:
        return " ".join(self._words[t] for t in tokens)


class InMemoryChatStore(ChatStore):
    """ChatStore test double keeping documents in dicts."""

    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.messages: List[Dict[str, Any]] = []
        self.documents: Dict[str, List[Dict[str, Any]]] = {}
        self.message_fetches = 0
        self.fail_writes = False
        self.fail_search = False

    def _check_write(self):
        if self.fail_writes:
            raise PersistenceError("store unavailable")

    async def get_sessions(self) -> List[Session]:
        return [Session.from_document(doc) for doc in self.sessions.values()]

    async def get_session_messages(self, session_id: str) -> List[Message]:
        self.message_fetches += 1
        return [
            Message.from_document(doc)
            for doc in self.messages
            if doc["SessionId"] == session_id
        ]

    async def insert_session(self, session: Session):
        self._check_write()
        self.sessions[session.session_id] = session.to_document()

    async def update_session(self, session: Session):
        self._check_write()
        if session.session_id not in self.sessions:
            raise PersistenceError(f"Session {session.session_id} missing from store")
        self.sessions[session.session_id] = session.to_document()

    async def upsert_session_batch(self, session, prompt_message, completion_message):
        self._check_write()
        if session.session_id not in self.sessions:
            raise PersistenceError(f"Session {session.session_id} missing from store")
        self.sessions[session.session_id] = session.to_document()
        self.messages.extend([prompt_message.to_document(), completion_message.to_document()])

    async def delete_session_and_messages(self, session_id: str):
        self._check_write()
        self.sessions.pop(session_id, None)
        self.messages = [m for m in self.messages if m["SessionId"] != session_id]

    async def vector_search(self, collection_name: str, vector) -> List[Dict[str, Any]]:
        if self.fail_search:
            raise RetrievalError("search unavailable")
        return list(self.documents.get(collection_name, []))


@pytest.fixture
def word_tokenizer():
    return WordTokenizer()


@pytest.fixture
def store():
    return InMemoryChatStore()


@pytest.fixture
def cache(store):
    return SessionCache(store)


@pytest.fixture
def mock_embedding():
    """Mock embedding client returning a fixed vector and token count."""
    mock = AsyncMock()
    mock.embed.return_value = ([0.1] * 1536, 7)
    return mock


@pytest.fixture
def mock_llm():
    """Mock LLM client with canned completion and summary."""
    mock = AsyncMock()
    mock.complete.return_value = Completion(
        text="The Touring-1000 is our best touring bike.",
        prompt_tokens=120,
        completion_tokens=11,
    )
    mock.summarize.return_value = "Touring bikes"
    return mock
