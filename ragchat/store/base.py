"""
Persistent store interface used by the session cache and the chat pipeline.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Sequence

from ragchat.session.models import Message, Session


class ChatStore(ABC):
    """Document store for sessions, messages and vectorized records."""

    @abstractmethod
    async def get_sessions(self) -> List[Session]:
        """Read every session (messages are not included)."""
        pass

    @abstractmethod
    async def get_session_messages(self, session_id: str) -> List[Message]:
        """Read all messages of one session, oldest first."""
        pass

    @abstractmethod
    async def insert_session(self, session: Session):
        pass

    @abstractmethod
    async def update_session(self, session: Session):
        pass

    @abstractmethod
    async def upsert_session_batch(
        self,
        session: Session,
        prompt_message: Message,
        completion_message: Message
    ):
        """
        Replace the session document and insert both messages as one unit.
        Partial application must be rolled back.
        """
        pass

    @abstractmethod
    async def delete_session_and_messages(self, session_id: str):
        pass

    @abstractmethod
    async def vector_search(
        self,
        collection_name: str,
        vector: Sequence[float]
    ) -> List[Dict[str, Any]]:
        """Return the documents most similar to ``vector``, most similar first."""
        pass

    def documents_to_text(self, documents: Iterable[Dict[str, Any]]) -> str:
        """Serialize retrieved documents into one context string."""
        return " ".join(json.dumps(doc, default=str) for doc in documents)

    async def health_check(self) -> bool:
        return True

    async def close(self):
        pass
