"""
Chat session and message models.

Both document types live in one collection and are told apart by their
``Type`` field. Field names are stored in PascalCase.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator
from pydantic.alias_generators import to_pascal


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Participant(str, Enum):
    """Message sender role."""
    USER = "User"
    ASSISTANT = "Assistant"


class MessageState(str, Enum):
    """Whether a cached session's messages have been read from the store."""
    NOT_LOADED = "not_loaded"
    LOADED_EMPTY = "loaded_empty"
    LOADED = "loaded"


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_pascal,
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the document store."""
        return self.model_dump(by_alias=True, exclude={"messages"})

    @classmethod
    def from_document(cls, doc: Dict[str, Any]):
        return cls.model_validate(doc)


class Message(_Document):
    """A single chat message. Immutable once created."""
    id: str = Field(default_factory=_new_id)
    type: str = "Message"
    session_id: str
    timestamp: datetime = Field(default_factory=_utcnow, alias="TimeStamp")
    sender: Participant
    tokens: int = 0
    # Only set for assistant messages: tokens spent on the request that produced it
    prompt_tokens: Optional[int] = None
    text: str

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # The driver hands back naive UTC datetimes
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Session(_Document):
    """A conversation thread and its running token total."""
    id: str = Field(default_factory=_new_id)
    type: str = "Session"
    session_id: str = Field(default_factory=_new_id)
    tokens_used: int = 0
    name: str = "New Chat"
    messages: List[Message] = Field(default_factory=list, exclude=True)

    _messages_loaded: bool = PrivateAttr(default=False)

    @property
    def message_state(self) -> MessageState:
        if not self._messages_loaded:
            return MessageState.NOT_LOADED
        if not self.messages:
            return MessageState.LOADED_EMPTY
        return MessageState.LOADED

    def load_messages(self, messages: List[Message]):
        """Replace the cached message list and mark it loaded."""
        self.messages = list(messages)
        self._messages_loaded = True

    def add_message(self, message: Message):
        self.messages.append(message)
