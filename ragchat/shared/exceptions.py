"""
Exception hierarchy for ragchat.
"""

from typing import Optional


class RagChatError(Exception):
    """Base exception for all ragchat errors."""
    pass


class InvalidRequestError(RagChatError):
    """Raised for a missing session id or malformed input. No side effects."""
    pass


class InvalidRangeError(RagChatError):
    """Raised when decoding a token slice outside the encoded sequence."""
    pass


class EmbeddingError(RagChatError):
    """Raised when the embedding service is unavailable or rejects input."""
    pass


class RetrievalError(RagChatError):
    """Raised when vector search fails."""
    pass


class GenerationError(RagChatError):
    """Raised on completion quota/limit violations or service unavailability."""
    pass


class BudgetExhaustedError(RagChatError):
    """
    Raised when documents and conversation cannot be trimmed enough to fit
    the completion budget. The user prompt is never trimmed, so the caller
    has to shorten it or raise the budget.
    """

    def __init__(
        self,
        doc_tokens: int,
        conv_tokens: int,
        prompt_tokens: int,
        buffer_tokens: int,
        budget: int
    ):
        self.doc_tokens = doc_tokens
        self.conv_tokens = conv_tokens
        self.prompt_tokens = prompt_tokens
        self.buffer_tokens = buffer_tokens
        self.budget = budget
        super().__init__(
            f"Cannot fit {prompt_tokens} prompt tokens + {buffer_tokens} buffer "
            f"into a budget of {budget} (documents={doc_tokens}, conversation={conv_tokens})"
        )


class CacheInconsistencyError(RagChatError):
    """Raised when a session id is absent from (or duplicated in) the session cache."""

    def __init__(self, session_id: Optional[str], operation: str, detail: str = "not in cache"):
        self.session_id = session_id
        self.operation = operation
        super().__init__(f"{operation}: session {session_id!r} {detail}")


class PersistenceError(RagChatError):
    """
    Raised when a storage read or write fails.

    ``cache_ahead_of_store`` is True when the session cache was already
    updated before the failed write, so a caller can retry the store write
    alone.
    """

    def __init__(self, message: str, cache_ahead_of_store: bool = False):
        self.cache_ahead_of_store = cache_ahead_of_store
        super().__init__(message)
