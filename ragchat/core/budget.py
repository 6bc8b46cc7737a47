"""
Fit retrieved documents, conversation history and the user prompt into one
completion token budget.

The user prompt is never cut. When the total is over budget, documents and
conversation give up tokens in proportion to their sizes; both keep their
most recent (trailing) tokens.
"""

import math
from dataclasses import dataclass
from typing import Optional

from ragchat.shared.config import settings
from ragchat.shared.exceptions import BudgetExhaustedError
from ragchat.shared.logging import get_logger
from ragchat.shared.tokens import Tokenizer, get_tokenizer

logger = get_logger(__name__)


@dataclass
class AllocatedContext:
    """Final strings for one generation call."""
    augmented_content: str
    conversation_and_prompt: str
    trimmed: bool
    doc_tokens: int
    conv_tokens: int
    prompt_tokens: int
    kept_doc_tokens: int
    kept_conv_tokens: int


def round_half_away(value: float) -> int:
    """Round to nearest integer, ties away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def _clamp(value: int, upper: int) -> int:
    return max(0, min(value, upper))


class ContextBudgetAllocator:
    """Trim document and conversation pools to fit a completion budget."""

    def __init__(
        self,
        tokenizer: Optional[Tokenizer] = None,
        max_completion_tokens: Optional[int] = None,
        buffer_tokens: Optional[int] = None
    ):
        self.tokenizer = tokenizer or get_tokenizer()
        self.max_completion_tokens = (
            max_completion_tokens if max_completion_tokens is not None
            else settings.llm.max_completion_tokens
        )
        self.buffer_tokens = (
            buffer_tokens if buffer_tokens is not None
            else settings.llm.buffer_tokens
        )

    def allocate(
        self,
        documents: str,
        conversation: str,
        user_prompt: str
    ) -> AllocatedContext:
        """
        Build the augmented content and the conversation+prompt text.

        Args:
            documents: Retrieved document text
            conversation: Conversation window text
            user_prompt: Current user prompt, passed through untouched

        Returns:
            AllocatedContext with the two final strings

        Raises:
            BudgetExhaustedError: If trimming both pools to zero still does not fit
        """
        doc_vectors = self.tokenizer.encode(documents)
        conv_vectors = self.tokenizer.encode(conversation)
        doc_tokens = len(doc_vectors)
        conv_tokens = len(conv_vectors)
        prompt_tokens = self.tokenizer.count(user_prompt)

        total = doc_tokens + conv_tokens + prompt_tokens + self.buffer_tokens

        if total <= self.max_completion_tokens:
            return AllocatedContext(
                augmented_content=documents,
                conversation_and_prompt=conversation + "\n" + user_prompt,
                trimmed=False,
                doc_tokens=doc_tokens,
                conv_tokens=conv_tokens,
                prompt_tokens=prompt_tokens,
                kept_doc_tokens=doc_tokens,
                kept_conv_tokens=conv_tokens,
            )

        excess = total - self.max_completion_tokens
        trimmable = doc_tokens + conv_tokens

        if excess > trimmable:
            raise BudgetExhaustedError(
                doc_tokens=doc_tokens,
                conv_tokens=conv_tokens,
                prompt_tokens=prompt_tokens,
                buffer_tokens=self.buffer_tokens,
                budget=self.max_completion_tokens,
            )

        doc_share = doc_tokens / trimmable
        new_doc_tokens = _clamp(
            round_half_away(doc_tokens - doc_share * excess),
            min(doc_tokens, trimmable - excess)
        )
        # Conversation takes whatever remains so the pair fits exactly
        new_conv_tokens = _clamp(trimmable - excess - new_doc_tokens, conv_tokens)

        augmented_content = self.tokenizer.tail(doc_vectors, new_doc_tokens)
        trimmed_conversation = self.tokenizer.tail(conv_vectors, new_conv_tokens)

        logger.info(
            "Trimmed context to fit completion budget",
            extra={
                "action": "allocate_context",
                "budget": self.max_completion_tokens,
                "excess": excess,
                "doc_tokens": f"{doc_tokens}->{new_doc_tokens}",
                "conv_tokens": f"{conv_tokens}->{new_conv_tokens}",
            }
        )

        return AllocatedContext(
            augmented_content=augmented_content,
            conversation_and_prompt=trimmed_conversation + "\n" + user_prompt,
            trimmed=True,
            doc_tokens=doc_tokens,
            conv_tokens=conv_tokens,
            prompt_tokens=prompt_tokens,
            kept_doc_tokens=new_doc_tokens,
            kept_conv_tokens=new_conv_tokens,
        )
