"""
Token counting and slicing using tiktoken.

Counts are estimates of what the generation service will charge; callers
add a safety buffer before comparing against hard model limits.
"""

from functools import lru_cache
from typing import List, Optional, Sequence
import tiktoken

from ragchat.shared.config import settings
from ragchat.shared.exceptions import InvalidRangeError


class Tokenizer:
    """Wraps a single BPE encoding so all counts in a process agree."""

    def __init__(self, encoding_name: Optional[str] = None):
        self.encoding_name = encoding_name or settings.tokenizer.encoding
        self._encoding = tiktoken.get_encoding(self.encoding_name)

    def encode(self, text: str) -> List[int]:
        """Encode text into token ids. Special-token text is encoded as plain text."""
        return self._encoding.encode(text, disallowed_special=())

    def decode(self, tokens: Sequence[int]) -> str:
        """Decode a full token id sequence back to text."""
        return self._encoding.decode(list(tokens))

    def count(self, text: str) -> int:
        """Count tokens in text."""
        if not text:
            return 0
        return len(self.encode(text))

    def decode_range(self, tokens: Sequence[int], start: int, stop: int) -> str:
        """
        Decode the contiguous slice ``tokens[start:stop]``.

        Args:
            tokens: Token ids produced by ``encode``
            start: First index (inclusive)
            stop: Last index (exclusive)

        Returns:
            Decoded text of the slice

        Raises:
            InvalidRangeError: If the range is negative, reversed or past the end
        """
        if start < 0 or stop < start or stop > len(tokens):
            raise InvalidRangeError(
                f"Token range [{start}:{stop}] invalid for sequence of {len(tokens)}"
            )
        return self.decode(tokens[start:stop])

    def tail(self, tokens: Sequence[int], n: int) -> str:
        """Decode the last n tokens."""
        return self.decode_range(tokens, len(tokens) - n, len(tokens))


@lru_cache(maxsize=None)
def _tokenizer_for(encoding_name: str) -> Tokenizer:
    return Tokenizer(encoding_name)


def get_tokenizer(encoding_name: Optional[str] = None) -> Tokenizer:
    """Get the process-wide tokenizer for an encoding (default from settings)."""
    return _tokenizer_for(encoding_name or settings.tokenizer.encoding)


def count_tokens(text: str) -> int:
    """Count tokens in text with the process-wide tokenizer."""
    return get_tokenizer().count(text)
