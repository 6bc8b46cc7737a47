"""
Conversation window: the most recent messages that fit a token budget.
"""

from typing import List, Sequence

from ragchat.session.models import Message


def select_window(messages: Sequence[Message], max_tokens: int) -> List[Message]:
    """
    Pick the newest messages whose summed token counts stay within budget.

    Walks from newest to oldest and stops at the first message that would
    push the total over ``max_tokens``; that message and everything older
    are dropped whole. Equal timestamps keep insertion order.

    Args:
        messages: Session messages in insertion order
        max_tokens: Conversation token budget

    Returns:
        Selected messages in chronological order
    """
    if not messages or max_tokens <= 0:
        return []

    ordered = sorted(
        enumerate(messages),
        key=lambda pair: (pair[1].timestamp, pair[0]),
        reverse=True
    )

    window = []
    tokens_used = 0

    for _, message in ordered:
        tokens_used += message.tokens
        if tokens_used > max_tokens:
            break
        window.append(message)

    window.reverse()
    return window


def build_conversation_window(messages: Sequence[Message], max_tokens: int) -> str:
    """Join the selected window's texts, oldest first, one per line."""
    return "\n".join(m.text for m in select_window(messages, max_tokens))
