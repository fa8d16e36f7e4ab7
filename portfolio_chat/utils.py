from functools import lru_cache
from typing import Callable, List, Sequence

import tiktoken

from .models import ConversationMessage


@lru_cache(maxsize=None)
def _encoding(model: str) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:  # unknown model name
        return tiktoken.get_encoding("cl100k_base")


def num_tokens(text: str, model: str = "gpt-4o-mini") -> int:
    """Rough token estimate for one piece of message content."""
    return len(_encoding(model).encode(text or ""))


def prune_history(
    history: Sequence[ConversationMessage],
    max_tokens: int = 3_000,
    counter: Callable[[str], int] = num_tokens,
) -> List[ConversationMessage]:
    """
    Keep the *most recent* messages whose combined size fits ``max_tokens``.

    Walks newest -> oldest and stops at the first message that would
    overflow, so the kept window is always contiguous and in original order.
    """
    kept: List[ConversationMessage] = []
    running_total = 0
    for msg in reversed(history):
        t = counter(msg.content)
        if running_total + t > max_tokens:
            break
        kept.insert(0, msg)
        running_total += t
    return kept
