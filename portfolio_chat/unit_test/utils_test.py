from portfolio_chat.models import ConversationMessage
from portfolio_chat.utils import prune_history


def word_count(text):
    return len(text.split())


def msgs(*contents):
    return [
        ConversationMessage(id=str(i), session_id="s", role="user", content=c)
        for i, c in enumerate(contents)
    ]


def test_prune_keeps_newest_messages_that_fit():
    history = msgs("a b c d", "e f", "g h i")

    kept = prune_history(history, max_tokens=5, counter=word_count)

    assert [m.content for m in kept] == ["e f", "g h i"]


def test_prune_stops_at_first_overflow_to_stay_contiguous():
    history = msgs("x", "a b c d e f", "y")

    kept = prune_history(history, max_tokens=3, counter=word_count)

    assert [m.content for m in kept] == ["y"]


def test_prune_everything_fits():
    history = msgs("one", "two")
    assert prune_history(history, max_tokens=100, counter=word_count) == history


def test_prune_empty():
    assert prune_history([], max_tokens=10, counter=word_count) == []
