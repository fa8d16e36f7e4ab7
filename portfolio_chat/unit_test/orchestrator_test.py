import pytest
from unittest.mock import AsyncMock, Mock

from portfolio_chat.context_assembler import ContextAssembler
from portfolio_chat.context_store import InMemoryContextStore
from portfolio_chat.models import RetrievedPassage
from portfolio_chat.orchestrator import STREAM_ERROR, ChatOrchestrator
from portfolio_chat.query_rewriter import QueryRewriter


class FakeAnswer:
    """Stands in for AnswerStream: fixed pieces, optional failure after them."""

    def __init__(self, pieces, inquiry=False, fail_with=None):
        self._pieces = pieces
        self._fail_with = fail_with
        self.inquiry_requested = inquiry
        self.completed = False
        self.closed = False
        self._sent = []

    @property
    def text(self):
        return "".join(self._sent).strip()

    async def _run(self):
        for piece in self._pieces:
            self._sent.append(piece)
            yield piece
        if self._fail_with is not None:
            raise self._fail_with
        self.completed = True

    def __aiter__(self):
        self._it = self._run()
        return self._it

    async def aclose(self):
        self.closed = True
        await self._it.aclose()


PASSAGES = [
    RetrievedPassage(id="exp-1", score=0.9, text="Lead Developer at Acme since 2021."),
    RetrievedPassage(id="skill-3", score=0.65, metadata={"type": "skill", "name": "React", "category": "Frontend"}),
    RetrievedPassage(id="misc", score=0.4, text="Enjoys hiking."),
]


def make_orchestrator(store=None, answer=None, passages=PASSAGES, notifier=None, rewrite="keywords"):
    rewriter = Mock()
    rewriter.rewrite = AsyncMock(return_value=rewrite)
    retriever = Mock()
    retriever.retrieve = AsyncMock(return_value=list(passages))
    generator = Mock()
    generator.stream = Mock(return_value=answer or FakeAnswer(["Sam ", "leads ", "at Acme."]))
    return ChatOrchestrator(
        store=store or InMemoryContextStore(),
        rewriter=rewriter,
        retriever=retriever,
        assembler=ContextAssembler(0.6),
        generator=generator,
        notifier=notifier,
        history_limit=10,
    )


async def collect(orch, message, session_id):
    return [event async for event in orch.stream_reply(message, session_id)]


@pytest.mark.asyncio
async def test_turn_streams_content_and_persists_user_then_assistant():
    store = InMemoryContextStore()
    orch = make_orchestrator(store)
    session_id = await orch.open_session()

    events = await collect(orch, "Where does Sam work?", session_id)

    assert events == [{"content": "Sam "}, {"content": "leads "}, {"content": "at Acme."}]
    history = await store.load_messages(session_id)
    assert [(m.role, m.content) for m in history] == [
        ("user", "Where does Sam work?"),
        ("assistant", "Sam leads at Acme."),
    ]
    assert history[1].metadata == {"query": "keywords", "passages": ["exp-1", "skill-3"]}


@pytest.mark.asyncio
async def test_context_contains_only_passages_above_chat_floor():
    orch = make_orchestrator()

    await collect(orch, "Tell me about Sam", None)

    context, history, message = orch.generator.stream.call_args.args
    assert context == "Lead Developer at Acme since 2021.\n\nReact (Frontend)"
    assert history == []
    assert message == "Tell me about Sam"


@pytest.mark.asyncio
async def test_same_input_assembles_same_context():
    orch = make_orchestrator()
    await collect(orch, "Skills?", None)
    first = orch.generator.stream.call_args.args[0]

    orch.generator.stream.return_value = FakeAnswer(["ok"])
    await collect(orch, "Skills?", None)

    assert orch.generator.stream.call_args.args[0] == first


@pytest.mark.asyncio
async def test_rewrite_failure_still_retrieves_with_original_question():
    mock_llm = Mock()
    mock_llm.ainvoke = AsyncMock(side_effect=RuntimeError("LLM error"))
    orch = make_orchestrator()
    orch.rewriter = QueryRewriter(mock_llm)

    events = await collect(orch, "What do you know about Kubernetes?", None)

    orch.retriever.retrieve.assert_awaited_once_with("What do you know about Kubernetes?")
    assert events[-1] == {"content": "at Acme."}


@pytest.mark.asyncio
async def test_retrieval_failure_answers_with_empty_context():
    orch = make_orchestrator()
    orch.retriever.retrieve = AsyncMock(side_effect=ConnectionError("index down"))

    events = await collect(orch, "Projects?", None)

    assert orch.generator.stream.call_args.args[0] == ""
    assert events


@pytest.mark.asyncio
async def test_recent_history_is_passed_to_generator():
    store = InMemoryContextStore()
    orch = make_orchestrator(store)
    session_id = await orch.open_session()
    await store.append_message(session_id, "user", "Hi")
    await store.append_message(session_id, "assistant", "Hello!")

    await collect(orch, "What about React?", session_id)

    history = orch.generator.stream.call_args.args[1]
    assert [m.content for m in history] == ["Hi", "Hello!"]


@pytest.mark.asyncio
async def test_persistence_failure_never_breaks_the_stream():
    store = Mock()
    store.load_recent_messages = AsyncMock(side_effect=ConnectionError("db down"))
    store.append_message = AsyncMock(side_effect=ConnectionError("db down"))
    orch = make_orchestrator(store)

    events = await collect(orch, "Hello", "sess-1")

    assert [e["content"] for e in events] == ["Sam ", "leads ", "at Acme."]
    assert store.append_message.await_count == 2


@pytest.mark.asyncio
async def test_stream_error_ends_with_error_event_and_skips_assistant_turn():
    store = InMemoryContextStore()
    answer = FakeAnswer(["Partial "], fail_with=ConnectionError("upstream dropped"))
    orch = make_orchestrator(store, answer=answer)
    session_id = await orch.open_session()

    events = await collect(orch, "Hello", session_id)

    assert events == [{"content": "Partial "}, {"error": STREAM_ERROR}]
    assert [m.role for m in await store.load_messages(session_id)] == ["user"]


@pytest.mark.asyncio
async def test_cancelled_stream_persists_no_assistant_turn():
    store = InMemoryContextStore()
    answer = FakeAnswer(["one ", "two ", "three"])
    orch = make_orchestrator(store, answer=answer)
    session_id = await orch.open_session()

    stream = orch.stream_reply("Count", session_id)
    assert await stream.__anext__() == {"content": "one "}
    await stream.aclose()

    assert answer.closed
    assert [m.role for m in await store.load_messages(session_id)] == ["user"]


@pytest.mark.asyncio
async def test_inquiry_marker_triggers_notification():
    store = InMemoryContextStore()
    notifier = Mock()
    notifier.notify_from_conversation = AsyncMock(return_value=None)
    answer = FakeAnswer(["I'll let Sam know."], inquiry=True)
    orch = make_orchestrator(store, answer=answer, notifier=notifier)
    session_id = await orch.open_session()

    events = await collect(orch, "I'm Jordan, jordan@example.com, please connect us", session_id)

    assert events == [{"content": "I'll let Sam know."}]
    transcript, sid = notifier.notify_from_conversation.await_args.args
    assert sid == session_id
    assert [(m.role, m.content) for m in transcript] == [
        ("user", "I'm Jordan, jordan@example.com, please connect us"),
        ("assistant", "I'll let Sam know."),
    ]


@pytest.mark.asyncio
async def test_failed_notification_is_reported_in_the_conversation():
    store = InMemoryContextStore()
    notifier = Mock()
    notifier.notify_from_conversation = AsyncMock(return_value="Sorry, please email directly.")
    orch = make_orchestrator(store, answer=FakeAnswer(["Passing it on."], inquiry=True), notifier=notifier)
    session_id = await orch.open_session()

    events = await collect(orch, "Contact me at a@b.io", session_id)

    assert events[-1] == {"content": "\n\nSorry, please email directly."}
    history = await store.load_messages(session_id)
    assert [m.role for m in history] == ["user", "assistant", "assistant"]
    assert history[-1].metadata == {"notification": "failed"}


@pytest.mark.asyncio
async def test_no_notification_without_marker():
    notifier = Mock()
    notifier.notify_from_conversation = AsyncMock()
    orch = make_orchestrator(notifier=notifier)

    await collect(orch, "Hello", None)

    notifier.notify_from_conversation.assert_not_awaited()


@pytest.mark.asyncio
async def test_open_session_falls_back_when_store_is_down():
    store = Mock()
    store.get_or_create_session = AsyncMock(side_effect=ConnectionError("db down"))
    orch = make_orchestrator(store)

    assert await orch.open_session("existing-id") == "existing-id"
    assert await orch.open_session(None)


@pytest.mark.asyncio
async def test_prompt_build_failure_becomes_error_event():
    store = InMemoryContextStore()
    orch = make_orchestrator(store)
    orch.generator.stream = Mock(side_effect=OSError("tiktoken encoding download failed"))
    session_id = await orch.open_session()

    events = await collect(orch, "Hello", session_id)

    assert events == [{"error": STREAM_ERROR}]
    assert [m.role for m in await store.load_messages(session_id)] == ["user"]
