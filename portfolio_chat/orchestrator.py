
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from .agents import AnswerGenerator
from .context_assembler import ContextAssembler
from .context_store import SessionStore
from .models import ConversationMessage, RetrievedPassage, utcnow
from .notifier import InquiryNotifier
from .persister import ConversationPersister
from .query_rewriter import QueryRewriter
from .retriever import Retriever

logger = logging.getLogger(__name__)

STREAM_ERROR = "The assistant ran into a problem while answering. Please try again."


class ChatOrchestrator:
    """
    One chat turn, end to end:

    history -> persist user turn -> rewrite -> retrieve -> assemble context
    -> stream answer -> persist assistant turn -> optional inquiry notification

    Retrieval-side failures degrade (raw query, empty context); a failure
    while streaming the answer ends the stream with an error event and the
    partial answer is not saved.
    """

    def __init__(
        self,
        store: SessionStore,
        rewriter: QueryRewriter,
        retriever: Retriever,
        assembler: ContextAssembler,
        generator: AnswerGenerator,
        notifier: Optional[InquiryNotifier] = None,
        history_limit: int = 10,
    ) -> None:
        self.store = store
        self.persister = ConversationPersister(store)
        self.rewriter = rewriter
        self.retriever = retriever
        self.assembler = assembler
        self.generator = generator
        self.notifier = notifier
        self.history_limit = history_limit

    async def open_session(self, candidate_id: Optional[str] = None) -> str:
        try:
            session = await self.store.get_or_create_session(candidate_id)
        except Exception:  # noqa: BLE001
            logger.exception("session store unavailable, continuing without persistence")
            return candidate_id or str(uuid.uuid4())
        return session.session_id

    async def stream_reply(self, user_msg: str, session_id: Optional[str]) -> AsyncIterator[Dict[str, Any]]:
        history = await self._load_history(session_id)
        await self.persister.record_user_turn(session_id, user_msg)

        query = await self.rewriter.rewrite(user_msg)
        passages = await self._retrieve(query)
        context = self.assembler.assemble(passages)
        used = [p.id for p, _ in self.assembler.select(passages)]
        logger.info(
            "session %s: %d/%d passages above %.2f",
            session_id, len(used), len(passages), self.assembler.relevance_floor,
        )

        answer = None
        try:
            # prompt building (history token counting) can raise as well
            answer = self.generator.stream(context, history, user_msg)
            async for piece in answer:
                yield {"content": piece}
        except Exception:  # noqa: BLE001
            logger.exception("answer stream failed for session %s", session_id)
            yield {"error": STREAM_ERROR}
            return
        finally:
            if answer is not None:
                await answer.aclose()

        reply = answer.text
        await self.persister.record_assistant_turn(
            session_id,
            reply,
            metadata={"query": query, "passages": used},
        )

        if answer.inquiry_requested and self.notifier is not None:
            transcript = self._transcript(history, session_id, user_msg, reply)
            notice = await self.notifier.notify_from_conversation(transcript, session_id)
            if notice:
                yield {"content": "\n\n" + notice}
                await self.persister.record_assistant_turn(
                    session_id, notice, metadata={"notification": "failed"}
                )

    async def _load_history(self, session_id: Optional[str]) -> List[ConversationMessage]:
        if not session_id or self.history_limit <= 0:
            return []
        try:
            return await self.store.load_recent_messages(session_id, self.history_limit)
        except Exception:  # noqa: BLE001
            logger.exception("could not load history for session %s", session_id)
            return []

    async def _retrieve(self, query: str) -> List[RetrievedPassage]:
        try:
            return await self.retriever.retrieve(query)
        except Exception:  # noqa: BLE001
            logger.exception("retrieval failed, answering without context")
            return []

    @staticmethod
    def _transcript(
        history: List[ConversationMessage],
        session_id: Optional[str],
        user_msg: str,
        reply: str,
    ) -> List[ConversationMessage]:
        sid = session_id or "-"
        now = utcnow()
        return [
            *history,
            ConversationMessage(id="pending-user", session_id=sid, role="user", content=user_msg, created_at=now),
            ConversationMessage(id="pending-assistant", session_id=sid, role="assistant", content=reply, created_at=now),
        ]
