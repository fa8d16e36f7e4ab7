# portfolio_chat/agents.py
from __future__ import annotations

import logging
from typing import AsyncIterator, List, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

from .models import ConversationMessage
from .prompt_builder import PromptBuilder
from .response_parser import InquiryMarkerFilter, message_text

logger = logging.getLogger(__name__)


class AnswerStream:
    """
    Live answer for one turn.

    Iterate it to receive visible text increments as the model produces
    them. Once iteration finishes normally, ``text`` holds the whole answer
    (marker removed) and ``inquiry_requested`` tells whether the model asked
    for the visitor to be connected. Closing the stream early closes the
    model stream too and leaves ``completed`` False.
    """

    def __init__(self, llm: BaseChatModel, messages: List[BaseMessage]) -> None:
        self._llm = llm
        self._messages = messages
        self._filter = InquiryMarkerFilter()
        self._parts: list[str] = []
        self._iterator: AsyncIterator[str] | None = None
        self.completed = False

    @property
    def text(self) -> str:
        return "".join(self._parts).strip()

    @property
    def inquiry_requested(self) -> bool:
        return self._filter.triggered

    def __aiter__(self) -> AsyncIterator[str]:
        if self._iterator is None:
            self._iterator = self._pieces()
        return self._iterator

    async def aclose(self) -> None:
        if self._iterator is not None:
            await self._iterator.aclose()  # type: ignore[attr-defined]

    async def _pieces(self) -> AsyncIterator[str]:
        chunks = self._llm.astream(self._messages)
        try:
            async for chunk in chunks:
                visible = self._filter.feed(message_text(chunk))
                if visible:
                    self._parts.append(visible)
                    yield visible
            tail = self._filter.flush()
            if tail:
                self._parts.append(tail)
                yield tail
            self.completed = True
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()


class AnswerGenerator:
    """
    Streams a grounded, persona-constrained answer.

    Responsibilities
    ----------------
    1. Build prompt (context + bounded history + new question) -> PromptBuilder
    2. Open a streaming completion                              -> chat model
    3. Hand back an ``AnswerStream`` the caller pulls increments from
    """

    def __init__(self, llm: BaseChatModel, builder: PromptBuilder) -> None:
        self._llm = llm
        self._builder = builder

    def stream(
        self,
        context: str,
        history: Sequence[ConversationMessage],
        user_msg: str,
    ) -> AnswerStream:
        messages = self._builder.build(user_msg, context, history)
        logger.debug(
            "generating answer: %d prompt messages, context %d chars",
            len(messages),
            len(context),
        )
        return AnswerStream(self._llm, messages)
