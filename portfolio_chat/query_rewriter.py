
import logging
import re

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from .response_parser import message_text

logger = logging.getLogger(__name__)


REWRITE_PROMPT = """\
You turn visitor questions about a professional's portfolio into short
keyword queries for a semantic search over their profile (skills, work
experience, projects, education, and written content).

Reply with the keywords only: no sentences, no quotes, no explanations.

Examples:
Q: What do you know?
A: skills experience projects education background
Q: Have you ever worked with React on a real product?
A: React frontend projects professional experience
Q: Where did you study?
A: education degree university institution
Q: Are you open to freelance work?
A: availability freelance contract consulting services
"""


class QueryRewriter:
    """
    Rewrites a free-text question into retrieval-friendly keywords.

    Rewriting only improves recall; if the model fails or returns nothing
    usable the original question is used as the search query.
    """

    def __init__(self, llm: BaseChatModel) -> None:
        # expected to be configured with a low temperature and ~50 max tokens
        self._llm = llm

    async def rewrite(self, question: str) -> str:
        messages = [SystemMessage(content=REWRITE_PROMPT), HumanMessage(content=question)]
        try:
            reply = await self._llm.ainvoke(messages)
        except Exception as exc:  # noqa: BLE001
            logger.warning("query rewrite failed, using raw question: %s", exc)
            return question

        keywords = _clean(message_text(reply))
        if not keywords:
            logger.info("query rewrite returned nothing, using raw question")
            return question
        logger.debug("rewrote %r -> %r", question, keywords)
        return keywords


def _clean(text: str) -> str:
    text = text.strip()
    if text[:2].upper() == "A:":
        text = text[2:]
    text = text.strip().strip("\"'`").strip()
    return re.sub(r"\s+", " ", text)
