
import logging
from typing import Any, List, Optional, Protocol

from upstash_vector import AsyncIndex

from .models import RetrievedPassage

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    """Similarity search over pre-embedded profile records."""

    async def query(self, text: str, top_k: int) -> List[RetrievedPassage]: ...


class UpstashVectorIndex:
    """
    Upstash Vector index with server-side embeddings.

    The raw text is sent as ``data`` and embedded by the index itself, so no
    embedding model is needed here.
    """

    def __init__(self, index: AsyncIndex, namespace: str = "") -> None:
        self._index = index
        self._namespace = namespace

    @classmethod
    def from_credentials(cls, url: str, token: str) -> "UpstashVectorIndex":
        return cls(AsyncIndex(url=url, token=token))

    async def query(self, text: str, top_k: int) -> List[RetrievedPassage]:
        results = await self._index.query(
            data=text,
            top_k=top_k,
            include_metadata=True,
            include_data=True,
            namespace=self._namespace,
        )
        return [_to_passage(r) for r in results]


def _to_passage(result: Any) -> RetrievedPassage:
    data = getattr(result, "data", None)
    score = float(getattr(result, "score", 0.0) or 0.0)
    return RetrievedPassage(
        id=str(result.id),
        score=min(max(score, 0.0), 1.0),
        text=data if isinstance(data, str) and data else None,
        metadata=dict(getattr(result, "metadata", None) or {}),
    )


class Retriever:
    """
    Wraps a single similarity query. No relevance filtering happens here:
    passages with no text but with metadata are kept for the assembler.
    """

    def __init__(self, index: VectorIndex, top_k: int = 5) -> None:
        self._index = index
        self._top_k = top_k

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> List[RetrievedPassage]:
        k = top_k or self._top_k
        passages = await self._index.query(query, k)
        passages = sorted(passages, key=lambda p: p.score, reverse=True)
        logger.debug(
            "retrieved %d passages for %r (scores=%s)",
            len(passages),
            query,
            [round(p.score, 3) for p in passages],
        )
        return passages
