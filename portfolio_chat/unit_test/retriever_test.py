import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

from portfolio_chat.models import RetrievedPassage
from portfolio_chat.retriever import Retriever, UpstashVectorIndex


@pytest.mark.asyncio
async def test_upstash_results_are_mapped_to_passages():
    mock_index = Mock()
    mock_index.query = AsyncMock(
        return_value=[
            SimpleNamespace(id="exp-1", score=0.91, data="Lead developer at Acme", metadata={"type": "experience"}),
            SimpleNamespace(id="skill-7", score=0.72, data=None, metadata={"type": "skill", "name": "React"}),
        ]
    )
    index = UpstashVectorIndex(mock_index)

    passages = await index.query("react experience", 5)

    mock_index.query.assert_awaited_once_with(
        data="react experience",
        top_k=5,
        include_metadata=True,
        include_data=True,
        namespace="",
    )
    assert passages == [
        RetrievedPassage(id="exp-1", score=0.91, text="Lead developer at Acme", metadata={"type": "experience"}),
        RetrievedPassage(id="skill-7", score=0.72, text=None, metadata={"type": "skill", "name": "React"}),
    ]


@pytest.mark.asyncio
async def test_retrieve_orders_by_descending_score_and_keeps_metadata_only_hits():
    index = Mock()
    index.query = AsyncMock(
        return_value=[
            RetrievedPassage(id="low", score=0.4, text="low"),
            RetrievedPassage(id="meta", score=0.7, metadata={"type": "skill", "name": "Go"}),
            RetrievedPassage(id="high", score=0.95, text="high"),
        ]
    )
    retriever = Retriever(index, top_k=5)

    passages = await retriever.retrieve("golang")

    index.query.assert_awaited_once_with("golang", 5)
    assert [p.id for p in passages] == ["high", "meta", "low"]


@pytest.mark.asyncio
async def test_retrieve_accepts_top_k_override():
    index = Mock()
    index.query = AsyncMock(return_value=[])

    await Retriever(index, top_k=5).retrieve("q", top_k=10)

    index.query.assert_awaited_once_with("q", 10)


@pytest.mark.asyncio
async def test_retrieve_propagates_index_errors():
    index = Mock()
    index.query = AsyncMock(side_effect=ConnectionError("index down"))

    with pytest.raises(ConnectionError, match="index down"):
        await Retriever(index).retrieve("q")
