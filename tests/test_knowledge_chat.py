"""Tests for knowledge base question answering."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from app.chains.knowledge_chat import build_context, build_sources, chat_with_knowledge_base
from app.core.llm import LLMError

RESULTS = [
    {
        "id": i,
        "title": f"CRG40{i}0",
        "category": "CRG",
        "content": "Guidance text " * 100,
        "similarity": 0.9 - i / 100,
    }
    for i in range(7)
]


def test_build_context_without_results() -> None:
    assert build_context([]) == "No relevant knowledge base entries were found."


def test_build_context_truncates_and_numbers() -> None:
    context = build_context(RESULTS[:2])
    assert context.startswith("[1] CRG4000 (CRG):\n")
    assert "[2] CRG4010 (CRG):" in context
    assert len(context.split("\n\n")[0]) < 900


def test_build_sources_keeps_top_five() -> None:
    sources = build_sources(RESULTS)
    assert len(sources) == 5
    assert sources[0]["id"] == "0"
    assert len(sources[0]["excerpt"]) == 200


@pytest.mark.asyncio
async def test_chat_passes_history_and_returns_sources() -> None:
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=SimpleNamespace(content="Delays are covered by CRG4025."))

    with (
        patch(
            "app.chains.knowledge_chat.search_knowledge_base_smart",
            new=AsyncMock(return_value=RESULTS[:2]),
        ),
        patch("app.chains.knowledge_chat.get_llm", return_value=llm),
    ):
        result = await chat_with_knowledge_base(
            "What about delays?",
            [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello"}],
        )

    assert result["answer"] == "Delays are covered by CRG4025."
    assert [s["title"] for s in result["sources"]] == ["CRG4000", "CRG4010"]

    messages = llm.ainvoke.call_args.args[0]
    assert isinstance(messages[0], SystemMessage)
    assert "CRG4000" in messages[0].content
    assert isinstance(messages[1], HumanMessage)
    assert isinstance(messages[2], AIMessage)
    assert messages[-1].content == "What about delays?"


@pytest.mark.asyncio
async def test_chat_model_failure_raises_llm_error() -> None:
    llm = MagicMock()
    llm.ainvoke = AsyncMock(side_effect=RuntimeError("upstream 503"))

    with (
        patch(
            "app.chains.knowledge_chat.search_knowledge_base_smart",
            new=AsyncMock(return_value=[]),
        ),
        patch("app.chains.knowledge_chat.get_llm", return_value=llm),
    ):
        with pytest.raises(LLMError, match="upstream 503"):
            await chat_with_knowledge_base("Anything?")
