"""Question answering over the knowledge base."""

from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from app.core.config import get_settings
from app.core.llm import LLMError, get_llm
from app.core.logging import get_logger
from app.core.vector_search import search_knowledge_base_smart

logger = get_logger(__name__)

CHAT_THRESHOLD = 0.7
CHAT_MATCH_COUNT = 10
CONTEXT_EXCERPT_CHARS = 800
SOURCE_COUNT = 5
SOURCE_EXCERPT_CHARS = 200

# ruff: noqa: E501
SYSTEM_PROMPT = """You are Lightpoint's HMRC complaints assistant for UK accountancy practices.

Answer using ONLY the knowledge base excerpts below. Cite the source title (and CRG/Charter reference where given) for each point you make. If the excerpts do not cover the question, say so plainly rather than guessing.

KNOWLEDGE BASE EXCERPTS:
{context}"""


def build_context(results: list[dict[str, Any]]) -> str:
    if not results:
        return "No relevant knowledge base entries were found."
    return "\n\n".join(
        f"[{i}] {r.get('title') or 'Untitled'} ({r.get('category') or 'Uncategorized'}):\n"
        f"{(r.get('content') or '')[:CONTEXT_EXCERPT_CHARS]}"
        for i, r in enumerate(results, 1)
    )


def _history_messages(history: list[dict[str, str]]) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for item in history:
        if item.get("role") == "assistant":
            messages.append(AIMessage(content=item.get("content") or ""))
        else:
            messages.append(HumanMessage(content=item.get("content") or ""))
    return messages


def build_sources(results: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "id": str(r["id"]) if r.get("id") is not None else None,
            "title": r.get("title"),
            "category": r.get("category"),
            "similarity": r.get("similarity"),
            "excerpt": (r.get("content") or "")[:SOURCE_EXCERPT_CHARS],
        }
        for r in results[:SOURCE_COUNT]
    ]


async def chat_with_knowledge_base(
    message: str,
    history: list[dict[str, str]] | None = None,
) -> dict[str, Any]:
    """
    Answer a question grounded in knowledge base search results.

    Returns:
        Dict with ``answer`` and the top ``sources``

    Raises:
        LLMError: If the model call fails
    """
    results = await search_knowledge_base_smart(
        message, threshold=CHAT_THRESHOLD, match_count=CHAT_MATCH_COUNT
    )
    logger.info(f"Knowledge chat found {len(results)} sources")

    llm = get_llm(model=get_settings().CHAT_MODEL, temperature=0.7, max_tokens=2000)
    messages = [
        SystemMessage(content=SYSTEM_PROMPT.format(context=build_context(results))),
        *_history_messages(history or []),
        HumanMessage(content=message),
    ]

    try:
        response = await llm.ainvoke(messages)
    except Exception as e:
        logger.error(f"Knowledge chat model call failed: {e}")
        raise LLMError(f"Knowledge chat failed: {e}") from e

    answer = response.content if isinstance(response.content, str) else str(response.content)
    return {"answer": answer, "sources": build_sources(results)}
