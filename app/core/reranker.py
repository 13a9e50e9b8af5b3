"""Reranking module: Cohere rerank-v3.5 primary, Voyage rerank-2 fallback.

Falls back to the incoming similarity order when neither provider is usable.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

VOYAGE_RERANK_URL = "https://api.voyageai.com/v1/rerank"
COHERE_RERANK_MODEL = "rerank-v3.5"
VOYAGE_RERANK_MODEL = "rerank-2"

# Per-document character cap sent to rerank providers
MAX_DOC_CHARS = 4000

_cohere_client: Any | None = None
_cohere_checked = False


def _get_cohere_client() -> Any | None:
    """Lazy-create sync Cohere client. Returns None if key not set or import fails."""
    global _cohere_client, _cohere_checked
    if _cohere_checked:
        return _cohere_client
    _cohere_checked = True

    settings = get_settings()
    if not settings.COHERE_API_KEY:
        return None

    try:
        import cohere

        _cohere_client = cohere.ClientV2(api_key=settings.COHERE_API_KEY)
        return _cohere_client
    except Exception as e:
        logger.debug(f"Cohere client init failed: {e}")
        return None


def _reset_clients() -> None:
    """Forget cached provider clients (settings changed)."""
    global _cohere_client, _cohere_checked
    _cohere_client = None
    _cohere_checked = False


def _doc_texts(documents: list[dict[str, Any]], text_key: str) -> list[str]:
    return [str(doc.get(text_key) or "")[:MAX_DOC_CHARS] for doc in documents]


def _apply_ranking(
    documents: list[dict[str, Any]],
    ranking: list[tuple[int, float]],
    provider: str,
) -> list[dict[str, Any]]:
    """Reorder documents by (index, score) pairs, copying each dict."""
    reranked: list[dict[str, Any]] = []
    seen: set[int] = set()
    for idx, score in ranking:
        if 0 <= idx < len(documents) and idx not in seen:
            seen.add(idx)
            reranked.append({**documents[idx], "rerank_score": score, "rerank_provider": provider})
    return reranked


async def rerank_with_cohere(
    query: str,
    documents: list[dict[str, Any]],
    top_n: int,
    text_key: str = "content",
) -> list[dict[str, Any]] | None:
    """Rerank using Cohere. Returns None if Cohere is unavailable or call fails."""
    client = _get_cohere_client()
    if not client:
        return None

    try:
        response = await asyncio.to_thread(
            client.rerank,
            model=COHERE_RERANK_MODEL,
            query=query,
            documents=_doc_texts(documents, text_key),
            top_n=top_n,
        )
        ranking = [(item.index, float(item.relevance_score)) for item in response.results]
        reranked = _apply_ranking(documents, ranking, "cohere")
        if reranked:
            logger.info(f"Cohere reranked {len(documents)} → {len(reranked)} documents")
            return reranked
        return None

    except Exception as e:
        logger.debug(f"Cohere rerank failed: {e}")
        return None


async def rerank_with_voyage(
    query: str,
    documents: list[dict[str, Any]],
    top_n: int,
    text_key: str = "content",
) -> list[dict[str, Any]] | None:
    """Rerank using Voyage over HTTP. Returns None if unavailable or call fails."""
    settings = get_settings()
    if not settings.VOYAGE_API_KEY:
        return None

    try:
        async with httpx.AsyncClient(timeout=30) as client:
            response = await client.post(
                VOYAGE_RERANK_URL,
                headers={"Authorization": f"Bearer {settings.VOYAGE_API_KEY}"},
                json={
                    "model": VOYAGE_RERANK_MODEL,
                    "query": query,
                    "documents": _doc_texts(documents, text_key),
                    "top_k": top_n,
                },
            )
            response.raise_for_status()
            data = response.json()

        ranking = [
            (int(item["index"]), float(item["relevance_score"])) for item in data.get("data", [])
        ]
        reranked = _apply_ranking(documents, ranking, "voyage")
        if reranked:
            logger.info(f"Voyage reranked {len(documents)} → {len(reranked)} documents")
            return reranked
        return None

    except Exception as e:
        logger.debug(f"Voyage rerank failed: {e}")
        return None


def _pad(
    reranked: list[dict[str, Any]],
    documents: list[dict[str, Any]],
    wanted: int,
    text_key: str,
) -> list[dict[str, Any]]:
    """Top up a short provider result from the original order."""
    if len(reranked) >= wanted:
        return reranked[:wanted]

    taken = {id(doc) for doc in reranked}
    keys = {(doc.get("id"), doc.get(text_key)) for doc in reranked}
    for doc in documents:
        if len(reranked) >= wanted:
            break
        if id(doc) in taken or (doc.get("id"), doc.get(text_key)) in keys:
            continue
        reranked.append(
            {**doc, "rerank_score": doc.get("similarity", 0.0), "rerank_provider": "similarity"}
        )
    return reranked


async def rerank_documents(
    query: str,
    documents: list[dict[str, Any]],
    top_n: int,
    text_key: str = "content",
) -> list[dict[str, Any]]:
    """
    Rerank documents for a query: Cohere → Voyage → similarity-order truncation.

    Every returned dict carries ``rerank_score`` and ``rerank_provider``. The
    result always has ``min(top_n, len(documents))`` entries.
    """
    if not documents or top_n <= 0:
        return []

    wanted = min(top_n, len(documents))

    cohere_result = await rerank_with_cohere(query, documents, wanted, text_key)
    if cohere_result is not None:
        return _pad(cohere_result, documents, wanted, text_key)

    voyage_result = await rerank_with_voyage(query, documents, wanted, text_key)
    if voyage_result is not None:
        return _pad(voyage_result, documents, wanted, text_key)

    logger.info("No reranker available, keeping similarity order")
    return _pad([], documents, wanted, text_key)
