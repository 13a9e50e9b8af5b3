"""Semantic search over the knowledge base and precedents.

Query embeddings are computed in-process; matching happens in Postgres via
the ``match_*`` RPCs. Multi-angle and hybrid searches merge several result
lists and pass the merged candidates through the reranker.
"""

from __future__ import annotations

import asyncio
import math
import re
import time
from typing import Any, Callable

from app.core.embeddings import embed_text
from app.core.logging import get_logger
from app.core.reranker import rerank_documents
from app.db.knowledge_base import (
    keyword_search,
    match_knowledge_base,
    match_knowledge_base_filtered,
)
from app.db.precedents import match_precedents

logger = get_logger(__name__)

SEARCH_CACHE_TTL_SECONDS = 24 * 60 * 60
SEARCH_CACHE_MAX_ENTRIES = 256
RRF_K = 60

_search_cache: dict[tuple, tuple[float, list[dict[str, Any]]]] = {}  # key -> (timestamp, data)

CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "DMBM": [
        "payment", "debt", "allocation", "arrears", "collect",
        "enforce", "ttp", "time to pay", "repayment",
    ],
    "ARTG": ["appeal", "tribunal", "review", "dispute", "adjudicator", "ftt", "ut"],
    "CH": [
        "penalty", "penalt", "compliance", "careless",
        "deliberate", "disclosure", "reasonable excuse",
    ],
    "SAM": ["self assessment", "sa ", "tax return", "filing", "amendment"],
    "EM": ["enquiry", "investigation", "check", "aspect enquiry"],
    "CRG": ["crg", "complaint", "guidance", "reimbursement", "compensation", "distress"],
    "Charter": ["charter", "taxpayer rights", "being responsive", "getting things right"],
    "CHG": ["chg", "complaint handling", "tier 1", "tier 2", "escalation"],
}

ALWAYS_INCLUDED_CATEGORIES = ("CRG", "Charter")

# (pattern, extra queries) checked against the lower-cased query
ANGLE_RULES: list[tuple[re.Pattern[str], list[str]]] = [
    (
        re.compile(r"payment|debt|allocation|arrears|repayment"),
        ["HMRC debt management payment allocation", "DMBM payment allocation rules"],
    ),
    (
        re.compile(r"penalty|penalt|reasonable excuse"),
        [
            "HMRC penalty cancellation errors",
            "penalty appeal CRG guidance",
            "reasonable excuse penalty",
        ],
    ),
    (
        re.compile(r"delay|delayed"),
        ["unreasonable delays CRG4025 remedy", "HMRC delay compensation charter"],
    ),
    (
        re.compile(r"seis|eis"),
        ["SEIS EIS claim processing timeline", "SEIS claim errors and appeals"],
    ),
    (
        re.compile(r"tier 1|tier 2|escalat|inadequate response|adjudicator"),
        [
            "CHG complaint handling guidance escalation procedures",
            "CHG tier 1 tier 2 response standards timeframes",
            "CHG408 CHG502 escalation adjudicator referral",
        ],
    ),
    (
        re.compile(r"appeal|tribunal|ftt|review"),
        ["ARTG appeals procedure tribunal", "appeal tribunal time limits"],
    ),
]

COMPLAINT_ANGLES = [
    "CRG professional fees reimbursement CRG5225",
    "CRG compensation distress inconvenience CRG6050",
    "Charter commitments being responsive getting things right",
]


# ============================================================================
# Cache
# ============================================================================


def _cache_get(key: tuple) -> list[dict[str, Any]] | None:
    entry = _search_cache.get(key)
    if not entry:
        return None
    ts, data = entry
    if time.time() - ts >= SEARCH_CACHE_TTL_SECONDS:
        _search_cache.pop(key, None)
        return None
    return [dict(r) for r in data]


def _cache_set(key: tuple, data: list[dict[str, Any]]) -> None:
    if len(_search_cache) >= SEARCH_CACHE_MAX_ENTRIES:
        oldest = min(_search_cache, key=lambda k: _search_cache[k][0])
        _search_cache.pop(oldest, None)
    _search_cache[key] = (time.time(), [dict(r) for r in data])


def clear_search_cache() -> None:
    """Drop every cached search result (after knowledge base writes)."""
    _search_cache.clear()


# ============================================================================
# Query expansion and routing (pure)
# ============================================================================


def generate_search_queries(query: str) -> list[str]:
    """Original query plus topic angles, deduplicated in order."""
    lowered = query.lower()
    queries = [query]

    for pattern, extra in ANGLE_RULES:
        if pattern.search(lowered):
            queries.extend(extra)

    queries.extend(COMPLAINT_ANGLES)
    return list(dict.fromkeys(queries))


def detect_categories(query: str) -> list[str]:
    """Knowledge categories suggested by the query; CRG and Charter always."""
    lowered = query.lower()
    detected = [
        category
        for category, keywords in CATEGORY_KEYWORDS.items()
        if any(keyword in lowered for keyword in keywords)
    ]
    for category in ALWAYS_INCLUDED_CATEGORIES:
        if category not in detected:
            detected.append(category)
    return detected


def _result_key(result: dict[str, Any]) -> Any:
    return result.get("id") or result.get("title")


def deduplicate_results(results: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """One entry per id (or title), keeping the higher similarity; best first."""
    best: dict[Any, dict[str, Any]] = {}
    for result in results:
        key = _result_key(result)
        current = best.get(key)
        if current is None or (result.get("similarity") or 0) > (current.get("similarity") or 0):
            best[key] = result
    return sorted(best.values(), key=lambda r: r.get("similarity") or 0, reverse=True)


def reciprocal_rank_fusion(
    result_lists: list[list[dict[str, Any]]],
    weights: list[float] | None = None,
    k: int = RRF_K,
) -> list[dict[str, Any]]:
    """
    Fuse ranked lists: score(d) = sum(w_i / (k + rank_i(d))), rank 1-based.

    The first occurrence of a document supplies its fields; the fused score
    is stored under ``rrf_score``.
    """
    weights = weights or [1.0] * len(result_lists)
    if len(weights) != len(result_lists):
        raise ValueError("weights must match result_lists")

    docs: dict[Any, dict[str, Any]] = {}
    scores: dict[Any, float] = {}

    for results, weight in zip(result_lists, weights):
        for rank, doc in enumerate(results, start=1):
            key = _result_key(doc)
            docs.setdefault(key, doc)
            scores[key] = scores.get(key, 0.0) + weight / (k + rank)

    fused = [{**docs[key], "rrf_score": score} for key, score in scores.items()]
    fused.sort(key=lambda d: d["rrf_score"], reverse=True)
    return fused


def keyword_score(query: str, title: str, content: str) -> float:
    """Term-frequency score with diminishing returns plus a title boost."""
    terms = [t for t in query.lower().split() if t]
    content_lower = content.lower()
    title_lower = title.lower()

    score = 0.0
    for term in terms:
        count = content_lower.count(term)
        if count > 0:
            score += 1 + math.log(count)
        if term in title_lower:
            score += 5
    return score


# ============================================================================
# Searches
# ============================================================================


async def _embed_query(query: str) -> list[float]:
    return await asyncio.to_thread(embed_text, query)


def _attach_text(
    results: list[dict[str, Any]],
    builder: Callable[[dict[str, Any]], str],
) -> list[dict[str, Any]]:
    return [{**r, "rerank_text": builder(r)} for r in results]


def _strip_text(results: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{k: v for k, v in r.items() if k != "rerank_text"} for r in results]


def _kb_text(result: dict[str, Any]) -> str:
    return f"{result.get('title') or ''}\n{result.get('content') or ''}"


def _precedent_text(result: dict[str, Any]) -> str:
    parts = [
        result.get("title") or "",
        result.get("complaint_type") or "",
        result.get("issue_category") or "",
        result.get("outcome") or "",
        " ".join(result.get("key_arguments") or []),
        result.get("letter_content") or result.get("content") or "",
    ]
    return "\n".join(p for p in parts if p)


async def _rerank(query: str, results: list[dict[str, Any]], top_n: int, builder) -> list[dict]:
    reranked = await rerank_documents(query, _attach_text(results, builder), top_n, "rerank_text")
    return _strip_text(reranked)


async def search_knowledge_base(
    query: str,
    threshold: float = 0.8,
    match_count: int = 5,
) -> list[dict[str, Any]]:
    """Single-query vector search, cached per (query, threshold, count)."""
    key = ("kb", query, threshold, match_count)
    cached = _cache_get(key)
    if cached is not None:
        logger.debug("Knowledge base search cache hit")
        return cached

    embedding = await _embed_query(query)
    results = await asyncio.to_thread(match_knowledge_base, embedding, threshold, match_count)

    _cache_set(key, results)
    return results


async def search_knowledge_base_multi_angle(
    query: str,
    threshold: float = 0.75,
    match_count: int = 10,
) -> list[dict[str, Any]]:
    """
    Search every angle of the query concurrently, merge and rerank.

    Falls back to a single search of the original query on failure.
    """
    try:
        queries = generate_search_queries(query)
        candidate_count = match_count * 3
        logger.info(f"Multi-angle search with {len(queries)} angles")

        result_sets = await asyncio.gather(
            *(search_knowledge_base(q, threshold, candidate_count) for q in queries)
        )
        combined = deduplicate_results([r for results in result_sets for r in results])
        logger.info(f"Multi-angle search found {len(combined)} candidates")

        return await _rerank(query, combined, match_count, _kb_text)

    except Exception as e:
        logger.error(f"Multi-angle search failed, falling back to single search: {e}")
        return await search_knowledge_base(query, threshold, match_count)


async def search_knowledge_base_filtered(
    query: str,
    categories: list[str] | None = None,
    document_types: list[str] | None = None,
    include_superseded: bool = False,
    threshold: float = 0.7,
    match_count: int = 10,
) -> list[dict[str, Any]]:
    """Category/document-type filtered search; unfiltered search on RPC error."""
    embedding = await _embed_query(query)

    try:
        results = await asyncio.to_thread(
            match_knowledge_base_filtered,
            embedding,
            threshold,
            match_count,
            categories,
            document_types,
            include_superseded,
        )
        logger.info(
            f"Filtered search found {len(results)} results",
            extra={"categories": ",".join(categories or [])},
        )
        return results

    except Exception as e:
        logger.warning(f"Filtered search unavailable, using standard search: {e}")
        return await search_knowledge_base(query, threshold, match_count)


async def search_knowledge_base_smart(
    query: str,
    threshold: float = 0.7,
    match_count: int = 10,
) -> list[dict[str, Any]]:
    """
    Route by detected categories.

    More than the two always-on categories means the query is specific
    enough for a filtered search; otherwise search every angle.
    """
    categories = detect_categories(query)
    logger.info(f"Smart routing detected categories: {', '.join(categories)}")

    if len(categories) > len(ALWAYS_INCLUDED_CATEGORIES):
        return await search_knowledge_base_filtered(
            query, categories=categories, threshold=threshold, match_count=match_count
        )
    return await search_knowledge_base_multi_angle(query, threshold, match_count)


async def search_knowledge_base_multi_angle_filtered(
    query: str,
    threshold: float = 0.7,
    match_count: int = 10,
    document_types: list[str] | None = None,
    include_superseded: bool = False,
) -> list[dict[str, Any]]:
    """Filtered search per angle, merged and reranked.

    The rerank score replaces ``similarity`` on each returned entry.
    """
    categories = detect_categories(query)
    category_filter = categories if len(categories) > len(ALWAYS_INCLUDED_CATEGORIES) else None
    queries = generate_search_queries(query)

    result_sets = await asyncio.gather(
        *(
            search_knowledge_base_filtered(
                q,
                categories=category_filter,
                document_types=document_types,
                include_superseded=include_superseded,
                threshold=threshold,
                match_count=match_count * 2,
            )
            for q in queries
        )
    )
    merged = deduplicate_results([r for results in result_sets for r in results])
    reranked = await _rerank(query, merged, match_count, _kb_text)

    return [
        {**r, "similarity": r.get("rerank_score", r.get("similarity"))}
        if r.get("rerank_provider") != "similarity"
        else r
        for r in reranked
    ]


async def search_precedents(
    query: str,
    threshold: float = 0.7,
    match_count: int = 5,
) -> list[dict[str, Any]]:
    """Precedent search with 3x candidates, reranked and cached."""
    key = ("precedents", query, threshold, match_count)
    cached = _cache_get(key)
    if cached is not None:
        logger.debug("Precedent search cache hit")
        return cached

    embedding = await _embed_query(query)
    candidates = await asyncio.to_thread(
        match_precedents, embedding, threshold, match_count * 3
    )
    results = await _rerank(query, candidates, match_count, _precedent_text)

    _cache_set(key, results)
    return results


async def hybrid_search(
    query: str,
    match_count: int = 10,
    vector_weight: float = 0.7,
    keyword_weight: float = 0.3,
) -> list[dict[str, Any]]:
    """Vector and keyword results fused with weighted RRF, then reranked."""
    embedding = await _embed_query(query)

    vector_results, keyword_results = await asyncio.gather(
        asyncio.to_thread(match_knowledge_base, embedding, 0.7, match_count * 2),
        asyncio.to_thread(keyword_search, query, match_count * 2),
    )

    scored_keywords = sorted(
        (
            {
                **r,
                "keyword_score": keyword_score(query, r.get("title") or "", r.get("content") or ""),
            }
            for r in keyword_results
        ),
        key=lambda r: r["keyword_score"],
        reverse=True,
    )
    logger.info(
        f"Hybrid search: {len(vector_results)} vector, {len(scored_keywords)} keyword results"
    )

    fused = reciprocal_rank_fusion(
        [vector_results, scored_keywords], [vector_weight, keyword_weight]
    )
    return await _rerank(query, fused, match_count, _kb_text)
