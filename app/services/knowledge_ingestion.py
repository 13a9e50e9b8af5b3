"""Knowledge base ingestion: HMRC manual crawling and the upload review flow.

Manuals are crawled from GOV.UK, chunked, embedded and upserted into
``knowledge_base``. Uploaded documents are compared against existing entries
and staged in ``kb_staging`` until an admin approves or rejects them.
"""

import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urljoin
from uuid import UUID

import httpx
from bs4 import BeautifulSoup

from app.chains.compare_knowledge import compare_document_to_knowledge_base
from app.core.embeddings import embed_text, embed_texts
from app.core.file_text import extract_text_from_upload
from app.core.logging import get_logger
from app.core.manual_chunking import (
    ManualChunk,
    ManualConfig,
    ManualSection,
    chunk_manual_sections,
    get_manual_config,
    get_manual_configs_by_priority,
)
from app.core.schemas_knowledge import KnowledgeEntryCreate, PrecedentCreate
from app.core.vector_search import clear_search_cache, search_knowledge_base
from app.db import kb_staging, knowledge_base, precedents

logger = get_logger(__name__)

RATE_LIMIT_SECONDS = 0.25
MAX_RETRIES = 3
REQUEST_TIMEOUT_SECONDS = 30.0
USER_AGENT = (
    "Lightpoint-KB-Ingestion/1.0 "
    "(Professional tax complaint system; contact: support@lightpoint.app)"
)
REQUEST_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-GB,en;q=0.9",
}

MIN_SECTION_CHARS = 50
EMBEDDING_BATCH_SIZE = 50
EMBEDDING_PROFILE = "primary"

BREADCRUMB_SELECTORS = [
    ".gem-c-breadcrumbs__list-item",
    ".govuk-breadcrumbs__list-item",
    ".breadcrumb-trail li",
]
BREADCRUMB_SKIP = {"Home", "HMRC internal manuals", "Contents"}
CONTENT_SELECTORS = [
    ".gem-c-govspeak",
    ".govuk-govspeak",
    ".manual-body",
    ".manuals-frontend-content",
    "article .content",
    "#guide-content",
    "main article",
]
CONTENT_NOISE = "nav, header, footer, .gem-c-breadcrumbs, .govuk-breadcrumbs, .gem-c-document-list"
PARENT_LINK_SELECTORS = "a.govuk-back-link, .gem-c-pagination__link--previous, .previous-page"

STAGING_SEARCH_THRESHOLD = 0.7
STAGING_SEARCH_COUNT = 10
DUPLICATE_SIMILARITY = 0.9
STAGING_QUERY_CHARS = 2000


# ============================================================================
# Crawler
# ============================================================================


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    retries: int = MAX_RETRIES,
) -> str:
    """GET a page, retrying with linear backoff."""
    for attempt in range(1, retries + 1):
        try:
            response = await client.get(url, headers=REQUEST_HEADERS)
            response.raise_for_status()
            return response.text
        except httpx.HTTPError as e:
            if attempt == retries:
                logger.error(f"Failed to fetch {url} after {retries} attempts: {e}")
                raise
            logger.warning(f"Retry {attempt}/{retries} for {url}: {e}")
            await asyncio.sleep(RATE_LIMIT_SECONDS * attempt)

    raise RuntimeError("Max retries exceeded")


def _slug(href: str) -> str:
    return href.split("#")[0].rstrip("/").split("/")[-1]


def extract_section_urls(html: str, config: ManualConfig) -> list[str]:
    """Links from a manual index page to the manual's own sections."""
    soup = BeautifulSoup(html, "html.parser")
    urls: dict[str, None] = {}

    for link in soup.find_all("a", href=True):
        href = link["href"]
        if "/hmrc-internal-manuals/" not in href or config.slug not in href:
            continue
        if "#" in href or href.rstrip("/") == config.index_path:
            continue

        full_url = urljoin(config.base_url, href)
        if full_url.rstrip("/") != config.index_url:
            urls[full_url] = None

    return list(urls)


async def get_manual_section_urls(client: httpx.AsyncClient, config: ManualConfig) -> list[str]:
    logger.info(f"Fetching manual index {config.index_url}")
    html = await fetch_with_retry(client, config.index_url)
    urls = extract_section_urls(html, config)
    logger.info(f"Found {len(urls)} sections in {config.code}")
    return urls


def _normalize_whitespace(text: str) -> str:
    lines = [re.sub(r"[ \t\r\f\v]+", " ", line).strip() for line in text.split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def parse_section_html(html: str, url: str, config: ManualConfig) -> ManualSection | None:
    """
    Parse a manual section page.

    Returns None when the page is not a section of this manual or has no
    meaningful content.
    """
    section_reference = _slug(url).upper()
    if not section_reference.startswith(config.code):
        logger.warning(f"Section {section_reference} is not part of {config.code}, skipping")
        return None

    soup = BeautifulSoup(html, "html.parser")

    h1 = soup.find("h1")
    title = h1.get_text(" ", strip=True) if h1 else ""
    title = re.sub(rf"^{re.escape(section_reference)}\s*[-–:]?\s*", "", title, flags=re.IGNORECASE)
    title = title.strip() or section_reference

    breadcrumb: list[str] = []
    for selector in BREADCRUMB_SELECTORS:
        for item in soup.select(selector):
            text = item.get_text(" ", strip=True)
            if text and text not in BREADCRUMB_SKIP:
                breadcrumb.append(text)
        if breadcrumb:
            break

    # Links are read before content extraction removes navigation
    internal_links: dict[str, None] = {}
    for link in soup.find_all("a", href=True):
        href = link["href"]
        if "/hmrc-internal-manuals/" in href and config.slug in href:
            linked = _slug(href).upper()
            if linked != section_reference and linked.startswith(config.code):
                internal_links[linked] = None

    parent_section = None
    parent_link = soup.select_one(PARENT_LINK_SELECTORS)
    if parent_link and "/hmrc-internal-manuals/" in (parent_link.get("href") or ""):
        parent = _slug(parent_link["href"]).upper()
        if parent != section_reference and parent.startswith(config.code):
            parent_section = parent

    content = ""
    for selector in CONTENT_SELECTORS + ["main"]:
        element = soup.select_one(selector)
        if element is None:
            continue
        for noise in element.select(CONTENT_NOISE):
            noise.decompose()
        content = _normalize_whitespace(element.get_text("\n"))
        if content:
            break

    if len(content) < MIN_SECTION_CHARS:
        logger.debug(f"Skipping {section_reference}: no meaningful content ({len(content)} chars)")
        return None

    return ManualSection(
        section_reference=section_reference,
        title=title,
        content=content,
        source_url=url,
        parent_section=parent_section,
        breadcrumb=breadcrumb,
        internal_links=list(internal_links),
    )


async def parse_manual_section(
    client: httpx.AsyncClient,
    url: str,
    config: ManualConfig,
) -> ManualSection | None:
    html = await fetch_with_retry(client, url)
    return parse_section_html(html, url, config)


async def crawl_manual(
    config: ManualConfig,
    max_sections: int | None = None,
) -> tuple[list[ManualSection], list[str]]:
    """
    Crawl every section of a manual.

    Returns:
        (parsed sections, error messages for sections that failed)
    """
    sections: list[ManualSection] = []
    errors: list[str] = []

    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS, follow_redirects=True) as client:
        urls = await get_manual_section_urls(client, config)
        if max_sections:
            urls = urls[:max_sections]

        for i, url in enumerate(urls):
            try:
                section = await parse_manual_section(client, url, config)
                if section:
                    sections.append(section)
            except httpx.HTTPError as e:
                errors.append(f"{url}: {e}")

            if i < len(urls) - 1:
                await asyncio.sleep(RATE_LIMIT_SECONDS)

    logger.info(
        f"Crawled {len(sections)} sections from {config.code}",
        extra={"urls": len(urls), "errors": len(errors)},
    )
    return sections, errors


# ============================================================================
# Manual ingestion
# ============================================================================


def _chunk_record(chunk: ManualChunk, embedding: list[float], config: ManualConfig) -> dict[str, Any]:
    now = datetime.now(timezone.utc).isoformat()
    return {
        "category": config.category,
        "title": chunk.title,
        "content": chunk.content,
        "source": f"HMRC {config.code}",
        "source_url": chunk.source_url,
        "source_verified_at": now,
        "verification_status": "verified",
        "section_reference": chunk.section_reference,
        "manual_code": chunk.manual_code,
        "parent_section": chunk.parent_section,
        "breadcrumb": chunk.breadcrumb,
        "citation_format": chunk.citation_format,
        "document_type": config.document_type,
        "embedding": embedding,
        "last_checked_at": now,
        "metadata": {
            "chunk_index": chunk.chunk_index,
            "total_chunks": chunk.total_chunks,
            "ingested_at": now,
        },
    }


def upsert_chunk(chunk: ManualChunk, embedding: list[float], config: ManualConfig) -> dict[str, Any]:
    """Insert, update or touch one chunk. Never raises."""
    result: dict[str, Any] = {"citation_format": chunk.citation_format}

    try:
        existing = knowledge_base.find_manual_chunk(
            chunk.section_reference, chunk.manual_code, chunk.citation_format
        )
        if not existing:
            knowledge_base.insert_manual_chunk(_chunk_record(chunk, embedding, config))
            result["status"] = "added"
        elif existing.get("content") != chunk.content:
            knowledge_base.update_manual_chunk(existing["id"], _chunk_record(chunk, embedding, config))
            result["status"] = "updated"
        else:
            knowledge_base.touch_last_checked(existing["id"])
            result["status"] = "unchanged"

    except Exception as e:
        result["status"] = "error"
        result["error"] = str(e)

    return result


async def ingest_manual(config: ManualConfig, max_sections: int | None = None) -> dict[str, Any]:
    """
    Crawl, chunk, embed and upsert one manual.

    Returns:
        Summary with section, chunk and outcome counts, errors and duration
    """
    start = time.monotonic()
    logger.info(f"Starting ingestion of {config.code}", extra={"manual_code": config.code})

    sections, errors = await crawl_manual(config, max_sections=max_sections)
    chunks = chunk_manual_sections(sections, config.code)

    embeddings = await asyncio.to_thread(
        embed_texts,
        [c.embedding_text for c in chunks],
        EMBEDDING_PROFILE,
        EMBEDDING_BATCH_SIZE,
    )

    counts = {"added": 0, "updated": 0, "unchanged": 0}
    for chunk, embedding in zip(chunks, embeddings):
        result = await asyncio.to_thread(upsert_chunk, chunk, embedding, config)
        if result["status"] == "error":
            errors.append(f"{result['citation_format']}: {result['error']}")
        else:
            counts[result["status"]] += 1

    if counts["added"] or counts["updated"]:
        clear_search_cache()

    summary = {
        "manual_code": config.code,
        "sections_processed": len(sections),
        "chunks_created": len(chunks),
        **counts,
        "errors": errors,
        "duration_ms": round((time.monotonic() - start) * 1000),
    }

    try:
        await asyncio.to_thread(knowledge_base.insert_ingestion_log, summary)
    except Exception as e:
        logger.warning(f"Failed to record ingestion log for {config.code}: {e}")

    logger.info(
        f"Ingested {config.code}: {counts['added']} added, {counts['updated']} updated, "
        f"{counts['unchanged']} unchanged, {len(errors)} errors",
        extra={"manual_code": config.code, "duration_ms": summary["duration_ms"]},
    )
    return summary


async def ingest_all_manuals(codes: list[str] | None = None) -> list[dict[str, Any]]:
    """Ingest manuals in priority order, optionally limited to some codes."""
    if codes:
        unknown = [c for c in codes if not get_manual_config(c)]
        if unknown:
            raise ValueError(f"Unknown manual codes: {', '.join(unknown)}")

    summaries = []
    for config in get_manual_configs_by_priority():
        if codes and config.code not in codes:
            continue
        try:
            summaries.append(await ingest_manual(config))
        except httpx.HTTPError as e:
            logger.error(f"Ingestion of {config.code} failed: {e}")
            summaries.append({"manual_code": config.code, "errors": [str(e)]})
    return summaries


# ============================================================================
# Upload review flow
# ============================================================================


async def upload_for_comparison(
    filename: str,
    content_type: str | None,
    raw_bytes: bytes,
    category: str | None = None,
    uploaded_by: UUID | None = None,
) -> dict[str, Any]:
    """
    Compare an uploaded document to the knowledge base and stage it for review.

    Raises:
        ValueError: If the file cannot be read
    """
    extracted = await asyncio.to_thread(extract_text_from_upload, filename, content_type, raw_bytes)
    text = extracted.text.strip()
    if not text:
        raise ValueError("No text could be extracted from the document")

    similar = await search_knowledge_base(
        text[:STAGING_QUERY_CHARS],
        threshold=STAGING_SEARCH_THRESHOLD,
        match_count=STAGING_SEARCH_COUNT,
    )
    duplicates = [r for r in similar if float(r.get("similarity") or 0) > DUPLICATE_SIMILARITY]

    comparison = await asyncio.to_thread(
        compare_document_to_knowledge_base, text, similar, duplicates
    )

    title = filename.rsplit(".", 1)[0] if "." in filename else filename
    staged = await asyncio.to_thread(
        kb_staging.create_staged,
        comparison.recommendations.suggested_title or title,
        text,
        category or comparison.recommendations.suggested_category,
        comparison.model_dump(mode="json"),
        filename,
        uploaded_by,
    )

    logger.info(
        f"Staged {filename} for review ({comparison.recommendations.action.value})",
        extra={"staged_id": staged.get("id"), "similar": len(similar), "duplicates": len(duplicates)},
    )
    return {"staged": staged, "comparison": comparison}


def _require_pending(staged_id: UUID) -> dict[str, Any]:
    staged = kb_staging.get_staged(staged_id)
    if not staged:
        raise LookupError(f"Staged document not found: {staged_id}")
    if staged.get("status") != "pending":
        raise ValueError(f"Staged document already {staged.get('status')}")
    return staged


def approve_staged(
    staged_id: UUID,
    reviewed_by: UUID | None = None,
    category: str | None = None,
    title: str | None = None,
) -> dict[str, Any]:
    """Embed a staged document, add it to the knowledge base and mark it approved."""
    staged = _require_pending(staged_id)

    entry = knowledge_base.add_entry(
        category=category or staged.get("category") or "General",
        title=title or staged.get("title") or "Untitled",
        content=staged["content"],
        embedding=embed_text(staged["content"]),
        source=staged.get("source"),
        metadata={"staged_id": str(staged_id)},
    )
    kb_staging.set_review(staged_id, "approved", reviewed_by)
    clear_search_cache()
    return entry


def reject_staged(
    staged_id: UUID,
    reviewed_by: UUID | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    _require_pending(staged_id)
    return kb_staging.set_review(staged_id, "rejected", reviewed_by, notes)


def add_knowledge_entry(entry: KnowledgeEntryCreate) -> dict[str, Any]:
    """Embed and insert an entry directly."""
    row = knowledge_base.add_entry(
        category=entry.category,
        title=entry.title,
        content=entry.content,
        embedding=embed_text(f"{entry.title}\n\n{entry.content}"),
        source=entry.source,
        source_url=entry.source_url,
        document_type=entry.document_type,
        metadata=entry.metadata,
    )
    clear_search_cache()
    return row


def add_precedent_case(precedent: PrecedentCreate) -> dict[str, Any]:
    row = precedents.add_precedent(
        complaint_type=precedent.complaint_type,
        issue_category=precedent.issue_category,
        outcome=precedent.outcome,
        embedding=embed_text(precedent.embedding_text()),
        resolution_time_days=precedent.resolution_time_days,
        compensation_amount=precedent.compensation_amount,
        key_arguments=precedent.key_arguments,
        effective_citations=precedent.effective_citations,
        metadata=precedent.metadata,
    )
    clear_search_cache()
    return row
