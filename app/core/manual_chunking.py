"""Section-aware chunking for HMRC internal manuals.

Sections that fit are kept whole. Larger sections are split at paragraph
boundaries (sentence boundaries for oversized paragraphs) with a short
overlap, and every chunk's embedding text is prefixed with the manual,
breadcrumb and section reference so retrieval sees the hierarchy.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any

from app.core.logging import get_logger

logger = get_logger(__name__)

MAX_CHUNK_SIZE = 2000
MIN_CHUNK_SIZE = 200
OVERLAP_SIZE = 100
CONTEXT_PREFIX_MAX = 200

GOV_UK_BASE_URL = "https://www.gov.uk"


@dataclass(frozen=True)
class ManualConfig:
    """An HMRC manual to ingest."""

    code: str
    name: str
    index_path: str
    category: str
    priority: int
    base_url: str = GOV_UK_BASE_URL
    document_type: str = "manual"

    @property
    def index_url(self) -> str:
        return f"{self.base_url}{self.index_path}"

    @property
    def slug(self) -> str:
        return self.index_path.rstrip("/").split("/")[-1]


MANUAL_CONFIGS: list[ManualConfig] = [
    ManualConfig(
        code="DMBM",
        name="Debt Management and Banking Manual",
        index_path="/hmrc-internal-manuals/debt-management-and-banking",
        category="DMBM",
        priority=1,
    ),
    ManualConfig(
        code="ARTG",
        name="Appeals Reviews and Tribunals Guidance",
        index_path="/hmrc-internal-manuals/appeals-reviews-and-tribunals-guidance",
        category="ARTG",
        priority=1,
    ),
    ManualConfig(
        code="CH",
        name="Compliance Handbook",
        index_path="/hmrc-internal-manuals/compliance-handbook",
        category="CH",
        priority=2,
    ),
    ManualConfig(
        code="SAM",
        name="Self Assessment Manual",
        index_path="/hmrc-internal-manuals/self-assessment-manual",
        category="SAM",
        priority=2,
    ),
    ManualConfig(
        code="EM",
        name="Enquiry Manual",
        index_path="/hmrc-internal-manuals/enquiry-manual",
        category="EM",
        priority=2,
    ),
    ManualConfig(
        code="PAYE",
        name="PAYE Manual",
        index_path="/hmrc-internal-manuals/paye-manual",
        category="PAYE",
        priority=3,
    ),
]


def get_manual_config(code: str) -> ManualConfig | None:
    return next((c for c in MANUAL_CONFIGS if c.code == code), None)


def get_manual_configs_by_priority() -> list[ManualConfig]:
    return sorted(MANUAL_CONFIGS, key=lambda c: c.priority)


@dataclass
class ManualSection:
    """Parsed content of one manual page."""

    section_reference: str
    title: str
    content: str
    source_url: str
    parent_section: str | None = None
    breadcrumb: list[str] = field(default_factory=list)
    internal_links: list[str] = field(default_factory=list)


@dataclass
class ManualChunk:
    """A chunk ready for embedding and storage."""

    section_reference: str
    chunk_index: int
    total_chunks: int
    title: str
    content: str
    embedding_text: str
    parent_section: str | None
    breadcrumb: list[str]
    source_url: str
    manual_code: str
    citation_format: str


def _manual_name(code: str) -> str:
    config = get_manual_config(code)
    return config.name if config else f"{code} Manual"


def build_context_prefix(section: ManualSection, manual_code: str) -> str:
    """Build the "HMRC CODE: name | breadcrumb | Section REF: title" prefix."""
    parts = [f"HMRC {manual_code}: {_manual_name(manual_code)}"]

    if section.breadcrumb:
        crumbs = " > ".join(section.breadcrumb)
        if len(crumbs) <= 100:
            parts.append(crumbs)
        else:
            parts.append(" > ".join([section.breadcrumb[0], "...", *section.breadcrumb[-2:]]))

    parts.append(f"Section {section.section_reference}: {section.title}")

    context = " | ".join(parts)
    if len(context) > CONTEXT_PREFIX_MAX:
        context = context[: CONTEXT_PREFIX_MAX - 3] + "..."
    return context


def split_paragraphs(content: str) -> list[str]:
    return [p.strip() for p in re.split(r"\n\n+", content) if p.strip()]


def split_sentences(content: str) -> list[str]:
    return [s.strip() for s in re.split(r"(?<=[.!?])\s+", content) if s.strip()]


def _make_chunk(
    section: ManualSection,
    manual_code: str,
    prefix: str,
    content: str,
    chunk_index: int,
) -> ManualChunk:
    text = content.strip()
    citation = section.section_reference
    if chunk_index > 0:
        citation = f"{citation} (part {chunk_index + 1})"
    return ManualChunk(
        section_reference=section.section_reference,
        chunk_index=chunk_index,
        total_chunks=0,
        title=section.title,
        content=text,
        embedding_text=f"{prefix}\n\n{text}",
        parent_section=section.parent_section,
        breadcrumb=section.breadcrumb,
        source_url=section.source_url,
        manual_code=manual_code,
        citation_format=citation,
    )


def chunk_manual_section(section: ManualSection, manual_code: str) -> list[ManualChunk]:
    """Chunk one manual section."""
    prefix = build_context_prefix(section, manual_code)

    if len(section.content) <= MAX_CHUNK_SIZE:
        chunk = _make_chunk(section, manual_code, prefix, section.content, 0)
        chunk.total_chunks = 1
        return [chunk]

    chunks: list[ManualChunk] = []
    current = ""

    def emit() -> None:
        chunks.append(_make_chunk(section, manual_code, prefix, current, len(chunks)))

    for paragraph in split_paragraphs(section.content):
        if len(paragraph) > MAX_CHUNK_SIZE:
            if len(current) >= MIN_CHUNK_SIZE:
                emit()
                current = ""

            for sentence in split_sentences(paragraph):
                if len(current) + len(sentence) + 1 > MAX_CHUNK_SIZE and len(current) >= MIN_CHUNK_SIZE:
                    emit()
                    current = current[-OVERLAP_SIZE:] + " " + sentence
                else:
                    current = f"{current} {sentence}" if current else sentence
            continue

        if len(current) + len(paragraph) + 2 > MAX_CHUNK_SIZE and len(current) >= MIN_CHUNK_SIZE:
            emit()
            current = current[-OVERLAP_SIZE:] + "\n\n" + paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph

    if len(current) >= MIN_CHUNK_SIZE:
        emit()
    elif current and chunks:
        # Short tail joins the previous chunk
        last = chunks[-1]
        last.content = f"{last.content}\n\n{current.strip()}"
        last.embedding_text = f"{prefix}\n\n{last.content}"
    elif current:
        emit()

    for chunk in chunks:
        chunk.total_chunks = len(chunks)
    return chunks


def chunk_manual_sections(sections: list[ManualSection], manual_code: str) -> list[ManualChunk]:
    """Chunk every section of a manual."""
    all_chunks: list[ManualChunk] = []
    total_chars = 0
    for section in sections:
        total_chars += len(section.content)
        all_chunks.extend(chunk_manual_section(section, manual_code))

    avg = round(sum(len(c.content) for c in all_chunks) / len(all_chunks)) if all_chunks else 0
    logger.info(
        f"Chunked {manual_code}: {len(sections)} sections → {len(all_chunks)} chunks "
        f"({round(total_chars / 1000)}K chars, avg {avg} chars)"
    )
    return all_chunks


def estimate_embedding_cost(
    chunks: list[ManualChunk],
    cost_per_1m_tokens: float = 0.13,
) -> dict[str, Any]:
    """Rough token and USD estimate for embedding chunks (4 chars per token)."""
    tokens = math.ceil(sum(len(c.embedding_text) for c in chunks) / 4)
    return {"tokens": tokens, "cost": tokens / 1_000_000 * cost_per_1m_tokens}
