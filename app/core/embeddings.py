"""Embedding generation with per-profile models, truncation and batching."""

import asyncio
import math
from dataclasses import dataclass

import httpx
from openai import OpenAI

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

VOYAGE_EMBEDDINGS_URL = "https://api.voyageai.com/v1/embeddings"


@dataclass(frozen=True)
class EmbeddingProfile:
    """Embedding model configuration."""

    name: str
    provider: str
    model: str
    dimensions: int
    max_chars: int
    cost_per_1m_tokens: float


EMBEDDING_PROFILES: dict[str, EmbeddingProfile] = {
    "primary": EmbeddingProfile(
        name="primary",
        provider="openai",
        model="text-embedding-3-large",
        dimensions=1536,
        max_chars=30_000,
        cost_per_1m_tokens=0.13,
    ),
    "small": EmbeddingProfile(
        name="small",
        provider="openai",
        model="text-embedding-3-small",
        dimensions=1536,
        max_chars=30_000,
        cost_per_1m_tokens=0.02,
    ),
    "legal": EmbeddingProfile(
        name="legal",
        provider="voyage",
        model="voyage-law-2",
        dimensions=1024,
        max_chars=60_000,
        cost_per_1m_tokens=0.12,
    ),
}


def get_profile(profile: str | None = None) -> EmbeddingProfile:
    """Resolve an embedding profile by name (defaults to EMBEDDING_PROFILE)."""
    name = profile or get_settings().EMBEDDING_PROFILE
    if name not in EMBEDDING_PROFILES:
        raise ValueError(f"Unknown embedding profile: {name}")
    return EMBEDDING_PROFILES[name]


def prepare_text(text: str, profile: EmbeddingProfile) -> str:
    """Normalise and truncate text to the profile's character limit."""
    cleaned = (text or "").strip()
    if len(cleaned) > profile.max_chars:
        logger.debug(
            f"Truncating embedding input from {len(cleaned)} to {profile.max_chars} chars"
        )
        cleaned = cleaned[: profile.max_chars]
    return cleaned


def estimate_embedding_cost(texts: list[str], profile: str | None = None) -> dict[str, float]:
    """Estimate tokens and USD cost of embedding the given texts."""
    resolved = get_profile(profile)
    total_chars = sum(len(t) for t in texts)
    tokens = math.ceil(total_chars / 4)
    return {"tokens": tokens, "cost": tokens / 1_000_000 * resolved.cost_per_1m_tokens}


def _get_client() -> OpenAI:
    """Get OpenAI client instance."""
    settings = get_settings()
    return OpenAI(api_key=settings.OPENAI_API_KEY)


def _embed_openai_batch(batch: list[str], profile: EmbeddingProfile) -> list[list[float]]:
    client = _get_client()
    kwargs = {"model": profile.model, "input": batch}
    if profile.model == "text-embedding-3-large":
        kwargs["dimensions"] = profile.dimensions
    response = client.embeddings.create(**kwargs)
    return [item.embedding for item in response.data]


def _embed_voyage_batch(batch: list[str], profile: EmbeddingProfile) -> list[list[float]]:
    settings = get_settings()
    if not settings.VOYAGE_API_KEY:
        raise ValueError("VOYAGE_API_KEY is not configured for the legal embedding profile")

    with httpx.Client(timeout=60.0) as client:
        response = client.post(
            VOYAGE_EMBEDDINGS_URL,
            headers={"Authorization": f"Bearer {settings.VOYAGE_API_KEY}"},
            json={"model": profile.model, "input": batch, "input_type": "document"},
        )
        response.raise_for_status()
        data = response.json()

    return [item["embedding"] for item in data.get("data", [])]


def embed_texts(
    texts: list[str],
    profile: str | None = None,
    batch_size: int = 100,
) -> list[list[float]]:
    """
    Generate embeddings for a list of texts.

    Args:
        texts: List of text strings to embed
        profile: Embedding profile name (primary, small, legal)
        batch_size: Texts per provider request

    Returns:
        List of embedding vectors, in input order

    Raises:
        ValueError: If a returned vector has the wrong dimension
        Exception: If the provider call fails
    """
    if not texts:
        return []

    resolved = get_profile(profile)
    prepared = [prepare_text(t, resolved) for t in texts]
    embed_batch = _embed_voyage_batch if resolved.provider == "voyage" else _embed_openai_batch

    embeddings: list[list[float]] = []
    try:
        for start in range(0, len(prepared), batch_size):
            batch = prepared[start : start + batch_size]
            vectors = embed_batch(batch, resolved)

            for offset, vector in enumerate(vectors):
                if len(vector) != resolved.dimensions:
                    raise ValueError(
                        f"Embedding dimension mismatch for text {start + offset}: "
                        f"expected {resolved.dimensions}, got {len(vector)}"
                    )
            embeddings.extend(vectors)

        logger.info(
            f"Generated {len(embeddings)} embeddings using {resolved.model}",
            extra={"model": resolved.model, "count": len(embeddings)},
        )
        return embeddings

    except Exception as e:
        logger.error(f"Failed to generate embeddings: {e}")
        raise


def embed_text(text: str, profile: str | None = None) -> list[float]:
    """Embed a single text."""
    return embed_texts([text], profile=profile)[0]


async def embed_texts_async(texts: list[str], profile: str | None = None) -> list[list[float]]:
    """Async wrapper around embed_texts using thread pool."""
    return await asyncio.to_thread(embed_texts, texts, profile)
