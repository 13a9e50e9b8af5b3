"""Tests for embeddings generation with mocked OpenAI API."""

from unittest.mock import MagicMock, patch

import pytest

from app.core.embeddings import (
    EMBEDDING_PROFILES,
    embed_text,
    embed_texts,
    estimate_embedding_cost,
    get_profile,
    prepare_text,
)


@pytest.fixture
def mock_openai_response():
    """Create a mock OpenAI embeddings response."""

    def _create_response(num_embeddings: int, dimension: int = 1536):
        mock_response = MagicMock()
        mock_response.data = []

        for _ in range(num_embeddings):
            mock_embedding = MagicMock()
            mock_embedding.embedding = [0.1] * dimension
            mock_response.data.append(mock_embedding)

        return mock_response

    return _create_response


def test_embed_texts_single(mock_openai_response):
    """Test embedding a single text."""
    with patch("app.core.embeddings._get_client") as mock_get_client:
        mock_client = MagicMock()
        mock_client.embeddings.create.return_value = mock_openai_response(1)
        mock_get_client.return_value = mock_client

        embeddings = embed_texts(["HMRC delay complaint"], profile="primary")

        assert len(embeddings) == 1
        assert len(embeddings[0]) == 1536
        kwargs = mock_client.embeddings.create.call_args.kwargs
        assert kwargs["model"] == "text-embedding-3-large"
        assert kwargs["dimensions"] == 1536


def test_embed_texts_batches(mock_openai_response):
    """Texts are sent in batches of batch_size, preserving order."""
    with patch("app.core.embeddings._get_client") as mock_get_client:
        mock_client = MagicMock()
        mock_client.embeddings.create.side_effect = [
            mock_openai_response(2),
            mock_openai_response(2),
            mock_openai_response(1),
        ]
        mock_get_client.return_value = mock_client

        embeddings = embed_texts([f"text {i}" for i in range(5)], profile="small", batch_size=2)

        assert len(embeddings) == 5
        assert mock_client.embeddings.create.call_count == 3
        assert "dimensions" not in mock_client.embeddings.create.call_args.kwargs


def test_embed_texts_dimension_mismatch(mock_openai_response):
    with patch("app.core.embeddings._get_client") as mock_get_client:
        mock_client = MagicMock()
        mock_client.embeddings.create.return_value = mock_openai_response(1, dimension=768)
        mock_get_client.return_value = mock_client

        with pytest.raises(ValueError, match="dimension mismatch"):
            embed_texts(["text"], profile="primary")


def test_embed_texts_empty():
    """Test embedding empty list."""
    assert embed_texts([]) == []


def test_embed_text_returns_single_vector(mock_openai_response):
    with patch("app.core.embeddings._get_client") as mock_get_client:
        mock_client = MagicMock()
        mock_client.embeddings.create.return_value = mock_openai_response(1)
        mock_get_client.return_value = mock_client

        assert len(embed_text("one", profile="primary")) == 1536


def test_legal_profile_requires_voyage_key():
    settings = MagicMock(VOYAGE_API_KEY=None)
    with patch("app.core.embeddings.get_settings", return_value=settings):
        with pytest.raises(ValueError, match="VOYAGE_API_KEY"):
            embed_texts(["text"], profile="legal")


def test_profiles():
    assert get_profile("legal").dimensions == 1024
    with pytest.raises(ValueError):
        get_profile("unknown")


def test_prepare_text_truncates():
    profile = EMBEDDING_PROFILES["small"]
    text = "  " + "a" * (profile.max_chars + 50) + "  "

    assert len(prepare_text(text, profile)) == profile.max_chars


def test_estimate_embedding_cost():
    estimate = estimate_embedding_cost(["a" * 4000], profile="primary")

    assert estimate["tokens"] == 1000
    assert estimate["cost"] == pytest.approx(0.00013)
