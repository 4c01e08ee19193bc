#!/usr/bin/env python3
"""
Profile Embedding Test Suite

Tests for:
1. Profile text rendering
2. Deterministic synthetic embeddings
3. API requests, retries and synthetic fallback (requests is mocked)
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import make_profile
from profile_embedding import (
    MAX_RETRIES,
    SYNTHETIC_LAYOUT_DIMENSIONS,
    ProfileEmbedder,
    build_profile_text,
    embeddings_by_user,
    synthetic_embedding,
)


def _api_response(vectors, tokens=12):
    """Fake embeddings response, deliberately out of index order."""
    response = MagicMock()
    response.raise_for_status.return_value = None
    data = [{"index": i, "embedding": v} for i, v in enumerate(vectors)]
    response.json.return_value = {"data": list(reversed(data)), "usage": {"total_tokens": tokens}}
    return response


@pytest.fixture
def profiles():
    return [
        make_profile("u_b", "CEO", skills=["Sales"], industries=["Fintech"]),
        make_profile("u_a", "CTO", skills=["Python", "AI"], bio="Built ML infra"),
    ]


# =============================================================================
# Profile text
# =============================================================================


class TestProfileText:
    """Tests for build_profile_text."""

    def test_includes_populated_fields(self):
        profile = make_profile(
            "u_a", "CTO", skills=["Python"], tech_stack=["Postgres"],
            work_style={"pace": "fast"}, bio="Ex-founder",
        )
        text = build_profile_text(profile)
        assert text.startswith("Role: CTO with senior experience level")
        assert "Core skills: Python" in text
        assert "Technology stack: Postgres" in text
        assert "Work style: pace: fast" in text
        assert "Biography: Ex-founder" in text

    def test_omits_empty_fields(self):
        text = build_profile_text(make_profile("u_a", "CEO"))
        assert "Core skills" not in text
        assert "Biography" not in text


# =============================================================================
# Synthetic embeddings
# =============================================================================


class TestSyntheticEmbedding:
    """Tests for the keyword-bucket fallback embedding."""

    def test_deterministic(self):
        assert synthetic_embedding("CTO with python skills") == synthetic_embedding("CTO with python skills")

    def test_unit_norm_and_dimensions(self):
        vector = synthetic_embedding("CEO focused on fintech sales", dimensions=1024)
        assert len(vector) == 1024
        assert np.linalg.norm(vector) == pytest.approx(1.0)

    def test_keyword_bucket_lit(self):
        vector = synthetic_embedding("python")
        # python is the first skill bucket
        assert vector[64] > 0
        assert vector[0] == 0.0

    @pytest.mark.parametrize("dimensions", [1, 8, 512, SYNTHETIC_LAYOUT_DIMENSIONS - 1])
    def test_fewer_dimensions_than_layout(self, dimensions):
        vector = synthetic_embedding("CTO building python ai for fintech", dimensions=dimensions)
        assert len(vector) == dimensions
        assert np.linalg.norm(vector) == pytest.approx(1.0)
        assert vector == synthetic_embedding("CTO building python ai for fintech", dimensions=dimensions)

    def test_folded_vectors_still_separate_profiles(self):
        a = np.array(synthetic_embedding("CTO python backend ai", dimensions=256))
        b = np.array(synthetic_embedding("CTO python backend ai data", dimensions=256))
        c = np.array(synthetic_embedding("CMO marketing growth consumer", dimensions=256))
        assert a @ b > a @ c

    @pytest.mark.parametrize("dimensions", [0, -3])
    def test_non_positive_dimensions(self, dimensions):
        with pytest.raises(ValueError):
            synthetic_embedding("text", dimensions=dimensions)


# =============================================================================
# Embedder
# =============================================================================


class TestProfileEmbedder:
    """Tests for API embedding with fallback."""

    def test_without_api_key_uses_synthetic(self, profiles):
        embedder = ProfileEmbedder(api_key=None)
        results = embedder.embed_profiles(profiles)

        assert [r.user_id for r in results] == ["u_a", "u_b"]
        assert all(r.source == "synthetic" for r in results)
        assert all(len(r.embedding) == embedder.dimensions for r in results)

    @patch("profile_embedding.requests.post")
    def test_api_results_follow_index_order(self, mock_post, profiles):
        mock_post.return_value = _api_response([[0.1, 0.2], [0.3, 0.4]], tokens=10)
        embedder = ProfileEmbedder(api_key="test-key", dimensions=2)

        results = embedder.embed_profiles(profiles)

        by_user = embeddings_by_user(results)
        assert by_user == {"u_b": [0.1, 0.2], "u_a": [0.3, 0.4]}
        assert embedder.total_tokens_used == 10
        assert all(r.source == "api" for r in results)

        kwargs = mock_post.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer test-key"
        assert kwargs["json"]["dimensions"] == 2
        assert len(kwargs["json"]["input"]) == 2

    @patch("profile_embedding.requests.post")
    def test_batches(self, mock_post, profiles):
        mock_post.side_effect = [_api_response([[1.0]]), _api_response([[2.0]])]
        embedder = ProfileEmbedder(api_key="k", dimensions=1, batch_size=1)
        embedder.embed_profiles(profiles)
        assert mock_post.call_count == 2

    @patch("profile_embedding.time.sleep")
    @patch("profile_embedding.requests.post")
    def test_retry_then_success(self, mock_post, mock_sleep):
        mock_post.side_effect = [
            requests.exceptions.ConnectionError("reset"),
            _api_response([[0.5, 0.5]]),
        ]
        embedder = ProfileEmbedder(api_key="k", dimensions=2)

        result = embedder.embed_text("hello")

        assert result.embedding == [0.5, 0.5]
        assert result.source == "api"
        mock_sleep.assert_called_once_with(1.0)

    @patch("profile_embedding.time.sleep")
    @patch("profile_embedding.requests.post")
    def test_falls_back_after_retries(self, mock_post, mock_sleep):
        mock_post.side_effect = requests.exceptions.Timeout("slow")
        embedder = ProfileEmbedder(api_key="k")

        result = embedder.embed_profile(make_profile("u_a", "CTO"))

        assert mock_post.call_count == MAX_RETRIES + 1
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0, 3.0]
        assert result.source == "synthetic"
        assert len(result.embedding) == embedder.dimensions
        assert "failed after" in result.error

    @patch("profile_embedding.time.sleep")
    @patch("profile_embedding.requests.post")
    def test_no_fallback_reports_error(self, mock_post, mock_sleep):
        mock_post.side_effect = requests.exceptions.HTTPError("500")
        embedder = ProfileEmbedder(api_key="k", fallback_to_synthetic=False)

        result = embedder.embed_profile(make_profile("u_a", "CTO"))

        assert result.embedding == []
        assert result.error
        assert embeddings_by_user([result]) == {}

    @pytest.mark.parametrize("body", [
        {"error": "quota"},
        {"data": None},
        {"data": [{"index": 0}]},
        ["not", "an", "object"],
    ])
    @patch("profile_embedding.requests.post")
    def test_malformed_response_falls_back(self, mock_post, body):
        response = MagicMock()
        response.raise_for_status.return_value = None
        response.json.return_value = body
        mock_post.return_value = response
        embedder = ProfileEmbedder(api_key="k", dimensions=8)

        result = embedder.embed_profile(make_profile("u_a", "CTO"))

        assert result.source == "synthetic"
        assert len(result.embedding) == 8
        assert "Malformed" in result.error

    @patch("profile_embedding.requests.post")
    def test_short_response_falls_back_for_every_item(self, mock_post, profiles):
        mock_post.return_value = _api_response([[0.1, 0.2]])
        embedder = ProfileEmbedder(api_key="k", dimensions=2)

        results = embedder.embed_profiles(profiles)

        assert [r.user_id for r in results] == ["u_a", "u_b"]
        assert all(r.source == "synthetic" for r in results)
        assert all("1 vectors for 2 inputs" in r.error for r in results)

    @patch("profile_embedding.requests.post")
    def test_malformed_response_without_fallback(self, mock_post):
        response = MagicMock()
        response.raise_for_status.return_value = None
        response.json.return_value = {"error": "quota"}
        mock_post.return_value = response
        embedder = ProfileEmbedder(api_key="k", fallback_to_synthetic=False)

        result = embedder.embed_text("hello")

        assert result.embedding == []
        assert "Malformed" in result.error
