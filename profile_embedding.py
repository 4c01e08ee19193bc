"""
Profile Embedding Module - derive semantic vectors from co-founder profiles.

Profiles are rendered to text (role, seniority, skills, industries, tech
stack, work style, values, bio) and embedded through an OpenAI-compatible
embeddings endpoint. Without an API key, or when the API fails, a
deterministic synthetic embedding is used instead:

- keyword buckets (roles, skills, industries, personality words) light up
  fixed dimension ranges
- remaining dimensions carry small hash-derived noise
- the vector is L2-normalized

The same text always gives the same synthetic vector.
"""

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import requests
from tqdm import tqdm

from core.models import UserProfile
from core.settings import (
    DEFAULT_EMBEDDING_API_URL,
    DEFAULT_EMBEDDING_DIMENSIONS,
    DEFAULT_EMBEDDING_MODEL,
    MatchingSettings,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration Constants
# ============================================================================

DEFAULT_BATCH_SIZE = 32
MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds
REQUEST_TIMEOUT = 60

# Synthetic layout (dimension offsets)
SYNTHETIC_ROLE_KEYWORDS = ["ceo", "cto", "cpo", "technical", "business", "founder"]
SYNTHETIC_SKILL_KEYWORDS = [
    "python", "javascript", "react", "ai", "ml", "data", "backend", "frontend",
    "mobile", "web", "cloud", "aws", "docker", "kubernetes", "api", "database",
    "product", "design", "marketing", "sales", "strategy", "growth", "startup",
]
SYNTHETIC_INDUSTRY_KEYWORDS = [
    "fintech", "healthcare", "education", "ecommerce", "saas", "blockchain",
    "gaming", "social", "enterprise", "consumer", "b2b", "b2c", "marketplace",
]
SYNTHETIC_PERSONALITY_KEYWORDS = [
    "innovative", "creative", "analytical", "strategic", "collaborative",
    "leadership", "entrepreneurial", "passionate", "driven", "experienced",
]
ROLE_OFFSET, ROLE_STRIDE = 0, 10
SKILL_OFFSET, SKILL_STRIDE = 64, 10
INDUSTRY_OFFSET, INDUSTRY_STRIDE = 300, 16
PERSONALITY_OFFSET, PERSONALITY_STRIDE = 512, 8
NOISE_OFFSET = 600
SYNTHETIC_LAYOUT_DIMENSIONS = 640


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ProfileEmbedding:
    """Embedding result for a single profile."""
    user_id: str
    embedding: List[float] = field(default_factory=list)
    token_count: int = 0
    source: str = "api"  # "api" or "synthetic"
    error: str = ""


# ============================================================================
# Profile text
# ============================================================================

def build_profile_text(profile: UserProfile) -> str:
    """Render the profile fields that carry meaning into one passage."""
    parts = [f"Role: {profile.role_intent} with {profile.seniority} experience level"]

    if profile.skills:
        parts.append(f"Core skills: {', '.join(profile.skills)}")
    if profile.industries:
        parts.append(f"Industry focus: {', '.join(profile.industries)}")
    if profile.tech_stack:
        parts.append(f"Technology stack: {', '.join(profile.tech_stack)}")
    if profile.work_style:
        parts.append("Work style: " + ", ".join(f"{k}: {v}" for k, v in profile.work_style.items()))
    if profile.values:
        parts.append("Values: " + ", ".join(f"{k}: {v}" for k, v in profile.values.items()))
    if profile.bio:
        parts.append(f"Biography: {profile.bio}")

    return ". ".join(parts)


# ============================================================================
# Synthetic embeddings
# ============================================================================

def _hash_unit(text: str, salt: str) -> float:
    """Deterministic pseudo-random value in [0, 1)."""
    digest = hashlib.sha256(f"{salt}:{text}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / 2 ** 64


def synthetic_embedding(text: str, dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS) -> List[float]:
    """Deterministic keyword-bucket embedding, L2-normalized.

    The keyword layout spans ``SYNTHETIC_LAYOUT_DIMENSIONS``; smaller vectors
    are produced by folding the layout modulo ``dimensions``.
    """
    if dimensions < 1:
        raise ValueError("dimensions must be positive")

    lowered = text.lower()
    width = max(dimensions, SYNTHETIC_LAYOUT_DIMENSIONS)
    vector = np.zeros(width, dtype=np.float64)

    for idx, role in enumerate(SYNTHETIC_ROLE_KEYWORDS):
        if role in lowered:
            vector[ROLE_OFFSET + idx * ROLE_STRIDE] = 0.8 + 0.4 * _hash_unit(text, f"role{idx}")

    for idx, skill in enumerate(SYNTHETIC_SKILL_KEYWORDS):
        if skill in lowered:
            base = SKILL_OFFSET + idx * SKILL_STRIDE
            vector[base] = 0.6 + 0.6 * _hash_unit(text, f"skill{idx}")
            # spill into neighbouring dimensions with decaying weight
            for i in range(1, SKILL_STRIDE):
                vector[base + i] = (0.3 + 0.4 * _hash_unit(text, f"skill{idx}.{i}")) * (1 - i * 0.1)

    for idx, industry in enumerate(SYNTHETIC_INDUSTRY_KEYWORDS):
        if industry in lowered:
            vector[INDUSTRY_OFFSET + idx * INDUSTRY_STRIDE] = 0.7 + 0.5 * _hash_unit(text, f"industry{idx}")

    for idx, word in enumerate(SYNTHETIC_PERSONALITY_KEYWORDS):
        if word in lowered:
            vector[PERSONALITY_OFFSET + idx * PERSONALITY_STRIDE] = 0.5 + 0.7 * _hash_unit(text, f"trait{idx}")

    for i in range(NOISE_OFFSET, width):
        vector[i] = _hash_unit(text, str(i)) / 5

    if width > dimensions:
        folded = np.zeros(dimensions, dtype=np.float64)
        np.add.at(folded, np.arange(width) % dimensions, vector)
        vector = folded

    norm = np.linalg.norm(vector)
    if norm > 0:
        vector /= norm
    return vector.tolist()


# ============================================================================
# Profile Embedder Class
# ============================================================================

class ProfileEmbedder:
    """Generate profile embeddings through an OpenAI-compatible embeddings API.

    Features:
    - Batch processing with configurable batch size
    - Automatic retry with linear backoff
    - Progress tracking with tqdm
    - Synthetic fallback when no API key is set or a request keeps failing

    Example:
        embedder = ProfileEmbedder.from_settings(MatchingSettings.from_env())
        results = embedder.embed_profiles(profiles)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: str = DEFAULT_EMBEDDING_API_URL,
        model: str = DEFAULT_EMBEDDING_MODEL,
        dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        fallback_to_synthetic: bool = True,
    ):
        """Initialize the embedder.

        Args:
            api_key: Embeddings API key; None means synthetic embeddings only
            api_url: OpenAI-compatible /embeddings endpoint
            model: Model name
            dimensions: Embedding dimensions
            batch_size: Number of texts per API request
            fallback_to_synthetic: Use synthetic vectors when the API fails
        """
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.fallback_to_synthetic = fallback_to_synthetic
        self._total_tokens = 0

    @classmethod
    def from_settings(cls, settings: MatchingSettings, **kwargs) -> "ProfileEmbedder":
        return cls(
            api_key=settings.embedding_api_key,
            api_url=settings.embedding_api_url,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            **kwargs,
        )

    @property
    def uses_api(self) -> bool:
        return bool(self.api_key)

    @property
    def total_tokens_used(self) -> int:
        """Total tokens used in this session."""
        return self._total_tokens

    def _make_request(
        self,
        texts: List[str],
        retries: int = MAX_RETRIES,
    ) -> Tuple[List[List[float]], int]:
        """Make API request with retry logic.

        Returns:
            Tuple of (embeddings list, total tokens used)

        Raises:
            RuntimeError: If all retries are exhausted, or the response is malformed
        """
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        payload = {
            "input": texts,
            "model": self.model,
            "dimensions": self.dimensions,
            "encoding_format": "float",
        }

        try:
            response = requests.post(
                self.api_url,
                headers=headers,
                json=payload,
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()

        except requests.exceptions.RequestException as e:
            if retries > 0:
                delay = RETRY_DELAY * (MAX_RETRIES - retries + 1)
                logger.warning("Embedding request failed (%s), retrying in %.1fs", e, delay)
                time.sleep(delay)
                return self._make_request(texts, retries - 1)
            raise RuntimeError(f"API request failed after {MAX_RETRIES} retries: {e}") from e

        try:
            items = sorted(data["data"], key=lambda item: item.get("index", 0))
            embeddings = [list(item["embedding"]) for item in items]
            tokens = int((data.get("usage") or {}).get("total_tokens", 0))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise RuntimeError(f"Malformed embeddings response: {e!r}") from e

        if len(embeddings) != len(texts):
            raise RuntimeError(f"Embeddings response has {len(embeddings)} vectors for {len(texts)} inputs")
        return embeddings, tokens

    def embed_text(self, text: str) -> ProfileEmbedding:
        """Embed one text; ``user_id`` is left empty."""
        return self._embed_texts([("", text)])[0]

    def embed_profile(self, profile: UserProfile) -> ProfileEmbedding:
        return self._embed_texts([(profile.user_id, build_profile_text(profile))])[0]

    def embed_profiles(
        self,
        profiles: Iterable[UserProfile],
        show_progress: bool = False,
    ) -> List[ProfileEmbedding]:
        """Generate embeddings for multiple profiles in batches.

        Returns:
            ProfileEmbedding results sorted by user_id
        """
        items = [(p.user_id, build_profile_text(p)) for p in profiles]
        batches = [items[i:i + self.batch_size] for i in range(0, len(items), self.batch_size)]

        iterator = batches
        if show_progress:
            iterator = tqdm(batches, desc=f"Embedding ({self.model if self.uses_api else 'synthetic'})")

        results = []
        for batch in iterator:
            results.extend(self._embed_texts(batch))

        results.sort(key=lambda r: r.user_id)
        return results

    def _embed_texts(self, items: List[Tuple[str, str]]) -> List[ProfileEmbedding]:
        if not self.uses_api:
            return [self._synthetic(user_id, text) for user_id, text in items]

        texts = [text for _, text in items]
        try:
            embeddings, tokens = self._make_request(texts)
        except RuntimeError as e:
            if not self.fallback_to_synthetic:
                return [ProfileEmbedding(user_id=uid, error=str(e)) for uid, _ in items]
            logger.warning("Embedding API failed, falling back to synthetic: %s", e)
            return [self._synthetic(user_id, text, error=str(e)) for user_id, text in items]

        self._total_tokens += tokens
        tokens_per_item = tokens // len(items) if items else 0
        return [
            ProfileEmbedding(user_id=uid, embedding=embedding, token_count=tokens_per_item)
            for (uid, _), embedding in zip(items, embeddings)
        ]

    def _synthetic(self, user_id: str, text: str, error: str = "") -> ProfileEmbedding:
        return ProfileEmbedding(
            user_id=user_id,
            embedding=synthetic_embedding(text, self.dimensions),
            source="synthetic",
            error=error,
        )


def embeddings_by_user(results: Iterable[ProfileEmbedding]) -> Dict[str, List[float]]:
    """Successful results as user_id -> vector."""
    return {r.user_id: r.embedding for r in results if r.embedding}


def print_embedding_summary(results: List[ProfileEmbedding]) -> None:
    """Print summary statistics of embedding results."""
    print("\n" + "=" * 60)
    print("EMBEDDING SUMMARY")
    print("=" * 60)

    total = len(results)
    from_api = sum(1 for r in results if r.embedding and r.source == "api")
    synthetic = sum(1 for r in results if r.source == "synthetic")
    failed = sum(1 for r in results if not r.embedding)
    total_tokens = sum(r.token_count for r in results)

    print(f"Total profiles processed: {total}")
    print(f"From API: {from_api}")
    print(f"Synthetic: {synthetic}")
    print(f"Failed: {failed}")
    print(f"Total tokens used: {total_tokens:,}")

    dims = {len(r.embedding) for r in results if r.embedding}
    if dims:
        print(f"Embedding dimensions: {', '.join(str(d) for d in sorted(dims))}")
