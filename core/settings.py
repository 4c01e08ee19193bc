"""
Runtime settings for the match scoring pipeline.

Settings come from the environment, optionally loaded from a ``.env`` file.
CLI flags override individual values with ``dataclasses.replace``.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .constants import (
    DEFAULT_CANDIDATE_LIMIT,
    DEFAULT_MATCH_EXPIRY_DAYS,
    DEFAULT_WEIGHT_VERSION,
)

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_API_URL = "https://api.openai.com/v1/embeddings"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EMBEDDING_DIMENSIONS = 768
DEFAULT_CACHE_TTL = 300
MAX_CACHE_TTL = 86400
DEFAULT_BATCH_TOP_K = 5
DEFAULT_BATCH_MAX_WORKERS = 4


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.error("Invalid integer for %s: %r", name, raw)
        raise


@dataclass(frozen=True)
class MatchingSettings:
    """Process-wide configuration, constructed once at startup."""
    weight_version: str = DEFAULT_WEIGHT_VERSION
    weights_path: Optional[Path] = None
    match_expiry_days: int = DEFAULT_MATCH_EXPIRY_DAYS
    candidate_limit: int = DEFAULT_CANDIDATE_LIMIT
    batch_top_k: int = DEFAULT_BATCH_TOP_K
    batch_max_workers: int = DEFAULT_BATCH_MAX_WORKERS
    cache_ttl: int = DEFAULT_CACHE_TTL
    embedding_api_key: Optional[str] = None
    embedding_api_url: str = DEFAULT_EMBEDDING_API_URL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "MatchingSettings":
        """Build settings from environment variables.

        Args:
            dotenv: Load a ``.env`` file first (existing variables win)

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        if dotenv:
            load_dotenv()

        weights_path = os.getenv("MATCHING_WEIGHTS_PATH")
        api_key = os.getenv("EMBEDDING_API_KEY") or os.getenv("OPENAI_API_KEY")

        return cls(
            weight_version=os.getenv("MATCHING_WEIGHT_VERSION", DEFAULT_WEIGHT_VERSION),
            weights_path=Path(weights_path) if weights_path else None,
            match_expiry_days=_env_int("MATCH_EXPIRY_DAYS", DEFAULT_MATCH_EXPIRY_DAYS),
            candidate_limit=_env_int("MATCH_CANDIDATE_LIMIT", DEFAULT_CANDIDATE_LIMIT),
            batch_top_k=_env_int("BATCH_TOP_K", DEFAULT_BATCH_TOP_K),
            batch_max_workers=_env_int("BATCH_MAX_WORKERS", DEFAULT_BATCH_MAX_WORKERS),
            cache_ttl=min(_env_int("MATCH_CACHE_TTL", DEFAULT_CACHE_TTL), MAX_CACHE_TTL),
            embedding_api_key=api_key or None,
            embedding_api_url=os.getenv("EMBEDDING_API_URL", DEFAULT_EMBEDDING_API_URL),
            embedding_model=os.getenv("EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", DEFAULT_EMBEDDING_DIMENSIONS),
            log_level=os.getenv("MATCHING_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for CLI scripts."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )
