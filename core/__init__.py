"""
Core shared utilities for the Latent Space match scoring pipeline.

This package provides the shared data models, constants, errors, settings,
cache and I/O utilities used across the matching modules.

Usage:
    from core import UserProfile, MatchingPreference, ScoreBreakdown
    from core import load_profiles, load_embeddings_npy
    from core import MatchingSettings, TaggedTTLCache
"""

from .models import (
    AlgorithmOutcome,
    AlgorithmRecommendations,
    BatchMatchingRun,
    ConstraintCheck,
    DealBreakers,
    FeatureVector,
    InsightRecommendation,
    InteractionEvent,
    MatchFeedback,
    MatchingMetrics,
    MatchingPreference,
    MatchReason,
    MatchResult,
    MustHave,
    NiceToHave,
    RankedCandidate,
    ScoreBreakdown,
    UserMatchingInsights,
    UserProfile,
)
from .errors import (
    InactiveWeightVersion,
    InvalidStageTransition,
    MatchingError,
    NotFoundError,
    OwnershipError,
    ProfileValidationError,
    QualityScoreAlreadySet,
    StageConflictError,
    StageTransitionError,
    UnknownWeightVersion,
    WeightConfigurationError,
)
from .settings import MatchingSettings, configure_logging
from .cache import TaggedTTLCache
from .data_io import (
    attach_embeddings,
    load_embeddings_npy,
    load_profiles,
    load_preferences,
    save_embeddings_npy,
    save_profiles,
)

__all__ = [
    # Models
    "AlgorithmOutcome",
    "AlgorithmRecommendations",
    "BatchMatchingRun",
    "ConstraintCheck",
    "DealBreakers",
    "FeatureVector",
    "InsightRecommendation",
    "InteractionEvent",
    "MatchFeedback",
    "MatchingMetrics",
    "MatchingPreference",
    "MatchReason",
    "MatchResult",
    "MustHave",
    "NiceToHave",
    "RankedCandidate",
    "ScoreBreakdown",
    "UserMatchingInsights",
    "UserProfile",
    # Errors
    "InactiveWeightVersion",
    "InvalidStageTransition",
    "MatchingError",
    "NotFoundError",
    "OwnershipError",
    "ProfileValidationError",
    "QualityScoreAlreadySet",
    "StageConflictError",
    "StageTransitionError",
    "UnknownWeightVersion",
    "WeightConfigurationError",
    # Settings / cache
    "MatchingSettings",
    "configure_logging",
    "TaggedTTLCache",
    # Data I/O
    "attach_embeddings",
    "load_embeddings_npy",
    "load_profiles",
    "load_preferences",
    "save_embeddings_npy",
    "save_profiles",
]
