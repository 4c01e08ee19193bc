"""
Match Ranker - score a candidate pool and return a deterministic ranked list.

Ordering is a total order:
1. total score, descending
2. candidate's last activity, most recent first (missing activity last)
3. candidate user_id, ascending

Disqualified pairs and pairs below ``thresholds.min_score`` are dropped.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from core.models import MatchingPreference, RankedCandidate, ScoreBreakdown, UserProfile
from feature_extraction import InteractionHistory
from match_scorer import MatchScorer
from weight_config import WeightConfiguration

logger = logging.getLogger(__name__)


def ranking_key(candidate: UserProfile, breakdown: ScoreBreakdown) -> Tuple:
    last_active = candidate.last_active_at
    activity = (1, 0.0) if last_active is None else (0, -last_active.timestamp())
    return (-breakdown.total_score, activity, candidate.user_id)


class MatchRanker:
    """Rank candidate pools with one scorer.

    Example:
        ranker = MatchRanker(MatchScorer(weights))
        ranked = ranker.score_candidates(profile, preferences, pool, history, limit=20)
    """

    def __init__(self, scorer: MatchScorer):
        self.scorer = scorer

    @property
    def weights(self) -> WeightConfiguration:
        return self.scorer.weights

    def score_pool(
        self,
        profile: UserProfile,
        preferences: Optional[MatchingPreference],
        candidate_pool: Iterable[UserProfile],
        history: Optional[InteractionHistory] = None,
    ) -> List[Tuple[UserProfile, ScoreBreakdown]]:
        """Score every distinct candidate except the profile itself, unfiltered."""
        seen = set()
        scored = []
        for candidate in candidate_pool:
            if candidate.user_id == profile.user_id or candidate.user_id in seen:
                continue
            seen.add(candidate.user_id)
            scored.append((candidate, self.scorer.score_pair(profile, candidate, preferences, history)))
        return scored

    def score_candidates(
        self,
        profile: UserProfile,
        preferences: Optional[MatchingPreference],
        candidate_pool: Iterable[UserProfile],
        history: Optional[InteractionHistory] = None,
        limit: Optional[int] = None,
    ) -> List[RankedCandidate]:
        """Rank the pool for ``profile``.

        Args:
            profile: The user being matched
            preferences: The user's preferences (None means no constraints)
            candidate_pool: Candidate profiles; the user's own profile is skipped
            history: Interaction history for the behavior feature
            limit: Maximum results (None for all)

        Returns:
            RankedCandidate list, rank starting at 1
        """
        scored = self.score_pool(profile, preferences, candidate_pool, history)
        min_score = self.weights.min_score

        kept = [
            (candidate, breakdown)
            for candidate, breakdown in scored
            if not breakdown.disqualified and breakdown.total_score >= min_score
        ]
        kept.sort(key=lambda item: ranking_key(*item))
        if limit is not None:
            kept = kept[:limit]

        disqualified = sum(1 for _, b in scored if b.disqualified)
        logger.debug(
            "Ranked %d/%d candidates for %s (%d disqualified, version %s)",
            len(kept), len(scored), profile.user_id, disqualified, self.weights.version,
        )

        return [
            RankedCandidate(rank=i, profile=candidate, breakdown=breakdown)
            for i, (candidate, breakdown) in enumerate(kept, 1)
        ]


def score_candidates(
    profile: UserProfile,
    preferences: Optional[MatchingPreference],
    candidate_pool: Iterable[UserProfile],
    weights: WeightConfiguration,
    history: Optional[InteractionHistory] = None,
    limit: Optional[int] = None,
) -> List[RankedCandidate]:
    """Convenience wrapper: rank a pool under one weight configuration."""
    return MatchRanker(MatchScorer(weights)).score_candidates(
        profile, preferences, candidate_pool, history, limit
    )
