"""
Matching Analytics - system metrics, per-user insights and algorithm health.

Metrics are computed from the store on demand; callers that need caching
wrap these calls (see MatchingService). Rates are fractions in [0, 1].
Metrics whose formula is not settled yet are returned as None and listed
in ``not_computed`` rather than given a made-up default.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from core.constants import (
    ALGORITHM_ADJUSTMENTS,
    ALGORITHM_MIN_CONTINUE_RATE,
    ALGORITHM_MIN_MEET_RATE,
    ALGORITHM_MIN_RATING,
    ALGORITHM_OUTCOMES,
    ALGORITHM_REVIEW_DAYS,
    COMMON_MATCH_FACTORS,
    HIGH_LIKE_COUNT,
    HIGH_VIEW_COUNT,
    INTERACTION_ACTIONS,
    LOW_COMPLETENESS_THRESHOLD,
    LOW_LIKE_COUNT,
    LOW_MATCH_COUNT,
    PROFILE_COMPLETENESS_FIELDS,
    RECOMMENDATION_MESSAGES,
    SUCCESS_RATING_THRESHOLD,
    TIME_RANGE_DAYS,
    TOP_FACTOR_LIMIT,
)
from core.models import (
    AlgorithmOutcome,
    AlgorithmRecommendations,
    InsightRecommendation,
    MatchFeedback,
    MatchingMetrics,
    UserMatchingInsights,
    UserProfile,
)
from match_store import MatchStore

logger = logging.getLogger(__name__)

# Stages that count as a mutual match in user insights
ENGAGED_STAGES = {"contacted", "meeting", "success"}


# ============================================================================
# Pure helpers
# ============================================================================

def _is_filled(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def profile_completeness(profile: Optional[UserProfile]) -> float:
    """Percentage of the checklist fields that are filled, capped at 100.

    Each field is an equal share; a missing profile is 0.
    """
    if profile is None:
        return 0.0
    filled = sum(1 for name in PROFILE_COMPLETENESS_FIELDS if _is_filled(getattr(profile, name, None)))
    return min(100.0, filled * 100.0 / len(PROFILE_COMPLETENESS_FIELDS))


def extract_top_factors(feedback: Iterable[MatchFeedback], limit: int = TOP_FACTOR_LIMIT) -> List[str]:
    """Most mentioned positive factors in well-rated feedback text.

    Ties keep the vocabulary order.
    """
    counts: Counter = Counter()
    for item in feedback:
        if item.rating < SUCCESS_RATING_THRESHOLD or not item.feedback_text:
            continue
        text = item.feedback_text.lower()
        for factor in COMMON_MATCH_FACTORS:
            if factor in text:
                counts[factor] += 1

    ordered = sorted(counts, key=lambda f: (-counts[f], COMMON_MATCH_FACTORS.index(f)))
    return ordered[:limit]


def _recommendation(rule_id: str) -> InsightRecommendation:
    messages = RECOMMENDATION_MESSAGES[rule_id]
    return InsightRecommendation(rule_id=rule_id, message_zh=messages["zh"], message_en=messages["en"])


def generate_user_recommendations(
    profile: Optional[UserProfile],
    completeness: float,
    activity: Dict[str, int],
    matches: int,
) -> List[InsightRecommendation]:
    """Threshold rules over completeness and activity counts, in a fixed order."""
    rules = []

    if completeness < LOW_COMPLETENESS_THRESHOLD:
        rules.append("complete_profile")
    if activity.get("view", 0) > HIGH_VIEW_COUNT and activity.get("like", 0) < LOW_LIKE_COUNT:
        rules.append("loosen_filters")
    if activity.get("like", 0) > HIGH_LIKE_COUNT and matches < LOW_MATCH_COUNT:
        rules.append("improve_intro")
    if activity.get("connect", 0) < 1:
        rules.append("start_conversations")

    if profile is not None:
        if not _is_filled(profile.bio):
            rules.append("add_bio")
        if not profile.skills:
            rules.append("add_skills")
        if not profile.industries:
            rules.append("add_industries")

    return [_recommendation(rule_id) for rule_id in rules]


# ============================================================================
# Analytics service
# ============================================================================

class MatchingAnalytics:
    """Aggregate metrics over a MatchStore.

    Example:
        analytics = MatchingAnalytics(store)
        metrics = analytics.get_system_metrics("week")
        insights = analytics.get_user_insights("u1")
    """

    def __init__(self, store: MatchStore):
        self.store = store

    def get_system_metrics(self, time_range: str = "month", now: Optional[datetime] = None) -> MatchingMetrics:
        """Matching metrics for matches and interactions created in the window.

        Raises:
            ValueError: Unknown time range
        """
        if time_range not in TIME_RANGE_DAYS:
            raise ValueError(f"Unknown time range '{time_range}', expected one of {list(TIME_RANGE_DAYS)}")

        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=TIME_RANGE_DAYS[time_range])

        matches = self.store.list_matches(since=cutoff)
        match_ids = {m.id for m in matches}
        feedback = [f for f in self.store.list_feedback() if f.match_id in match_ids]
        successful_ids = {f.match_id for f in feedback if f.rating >= SUCCESS_RATING_THRESHOLD}

        interactions = self.store.list_interactions(since=cutoff)
        messaged = sum(1 for e in interactions if e.action == "connect")
        engagement = messaged / len(interactions) if interactions else 0.0

        total = len(matches)
        return MatchingMetrics(
            time_range=time_range,
            window_start=cutoff,
            window_end=now,
            total_matches=total,
            successful_matches=len(successful_ids),
            average_success_rate=len(successful_ids) / total if total else 0.0,
            engagement_rate=engagement,
            conversion_to_messaging=engagement,
            top_matching_factors=extract_top_factors(feedback),
            average_response_time=None,
            not_computed=["average_response_time"],
        )

    def get_user_insights(self, user_id: str) -> UserMatchingInsights:
        profile = self.store.get_profile(user_id)
        completeness = profile_completeness(profile)

        counts = Counter(e.action for e in self.store.list_interactions(user_id=user_id))
        activity = {action: counts.get(action, 0) for action in INTERACTION_ACTIONS}

        matches = sum(
            1 for m in self.store.list_matches(user_id, involving=True) if m.stage in ENGAGED_STAGES
        )

        decided = activity["like"] + activity["skip"]
        match_rate = activity["like"] / decided if decided else 0.0

        return UserMatchingInsights(
            user_id=user_id,
            profile_completeness=completeness,
            activity=activity,
            matches=matches,
            match_rate=match_rate,
            response_rate=None,
            conversation_rate=None,
            recommendations=generate_user_recommendations(profile, completeness, activity, matches),
            not_computed=["response_rate", "conversation_rate"],
        )

    def track_algorithm_performance(
        self,
        algorithm_version: str,
        match_id: int,
        outcome: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Record a match outcome against an algorithm version.

        Returns False when an outcome for this (version, match) already exists.

        Raises:
            ValueError: Unknown outcome
            NotFoundError: Unknown match id
        """
        if outcome not in ALGORITHM_OUTCOMES:
            raise ValueError(f"Unknown outcome '{outcome}', expected one of {list(ALGORITHM_OUTCOMES)}")
        self.store.get_match(match_id)

        recorded = self.store.record_algorithm_outcome(AlgorithmOutcome(
            algorithm_version=algorithm_version,
            match_id=match_id,
            outcome=outcome,
            recorded_at=now or datetime.now(timezone.utc),
        ))
        if not recorded:
            logger.debug("Outcome for match %d under %s already recorded", match_id, algorithm_version)
        return recorded

    def outcome_summary(self, algorithm_version: Optional[str] = None) -> Dict[str, Dict[str, int]]:
        """Outcome counts per algorithm version."""
        summary: Dict[str, Dict[str, int]] = {}
        for item in self.store.list_algorithm_outcomes(algorithm_version):
            per_version = summary.setdefault(item.algorithm_version, {o: 0 for o in ALGORITHM_OUTCOMES})
            per_version[item.outcome] += 1
        return summary

    def get_algorithm_recommendations(
        self,
        now: Optional[datetime] = None,
        algorithm_version: Optional[str] = None,
    ) -> AlgorithmRecommendations:
        """Suggest weight adjustments from the last 30 days of feedback.

        With no feedback in the window nothing is suggested.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=ALGORITHM_REVIEW_DAYS)

        matches = {
            m.id: m for m in self.store.list_matches(since=cutoff)
            if algorithm_version is None or m.algorithm_version == algorithm_version
        }
        feedback = [f for f in self.store.list_feedback() if f.match_id in matches]

        if not feedback:
            return AlgorithmRecommendations(
                current_performance=0.0,
                average_rating=None,
                meet_rate=None,
                continue_rate=None,
                feedback_count=0,
            )

        count = len(feedback)
        rating = sum(f.rating for f in feedback) / count
        meet_rate = sum(1 for f in feedback if f.did_meet) / count
        continue_rate = sum(1 for f in feedback if f.did_continue) / count

        adjustments = []
        tests = []
        for key, failing in (
            ("rating", rating < ALGORITHM_MIN_RATING),
            ("meet_rate", meet_rate < ALGORITHM_MIN_MEET_RATE),
            ("continue_rate", continue_rate < ALGORITHM_MIN_CONTINUE_RATE),
        ):
            if failing:
                adjustment, test = ALGORITHM_ADJUSTMENTS[key]
                adjustments.append(adjustment)
                tests.append(test)

        return AlgorithmRecommendations(
            current_performance=(rating * 0.5 + meet_rate * 0.3 + continue_rate * 0.2) * 20,
            average_rating=rating,
            meet_rate=meet_rate,
            continue_rate=continue_rate,
            feedback_count=count,
            recommended_adjustments=adjustments,
            test_suggestions=tests,
        )
