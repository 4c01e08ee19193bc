"""
Match Scorer - combine pair features into an explainable weighted score.

    component_score = weighted mean of the component's applicable features
    total = w_hard * hard + w_semantic * semantic + w_behavior * behavior

The scorer is a pure function of its inputs and the weight configuration it
was built with; persisting results is the caller's job.

Disqualification: a failed must-have or deal-breaker forces both the hard
score and the total to ``thresholds.disqualified_score``, which a valid
configuration keeps below ``thresholds.min_score``.
"""

import logging
from typing import Dict, List, Optional

from core.constants import (
    BEHAVIOR_NEUTRAL_SCORE,
    EQUITY_GAP_HINT,
    FEATURE_COMPONENTS,
    FEATURE_LABELS,
    SALARY_GAP_RATIO_HINT,
    WEEKLY_HOURS_GAP_HINT,
)
from core.models import (
    FeatureVector,
    MatchingPreference,
    MatchReason,
    ScoreBreakdown,
    UserProfile,
)
from feature_extraction import InteractionHistory, extract_features, salary_gap_ratio
from weight_config import COMPONENTS, WeightConfiguration

logger = logging.getLogger(__name__)


class MatchScorer:
    """Score (profile, candidate) pairs under one weight configuration.

    Example:
        scorer = MatchScorer(registry.resolve("v1"))
        breakdown = scorer.score_pair(profile, candidate, preferences, history)
        print(breakdown.total_score, [r.feature for r in breakdown.reasons])
    """

    def __init__(self, weights: WeightConfiguration):
        self.weights = weights

    @property
    def version(self) -> str:
        return self.weights.version

    def score_pair(
        self,
        profile: UserProfile,
        candidate: UserProfile,
        preferences: Optional[MatchingPreference] = None,
        history: Optional[InteractionHistory] = None,
    ) -> ScoreBreakdown:
        features = extract_features(profile, candidate, preferences, history)
        breakdown = self.score_features(profile.user_id, candidate.user_id, features)
        breakdown.risk_hints.extend(self._risk_hints(profile, candidate, features))
        return breakdown

    def score_features(self, user_id: str, candidate_id: str, features: FeatureVector) -> ScoreBreakdown:
        """Score an already extracted feature vector."""
        component_scores: Dict[str, float] = {}
        effective_weights: Dict[str, float] = {}

        for component in COMPONENTS:
            applicable = [name for name in features.values if FEATURE_COMPONENTS.get(name) == component]
            normalized = self.weights.normalized_feature_weights(component, applicable)
            if not normalized:
                component_scores[component] = BEHAVIOR_NEUTRAL_SCORE
                continue
            component_scores[component] = sum(
                weight * features.values[name] for name, weight in normalized.items()
            )
            component_weight = self.weights.component_weights[component]
            for name, weight in normalized.items():
                effective_weights[name] = component_weight * weight

        total = sum(
            self.weights.component_weights[c] * component_scores[c] for c in COMPONENTS
        )

        if not features.constraints_passed:
            failed = features.failed_constraints
            logger.debug(
                "Pair %s/%s disqualified by %s", user_id, candidate_id, [c.name for c in failed]
            )
            return ScoreBreakdown(
                user_id=user_id,
                candidate_id=candidate_id,
                weight_version=self.weights.version,
                hard_score=self.weights.disqualified_score,
                semantic_score=component_scores["semantic"],
                behavior_score=component_scores["behavior"],
                total_score=self.weights.disqualified_score,
                disqualified=True,
                risk_hints=[
                    f"Does not meet required criteria: {c.name}" + (f" ({c.detail})" if c.detail else "")
                    for c in failed
                ],
                constraints=list(features.constraints),
                features=dict(features.values),
            )

        return ScoreBreakdown(
            user_id=user_id,
            candidate_id=candidate_id,
            weight_version=self.weights.version,
            hard_score=component_scores["hard"],
            semantic_score=component_scores["semantic"],
            behavior_score=component_scores["behavior"],
            total_score=total,
            reasons=self._reasons(features, effective_weights),
            constraints=list(features.constraints),
            features=dict(features.values),
        )

    def _reasons(self, features: FeatureVector, effective_weights: Dict[str, float]) -> List[MatchReason]:
        """Reasons for positively contributing features.

        Ordered by contribution, then effective weight (both descending),
        then feature name.
        """
        reasons = []
        for name, value in features.values.items():
            if name in features.neutral:
                continue
            weight = effective_weights.get(name, 0.0)
            contribution = weight * value
            if contribution <= 0:
                continue

            shared = features.shared.get(name, [])
            detail = ", ".join(shared) if shared else features.details.get(name, "")
            labels = FEATURE_LABELS.get(name, {"zh": name, "en": name})
            reasons.append(MatchReason(
                feature=name,
                value=value,
                contribution=contribution,
                weight=weight,
                label_zh=labels["zh"],
                label_en=labels["en"],
                detail=detail,
                shared=list(shared),
            ))

        reasons.sort(key=lambda r: (-r.contribution, -r.weight, r.feature))
        return reasons[: self.weights.max_reasons]

    @staticmethod
    def _risk_hints(profile: UserProfile, candidate: UserProfile, features: FeatureVector) -> List[str]:
        hints = []

        if profile.equity_expectation is not None and candidate.equity_expectation is not None:
            gap = abs(profile.equity_expectation - candidate.equity_expectation)
            if gap > EQUITY_GAP_HINT:
                hints.append(f"Large equity expectation gap ({gap:g}% difference)")

        if profile.remote_pref != candidate.remote_pref:
            hints.append("Different work location preferences")

        if abs(profile.weekly_hours - candidate.weekly_hours) > WEEKLY_HOURS_GAP_HINT:
            hints.append("Significant time commitment difference")

        ratio = salary_gap_ratio(profile.salary_expectation, candidate.salary_expectation)
        if ratio is not None and ratio > SALARY_GAP_RATIO_HINT:
            hints.append("Large salary expectation gap")

        if "timezone_overlap" in features.values and features.values["timezone_overlap"] == 0.0:
            hints.append("No working-hour overlap between timezones")

        return hints
