"""Conversion between request/response schemas and the internal dataclasses."""

from dataclasses import asdict
from typing import Any, Dict, Iterable, List, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from core.errors import MatchingError, ProfileValidationError
from core.models import (
    AlgorithmRecommendations,
    BatchMatchingRun,
    DealBreakers,
    MatchingMetrics,
    MatchingPreference,
    MatchReason,
    MatchResult,
    MustHave,
    NiceToHave,
    RankedCandidate,
    UserMatchingInsights,
    UserProfile,
)

from .schemas import (
    AlgorithmRecommendationsResponse,
    BatchRunResponse,
    ErrorResponse,
    MatchingMetricsResponse,
    MatchReasonResponse,
    MatchResultResponse,
    PreferencePayload,
    ProfilePayload,
    RankedCandidateResponse,
    RankedListResponse,
    RecommendationResponse,
    UserInsightsResponse,
)

PayloadT = TypeVar("PayloadT", bound=BaseModel)

SCORE_DIGITS = 4


def validate_payload(model: Type[PayloadT], data: Union[PayloadT, Dict[str, Any]]) -> PayloadT:
    """Validate raw input against a payload model.

    Raises:
        ProfileValidationError: With pydantic's field-level errors attached
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = e.errors(include_url=False, include_context=False)
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "<root>" for err in errors)
        raise ProfileValidationError(f"Invalid {model.__name__}: {fields}", errors=errors) from e


def validate_profile(profile: UserProfile) -> UserProfile:
    """Check an already-built profile against the same bounds as a payload."""
    data = {name: getattr(profile, name) for name in ProfilePayload.model_fields}
    validate_payload(ProfilePayload, data)
    return profile


def validate_preferences(preferences: MatchingPreference) -> MatchingPreference:
    data = {
        "user_id": preferences.user_id,
        "must_have": asdict(preferences.must_have),
        "nice_to_have": asdict(preferences.nice_to_have),
        "deal_breakers": asdict(preferences.deal_breakers),
    }
    validate_payload(PreferencePayload, data)
    return preferences


# ============================================================================
# Payload -> dataclass
# ============================================================================

def profile_from_payload(payload: ProfilePayload) -> UserProfile:
    return UserProfile(**payload.model_dump())


def preferences_from_payload(payload: PreferencePayload) -> MatchingPreference:
    return MatchingPreference(
        user_id=payload.user_id,
        must_have=MustHave(**payload.must_have.model_dump()),
        nice_to_have=NiceToHave(**payload.nice_to_have.model_dump()),
        deal_breakers=DealBreakers(**payload.deal_breakers.model_dump()),
    )


# ============================================================================
# Dataclass -> response
# ============================================================================

def _score(value: float) -> float:
    return round(float(value), SCORE_DIGITS)


def reason_to_response(reason: MatchReason) -> MatchReasonResponse:
    return MatchReasonResponse(
        feature=reason.feature,
        label_zh=reason.label_zh,
        label_en=reason.label_en,
        detail=reason.detail,
        shared=list(reason.shared),
        value=_score(reason.value),
        contribution=_score(reason.contribution),
    )


def ranked_candidate_to_response(candidate: RankedCandidate) -> RankedCandidateResponse:
    breakdown = candidate.breakdown
    return RankedCandidateResponse(
        rank=candidate.rank,
        user_id=candidate.profile.user_id,
        role_intent=candidate.profile.role_intent,
        seniority=candidate.profile.seniority,
        total_score=_score(breakdown.total_score),
        hard_score=_score(breakdown.hard_score),
        semantic_score=_score(breakdown.semantic_score),
        behavior_score=_score(breakdown.behavior_score),
        weight_version=breakdown.weight_version,
        reasons=[reason_to_response(r) for r in breakdown.reasons],
        risk_hints=list(breakdown.risk_hints),
    )


def ranked_list_to_response(
    user_id: str,
    weight_version: str,
    candidates: Iterable[RankedCandidate],
) -> RankedListResponse:
    items = [ranked_candidate_to_response(c) for c in candidates]
    return RankedListResponse(user_id=user_id, weight_version=weight_version, total=len(items), candidates=items)


def match_to_response(match: MatchResult) -> MatchResultResponse:
    return MatchResultResponse(
        id=match.id,
        user_id=match.user_id,
        target_user_id=match.target_user_id,
        algorithm_version=match.algorithm_version,
        total_score=_score(match.total_score),
        hard_score=_score(match.hard_score),
        semantic_score=_score(match.semantic_score),
        behavior_score=_score(match.behavior_score),
        stage=match.stage,
        reasons=[reason_to_response(r) for r in match.reasons],
        risk_hints=list(match.risk_hints),
        created_at=match.created_at,
        updated_at=match.updated_at,
        expires_at=match.expires_at,
    )


def metrics_to_response(metrics: MatchingMetrics) -> MatchingMetricsResponse:
    return MatchingMetricsResponse(**asdict(metrics))


def insights_to_response(insights: UserMatchingInsights) -> UserInsightsResponse:
    data = asdict(insights)
    data["recommendations"] = [RecommendationResponse(**r) for r in data["recommendations"]]
    return UserInsightsResponse(**data)


def algorithm_recommendations_to_response(recs: AlgorithmRecommendations) -> AlgorithmRecommendationsResponse:
    return AlgorithmRecommendationsResponse(**asdict(recs))


def batch_run_to_response(run: BatchMatchingRun) -> BatchRunResponse:
    return BatchRunResponse(**asdict(run))


def error_to_response(error: MatchingError) -> ErrorResponse:
    return ErrorResponse(detail=str(error), errors=list(getattr(error, "errors", []) or []))


def dump(models: Union[BaseModel, List[BaseModel]]) -> Any:
    """JSON-ready dict (or list of dicts) for one or more response models."""
    if isinstance(models, list):
        return [m.model_dump(mode="json") for m in models]
    return models.model_dump(mode="json")
