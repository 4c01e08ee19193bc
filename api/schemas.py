"""Pydantic models for request validation and JSON response schemas."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

RoleIntent = Literal["CEO", "CTO", "CPO", "CMO", "COO", "CFO", "Technical", "Business"]
Seniority = Literal["student", "junior", "mid", "senior"]
RemotePref = Literal["remote_first", "hybrid", "onsite_first"]
Action = Literal["view", "like", "skip", "connect", "meet"]
Stage = Literal["recommended", "contacted", "meeting", "success", "dropped"]
TimeRange = Literal["week", "month", "quarter"]


def _clean_tags(values: list[str]) -> list[str]:
    """Strip blanks and drop case-insensitive duplicates, keeping first spelling."""
    seen = set()
    cleaned = []
    for value in values:
        tag = value.strip()
        if tag and tag.lower() not in seen:
            seen.add(tag.lower())
            cleaned.append(tag)
    return cleaned


# ============================================================================
# Requests
# ============================================================================

class ProfilePayload(BaseModel):
    """Create/update payload for a user profile."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1)
    role_intent: RoleIntent
    seniority: Seniority
    timezone: str = Field(default="UTC", min_length=1, description="IANA name or UTC offset")
    weekly_hours: int = Field(default=40, ge=5, le=80)
    location_city: str = ""
    remote_pref: RemotePref = "hybrid"
    equity_expectation: Optional[float] = Field(default=None, ge=0, le=100)
    salary_expectation: Optional[float] = Field(default=None, ge=0)
    visa_constraint: bool = False
    skills: list[str] = Field(default_factory=list)
    industries: list[str] = Field(default_factory=list)
    tech_stack: list[str] = Field(default_factory=list)
    risk_tolerance: Optional[int] = Field(default=None, ge=1, le=10)
    bio: str = Field(default="", max_length=5000)
    work_style: dict[str, str] = Field(default_factory=dict)
    values: dict[str, str] = Field(default_factory=dict)
    embedding: Optional[list[float]] = None
    last_active_at: Optional[datetime] = None

    @field_validator("skills", "industries", "tech_stack")
    @classmethod
    def clean_tags(cls, value: list[str]) -> list[str]:
        return _clean_tags(value)


class MustHavePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timezone: Optional[str] = None
    weekly_hours_min: Optional[int] = Field(default=None, ge=5, le=80)
    weekly_hours_max: Optional[int] = Field(default=None, ge=5, le=80)
    remote_pref: list[RemotePref] = Field(default_factory=list)
    role_intent: list[RoleIntent] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_hours(self) -> "MustHavePayload":
        if (
            self.weekly_hours_min is not None
            and self.weekly_hours_max is not None
            and self.weekly_hours_min > self.weekly_hours_max
        ):
            raise ValueError("weekly_hours_min must not exceed weekly_hours_max")
        return self


class NiceToHavePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    industries: list[str] = Field(default_factory=list)
    tech_stack: list[str] = Field(default_factory=list)
    seniority: list[Seniority] = Field(default_factory=list)
    equity_min: Optional[float] = Field(default=None, ge=0, le=100)
    equity_max: Optional[float] = Field(default=None, ge=0, le=100)

    @field_validator("industries", "tech_stack")
    @classmethod
    def clean_tags(cls, value: list[str]) -> list[str]:
        return _clean_tags(value)

    @model_validator(mode="after")
    def check_equity_band(self) -> "NiceToHavePayload":
        if self.equity_min is not None and self.equity_max is not None and self.equity_min > self.equity_max:
            raise ValueError("equity_min must not exceed equity_max")
        return self


class DealBreakersPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    no_visa: bool = Field(default=False, description="Reject candidates who need visa sponsorship")
    min_weekly_hours: Optional[int] = Field(default=None, ge=5, le=80)
    exclude_roles: list[RoleIntent] = Field(default_factory=list)


class PreferencePayload(BaseModel):
    """Create/update payload for a user's matching preferences."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1)
    must_have: MustHavePayload = Field(default_factory=MustHavePayload)
    nice_to_have: NiceToHavePayload = Field(default_factory=NiceToHavePayload)
    deal_breakers: DealBreakersPayload = Field(default_factory=DealBreakersPayload)


class InteractionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1)
    target_user_id: str = Field(..., min_length=1)
    action: Action
    latency_ms: Optional[int] = Field(default=None, ge=0)
    quality_score: Optional[int] = Field(default=None, ge=1, le=5)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_target(self) -> "InteractionPayload":
        if self.user_id == self.target_user_id:
            raise ValueError("user_id and target_user_id must differ")
        return self


class FeedbackPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    match_id: int = Field(..., ge=1)
    user_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    did_meet: bool = False
    did_continue: bool = False
    feedback_text: str = Field(default="", max_length=2000)


class WeightVersionPayload(BaseModel):
    """One entry of a weight versions file."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(..., min_length=1)
    description: str = ""
    component_weights: dict[str, float]
    feature_weights: dict[str, float] = Field(default_factory=dict)
    thresholds: dict[str, float] = Field(default_factory=dict)
    max_reasons: int = Field(default=5, ge=1)
    active: bool = True


class WeightFilePayload(BaseModel):
    versions: list[WeightVersionPayload] = Field(default_factory=list)


# ============================================================================
# Responses
# ============================================================================

class MatchReasonResponse(BaseModel):
    """One explanatory reason, strongest first."""

    feature: str = Field(..., description="Feature that produced the reason (e.g., skills_overlap)")
    label_zh: str
    label_en: str
    detail: str = Field(default="", description="Shared tags or a short description")
    shared: list[str] = Field(default_factory=list)
    value: float = Field(..., description="Feature value in [0, 1]")
    contribution: float = Field(..., description="Contribution to the total score")


class RankedCandidateResponse(BaseModel):
    """Response model for a single ranked candidate."""

    rank: int
    user_id: str
    role_intent: str
    seniority: str
    total_score: float
    hard_score: float
    semantic_score: float
    behavior_score: float
    weight_version: str
    reasons: list[MatchReasonResponse] = Field(default_factory=list)
    risk_hints: list[str] = Field(default_factory=list)

    model_config = {
        "json_schema_extra": {
            "example": {
                "rank": 1,
                "user_id": "u_102",
                "role_intent": "CEO",
                "seniority": "senior",
                "total_score": 0.5027,
                "hard_score": 0.8822,
                "semantic_score": 0.2963,
                "behavior_score": 0.5,
                "weight_version": "v1",
                "reasons": [
                    {
                        "feature": "skills_overlap",
                        "label_zh": "技能重合",
                        "label_en": "Shared skills",
                        "detail": "AI",
                        "shared": ["AI"],
                        "value": 0.3333,
                        "contribution": 0.1019,
                    }
                ],
                "risk_hints": ["Different work location preferences"],
            }
        }
    }


class RankedListResponse(BaseModel):
    user_id: str
    weight_version: str
    total: int = Field(..., description="Number of candidates returned")
    candidates: list[RankedCandidateResponse]


class MatchResultResponse(BaseModel):
    id: int
    user_id: str
    target_user_id: str
    algorithm_version: str
    total_score: float
    hard_score: float
    semantic_score: float
    behavior_score: float
    stage: Stage
    reasons: list[MatchReasonResponse] = Field(default_factory=list)
    risk_hints: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    expires_at: datetime


class MatchingMetricsResponse(BaseModel):
    time_range: TimeRange
    window_start: datetime
    window_end: datetime
    total_matches: int
    successful_matches: int
    average_success_rate: float
    engagement_rate: float
    conversion_to_messaging: float
    top_matching_factors: list[str] = Field(default_factory=list)
    average_response_time: Optional[float] = None
    not_computed: list[str] = Field(
        default_factory=list, description="Metrics that are reported but not computed yet"
    )


class RecommendationResponse(BaseModel):
    rule_id: str
    message_zh: str
    message_en: str


class UserInsightsResponse(BaseModel):
    user_id: str
    profile_completeness: float = Field(..., ge=0, le=100)
    activity: dict[str, int] = Field(..., description="Interaction counts by action type")
    matches: int
    match_rate: Optional[float] = None
    response_rate: Optional[float] = None
    conversation_rate: Optional[float] = None
    recommendations: list[RecommendationResponse] = Field(default_factory=list)
    not_computed: list[str] = Field(default_factory=list)


class AlgorithmRecommendationsResponse(BaseModel):
    current_performance: float
    average_rating: Optional[float] = None
    meet_rate: Optional[float] = None
    continue_rate: Optional[float] = None
    feedback_count: int
    recommended_adjustments: list[str] = Field(default_factory=list)
    test_suggestions: list[str] = Field(default_factory=list)


class BatchRunResponse(BaseModel):
    id: int
    run_type: Literal["daily", "event", "manual"]
    status: Literal["running", "completed", "failed"]
    algorithm_version: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    total_users: int
    matches_generated: int
    run_metrics: dict[str, Any] = Field(default_factory=dict)
    error: str = ""


class ErrorResponse(BaseModel):
    """Error response model."""

    detail: str = Field(..., description="Error message")
    errors: list[dict[str, Any]] = Field(default_factory=list, description="Field-level validation errors")
