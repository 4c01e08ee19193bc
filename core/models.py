"""
Shared data models for the Latent Space match scoring pipeline.

This module contains the core data classes used throughout the pipeline:
profiles and preferences (inputs), interaction and feedback records
(append-only history), and the score breakdowns and match results the
scorer and ranker produce.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .constants import TERMINAL_STAGES


# ============================================================================
# Profiles and preferences
# ============================================================================

@dataclass
class UserProfile:
    """Structured co-founder profile for one user.

    Numeric fields are validated against their declared ranges at the
    API boundary (see api/schemas.py) before a profile is built.
    ``embedding`` is derived from the profile text and may be missing.
    """
    user_id: str
    role_intent: str
    seniority: str
    timezone: str = "UTC"
    weekly_hours: int = 40
    location_city: str = ""
    remote_pref: str = "hybrid"
    equity_expectation: Optional[float] = None
    salary_expectation: Optional[float] = None
    visa_constraint: bool = False
    skills: List[str] = field(default_factory=list)
    industries: List[str] = field(default_factory=list)
    tech_stack: List[str] = field(default_factory=list)
    risk_tolerance: Optional[int] = None
    bio: str = ""
    work_style: Dict[str, str] = field(default_factory=dict)
    values: Dict[str, str] = field(default_factory=dict)
    embedding: Optional[List[float]] = None
    last_active_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def has_embedding(self) -> bool:
        return bool(self.embedding)


@dataclass
class MustHave:
    """Hard filters a candidate must satisfy."""
    timezone: Optional[str] = None
    weekly_hours_min: Optional[int] = None
    weekly_hours_max: Optional[int] = None
    remote_pref: List[str] = field(default_factory=list)
    role_intent: List[str] = field(default_factory=list)


@dataclass
class NiceToHave:
    """Soft preferences; each satisfied entry boosts the semantic score."""
    industries: List[str] = field(default_factory=list)
    tech_stack: List[str] = field(default_factory=list)
    seniority: List[str] = field(default_factory=list)
    equity_min: Optional[float] = None
    equity_max: Optional[float] = None

    def is_empty(self) -> bool:
        return not (
            self.industries
            or self.tech_stack
            or self.seniority
            or self.equity_min is not None
            or self.equity_max is not None
        )


@dataclass
class DealBreakers:
    """Hard exclusions. ``no_visa`` rejects candidates who need sponsorship."""
    no_visa: bool = False
    min_weekly_hours: Optional[int] = None
    exclude_roles: List[str] = field(default_factory=list)


@dataclass
class MatchingPreference:
    user_id: str
    must_have: MustHave = field(default_factory=MustHave)
    nice_to_have: NiceToHave = field(default_factory=NiceToHave)
    deal_breakers: DealBreakers = field(default_factory=DealBreakers)
    updated_at: Optional[datetime] = None


# ============================================================================
# History records
# ============================================================================

@dataclass
class InteractionEvent:
    """One action from ``user_id`` toward ``target_user_id``.

    Append-only. ``quality_score`` is the only field that may change after
    creation, and only once (backfilled after a meeting).
    """
    id: int
    user_id: str
    target_user_id: str
    action: str
    created_at: datetime
    latency_ms: Optional[int] = None
    quality_score: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MatchFeedback:
    id: int
    match_id: int
    user_id: str
    rating: int
    created_at: datetime
    did_meet: bool = False
    did_continue: bool = False
    feedback_text: str = ""


@dataclass
class AlgorithmOutcome:
    """Outcome of one match, attributed to the weight version that produced it."""
    algorithm_version: str
    match_id: int
    outcome: str
    recorded_at: datetime


# ============================================================================
# Scoring results
# ============================================================================

@dataclass
class ConstraintCheck:
    """Result of one must-have or deal-breaker predicate."""
    name: str
    source: str  # "must_have" or "deal_breaker"
    passed: bool
    detail: str = ""


@dataclass
class FeatureVector:
    """Feature values for one (profile, candidate) pair.

    ``values`` holds every applicable feature in [0, 1]. Features listed in
    ``neutral`` were filled with a neutral default because data was missing.
    """
    values: Dict[str, float] = field(default_factory=dict)
    neutral: List[str] = field(default_factory=list)
    shared: Dict[str, List[str]] = field(default_factory=dict)
    details: Dict[str, str] = field(default_factory=dict)
    constraints: List[ConstraintCheck] = field(default_factory=list)

    @property
    def constraints_passed(self) -> bool:
        return all(check.passed for check in self.constraints)

    @property
    def failed_constraints(self) -> List[ConstraintCheck]:
        return [check for check in self.constraints if not check.passed]


@dataclass
class MatchReason:
    """A human-readable reason tied to one contributing feature."""
    feature: str
    value: float
    contribution: float
    weight: float
    label_zh: str
    label_en: str
    detail: str = ""
    shared: List[str] = field(default_factory=list)


@dataclass
class ScoreBreakdown:
    user_id: str
    candidate_id: str
    weight_version: str
    hard_score: float
    semantic_score: float
    behavior_score: float
    total_score: float
    disqualified: bool = False
    reasons: List[MatchReason] = field(default_factory=list)
    risk_hints: List[str] = field(default_factory=list)
    constraints: List[ConstraintCheck] = field(default_factory=list)
    features: Dict[str, float] = field(default_factory=dict)


@dataclass
class RankedCandidate:
    rank: int
    profile: UserProfile
    breakdown: ScoreBreakdown

    @property
    def user_id(self) -> str:
        return self.profile.user_id

    @property
    def total_score(self) -> float:
        return self.breakdown.total_score


@dataclass
class MatchResult:
    """Persisted score for an ordered (user, target) pair.

    Unique per (user_id, target_user_id, algorithm_version). Re-scoring
    overwrites scores and timestamps but never the lifecycle stage.
    """
    id: int
    user_id: str
    target_user_id: str
    algorithm_version: str
    total_score: float
    hard_score: float
    semantic_score: float
    behavior_score: float
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    stage: str = "recommended"
    reasons: List[MatchReason] = field(default_factory=list)
    risk_hints: List[str] = field(default_factory=list)

    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_active(self, now: datetime) -> bool:
        """Not dropped and not expired."""
        return self.stage != "dropped" and not self.is_expired(now)


@dataclass
class BatchMatchingRun:
    id: int
    run_type: str
    algorithm_version: str
    started_at: datetime
    status: str = "running"
    completed_at: Optional[datetime] = None
    total_users: int = 0
    matches_generated: int = 0
    run_metrics: Dict[str, Any] = field(default_factory=dict)
    error: str = ""


# ============================================================================
# Analytics results
# ============================================================================

@dataclass
class MatchingMetrics:
    """System-wide matching metrics over one time window.

    Rates are fractions in [0, 1]. Metrics that are not computed yet are
    reported as None and listed in ``not_computed``.
    """
    time_range: str
    window_start: datetime
    window_end: datetime
    total_matches: int
    successful_matches: int
    average_success_rate: float
    engagement_rate: float
    conversion_to_messaging: float
    top_matching_factors: List[str] = field(default_factory=list)
    average_response_time: Optional[float] = None
    not_computed: List[str] = field(default_factory=list)


@dataclass
class InsightRecommendation:
    rule_id: str
    message_zh: str
    message_en: str


@dataclass
class UserMatchingInsights:
    user_id: str
    profile_completeness: float
    activity: Dict[str, int] = field(default_factory=dict)
    matches: int = 0
    match_rate: Optional[float] = None
    response_rate: Optional[float] = None
    conversation_rate: Optional[float] = None
    recommendations: List[InsightRecommendation] = field(default_factory=list)
    not_computed: List[str] = field(default_factory=list)


@dataclass
class AlgorithmRecommendations:
    current_performance: float
    average_rating: Optional[float]
    meet_rate: Optional[float]
    continue_rate: Optional[float]
    feedback_count: int
    recommended_adjustments: List[str] = field(default_factory=list)
    test_suggestions: List[str] = field(default_factory=list)
