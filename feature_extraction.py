"""
Feature Extraction Module - turn a (profile, candidate) pair into comparable features.

Every feature value lies in [0, 1]. Features without data on either side are
left out of the FeatureVector (their component renormalizes), except the
embedding and behavior features, which fall back to a neutral value and are
marked as such so the scorer emits no reason for them.

Feature groups:
- Categorical overlap: Jaccard over skills / industries / tech stack
- Numeric distance: weekly hours, equity, risk tolerance, salary
- Hard constraints: must-have and deal-breaker predicates
- Semantic similarity: cosine similarity of profile embeddings
- Behavior: interaction history between the pair, or toward similar profiles
"""

import logging
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import numpy as np

from core.constants import (
    BEHAVIOR_ACTION_DELTAS,
    BEHAVIOR_AFFINITY_WEIGHT,
    BEHAVIOR_NEUTRAL_SCORE,
    BEHAVIOR_QUALITY_STEP,
    EQUITY_RANGE,
    NEGATIVE_ACTIONS,
    NEUTRAL_SEMANTIC_SCORE,
    POSITIVE_ACTIONS,
    REMOTE_COMPATIBILITY,
    RISK_TOLERANCE_RANGE,
    ROLE_COMPLEMENT_MAP,
    WEEKLY_HOURS_RANGE,
    WORKDAY_HOURS,
)
from core.models import (
    ConstraintCheck,
    FeatureVector,
    InteractionEvent,
    MatchingPreference,
    NiceToHave,
    UserProfile,
)

logger = logging.getLogger(__name__)

# Offsets are read at a fixed instant so scoring does not depend on the
# calendar date (northern-hemisphere standard time).
OFFSET_REFERENCE = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

_OFFSET_PATTERN = re.compile(r"^(?:UTC|GMT)?\s*([+-])(\d{1,2})(?::?(\d{2}))?$", re.IGNORECASE)


# ============================================================================
# Categorical and numeric features
# ============================================================================

def jaccard_overlap(a: Iterable[str], b: Iterable[str]) -> Tuple[float, List[str]]:
    """Jaccard similarity of two tag sets.

    Tags are compared case-insensitively; shared tags are returned in the
    casing of ``a``, sorted.

    Returns:
        Tuple of (similarity, shared tags). Two empty sets give 0.0.
    """
    left = {tag.strip().lower(): tag.strip() for tag in a if tag and tag.strip()}
    right = {tag.strip().lower(): tag.strip() for tag in b if tag and tag.strip()}

    if not left or not right:
        return 0.0, []

    shared_keys = left.keys() & right.keys()
    union = left.keys() | right.keys()
    shared = sorted(left[key] for key in shared_keys)
    return len(shared_keys) / len(union), shared


def normalized_distance(a: float, b: float, value_range: Tuple[float, float]) -> float:
    """|a - b| scaled by the field's declared range and clipped to [0, 1]."""
    low, high = value_range
    span = high - low
    if span <= 0:
        raise ValueError(f"Invalid range: {value_range}")
    return float(min(1.0, max(0.0, abs(a - b) / span)))


def numeric_similarity(
    a: Optional[float],
    b: Optional[float],
    value_range: Tuple[float, float],
) -> Optional[float]:
    """1 - normalized distance, or None when either side is missing."""
    if a is None or b is None:
        return None
    return 1.0 - normalized_distance(a, b, value_range)


def salary_gap_ratio(a: Optional[float], b: Optional[float]) -> Optional[float]:
    """Relative salary gap |a - b| / max(a, b); salary has no upper bound."""
    if a is None or b is None:
        return None
    top = max(a, b)
    if top <= 0:
        return 0.0
    return abs(a - b) / top


def role_complement(role: str, candidate_role: str) -> float:
    """1.0 when the candidate's role is one ``role`` is looking for."""
    return 1.0 if candidate_role in ROLE_COMPLEMENT_MAP.get(role, []) else 0.0


def remote_compatibility(pref: str, candidate_pref: str) -> float:
    key = (pref, candidate_pref)
    if key in REMOTE_COMPATIBILITY:
        return REMOTE_COMPATIBILITY[key]
    return REMOTE_COMPATIBILITY.get((candidate_pref, pref), 0.0)


# ============================================================================
# Timezones
# ============================================================================

def utc_offset_hours(tz_name: str) -> Optional[float]:
    """UTC offset in hours for an IANA name or a "UTC+8" / "+05:30" string.

    Returns None for unknown names.
    """
    if not tz_name:
        return None
    name = tz_name.strip()
    if name.upper() in ("UTC", "GMT", "Z"):
        return 0.0

    match = _OFFSET_PATTERN.match(name)
    if match:
        sign, hours, minutes = match.groups()
        value = int(hours) + int(minutes or 0) / 60.0
        return -value if sign == "-" else value

    try:
        offset = OFFSET_REFERENCE.astimezone(ZoneInfo(name)).utcoffset()
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("Unknown timezone %r", tz_name)
        return None
    return offset.total_seconds() / 3600.0 if offset is not None else None


def timezone_overlap(tz_a: str, tz_b: str) -> Optional[float]:
    """Shared fraction of an 8-hour working day, or None if either zone is unknown."""
    if tz_a and tz_a == tz_b:
        return 1.0
    offset_a = utc_offset_hours(tz_a)
    offset_b = utc_offset_hours(tz_b)
    if offset_a is None or offset_b is None:
        return None
    diff = abs(offset_a - offset_b) % 24
    diff = min(diff, 24 - diff)
    return max(0.0, WORKDAY_HOURS - diff) / WORKDAY_HOURS


def same_timezone(tz_a: str, tz_b: str) -> bool:
    """True when both names resolve to the same UTC offset."""
    if tz_a == tz_b:
        return True
    offset_a = utc_offset_hours(tz_a)
    offset_b = utc_offset_hours(tz_b)
    return offset_a is not None and offset_a == offset_b


# ============================================================================
# Semantic similarity
# ============================================================================

def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> Optional[float]:
    """Cosine similarity in [-1, 1], or None when a vector is missing or unusable."""
    if not a or not b:
        return None

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.shape != vec_b.shape:
        logger.warning("Embedding dimension mismatch: %s vs %s", vec_a.shape, vec_b.shape)
        return None

    norm_product = np.linalg.norm(vec_a) * np.linalg.norm(vec_b)
    if norm_product == 0:
        return None

    return float(np.clip(np.dot(vec_a, vec_b) / norm_product, -1.0, 1.0))


def embedding_similarity(profile: UserProfile, candidate: UserProfile) -> Tuple[float, bool]:
    """Cosine similarity clipped to [0, 1].

    Returns:
        Tuple of (score, is_neutral). A missing embedding yields the neutral 0.5.
    """
    similarity = cosine_similarity(profile.embedding, candidate.embedding)
    if similarity is None:
        return NEUTRAL_SEMANTIC_SCORE, True
    return max(0.0, similarity), False


# ============================================================================
# Preferences
# ============================================================================

def nice_to_have_match(nice: NiceToHave, candidate: UserProfile) -> Optional[Tuple[float, List[str]]]:
    """Fraction of the stated nice-to-haves the candidate satisfies.

    Returns None when no nice-to-have is stated.
    """
    if nice.is_empty():
        return None

    satisfied = 0
    stated = 0
    matched: List[str] = []

    if nice.industries:
        stated += 1
        _, shared = jaccard_overlap(nice.industries, candidate.industries)
        if shared:
            satisfied += 1
            matched.extend(shared)

    if nice.tech_stack:
        stated += 1
        _, shared = jaccard_overlap(nice.tech_stack, candidate.tech_stack)
        if shared:
            satisfied += 1
            matched.extend(shared)

    if nice.seniority:
        stated += 1
        if candidate.seniority in nice.seniority:
            satisfied += 1
            matched.append(candidate.seniority)

    if nice.equity_min is not None or nice.equity_max is not None:
        stated += 1
        equity = candidate.equity_expectation
        low = nice.equity_min if nice.equity_min is not None else EQUITY_RANGE[0]
        high = nice.equity_max if nice.equity_max is not None else EQUITY_RANGE[1]
        if equity is not None and low <= equity <= high:
            satisfied += 1
            matched.append(f"{equity:g}%")

    return satisfied / stated, matched


def check_constraints(
    preferences: Optional[MatchingPreference],
    profile: UserProfile,
    candidate: UserProfile,
) -> List[ConstraintCheck]:
    """Evaluate every stated must-have and deal-breaker predicate.

    Only predicates that are actually stated produce a check, so an empty
    preference set yields an empty (passing) list.
    """
    if preferences is None:
        return []

    checks: List[ConstraintCheck] = []
    must = preferences.must_have
    deal = preferences.deal_breakers

    if must.timezone:
        checks.append(ConstraintCheck(
            name="timezone",
            source="must_have",
            passed=same_timezone(must.timezone, candidate.timezone),
            detail=f"requires {must.timezone}, candidate in {candidate.timezone}",
        ))

    if must.weekly_hours_min is not None or must.weekly_hours_max is not None:
        low = must.weekly_hours_min if must.weekly_hours_min is not None else WEEKLY_HOURS_RANGE[0]
        high = must.weekly_hours_max if must.weekly_hours_max is not None else WEEKLY_HOURS_RANGE[1]
        checks.append(ConstraintCheck(
            name="weekly_hours",
            source="must_have",
            passed=low <= candidate.weekly_hours <= high,
            detail=f"requires {low}-{high}h/week, candidate offers {candidate.weekly_hours}h",
        ))

    if must.remote_pref:
        checks.append(ConstraintCheck(
            name="remote_pref",
            source="must_have",
            passed=candidate.remote_pref in must.remote_pref,
            detail=f"requires {'/'.join(must.remote_pref)}, candidate is {candidate.remote_pref}",
        ))

    if must.role_intent:
        checks.append(ConstraintCheck(
            name="role_intent",
            source="must_have",
            passed=candidate.role_intent in must.role_intent,
            detail=f"requires {'/'.join(must.role_intent)}, candidate is {candidate.role_intent}",
        ))

    if deal.no_visa:
        checks.append(ConstraintCheck(
            name="no_visa",
            source="deal_breaker",
            passed=not candidate.visa_constraint,
            detail="candidate requires visa sponsorship" if candidate.visa_constraint else "",
        ))

    if deal.min_weekly_hours is not None:
        checks.append(ConstraintCheck(
            name="min_weekly_hours",
            source="deal_breaker",
            passed=candidate.weekly_hours >= deal.min_weekly_hours,
            detail=f"minimum {deal.min_weekly_hours}h/week, candidate offers {candidate.weekly_hours}h",
        ))

    if deal.exclude_roles:
        checks.append(ConstraintCheck(
            name="exclude_roles",
            source="deal_breaker",
            passed=candidate.role_intent not in deal.exclude_roles,
            detail=f"excluded roles: {', '.join(deal.exclude_roles)}",
        ))

    return checks


# ============================================================================
# Behavior
# ============================================================================

class InteractionHistory:
    """Index of outgoing interactions, used for the behavior feature.

    Built once per scoring call from a snapshot of the interaction log and
    the role intent of each target user. Views are not indexed.

    Example:
        history = InteractionHistory(events, {"u2": "CEO", "u3": "CTO"})
        score, neutral = history.behavior_score("u1", candidate)
    """

    def __init__(
        self,
        events: Iterable[InteractionEvent] = (),
        target_roles: Optional[Dict[str, str]] = None,
    ):
        self.target_roles = dict(target_roles or {})
        self._by_pair: Dict[Tuple[str, str], List[InteractionEvent]] = defaultdict(list)
        self._by_user: Dict[str, List[InteractionEvent]] = defaultdict(list)
        for event in events:
            # impressions carry no outcome
            if event.action == "view":
                continue
            self._by_pair[(event.user_id, event.target_user_id)].append(event)
            self._by_user[event.user_id].append(event)

    def pair_events(self, user_id: str, target_user_id: str) -> List[InteractionEvent]:
        return self._by_pair.get((user_id, target_user_id), [])

    def role_affinity(self, user_id: str, role_intent: str) -> Optional[float]:
        """(positive - negative) / total over the user's actions toward a role.

        Returns None when the user never acted on a profile with that role.
        """
        positive = negative = total = 0
        for event in self._by_user.get(user_id, []):
            if self.target_roles.get(event.target_user_id) != role_intent:
                continue
            total += 1
            if event.action in POSITIVE_ACTIONS:
                positive += 1
            elif event.action in NEGATIVE_ACTIONS:
                negative += 1
        if total == 0:
            return None
        return (positive - negative) / total

    def behavior_score(self, user_id: str, candidate: UserProfile) -> Tuple[float, bool]:
        """Behavior score in [0, 1] and whether it is the neutral default."""
        events = self.pair_events(user_id, candidate.user_id)
        if events:
            return pair_behavior_score(events), False

        affinity = self.role_affinity(user_id, candidate.role_intent)
        if affinity is None:
            return BEHAVIOR_NEUTRAL_SCORE, True
        score = BEHAVIOR_NEUTRAL_SCORE + BEHAVIOR_AFFINITY_WEIGHT * affinity
        return float(min(1.0, max(0.0, score))), False


def pair_behavior_score(events: Iterable[InteractionEvent]) -> float:
    """Neutral 0.5 adjusted by each past action toward this candidate, clamped to [0, 1]."""
    score = BEHAVIOR_NEUTRAL_SCORE
    for event in events:
        score += BEHAVIOR_ACTION_DELTAS.get(event.action, 0.0)
        if event.action == "meet" and event.quality_score:
            score += (event.quality_score - 3) * BEHAVIOR_QUALITY_STEP
    return float(min(1.0, max(0.0, score)))


# ============================================================================
# Pair feature vector
# ============================================================================

def extract_features(
    profile: UserProfile,
    candidate: UserProfile,
    preferences: Optional[MatchingPreference] = None,
    history: Optional[InteractionHistory] = None,
) -> FeatureVector:
    """Compute the full feature vector for one (profile, candidate) pair."""
    features = FeatureVector()
    values = features.values

    # Hard component
    values["role_complement"] = role_complement(profile.role_intent, candidate.role_intent)
    if values["role_complement"]:
        features.details["role_complement"] = f"{profile.role_intent} + {candidate.role_intent}"

    overlap = timezone_overlap(profile.timezone, candidate.timezone)
    if overlap is None:
        values["timezone_overlap"] = 0.5
        features.neutral.append("timezone_overlap")
    else:
        values["timezone_overlap"] = overlap
        features.details["timezone_overlap"] = f"{round(overlap * WORKDAY_HOURS)}h daily overlap"

    values["availability_fit"] = numeric_similarity(
        profile.weekly_hours, candidate.weekly_hours, WEEKLY_HOURS_RANGE
    )
    features.details["availability_fit"] = f"{candidate.weekly_hours}h/week"

    values["remote_compat"] = remote_compatibility(profile.remote_pref, candidate.remote_pref)
    features.details["remote_compat"] = candidate.remote_pref

    equity = numeric_similarity(
        profile.equity_expectation, candidate.equity_expectation, EQUITY_RANGE
    )
    if equity is not None:
        values["equity_alignment"] = equity
        features.details["equity_alignment"] = f"{candidate.equity_expectation:g}%"

    risk = numeric_similarity(
        profile.risk_tolerance, candidate.risk_tolerance, RISK_TOLERANCE_RANGE
    )
    if risk is not None:
        values["risk_alignment"] = risk

    # Semantic component
    for feature, left, right in (
        ("skills_overlap", profile.skills, candidate.skills),
        ("industry_overlap", profile.industries, candidate.industries),
        ("tech_stack_overlap", profile.tech_stack, candidate.tech_stack),
    ):
        score, shared = jaccard_overlap(left, right)
        values[feature] = score
        if shared:
            features.shared[feature] = shared

    semantic, neutral = embedding_similarity(profile, candidate)
    values["embedding_similarity"] = semantic
    if neutral:
        features.neutral.append("embedding_similarity")
        logger.debug("No usable embedding for %s/%s", profile.user_id, candidate.user_id)

    if preferences is not None:
        nice = nice_to_have_match(preferences.nice_to_have, candidate)
        if nice is not None:
            score, matched = nice
            values["nice_to_have"] = score
            if matched:
                features.shared["nice_to_have"] = matched

    # Behavior component
    if history is None:
        values["behavior_history"] = BEHAVIOR_NEUTRAL_SCORE
        features.neutral.append("behavior_history")
    else:
        score, neutral = history.behavior_score(profile.user_id, candidate)
        values["behavior_history"] = score
        if neutral:
            features.neutral.append("behavior_history")

    features.constraints = check_constraints(preferences, profile, candidate)
    return features
