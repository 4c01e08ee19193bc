"""
Shared data I/O utilities for the match scoring pipeline.

A data directory holds one JSON file per record type plus the profile
embeddings as a NumPy array with an id mapping:

    data/
        profiles.json
        preferences.json
        interactions.json
        matches.json
        feedback.json
        batch_runs.json
        algorithm_outcomes.json
        profile_embeddings.npy
        profile_embeddings.mapping.json

Missing files load as empty lists so a fresh directory is a valid store.
"""

import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from .models import (
    AlgorithmOutcome,
    BatchMatchingRun,
    DealBreakers,
    InteractionEvent,
    MatchFeedback,
    MatchingPreference,
    MatchReason,
    MatchResult,
    MustHave,
    NiceToHave,
    UserProfile,
)

PROFILES_FILE = "profiles.json"
PREFERENCES_FILE = "preferences.json"
INTERACTIONS_FILE = "interactions.json"
MATCHES_FILE = "matches.json"
FEEDBACK_FILE = "feedback.json"
BATCH_RUNS_FILE = "batch_runs.json"
ALGORITHM_OUTCOMES_FILE = "algorithm_outcomes.json"
EMBEDDINGS_FILE = "profile_embeddings.npy"


# ============================================================================
# Helpers
# ============================================================================

def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (np.floating, np.integer)):
        return obj.item()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def read_json_list(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON list in {path}")
    return data


def write_json(data: Any, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2, default=_json_default)


def _records_to_dicts(records: Iterable[Any], drop: Tuple[str, ...] = ()) -> List[Dict[str, Any]]:
    rows = []
    for record in records:
        row = asdict(record)
        for key in drop:
            row.pop(key, None)
        rows.append(row)
    return rows


# ============================================================================
# Profiles and preferences
# ============================================================================

def profile_from_dict(item: Dict[str, Any]) -> UserProfile:
    return UserProfile(
        user_id=str(item["user_id"]),
        role_intent=item.get("role_intent", ""),
        seniority=item.get("seniority", ""),
        timezone=item.get("timezone", "UTC"),
        weekly_hours=item.get("weekly_hours", 40),
        location_city=item.get("location_city", ""),
        remote_pref=item.get("remote_pref", "hybrid"),
        equity_expectation=item.get("equity_expectation"),
        salary_expectation=item.get("salary_expectation"),
        visa_constraint=bool(item.get("visa_constraint", False)),
        skills=list(item.get("skills") or []),
        industries=list(item.get("industries") or []),
        tech_stack=list(item.get("tech_stack") or []),
        risk_tolerance=item.get("risk_tolerance"),
        bio=item.get("bio") or "",
        work_style=dict(item.get("work_style") or {}),
        values=dict(item.get("values") or {}),
        embedding=item.get("embedding"),
        last_active_at=parse_datetime(item.get("last_active_at")),
        updated_at=parse_datetime(item.get("updated_at")),
    )


def load_profiles(json_path: Path) -> List[UserProfile]:
    """Load user profiles from a JSON list.

    Example:
        profiles = load_profiles(Path("data/profiles.json"))
        for p in profiles:
            print(f"{p.user_id}: {p.role_intent}")
    """
    return [profile_from_dict(item) for item in read_json_list(json_path)]


def save_profiles(profiles: Iterable[UserProfile], json_path: Path) -> None:
    """Save profiles; embeddings are stored separately as .npy."""
    write_json(_records_to_dicts(profiles, drop=("embedding",)), json_path)


def preference_from_dict(item: Dict[str, Any]) -> MatchingPreference:
    must = item.get("must_have") or {}
    nice = item.get("nice_to_have") or {}
    deal = item.get("deal_breakers") or {}
    return MatchingPreference(
        user_id=str(item["user_id"]),
        must_have=MustHave(
            timezone=must.get("timezone"),
            weekly_hours_min=must.get("weekly_hours_min"),
            weekly_hours_max=must.get("weekly_hours_max"),
            remote_pref=list(must.get("remote_pref") or []),
            role_intent=list(must.get("role_intent") or []),
        ),
        nice_to_have=NiceToHave(
            industries=list(nice.get("industries") or []),
            tech_stack=list(nice.get("tech_stack") or []),
            seniority=list(nice.get("seniority") or []),
            equity_min=nice.get("equity_min"),
            equity_max=nice.get("equity_max"),
        ),
        deal_breakers=DealBreakers(
            no_visa=bool(deal.get("no_visa", False)),
            min_weekly_hours=deal.get("min_weekly_hours"),
            exclude_roles=list(deal.get("exclude_roles") or []),
        ),
        updated_at=parse_datetime(item.get("updated_at")),
    )


def load_preferences(json_path: Path) -> List[MatchingPreference]:
    return [preference_from_dict(item) for item in read_json_list(json_path)]


def save_preferences(preferences: Iterable[MatchingPreference], json_path: Path) -> None:
    write_json(_records_to_dicts(preferences), json_path)


# ============================================================================
# History records
# ============================================================================

def interaction_from_dict(item: Dict[str, Any]) -> InteractionEvent:
    return InteractionEvent(
        id=int(item["id"]),
        user_id=str(item["user_id"]),
        target_user_id=str(item["target_user_id"]),
        action=item["action"],
        created_at=parse_datetime(item["created_at"]),
        latency_ms=item.get("latency_ms"),
        quality_score=item.get("quality_score"),
        metadata=dict(item.get("metadata") or {}),
    )


def load_interactions(json_path: Path) -> List[InteractionEvent]:
    return [interaction_from_dict(item) for item in read_json_list(json_path)]


def save_interactions(events: Iterable[InteractionEvent], json_path: Path) -> None:
    write_json(_records_to_dicts(events), json_path)


def _reason_from_dict(item: Dict[str, Any]) -> MatchReason:
    return MatchReason(
        feature=item["feature"],
        value=float(item.get("value", 0.0)),
        contribution=float(item.get("contribution", 0.0)),
        weight=float(item.get("weight", 0.0)),
        label_zh=item.get("label_zh", ""),
        label_en=item.get("label_en", ""),
        detail=item.get("detail", ""),
        shared=list(item.get("shared") or []),
    )


def match_from_dict(item: Dict[str, Any]) -> MatchResult:
    return MatchResult(
        id=int(item["id"]),
        user_id=str(item["user_id"]),
        target_user_id=str(item["target_user_id"]),
        algorithm_version=item["algorithm_version"],
        total_score=float(item["total_score"]),
        hard_score=float(item["hard_score"]),
        semantic_score=float(item["semantic_score"]),
        behavior_score=float(item["behavior_score"]),
        created_at=parse_datetime(item["created_at"]),
        updated_at=parse_datetime(item["updated_at"]),
        expires_at=parse_datetime(item["expires_at"]),
        stage=item.get("stage", "recommended"),
        reasons=[_reason_from_dict(r) for r in item.get("reasons") or []],
        risk_hints=list(item.get("risk_hints") or []),
    )


def load_matches(json_path: Path) -> List[MatchResult]:
    return [match_from_dict(item) for item in read_json_list(json_path)]


def save_matches(matches: Iterable[MatchResult], json_path: Path) -> None:
    write_json(_records_to_dicts(matches), json_path)


def feedback_from_dict(item: Dict[str, Any]) -> MatchFeedback:
    return MatchFeedback(
        id=int(item["id"]),
        match_id=int(item["match_id"]),
        user_id=str(item["user_id"]),
        rating=int(item["rating"]),
        created_at=parse_datetime(item["created_at"]),
        did_meet=bool(item.get("did_meet", False)),
        did_continue=bool(item.get("did_continue", False)),
        feedback_text=item.get("feedback_text") or "",
    )


def load_feedback(json_path: Path) -> List[MatchFeedback]:
    return [feedback_from_dict(item) for item in read_json_list(json_path)]


def save_feedback(feedback: Iterable[MatchFeedback], json_path: Path) -> None:
    write_json(_records_to_dicts(feedback), json_path)


def batch_run_from_dict(item: Dict[str, Any]) -> BatchMatchingRun:
    return BatchMatchingRun(
        id=int(item["id"]),
        run_type=item["run_type"],
        algorithm_version=item["algorithm_version"],
        started_at=parse_datetime(item["started_at"]),
        status=item.get("status", "running"),
        completed_at=parse_datetime(item.get("completed_at")),
        total_users=int(item.get("total_users", 0)),
        matches_generated=int(item.get("matches_generated", 0)),
        run_metrics=dict(item.get("run_metrics") or {}),
        error=item.get("error", ""),
    )


def load_batch_runs(json_path: Path) -> List[BatchMatchingRun]:
    return [batch_run_from_dict(item) for item in read_json_list(json_path)]


def save_batch_runs(runs: Iterable[BatchMatchingRun], json_path: Path) -> None:
    write_json(_records_to_dicts(runs), json_path)


def load_algorithm_outcomes(json_path: Path) -> List[AlgorithmOutcome]:
    return [
        AlgorithmOutcome(
            algorithm_version=item["algorithm_version"],
            match_id=int(item["match_id"]),
            outcome=item["outcome"],
            recorded_at=parse_datetime(item["recorded_at"]),
        )
        for item in read_json_list(json_path)
    ]


def save_algorithm_outcomes(outcomes: Iterable[AlgorithmOutcome], json_path: Path) -> None:
    write_json(_records_to_dicts(outcomes), json_path)


# ============================================================================
# Embeddings
# ============================================================================

def load_embeddings_npy(npy_path: Path) -> Tuple[np.ndarray, Dict[str, int]]:
    """Load embeddings from NumPy file with mapping.

    Expects a .mapping.json file alongside the .npy file.

    Returns:
        Tuple of:
        - numpy array of shape (n_profiles, embedding_dim)
        - dict mapping user_id to array index
    """
    embeddings = np.load(npy_path)
    mapping_path = npy_path.with_suffix(".mapping.json")

    with open(mapping_path, "r", encoding="utf-8") as f:
        mapping = json.load(f)

    return embeddings, mapping


def embedding_dimension(vectors: Dict[str, List[float]]) -> Optional[int]:
    """Common length of the vectors, or None when there are none.

    Raises:
        ValueError: If the vectors do not all have the same length
    """
    lengths: Dict[int, List[str]] = {}
    for uid in sorted(vectors):
        lengths.setdefault(len(vectors[uid]), []).append(uid)
    if len(lengths) > 1:
        summary = "; ".join(f"{dim}: {', '.join(uids)}" for dim, uids in sorted(lengths.items()))
        raise ValueError(f"Embeddings have mixed dimensions ({summary})")
    return next(iter(lengths), None)


def save_embeddings_npy(vectors: Dict[str, List[float]], npy_path: Path) -> None:
    """Save user_id -> vector as a 2-D array plus a .mapping.json file.

    Rows are ordered by user_id. An empty dict writes an empty array, so a
    previous file never outlives the embeddings it held.

    Raises:
        ValueError: If the vectors do not all have the same length
    """
    embedding_dimension(vectors)
    user_ids = sorted(vectors)
    if user_ids:
        array = np.array([vectors[uid] for uid in user_ids], dtype=np.float32)
    else:
        array = np.zeros((0, 0), dtype=np.float32)

    npy_path.parent.mkdir(parents=True, exist_ok=True)
    np.save(npy_path, array)

    mapping = {uid: idx for idx, uid in enumerate(user_ids)}
    with open(npy_path.with_suffix(".mapping.json"), "w", encoding="utf-8") as f:
        json.dump(mapping, f, ensure_ascii=False, indent=2)


def attach_embeddings(
    profiles: Iterable[UserProfile],
    embeddings: np.ndarray,
    mapping: Dict[str, int],
) -> int:
    """Set ``profile.embedding`` from the array; returns how many were attached."""
    attached = 0
    for profile in profiles:
        idx = mapping.get(profile.user_id)
        if idx is None:
            continue
        profile.embedding = embeddings[idx].tolist()
        attached += 1
    return attached
