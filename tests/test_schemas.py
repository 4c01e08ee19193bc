#!/usr/bin/env python3
"""
Schema Validation Test Suite

Tests for request payload bounds, error reporting and response conversion.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.converters import (
    dump,
    preferences_from_payload,
    profile_from_payload,
    ranked_list_to_response,
    validate_payload,
)
from api.schemas import (
    FeedbackPayload,
    InteractionPayload,
    PreferencePayload,
    ProfilePayload,
)
from core.errors import ProfileValidationError
from match_ranker import MatchRanker
from match_scorer import MatchScorer
from weight_config import default_configuration


def _profile_data(**overrides):
    data = {"user_id": "u_a", "role_intent": "CTO", "seniority": "senior"}
    data.update(overrides)
    return data


class TestProfilePayload:
    """Tests for profile validation."""

    def test_defaults(self):
        payload = validate_payload(ProfilePayload, _profile_data())
        assert payload.timezone == "UTC"
        assert payload.weekly_hours == 40
        assert payload.remote_pref == "hybrid"

    @pytest.mark.parametrize("field,value", [
        ("weekly_hours", 4),
        ("weekly_hours", 81),
        ("equity_expectation", 101),
        ("risk_tolerance", 0),
        ("risk_tolerance", 11),
        ("role_intent", "Janitor"),
        ("seniority", "principal"),
        ("remote_pref", "anywhere"),
        ("bio", "x" * 5001),
    ])
    def test_out_of_range(self, field, value):
        with pytest.raises(ProfileValidationError) as exc_info:
            validate_payload(ProfilePayload, _profile_data(**{field: value}))
        assert [tuple(e["loc"]) for e in exc_info.value.errors] == [(field,)]
        assert field in str(exc_info.value)

    def test_unknown_field_rejected(self):
        with pytest.raises(ProfileValidationError):
            validate_payload(ProfilePayload, _profile_data(favourite_colour="blue"))

    def test_tags_cleaned(self):
        payload = validate_payload(ProfilePayload, _profile_data(skills=["AI", " ai ", "", "Sales "]))
        assert payload.skills == ["AI", "Sales"]

    def test_profile_dataclass(self):
        profile = profile_from_payload(validate_payload(ProfilePayload, _profile_data(skills=["Go"])))
        assert profile.user_id == "u_a"
        assert profile.skills == ["Go"]
        assert profile.embedding is None

    def test_validated_payload_passes_through(self):
        payload = ProfilePayload(**_profile_data())
        assert validate_payload(ProfilePayload, payload) is payload


class TestPreferencePayload:
    """Tests for preference validation."""

    def test_nested_defaults(self):
        prefs = preferences_from_payload(validate_payload(PreferencePayload, {"user_id": "u_a"}))
        assert prefs.must_have.remote_pref == []
        assert prefs.deal_breakers.no_visa is False

    def test_hours_range_inverted(self):
        data = {"user_id": "u_a", "must_have": {"weekly_hours_min": 40, "weekly_hours_max": 20}}
        with pytest.raises(ProfileValidationError, match="must_have"):
            validate_payload(PreferencePayload, data)

    def test_equity_band_inverted(self):
        data = {"user_id": "u_a", "nice_to_have": {"equity_min": 30, "equity_max": 10}}
        with pytest.raises(ProfileValidationError):
            validate_payload(PreferencePayload, data)

    def test_exclude_roles_must_be_known(self):
        data = {"user_id": "u_a", "deal_breakers": {"exclude_roles": ["Wizard"]}}
        with pytest.raises(ProfileValidationError):
            validate_payload(PreferencePayload, data)


class TestInteractionAndFeedback:
    """Tests for interaction and feedback payloads."""

    def test_self_interaction_rejected(self):
        with pytest.raises(ProfileValidationError):
            validate_payload(InteractionPayload, {"user_id": "u_a", "target_user_id": "u_a", "action": "like"})

    @pytest.mark.parametrize("quality", [0, 6])
    def test_quality_score_bounds(self, quality):
        with pytest.raises(ProfileValidationError):
            validate_payload(
                InteractionPayload,
                {"user_id": "u_a", "target_user_id": "u_b", "action": "meet", "quality_score": quality},
            )

    def test_unknown_action(self):
        with pytest.raises(ProfileValidationError):
            validate_payload(InteractionPayload, {"user_id": "u_a", "target_user_id": "u_b", "action": "poke"})

    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_bounds(self, rating):
        with pytest.raises(ProfileValidationError):
            validate_payload(FeedbackPayload, {"match_id": 1, "user_id": "u_a", "rating": rating})


class TestResponses:
    """Tests for response conversion."""

    def test_ranked_list_is_json_ready(self, profile_a, candidate_b):
        ranked = MatchRanker(MatchScorer(default_configuration())).score_candidates(profile_a, None, [candidate_b])
        data = dump(ranked_list_to_response("u_a", "v1", ranked))

        assert data["total"] == 1
        candidate = data["candidates"][0]
        assert candidate["user_id"] == "u_b"
        assert candidate["total_score"] == 0.5026
        assert candidate["reasons"][0]["feature"] == "skills_overlap"
        assert candidate["reasons"][0]["label_zh"]

    def test_dump_list(self):
        payloads = [FeedbackPayload(match_id=1, user_id="u_a", rating=5, feedback_text="技能互补")]
        assert dump(payloads)[0]["feedback_text"] == "技能互补"
