#!/usr/bin/env python3
"""
Matching Analytics Test Suite

Tests for:
1. System metrics over time windows
2. Per-user insights and recommendation rules
3. Algorithm outcome tracking and weight-adjustment suggestions
"""

import sys
from dataclasses import replace
from datetime import timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import NOW, make_profile
from core.constants import PROFILE_COMPLETENESS_FIELDS
from core.errors import NotFoundError
from core.models import UserProfile
from match_scorer import MatchScorer
from match_store import MatchStore
from matching_analytics import (
    MatchingAnalytics,
    extract_top_factors,
    profile_completeness,
)
from weight_config import default_configuration


@pytest.fixture
def store(profile_a, candidate_b):
    store = MatchStore()
    store.upsert_profile(profile_a)
    store.upsert_profile(candidate_b)
    store.upsert_profile(make_profile("u_c", "CPO", skills=["Product"]))
    store.upsert_profile(make_profile("u_d", "CEO", skills=["AI"]))
    return store


@pytest.fixture
def analytics(store):
    return MatchingAnalytics(store)


EMPTY_PROFILE = UserProfile(
    user_id="u_empty", role_intent="", seniority="", timezone="", weekly_hours=None, remote_pref="",
)

# one filled value per checklist field; 0 is a real answer for equity
FILLED_VALUES = {
    "role_intent": "CTO",
    "seniority": "senior",
    "timezone": "Asia/Shanghai",
    "weekly_hours": 40,
    "location_city": "Shanghai",
    "remote_pref": "hybrid",
    "skills": ["AI"],
    "industries": ["SaaS"],
    "tech_stack": ["Go"],
    "bio": "Builder",
    "equity_expectation": 0,
    "risk_tolerance": 5,
}


def _match(store, user_id, target_id, created_at, weights=None):
    scorer = MatchScorer(weights or default_configuration())
    breakdown = scorer.score_pair(store.get_profile(user_id), store.get_profile(target_id))
    return store.upsert_match(breakdown, created_at)


# =============================================================================
# System metrics
# =============================================================================


class TestSystemMetrics:
    """Tests for get_system_metrics."""

    @pytest.fixture
    def populated(self, store):
        recent = _match(store, "u_a", "u_b", NOW - timedelta(days=2))
        _match(store, "u_a", "u_c", NOW - timedelta(days=20))
        _match(store, "u_a", "u_d", NOW - timedelta(days=60))

        store.add_feedback(recent.id, "u_a", 5, NOW, feedback_text="技能互补，沟通顺畅")
        store.add_feedback(recent.id, "u_b", 4, NOW, feedback_text="技能互补")

        for action in ("view", "like", "connect", "connect"):
            store.append_interaction("u_a", "u_b", action, NOW - timedelta(days=1))
        store.append_interaction("u_a", "u_c", "view", NOW - timedelta(days=45))
        return store

    def test_week(self, analytics, populated):
        metrics = analytics.get_system_metrics("week", now=NOW)

        assert metrics.total_matches == 1
        # two positive ratings on one match count once
        assert metrics.successful_matches == 1
        assert metrics.average_success_rate == 1.0
        assert metrics.engagement_rate == 0.5
        assert metrics.conversion_to_messaging == 0.5
        assert metrics.top_matching_factors == ["技能互补", "沟通顺畅"]
        assert metrics.window_start == NOW - timedelta(days=7)
        assert metrics.window_end == NOW

    def test_month(self, analytics, populated):
        metrics = analytics.get_system_metrics("month", now=NOW)
        assert metrics.total_matches == 2
        assert metrics.average_success_rate == 0.5

    def test_quarter_includes_older_activity(self, analytics, populated):
        metrics = analytics.get_system_metrics("quarter", now=NOW)
        assert metrics.total_matches == 3
        assert metrics.engagement_rate == pytest.approx(2 / 5)

    def test_empty_window(self, analytics):
        metrics = analytics.get_system_metrics("week", now=NOW)
        assert metrics.total_matches == 0
        assert metrics.average_success_rate == 0.0
        assert metrics.engagement_rate == 0.0
        assert metrics.top_matching_factors == []

    def test_response_time_not_computed(self, analytics):
        metrics = analytics.get_system_metrics("week", now=NOW)
        assert metrics.average_response_time is None
        assert metrics.not_computed == ["average_response_time"]

    def test_unknown_time_range(self, analytics):
        with pytest.raises(ValueError):
            analytics.get_system_metrics("decade", now=NOW)


class TestTopFactors:
    """Tests for factor extraction from feedback text."""

    def test_low_ratings_ignored(self, store):
        match = _match(store, "u_a", "u_b", NOW)
        store.add_feedback(match.id, "u_a", 2, NOW, feedback_text="地理位置太远")
        store.add_feedback(match.id, "u_b", 4, NOW, feedback_text="目标一致")
        assert extract_top_factors(store.list_feedback()) == ["目标一致"]

    def test_ties_keep_vocabulary_order(self, store):
        match = _match(store, "u_a", "u_b", NOW)
        store.add_feedback(match.id, "u_a", 5, NOW, feedback_text="目标一致，技能互补")
        assert extract_top_factors(store.list_feedback()) == ["技能互补", "目标一致"]


# =============================================================================
# User insights
# =============================================================================


class TestUserInsights:
    """Tests for get_user_insights."""

    def test_completeness(self, profile_a):
        assert profile_completeness(None) == 0.0
        # role, seniority, timezone, hours, remote mode, skills of twelve fields
        assert profile_completeness(profile_a) == pytest.approx(50.0)

        full = make_profile(
            "u_f", "CTO", location_city="Shanghai", skills=["AI"], industries=["SaaS"],
            tech_stack=["Go"], bio="Builder", equity_expectation=0, risk_tolerance=5,
        )
        assert profile_completeness(full) == 100.0

    @pytest.mark.parametrize("field,value", list(FILLED_VALUES.items()))
    def test_filling_one_field_raises_completeness(self, field, value):
        before = profile_completeness(EMPTY_PROFILE)
        after = profile_completeness(replace(EMPTY_PROFILE, **{field: value}))
        assert after > before
        assert after - before == pytest.approx(100.0 / len(PROFILE_COMPLETENESS_FIELDS))

    def test_every_checklist_field_covered(self):
        assert set(FILLED_VALUES) == set(PROFILE_COMPLETENESS_FIELDS)

    def test_blank_strings_not_counted(self):
        assert profile_completeness(replace(EMPTY_PROFILE, bio="   ", location_city="")) == 0.0

    def test_new_user(self, analytics):
        insights = analytics.get_user_insights("u_a")

        assert insights.activity == {"view": 0, "like": 0, "skip": 0, "connect": 0, "meet": 0}
        assert insights.matches == 0
        assert insights.match_rate == 0.0
        assert insights.response_rate is None
        assert insights.conversation_rate is None
        assert [r.rule_id for r in insights.recommendations] == [
            "complete_profile",
            "start_conversations",
            "add_bio",
            "add_industries",
        ]
        assert insights.recommendations[0].message_zh

    def test_activity_and_matches(self, store, analytics):
        for target, action in [("u_b", "like"), ("u_c", "like"), ("u_d", "like"), ("u_c", "skip"), ("u_b", "connect")]:
            store.append_interaction("u_a", target, action, NOW)
        engaged = _match(store, "u_b", "u_a", NOW)
        store.transition_stage(engaged.id, "recommended", "contacted", NOW)
        _match(store, "u_a", "u_c", NOW)

        insights = analytics.get_user_insights("u_a")

        assert insights.activity["like"] == 3
        assert insights.match_rate == pytest.approx(0.75)
        # only engaged matches count, from either side
        assert insights.matches == 1
        assert "start_conversations" not in [r.rule_id for r in insights.recommendations]

    def test_many_views_few_likes(self, store, analytics):
        for _ in range(21):
            store.append_interaction("u_a", "u_b", "view", NOW)
        rules = [r.rule_id for r in analytics.get_user_insights("u_a").recommendations]
        assert "loosen_filters" in rules

    def test_unknown_user(self, analytics):
        insights = analytics.get_user_insights("ghost")
        assert insights.profile_completeness == 0.0
        assert [r.rule_id for r in insights.recommendations] == ["complete_profile", "start_conversations"]


# =============================================================================
# Algorithm performance
# =============================================================================


class TestAlgorithmPerformance:
    """Tests for outcome tracking and recommendations."""

    def test_track_outcome(self, store, analytics):
        match = _match(store, "u_a", "u_b", NOW)
        assert analytics.track_algorithm_performance("v1", match.id, "positive", NOW)
        assert not analytics.track_algorithm_performance("v1", match.id, "negative", NOW)
        assert analytics.outcome_summary() == {"v1": {"positive": 1, "negative": 0, "neutral": 0}}

    def test_track_rejects_bad_input(self, store, analytics):
        match = _match(store, "u_a", "u_b", NOW)
        with pytest.raises(ValueError):
            analytics.track_algorithm_performance("v1", match.id, "amazing", NOW)
        with pytest.raises(NotFoundError):
            analytics.track_algorithm_performance("v1", 999, "positive", NOW)

    def test_no_feedback_no_suggestions(self, analytics):
        recs = analytics.get_algorithm_recommendations(NOW)
        assert recs.feedback_count == 0
        assert recs.average_rating is None
        assert recs.recommended_adjustments == []
        assert recs.test_suggestions == []

    def test_poor_feedback(self, store, analytics):
        match = _match(store, "u_a", "u_b", NOW - timedelta(days=3))
        store.add_feedback(match.id, "u_a", 2, NOW)
        store.add_feedback(match.id, "u_b", 3, NOW)

        recs = analytics.get_algorithm_recommendations(NOW)

        assert recs.feedback_count == 2
        assert recs.average_rating == 2.5
        assert recs.meet_rate == 0.0
        assert recs.current_performance == pytest.approx(25.0)
        assert recs.recommended_adjustments == [
            "Increase weight of complementary skills matching",
            "Improve geographic proximity weighting",
            "Enhance personality/interest compatibility detection",
        ]
        assert len(recs.test_suggestions) == 3

    def test_healthy_feedback(self, store, analytics):
        match = _match(store, "u_a", "u_b", NOW - timedelta(days=3))
        store.add_feedback(match.id, "u_a", 5, NOW, did_meet=True, did_continue=True)

        recs = analytics.get_algorithm_recommendations(NOW)

        assert recs.current_performance == pytest.approx(60.0)
        assert recs.recommended_adjustments == []

    def test_window_and_version_filter(self, store, analytics):
        old = _match(store, "u_a", "u_b", NOW - timedelta(days=45))
        store.add_feedback(old.id, "u_a", 1, NOW)
        assert analytics.get_algorithm_recommendations(NOW).feedback_count == 0

        recent = _match(store, "u_a", "u_c", NOW - timedelta(days=1))
        store.add_feedback(recent.id, "u_a", 4, NOW)
        assert analytics.get_algorithm_recommendations(NOW, algorithm_version="v1").feedback_count == 1
        assert analytics.get_algorithm_recommendations(NOW, algorithm_version="v2").feedback_count == 0
