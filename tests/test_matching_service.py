#!/usr/bin/env python3
"""
Matching Service Test Suite

Tests for the service facade:
1. Ownership checks on profile and preference writes
2. Scoring with fail-closed weight resolution and impressions
3. Interactions advancing match stages
4. Cache invalidation on writes
5. Feedback, active matches and batch runs
"""

import sys
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import NOW, make_profile
from core.cache import TaggedTTLCache
from core.errors import (
    InactiveWeightVersion,
    OwnershipError,
    ProfileValidationError,
    UnknownWeightVersion,
)
from core.models import MatchingPreference, MustHave
from core.settings import MatchingSettings
from match_store import MatchStore
from matching_service import MatchingService, open_service
from profile_embedding import ProfileEmbedder
from weight_config import build_default_registry, default_configuration

SHIPPED_WEIGHTS = Path(__file__).parent.parent / "config" / "weight_versions.json"


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(profile_a, candidate_b):
    store = MatchStore()
    store.upsert_profile(profile_a)
    store.upsert_profile(candidate_b)
    store.upsert_profile(make_profile("u_c", "CPO", skills=["AI", "Product"], weekly_hours=30))
    return store


@pytest.fixture
def service(store, clock):
    service = MatchingService(
        store=store,
        registry=build_default_registry(),
        settings=MatchingSettings(),
        cache=TaggedTTLCache(60),
        clock=clock,
    )
    yield service
    service.close()


@pytest.fixture
def match(service):
    """Persisted u_a -> u_b match in the recommended stage."""
    ranked = service.score_candidates_for_user("u_a")
    matches = service.create_matches("u_a", ranked)
    return next(m for m in matches if m.target_user_id == "u_b")


def _profile_data(user_id="u_a", **overrides):
    data = {"user_id": user_id, "role_intent": "CTO", "seniority": "senior", "skills": ["AI", "Backend"]}
    data.update(overrides)
    return data


# =============================================================================
# Profiles and preferences
# =============================================================================


class TestProfileWrites:
    """Tests for validated, owner-only writes."""

    def test_owner_write_marks_activity(self, service):
        profile = service.upsert_profile("u_a", _profile_data())
        assert profile.last_active_at == NOW
        assert profile.updated_at == NOW
        assert service.store.get_profile("u_a").skills == ["AI", "Backend"]

    def test_other_user_rejected(self, service):
        with pytest.raises(OwnershipError):
            service.upsert_profile("u_b", _profile_data())
        assert service.store.get_profile("u_a").last_active_at is None

    def test_admin_write_keeps_activity(self, service, clock):
        service.upsert_profile("u_a", _profile_data())
        clock.now = NOW + timedelta(days=1)
        profile = service.upsert_profile("admin", _profile_data(bio="edited"), is_admin=True)
        assert profile.last_active_at == NOW
        assert profile.updated_at == NOW + timedelta(days=1)

    def test_invalid_profile(self, service):
        with pytest.raises(ProfileValidationError) as exc_info:
            service.upsert_profile("u_a", _profile_data(weekly_hours=100))
        assert exc_info.value.errors[0]["loc"] == ("weekly_hours",)

    def test_embedding_computed_on_write(self, store, clock):
        with MatchingService(
            store, build_default_registry(), embedder=ProfileEmbedder(api_key=None), clock=clock,
        ) as service:
            profile = service.upsert_profile("u_a", _profile_data())
        assert len(profile.embedding) == ProfileEmbedder().dimensions

    def test_small_embedding_dimensions(self, clock):
        settings = MatchingSettings(embedding_dimensions=512)
        embedder = ProfileEmbedder.from_settings(settings)
        with MatchingService(MatchStore(), build_default_registry(), settings, embedder=embedder, clock=clock) as service:
            profile = service.upsert_profile("u_a", _profile_data())
        assert len(profile.embedding) == 512

    @patch("profile_embedding.requests.post")
    def test_malformed_embedding_api_degrades(self, mock_post, clock):
        mock_post.return_value = MagicMock(**{"json.return_value": {"error": "quota"}})
        embedder = ProfileEmbedder(api_key="k", dimensions=16)
        with MatchingService(MatchStore(), build_default_registry(), embedder=embedder, clock=clock) as service:
            profile = service.upsert_profile("u_a", _profile_data())
        assert len(profile.embedding) == 16

    def test_embedding_dimension_mismatch_rejected(self, service):
        service.upsert_profile("u_a", _profile_data(embedding=[1.0, 0.0]))
        with pytest.raises(ProfileValidationError) as exc_info:
            service.upsert_profile("u_b", _profile_data("u_b", embedding=[1.0, 0.0, 0.5]))
        assert exc_info.value.errors[0]["loc"] == ("embedding",)
        assert service.store.get_profile("u_b").embedding is None

    def test_own_embedding_may_change_dimension(self, service):
        service.upsert_profile("u_a", _profile_data(embedding=[1.0, 0.0]))
        profile = service.upsert_profile("u_a", _profile_data(embedding=[1.0, 0.0, 0.0]))
        assert len(profile.embedding) == 3

    def test_empty_embedding_treated_as_missing(self, service):
        profile = service.upsert_profile("u_a", _profile_data(embedding=[]))
        assert profile.embedding is None

    def test_preferences_owner_only(self, service):
        data = {"user_id": "u_a", "deal_breakers": {"no_visa": True}}
        with pytest.raises(OwnershipError):
            service.upsert_preferences("u_b", data)
        prefs = service.upsert_preferences("u_a", data)
        assert prefs.deal_breakers.no_visa
        assert service.store.get_preferences("u_a").updated_at == NOW


# =============================================================================
# Scoring
# =============================================================================


class TestScoring:
    """Tests for candidate scoring through the service."""

    def test_scores_stored_pool(self, service):
        ranked = service.score_candidates_for_user("u_a")
        assert ranked[0].user_id == "u_b"
        assert "u_a" not in [c.user_id for c in ranked]
        assert all(c.breakdown.weight_version == "v1" for c in ranked)

    def test_preferences_applied(self, service):
        service.upsert_preferences("u_a", {"user_id": "u_a", "deal_breakers": {"exclude_roles": ["CEO"]}})
        assert "u_b" not in [c.user_id for c in service.score_candidates_for_user("u_a")]

    def test_unknown_version_fails_closed(self, service):
        with pytest.raises(UnknownWeightVersion):
            service.score_candidates_for_user("u_a", weight_version="v404")

    def test_inactive_version_fails_closed(self, service):
        service.registry.register(default_configuration().with_weights("v9", hard=0.5), active=False)
        with pytest.raises(InactiveWeightVersion):
            service.score_candidates_for_user("u_a", weight_version="v9")

    def test_configured_default_version(self, store, clock):
        registry = build_default_registry(SHIPPED_WEIGHTS)
        service = MatchingService(store, registry, MatchingSettings(weight_version="v2-semantic"), clock=clock)
        ranked = service.score_candidates_for_user("u_a")
        assert ranked[0].breakdown.weight_version == "v2-semantic"

    def test_record_impressions(self, service):
        ranked = service.score_candidates_for_user("u_a", limit=1, record_impressions=True)
        events = service.store.list_interactions("u_a")
        assert [(e.action, e.target_user_id) for e in events] == [("view", ranked[0].user_id)]
        assert events[0].metadata == {"source": "impression", "rank": 1, "weight_version": "v1"}

    def test_out_of_range_profile_rejected(self, service, candidate_b):
        profile = make_profile(
            "u_y", "CTO", weekly_hours=500, equity_expectation=250, remote_pref="spaceship",
        )
        with pytest.raises(ProfileValidationError) as exc_info:
            service.score_candidates(profile, candidate_pool=[candidate_b])
        fields = {e["loc"][0] for e in exc_info.value.errors}
        assert fields == {"weekly_hours", "equity_expectation", "remote_pref"}

    def test_out_of_range_candidate_rejected(self, service, profile_a):
        bad = make_profile("u_z", "CEO", risk_tolerance=42)
        with pytest.raises(ProfileValidationError):
            service.score_candidates(profile_a, candidate_pool=[bad])

    def test_inverted_preferences_rejected(self, service, profile_a, candidate_b):
        prefs = MatchingPreference(user_id="u_a", must_have=MustHave(weekly_hours_min=60, weekly_hours_max=10))
        with pytest.raises(ProfileValidationError, match="must_have"):
            service.score_candidates(profile_a, prefs, candidate_pool=[candidate_b])


# =============================================================================
# Interactions
# =============================================================================


class TestInteractions:
    """Tests for record_interaction and stage advancement."""

    def test_connect_advances_to_contacted(self, service, match):
        service.record_interaction("u_a", "u_b", "connect")
        assert service.store.get_match(match.id).stage == "contacted"

    def test_meet_steps_through_contacted(self, service, match):
        service.record_interaction("u_a", "u_b", "meet", {"quality_score": 4})
        assert service.store.get_match(match.id).stage == "meeting"

    def test_later_stage_not_moved_back(self, service, match):
        service.record_interaction("u_a", "u_b", "meet")
        service.record_interaction("u_a", "u_b", "connect")
        assert service.store.get_match(match.id).stage == "meeting"

    def test_dropped_match_untouched(self, service, match):
        service.transition_stage(match.id, "recommended", "dropped")
        service.record_interaction("u_a", "u_b", "connect")
        assert service.store.get_match(match.id).stage == "dropped"

    def test_like_does_not_advance(self, service, match):
        service.record_interaction("u_a", "u_b", "like")
        assert service.store.get_match(match.id).stage == "recommended"

    def test_metadata_fields_extracted(self, service):
        event = service.record_interaction("u_a", "u_b", "like", {"latency_ms": 1200, "source": "feed"})
        assert event.latency_ms == 1200
        assert event.metadata == {"source": "feed"}

    @pytest.mark.parametrize("action,metadata", [
        ("poke", None),
        ("meet", {"quality_score": 9}),
        ("like", {"latency_ms": -1}),
    ])
    def test_invalid_interaction(self, service, action, metadata):
        with pytest.raises(ProfileValidationError):
            service.record_interaction("u_a", "u_b", action, metadata)
        assert service.store.list_interactions() == []

    def test_backfill_quality_score(self, service):
        event = service.record_interaction("u_a", "u_b", "meet")
        with pytest.raises(ProfileValidationError):
            service.backfill_quality_score(event.id, 0)
        assert service.backfill_quality_score(event.id, 5).quality_score == 5


# =============================================================================
# Cache invalidation
# =============================================================================


class TestCacheInvalidation:
    """Cached analytics are dropped when the data behind them changes."""

    def test_insights_cached_until_interaction(self, service):
        first = service.get_user_insights("u_a")
        service.store.append_interaction("u_a", "u_b", "like", NOW)
        assert service.get_user_insights("u_a") is first

        service.record_interaction("u_a", "u_c", "like")
        assert service.get_user_insights("u_a").activity["like"] == 2

    def test_target_user_insights_invalidated(self, service):
        first = service.get_user_insights("u_b")
        service.record_interaction("u_a", "u_b", "like")
        assert service.get_user_insights("u_b") is not first

    def test_metrics_invalidated_by_interaction(self, service):
        assert service.get_system_metrics("week").engagement_rate == 0.0
        service.record_interaction("u_a", "u_b", "connect")
        assert service.get_system_metrics("week").engagement_rate == 1.0

    def test_metrics_invalidated_by_new_matches(self, service):
        assert service.get_system_metrics("week").total_matches == 0
        service.create_matches("u_a", service.score_candidates_for_user("u_a"))
        assert service.get_system_metrics("week").total_matches > 0

    def test_profile_write_keeps_metrics(self, service):
        metrics = service.get_system_metrics("week")
        service.upsert_profile("u_a", _profile_data())
        assert service.get_system_metrics("week") is metrics

    def test_close_closes_cache(self, service):
        service.close()
        assert service.cache.closed


# =============================================================================
# Matches and feedback
# =============================================================================


class TestMatchesAndFeedback:
    """Tests for active matches, transitions and feedback."""

    def test_active_matches_sorted(self, service, match):
        active = service.get_active_matches("u_a")
        scores = [m.total_score for m in active]
        assert scores == sorted(scores, reverse=True)
        assert match.id in [m.id for m in active]

    def test_expired_and_dropped_excluded(self, service, match, clock):
        service.transition_stage(match.id, "recommended", "dropped")
        assert match.id not in [m.id for m in service.get_active_matches("u_a")]

        clock.now = NOW + timedelta(days=31)
        assert service.get_active_matches("u_a") == []

    def test_feedback_tracks_outcome(self, service, match):
        feedback = service.record_feedback({"match_id": match.id, "user_id": "u_b", "rating": 5, "did_meet": True})
        assert feedback.did_meet
        outcomes = service.store.list_algorithm_outcomes("v1")
        assert [(o.match_id, o.outcome) for o in outcomes] == [(match.id, "positive")]

    @pytest.mark.parametrize("rating,outcome", [(1, "negative"), (3, "neutral"), (4, "positive")])
    def test_feedback_outcome_from_rating(self, service, match, rating, outcome):
        service.record_feedback({"match_id": match.id, "user_id": "u_a", "rating": rating})
        assert service.store.list_algorithm_outcomes("v1")[0].outcome == outcome

    def test_feedback_from_outsider_rejected(self, service, match):
        with pytest.raises(OwnershipError):
            service.record_feedback({"match_id": match.id, "user_id": "u_c", "rating": 5})
        assert service.store.list_feedback() == []

    def test_rescoring_keeps_stage(self, service, match):
        service.record_interaction("u_a", "u_b", "connect")
        service.create_matches("u_a", service.score_candidates_for_user("u_a"))
        assert service.store.get_match(match.id).stage == "contacted"


# =============================================================================
# Batch runs
# =============================================================================


class TestBatchMatching:
    """Tests for run_batch_matching."""

    def test_completed_run(self, service):
        run = service.run_batch_matching("daily", max_workers=2)

        assert run.status == "completed"
        assert run.algorithm_version == "v1"
        assert run.total_users == 3
        assert run.matches_generated == len(service.store.list_matches())
        assert service.store.find_match("u_a", "u_b", "v1") is not None
        assert run.run_metrics["failed_users"] == []
        assert run.run_metrics["top_k"] == 5
        assert run.completed_at == NOW
        assert service.store.list_batch_runs()[0].status == "completed"

    def test_subset_of_users(self, service):
        run = service.run_batch_matching(user_ids=["u_b", "u_b"])
        assert run.total_users == 1
        assert {m.user_id for m in service.store.list_matches()} == {"u_b"}

    def test_failed_user_recorded(self, service, monkeypatch):
        original = service.store.get_preferences

        def flaky(user_id):
            if user_id == "u_b":
                raise RuntimeError("preference store unavailable")
            return original(user_id)

        monkeypatch.setattr(service.store, "get_preferences", flaky)
        run = service.run_batch_matching()

        assert run.status == "completed"
        assert run.run_metrics["failed_users"] == ["u_b"]
        assert service.store.list_matches("u_b") == []

    def test_run_failure_marked(self, service, monkeypatch):
        def broken():
            raise RuntimeError("disk gone")

        monkeypatch.setattr(service.store, "list_profiles", broken)
        with pytest.raises(RuntimeError):
            service.run_batch_matching()
        run = service.store.list_batch_runs()[0]
        assert run.status == "failed"
        assert run.error == "disk gone"

    def test_inactive_version_starts_no_run(self, service):
        service.registry.register(default_configuration().with_weights("v9", hard=0.5), active=False)
        with pytest.raises(InactiveWeightVersion):
            service.run_batch_matching(weight_version="v9")
        assert service.store.list_batch_runs() == []

    def test_unknown_run_type(self, service):
        with pytest.raises(ValueError):
            service.run_batch_matching("hourly")

    @pytest.mark.parametrize("kwargs", [{"top_k": 0}, {"max_workers": 0}, {"top_k": -1}])
    def test_explicit_non_positive_limits_rejected(self, service, kwargs):
        with pytest.raises(ValueError):
            service.run_batch_matching(**kwargs)
        assert service.store.list_batch_runs() == []

    def test_explicit_top_k_used(self, service):
        run = service.run_batch_matching(top_k=1, max_workers=1)
        assert run.run_metrics["top_k"] == 1
        assert len(service.store.list_matches("u_a")) == 1


# =============================================================================
# Construction
# =============================================================================


class TestOpenService:
    """Tests for open_service."""

    def test_open_empty_directory(self, tmp_path):
        with open_service(tmp_path, MatchingSettings(), weights_path=SHIPPED_WEIGHTS) as service:
            assert service.store.list_profiles() == []
            assert service.registry.active_versions() == ["v1", "v2-semantic"]
            assert service.embedder is None
        assert service.cache.closed
