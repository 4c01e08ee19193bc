"""Shared fixtures for the matching test suites."""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.models import DealBreakers, MatchingPreference, UserProfile  # noqa: E402

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_profile(user_id: str, role_intent: str = "CEO", **kwargs) -> UserProfile:
    kwargs.setdefault("seniority", "senior")
    return UserProfile(user_id=user_id, role_intent=role_intent, **kwargs)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def profile_a():
    """CTO looking for a business co-founder."""
    return make_profile(
        "u_a",
        "CTO",
        skills=["AI", "Backend"],
        weekly_hours=40,
        remote_pref="remote_first",
    )


@pytest.fixture
def candidate_b():
    """CEO sharing the AI skill with profile_a."""
    return make_profile(
        "u_b",
        "CEO",
        skills=["AI", "Sales"],
        weekly_hours=35,
        remote_pref="hybrid",
    )


@pytest.fixture
def no_visa_preferences():
    return MatchingPreference(user_id="u_a", deal_breakers=DealBreakers(no_visa=True))
