#!/usr/bin/env python3
"""
Weight Configuration Test Suite

Tests for validation, immutable versions and fail-closed resolution.
"""

import dataclasses
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.constants import DEFAULT_FEATURE_WEIGHTS
from core.errors import (
    InactiveWeightVersion,
    UnknownWeightVersion,
    WeightConfigurationError,
)
from weight_config import (
    WeightConfiguration,
    WeightRegistry,
    build_default_registry,
    default_configuration,
)

PROJECT_ROOT = Path(__file__).parent.parent
SHIPPED_WEIGHTS = PROJECT_ROOT / "config" / "weight_versions.json"


@pytest.fixture
def registry():
    return WeightRegistry([default_configuration()])


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    """Tests for rejected configurations."""

    def test_default_is_valid(self):
        config = default_configuration()
        assert config.version == "v1"
        assert config.min_score == 0.4
        assert config.disqualified_score == -1.0
        assert sum(config.component_weights.values()) == pytest.approx(1.0)

    @pytest.mark.parametrize("kwargs,message", [
        ({"version": " "}, "version must be a non-empty string"),
        ({"component_weights": {"hard": 0.5, "semantic": 0.5}}, "component_weights must have exactly"),
        ({"component_weights": {"hard": -0.1, "semantic": 0.6, "behavior": 0.5}}, "non-negative"),
        ({"component_weights": {"hard": 0, "semantic": 0, "behavior": 0}}, "at least one component weight"),
        ({"feature_weights": {**DEFAULT_FEATURE_WEIGHTS, "charisma": 0.2}}, "unknown features"),
        ({"thresholds": {"min_score": -2.0}}, "disqualified_score must be below min_score"),
        ({"max_reasons": 0}, "max_reasons must be at least 1"),
    ])
    def test_invalid_configuration(self, kwargs, message):
        kwargs.setdefault("version", "bad")
        with pytest.raises(WeightConfigurationError, match=message):
            WeightConfiguration(**kwargs)

    def test_weighted_component_needs_a_weighted_feature(self):
        features = {name: 0.0 for name in DEFAULT_FEATURE_WEIGHTS}
        features.update(role_complement=1.0, behavior_history=1.0)
        with pytest.raises(WeightConfigurationError, match="component 'semantic'"):
            WeightConfiguration(version="bad", feature_weights=features)

    def test_zero_weight_component_needs_no_features(self):
        features = {name: 0.0 for name in DEFAULT_FEATURE_WEIGHTS}
        features["role_complement"] = 1.0
        config = WeightConfiguration(
            version="hard-only",
            component_weights={"hard": 1.0, "semantic": 0.0, "behavior": 0.0},
            feature_weights=features,
        )
        assert config.component_weights["semantic"] == 0.0

    def test_thresholds_merge_with_defaults(self):
        config = WeightConfiguration(version="strict", thresholds={"min_score": 0.6})
        assert config.min_score == 0.6
        assert config.disqualified_score == -1.0


class TestImmutability:
    """Tests for frozen configurations."""

    def test_fields_are_frozen(self):
        config = default_configuration()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.version = "v9"

    def test_weight_mappings_are_read_only(self):
        config = default_configuration()
        with pytest.raises(TypeError):
            config.component_weights["hard"] = 1.0
        with pytest.raises(TypeError):
            config.feature_weights["skills_overlap"] = 1.0

    def test_with_weights_copies(self):
        base = default_configuration()
        raised = base.with_weights("v1-hard", hard=0.5)
        assert raised.component_weights["hard"] == 0.5
        assert base.component_weights["hard"] == 0.30
        assert raised.feature_weights == base.feature_weights


class TestNormalizedFeatureWeights:
    """Tests for per-component weight normalization."""

    def test_restricted_to_applicable(self):
        weights = default_configuration().normalized_feature_weights(
            "semantic", ["skills_overlap", "embedding_similarity", "role_complement"]
        )
        assert weights == pytest.approx({"skills_overlap": 0.5 / 0.7, "embedding_similarity": 0.2 / 0.7})

    def test_nothing_applicable(self):
        assert default_configuration().normalized_feature_weights("behavior", []) == {}


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    """Tests for registering and resolving versions."""

    def test_resolve_default(self, registry):
        assert registry.resolve().version == "v1"
        assert registry.resolve(None, default="v1").version == "v1"

    def test_unknown_version_fails_closed(self, registry):
        with pytest.raises(UnknownWeightVersion):
            registry.resolve("v404")

    def test_inactive_version_fails_closed(self, registry):
        registry.register(default_configuration().with_weights("v2", semantic=0.6), active=False)
        with pytest.raises(InactiveWeightVersion):
            registry.resolve("v2")
        assert registry.get("v2").version == "v2"

        registry.activate("v2")
        assert registry.resolve("v2").component_weights["semantic"] == 0.6
        registry.deactivate("v2")
        assert registry.active_versions() == ["v1"]

    def test_identical_reregistration_is_noop(self, registry):
        registry.register(default_configuration())
        assert registry.versions() == ["v1"]

    def test_version_cannot_be_redefined(self, registry):
        changed = default_configuration().with_weights("v1", hard=0.4)
        with pytest.raises(WeightConfigurationError, match="immutable"):
            registry.register(changed)
        assert registry.resolve("v1").component_weights["hard"] == 0.30

    def test_activate_unknown(self, registry):
        with pytest.raises(UnknownWeightVersion):
            registry.activate("nope")


class TestWeightFiles:
    """Tests for loading weight versions from JSON."""

    def test_shipped_file(self):
        registry = build_default_registry(SHIPPED_WEIGHTS)
        assert registry.versions() == ["v0-hard-only", "v1", "v2-semantic"]
        assert registry.active_versions() == ["v1", "v2-semantic"]

        semantic = registry.resolve("v2-semantic")
        assert semantic.feature_weights["skills_overlap"] == 0.4
        # omitted feature weights keep their defaults
        assert semantic.feature_weights["industry_overlap"] == DEFAULT_FEATURE_WEIGHTS["industry_overlap"]

        with pytest.raises(InactiveWeightVersion):
            registry.resolve("v0-hard-only")
        assert registry.get("v0-hard-only").min_score == 0.5

    def test_list_form(self, tmp_path, registry):
        path = tmp_path / "weights.json"
        path.write_text(json.dumps([
            {"version": "v3", "component_weights": {"hard": 0.4, "semantic": 0.4, "behavior": 0.2}},
        ]))
        assert registry.load_json(path) == ["v3"]

    def test_missing_file(self, tmp_path, registry):
        with pytest.raises(WeightConfigurationError, match="Cannot read"):
            registry.load_json(tmp_path / "missing.json")

    def test_malformed_json(self, tmp_path, registry):
        path = tmp_path / "weights.json"
        path.write_text("{not json")
        with pytest.raises(WeightConfigurationError, match="Cannot read"):
            registry.load_json(path)

    def test_schema_violation(self, tmp_path, registry):
        path = tmp_path / "weights.json"
        path.write_text(json.dumps({"versions": [{"version": "v3", "extra": 1}]}))
        with pytest.raises(WeightConfigurationError, match="Invalid weight file"):
            registry.load_json(path)

    def test_invalid_weights_in_file(self, tmp_path, registry):
        path = tmp_path / "weights.json"
        path.write_text(json.dumps({"versions": [
            {"version": "v3", "component_weights": {"hard": 1.0}},
        ]}))
        with pytest.raises(WeightConfigurationError):
            registry.load_json(path)
        assert "v3" not in registry
