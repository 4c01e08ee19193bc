"""
Versioned scoring weights.

A WeightConfiguration is an immutable, named set of component weights,
per-feature weights and thresholds. Every MatchResult records the version
that produced it, so a version can never be redefined once registered.

Resolution fails closed: an unknown or inactive version raises instead of
falling back to another version.

Weight files (``--weights-json`` / ``MATCHING_WEIGHTS_PATH``) look like:

    {
      "versions": [
        {
          "version": "v2",
          "description": "semantic heavy",
          "component_weights": {"hard": 0.25, "semantic": 0.6, "behavior": 0.15},
          "feature_weights": {"skills_overlap": 0.6, "embedding_similarity": 0.4},
          "thresholds": {"min_score": 0.45},
          "active": true
        }
      ]
    }

Feature weights omitted from a file keep their defaults.
"""

import json
import logging
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from api.schemas import WeightFilePayload
from core.constants import (
    DEFAULT_COMPONENT_WEIGHTS,
    DEFAULT_FEATURE_WEIGHTS,
    DEFAULT_MAX_REASONS,
    DEFAULT_THRESHOLDS,
    DEFAULT_WEIGHT_VERSION,
    FEATURE_COMPONENTS,
)
from core.errors import (
    InactiveWeightVersion,
    UnknownWeightVersion,
    WeightConfigurationError,
)

logger = logging.getLogger(__name__)

COMPONENTS = ("hard", "semantic", "behavior")


@dataclass(frozen=True)
class WeightConfiguration:
    """Immutable scoring weights for one algorithm version.

    Component weights are used as given (not renormalized), so raising one
    component's weight can only raise a pair's total.
    """
    version: str
    component_weights: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_COMPONENT_WEIGHTS)
    )
    feature_weights: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_FEATURE_WEIGHTS)
    )
    thresholds: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))
    max_reasons: int = DEFAULT_MAX_REASONS
    description: str = ""

    def __post_init__(self):
        thresholds = {**DEFAULT_THRESHOLDS, **dict(self.thresholds)}
        object.__setattr__(self, "component_weights", MappingProxyType(dict(self.component_weights)))
        object.__setattr__(self, "feature_weights", MappingProxyType(dict(self.feature_weights)))
        object.__setattr__(self, "thresholds", MappingProxyType(thresholds))
        self.validate()

    @property
    def min_score(self) -> float:
        return self.thresholds["min_score"]

    @property
    def disqualified_score(self) -> float:
        return self.thresholds["disqualified_score"]

    def validate(self) -> None:
        """Raise WeightConfigurationError if the configuration is unusable."""
        problems: List[str] = []

        if not self.version or not self.version.strip():
            problems.append("version must be a non-empty string")

        if set(self.component_weights) != set(COMPONENTS):
            problems.append(f"component_weights must have exactly {list(COMPONENTS)}")
        if any(w < 0 for w in self.component_weights.values()):
            problems.append("component weights must be non-negative")
        if sum(self.component_weights.values()) <= 0:
            problems.append("at least one component weight must be positive")

        unknown = set(self.feature_weights) - set(FEATURE_COMPONENTS)
        if unknown:
            problems.append(f"unknown features: {sorted(unknown)}")
        if any(w < 0 for w in self.feature_weights.values()):
            problems.append("feature weights must be non-negative")

        for component in COMPONENTS:
            if self.component_weights.get(component, 0) <= 0:
                continue
            if not any(
                self.feature_weights.get(name, 0) > 0
                for name, owner in FEATURE_COMPONENTS.items()
                if owner == component
            ):
                problems.append(f"component '{component}' has no positive feature weight")

        if self.disqualified_score >= self.min_score:
            problems.append("disqualified_score must be below min_score")

        if self.max_reasons < 1:
            problems.append("max_reasons must be at least 1")

        if problems:
            raise WeightConfigurationError(
                f"Invalid weight configuration '{self.version}': " + "; ".join(problems)
            )

    def normalized_feature_weights(self, component: str, applicable: Iterable[str]) -> Dict[str, float]:
        """Feature weights of ``component`` restricted to ``applicable``, summing to 1.

        Returns an empty dict when no applicable feature has weight.
        """
        weights = {
            name: self.feature_weights.get(name, 0.0)
            for name in applicable
            if FEATURE_COMPONENTS.get(name) == component
        }
        total = sum(weights.values())
        if total <= 0:
            return {}
        return {name: w / total for name, w in weights.items()}

    def with_weights(self, version: str, **component_weights: float) -> "WeightConfiguration":
        """Copy under a new version with some component weights replaced."""
        merged = {**self.component_weights, **component_weights}
        return replace(self, version=version, component_weights=merged)

    def to_dict(self) -> Dict:
        return {
            "version": self.version,
            "description": self.description,
            "component_weights": dict(self.component_weights),
            "feature_weights": dict(self.feature_weights),
            "thresholds": dict(self.thresholds),
            "max_reasons": self.max_reasons,
        }


def default_configuration() -> WeightConfiguration:
    return WeightConfiguration(
        version=DEFAULT_WEIGHT_VERSION,
        description="Default blend: role/timezone/availability hard filters, skills-led semantic score",
    )


class WeightRegistry:
    """Registry of weight versions and which of them may be used for scoring.

    Example:
        registry = WeightRegistry([default_configuration()])
        registry.load_json(Path("config/weight_versions.json"))
        weights = registry.resolve("v2")
    """

    def __init__(self, configurations: Iterable[WeightConfiguration] = ()):
        self._configs: Dict[str, WeightConfiguration] = {}
        self._active: set = set()
        self._lock = threading.Lock()
        for config in configurations:
            self.register(config)

    def __contains__(self, version: str) -> bool:
        return version in self._configs

    def versions(self) -> List[str]:
        return sorted(self._configs)

    def active_versions(self) -> List[str]:
        return sorted(self._active)

    def register(self, config: WeightConfiguration, active: bool = True) -> None:
        """Add a version. Re-registering identical weights is a no-op.

        Raises:
            WeightConfigurationError: If the version exists with different weights
        """
        with self._lock:
            existing = self._configs.get(config.version)
            if existing is not None and existing.to_dict() != config.to_dict():
                logger.error("Weight version %s is already registered with different weights", config.version)
                raise WeightConfigurationError(
                    f"Weight version '{config.version}' is immutable and already registered"
                )
            self._configs[config.version] = config
            if active:
                self._active.add(config.version)
            else:
                self._active.discard(config.version)

    def activate(self, version: str) -> None:
        with self._lock:
            self._require(version)
            self._active.add(version)

    def deactivate(self, version: str) -> None:
        with self._lock:
            self._require(version)
            self._active.discard(version)

    def get(self, version: str) -> WeightConfiguration:
        """Return a version regardless of whether it is active."""
        return self._require(version)

    def resolve(self, version: Optional[str] = None, default: str = DEFAULT_WEIGHT_VERSION) -> WeightConfiguration:
        """Return the active configuration for ``version`` (or ``default``).

        Raises:
            UnknownWeightVersion: The version was never registered
            InactiveWeightVersion: The version exists but is not active
        """
        version = version or default
        config = self._require(version)
        if version not in self._active:
            logger.error("Weight version %s is inactive", version)
            raise InactiveWeightVersion(f"Weight version '{version}' is inactive")
        return config

    def load_json(self, path: Path) -> List[str]:
        """Register every version in a weights file; returns the versions loaded."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Cannot read weight file %s: %s", path, e)
            raise WeightConfigurationError(f"Cannot read weight file {path}: {e}") from e

        if isinstance(raw, list):
            raw = {"versions": raw}

        try:
            payload = WeightFilePayload.model_validate(raw)
        except ValidationError as e:
            logger.error("Invalid weight file %s: %s", path, e)
            raise WeightConfigurationError(f"Invalid weight file {path}: {e}") from e

        loaded = []
        for item in payload.versions:
            config = WeightConfiguration(
                version=item.version,
                component_weights=item.component_weights,
                feature_weights={**DEFAULT_FEATURE_WEIGHTS, **item.feature_weights},
                thresholds={**DEFAULT_THRESHOLDS, **item.thresholds},
                max_reasons=item.max_reasons,
                description=item.description,
            )
            self.register(config, active=item.active)
            loaded.append(config.version)

        logger.info("Loaded %d weight versions from %s", len(loaded), path)
        return loaded

    def _require(self, version: str) -> WeightConfiguration:
        config = self._configs.get(version)
        if config is None:
            logger.error("Unknown weight version %s (known: %s)", version, self.versions())
            raise UnknownWeightVersion(f"Unknown weight version '{version}'")
        return config


def build_default_registry(weights_path: Optional[Path] = None) -> WeightRegistry:
    """Registry holding the built-in default version plus any versions from a file."""
    registry = WeightRegistry([default_configuration()])
    if weights_path is not None:
        registry.load_json(weights_path)
    return registry
