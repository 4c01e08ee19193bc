"""
Exception types for the match scoring pipeline.

Validation and conflict errors carry enough detail for the caller to retry
correctly; configuration errors point at a deployment problem and are
logged by the component that raises them.
"""

from typing import Any, Dict, List, Optional


class MatchingError(Exception):
    """Base class for all matching pipeline errors."""


class ProfileValidationError(MatchingError, ValueError):
    """Malformed or out-of-range profile, preference or interaction input."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class OwnershipError(MatchingError, PermissionError):
    """A profile or preference write from someone other than its owner."""


class NotFoundError(MatchingError, KeyError):
    """Unknown profile, match or interaction id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "not found"


class StageTransitionError(MatchingError):
    """A MatchResult stage change that was rejected."""

    def __init__(self, match_id: int, current_stage: str, requested_stage: str, message: str):
        super().__init__(message)
        self.match_id = match_id
        self.current_stage = current_stage
        self.requested_stage = requested_stage


class InvalidStageTransition(StageTransitionError):
    """The lifecycle does not allow moving between these stages."""


class StageConflictError(StageTransitionError):
    """The stored stage no longer matches the stage the caller expected."""

    def __init__(self, match_id: int, current_stage: str, requested_stage: str, expected_stage: str):
        super().__init__(
            match_id,
            current_stage,
            requested_stage,
            f"Match {match_id} is in stage '{current_stage}', expected '{expected_stage}'",
        )
        self.expected_stage = expected_stage


class QualityScoreAlreadySet(MatchingError):
    """An interaction's quality score can only be backfilled once."""


class WeightConfigurationError(MatchingError):
    """Invalid, unknown or inactive weight configuration."""


class UnknownWeightVersion(WeightConfigurationError, KeyError):
    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "unknown weight version"


class InactiveWeightVersion(WeightConfigurationError):
    pass
