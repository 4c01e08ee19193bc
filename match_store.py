"""
Match Store - in-process storage for profiles, history and match results.

Stands in for the host application's database. Guarantees kept here:
- one profile and one preference set per user
- interactions are append-only; quality_score may be backfilled once
- at most one MatchResult per (user, target, algorithm_version)
- stage changes are compare-and-swap on the stored stage

All methods are thread-safe. Match results are returned as copies, so a
caller cannot change a stage without going through ``transition_stage``.
The whole store can be saved to and loaded from a data directory.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from core import data_io
from core.constants import (
    DEFAULT_MATCH_EXPIRY_DAYS,
    MATCH_STAGES,
    STAGE_TRANSITIONS,
)
from core.errors import (
    InvalidStageTransition,
    NotFoundError,
    QualityScoreAlreadySet,
    StageConflictError,
)
from core.models import (
    AlgorithmOutcome,
    BatchMatchingRun,
    InteractionEvent,
    MatchFeedback,
    MatchingPreference,
    MatchResult,
    ScoreBreakdown,
    UserProfile,
)

logger = logging.getLogger(__name__)


class MatchStore:
    """Thread-safe in-memory store.

    Example:
        store = MatchStore.load(Path("data"))
        store.upsert_profile(profile)
        match = store.upsert_match(breakdown, now=datetime.now(timezone.utc))
        store.transition_stage(match.id, "recommended", "contacted", now)
        store.save(Path("data"))
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._profiles: Dict[str, UserProfile] = {}
        self._preferences: Dict[str, MatchingPreference] = {}
        self._interactions: Dict[int, InteractionEvent] = {}
        self._matches: Dict[int, MatchResult] = {}
        self._match_keys: Dict[Tuple[str, str, str], int] = {}
        self._feedback: Dict[int, MatchFeedback] = {}
        self._batch_runs: Dict[int, BatchMatchingRun] = {}
        self._outcomes: Dict[Tuple[str, int], AlgorithmOutcome] = {}
        self._last_ids: Dict[str, int] = defaultdict(int)

    def _next_id(self, kind: str) -> int:
        self._last_ids[kind] += 1
        return self._last_ids[kind]

    # ------------------------------------------------------------------
    # Profiles and preferences
    # ------------------------------------------------------------------

    def upsert_profile(self, profile: UserProfile) -> UserProfile:
        with self._lock:
            self._profiles[profile.user_id] = profile
            return profile

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        with self._lock:
            return self._profiles.get(user_id)

    def require_profile(self, user_id: str) -> UserProfile:
        profile = self.get_profile(user_id)
        if profile is None:
            raise NotFoundError(f"No profile for user '{user_id}'")
        return profile

    def list_profiles(self) -> List[UserProfile]:
        with self._lock:
            return [self._profiles[uid] for uid in sorted(self._profiles)]

    def embedding_dimension(self, exclude_user_id: Optional[str] = None) -> Optional[int]:
        """Length of the stored embeddings (other than ``exclude_user_id``'s), if any."""
        with self._lock:
            for uid in sorted(self._profiles):
                embedding = self._profiles[uid].embedding
                if uid != exclude_user_id and embedding:
                    return len(embedding)
        return None

    def upsert_preferences(self, preferences: MatchingPreference) -> MatchingPreference:
        with self._lock:
            self._preferences[preferences.user_id] = preferences
            return preferences

    def get_preferences(self, user_id: str) -> Optional[MatchingPreference]:
        with self._lock:
            return self._preferences.get(user_id)

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------

    def append_interaction(
        self,
        user_id: str,
        target_user_id: str,
        action: str,
        created_at: datetime,
        latency_ms: Optional[int] = None,
        quality_score: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> InteractionEvent:
        with self._lock:
            event = InteractionEvent(
                id=self._next_id("interaction"),
                user_id=user_id,
                target_user_id=target_user_id,
                action=action,
                created_at=created_at,
                latency_ms=latency_ms,
                quality_score=quality_score,
                metadata=dict(metadata or {}),
            )
            self._interactions[event.id] = event
            return event

    def backfill_quality_score(self, interaction_id: int, quality_score: int) -> InteractionEvent:
        """Set the quality score of an interaction that has none yet.

        Raises:
            NotFoundError: Unknown interaction id
            QualityScoreAlreadySet: The score was already recorded
        """
        with self._lock:
            event = self._interactions.get(interaction_id)
            if event is None:
                raise NotFoundError(f"No interaction with id {interaction_id}")
            if event.quality_score is not None:
                raise QualityScoreAlreadySet(
                    f"Interaction {interaction_id} already has quality score {event.quality_score}"
                )
            event.quality_score = quality_score
            return event

    def list_interactions(
        self,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[InteractionEvent]:
        """Interactions in insertion order, optionally by actor and start time."""
        with self._lock:
            events = list(self._interactions.values())
        if user_id is not None:
            events = [e for e in events if e.user_id == user_id]
        if since is not None:
            events = [e for e in events if e.created_at >= since]
        return events

    # ------------------------------------------------------------------
    # Match results
    # ------------------------------------------------------------------

    def upsert_match(
        self,
        breakdown: ScoreBreakdown,
        now: datetime,
        expiry_days: int = DEFAULT_MATCH_EXPIRY_DAYS,
    ) -> MatchResult:
        """Create or re-score the match for (user, candidate, version).

        Re-scoring overwrites scores, reasons and timestamps but keeps the
        stage and creation time.
        """
        key = (breakdown.user_id, breakdown.candidate_id, breakdown.weight_version)
        expires_at = now + timedelta(days=expiry_days)

        with self._lock:
            match_id = self._match_keys.get(key)
            if match_id is not None:
                match = self._matches[match_id]
                match.total_score = breakdown.total_score
                match.hard_score = breakdown.hard_score
                match.semantic_score = breakdown.semantic_score
                match.behavior_score = breakdown.behavior_score
                match.reasons = list(breakdown.reasons)
                match.risk_hints = list(breakdown.risk_hints)
                match.updated_at = now
                match.expires_at = expires_at
                return replace(match)

            match = MatchResult(
                id=self._next_id("match"),
                user_id=breakdown.user_id,
                target_user_id=breakdown.candidate_id,
                algorithm_version=breakdown.weight_version,
                total_score=breakdown.total_score,
                hard_score=breakdown.hard_score,
                semantic_score=breakdown.semantic_score,
                behavior_score=breakdown.behavior_score,
                created_at=now,
                updated_at=now,
                expires_at=expires_at,
                reasons=list(breakdown.reasons),
                risk_hints=list(breakdown.risk_hints),
            )
            self._matches[match.id] = match
            self._match_keys[key] = match.id
            return replace(match)

    def get_match(self, match_id: int) -> MatchResult:
        with self._lock:
            match = self._matches.get(match_id)
            if match is None:
                raise NotFoundError(f"No match with id {match_id}")
            return replace(match)

    def find_match(self, user_id: str, target_user_id: str, algorithm_version: str) -> Optional[MatchResult]:
        with self._lock:
            match_id = self._match_keys.get((user_id, target_user_id, algorithm_version))
            return replace(self._matches[match_id]) if match_id is not None else None

    def list_matches(
        self,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        involving: bool = False,
    ) -> List[MatchResult]:
        """Matches ordered by id.

        Args:
            user_id: Only matches owned by this user (or, with ``involving``,
                     where the user is either side)
            since: Only matches created at or after this time
        """
        with self._lock:
            matches = [replace(m) for m in self._matches.values()]
        if user_id is not None:
            if involving:
                matches = [m for m in matches if user_id in (m.user_id, m.target_user_id)]
            else:
                matches = [m for m in matches if m.user_id == user_id]
        if since is not None:
            matches = [m for m in matches if m.created_at >= since]
        return sorted(matches, key=lambda m: m.id)

    def transition_stage(
        self,
        match_id: int,
        expected_stage: str,
        new_stage: str,
        now: datetime,
    ) -> MatchResult:
        """Compare-and-swap the stage of a match.

        Raises:
            NotFoundError: Unknown match id
            StageConflictError: The stored stage is not ``expected_stage``
            InvalidStageTransition: The lifecycle does not allow the move
        """
        with self._lock:
            match = self._matches.get(match_id)
            if match is None:
                raise NotFoundError(f"No match with id {match_id}")

            if match.stage != expected_stage:
                logger.warning(
                    "Stage conflict on match %d: stored %s, expected %s, requested %s",
                    match_id, match.stage, expected_stage, new_stage,
                )
                raise StageConflictError(match_id, match.stage, new_stage, expected_stage)

            if new_stage not in MATCH_STAGES or new_stage not in STAGE_TRANSITIONS[match.stage]:
                raise InvalidStageTransition(
                    match_id,
                    match.stage,
                    new_stage,
                    f"Cannot move match {match_id} from '{match.stage}' to '{new_stage}'",
                )

            match.stage = new_stage
            match.updated_at = now
            return replace(match)

    # ------------------------------------------------------------------
    # Feedback, batch runs, algorithm outcomes
    # ------------------------------------------------------------------

    def add_feedback(
        self,
        match_id: int,
        user_id: str,
        rating: int,
        created_at: datetime,
        did_meet: bool = False,
        did_continue: bool = False,
        feedback_text: str = "",
    ) -> MatchFeedback:
        with self._lock:
            if match_id not in self._matches:
                raise NotFoundError(f"No match with id {match_id}")
            feedback = MatchFeedback(
                id=self._next_id("feedback"),
                match_id=match_id,
                user_id=user_id,
                rating=rating,
                created_at=created_at,
                did_meet=did_meet,
                did_continue=did_continue,
                feedback_text=feedback_text,
            )
            self._feedback[feedback.id] = feedback
            return feedback

    def list_feedback(self) -> List[MatchFeedback]:
        with self._lock:
            return list(self._feedback.values())

    def create_batch_run(self, run_type: str, algorithm_version: str, started_at: datetime) -> BatchMatchingRun:
        with self._lock:
            run = BatchMatchingRun(
                id=self._next_id("batch_run"),
                run_type=run_type,
                algorithm_version=algorithm_version,
                started_at=started_at,
            )
            self._batch_runs[run.id] = run
            return replace(run)

    def update_batch_run(self, run: BatchMatchingRun) -> BatchMatchingRun:
        with self._lock:
            if run.id not in self._batch_runs:
                raise NotFoundError(f"No batch run with id {run.id}")
            self._batch_runs[run.id] = replace(run)
            return run

    def list_batch_runs(self) -> List[BatchMatchingRun]:
        with self._lock:
            return [replace(r) for r in self._batch_runs.values()]

    def record_algorithm_outcome(self, outcome: AlgorithmOutcome) -> bool:
        """Store an outcome; a second outcome for the same (version, match) is ignored."""
        key = (outcome.algorithm_version, outcome.match_id)
        with self._lock:
            if key in self._outcomes:
                return False
            self._outcomes[key] = outcome
            return True

    def list_algorithm_outcomes(self, algorithm_version: Optional[str] = None) -> List[AlgorithmOutcome]:
        with self._lock:
            outcomes = list(self._outcomes.values())
        if algorithm_version is not None:
            outcomes = [o for o in outcomes if o.algorithm_version == algorithm_version]
        return outcomes

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, data_dir: Path) -> None:
        """Write every record type to ``data_dir`` (embeddings included).

        Raises:
            ValueError: If stored embeddings have mixed dimensions (nothing is written)
        """
        with self._lock:
            profiles = self.list_profiles()
            vectors = {p.user_id: p.embedding for p in profiles if p.embedding}
            try:
                data_io.embedding_dimension(vectors)
            except ValueError as e:
                logger.error("Not saving store to %s: %s", data_dir, e)
                raise

            data_dir.mkdir(parents=True, exist_ok=True)
            data_io.save_profiles(profiles, data_dir / data_io.PROFILES_FILE)
            data_io.save_preferences(
                [self._preferences[uid] for uid in sorted(self._preferences)],
                data_dir / data_io.PREFERENCES_FILE,
            )
            data_io.save_interactions(self._interactions.values(), data_dir / data_io.INTERACTIONS_FILE)
            data_io.save_matches(self._matches.values(), data_dir / data_io.MATCHES_FILE)
            data_io.save_feedback(self._feedback.values(), data_dir / data_io.FEEDBACK_FILE)
            data_io.save_batch_runs(self._batch_runs.values(), data_dir / data_io.BATCH_RUNS_FILE)
            data_io.save_algorithm_outcomes(
                self._outcomes.values(), data_dir / data_io.ALGORITHM_OUTCOMES_FILE
            )

            data_io.save_embeddings_npy(vectors, data_dir / data_io.EMBEDDINGS_FILE)

        logger.info("Saved store to %s (%d profiles, %d matches)", data_dir, len(profiles), len(self._matches))

    @classmethod
    def load(cls, data_dir: Path) -> "MatchStore":
        """Load a store from ``data_dir``; missing files are treated as empty."""
        store = cls()

        profiles = data_io.load_profiles(data_dir / data_io.PROFILES_FILE)
        npy_path = data_dir / data_io.EMBEDDINGS_FILE
        if npy_path.exists():
            embeddings, mapping = data_io.load_embeddings_npy(npy_path)
            attached = data_io.attach_embeddings(profiles, embeddings, mapping)
            logger.debug("Attached %d embeddings from %s", attached, npy_path)

        for profile in profiles:
            store._profiles[profile.user_id] = profile
        for preferences in data_io.load_preferences(data_dir / data_io.PREFERENCES_FILE):
            store._preferences[preferences.user_id] = preferences
        for event in data_io.load_interactions(data_dir / data_io.INTERACTIONS_FILE):
            store._interactions[event.id] = event
        for match in data_io.load_matches(data_dir / data_io.MATCHES_FILE):
            store._matches[match.id] = match
            store._match_keys[(match.user_id, match.target_user_id, match.algorithm_version)] = match.id
        for feedback in data_io.load_feedback(data_dir / data_io.FEEDBACK_FILE):
            store._feedback[feedback.id] = feedback
        for run in data_io.load_batch_runs(data_dir / data_io.BATCH_RUNS_FILE):
            store._batch_runs[run.id] = run
        for outcome in data_io.load_algorithm_outcomes(data_dir / data_io.ALGORITHM_OUTCOMES_FILE):
            store._outcomes[(outcome.algorithm_version, outcome.match_id)] = outcome

        store._last_ids.update({
            "interaction": max(store._interactions, default=0),
            "match": max(store._matches, default=0),
            "feedback": max(store._feedback, default=0),
            "batch_run": max(store._batch_runs, default=0),
        })

        logger.info(
            "Loaded store from %s (%d profiles, %d interactions, %d matches)",
            data_dir, len(store._profiles), len(store._interactions), len(store._matches),
        )
        return store
