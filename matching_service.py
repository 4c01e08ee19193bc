"""
Matching Service - the interface the wider application calls.

Wires the store, weight registry, scorer/ranker, analytics, embedder and
cache together:

- score_candidates / score_candidates_for_user: ranked, explained candidates
- record_interaction: append to the interaction log and advance match stages
- get_system_metrics / get_user_insights: cached analytics
- profile and preference upserts with ownership checks
- match persistence, stage transitions, feedback, batch runs

The cache is handed in by the caller (constructed at process start); the
service invalidates it by tag whenever the data behind an entry changes and
closes it in ``close()``.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from tqdm import tqdm

from api.converters import (
    preferences_from_payload,
    profile_from_payload,
    validate_payload,
    validate_preferences,
    validate_profile,
)
from api.schemas import FeedbackPayload, InteractionPayload, PreferencePayload, ProfilePayload
from core.cache import TaggedTTLCache
from core.constants import ACTION_TARGET_STAGE, BATCH_RUN_TYPES, QUALITY_SCORE_RANGE
from core.errors import OwnershipError, ProfileValidationError, StageConflictError
from core.models import (
    AlgorithmRecommendations,
    BatchMatchingRun,
    InteractionEvent,
    MatchFeedback,
    MatchingMetrics,
    MatchingPreference,
    MatchResult,
    RankedCandidate,
    UserMatchingInsights,
    UserProfile,
)
from core.settings import MatchingSettings
from feature_extraction import InteractionHistory
from match_ranker import MatchRanker
from match_scorer import MatchScorer
from match_store import MatchStore
from matching_analytics import MatchingAnalytics
from profile_embedding import ProfileEmbedder
from weight_config import WeightConfiguration, WeightRegistry, build_default_registry

logger = logging.getLogger(__name__)

# Forward order of the lifecycle used when an action advances a match
STAGE_PROGRESSION = ["recommended", "contacted", "meeting", "success"]

METRICS_TAG = "metrics"


def _user_tag(user_id: str) -> str:
    return f"user:{user_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MatchingService:
    """Facade over the match scoring pipeline.

    Example:
        settings = MatchingSettings.from_env()
        service = MatchingService(
            store=MatchStore.load(Path("data")),
            registry=build_default_registry(settings.weights_path),
            settings=settings,
            cache=TaggedTTLCache(settings.cache_ttl),
        )
        ranked = service.score_candidates_for_user("u1")
        service.record_interaction("u1", ranked[0].user_id, "like")
        service.close()
    """

    def __init__(
        self,
        store: MatchStore,
        registry: WeightRegistry,
        settings: Optional[MatchingSettings] = None,
        cache: Optional[TaggedTTLCache] = None,
        embedder: Optional[ProfileEmbedder] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings or MatchingSettings()
        self.cache = cache
        self.embedder = embedder
        self.clock = clock
        self.analytics = MatchingAnalytics(store)

    def __enter__(self) -> "MatchingService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self.cache is not None:
            self.cache.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _invalidate(self, *user_ids: str, metrics: bool = True) -> None:
        if self.cache is None:
            return
        tags = [_user_tag(uid) for uid in user_ids]
        if metrics:
            tags.append(METRICS_TAG)
        self.cache.invalidate_tags(*tags)

    def _cached(self, key, compute: Callable[[], Any], tags: List[str]) -> Any:
        if self.cache is None:
            return compute()
        return self.cache.get_or_compute(key, compute, tags=tags)

    @staticmethod
    def _check_owner(actor_id: str, subject_id: str, is_admin: bool) -> None:
        if actor_id != subject_id and not is_admin:
            logger.warning("User %s attempted to modify data owned by %s", actor_id, subject_id)
            raise OwnershipError(f"User '{actor_id}' cannot modify data owned by '{subject_id}'")

    def resolve_weights(self, weight_version: Optional[str] = None) -> WeightConfiguration:
        """Active weights for ``weight_version`` or the configured default; fails closed."""
        return self.registry.resolve(weight_version, default=self.settings.weight_version)

    def build_history(self) -> InteractionHistory:
        """Snapshot of the interaction log for the behavior feature."""
        roles = {p.user_id: p.role_intent for p in self.store.list_profiles()}
        return InteractionHistory(self.store.list_interactions(), roles)

    # ------------------------------------------------------------------
    # Profiles and preferences
    # ------------------------------------------------------------------

    def upsert_profile(
        self,
        actor_id: str,
        data: Union[ProfilePayload, Dict[str, Any]],
        is_admin: bool = False,
    ) -> UserProfile:
        """Validate and store a profile; only its owner or an admin may write it.

        Raises:
            ProfileValidationError: Malformed or out-of-range fields, or an embedding whose
                length differs from the stored ones
            OwnershipError: ``actor_id`` is neither the owner nor an admin
        """
        payload = validate_payload(ProfilePayload, data)
        self._check_owner(actor_id, payload.user_id, is_admin)

        now = self.clock()
        existing = self.store.get_profile(payload.user_id)
        profile = profile_from_payload(payload)
        profile.updated_at = now
        if profile.last_active_at is None:
            if actor_id == payload.user_id:
                profile.last_active_at = now
            elif existing is not None:
                profile.last_active_at = existing.last_active_at

        expected_dim = self.store.embedding_dimension(exclude_user_id=profile.user_id)
        if profile.embedding:
            if expected_dim is not None and len(profile.embedding) != expected_dim:
                message = f"embedding has {len(profile.embedding)} dimensions, stored embeddings have {expected_dim}"
                raise ProfileValidationError(
                    f"Invalid ProfilePayload: embedding ({message})",
                    errors=[{"type": "embedding_dimension", "loc": ("embedding",), "msg": message}],
                )
        else:
            profile.embedding = None
            if self.embedder is not None:
                result = self.embedder.embed_profile(profile)
                profile.embedding = result.embedding or None
                if result.error:
                    logger.warning("Embedding for %s degraded: %s", profile.user_id, result.error)
            if profile.embedding and expected_dim is not None and len(profile.embedding) != expected_dim:
                logger.warning(
                    "Dropping %d-dimension embedding for %s, stored embeddings have %d",
                    len(profile.embedding), profile.user_id, expected_dim,
                )
                profile.embedding = None

        self.store.upsert_profile(profile)
        self._invalidate(profile.user_id, metrics=False)
        return profile

    def upsert_preferences(
        self,
        actor_id: str,
        data: Union[PreferencePayload, Dict[str, Any]],
        is_admin: bool = False,
    ) -> MatchingPreference:
        payload = validate_payload(PreferencePayload, data)
        self._check_owner(actor_id, payload.user_id, is_admin)

        preferences = preferences_from_payload(payload)
        preferences.updated_at = self.clock()
        self.store.upsert_preferences(preferences)
        self._invalidate(preferences.user_id, metrics=False)
        return preferences

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score_candidates(
        self,
        profile: UserProfile,
        preferences: Optional[MatchingPreference] = None,
        candidate_pool: Optional[Iterable[UserProfile]] = None,
        weight_version: Optional[str] = None,
        limit: Optional[int] = None,
        record_impressions: bool = False,
    ) -> List[RankedCandidate]:
        """Rank ``candidate_pool`` (default: every stored profile) for ``profile``.

        Raises:
            ProfileValidationError: a profile or the preferences are out of range
            UnknownWeightVersion / InactiveWeightVersion: ``weight_version`` cannot be used
        """
        weights = self.resolve_weights(weight_version)
        pool = list(candidate_pool) if candidate_pool is not None else self.store.list_profiles()
        validate_profile(profile)
        if preferences is not None:
            validate_preferences(preferences)
        for candidate in pool:
            validate_profile(candidate)
        ranker = MatchRanker(MatchScorer(weights))

        ranked = ranker.score_candidates(
            profile,
            preferences,
            pool,
            history=self.build_history(),
            limit=limit if limit is not None else self.settings.candidate_limit,
        )

        if record_impressions and ranked:
            now = self.clock()
            for candidate in ranked:
                self.store.append_interaction(
                    profile.user_id,
                    candidate.user_id,
                    "view",
                    created_at=now,
                    metadata={"source": "impression", "rank": candidate.rank, "weight_version": weights.version},
                )
            self._invalidate(profile.user_id)

        logger.info(
            "Scored %d candidates for %s with %s, %d ranked",
            len(pool), profile.user_id, weights.version, len(ranked),
        )
        return ranked

    def score_candidates_for_user(
        self,
        user_id: str,
        weight_version: Optional[str] = None,
        limit: Optional[int] = None,
        record_impressions: bool = False,
    ) -> List[RankedCandidate]:
        """Rank every stored profile for a stored user, using their stored preferences."""
        profile = self.store.require_profile(user_id)
        return self.score_candidates(
            profile,
            self.store.get_preferences(user_id),
            weight_version=weight_version,
            limit=limit,
            record_impressions=record_impressions,
        )

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------

    def record_interaction(
        self,
        user_id: str,
        target_user_id: str,
        action: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> InteractionEvent:
        """Append an interaction and advance the pair's active matches.

        ``latency_ms`` and ``quality_score`` may be passed inside ``metadata``.
        ``connect`` moves an active match to contacted, ``meet`` to meeting.

        Raises:
            ProfileValidationError: Unknown action or out-of-range values
        """
        extra = dict(metadata or {})
        payload = validate_payload(InteractionPayload, {
            "user_id": user_id,
            "target_user_id": target_user_id,
            "action": action,
            "latency_ms": extra.pop("latency_ms", None),
            "quality_score": extra.pop("quality_score", None),
            "metadata": extra,
        })

        event = self.store.append_interaction(
            payload.user_id,
            payload.target_user_id,
            payload.action,
            created_at=self.clock(),
            latency_ms=payload.latency_ms,
            quality_score=payload.quality_score,
            metadata=payload.metadata,
        )
        self._advance_matches(event)
        self._invalidate(event.user_id, event.target_user_id)
        return event

    def _advance_matches(self, event: InteractionEvent) -> None:
        target_stage = ACTION_TARGET_STAGE.get(event.action)
        if target_stage is None:
            return

        now = self.clock()
        target_index = STAGE_PROGRESSION.index(target_stage)
        for match in self.store.list_matches(event.user_id):
            if match.target_user_id != event.target_user_id or not match.is_active(now) or match.is_terminal():
                continue

            current = match.stage
            for step in STAGE_PROGRESSION[STAGE_PROGRESSION.index(current) + 1: target_index + 1]:
                try:
                    self.store.transition_stage(match.id, current, step, now)
                except StageConflictError:
                    logger.warning("Match %d changed concurrently; not advancing to %s", match.id, step)
                    break
                current = step

    def backfill_quality_score(self, interaction_id: int, quality_score: int) -> InteractionEvent:
        low, high = QUALITY_SCORE_RANGE
        if not low <= quality_score <= high:
            raise ProfileValidationError(
                f"quality_score must be between {low} and {high}",
                errors=[{"loc": ("quality_score",), "msg": "out of range", "type": "value_error"}],
            )
        event = self.store.backfill_quality_score(interaction_id, quality_score)
        self._invalidate(event.user_id, event.target_user_id)
        return event

    # ------------------------------------------------------------------
    # Match results
    # ------------------------------------------------------------------

    def create_matches(self, user_id: str, ranked: Iterable[RankedCandidate]) -> List[MatchResult]:
        """Persist ranked candidates as MatchResults (re-scoring keeps stages)."""
        now = self.clock()
        matches = [
            self.store.upsert_match(candidate.breakdown, now, self.settings.match_expiry_days)
            for candidate in ranked
        ]
        self._invalidate(user_id, *(m.target_user_id for m in matches))
        return matches

    def get_active_matches(self, user_id: str) -> List[MatchResult]:
        """The user's matches that are neither dropped nor expired, best first."""
        now = self.clock()
        active = [m for m in self.store.list_matches(user_id) if m.is_active(now)]
        return sorted(active, key=lambda m: (-m.total_score, m.id))

    def transition_stage(self, match_id: int, expected_stage: str, new_stage: str) -> MatchResult:
        """Compare-and-swap a match's stage.

        Raises:
            StageConflictError: The stored stage differs from ``expected_stage``
            InvalidStageTransition: The lifecycle does not allow the move
        """
        match = self.store.transition_stage(match_id, expected_stage, new_stage, self.clock())
        self._invalidate(match.user_id, match.target_user_id)
        return match

    def record_feedback(self, data: Union[FeedbackPayload, Dict[str, Any]]) -> MatchFeedback:
        """Store feedback from one side of a match and record the algorithm outcome."""
        payload = validate_payload(FeedbackPayload, data)
        match = self.store.get_match(payload.match_id)
        if payload.user_id not in (match.user_id, match.target_user_id):
            raise OwnershipError(f"User '{payload.user_id}' is not part of match {match.id}")

        now = self.clock()
        feedback = self.store.add_feedback(
            match.id,
            payload.user_id,
            payload.rating,
            created_at=now,
            did_meet=payload.did_meet,
            did_continue=payload.did_continue,
            feedback_text=payload.feedback_text,
        )

        if payload.rating >= 4:
            outcome = "positive"
        elif payload.rating <= 2:
            outcome = "negative"
        else:
            outcome = "neutral"
        self.analytics.track_algorithm_performance(match.algorithm_version, match.id, outcome, now)

        self._invalidate(match.user_id, match.target_user_id)
        return feedback

    # ------------------------------------------------------------------
    # Batch runs
    # ------------------------------------------------------------------

    def run_batch_matching(
        self,
        run_type: str = "manual",
        user_ids: Optional[Iterable[str]] = None,
        weight_version: Optional[str] = None,
        top_k: Optional[int] = None,
        max_workers: Optional[int] = None,
        show_progress: bool = False,
    ) -> BatchMatchingRun:
        """Recompute and persist the top matches for many users.

        The weight version is resolved once, before any work starts, and
        every match in the run is attributed to it. Users whose scoring
        fails are listed in ``run_metrics["failed_users"]``; matches already
        written stay in place, so a re-run is safe.

        Raises:
            ValueError: Unknown ``run_type``, or ``top_k`` / ``max_workers`` below 1
        """
        if run_type not in BATCH_RUN_TYPES:
            raise ValueError(f"Unknown run type '{run_type}', expected one of {list(BATCH_RUN_TYPES)}")

        top_k = self.settings.batch_top_k if top_k is None else top_k
        max_workers = self.settings.batch_max_workers if max_workers is None else max_workers
        if top_k < 1 or max_workers < 1:
            raise ValueError(f"top_k and max_workers must be at least 1, got {top_k} and {max_workers}")
        weights = self.resolve_weights(weight_version)

        started = time.monotonic()
        run = self.store.create_batch_run(run_type, weights.version, self.clock())
        logger.info("Batch run %d (%s) started with %s", run.id, run_type, weights.version)

        try:
            pool = self.store.list_profiles()
            users = sorted(set(user_ids)) if user_ids is not None else [p.user_id for p in pool]
            history = self.build_history()
            ranker = MatchRanker(MatchScorer(weights))
            now = self.clock()

            def process(uid: str) -> List[MatchResult]:
                profile = self.store.get_profile(uid)
                if profile is None:
                    return []
                ranked = ranker.score_candidates(
                    profile, self.store.get_preferences(uid), pool, history, limit=top_k
                )
                return [
                    self.store.upsert_match(c.breakdown, now, self.settings.match_expiry_days)
                    for c in ranked
                ]

            matches: List[MatchResult] = []
            failed: List[str] = []
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                future_to_user = {executor.submit(process, uid): uid for uid in users}

                iterator = as_completed(future_to_user)
                if show_progress:
                    iterator = tqdm(iterator, total=len(users), desc=f"Batch matching ({weights.version})")

                for future in iterator:
                    uid = future_to_user[future]
                    try:
                        matches.extend(future.result())
                    except Exception as e:
                        logger.error("Batch run %d: scoring failed for %s: %s", run.id, uid, e)
                        failed.append(uid)

            run.status = "completed"
            run.total_users = len(users)
            run.matches_generated = len(matches)
            run.run_metrics = {
                "average_score": (
                    round(sum(m.total_score for m in matches) / len(matches), 4) if matches else 0.0
                ),
                "processing_ms": int((time.monotonic() - started) * 1000),
                "failed_users": sorted(failed),
                "top_k": top_k,
            }
        except Exception as e:
            run.status = "failed"
            run.error = str(e)
            logger.exception("Batch run %d failed", run.id)
            raise
        finally:
            run.completed_at = self.clock()
            self.store.update_batch_run(run)
            if self.cache is not None:
                self.cache.clear()

        logger.info(
            "Batch run %d completed: %d users, %d matches", run.id, run.total_users, run.matches_generated
        )
        return run

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_system_metrics(self, time_range: str = "month") -> MatchingMetrics:
        return self._cached(
            ("metrics", time_range),
            lambda: self.analytics.get_system_metrics(time_range, now=self.clock()),
            tags=[METRICS_TAG],
        )

    def get_user_insights(self, user_id: str) -> UserMatchingInsights:
        return self._cached(
            ("insights", user_id),
            lambda: self.analytics.get_user_insights(user_id),
            tags=[_user_tag(user_id)],
        )

    def track_algorithm_performance(self, algorithm_version: str, match_id: int, outcome: str) -> bool:
        return self.analytics.track_algorithm_performance(algorithm_version, match_id, outcome, self.clock())

    def get_algorithm_recommendations(self, algorithm_version: Optional[str] = None) -> AlgorithmRecommendations:
        return self.analytics.get_algorithm_recommendations(self.clock(), algorithm_version)


def open_service(
    data_dir: Path,
    settings: MatchingSettings,
    weights_path: Optional[Path] = None,
    with_embedder: bool = False,
) -> MatchingService:
    """Build a service over the JSON data directory ``data_dir``.

    ``weights_path`` overrides ``settings.weights_path``. Call
    ``service.store.save(data_dir)`` to persist changes.

    Raises:
        WeightConfigurationError: The weights file is unreadable or invalid
    """
    registry = build_default_registry(weights_path or settings.weights_path)
    store = MatchStore.load(data_dir)
    embedder = ProfileEmbedder.from_settings(settings) if with_embedder else None
    logger.info(
        "Opened %s: %d profiles, weight versions %s",
        data_dir, len(store.list_profiles()), registry.active_versions(),
    )
    return MatchingService(
        store=store,
        registry=registry,
        settings=settings,
        cache=TaggedTTLCache(settings.cache_ttl),
        embedder=embedder,
    )
