"""Fusion pipeline orchestrator — the engine's public entry points.

This module provides the high-level :class:`FusionPipeline`.  It
coordinates:

1. Validating and de-duplicating modality observations
2. Reading the user's calibration / personality snapshots
3. Bias correction, fusion, personality adjustment, confidence scoring
4. Evolving the personality profile (serialised per user)
5. Emitting a :class:`FusionEvent` for downstream subscribers

Profile writes for one user are serialised with a per-user lock.  The hot
fusion path reads the last committed snapshot and never waits on writers.
"""

from __future__ import annotations

import asyncio
import threading
import time
import weakref
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Mapping, Sequence, TypeVar

import structlog

from moodsync.classifiers.base import ModalityClassifier
from moodsync.classifiers.runner import collect_observations
from moodsync.config import Settings, get_settings
from moodsync.errors import (
    InsufficientInputError,
    MoodSyncError,
    ProfileStoreError,
    RequestCancelledError,
    SchemaMismatchError,
)
from moodsync.events import EventDispatcher, FusionEvent
from moodsync.fusion.adapter import validate_vector
from moodsync.fusion.calibration import (
    FEEDBACK_STEP,
    apply_bias,
    resolve_label,
    resolve_modality,
    update_from_feedback,
)
from moodsync.fusion.confidence import evaluate_confidence, modality_contributions, rank_emotions
from moodsync.fusion.context import CONTEXT_WIDTH, context_snapshot
from moodsync.fusion.core import DEFAULT_TOLERANCE, FusionPredictor, MeanPoolingPredictor, fuse
from moodsync.fusion.models import FusionResult, WellnessReport
from moodsync.fusion.personality import EVOLUTION_RATE, adjust, evolve
from moodsync.fusion.wellness import (
    DEFAULT_RECENT_COUNT,
    DEFAULT_WINDOW_SIZE,
    HIGH_THRESHOLD,
    MEDIUM_THRESHOLD,
    build_wellness_report,
)
from moodsync.models import (
    CalibrationProfile,
    ContextSignals,
    EmotionLabel,
    Modality,
    ModalityObservation,
    PersonalityProfile,
)
from moodsync.storage.profiles import ProfileStore

logger = structlog.get_logger(__name__)

_P = TypeVar("_P", CalibrationProfile, PersonalityProfile)

DEFAULT_SNAPSHOT_CAPACITY = 10_000


@dataclass
class _ProfileSlot(Generic[_P]):
    """Store accessors and committed snapshots for one profile kind.

    Snapshots form an LRU of at most *capacity* users; the least recently
    used one is dropped first and is reloaded from the store on next use.
    """

    kind: str
    load: Callable[[str], _P | None]
    save: Callable[[_P], None]
    default: Callable[[str], _P]
    capacity: int = DEFAULT_SNAPSHOT_CAPACITY
    snapshots: OrderedDict[str, _P] = field(default_factory=OrderedDict)
    _guard: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get(self, user_id: str) -> _P | None:
        with self._guard:
            profile = self.snapshots.get(user_id)
            if profile is not None:
                self.snapshots.move_to_end(user_id)
            return profile

    def put(self, user_id: str, profile: _P, *, replace: bool = True) -> _P:
        """Commit *profile*; with ``replace=False`` an existing snapshot wins."""
        with self._guard:
            existing = self.snapshots.get(user_id)
            if existing is not None and not replace:
                self.snapshots.move_to_end(user_id)
                return existing
            self.snapshots[user_id] = profile
            self.snapshots.move_to_end(user_id)
            while len(self.snapshots) > self.capacity:
                self.snapshots.popitem(last=False)
            return profile

    def discard(self, user_id: str) -> None:
        with self._guard:
            self.snapshots.pop(user_id, None)


class FusionPipeline:
    """Orchestrator for multi-modal emotion fusion.

    Parameters
    ----------
    store : ProfileStore
        External store for calibration and personality profiles.
    predictor : FusionPredictor | None
        Learned fusion model; defaults to :class:`MeanPoolingPredictor`.
    dispatcher : EventDispatcher | None
        Receives a :class:`FusionEvent` after every successful fusion.
    default_adaptation_rate : float
        Adaptation rate given to users without a stored calibration.
    store_retry_attempts : int
        Save attempts before a store failure is surfaced.
    snapshot_capacity : int
        Users whose committed profiles are kept in memory per profile kind.

    The remaining keyword arguments mirror :class:`~moodsync.config.Settings`.
    """

    def __init__(
        self,
        store: ProfileStore,
        predictor: FusionPredictor | None = None,
        dispatcher: EventDispatcher | None = None,
        *,
        default_adaptation_rate: float = 0.1,
        feedback_step: float = FEEDBACK_STEP,
        bias_limit: float | None = None,
        personality_update_rate: float = EVOLUTION_RATE,
        context_width: int = CONTEXT_WIDTH,
        tolerance: float = DEFAULT_TOLERANCE,
        modality_timeout: float = 1.5,
        trend_window_size: int = DEFAULT_WINDOW_SIZE,
        wellness_recent_count: int = DEFAULT_RECENT_COUNT,
        wellness_high_threshold: float = HIGH_THRESHOLD,
        wellness_medium_threshold: float = MEDIUM_THRESHOLD,
        store_retry_attempts: int = 3,
        snapshot_capacity: int = DEFAULT_SNAPSHOT_CAPACITY,
    ) -> None:
        self._store = store
        self._predictor = predictor or MeanPoolingPredictor()
        self._dispatcher = dispatcher or EventDispatcher()

        self._default_adaptation_rate = default_adaptation_rate
        self._feedback_step = feedback_step
        self._bias_limit = bias_limit
        self._personality_rate = personality_update_rate
        self._context_width = context_width
        self._tolerance = tolerance
        self._modality_timeout = modality_timeout
        self._trend_window_size = trend_window_size
        self._recent_count = wellness_recent_count
        self._high_threshold = wellness_high_threshold
        self._medium_threshold = wellness_medium_threshold
        self._retry_attempts = max(1, store_retry_attempts)

        # Entries vanish once no caller holds the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

        self._calibration: _ProfileSlot[CalibrationProfile] = _ProfileSlot(
            kind="calibration",
            load=store.load_calibration,
            save=store.save_calibration,
            default=lambda uid: CalibrationProfile(
                user_id=uid, adaptation_rate=self._default_adaptation_rate,
            ),
            capacity=max(1, snapshot_capacity),
        )
        self._personality: _ProfileSlot[PersonalityProfile] = _ProfileSlot(
            kind="personality",
            load=store.load_personality,
            save=store.save_personality,
            default=lambda uid: PersonalityProfile(user_id=uid),
            capacity=max(1, snapshot_capacity),
        )

    @classmethod
    def from_settings(
        cls,
        store: ProfileStore,
        predictor: FusionPredictor | None = None,
        dispatcher: EventDispatcher | None = None,
        settings: Settings | None = None,
    ) -> FusionPipeline:
        s = settings or get_settings()
        return cls(
            store,
            predictor,
            dispatcher,
            default_adaptation_rate=s.default_adaptation_rate,
            feedback_step=s.feedback_step,
            bias_limit=s.calibration_bias_limit,
            personality_update_rate=s.personality_update_rate,
            context_width=s.context_width,
            tolerance=s.probability_tolerance,
            modality_timeout=s.modality_timeout_seconds,
            trend_window_size=s.trend_window_size,
            wellness_recent_count=s.wellness_recent_count,
            wellness_high_threshold=s.wellness_high_threshold,
            wellness_medium_threshold=s.wellness_medium_threshold,
            store_retry_attempts=s.store_retry_attempts,
            snapshot_capacity=s.profile_cache_size,
        )

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    # ── Detection ────────────────────────────────────────────

    def detect_emotion(
        self,
        observations: Sequence[ModalityObservation],
        context: ContextSignals | None,
        user_id: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> FusionResult:
        """Fuse the given observations into one :class:`FusionResult`.

        Malformed observations are dropped.  Raises
        :class:`InsufficientInputError` when none remain,
        :class:`DegenerateDistributionError` /
        :class:`SchemaMismatchError` on fusion failures, and
        :class:`RequestCancelledError` if *cancel_event* is set before the
        personality profile is written.
        """
        started = time.perf_counter()
        usable = self._usable_observations(observations, user_id)
        if not usable:
            logger.warning("fusion.no_usable_observations", user=user_id, supplied=len(observations))
            raise InsufficientInputError("no usable modality observations to fuse")

        calibration = self._read(self._calibration, user_id)
        personality = self._read(self._personality, user_id)

        try:
            calibrated = [apply_bias(obs, calibration) for obs in usable]
            raw = fuse(
                usable, calibrated, context, personality, self._predictor,
                context_width=self._context_width, tolerance=self._tolerance,
            )
            adjusted = adjust(raw, personality, tolerance=self._tolerance)
        except MoodSyncError as exc:
            logger.error("fusion.failed", user=user_id, error=str(exc), error_type=type(exc).__name__)
            raise

        confidence = evaluate_confidence(usable, adjusted)
        primary, secondary = rank_emotions(adjusted)

        result = FusionResult(
            user_id=user_id,
            primary_emotion=primary,
            secondary_emotions=secondary,
            full_distribution=adjusted,
            confidence=confidence,
            modality_contributions=modality_contributions(usable),
            context_snapshot=context_snapshot(context),
        )

        self._check_cancelled(cancel_event, user_id)
        try:
            self._mutate(
                self._personality,
                user_id,
                lambda p: evolve(p, primary.label, rate=self._personality_rate),
                cancel_event=cancel_event,
            )
        except ProfileStoreError as exc:
            logger.error("fusion.personality_not_saved", user=user_id, error=str(exc))

        result.processing_duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "fusion.complete",
            user=user_id,
            primary=primary.label.value,
            probability=round(primary.probability, 3),
            overall=round(confidence.overall, 3),
            agreement=round(confidence.agreement, 3),
            modalities=[obs.modality.value for obs in usable],
            duration_ms=round(result.processing_duration_ms, 2),
        )

        self._dispatcher.publish(FusionEvent(user_id=user_id, result=result))
        return result

    async def detect_from_inputs(
        self,
        inputs: Mapping[Modality | str, Any],
        classifiers: Mapping[Modality, ModalityClassifier],
        context: ContextSignals | None,
        user_id: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> FusionResult:
        """Classify every input concurrently, then fuse what came back.

        Cancelling the awaiting task sets the cancellation token so the
        worker thread never writes profiles afterwards.
        """
        token = cancel_event or threading.Event()
        try:
            collection = await collect_observations(
                classifiers, inputs, context, timeout=self._modality_timeout,
            )
            return await asyncio.to_thread(
                self.detect_emotion, collection.observations, context, user_id,
                cancel_event=token,
            )
        except asyncio.CancelledError:
            token.set()
            logger.info("fusion.request_cancelled", user=user_id)
            raise

    # ── Feedback ─────────────────────────────────────────────

    def submit_feedback(
        self,
        user_id: str,
        modality: Modality | str,
        correct_label: EmotionLabel | str | None,
    ) -> CalibrationProfile:
        """Apply user feedback to the calibration bias of *modality*.

        ``None`` feedback is a no-op.  Unknown labels raise
        :class:`UnknownLabelError`, unknown modalities
        :class:`UnknownModalityError`; both leave the profile unchanged.
        """
        modality = resolve_modality(modality)
        if correct_label is None:
            return self._read(self._calibration, user_id)

        resolve_label(correct_label)
        return self._mutate(
            self._calibration,
            user_id,
            lambda p: update_from_feedback(
                p, modality, correct_label,
                step=self._feedback_step, bias_limit=self._bias_limit,
            ),
        )

    # ── Wellness ─────────────────────────────────────────────

    def get_wellness_report(
        self,
        user_id: str,
        history: Sequence[FusionResult],
        current: FusionResult | None = None,
    ) -> WellnessReport:
        """Trend and wellness metrics over a caller-supplied history."""
        return build_wellness_report(
            user_id,
            history,
            current,
            window_size=self._trend_window_size,
            recent_count=self._recent_count,
            high_threshold=self._high_threshold,
            medium_threshold=self._medium_threshold,
        )

    # ── Profile snapshots ────────────────────────────────────

    def get_calibration(self, user_id: str) -> CalibrationProfile:
        return self._read(self._calibration, user_id)

    def get_personality(self, user_id: str) -> PersonalityProfile:
        return self._read(self._personality, user_id)

    def evict(self, user_id: str) -> None:
        """Drop the in-memory snapshots of *user_id*; the store is untouched."""
        self._calibration.discard(user_id)
        self._personality.discard(user_id)

    # ── Internals ────────────────────────────────────────────

    def _usable_observations(
        self,
        observations: Sequence[ModalityObservation],
        user_id: str,
    ) -> list[ModalityObservation]:
        usable: list[ModalityObservation] = []
        seen: set[Modality] = set()
        for obs in observations:
            try:
                validate_vector(obs.raw_probabilities, source=obs.modality.value)
            except SchemaMismatchError as exc:
                logger.warning(
                    "fusion.observation_dropped", user=user_id,
                    modality=obs.modality.value, reason=str(exc),
                )
                continue
            if obs.modality in seen:
                logger.warning(
                    "fusion.duplicate_modality_dropped", user=user_id, modality=obs.modality.value,
                )
                continue
            seen.add(obs.modality)
            usable.append(obs)
        return usable

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None, user_id: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("fusion.cancel_observed", user=user_id)
            raise RequestCancelledError(f"request for {user_id!r} was cancelled")

    def _load(self, slot: _ProfileSlot[_P], user_id: str) -> _P:
        """Load from the store, falling back to the last committed snapshot."""
        try:
            profile = slot.load(user_id)
        except ProfileStoreError as exc:
            snapshot = slot.get(user_id)
            if snapshot is None:
                logger.error(
                    "profile.load_failed_no_snapshot", kind=slot.kind, user=user_id, error=str(exc),
                )
                raise
            logger.warning(
                "profile.load_failed_using_snapshot", kind=slot.kind, user=user_id, error=str(exc),
            )
            return snapshot
        return profile if profile is not None else slot.default(user_id)

    def _read(self, slot: _ProfileSlot[_P], user_id: str) -> _P:
        snapshot = slot.get(user_id)
        if snapshot is not None:
            return snapshot
        profile = self._load(slot, user_id)
        # Never overwrite a snapshot committed by a concurrent writer.
        return slot.put(user_id, profile, replace=False)

    def _save(self, slot: _ProfileSlot[_P], profile: _P) -> None:
        last_exc: Exception | None = None
        for attempt in range(1, self._retry_attempts + 1):
            try:
                slot.save(profile)
                return
            except ProfileStoreError as exc:
                last_exc = exc
                logger.warning(
                    "profile.save_retry", kind=slot.kind, user=profile.user_id,
                    attempt=attempt, error=str(exc),
                )
        raise ProfileStoreError(
            f"{slot.kind} profile for {profile.user_id!r} not saved after "
            f"{self._retry_attempts} attempts"
        ) from last_exc

    def _mutate(
        self,
        slot: _ProfileSlot[_P],
        user_id: str,
        update: Callable[[_P], _P],
        *,
        cancel_event: threading.Event | None = None,
    ) -> _P:
        """Read-modify-write one profile under the user's lock.

        The snapshot only advances after the store accepted the write.
        """
        with self._user_lock(user_id):
            current = self._load(slot, user_id)
            updated = update(current)
            if updated is current:
                return current
            self._check_cancelled(cancel_event, user_id)
            self._save(slot, updated)
            slot.put(user_id, updated)
            return updated
