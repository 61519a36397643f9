"""Tests for the fusion pipeline orchestrator."""

from __future__ import annotations

import asyncio
import gc
import threading

import pytest

from moodsync.classifiers.base import FunctionClassifier, ModalityClassifier
from moodsync.config import Settings
from moodsync.errors import (
    InsufficientInputError,
    MoodSyncError,
    ProfileStoreError,
    RequestCancelledError,
    UnknownLabelError,
    UnknownModalityError,
)
from moodsync.events import EventDispatcher, FusionEvent
from moodsync.fusion.core import MeanPoolingPredictor, argmax, fuse
from moodsync.fusion.models import FusionResult
from moodsync.fusion.pipeline import FusionPipeline
from moodsync.models import (
    CalibrationProfile,
    ClassifierOutput,
    EmotionLabel,
    Modality,
    ModalityObservation,
    PersonalityProfile,
)
from moodsync.storage.profiles import InMemoryProfileStore, JsonFileProfileStore

from conftest import FIXED_TS, make_observation, one_hot


class FlakyStore(InMemoryProfileStore):
    """In-memory store whose operations can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_loads = False
        self.fail_saves = False
        self.save_attempts = 0

    def load_calibration(self, user_id):
        if self.fail_loads:
            raise ProfileStoreError("store offline")
        return super().load_calibration(user_id)

    def load_personality(self, user_id):
        if self.fail_loads:
            raise ProfileStoreError("store offline")
        return super().load_personality(user_id)

    def save_calibration(self, profile):
        self.save_attempts += 1
        if self.fail_saves:
            raise ProfileStoreError("disk full")
        super().save_calibration(profile)

    def save_personality(self, profile):
        self.save_attempts += 1
        if self.fail_saves:
            raise ProfileStoreError("disk full")
        super().save_personality(profile)


class SlowClassifier(ModalityClassifier):
    def __init__(self, modality: Modality, delay: float) -> None:
        self.modality = modality
        self._delay = delay

    async def predict(self, payload):
        await asyncio.sleep(self._delay)
        return ClassifierOutput(probabilities=one_hot("happy"), confidence=0.9)


# ── Detection ─────────────────────────────────────────────────


class TestDetectEmotion:
    def test_zero_observations_raise(self, pipeline, context):
        with pytest.raises(InsufficientInputError):
            pipeline.detect_emotion([], context, "U001")

    def test_sad_scenario(self, pipeline, context, sad_observations):
        result = pipeline.detect_emotion(sad_observations, context, "U001")

        assert isinstance(result, FusionResult)
        assert result.primary_emotion.label == EmotionLabel.SAD
        assert len(result.secondary_emotions) == 2
        assert sum(result.full_distribution) == pytest.approx(1.0)
        assert result.confidence.agreement == 1.0
        assert result.confidence.modality == pytest.approx(0.75)
        assert result.modality_contributions[Modality.FACIAL] == pytest.approx(0.8 / 1.5)
        assert result.modality_contributions[Modality.VOICE] == pytest.approx(0.7 / 1.5)
        assert result.context_snapshot["location"] == "home"
        assert result.processing_duration_ms >= 0.0

    def test_single_facial_sad_scenario(self, pipeline, context, neutral_personality):
        facial = make_observation("facial", [0.1, 0.6, 0.1, 0.05, 0.05, 0.05, 0.05], 0.8)

        raw = fuse(
            [facial], [list(facial.raw_probabilities)], context, neutral_personality,
            MeanPoolingPredictor(),
        )
        assert argmax(raw) == 1
        assert sum(raw) == pytest.approx(1.0)

        result = pipeline.detect_emotion([facial], context, "U001")
        assert result.primary_emotion.label == EmotionLabel.SAD
        assert sum(result.full_distribution) == pytest.approx(1.0)
        assert result.confidence.agreement == 1.0
        assert result.modality_contributions == {Modality.FACIAL: 1.0}

    def test_sad_result_evolves_neuroticism(self, pipeline, store, context, sad_observations):
        pipeline.detect_emotion(sad_observations, context, "U001")
        stored = store.load_personality("U001")
        assert stored.neuroticism == pytest.approx(0.51)
        assert pipeline.get_personality("U001").version == 1

    def test_disagreeing_modalities(self, pipeline, context):
        obs = [
            make_observation("facial", one_hot("happy", 0.9)),
            make_observation("voice", one_hot("angry", 0.6)),
        ]
        result = pipeline.detect_emotion(obs, context, "U001")
        assert result.confidence.agreement == 0.0
        assert result.primary_emotion.label == EmotionLabel.HAPPY

    def test_single_modality_agreement(self, pipeline, context):
        result = pipeline.detect_emotion([make_observation("text", one_hot("neutral"))], context, "U001")
        assert result.confidence.agreement == 1.0
        assert result.modality_contributions == {Modality.TEXT: 1.0}

    def test_duplicate_modality_keeps_first(self, pipeline, context):
        obs = [
            make_observation("facial", one_hot("surprised"), confidence=0.9),
            make_observation("facial", one_hot("disgusted"), confidence=0.2),
        ]
        result = pipeline.detect_emotion(obs, context, "U001")
        assert result.primary_emotion.label == EmotionLabel.SURPRISED
        assert list(result.modality_contributions) == [Modality.FACIAL]

    def test_malformed_observation_dropped(self, pipeline, context):
        bad = ModalityObservation.model_construct(
            modality=Modality.VOICE,
            raw_probabilities=(0.5, 0.5),
            confidence=0.9,
            context_tags=(),
            timestamp=FIXED_TS,
        )
        result = pipeline.detect_emotion([bad, make_observation("text", one_hot("sad"))], context, "U001")
        assert list(result.modality_contributions) == [Modality.TEXT]

    def test_only_malformed_observations_raise(self, pipeline, context):
        bad = ModalityObservation.model_construct(
            modality=Modality.VOICE,
            raw_probabilities=(2.0,) * 7,
            confidence=0.9,
            context_tags=(),
            timestamp=FIXED_TS,
        )
        with pytest.raises(InsufficientInputError):
            pipeline.detect_emotion([bad], context, "U001")

    def test_calibration_shifts_outcome(self, store, context):
        store.save_calibration(
            CalibrationProfile(
                user_id="U002",
                per_modality_bias={Modality.FACIAL: [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 5.0]},
                adaptation_rate=0.5,
            )
        )
        pipeline = FusionPipeline(store)
        result = pipeline.detect_emotion([make_observation("facial", one_hot("happy", 0.5))], context, "U002")
        assert result.primary_emotion.label == EmotionLabel.NEUTRAL

    def test_subscribers_receive_event(self, store, context, sad_observations):
        dispatcher = EventDispatcher()
        received: list[FusionEvent] = []
        dispatcher.subscribe(received.append)
        pipeline = FusionPipeline(store, dispatcher=dispatcher)

        result = pipeline.detect_emotion(sad_observations, context, "U001")
        assert len(received) == 1
        assert received[0].result.id == result.id
        assert pipeline.dispatcher is dispatcher

    def test_failing_subscriber_does_not_break_fusion(self, pipeline, context, sad_observations):
        def boom(event):
            raise RuntimeError("subscriber crashed")

        pipeline.dispatcher.subscribe(boom)
        result = pipeline.detect_emotion(sad_observations, context, "U001")
        assert result.primary_emotion.label == EmotionLabel.SAD


# ── Cancellation ──────────────────────────────────────────────


class TestCancellation:
    def test_cancelled_request_writes_nothing(self, pipeline, store, context, sad_observations):
        token = threading.Event()
        token.set()
        with pytest.raises(RequestCancelledError):
            pipeline.detect_emotion(sad_observations, context, "U001", cancel_event=token)
        assert store.load_personality("U001") is None

    def test_unset_token_runs_normally(self, pipeline, store, context, sad_observations):
        pipeline.detect_emotion(sad_observations, context, "U001", cancel_event=threading.Event())
        assert store.load_personality("U001") is not None


# ── Store failures ────────────────────────────────────────────


class TestStoreFailures:
    def test_load_failure_without_snapshot_raises(self, context, sad_observations):
        store = FlakyStore()
        store.fail_loads = True
        with pytest.raises(ProfileStoreError):
            FusionPipeline(store).detect_emotion(sad_observations, context, "U001")

    def test_load_failure_falls_back_to_snapshot(self, context, sad_observations):
        store = FlakyStore()
        pipeline = FusionPipeline(store)
        pipeline.submit_feedback("U001", "facial", "happy")

        store.fail_loads = True
        profile = pipeline.submit_feedback("U001", "facial", "happy")
        assert profile.per_modality_bias[Modality.FACIAL][0] == pytest.approx(0.02)

    def test_save_failure_is_retried_then_surfaced(self):
        store = FlakyStore()
        store.fail_saves = True
        pipeline = FusionPipeline(store, store_retry_attempts=3)
        with pytest.raises(ProfileStoreError):
            pipeline.submit_feedback("U001", "voice", "sad")
        assert store.save_attempts == 3
        assert pipeline.get_calibration("U001").version == 0

    def test_personality_save_failure_still_returns_result(self, context, sad_observations):
        store = FlakyStore()
        store.fail_saves = True
        pipeline = FusionPipeline(store, store_retry_attempts=2)
        result = pipeline.detect_emotion(sad_observations, context, "U001")
        assert result.primary_emotion.label == EmotionLabel.SAD
        assert pipeline.get_personality("U001").neuroticism == 0.5


# ── Feedback ──────────────────────────────────────────────────


class TestFeedback:
    def test_feedback_round_trip(self, pipeline, store):
        profile = pipeline.submit_feedback("U001", "facial", "sad")
        assert profile.per_modality_bias[Modality.FACIAL][1] == pytest.approx(0.01)
        assert store.load_calibration("U001").version == 1
        assert pipeline.get_calibration("U001") == profile

    def test_none_feedback_is_noop(self, pipeline, store):
        profile = pipeline.submit_feedback("U001", "facial", None)
        assert profile.version == 0
        assert store.load_calibration("U001") is None

    def test_unknown_label_leaves_profile(self, pipeline, store):
        with pytest.raises(UnknownLabelError):
            pipeline.submit_feedback("U001", "facial", "bored")
        assert store.load_calibration("U001") is None

    def test_feedback_changes_only_confirmed_slot(self, store):
        before = CalibrationProfile(
            user_id="U001",
            per_modality_bias={
                Modality.FACIAL: [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7],
                Modality.VOICE: [0.2] * 7,
            },
            adaptation_rate=0.2,
        )
        store.save_calibration(before)

        after = FusionPipeline(store).submit_feedback("U001", "voice", "angry")

        assert after.per_modality_bias[Modality.FACIAL] == before.per_modality_bias[Modality.FACIAL]
        assert set(after.per_modality_bias) == {Modality.FACIAL, Modality.VOICE}
        for i, (old, new) in enumerate(
            zip(before.per_modality_bias[Modality.VOICE], after.per_modality_bias[Modality.VOICE])
        ):
            if i == 2:
                assert new == pytest.approx(old + 0.2 * 0.1)
            else:
                assert new == old

    def test_unknown_modality_is_typed(self, pipeline, store):
        with pytest.raises(UnknownModalityError) as exc:
            pipeline.submit_feedback("U001", "gaze", "happy")
        assert isinstance(exc.value, MoodSyncError)
        assert store.load_calibration("U001") is None

    def test_json_store_keeps_similar_user_ids_apart(self, tmp_path):
        FusionPipeline(JsonFileProfileStore(tmp_path)).submit_feedback("user@a", "facial", "happy")

        fresh = FusionPipeline(JsonFileProfileStore(tmp_path))
        other = fresh.get_calibration("user_a")
        assert other.user_id == "user_a"
        assert other.per_modality_bias == {}
        assert fresh.get_calibration("user@a").per_modality_bias[Modality.FACIAL][0] == pytest.approx(0.01)

    def test_json_store_persists_across_pipelines(self, tmp_path):
        first = FusionPipeline(JsonFileProfileStore(tmp_path))
        first.submit_feedback("U001", "text", "angry")
        first.submit_feedback("U001", "text", "angry")

        second = FusionPipeline(JsonFileProfileStore(tmp_path))
        profile = second.get_calibration("U001")
        assert profile.per_modality_bias[Modality.TEXT][2] == pytest.approx(0.02)
        assert profile.version == 2

    def test_concurrent_feedback_is_serialised(self, pipeline, store):
        threads = [
            threading.Thread(target=pipeline.submit_feedback, args=("U001", "voice", "happy"))
            for _ in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        profile = store.load_calibration("U001")
        assert profile.version == 20
        assert profile.per_modality_bias[Modality.VOICE][0] == pytest.approx(0.2)

    def test_default_adaptation_rate_from_settings(self, store):
        settings = Settings(default_adaptation_rate=0.5, _env_file=None)
        pipeline = FusionPipeline.from_settings(store, settings=settings)
        profile = pipeline.submit_feedback("U009", "biometric", "fearful")
        assert profile.adaptation_rate == 0.5
        assert profile.per_modality_bias[Modality.BIOMETRIC][3] == pytest.approx(0.05)


# ── Snapshot cache ────────────────────────────────────────────


class TestSnapshotCache:
    def test_least_recently_used_snapshot_dropped(self):
        store = FlakyStore()
        pipeline = FusionPipeline(store, snapshot_capacity=2)
        for user in ("A", "B", "C"):
            pipeline.submit_feedback(user, "facial", "happy")

        store.fail_loads = True
        assert pipeline.get_calibration("C").version == 1
        assert pipeline.get_calibration("B").version == 1
        with pytest.raises(ProfileStoreError):
            pipeline.get_calibration("A")

    def test_evict_reloads_from_store(self, pipeline, store):
        pipeline.submit_feedback("U001", "facial", "happy")
        store.save_calibration(CalibrationProfile(user_id="U001", version=7))
        assert pipeline.get_calibration("U001").version == 1

        pipeline.evict("U001")
        assert pipeline.get_calibration("U001").version == 7

    def test_user_locks_released_after_use(self, pipeline):
        for i in range(50):
            pipeline.submit_feedback(f"user-{i}", "voice", "sad")
        gc.collect()
        assert len(pipeline._locks) == 0

    def test_capacity_from_settings(self, store):
        settings = Settings(profile_cache_size=1, _env_file=None)
        pipeline = FusionPipeline.from_settings(store, settings=settings)
        pipeline.submit_feedback("A", "text", "sad")
        pipeline.submit_feedback("B", "text", "sad")
        assert list(pipeline._calibration.snapshots) == ["B"]


# ── Wellness ──────────────────────────────────────────────────


class TestWellnessReport:
    def test_report_over_history(self, pipeline, history):
        report = pipeline.get_wellness_report("U001", history)
        assert report.dominant_emotion == EmotionLabel.HAPPY
        assert report.window_size == 7

    def test_window_size_is_configurable(self, store, history):
        pipeline = FusionPipeline(store, trend_window_size=2)
        report = pipeline.get_wellness_report("U001", history)
        assert report.window_size == 2
        assert report.diversity == 2


# ── Async collection ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_detect_from_inputs(pipeline, context):
    classifiers = {
        Modality.FACIAL: FunctionClassifier("facial", lambda _: (one_hot("sad"), 0.8)),
        Modality.VOICE: FunctionClassifier("voice", lambda _: one_hot("sad", 0.6)),
    }
    result = await pipeline.detect_from_inputs(
        {"facial": "frame-001", "voice": [0.1, 0.2]}, classifiers, context, "U001",
    )
    assert result.primary_emotion.label == EmotionLabel.SAD
    assert set(result.modality_contributions) == {Modality.FACIAL, Modality.VOICE}


@pytest.mark.asyncio
async def test_detect_from_inputs_drops_slow_modality(store, context):
    pipeline = FusionPipeline(store, modality_timeout=0.3)
    classifiers = {
        Modality.FACIAL: FunctionClassifier("facial", lambda _: one_hot("angry")),
        Modality.VOICE: SlowClassifier(Modality.VOICE, delay=3.0),
    }
    result = await pipeline.detect_from_inputs(
        {"facial": "frame", "voice": "clip"}, classifiers, context, "U001",
    )
    assert list(result.modality_contributions) == [Modality.FACIAL]
    assert result.primary_emotion.label == EmotionLabel.ANGRY


@pytest.mark.asyncio
async def test_detect_from_inputs_all_failed(pipeline, context):
    def broken(_):
        raise RuntimeError("model not loaded")

    classifiers = {Modality.TEXT: FunctionClassifier("text", broken)}
    with pytest.raises(InsufficientInputError):
        await pipeline.detect_from_inputs({"text": "hello"}, classifiers, context, "U001")


@pytest.mark.asyncio
async def test_cancelled_task_sets_token(store, context):
    pipeline = FusionPipeline(store, modality_timeout=5.0)
    token = threading.Event()
    classifiers = {Modality.VOICE: SlowClassifier(Modality.VOICE, delay=5.0)}

    task = asyncio.create_task(
        pipeline.detect_from_inputs({"voice": "clip"}, classifiers, context, "U001", cancel_event=token)
    )
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert token.is_set()
    assert store.load_personality("U001") is None


def test_new_user_gets_neutral_personality(pipeline, store):
    profile = pipeline.get_personality("new-user")
    assert isinstance(profile, PersonalityProfile)
    assert profile.traits() == [0.5] * 5
    assert profile.version == 0
    assert store.load_personality("new-user") is None
