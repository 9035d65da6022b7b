"""Tests for motion ingest and stability classification."""

import pytest

from compensation.config import CompensationConfig
from compensation.models import MotionState, TrackingQuality
from compensation.motion import (
    MotionHistory,
    MotionIngestError,
    MotionSample,
    assess_stability,
    classify_motion,
    match_sample,
    motion_magnitude,
    nearest_sample,
    stable_duration,
)
from utils.validation import DeviceMotionReading

RATE = 60.0


def still_samples(count: int, start: float = 0.0):
    return [MotionSample(timestamp=start + i / RATE) for i in range(count)]


class TestMotionSample:
    """Tests for the motion sample record."""

    def test_magnitude_weights_rotation(self):
        sample = MotionSample(
            timestamp=0.0,
            user_acceleration=(0.03, 0.04, 0.0),
            rotation_rate=(0.0, 0.0, 1.0),
        )
        assert sample.acceleration_magnitude == pytest.approx(0.05)
        assert sample.magnitude() == pytest.approx(0.15)
        assert sample.magnitude(angular_weight=0.0) == pytest.approx(0.05)

    def test_default_frame(self):
        """Sensor-gap frame: zero motion, gravity straight down, flagged."""
        sample = MotionSample.default(3.0)

        assert sample.timestamp == 3.0
        assert sample.is_fallback
        assert sample.user_acceleration == (0.0, 0.0, 0.0)
        assert sample.rotation_rate == (0.0, 0.0, 0.0)
        assert sample.gravity == (0.0, -1.0, 0.0)

    def test_from_reading(self):
        """Device field names map onto the sample vectors."""
        reading = DeviceMotionReading(**{
            "timestamp": 1.5,
            "attitudeYaw": 0.2,
            "rotationRateZ": 0.1,
            "userAccelX": 0.01,
            "gravityY": -0.98,
            "magneticFieldX": 20.0,
        })
        sample = MotionSample.from_reading(reading)

        assert sample.timestamp == 1.5
        assert sample.attitude == (0.0, 0.0, 0.2)
        assert sample.rotation_rate == (0.0, 0.0, 0.1)
        assert sample.user_acceleration == (0.01, 0.0, 0.0)
        assert sample.gravity == (0.0, -0.98, 0.0)
        assert sample.magnetic_field == (20.0, 0.0, 0.0)
        assert not sample.is_fallback


class TestMotionHistory:
    """Tests for the rolling history buffer."""

    def test_bounded_by_count(self):
        history = MotionHistory(max_length=5, max_seconds=100.0)
        for sample in still_samples(10):
            history.append(sample)

        snapshot = history.snapshot()
        assert len(snapshot) == 5
        assert snapshot[0].timestamp == pytest.approx(5 / RATE)
        assert snapshot[-1].timestamp == pytest.approx(9 / RATE)

    def test_bounded_by_age(self):
        history = MotionHistory(max_length=1000, max_seconds=1.0)
        for i in range(21):
            history.append(MotionSample(timestamp=i * 0.1))

        snapshot = history.snapshot()
        newest = snapshot[-1].timestamp
        assert all(newest - s.timestamp <= 1.0 + 1e-9 for s in snapshot)
        assert len(snapshot) < 21

    def test_out_of_order_rejected(self):
        history = MotionHistory()
        history.append(MotionSample(timestamp=1.0))

        with pytest.raises(MotionIngestError, match="Out-of-order"):
            history.append(MotionSample(timestamp=0.5))

    def test_equal_timestamps_allowed(self):
        history = MotionHistory()
        history.append(MotionSample(timestamp=1.0))
        history.append(MotionSample(timestamp=1.0))
        assert len(history) == 2

    def test_snapshot_is_immutable_copy(self):
        history = MotionHistory()
        history.append(MotionSample(timestamp=0.0))
        snapshot = history.snapshot()
        history.append(MotionSample(timestamp=1.0))

        assert isinstance(snapshot, tuple)
        assert len(snapshot) == 1

    def test_clear(self):
        history = MotionHistory()
        history.append(MotionSample(timestamp=0.0))
        history.clear()

        assert len(history) == 0
        assert history.latest() is None


class TestSampleMatching:
    """Tests for nearest-sample lookup."""

    def test_nearest(self):
        samples = [MotionSample(timestamp=t) for t in (0.0, 1.0, 2.0)]
        assert nearest_sample(samples, 1.2).timestamp == 1.0

    def test_tie_goes_to_earlier(self):
        samples = [MotionSample(timestamp=1.0), MotionSample(timestamp=2.0)]
        assert nearest_sample(samples, 1.5).timestamp == 1.0

    def test_gap_tolerance(self):
        samples = [MotionSample(timestamp=0.0)]
        assert nearest_sample(samples, 2.0, max_gap=0.5) is None
        assert nearest_sample([], 0.0) is None

    def test_match_falls_back(self):
        """No sample within tolerance gives the documented default frame."""
        config = CompensationConfig()
        sample = match_sample([MotionSample(timestamp=0.0)], 5.0, config)

        assert sample.is_fallback
        assert sample.timestamp == 5.0

    def test_match_empty_history(self):
        sample = match_sample([], 1.0, CompensationConfig())
        assert sample.is_fallback


class TestStability:
    """Tests for stability assessment and motion classification."""

    def test_assess_none(self):
        stability = assess_stability(None, CompensationConfig())

        assert not stability.is_stable
        assert stability.confidence == 0.0
        assert stability.stability_level == TrackingQuality.POOR

    def test_assess_still(self):
        stability = assess_stability(MotionSample(timestamp=0.0), CompensationConfig())

        assert stability.is_stable
        assert stability.confidence == 1.0
        assert stability.stability_level == TrackingQuality.EXCELLENT

    def test_assess_partial(self):
        sample = MotionSample(timestamp=0.0, user_acceleration=(0.025, 0.0, 0.0))
        stability = assess_stability(sample, CompensationConfig())

        assert stability.is_stable
        assert stability.confidence == pytest.approx(0.5)

    def test_empty_is_unknown(self):
        assert classify_motion([], CompensationConfig()) == MotionState.UNKNOWN

    def test_still_long_enough_is_stable(self):
        """Two seconds below threshold at 60 Hz."""
        assert classify_motion(still_samples(120), CompensationConfig()) == MotionState.STABLE

    def test_still_too_briefly_is_low_motion(self):
        assert classify_motion(still_samples(30), CompensationConfig()) == MotionState.LOW_MOTION

    def test_instantaneous_rule(self):
        """stability_duration=0 classifies from the latest sample alone."""
        config = CompensationConfig(stability_duration=0.0)
        assert classify_motion(still_samples(1), config) == MotionState.STABLE

    def test_moderate_motion(self):
        samples = still_samples(120)
        samples.append(MotionSample(timestamp=3.0, user_acceleration=(0.08, 0.0, 0.0)))
        assert classify_motion(samples, CompensationConfig()) == MotionState.LOW_MOTION

    def test_high_motion(self):
        samples = still_samples(120)
        samples.append(MotionSample(timestamp=3.0, user_acceleration=(0.2, 0.0, 0.0)))
        assert classify_motion(samples, CompensationConfig()) == MotionState.HIGH_MOTION

    def test_settling_after_motion(self):
        """A moving sample resets the stable run."""
        config = CompensationConfig()
        samples = [MotionSample(timestamp=0.0, user_acceleration=(0.3, 0.0, 0.0))]
        samples += still_samples(30, start=1 / RATE)

        assert stable_duration(samples, config) == pytest.approx(29 / RATE)
        assert classify_motion(samples, config) == MotionState.LOW_MOTION

    def test_magnitude_uses_config_weight(self):
        config = CompensationConfig(angular_weight=0.5)
        sample = MotionSample(timestamp=0.0, rotation_rate=(0.0, 0.2, 0.0))
        assert motion_magnitude(sample, config) == pytest.approx(0.1)


def feed(history: MotionHistory, count: int, rate: float, start: float = 0.0, acceleration: float = 0.0) -> None:
    for i in range(count):
        history.append(MotionSample(timestamp=start + i / rate, user_acceleration=(acceleration, 0.0, 0.0)))


class TestStabilityWindow:
    """Tests for stability runs longer than the sample buffer."""

    def test_still_at_100hz_becomes_stable(self):
        """100 samples at 100 Hz span 0.99s, short of the 1s window."""
        config = CompensationConfig(sample_rate=100.0)
        history = MotionHistory.from_config(config)
        feed(history, 1000, rate=100.0)

        snapshot = history.snapshot()
        assert len(snapshot) == 100
        assert snapshot[-1].timestamp - snapshot[0].timestamp < config.stability_duration
        assert history.still_since == 0.0
        assert history.classify() == MotionState.STABLE

    def test_short_buffer_at_60hz(self):
        config = CompensationConfig(max_history_length=30)
        history = MotionHistory.from_config(config)

        feed(history, 50, rate=RATE)
        assert history.classify() == MotionState.LOW_MOTION

        feed(history, 70, rate=RATE, start=50 / RATE)
        assert len(history) == 30
        assert history.classify() == MotionState.STABLE

    def test_motion_restarts_run(self):
        config = CompensationConfig(sample_rate=100.0)
        history = MotionHistory.from_config(config)
        feed(history, 200, rate=100.0)
        history.append(MotionSample(timestamp=2.0, user_acceleration=(0.3, 0.0, 0.0)))

        assert history.classify() == MotionState.HIGH_MOTION
        assert history.still_since is None

        feed(history, 50, rate=100.0, start=2.01)
        assert history.still_since == pytest.approx(2.01)
        assert history.classify() == MotionState.LOW_MOTION

        feed(history, 60, rate=100.0, start=2.51)
        assert history.classify() == MotionState.STABLE

    def test_clear_resets_run(self):
        history = MotionHistory.from_config(CompensationConfig())
        feed(history, 10, rate=RATE)
        history.clear()

        assert history.still_since is None
        assert history.classify() == MotionState.UNKNOWN

    def test_explicit_run_start(self):
        """classify_motion honours a run start older than the snapshot."""
        samples = still_samples(30, start=5.0)
        config = CompensationConfig()

        assert classify_motion(samples, config) == MotionState.LOW_MOTION
        assert classify_motion(samples, config, still_since=0.0) == MotionState.STABLE

    def test_classify_needs_config(self):
        history = MotionHistory()
        feed(history, 5, rate=RATE)

        assert history.still_since is None
        with pytest.raises(MotionIngestError):
            history.classify()
