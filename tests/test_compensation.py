"""Tests for the four-stage compensation pipeline."""

import numpy as np
import pytest

from compensation.config import CompensationConfig
from compensation.models import CompensationStage, MeasurementKind, RawMeasurement
from compensation.motion import MotionSample
from compensation.stages import (
    STAGES,
    compensate,
    radial_velocity,
    run_stages,
)

RATE = 60.0


def only(*flags: str, **overrides) -> CompensationConfig:
    """Config with just the named stages enabled."""
    all_flags = [flag for _, flag, _ in STAGES]
    values = {flag: flag in flags for flag in all_flags}
    values.update(overrides)
    return CompensationConfig(**values)


def raw_distance(value: float = 2.0, timestamp: float = 0.0, position=(0.0, 0.0, 0.0)) -> RawMeasurement:
    return RawMeasurement(
        kind=MeasurementKind.DISTANCE,
        value=value,
        distance=value,
        position=position,
        timestamp=timestamp,
    )


def still_history(count: int = 120):
    return tuple(MotionSample(timestamp=i / RATE) for i in range(count))


def noisy_history(count: int = 120, seed: int = 0):
    rng = np.random.default_rng(seed)
    return tuple(
        MotionSample(
            timestamp=i / RATE,
            user_acceleration=tuple(rng.normal(0.0, 0.05, 3)),
            rotation_rate=tuple(rng.normal(0.0, 0.05, 3)),
        )
        for i in range(count)
    )


class TestStageRegistry:
    """Tests for the ordered stage registry."""

    def test_order(self):
        assert [stage for stage, _, _ in STAGES] == [
            CompensationStage.LINEAR,
            CompensationStage.ANGULAR,
            CompensationStage.PREDICTIVE,
            CompensationStage.ADAPTIVE,
        ]

    def test_all_disabled_is_identity(self):
        """With every stage off the raw value comes back bit-identical."""
        config = only()
        history = noisy_history()
        raw = raw_distance(value=2.123456789, timestamp=history[60].timestamp)

        result = compensate(raw, history[60], history, config)

        assert result.value == raw.value
        assert result.stage == CompensationStage.NONE
        assert config.all_stages_disabled

    def test_disabled_stage_skipped(self):
        config = only("enable_linear_compensation")
        history = still_history()
        chain = run_stages(raw_distance(timestamp=history[-1].timestamp), history[-1], history, config)

        assert [v.stage for v in chain] == [CompensationStage.NONE, CompensationStage.LINEAR]


class TestIndividualStages:
    """Tests for each stage in isolation."""

    def test_linear(self):
        sample = MotionSample(timestamp=0.0, user_acceleration=(0.1, 0.0, 0.0))
        result = compensate(raw_distance(), sample, (sample,), only("enable_linear_compensation"))

        # 0.1 m/s^2 * 2 m * 0.001
        assert result.value == pytest.approx(2.0 - 0.0002)
        assert result.confidence == pytest.approx(0.8)
        assert result.stage == CompensationStage.LINEAR

    def test_angular(self):
        sample = MotionSample(timestamp=0.0, rotation_rate=(0.0, 0.0, 0.1))
        result = compensate(raw_distance(), sample, (sample,), only("enable_angular_compensation"))

        # 0.1 rad/s * 2 * 0.01
        assert result.value == pytest.approx(2.0 - 0.002)
        assert result.confidence == pytest.approx(0.8)
        assert result.stage == CompensationStage.ANGULAR

    def test_predictive_without_history_is_noop(self):
        """A fallback frame has no prior history, so prediction is skipped."""
        sample = MotionSample.default(0.0)
        config = only("enable_predictive_compensation")
        chain = run_stages(raw_distance(), sample, (), config)

        assert chain[-1] is chain[0]

    def test_predictive_corrects_along_line_of_sight(self):
        history = tuple(
            MotionSample(timestamp=i / RATE, user_acceleration=(0.0, 0.0, 0.2))
            for i in range(10)
        )
        raw = raw_distance(timestamp=history[-1].timestamp, position=(0.0, 0.0, 2.0))
        result = compensate(raw, history[-1], history, only("enable_predictive_compensation"))

        assert result.stage == CompensationStage.PREDICTIVE
        assert result.value > raw.value

    def test_predictive_ignores_sideways_motion(self):
        history = tuple(
            MotionSample(timestamp=i / RATE, user_acceleration=(0.2, 0.0, 0.0))
            for i in range(10)
        )
        raw = raw_distance(timestamp=history[-1].timestamp, position=(0.0, 0.0, 2.0))
        result = compensate(raw, history[-1], history, only("enable_predictive_compensation"))

        assert result.value == pytest.approx(raw.value, abs=1e-12)

    def test_adaptive_damps_spike(self):
        """A single-sample spike is replaced by the window median correction."""
        history = [
            MotionSample(timestamp=i / RATE, user_acceleration=(0.01, 0.0, 0.0))
            for i in range(41)
        ]
        history[20] = MotionSample(timestamp=20 / RATE, user_acceleration=(1.0, 0.0, 0.0))
        history = tuple(history)
        raw = raw_distance(timestamp=history[20].timestamp)
        config = only("enable_linear_compensation", "enable_adaptive_filtering")

        linear_only = compensate(raw, history[20], history, only("enable_linear_compensation"))
        adaptive = compensate(raw, history[20], history, config)

        assert linear_only.value == pytest.approx(2.0 - 0.002)
        assert adaptive.value == pytest.approx(2.0 - 0.00002, abs=1e-9)
        assert adaptive.stage == CompensationStage.ADAPTIVE

    def test_adaptive_needs_three_samples(self):
        history = tuple(MotionSample(timestamp=i * 1.0) for i in range(3))
        config = only("enable_adaptive_filtering")
        chain = run_stages(raw_distance(timestamp=1.0), history[1], history, config)

        assert chain[-1] is chain[0]

    def test_radial_velocity(self):
        assert radial_velocity((0.0, 0.0, 0.1), (0.0, 0.0, 2.0)) == pytest.approx(0.1)
        assert radial_velocity((0.0, 0.0, 0.1), (0.0, 0.0, -2.0)) == pytest.approx(-0.1)
        assert radial_velocity((0.3, 0.4, 0.0), (0.0, 0.0, 0.0)) == pytest.approx(0.5)


class TestPipelineInvariants:
    """Tests for properties that hold across the whole chain."""

    def test_stable_device_leaves_value_unchanged(self):
        history = still_history()
        raw = raw_distance(timestamp=history[-1].timestamp)

        result = compensate(raw, history[-1], history, CompensationConfig())

        assert result.value == 2.0
        assert result.confidence > 0.99

    def test_confidence_never_increases(self):
        history = noisy_history(seed=5)
        for index in (10, 60, 119):
            raw = raw_distance(timestamp=history[index].timestamp, position=(1.0, 0.5, 2.0))
            chain = run_stages(raw, history[index], history, CompensationConfig())
            confidences = [v.confidence for v in chain]

            assert all(b <= a for a, b in zip(confidences, confidences[1:]))
            assert all(0.0 <= c <= 1.0 for c in confidences)

    def test_deterministic(self):
        history = noisy_history(seed=9)
        raw = raw_distance(timestamp=history[80].timestamp, position=(0.0, 1.0, 1.0))
        config = CompensationConfig()

        first = compensate(raw, history[80], history, config)
        second = compensate(raw, history[80], history, config)

        assert first == second

    def test_fallback_prior_confidence(self):
        """Sensor-gap frames start from the fallback confidence."""
        result = compensate(raw_distance(), MotionSample.default(0.0), (), CompensationConfig())

        assert result.value == 2.0
        assert result.confidence == pytest.approx(0.5)

    def test_non_finite_value_has_no_confidence(self):
        history = still_history()
        raw = raw_distance(value=float("nan"), timestamp=history[-1].timestamp)

        result = compensate(raw, history[-1], history, CompensationConfig())

        assert result.confidence == 0.0
