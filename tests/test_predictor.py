"""Tests for the motion predictor."""

import numpy as np
import pytest

from compensation.config import CompensationConfig
from compensation.motion import MotionSample
from compensation.predictor import MotionPredictor, PredictionMethod

RATE = 60.0


def samples_with(count: int, accel=(0.0, 0.0, 0.0), rotation=(0.0, 0.0, 0.0)):
    return [
        MotionSample(timestamp=i / RATE, user_acceleration=accel, rotation_rate=rotation)
        for i in range(count)
    ]


class TestPredictorInputs:
    """Tests for degenerate predictor inputs."""

    def test_empty_history(self):
        assert MotionPredictor().predict(0.1, []) is None

    def test_negative_horizon(self):
        assert MotionPredictor().predict(-0.1, samples_with(5)) is None

    def test_single_sample_holds(self):
        """One sample: zero velocity, current rotation rate held."""
        prediction = MotionPredictor().predict(0.1, samples_with(1, rotation=(0.0, 0.2, 0.0)))

        assert prediction.method == PredictionMethod.HOLD
        assert prediction.predicted_velocity == (0.0, 0.0, 0.0)
        assert prediction.predicted_angular_velocity == pytest.approx((0.0, 0.2, 0.0))
        assert prediction.sample_count == 1

    def test_two_samples_finite_difference(self):
        prediction = MotionPredictor().predict(0.1, samples_with(2))
        assert prediction.method == PredictionMethod.FINITE_DIFFERENCE


class TestPredictorValues:
    """Tests for predicted motion values."""

    def test_still_device(self):
        prediction = MotionPredictor().predict(0.1, samples_with(20))

        assert prediction.method == PredictionMethod.LINEAR_REGRESSION
        np.testing.assert_array_almost_equal(prediction.predicted_velocity, [0.0, 0.0, 0.0])
        assert prediction.velocity_magnitude == pytest.approx(0.0, abs=1e-12)
        assert prediction.sample_count == 10

    def test_constant_acceleration(self):
        """Velocity is the window integral plus the horizon integral."""
        prediction = MotionPredictor().predict(0.1, samples_with(10, accel=(0.1, 0.0, 0.0)))

        # 0.1 m/s^2 over the 9/60 s window, then 0.1 s ahead
        expected = 0.1 * (9 / RATE) + 0.1 * 0.1
        assert prediction.predicted_velocity[0] == pytest.approx(expected, abs=1e-9)
        assert prediction.predicted_velocity[1] == pytest.approx(0.0, abs=1e-12)

    def test_rotation_trend(self):
        """A linearly rising rotation rate is extrapolated along its slope."""
        history = [
            MotionSample(timestamp=i / RATE, rotation_rate=(0.0, 0.0, 0.6 * i / RATE))
            for i in range(10)
        ]
        prediction = MotionPredictor().predict(0.1, history)

        expected = 0.6 * 9 / RATE + 0.6 * 0.1
        assert prediction.predicted_angular_velocity[2] == pytest.approx(expected, abs=1e-9)


class TestPredictorConfidence:
    """Tests for prediction confidence."""

    def test_still_device_confidence(self):
        """Full support, no residual: only horizon decay remains."""
        prediction = MotionPredictor().predict(0.1, samples_with(20))
        assert prediction.confidence == pytest.approx(0.999 ** 6, rel=1e-6)

    def test_confidence_decays_with_horizon(self):
        predictor = MotionPredictor()
        history = samples_with(20)

        near = predictor.predict(0.1, history)
        far = predictor.predict(1.0, history)

        assert far.confidence < near.confidence

    def test_zero_horizon(self):
        prediction = MotionPredictor().predict(0.0, samples_with(20))
        assert prediction.confidence == pytest.approx(1.0)

    def test_confidence_grows_with_support(self):
        predictor = MotionPredictor()
        assert predictor.predict(0.1, samples_with(5)).confidence < predictor.predict(0.1, samples_with(10)).confidence

    def test_noise_lowers_confidence(self):
        rng = np.random.default_rng(3)
        noisy = [
            MotionSample(timestamp=i / RATE, user_acceleration=tuple(rng.normal(0.0, 0.05, 3)))
            for i in range(20)
        ]
        predictor = MotionPredictor()

        assert predictor.predict(0.1, noisy).confidence < predictor.predict(0.1, samples_with(20)).confidence

    def test_confidence_bounds(self):
        config = CompensationConfig(predictor_full_confidence_samples=3)
        rng = np.random.default_rng(4)
        history = [
            MotionSample(
                timestamp=i / RATE,
                user_acceleration=tuple(rng.normal(0.0, 2.0, 3)),
                rotation_rate=tuple(rng.normal(0.0, 2.0, 3)),
            )
            for i in range(30)
        ]
        prediction = MotionPredictor(config).predict(0.2, history)
        assert 0.0 <= prediction.confidence <= 1.0
