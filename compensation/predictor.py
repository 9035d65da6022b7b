"""
Motion Predictor

Extrapolates short-horizon linear and angular velocity from the recent
motion history. The prediction only feeds the predictive compensation
stage; it never changes shared state.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np

from .config import CompensationConfig
from .models import Vector3
from .motion import MotionSample


class PredictionMethod(str, Enum):
    HOLD = "hold"  # single sample, no trend available
    FINITE_DIFFERENCE = "finite_difference"
    LINEAR_REGRESSION = "linear_regression"


@dataclass(frozen=True)
class PredictedMotion:
    predicted_velocity: Vector3
    predicted_angular_velocity: Vector3
    confidence: float  # 0.0 - 1.0
    time_horizon: float
    method: PredictionMethod
    sample_count: int

    @property
    def velocity_magnitude(self) -> float:
        return float(np.linalg.norm(self.predicted_velocity))

    @property
    def motion_magnitude(self) -> float:
        return self.velocity_magnitude + float(np.linalg.norm(self.predicted_angular_velocity)) * 0.1


def _as_tuple(v: np.ndarray) -> Vector3:
    return (float(v[0]), float(v[1]), float(v[2]))


class MotionPredictor:
    """
    Short-horizon motion extrapolation.

    With one sample the current rotation rate is held and velocity is zero.
    With two, acceleration and rotation-rate trends come from a finite
    difference. With three or more, from a least-squares line through the
    window, which averages out sensor noise as history grows.

    Linear velocity is the trapezoidal integral of acceleration over the
    window (the device is taken to be at rest at the window start) plus
    the integral of the extrapolated acceleration over the horizon.

    Confidence is the product of three factors:
    - sample support: min(1, n / predictor_full_confidence_samples)
    - consistency: 1 / (1 + residual_rms / motion_threshold)
    - horizon decay: horizon_decay ** (time_ahead / sample_interval),
      a geometric decay per sampling interval predicted ahead
    """

    def __init__(self, config: Optional[CompensationConfig] = None):
        self.config = config or CompensationConfig()

    def predict(
        self,
        time_ahead: float,
        history: Sequence[MotionSample]
    ) -> Optional[PredictedMotion]:
        """
        Predict motion time_ahead seconds past the newest sample.

        Args:
            time_ahead: Prediction horizon in seconds
            history: Motion history snapshot, oldest first

        Returns:
            PredictedMotion, or None when there is no history
        """
        if not history or time_ahead < 0:
            return None

        window = list(history)[-self.config.predictor_window:]
        n = len(window)
        times = np.array([s.timestamp for s in window], dtype=np.float64)
        accel = np.array([s.user_acceleration for s in window], dtype=np.float64)
        rotation = np.array([s.rotation_rate for s in window], dtype=np.float64)
        h = float(time_ahead)

        if n == 1:
            velocity = np.zeros(3)
            angular_velocity = rotation[-1]
            residual = 0.0
            interval = self.config.sample_interval
            method = PredictionMethod.HOLD
        else:
            dt = np.diff(times)
            window_velocity = np.sum(0.5 * (accel[1:] + accel[:-1]) * dt[:, None], axis=0)
            span = times[-1] - times[0]
            interval = float(np.median(dt)) if np.median(dt) > 0 else self.config.sample_interval

            if n == 2 or span <= 0:
                accel_now, accel_slope = self._finite_difference(times, accel)
                rotation_now, rotation_slope = self._finite_difference(times, rotation)
                residual = 0.0
                method = PredictionMethod.FINITE_DIFFERENCE
            else:
                t_rel = times - times[-1]
                accel_now, accel_slope, accel_rms = self._linear_fit(t_rel, accel)
                rotation_now, rotation_slope, rotation_rms = self._linear_fit(t_rel, rotation)
                residual = accel_rms + self.config.angular_weight * rotation_rms
                method = PredictionMethod.LINEAR_REGRESSION

            velocity = window_velocity + accel_now * h + 0.5 * accel_slope * h ** 2
            angular_velocity = rotation_now + rotation_slope * h

        confidence = self._confidence(n, residual, h, interval)

        return PredictedMotion(
            predicted_velocity=_as_tuple(velocity),
            predicted_angular_velocity=_as_tuple(angular_velocity),
            confidence=confidence,
            time_horizon=h,
            method=method,
            sample_count=n,
        )

    def _confidence(self, n: int, residual: float, horizon: float, interval: float) -> float:
        support = min(1.0, n / self.config.predictor_full_confidence_samples)
        consistency = 1.0 / (1.0 + residual / self.config.motion_threshold)
        decay = self.config.horizon_decay ** (horizon / interval)
        return float(min(1.0, max(0.0, support * consistency * decay)))

    @staticmethod
    def _finite_difference(times: np.ndarray, values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Latest value and slope from the last two samples."""
        step = times[-1] - times[-2]
        if step <= 0:
            return values[-1], np.zeros(3)
        return values[-1], (values[-1] - values[-2]) / step

    @staticmethod
    def _linear_fit(t_rel: np.ndarray, values: np.ndarray) -> Tuple[np.ndarray, np.ndarray, float]:
        """
        Fit value = slope * t + intercept per axis, with t relative to the
        newest sample so the intercept is the smoothed current value.

        Returns:
            Tuple of (current value, slope, RMS residual)
        """
        slope, intercept = np.polyfit(t_rel, values, 1)
        fitted = np.outer(t_rel, slope) + intercept
        rms = float(np.sqrt(np.mean(np.sum((values - fitted) ** 2, axis=1))))
        return intercept, slope, rms
