"""
Accuracy Assessment

Turns a compensated value plus the residual device motion into an
estimated error bound and an accuracy tier.
"""

import math
from typing import Optional

from .config import CompensationConfig
from .models import AccuracyAssessment, AccuracyTier, CompensatedValue, RawMeasurement
from .motion import MotionSample, motion_magnitude
from .stages import angular_motion_error, linear_motion_error

MIN_TRUST = 0.01


class AccuracyAssessor:
    """
    Error-bound estimation for compensated measurements.

    The bound grows with residual motion and shrinks with compensation
    effectiveness and confidence:

        bound = target * (0.5 + residual / motion_threshold)
                / max(effectiveness * confidence, 0.01)

    A perfectly still device with fully trusted compensation sits at half
    the target accuracy.
    """

    def __init__(self, config: Optional[CompensationConfig] = None):
        self.config = config or CompensationConfig()

    def expected_error(self, raw: RawMeasurement, sample: MotionSample) -> float:
        """Motion error the sample implies for the raw value, in meters."""
        linear = linear_motion_error(sample, raw.distance, self.config)
        angular = abs(angular_motion_error(sample, raw.value, self.config))
        return linear + angular

    def assess_effectiveness(
        self,
        raw: RawMeasurement,
        compensated: CompensatedValue,
        sample: MotionSample
    ) -> float:
        """
        How closely the applied correction matches the expected motion error.

        Returns:
            Score in [0, 1]; 1.0 when the correction equals the expected error
        """
        if not (math.isfinite(raw.value) and math.isfinite(compensated.value)):
            return 0.0

        expected = self.expected_error(raw, sample)
        applied = abs(raw.value - compensated.value)
        scale = max(expected, self.config.compensation_accuracy)
        return min(1.0, max(0.0, 1.0 - abs(applied - expected) / scale))

    def assess(
        self,
        compensated: CompensatedValue,
        sample: MotionSample,
        effectiveness: float = 1.0
    ) -> AccuracyAssessment:
        """
        Estimate the error bound of a compensated value.

        Args:
            compensated: Output of the compensation pipeline
            sample: Motion sample the measurement was matched to
            effectiveness: Score from assess_effectiveness

        Returns:
            AccuracyAssessment; conservative() for non-finite input
        """
        residual = motion_magnitude(sample, self.config)
        values = (compensated.value, compensated.confidence, effectiveness, residual)
        if not all(math.isfinite(v) for v in values):
            return AccuracyAssessment.conservative()

        target = self.config.compensation_accuracy
        trust = max(effectiveness * compensated.confidence, MIN_TRUST)
        bound = target * (0.5 + residual / self.config.motion_threshold) / trust

        tier = AccuracyTier.classify(bound)
        return AccuracyAssessment(
            estimated_error=bound,
            confidence=min(compensated.confidence, effectiveness),
            meets_requirements=bound <= self.config.required_accuracy.upper_bound,
            tier=tier,
            effectiveness=effectiveness,
            is_effective=effectiveness >= self.config.minimum_effectiveness,
        )

    def assess_measurement(
        self,
        raw: RawMeasurement,
        compensated: CompensatedValue,
        sample: MotionSample
    ) -> AccuracyAssessment:
        """Effectiveness and error bound in one step."""
        effectiveness = self.assess_effectiveness(raw, compensated, sample)
        return self.assess(compensated, sample, effectiveness)
