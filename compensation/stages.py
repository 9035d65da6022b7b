"""
Compensation Pipeline

Four ordered stages correct a raw measurement for device motion:

1. Linear - translation-induced error
2. Angular - rotation-induced error
3. Predictive - correction from short-horizon predicted motion
4. Adaptive - robust smoothing over the samples around the measurement

Each stage takes the previous CompensatedValue plus the context and
returns a new one. Confidence is never raised by a stage: every stage
takes the minimum of the incoming confidence and its own.
"""

import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from utils.matrix import as_vector, normalize

from .config import CompensationConfig
from .models import CompensatedValue, CompensationStage, RawMeasurement
from .motion import MotionSample
from .predictor import MotionPredictor

# Angular errors run an order of magnitude above linear ones
ANGULAR_TOLERANCE_FACTOR = 10.0
ADAPTIVE_MIN_SAMPLES = 3


@dataclass(frozen=True)
class CompensationContext:
    raw: RawMeasurement
    sample: MotionSample  # sample matched to the measurement timestamp
    history: Tuple[MotionSample, ...]  # full snapshot
    config: CompensationConfig
    predictor: MotionPredictor

    @property
    def prior_history(self) -> Tuple[MotionSample, ...]:
        """Samples up to and including the matched one."""
        if self.sample.is_fallback:
            return ()
        return tuple(s for s in self.history if s.timestamp <= self.sample.timestamp)


def linear_motion_error(sample: MotionSample, distance: float, config: CompensationConfig) -> float:
    """Error from translation: scales with acceleration and range."""
    return sample.acceleration_magnitude * abs(distance) * config.linear_error_scale


def angular_motion_error(sample: MotionSample, value: float, config: CompensationConfig) -> float:
    """
    Error from rotation: scales with the measured quantity itself, since
    a rotation displaces the whole reference frame.
    """
    return sample.rotation_magnitude * value * config.angular_error_scale


def motion_correction(sample: MotionSample, raw: RawMeasurement, config: CompensationConfig) -> float:
    """Signed correction the enabled linear/angular models give for one sample."""
    value = raw.value
    if config.enable_linear_compensation:
        value -= linear_motion_error(sample, raw.distance, config)
    if config.enable_angular_compensation:
        value -= angular_motion_error(sample, value, config)
    return value - raw.value


def radial_velocity(velocity: Sequence[float], position: Sequence[float]) -> float:
    """
    Velocity component along the line of sight to the measured point.

    Falls back to the full speed when the point position is unknown.
    """
    v = as_vector(velocity)
    p = as_vector(position)
    if np.linalg.norm(p) == 0:
        return float(np.linalg.norm(v))
    return float(np.dot(v, normalize(p)))


def seed_value(raw: RawMeasurement, sample: MotionSample, config: CompensationConfig) -> CompensatedValue:
    """Raw value before any stage, carrying the prior confidence."""
    if not math.isfinite(raw.value):
        confidence = 0.0
    elif sample.is_fallback:
        confidence = config.fallback_confidence
    else:
        confidence = 1.0
    return CompensatedValue(value=raw.value, stage=CompensationStage.NONE, confidence=confidence)


def linear_stage(previous: CompensatedValue, context: CompensationContext) -> CompensatedValue:
    config = context.config
    error = linear_motion_error(context.sample, context.raw.distance, config)
    confidence = max(0.0, 1.0 - error / config.compensation_accuracy)

    return CompensatedValue(
        value=previous.value - error,
        stage=CompensationStage.LINEAR,
        confidence=min(previous.confidence, confidence),
    )


def angular_stage(previous: CompensatedValue, context: CompensationContext) -> CompensatedValue:
    config = context.config
    error = angular_motion_error(context.sample, previous.value, config)
    tolerance = config.compensation_accuracy * ANGULAR_TOLERANCE_FACTOR
    confidence = max(0.0, 1.0 - abs(error) / tolerance)

    return CompensatedValue(
        value=previous.value - error,
        stage=CompensationStage.ANGULAR,
        confidence=min(previous.confidence, confidence),
    )


def predictive_stage(previous: CompensatedValue, context: CompensationContext) -> CompensatedValue:
    config = context.config
    predicted = context.predictor.predict(config.prediction_horizon, context.prior_history)
    if predicted is None:
        return previous

    radial = radial_velocity(predicted.predicted_velocity, context.raw.position)
    correction = radial * config.predictive_correction_scale * previous.value

    return CompensatedValue(
        value=previous.value + correction,
        stage=CompensationStage.PREDICTIVE,
        confidence=min(previous.confidence, predicted.confidence),
    )


def adaptive_stage(previous: CompensatedValue, context: CompensationContext) -> CompensatedValue:
    """
    Replace the single-sample motion correction with the median over the
    samples within adaptive_window of the measurement. Spread of the
    per-sample corrections (MAD) against the required tier's tolerance
    sets the stage confidence.
    """
    config = context.config
    raw = context.raw
    window = [
        s for s in context.history
        if abs(s.timestamp - raw.timestamp) <= config.adaptive_window
    ]
    if len(window) < ADAPTIVE_MIN_SAMPLES:
        return previous

    corrections = np.array([motion_correction(s, raw, config) for s in window])
    median = float(np.median(corrections))
    mad = float(np.median(np.abs(corrections - median)))
    single = motion_correction(context.sample, raw, config)

    tolerance = config.required_accuracy.upper_bound
    confidence = max(0.0, 1.0 - mad / tolerance)

    return CompensatedValue(
        value=previous.value + (median - single),
        stage=CompensationStage.ADAPTIVE,
        confidence=min(previous.confidence, confidence),
    )


StageFn = Callable[[CompensatedValue, CompensationContext], CompensatedValue]

# Closed, ordered set of stages with the config flag that gates each one
STAGES: Tuple[Tuple[CompensationStage, str, StageFn], ...] = (
    (CompensationStage.LINEAR, "enable_linear_compensation", linear_stage),
    (CompensationStage.ANGULAR, "enable_angular_compensation", angular_stage),
    (CompensationStage.PREDICTIVE, "enable_predictive_compensation", predictive_stage),
    (CompensationStage.ADAPTIVE, "enable_adaptive_filtering", adaptive_stage),
)


def run_stages(
    raw: RawMeasurement,
    sample: MotionSample,
    history: Sequence[MotionSample],
    config: CompensationConfig,
    predictor: Optional[MotionPredictor] = None
) -> List[CompensatedValue]:
    """
    Run every enabled stage in order.

    Args:
        raw: Measurement to correct
        sample: Motion sample matched to the measurement
        history: Motion history snapshot
        config: Compensation configuration
        predictor: Predictor for the predictive stage

    Returns:
        The chain of values, seed first and final value last
    """
    context = CompensationContext(
        raw=raw,
        sample=sample,
        history=tuple(history),
        config=config,
        predictor=predictor or MotionPredictor(config),
    )

    chain = [seed_value(raw, sample, config)]
    for _, flag, stage in STAGES:
        if getattr(config, flag):
            chain.append(stage(chain[-1], context))
    return chain


def compensate(
    raw: RawMeasurement,
    sample: MotionSample,
    history: Sequence[MotionSample],
    config: CompensationConfig,
    predictor: Optional[MotionPredictor] = None
) -> CompensatedValue:
    """Final compensated value for a raw measurement."""
    return run_stages(raw, sample, history, config, predictor)[-1]
