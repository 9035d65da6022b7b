"""
Core data records for the measurement compensation core.

Everything here is an immutable value: produced once, then passed along.
"""

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

Vector3 = Tuple[float, float, float]


class MeasurementKind(str, Enum):
    DISTANCE = "distance"
    AREA = "area"
    VOLUME = "volume"
    ANGLE = "angle"

    @property
    def unit(self) -> str:
        return {
            MeasurementKind.DISTANCE: "m",
            MeasurementKind.AREA: "m²",
            MeasurementKind.VOLUME: "m³",
            MeasurementKind.ANGLE: "°",
        }[self]


class MotionState(str, Enum):
    STABLE = "stable"
    LOW_MOTION = "low_motion"
    HIGH_MOTION = "high_motion"
    UNKNOWN = "unknown"


class TrackingQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"
    UNKNOWN = "unknown"

    @property
    def meets_requirements(self) -> bool:
        return self in (TrackingQuality.EXCELLENT, TrackingQuality.GOOD, TrackingQuality.ACCEPTABLE)

    @classmethod
    def from_score(cls, score: float) -> "TrackingQuality":
        if score > 0.9:
            return cls.EXCELLENT
        elif score > 0.7:
            return cls.GOOD
        elif score > 0.5:
            return cls.ACCEPTABLE
        return cls.POOR


class CompensationStage(str, Enum):
    """Provenance of a compensated value: the last stage that produced it."""
    NONE = "none"
    LINEAR = "linear"
    ANGULAR = "angular"
    PREDICTIVE = "predictive"
    ADAPTIVE = "adaptive"


class AccuracyTier(str, Enum):
    """
    Ordered accuracy buckets for an estimated error bound (meters).

    The nominal ranges leave a gap between 2mm and 1cm. Sensor capability
    clusters around these ranges; a bound inside the gap is reported as
    centimeter, the next coarser tier.
    """
    SUB_MILLIMETER = "sub_millimeter"
    MILLIMETER = "millimeter"
    CENTIMETER = "centimeter"
    DECIMETER = "decimeter"

    @property
    def range(self) -> Tuple[float, float]:
        return _TIER_RANGES[self]

    @property
    def upper_bound(self) -> float:
        return _TIER_RANGES[self][1]

    @property
    def rank(self) -> int:
        return list(AccuracyTier).index(self)

    @property
    def display_name(self) -> str:
        return self.value.replace("_", "-").title()

    @classmethod
    def classify(cls, error_bound: float) -> "AccuracyTier":
        if not math.isfinite(error_bound) or error_bound < 0:
            return cls.DECIMETER
        if error_bound < _TIER_RANGES[cls.SUB_MILLIMETER][1]:
            return cls.SUB_MILLIMETER
        if error_bound <= _TIER_RANGES[cls.MILLIMETER][1]:
            return cls.MILLIMETER
        if error_bound <= _TIER_RANGES[cls.CENTIMETER][1]:
            return cls.CENTIMETER
        return cls.DECIMETER


_TIER_RANGES = {
    AccuracyTier.SUB_MILLIMETER: (0.0, 0.001),
    AccuracyTier.MILLIMETER: (0.001, 0.002),
    AccuracyTier.CENTIMETER: (0.01, 0.05),
    AccuracyTier.DECIMETER: (0.05, 1.0),
}


class PrecisionLevel(str, Enum):
    """Point-level precision a measurement tool works at."""
    SUB_MILLIMETER = "sub_millimeter"
    MILLIMETER = "millimeter"
    CENTIMETER = "centimeter"
    STANDARD = "standard"

    @property
    def precision_value(self) -> float:
        """Per-point resolution in meters."""
        return {
            PrecisionLevel.SUB_MILLIMETER: 0.0001,
            PrecisionLevel.MILLIMETER: 0.001,
            PrecisionLevel.CENTIMETER: 0.01,
            PrecisionLevel.STANDARD: 0.05,
        }[self]

    @property
    def confidence_level(self) -> float:
        return {
            PrecisionLevel.SUB_MILLIMETER: 0.99,
            PrecisionLevel.MILLIMETER: 0.98,
            PrecisionLevel.CENTIMETER: 0.95,
            PrecisionLevel.STANDARD: 0.90,
        }[self]


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


@dataclass(frozen=True)
class RawMeasurement:
    """One user measurement action, before any motion correction."""
    kind: MeasurementKind
    value: float
    distance: float  # range from the sensor, meters
    position: Vector3 = (0.0, 0.0, 0.0)
    timestamp: float = 0.0
    points: Tuple[Vector3, ...] = ()


@dataclass(frozen=True)
class CompensatedValue:
    value: float
    stage: CompensationStage
    confidence: float  # 0.0 - 1.0

    @property
    def is_high_confidence(self) -> bool:
        return self.confidence > 0.8


@dataclass(frozen=True)
class AccuracyAssessment:
    estimated_error: float  # meters
    confidence: float
    meets_requirements: bool
    tier: AccuracyTier
    effectiveness: float = 0.0
    is_effective: bool = False  # effectiveness reached minimum_effectiveness

    @property
    def error_in_millimeters(self) -> float:
        return self.estimated_error * 1000

    @classmethod
    def conservative(cls) -> "AccuracyAssessment":
        """Lowest accuracy, lowest confidence."""
        return cls(
            estimated_error=AccuracyTier.DECIMETER.upper_bound,
            confidence=0.0,
            meets_requirements=False,
            tier=AccuracyTier.DECIMETER,
            effectiveness=0.0,
        )


@dataclass(frozen=True)
class ValidationIssue:
    """A validator error. Any issue blocks validity."""
    code: str
    message: str
    severity: Severity
    validator: str = ""


@dataclass(frozen=True)
class ValidationWarning:
    code: str
    message: str
    suggestion: Optional[str] = None
    validator: str = ""


@dataclass(frozen=True)
class MeasurementValidation:
    is_valid: bool
    precision_score: float
    confidence_score: float
    quality_score: float
    errors: Tuple[ValidationIssue, ...] = ()
    warnings: Tuple[ValidationWarning, ...] = ()
    timestamp: float = field(default_factory=time.time)

    @property
    def error_messages(self) -> List[str]:
        return [e.message for e in self.errors]

    @classmethod
    def invalid(cls, reason: str, code: str = "invalid") -> "MeasurementValidation":
        return cls(
            is_valid=False,
            precision_score=0.0,
            confidence_score=0.0,
            quality_score=0.0,
            errors=(ValidationIssue(code=code, message=reason, severity=Severity.CRITICAL),),
        )
