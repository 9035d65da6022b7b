"""
Multi-Validator Quality Gate

Runs a fixed, ordered set of validators over a measurement:

1. Precision - propagated point uncertainty against the tolerance
2. Consistency - stored value against geometry recomputed from points
3. Outlier - robust statistics over points and recent values
4. Physical - constraints any real measurement must satisfy

Each validator returns (errors, warnings, precision_score). The gate never
averages disagreement away: precision is the worst score and any error
makes the measurement invalid.
"""

import math
import threading
from collections import deque
from typing import Deque, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from rich.console import Console

from utils.matrix import as_points

from .config import QualityThresholds
from .models import (
    MeasurementKind,
    MeasurementValidation,
    Severity,
    ValidationIssue,
    ValidationWarning,
)
from .primitives import (
    AngleMeasurement,
    AreaMeasurement,
    DegenerateGeometryError,
    DistanceMeasurement,
    VolumeMeasurement,
    angle_between,
    box_volume,
    distance,
    planarity_deviation,
    polygon_area,
    polygon_perimeter,
)

console = Console()

Measurement = Union[DistanceMeasurement, AreaMeasurement, VolumeMeasurement, AngleMeasurement]
ValidatorResult = Tuple[List[ValidationIssue], List[ValidationWarning], float]

REQUIRED_POINTS = {
    MeasurementKind.DISTANCE: 2,
    MeasurementKind.AREA: 3,
    MeasurementKind.VOLUME: 4,
    MeasurementKind.ANGLE: 3,
}

# Scale factor turning MAD into a standard-deviation estimate
MAD_SCALE = 0.6745


def _ratio_score(ratio: float) -> float:
    """1.0 at ratio 0, 0.5 at ratio 1, falling toward 0 beyond."""
    return 1.0 / (1.0 + ratio ** 2)


def robust_z_scores(values: Sequence[float]) -> Optional[np.ndarray]:
    """Median/MAD z-scores, or None when the spread is zero."""
    data = np.asarray(values, dtype=np.float64)
    median = np.median(data)
    mad = np.median(np.abs(data - median))
    if mad == 0:
        return None
    return MAD_SCALE * (data - median) / mad


class PrecisionValidator:
    """
    First-order propagation of the per-point resolution into the value.

    A measurement with no points is a direct reading and carries a single
    resolution step of uncertainty.
    """

    name = "precision"

    def __init__(self, thresholds: QualityThresholds):
        self.thresholds = thresholds

    def validate(self, measurement: Measurement, history: Sequence[float] = ()) -> ValidatorResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationWarning] = []

        if not math.isfinite(measurement.value):
            return errors, warnings, 0.0

        sigma = measurement.precision.precision_value
        pts = as_points(measurement.points)
        uncertainty, tolerance = self._uncertainty(measurement, pts, sigma)
        if uncertainty is None:
            errors.append(ValidationIssue(
                code="cannot_propagate",
                message=(
                    f"Cannot propagate point uncertainty through {len(pts)}-point "
                    f"{measurement.kind.value} geometry"
                ),
                severity=Severity.MAJOR,
                validator=self.name,
            ))
            return errors, warnings, 0.0

        if 0 < measurement.value < uncertainty:
            errors.append(ValidationIssue(
                code="below_resolution",
                message=(
                    f"{measurement.kind.value.title()} {measurement.value:.6g} is below "
                    f"the measurement resolution {uncertainty:.6g}"
                ),
                severity=Severity.MAJOR,
                validator=self.name,
            ))

        ratio = uncertainty / tolerance if tolerance > 0 else float("inf")
        if ratio > 1.0:
            warnings.append(ValidationWarning(
                code="precision_margin",
                message=f"Propagated uncertainty exceeds tolerance ({ratio:.1f}x)",
                suggestion="Measure from closer range or use a finer precision level",
                validator=self.name,
            ))

        return errors, warnings, _ratio_score(ratio)

    def _uncertainty(
        self,
        measurement: Measurement,
        pts: np.ndarray,
        sigma: float
    ) -> Tuple[Optional[float], float]:
        """Return (propagated uncertainty, tolerance) in the value's unit."""
        kind = measurement.kind
        value = measurement.value

        if kind == MeasurementKind.ANGLE:
            tolerance = self.thresholds.angle_tolerance_degrees
            if len(pts) == 0:
                return math.degrees(sigma), tolerance
            if len(pts) < 3:
                return None, tolerance
            arm1 = np.linalg.norm(pts[1] - pts[0])
            arm2 = np.linalg.norm(pts[2] - pts[0])
            if arm1 == 0 or arm2 == 0:
                return None, tolerance
            return math.degrees(sigma * (1.0 / arm1 + 1.0 / arm2)), tolerance

        tolerance = abs(value) * self.thresholds.relative_tolerance
        if len(pts) == 0:
            return sigma, tolerance

        if kind == MeasurementKind.DISTANCE:
            return math.sqrt(2.0) * sigma, tolerance

        if kind == MeasurementKind.AREA:
            if len(pts) < 3:
                return None, tolerance
            # dA/dp_i is half the (x, y) chord between the neighbours of p_i
            chords = np.roll(pts, -1, axis=0) - np.roll(pts, 1, axis=0)
            return 0.5 * sigma * float(np.sqrt(np.sum(chords[:, :2] ** 2))), tolerance

        if len(pts) < 4:
            return None, tolerance
        dx, dy, dz = pts.max(axis=0) - pts.min(axis=0)
        sigma_side = math.sqrt(2.0) * sigma
        return sigma_side * math.sqrt((dy * dz) ** 2 + (dx * dz) ** 2 + (dx * dy) ** 2), tolerance


class ConsistencyValidator:
    """Stored value against the geometry it claims to come from."""

    name = "consistency"

    def __init__(self, thresholds: QualityThresholds):
        self.thresholds = thresholds

    def validate(self, measurement: Measurement, history: Sequence[float] = ()) -> ValidatorResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationWarning] = []

        pts = as_points(measurement.points)
        if not math.isfinite(measurement.value):
            return errors, warnings, 0.0
        if len(pts) == 0:
            return errors, warnings, 1.0

        recomputed = self._recompute(measurement.kind, pts)
        if recomputed is None:
            errors.append(ValidationIssue(
                code="cannot_recompute",
                message=(
                    f"Cannot recompute {measurement.kind.value} from "
                    f"{len(pts)}-point geometry"
                ),
                severity=Severity.MAJOR,
                validator=self.name,
            ))
            return errors, warnings, 0.0

        score = 1.0
        if recomputed > 0:
            relative = abs(measurement.value - recomputed) / recomputed
            score = _ratio_score(relative / self.thresholds.relative_tolerance)
            if relative > self.thresholds.relative_tolerance:
                errors.append(ValidationIssue(
                    code="value_mismatch",
                    message=(
                        f"Value {measurement.value:.6g} disagrees with geometry "
                        f"{recomputed:.6g} ({relative * 100:.2f}%)"
                    ),
                    severity=Severity.MAJOR,
                    validator=self.name,
                ))
            elif relative > self.thresholds.consistency_tolerance:
                warnings.append(ValidationWarning(
                    code="value_drift",
                    message=f"Value drifts {relative * 100:.3f}% from geometry",
                    validator=self.name,
                ))

        if measurement.kind == MeasurementKind.AREA:
            errors.extend(self._check_isoperimetric(measurement, pts))
            warnings.extend(self._check_planarity(pts))

        if measurement.kind == MeasurementKind.ANGLE:
            if not math.isclose(math.degrees(measurement.radians), measurement.value,
                                rel_tol=1e-9, abs_tol=1e-9):
                errors.append(ValidationIssue(
                    code="unit_mismatch",
                    message=(
                        f"Angle degrees {measurement.value:.6g} and radians "
                        f"{measurement.radians:.6g} disagree"
                    ),
                    severity=Severity.MAJOR,
                    validator=self.name,
                ))
                score = 0.0

        return errors, warnings, score

    @staticmethod
    def _recompute(kind: MeasurementKind, pts: np.ndarray) -> Optional[float]:
        try:
            if kind == MeasurementKind.DISTANCE:
                return distance(pts[0], pts[1]) if len(pts) >= 2 else None
            if kind == MeasurementKind.AREA:
                return polygon_area(pts)
            if kind == MeasurementKind.VOLUME:
                return box_volume(pts)
            if len(pts) < 3:
                return None
            return angle_between(pts[0], pts[1], pts[2])[1]
        except DegenerateGeometryError:
            return None

    def _check_isoperimetric(self, measurement: AreaMeasurement, pts: np.ndarray) -> List[ValidationIssue]:
        """No closed curve encloses more than 4*pi*A <= P^2 allows."""
        if len(pts) < 3:
            return []
        perimeter = polygon_perimeter(pts)
        limit = perimeter ** 2 * (1.0 + self.thresholds.consistency_tolerance)
        if 4.0 * math.pi * measurement.value > limit:
            return [ValidationIssue(
                code="isoperimetric_violation",
                message=(
                    f"Area {measurement.value:.6g} too large for perimeter {perimeter:.6g}"
                ),
                severity=Severity.MAJOR,
                validator=self.name,
            )]
        return []

    def _check_planarity(self, pts: np.ndarray) -> List[ValidationWarning]:
        if len(pts) < 4:
            return []
        deviation = planarity_deviation(pts)
        if deviation > self.thresholds.planarity_tolerance:
            return [ValidationWarning(
                code="non_coplanar",
                message=f"Area points deviate {deviation * 1000:.1f}mm from a plane",
                suggestion="Place all points on the same surface",
                validator=self.name,
            )]
        return []


class OutlierValidator:
    """Robust (median/MAD) outlier checks. Only ever warns."""

    name = "outlier"
    warning_penalty = 0.02

    def __init__(self, thresholds: QualityThresholds):
        self.thresholds = thresholds

    def validate(self, measurement: Measurement, history: Sequence[float] = ()) -> ValidatorResult:
        warnings: List[ValidationWarning] = []
        pts = as_points(measurement.points)

        if len(pts) >= 4:
            spread = np.linalg.norm(pts - pts.mean(axis=0), axis=1)
            z = robust_z_scores(spread)
            if z is not None and np.any(np.abs(z) > self.thresholds.outlier_z_score):
                worst = int(np.argmax(np.abs(z)))
                warnings.append(ValidationWarning(
                    code="outlier_point",
                    message=f"Point {worst} lies far from the others (z={z[worst]:.1f})",
                    suggestion="Re-place the point",
                    validator=self.name,
                ))

        if len(pts) >= 2:
            steps = np.linalg.norm(np.diff(pts, axis=0), axis=1)
            duplicates = int(np.sum(steps < measurement.precision.precision_value))
            if duplicates:
                warnings.append(ValidationWarning(
                    code="duplicate_points",
                    message=f"{duplicates} consecutive duplicate point(s)",
                    validator=self.name,
                ))

        if len(history) >= self.thresholds.outlier_min_history and math.isfinite(measurement.value):
            warnings.extend(self._check_history(measurement.value, history))

        score = max(0.0, 1.0 - self.warning_penalty * len(warnings))
        return [], warnings, score

    def _check_history(self, value: float, history: Sequence[float]) -> List[ValidationWarning]:
        data = np.asarray(list(history) + [value], dtype=np.float64)
        z = robust_z_scores(data)
        if z is None:
            median = float(np.median(data[:-1]))
            if median == 0 or abs(value - median) / abs(median) <= self.thresholds.consistency_tolerance:
                return []
            z_value = float("inf")
        else:
            z_value = float(z[-1])
        if abs(z_value) > self.thresholds.outlier_z_score:
            return [ValidationWarning(
                code="value_outlier",
                message=f"Value {value:.6g} is unusual for recent measurements",
                suggestion="Repeat the measurement",
                validator=self.name,
            )]
        return []


class PhysicalConstraintValidator:
    """Constraints any physically real measurement satisfies."""

    name = "physical"

    def __init__(self, thresholds: QualityThresholds):
        self.thresholds = thresholds

    def validate(self, measurement: Measurement, history: Sequence[float] = ()) -> ValidatorResult:
        errors: List[ValidationIssue] = []
        kind = measurement.kind
        value = measurement.value
        pts = as_points(measurement.points)

        def issue(code: str, message: str, severity: Severity = Severity.CRITICAL) -> None:
            errors.append(ValidationIssue(code=code, message=message, severity=severity, validator=self.name))

        if len(pts) and len(pts) < REQUIRED_POINTS[kind]:
            issue("insufficient_points",
                  f"{kind.value.title()} requires {REQUIRED_POINTS[kind]} points, got {len(pts)}")
        elif kind in (MeasurementKind.DISTANCE, MeasurementKind.ANGLE) and len(pts) > REQUIRED_POINTS[kind]:
            issue("too_many_points",
                  f"{kind.value.title()} takes exactly {REQUIRED_POINTS[kind]} points, got {len(pts)}",
                  Severity.MAJOR)

        if not math.isfinite(value):
            issue("non_finite_value", f"{kind.value.title()} value is not finite")
            return errors, [], 0.0

        if kind == MeasurementKind.ANGLE:
            if value < 0.0 or value > 180.0:
                issue("angle_out_of_range", f"Angle {value:.3f}° outside [0°, 180°]")
            elif value == 0.0:
                issue("non_positive_value", "Angle is zero")
        elif value <= 0.0:
            issue("non_positive_value", f"{kind.value.title()} must be positive, got {value:.6g}")

        resolution = measurement.precision.precision_value
        if kind == MeasurementKind.DISTANCE and value > self.thresholds.maximum_range:
            issue("out_of_range",
                  f"Distance {value:.2f}m exceeds sensor range {self.thresholds.maximum_range:.0f}m",
                  Severity.MAJOR)
        elif kind == MeasurementKind.AREA and len(pts) >= 3:
            singular = np.linalg.svd(pts - pts.mean(axis=0), compute_uv=False)
            if singular[1] < resolution:
                issue("collinear_points", "Area points are collinear")
        elif kind == MeasurementKind.VOLUME and len(pts) >= 4:
            dims = pts.max(axis=0) - pts.min(axis=0)
            if np.any(dims < resolution):
                issue("flat_volume", "Volume bounding box is flat in at least one axis")
        elif kind == MeasurementKind.ANGLE and len(pts) >= 3:
            if (np.linalg.norm(pts[1] - pts[0]) == 0
                    or np.linalg.norm(pts[2] - pts[0]) == 0):
                issue("zero_length_arm", "Angle arm has zero length")

        if any(e.severity == Severity.CRITICAL for e in errors):
            score = 0.0
        elif errors:
            score = 0.5
        else:
            score = 1.0
        return errors, [], score


class ValidationGate:
    """
    Runs every validator and combines the results.

    Keeps a bounded per-kind history of accepted values for the outlier
    check. Safe to call from many threads.
    """

    def __init__(self, thresholds: Optional[QualityThresholds] = None):
        self.thresholds = thresholds or QualityThresholds()
        self.validators = (
            PrecisionValidator(self.thresholds),
            ConsistencyValidator(self.thresholds),
            OutlierValidator(self.thresholds),
            PhysicalConstraintValidator(self.thresholds),
        )
        self._lock = threading.Lock()
        self._history: Dict[MeasurementKind, Deque[float]] = {
            kind: deque(maxlen=self.thresholds.outlier_history_length)
            for kind in MeasurementKind
        }

    def validate(self, measurement: Measurement) -> MeasurementValidation:
        with self._lock:
            history = tuple(self._history[measurement.kind])

        errors: List[ValidationIssue] = []
        warnings: List[ValidationWarning] = []
        scores = []
        for validator in self.validators:
            v_errors, v_warnings, score = validator.validate(measurement, history)
            errors.extend(v_errors)
            warnings.extend(v_warnings)
            scores.append(score)

        precision = min(scores)
        confidence = measurement.confidence
        quality = (precision + confidence) / 2.0
        is_valid = not errors and precision >= self.thresholds.minimum_precision

        if confidence < self.thresholds.minimum_confidence:
            warnings.append(ValidationWarning(
                code="low_confidence",
                message=f"Confidence {confidence:.2f} below {self.thresholds.minimum_confidence:.2f}",
                suggestion="Hold the device still while measuring",
                validator="gate",
            ))
        if quality < self.thresholds.minimum_quality:
            warnings.append(ValidationWarning(
                code="low_quality",
                message=f"Quality {quality:.2f} below {self.thresholds.minimum_quality:.2f}",
                validator="gate",
            ))

        if is_valid:
            with self._lock:
                self._history[measurement.kind].append(measurement.value)
        elif errors:
            console.print(
                f"[red]{measurement.kind.value.title()} rejected: "
                f"{'; '.join(e.message for e in errors)}[/red]"
            )

        return MeasurementValidation(
            is_valid=is_valid,
            precision_score=precision,
            confidence_score=confidence,
            quality_score=quality,
            errors=tuple(errors),
            warnings=tuple(warnings),
        )

    def _validate_as(self, measurement: Measurement, expected: type) -> MeasurementValidation:
        if not isinstance(measurement, expected):
            return MeasurementValidation.invalid(
                f"Expected {expected.__name__}, got {type(measurement).__name__}",
                code="wrong_kind",
            )
        return self.validate(measurement)

    def validate_distance(self, measurement: DistanceMeasurement) -> MeasurementValidation:
        return self._validate_as(measurement, DistanceMeasurement)

    def validate_area(self, measurement: AreaMeasurement) -> MeasurementValidation:
        return self._validate_as(measurement, AreaMeasurement)

    def validate_volume(self, measurement: VolumeMeasurement) -> MeasurementValidation:
        return self._validate_as(measurement, VolumeMeasurement)

    def validate_angle(self, measurement: AngleMeasurement) -> MeasurementValidation:
        return self._validate_as(measurement, AngleMeasurement)

    def clear_history(self) -> None:
        with self._lock:
            for values in self._history.values():
                values.clear()
