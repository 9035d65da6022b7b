"""
Compensation Engine

Orchestrates the measurement core:

    ingest -> stability / prediction -> compensation
           -> accuracy assessment / validation gate -> metrics

The engine is an explicit object with a start/stop lifecycle; create one
per capture session. Sensor samples come in through ingest(), measurement
actions through compensate_measurement() or the measure_* helpers.
"""

import dataclasses
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence, Union

from rich.console import Console

from utils.validation import DeviceMotionReading, TrackingFrame

from .accuracy import AccuracyAssessor
from .calibration import CalibrationData, CalibrationManager, CalibrationStatus
from .config import CompensationConfig, EngineConfig, QualityThresholds
from .metrics import CompensationMetrics, CompensationRecord, MetricsAggregator
from .models import (
    AccuracyAssessment,
    CompensatedValue,
    MeasurementKind,
    MeasurementValidation,
    MotionState,
    PrecisionLevel,
    RawMeasurement,
)
from .motion import (
    MotionHistory,
    MotionSample,
    MotionStability,
    assess_stability,
    match_sample,
)
from .predictor import MotionPredictor, PredictedMotion
from .primitives import (
    AngleMeasurement,
    AreaMeasurement,
    DistanceMeasurement,
    VolumeMeasurement,
    box_corners,
    circle_points,
    dihedral_points,
    direct_measurement,
)
from .stages import compensate
from .tracking import TrackingValidationResult, validate_tracking
from .validators import Measurement, ValidationGate

console = Console()

RECORD_TYPES = {
    MeasurementKind.DISTANCE: DistanceMeasurement,
    MeasurementKind.AREA: AreaMeasurement,
    MeasurementKind.VOLUME: VolumeMeasurement,
    MeasurementKind.ANGLE: AngleMeasurement,
}

SIGNIFICANT_IMPROVEMENT = 0.01


class EngineError(Exception):
    """Error in engine lifecycle or orchestration."""
    pass


@dataclass(frozen=True)
class CompensatedMeasurement:
    raw: RawMeasurement
    compensated: CompensatedValue
    motion_sample: MotionSample
    accuracy: AccuracyAssessment
    validation: MeasurementValidation
    measurement: Measurement  # typed record carrying the compensated value
    processing_time: float = 0.0  # seconds
    timestamp: float = field(default_factory=time.time)

    @property
    def correction(self) -> float:
        return self.compensated.value - self.raw.value

    @property
    def improvement_ratio(self) -> float:
        if self.raw.value == 0:
            return 0.0
        return abs(self.correction) / abs(self.raw.value)

    @property
    def is_significant_improvement(self) -> bool:
        return self.improvement_ratio > SIGNIFICANT_IMPROVEMENT


def with_compensated_value(measurement: Measurement, compensated: CompensatedValue) -> Measurement:
    """Copy of a typed record carrying the compensated value and confidence."""
    if isinstance(measurement, AngleMeasurement):
        measurement = measurement.with_degrees(compensated.value)
        return dataclasses.replace(measurement, confidence=compensated.confidence)
    return dataclasses.replace(
        measurement,
        value=compensated.value,
        confidence=compensated.confidence,
    )


class CompensationEngine:
    """
    Motion-compensated measurement engine.

    Usable as a context manager:

        with CompensationEngine() as engine:
            engine.ingest(sample)
            result = engine.measure_distance([start, end])
    """

    def __init__(
        self,
        config: Optional[CompensationConfig] = None,
        thresholds: Optional[QualityThresholds] = None,
        clock: Callable[[], float] = time.time,
        max_workers: int = 4
    ):
        self.config = config or CompensationConfig()
        self.thresholds = thresholds or QualityThresholds()
        self.max_workers = max_workers

        self.history = MotionHistory.from_config(self.config)
        self.predictor = MotionPredictor(self.config)
        self.assessor = AccuracyAssessor(self.config)
        self.gate = ValidationGate(self.thresholds)
        self.calibration = CalibrationManager(self.config, clock=clock)
        self.metrics_aggregator = MetricsAggregator(self.config)

        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._state = MotionState.UNKNOWN
        self._last_calibration_check: Optional[float] = None
        self._last_frame: Optional[TrackingFrame] = None

    @classmethod
    def from_config(cls, engine_config: EngineConfig) -> "CompensationEngine":
        return cls(engine_config.compensation, engine_config.quality)

    # Lifecycle

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._executor is not None

    def start(self) -> None:
        with self._lock:
            if self._executor is not None:
                return
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="compensation",
            )
        console.print("[green]Motion compensation started[/green]")

    def stop(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is None:
            return
        executor.shutdown(wait=True)
        console.print("[blue]Motion compensation stopped[/blue]")

    def __enter__(self) -> "CompensationEngine":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # Motion ingest

    def ingest(self, sample: MotionSample) -> MotionState:
        """
        Append a motion sample and return the updated motion state.

        Raises:
            EngineError: If the engine is not running
            MotionIngestError: If the sample is older than the newest one
        """
        if not self.is_running:
            raise EngineError("Engine is not running; call start() first")

        self.history.append(sample)
        state = self.history.classify()
        with self._lock:
            self._state = state
        return state

    def ingest_reading(self, data: Dict[str, Any]) -> MotionState:
        """Ingest a raw device-motion dict (validated by DeviceMotionReading)."""
        reading = DeviceMotionReading(**data)
        return self.ingest(MotionSample.from_reading(reading))

    @property
    def motion_state(self) -> MotionState:
        with self._lock:
            return self._state

    def get_motion_stability(self) -> MotionStability:
        return assess_stability(self.history.latest(), self.config)

    def clear_history(self) -> None:
        self.history.clear()
        self.gate.clear_history()
        self.metrics_aggregator.clear()
        with self._lock:
            self._state = MotionState.UNKNOWN
            self._last_frame = None

    # Prediction and accuracy

    def _run_with_timeout(self, fn: Callable, args: tuple, timeout: float, default: Any) -> Any:
        """
        Run fn on the executor, returning default if it misses the timeout.

        A call that has already started cannot be cancelled; it keeps its
        worker until it returns. Size max_workers for the number of slow
        calls that may overlap.
        """
        with self._lock:
            executor = self._executor
        if executor is None:
            raise EngineError("Engine is not running; call start() first")

        future = executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            console.print(f"[yellow]{fn.__name__} timed out after {timeout:.3f}s[/yellow]")
            return default

    def predict_motion(
        self,
        time_ahead: float,
        timeout: Optional[float] = None
    ) -> Optional[PredictedMotion]:
        """
        Predict device motion time_ahead seconds past the newest sample.

        Returns:
            PredictedMotion, or None when there is no history, predictive
            compensation is disabled, or the timeout expires
        """
        if not self.config.enable_predictive_compensation:
            return None

        snapshot = self.history.snapshot()
        if timeout is None:
            return self.predictor.predict(time_ahead, snapshot)
        return self._run_with_timeout(self.predictor.predict, (time_ahead, snapshot), timeout, None)

    def assess_accuracy(
        self,
        raw: RawMeasurement,
        compensated: CompensatedValue,
        sample: MotionSample,
        timeout: Optional[float] = None
    ) -> AccuracyAssessment:
        """Accuracy assessment; conservative() if the timeout expires."""
        if timeout is None:
            return self.assessor.assess_measurement(raw, compensated, sample)
        return self._run_with_timeout(
            self.assessor.assess_measurement,
            (raw, compensated, sample),
            timeout,
            AccuracyAssessment.conservative(),
        )

    # Compensation

    def _default_timestamp(self) -> float:
        latest = self.history.latest()
        return latest.timestamp if latest is not None else time.time()

    def compensate_measurement(
        self,
        raw: RawMeasurement,
        timestamp: Optional[float] = None,
        measurement: Optional[Measurement] = None
    ) -> CompensatedMeasurement:
        """
        Correct a raw measurement for device motion.

        Args:
            raw: Measurement to correct
            timestamp: Measurement time; overrides raw.timestamp when given
            measurement: Typed record the raw value came from. Without one
                the record is rebuilt from raw: from its points when it has
                any, otherwise as a value-only direct reading. Either way it
                is validated with the compensated value.

        Returns:
            CompensatedMeasurement
        """
        started = time.perf_counter()
        if timestamp is not None:
            raw = dataclasses.replace(raw, timestamp=timestamp)

        snapshot = self.history.snapshot()
        sample = match_sample(snapshot, raw.timestamp, self.config)
        compensated = compensate(raw, sample, snapshot, self.config, self.predictor)
        accuracy = self.assessor.assess_measurement(raw, compensated, sample)

        if measurement is None:
            measurement = self._record_for(raw)
        adjusted = with_compensated_value(measurement, compensated)
        validation = self.gate.validate(adjusted)
        self._record_validation(validation)

        elapsed = time.perf_counter() - started
        self.metrics_aggregator.record_compensation(CompensationRecord(
            timestamp=raw.timestamp,
            kind=raw.kind,
            raw_value=raw.value,
            compensated_value=compensated.value,
            effectiveness=accuracy.effectiveness,
            confidence=compensated.confidence,
            tier=accuracy.tier,
        ))
        self.metrics_aggregator.record_processing_time(elapsed)

        return CompensatedMeasurement(
            raw=raw,
            compensated=compensated,
            motion_sample=sample,
            accuracy=accuracy,
            validation=validation,
            measurement=adjusted,
            processing_time=elapsed,
        )

    def _record_for(self, raw: RawMeasurement) -> Measurement:
        precision = self.config.precision_level
        if raw.points:
            return RECORD_TYPES[raw.kind].from_points(raw.points, precision, timestamp=raw.timestamp)
        return direct_measurement(raw, precision)

    def measure(
        self,
        kind: MeasurementKind,
        points: Sequence[Sequence[float]],
        precision: Optional[PrecisionLevel] = None,
        sensor_position: Optional[Sequence[float]] = None,
        timestamp: Optional[float] = None
    ) -> CompensatedMeasurement:
        """
        Build a typed measurement from points, then compensate and validate it.

        Points are calibration-enhanced before any geometry is computed.
        """
        precision = precision or self.config.precision_level
        timestamp = self._default_timestamp() if timestamp is None else timestamp
        enhanced = self.calibration.enhance_points(points)
        record = RECORD_TYPES[kind].from_points(enhanced, precision, timestamp=timestamp)
        return self.compensate_measurement(record.to_raw(sensor_position), measurement=record)

    def measure_distance(self, points: Sequence[Sequence[float]], **kwargs) -> CompensatedMeasurement:
        return self.measure(MeasurementKind.DISTANCE, points, **kwargs)

    def measure_area(self, points: Sequence[Sequence[float]], **kwargs) -> CompensatedMeasurement:
        return self.measure(MeasurementKind.AREA, points, **kwargs)

    def measure_volume(self, points: Sequence[Sequence[float]], **kwargs) -> CompensatedMeasurement:
        return self.measure(MeasurementKind.VOLUME, points, **kwargs)

    def measure_angle(self, points: Sequence[Sequence[float]], **kwargs) -> CompensatedMeasurement:
        return self.measure(MeasurementKind.ANGLE, points, **kwargs)

    def measure_dihedral_angle(
        self,
        edge_start: Sequence[float],
        edge_end: Sequence[float],
        point1: Sequence[float],
        point2: Sequence[float],
        **kwargs
    ) -> CompensatedMeasurement:
        """Angle between two surfaces meeting along an edge, e.g. walls at a corner."""
        return self.measure_angle(dihedral_points(edge_start, edge_end, point1, point2), **kwargs)

    def measure_circular_area(
        self,
        center: Sequence[float],
        radius: float,
        count: int = 64,
        **kwargs
    ) -> CompensatedMeasurement:
        return self.measure_area(circle_points(center, radius, count), **kwargs)

    def measure_box_volume(
        self,
        origin: Sequence[float],
        size: Sequence[float],
        **kwargs
    ) -> CompensatedMeasurement:
        return self.measure_volume(box_corners(origin, size), **kwargs)

    # Validation

    def _record_validation(self, validation: MeasurementValidation) -> None:
        self.metrics_aggregator.record_validation(validation)

        now = time.monotonic()
        interval = 1.0 / self.config.validation_frequency
        with self._lock:
            due = self._last_calibration_check is None or now - self._last_calibration_check >= interval
            if due:
                self._last_calibration_check = now
        if due and self.calibration.current is not None:
            self.check_calibration()

    def validate_distance(self, measurement: DistanceMeasurement) -> MeasurementValidation:
        validation = self.gate.validate_distance(measurement)
        self._record_validation(validation)
        return validation

    def validate_area(self, measurement: AreaMeasurement) -> MeasurementValidation:
        validation = self.gate.validate_area(measurement)
        self._record_validation(validation)
        return validation

    def validate_volume(self, measurement: VolumeMeasurement) -> MeasurementValidation:
        validation = self.gate.validate_volume(measurement)
        self._record_validation(validation)
        return validation

    def validate_angle(self, measurement: AngleMeasurement) -> MeasurementValidation:
        validation = self.gate.validate_angle(measurement)
        self._record_validation(validation)
        return validation

    def validate_tracking(self, frame: Union[TrackingFrame, Dict[str, Any]]) -> TrackingValidationResult:
        """Validate a camera frame; the pose change from the previous frame is checked too."""
        if isinstance(frame, dict):
            frame = TrackingFrame(**frame)
        with self._lock:
            previous, self._last_frame = self._last_frame, frame
        return validate_tracking(frame, self.history.snapshot(), self.config, previous)

    # Calibration and metrics

    def perform_calibration(
        self,
        target: Optional[PrecisionLevel] = None,
        measured: Optional[Sequence[Sequence[float]]] = None,
        reference: Optional[Sequence[Sequence[float]]] = None
    ) -> CalibrationData:
        return self.calibration.perform_calibration(target, measured, reference)

    def check_calibration(self) -> CalibrationStatus:
        return self.calibration.check(self.metrics_aggregator.average_accuracy())

    def metrics(self) -> CompensationMetrics:
        return self.metrics_aggregator.snapshot()
