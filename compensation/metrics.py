"""Rolling metrics over recent compensations and validations."""

import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

import numpy as np

from .config import CompensationConfig
from .models import AccuracyTier, MeasurementKind, MeasurementValidation


class PerformanceLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    UNKNOWN = "unknown"

    @classmethod
    def from_score(cls, score: float) -> "PerformanceLevel":
        if score > 0.9:
            return cls.EXCELLENT
        elif score > 0.75:
            return cls.GOOD
        elif score > 0.5:
            return cls.FAIR
        return cls.POOR


@dataclass(frozen=True)
class CompensationRecord:
    timestamp: float
    kind: MeasurementKind
    raw_value: float
    compensated_value: float
    effectiveness: float
    confidence: float
    tier: AccuracyTier


@dataclass(frozen=True)
class CompensationMetrics:
    average_effectiveness: float
    average_confidence: float
    validation_success_rate: float
    average_precision: float
    total_validations: int
    total_compensations: int
    average_processing_time: float  # seconds
    performance_level: PerformanceLevel

    @classmethod
    def empty(cls) -> "CompensationMetrics":
        return cls(
            average_effectiveness=0.0,
            average_confidence=0.0,
            validation_success_rate=0.0,
            average_precision=0.0,
            total_validations=0,
            total_compensations=0,
            average_processing_time=0.0,
            performance_level=PerformanceLevel.UNKNOWN,
        )


class MetricsAggregator:
    """
    Bounded history of compensation records, validation outcomes and
    processing times. Averages cover the last metrics_window entries;
    totals count everything recorded since the last clear().
    """

    def __init__(self, config: Optional[CompensationConfig] = None):
        self.config = config or CompensationConfig()
        length = self.config.metrics_history_length
        self._lock = threading.Lock()
        self._compensations: Deque[CompensationRecord] = deque(maxlen=length)
        self._validations: Deque[MeasurementValidation] = deque(maxlen=length)
        self._processing_times: Deque[float] = deque(maxlen=length)
        self._total_compensations = 0
        self._total_validations = 0

    def record_compensation(self, record: CompensationRecord) -> None:
        with self._lock:
            self._compensations.append(record)
            self._total_compensations += 1

    def record_validation(self, validation: MeasurementValidation) -> None:
        with self._lock:
            self._validations.append(validation)
            self._total_validations += 1

    def record_processing_time(self, seconds: float) -> None:
        with self._lock:
            self._processing_times.append(seconds)

    def average_accuracy(self) -> Optional[float]:
        """Mean precision score of recent validations, None before any."""
        with self._lock:
            recent = list(self._validations)[-self.config.metrics_window:]
        if not recent:
            return None
        return float(np.mean([v.precision_score for v in recent]))

    def snapshot(self) -> CompensationMetrics:
        window = self.config.metrics_window
        with self._lock:
            compensations = list(self._compensations)[-window:]
            validations = list(self._validations)[-window:]
            times = list(self._processing_times)[-window:]
            total_compensations = self._total_compensations
            total_validations = self._total_validations

        if not compensations and not validations:
            return CompensationMetrics.empty()

        effectiveness = float(np.mean([r.effectiveness for r in compensations])) if compensations else 0.0
        confidence = float(np.mean([r.confidence for r in compensations])) if compensations else 0.0
        success = float(np.mean([v.is_valid for v in validations])) if validations else 0.0
        precision = float(np.mean([v.precision_score for v in validations])) if validations else 0.0

        parts = [p for p, present in (
            (effectiveness, compensations),
            (confidence, compensations),
            (success, validations),
        ) if present]

        return CompensationMetrics(
            average_effectiveness=effectiveness,
            average_confidence=confidence,
            validation_success_rate=success,
            average_precision=precision,
            total_validations=total_validations,
            total_compensations=total_compensations,
            average_processing_time=float(np.mean(times)) if times else 0.0,
            performance_level=PerformanceLevel.from_score(float(np.mean(parts))),
        )

    def clear(self) -> None:
        with self._lock:
            self._compensations.clear()
            self._validations.clear()
            self._processing_times.clear()
            self._total_compensations = 0
            self._total_validations = 0
