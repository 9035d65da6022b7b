"""
Calibration Manager

Owns the current point-level calibration: a rigid transform plus a
precision offset applied to measured points before any geometry is
computed.

Lifecycle: uncalibrated -> calibrated -> expired -> calibrated. A
calibration expires when it outlives calibration_interval or when the
rolling validation accuracy drops below recalibration_threshold; only
perform_calibration makes it valid again. Calibrations are never mutated,
only superseded.
"""

import dataclasses
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Optional, Sequence, Tuple

import numpy as np
from rich.console import Console

from utils.matrix import (
    apply_transform,
    as_points,
    matrix_to_row_major,
    rigid_transform_from_points,
    row_major_to_matrix,
)

from .config import CompensationConfig
from .models import PrecisionLevel, Vector3

console = Console()

IDENTITY: Tuple[float, ...] = tuple(matrix_to_row_major(np.eye(4)))
DEFAULT_QUALITY = 0.98  # identity calibration, no reference targets


class CalibrationError(Exception):
    """Error during calibration."""
    pass


class CalibrationState(str, Enum):
    UNCALIBRATED = "uncalibrated"
    CALIBRATED = "calibrated"
    EXPIRED = "expired"


@dataclass(frozen=True)
class CalibrationData:
    id: str
    target: PrecisionLevel
    timestamp: float
    transform: Tuple[float, ...] = IDENTITY  # row-major 4x4
    precision_offset: Vector3 = (0.0, 0.0, 0.0)
    quality_score: float = DEFAULT_QUALITY
    is_valid: bool = True
    expiry_interval: float = 24 * 60 * 60
    rms_error: float = 0.0
    correspondences: int = 0

    @property
    def matrix(self) -> np.ndarray:
        return row_major_to_matrix(list(self.transform))

    @property
    def expires_at(self) -> float:
        return self.timestamp + self.expiry_interval

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now - self.timestamp > self.expiry_interval


@dataclass(frozen=True)
class CalibrationStatus:
    state: CalibrationState
    needs_recalibration: bool
    reason: str
    calibration: Optional[CalibrationData] = None
    age: Optional[float] = None  # seconds


class CalibrationManager:
    """
    Thread-safe holder of the current calibration and a bounded history.

    The current calibration is swapped as a whole under the lock; readers
    get the immutable record.
    """

    def __init__(
        self,
        config: Optional[CompensationConfig] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or CompensationConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._current: Optional[CalibrationData] = None
        self._history: Deque[CalibrationData] = deque(maxlen=self.config.calibration_history_length)

    @property
    def current(self) -> Optional[CalibrationData]:
        with self._lock:
            return self._current

    @property
    def history(self) -> Tuple[CalibrationData, ...]:
        with self._lock:
            return tuple(self._history)

    def perform_calibration(
        self,
        target: Optional[PrecisionLevel] = None,
        measured: Optional[Sequence[Sequence[float]]] = None,
        reference: Optional[Sequence[Sequence[float]]] = None
    ) -> CalibrationData:
        """
        Calibrate against reference targets, or reset to identity.

        Args:
            target: Precision level to calibrate for (defaults to config)
            measured: Points as the device measured them
            reference: Known true positions of the same points

        Returns:
            The new current CalibrationData

        Raises:
            CalibrationError: If only one point set is given, or the sets
                do not form at least 3 correspondences
        """
        target = target or self.config.precision_level

        if (measured is None) != (reference is None):
            raise CalibrationError("Measured and reference points must be given together")

        if measured is None:
            transform = IDENTITY
            offset = (0.0, 0.0, 0.0)
            quality = DEFAULT_QUALITY
            rms = 0.0
            count = 0
        else:
            source = as_points(measured)
            truth = as_points(reference)
            try:
                matrix, rms = rigid_transform_from_points(source, truth)
            except ValueError as e:
                raise CalibrationError(f"Cannot estimate calibration: {e}") from e

            residual = (truth - apply_transform(matrix, source)).mean(axis=0)
            transform = tuple(matrix_to_row_major(matrix))
            offset = (float(residual[0]), float(residual[1]), float(residual[2]))
            quality = min(1.0, max(0.0, 1.0 - rms / target.precision_value))
            count = len(source)

        with self._lock:
            timestamp = self._clock()
            if self._history and timestamp <= self._history[-1].timestamp:
                timestamp = self._history[-1].timestamp + 1e-6

            calibration = CalibrationData(
                id=uuid.uuid4().hex,
                target=target,
                timestamp=timestamp,
                transform=transform,
                precision_offset=offset,
                quality_score=quality,
                is_valid=True,
                expiry_interval=self.config.calibration_interval,
                rms_error=rms,
                correspondences=count,
            )
            self._current = calibration
            self._history.append(calibration)

        console.print(
            f"[green]Calibration complete ({target.value}): quality {quality:.3f}, "
            f"{count} reference points[/green]"
        )
        return calibration

    def state(self, now: Optional[float] = None) -> CalibrationState:
        current = self.current
        if current is None:
            return CalibrationState.UNCALIBRATED
        now = self._clock() if now is None else now
        if not current.is_valid or current.is_expired(now):
            return CalibrationState.EXPIRED
        return CalibrationState.CALIBRATED

    def check(self, average_accuracy: Optional[float] = None) -> CalibrationStatus:
        """
        Decide whether recalibration is needed.

        A rolling validation accuracy below recalibration_threshold
        invalidates the current calibration.

        Args:
            average_accuracy: Rolling average validation precision, if known

        Returns:
            CalibrationStatus
        """
        now = self._clock()
        current = self.current

        if current is None:
            return CalibrationStatus(
                state=CalibrationState.UNCALIBRATED,
                needs_recalibration=True,
                reason="No calibration performed",
            )

        age = now - current.timestamp

        if not current.is_valid:
            return CalibrationStatus(
                state=CalibrationState.EXPIRED,
                needs_recalibration=True,
                reason="Calibration invalidated by low accuracy",
                calibration=current,
                age=age,
            )

        if current.is_expired(now):
            console.print(f"[yellow]Calibration expired ({age / 3600:.1f}h old)[/yellow]")
            return CalibrationStatus(
                state=CalibrationState.EXPIRED,
                needs_recalibration=True,
                reason="Calibration older than calibration interval",
                calibration=current,
                age=age,
            )

        if average_accuracy is not None and average_accuracy < self.config.recalibration_threshold:
            invalidated = dataclasses.replace(current, is_valid=False)
            with self._lock:
                if self._current is current:
                    self._current = invalidated
            console.print(
                f"[yellow]Average accuracy {average_accuracy:.3f} below "
                f"{self.config.recalibration_threshold:.2f}, recalibration needed[/yellow]"
            )
            return CalibrationStatus(
                state=CalibrationState.EXPIRED,
                needs_recalibration=True,
                reason="Average accuracy below recalibration threshold",
                calibration=invalidated,
                age=age,
            )

        return CalibrationStatus(
            state=CalibrationState.CALIBRATED,
            needs_recalibration=False,
            reason="Calibration valid",
            calibration=current,
            age=age,
        )

    def enhance_points(self, points: Sequence[Sequence[float]]) -> np.ndarray:
        """Apply the current transform then offset; identity when uncalibrated."""
        pts = as_points(points)
        current = self.current
        if current is None or not current.is_valid or len(pts) == 0:
            return pts
        return apply_transform(current.matrix, pts) + np.asarray(current.precision_offset)

    def enhance_point(self, point: Sequence[float]) -> np.ndarray:
        return self.enhance_points([point])[0]
