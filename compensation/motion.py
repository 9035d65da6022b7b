"""
Motion Ingest and Stability Classification

Keeps the rolling history of device-motion samples and classifies how
still the device is. The history is written by a single sensor callback
and read by many compensation calls, so readers always work on a
snapshot.
"""

import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Sequence, Tuple

from rich.console import Console

from utils.matrix import vector_norm
from utils.validation import DeviceMotionReading

from .config import CompensationConfig
from .models import MotionState, TrackingQuality, Vector3

console = Console()

ZERO: Vector3 = (0.0, 0.0, 0.0)


class MotionIngestError(Exception):
    """Error while appending motion samples."""
    pass


@dataclass(frozen=True)
class MotionSample:
    """Single device-motion reading."""
    timestamp: float  # seconds
    attitude: Vector3 = ZERO  # roll, pitch, yaw (radians)
    rotation_rate: Vector3 = ZERO  # rad/s
    user_acceleration: Vector3 = ZERO  # gravity removed
    gravity: Vector3 = (0.0, -1.0, 0.0)
    magnetic_field: Vector3 = ZERO  # microtesla
    is_fallback: bool = False

    @property
    def acceleration_magnitude(self) -> float:
        return vector_norm(self.user_acceleration)

    @property
    def rotation_magnitude(self) -> float:
        return vector_norm(self.rotation_rate)

    def magnitude(self, angular_weight: float = 0.1) -> float:
        """
        Scalar motion magnitude.

        Rotation is weighted down: at room-scale ranges a unit of angular
        rate moves the measured point less than a unit of acceleration.
        """
        return self.acceleration_magnitude + angular_weight * self.rotation_magnitude

    @classmethod
    def default(cls, timestamp: float) -> "MotionSample":
        """Stand-in frame used when no real sample covers a timestamp."""
        return cls(timestamp=timestamp, is_fallback=True)

    @classmethod
    def from_reading(cls, reading: DeviceMotionReading) -> "MotionSample":
        return cls(
            timestamp=reading.timestamp,
            attitude=reading.attitude,
            rotation_rate=reading.rotation_rate,
            user_acceleration=reading.user_acceleration,
            gravity=reading.gravity,
            magnetic_field=reading.magnetic_field,
        )


@dataclass(frozen=True)
class MotionStability:
    is_stable: bool
    confidence: float  # 0.0 - 1.0
    motion_magnitude: float

    @property
    def stability_level(self) -> TrackingQuality:
        return TrackingQuality.from_score(self.confidence)

    @classmethod
    def unknown(cls) -> "MotionStability":
        return cls(is_stable=False, confidence=0.0, motion_magnitude=1.0)


class MotionHistory:
    """
    Thread-safe rolling history of motion samples.

    Bounded both by count and by age relative to the newest sample;
    the oldest samples are evicted first.

    When built with a config it also tracks when the current run of
    below-threshold samples began. That start time survives eviction, so
    a still device reaches stable even when stability_duration is longer
    than the span the buffer can hold.
    """

    def __init__(
        self,
        max_length: int = 100,
        max_seconds: float = 10.0,
        config: Optional[CompensationConfig] = None
    ):
        self._lock = threading.Lock()
        self._samples: Deque[MotionSample] = deque(maxlen=max_length)
        self._still_since: Optional[float] = None
        self.max_length = max_length
        self.max_seconds = max_seconds
        self.config = config

    @classmethod
    def from_config(cls, config: CompensationConfig) -> "MotionHistory":
        return cls(config.max_history_length, config.max_history_seconds, config)

    def append(self, sample: MotionSample) -> None:
        """Append a sample, evicting anything too old or over capacity."""
        with self._lock:
            if self._samples and sample.timestamp < self._samples[-1].timestamp:
                raise MotionIngestError(
                    f"Out-of-order sample: {sample.timestamp:.6f} < "
                    f"{self._samples[-1].timestamp:.6f}"
                )
            self._samples.append(sample)
            if self.config is not None:
                if motion_magnitude(sample, self.config) < self.config.motion_threshold:
                    if self._still_since is None:
                        self._still_since = sample.timestamp
                else:
                    self._still_since = None
            cutoff = sample.timestamp - self.max_seconds
            while self._samples and self._samples[0].timestamp < cutoff:
                self._samples.popleft()

    def snapshot(self) -> Tuple[MotionSample, ...]:
        """Immutable copy of the current history, oldest first."""
        with self._lock:
            return tuple(self._samples)

    def latest(self) -> Optional[MotionSample]:
        with self._lock:
            return self._samples[-1] if self._samples else None

    @property
    def still_since(self) -> Optional[float]:
        """Timestamp the current below-threshold run started, if tracked."""
        with self._lock:
            return self._still_since

    def classify(self) -> MotionState:
        """Motion state of the history, using the tracked still run."""
        if self.config is None:
            raise MotionIngestError("classify() needs a history built from a config")
        with self._lock:
            samples = tuple(self._samples)
            still_since = self._still_since
        return classify_motion(samples, self.config, still_since)

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()
            self._still_since = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)


def nearest_sample(
    samples: Sequence[MotionSample],
    timestamp: float,
    max_gap: Optional[float] = None
) -> Optional[MotionSample]:
    """
    Find the sample closest in time to a timestamp.

    Ties go to the earlier sample (samples are ordered oldest first and
    min() keeps the first minimum).

    Args:
        samples: History snapshot, oldest first
        timestamp: Target time
        max_gap: If given, samples farther than this are not a match

    Returns:
        The matched sample, or None
    """
    if not samples:
        return None
    closest = min(samples, key=lambda s: abs(s.timestamp - timestamp))
    if max_gap is not None and abs(closest.timestamp - timestamp) > max_gap:
        return None
    return closest


def match_sample(
    samples: Sequence[MotionSample],
    timestamp: float,
    config: CompensationConfig
) -> MotionSample:
    """Nearest sample within the gap tolerance, or the fallback frame."""
    sample = nearest_sample(samples, timestamp, max_gap=config.sensor_gap_tolerance)
    if sample is None:
        console.print(
            f"[yellow]No motion sample within {config.sensor_gap_tolerance:.2f}s "
            f"of t={timestamp:.3f}, using fallback frame[/yellow]"
        )
        return MotionSample.default(timestamp)
    return sample


def motion_magnitude(sample: MotionSample, config: CompensationConfig) -> float:
    return sample.magnitude(config.angular_weight)


def assess_stability(
    sample: Optional[MotionSample],
    config: CompensationConfig
) -> MotionStability:
    """Stability of a single sample against the motion threshold."""
    if sample is None:
        return MotionStability.unknown()

    magnitude = motion_magnitude(sample, config)
    return MotionStability(
        is_stable=magnitude < config.motion_threshold,
        confidence=max(0.0, 1.0 - magnitude / config.motion_threshold),
        motion_magnitude=magnitude,
    )


def stable_duration(samples: Sequence[MotionSample], config: CompensationConfig) -> float:
    """Seconds the trailing run of below-threshold samples spans."""
    if not samples:
        return 0.0

    latest = samples[-1]
    run_start = None
    for sample in reversed(samples):
        if motion_magnitude(sample, config) >= config.motion_threshold:
            break
        run_start = sample
    if run_start is None:
        return 0.0
    return latest.timestamp - run_start.timestamp


def classify_motion(
    samples: Sequence[MotionSample],
    config: CompensationConfig,
    still_since: Optional[float] = None
) -> MotionState:
    """
    Classify device motion from a history snapshot.

    still_since, when given, is the start of the current below-threshold
    run and may predate the oldest sample in the snapshot.

    - unknown: no samples yet
    - high_motion: latest magnitude above multiplier x threshold
    - stable: below threshold for at least stability_duration
    - low_motion: everything else, including a device still settling
    """
    if not samples:
        return MotionState.UNKNOWN

    magnitude = motion_magnitude(samples[-1], config)
    if magnitude > config.motion_threshold * config.high_motion_multiplier:
        return MotionState.HIGH_MOTION
    if magnitude >= config.motion_threshold:
        return MotionState.LOW_MOTION
    if still_since is not None:
        duration = samples[-1].timestamp - still_since
    else:
        duration = stable_duration(samples, config)
    if duration >= config.stability_duration:
        return MotionState.STABLE
    return MotionState.LOW_MOTION
