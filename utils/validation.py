"""Validation utilities for motion logs and sensor input."""

import json
import math
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


# Pydantic models for motion log validation


VALID_TRACKING_STATES = {"normal", "limited", "not_available"}
VALID_MEASUREMENT_KINDS = {"distance", "area", "volume", "angle"}


class DeviceMotionReading(BaseModel):
    """One raw device-motion callback, field names as the device reports them."""

    timestamp: float = Field(..., ge=0)
    attitude_roll: float = Field(default=0.0, alias="attitudeRoll")
    attitude_pitch: float = Field(default=0.0, alias="attitudePitch")
    attitude_yaw: float = Field(default=0.0, alias="attitudeYaw")
    rotation_rate_x: float = Field(default=0.0, alias="rotationRateX")
    rotation_rate_y: float = Field(default=0.0, alias="rotationRateY")
    rotation_rate_z: float = Field(default=0.0, alias="rotationRateZ")
    user_accel_x: float = Field(default=0.0, alias="userAccelX")
    user_accel_y: float = Field(default=0.0, alias="userAccelY")
    user_accel_z: float = Field(default=0.0, alias="userAccelZ")
    gravity_x: float = Field(default=0.0, alias="gravityX")
    gravity_y: float = Field(default=-1.0, alias="gravityY")
    gravity_z: float = Field(default=0.0, alias="gravityZ")
    magnetic_field_x: float = Field(default=0.0, alias="magneticFieldX")
    magnetic_field_y: float = Field(default=0.0, alias="magneticFieldY")
    magnetic_field_z: float = Field(default=0.0, alias="magneticFieldZ")

    model_config = {"populate_by_name": True}

    @field_validator("*")
    @classmethod
    def validate_finite(cls, v):
        if not math.isfinite(v):
            raise ValueError("Sensor values must be finite")
        return v

    @property
    def attitude(self) -> Tuple[float, float, float]:
        return (self.attitude_roll, self.attitude_pitch, self.attitude_yaw)

    @property
    def rotation_rate(self) -> Tuple[float, float, float]:
        return (self.rotation_rate_x, self.rotation_rate_y, self.rotation_rate_z)

    @property
    def user_acceleration(self) -> Tuple[float, float, float]:
        return (self.user_accel_x, self.user_accel_y, self.user_accel_z)

    @property
    def gravity(self) -> Tuple[float, float, float]:
        return (self.gravity_x, self.gravity_y, self.gravity_z)

    @property
    def magnetic_field(self) -> Tuple[float, float, float]:
        return (self.magnetic_field_x, self.magnetic_field_y, self.magnetic_field_z)


class TrackingFrame(BaseModel):
    """Camera tracking frame. The pose itself is checked by the tracking validator."""

    timestamp: float = Field(..., ge=0)
    transform_matrix: List[float] = Field(..., min_length=16, max_length=16)
    tracking_state: str = Field(default="normal")

    @field_validator("tracking_state")
    @classmethod
    def validate_tracking_state(cls, v):
        if v not in VALID_TRACKING_STATES:
            raise ValueError(f"Invalid tracking state: {v}. Must be one of {VALID_TRACKING_STATES}")
        return v


class MeasurementEntry(BaseModel):
    """A measurement action recorded in a motion log."""

    kind: str
    timestamp: float = Field(..., ge=0)
    points: List[List[float]] = Field(default_factory=list)
    value: Optional[float] = None  # direct reading, used when there are no points
    label: Optional[str] = None

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v):
        if v not in VALID_MEASUREMENT_KINDS:
            raise ValueError(f"Invalid measurement kind: {v}. Must be one of {VALID_MEASUREMENT_KINDS}")
        return v

    @field_validator("points")
    @classmethod
    def validate_points(cls, v):
        for point in v:
            if len(point) != 3:
                raise ValueError(f"Points must have 3 coordinates, got {len(point)}")
        return v

    @model_validator(mode="after")
    def check_source(self):
        if not self.points and self.value is None:
            raise ValueError("Measurement needs either points or a value")
        return self


class MotionLog(BaseModel):
    """Pydantic model for a recorded measurement session."""

    session_id: str = Field(alias="session_id")
    sample_rate: float = Field(default=60.0, gt=0)
    readings: List[DeviceMotionReading]
    measurements: List[MeasurementEntry] = Field(default_factory=list)
    frames: List[TrackingFrame] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @field_validator("readings")
    @classmethod
    def validate_readings_list(cls, v):
        if len(v) < 2:
            raise ValueError(f"At least 2 motion readings required, got {len(v)}")
        return v


def load_motion_log(log_path: Path) -> Tuple[bool, Optional[MotionLog], List[str]]:
    """
    Load and parse a motion log JSON file.

    Args:
        log_path: Path to the log file

    Returns:
        Tuple of (is_valid, parsed_log, list_of_errors)
    """
    if not log_path.exists():
        return False, None, ["Motion log does not exist"]

    try:
        with open(log_path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        return False, None, [f"Invalid JSON: {e}"]

    try:
        return True, MotionLog(**data), []
    except ValidationError as e:
        return False, None, [str(e)]


def validate_motion_log(log: MotionLog, max_gap: float = 0.5) -> Tuple[bool, Dict, List[str]]:
    """
    Validate a motion log for timing quality and consistency.

    Checks:
    - Reading timestamps are monotonically increasing
    - No large gaps between readings
    - Achieved sample rate is close to the declared one
    - Measurements fall inside the recorded motion
    - Tracking frames are mostly in normal state

    Returns:
        Tuple of (is_valid, stats, list_of_warnings)
    """
    warnings = []
    timestamps = [r.timestamp for r in log.readings]
    stats = {
        "total_readings": len(timestamps),
        "total_measurements": len(log.measurements),
        "total_frames": len(log.frames),
        "duration": timestamps[-1] - timestamps[0],
        "avg_rate": 0.0,
        "max_gap": 0.0,
        "normal_tracking": sum(1 for f in log.frames if f.tracking_state == "normal"),
    }

    if stats["duration"] > 0:
        stats["avg_rate"] = (len(timestamps) - 1) / stats["duration"]

    for i in range(1, len(timestamps)):
        gap = timestamps[i] - timestamps[i - 1]
        if gap < 0:
            warnings.append(f"Non-monotonic timestamp at index {i}")
        elif gap > max_gap:
            warnings.append(f"Large timestamp gap ({gap:.2f}s) at index {i}")
        stats["max_gap"] = max(stats["max_gap"], gap)

    if stats["avg_rate"] and stats["avg_rate"] < 0.5 * log.sample_rate:
        warnings.append(
            f"Low sample rate: {stats['avg_rate']:.1f}Hz against declared {log.sample_rate:.1f}Hz"
        )

    start, end = min(timestamps), max(timestamps)
    for i, entry in enumerate(log.measurements):
        if entry.timestamp < start - max_gap or entry.timestamp > end + max_gap:
            warnings.append(f"Measurement {i} at t={entry.timestamp:.2f}s has no motion coverage")

    if log.frames:
        normal_ratio = stats["normal_tracking"] / len(log.frames)
        if normal_ratio < 0.5:
            warnings.append(f"Low tracking quality: only {normal_ratio * 100:.1f}% normal tracking")

    is_valid = not any(w.startswith("Non-monotonic") for w in warnings)
    return is_valid, stats, warnings
