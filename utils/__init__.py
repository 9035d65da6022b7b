"""Utility functions for the measurement compensation core."""

from .matrix import (
    apply_transform,
    rigid_transform_from_points,
    validate_transform,
    extract_position,
    extract_rotation,
)
from .validation import (
    DeviceMotionReading,
    MeasurementEntry,
    MotionLog,
    TrackingFrame,
    load_motion_log,
    validate_motion_log,
)

__all__ = [
    "apply_transform",
    "rigid_transform_from_points",
    "validate_transform",
    "extract_position",
    "extract_rotation",
    "DeviceMotionReading",
    "MeasurementEntry",
    "MotionLog",
    "TrackingFrame",
    "load_motion_log",
    "validate_motion_log",
]
