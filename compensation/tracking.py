"""
Tracking Validation

Scores a camera tracking frame against the recent device-motion history:
how consistent the motion is, how regular the sampling is, and what
spatial accuracy that supports.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from utils.matrix import extract_position, extract_rotation, row_major_to_matrix, validate_transform
from utils.validation import TrackingFrame

from .config import CompensationConfig
from .models import AccuracyTier, Severity, TrackingQuality
from .motion import MotionSample, motion_magnitude

MIN_HISTORY = 5
INTERVAL_TOLERANCE = 0.5  # fraction of the median interval

STATE_SCORES = {
    "normal": 1.0,
    "limited": 0.5,
    "not_available": 0.0,
}


class TrackingIssueType(str, Enum):
    EXCESSIVE_MOTION = "excessive_motion"
    FEATURE_LOSS = "feature_loss"
    SENSOR_NOISE = "sensor_noise"
    INVALID_POSE = "invalid_pose"
    INSUFFICIENT_HISTORY = "insufficient_history"


@dataclass(frozen=True)
class TrackingIssue:
    type: TrackingIssueType
    severity: Severity
    description: str
    recommendation: str


@dataclass(frozen=True)
class TrackingValidationResult:
    is_valid: bool
    tracking_quality: TrackingQuality
    motion_consistency: float  # 0.0 - 1.0
    temporal_stability: float  # 0.0 - 1.0
    spatial_accuracy: float  # estimated accuracy in meters
    issues: Tuple[TrackingIssue, ...] = ()
    timestamp: float = field(default_factory=time.time)

    @property
    def overall_score(self) -> float:
        spatial = max(0.0, 1.0 - self.spatial_accuracy * 100)
        return (self.motion_consistency + self.temporal_stability + spatial) / 3.0


def motion_consistency(samples: Sequence[MotionSample], config: CompensationConfig) -> float:
    """1 / (1 + coefficient of variation of motion magnitudes)."""
    magnitudes = np.array([motion_magnitude(s, config) for s in samples])
    mean = float(np.mean(magnitudes))
    if mean == 0:
        return 1.0
    return 1.0 / (1.0 + float(np.std(magnitudes)) / mean)


def temporal_stability(samples: Sequence[MotionSample]) -> float:
    """Share of sample intervals within 50% of the median interval."""
    intervals = np.diff([s.timestamp for s in samples])
    if len(intervals) == 0:
        return 0.0
    median = float(np.median(intervals))
    if median <= 0:
        return 0.0
    return float(np.mean(np.abs(intervals - median) <= INTERVAL_TOLERANCE * median))


def pose_motion(previous: TrackingFrame, frame: TrackingFrame) -> Tuple[float, float]:
    """
    Camera motion implied by two consecutive poses.

    Returns:
        Tuple of (speed in m/s, angular rate in rad/s); zeros when the
        frames are not strictly ordered in time
    """
    dt = frame.timestamp - previous.timestamp
    if dt <= 0:
        return 0.0, 0.0

    before = row_major_to_matrix(previous.transform_matrix)
    after = row_major_to_matrix(frame.transform_matrix)
    travelled = float(np.linalg.norm(extract_position(after) - extract_position(before)))

    relative = extract_rotation(before).T @ extract_rotation(after)
    cos_angle = float(np.clip((np.trace(relative) - 1.0) / 2.0, -1.0, 1.0))
    return travelled / dt, float(np.arccos(cos_angle)) / dt


def _pose_jump_issues(
    previous: TrackingFrame,
    frame: TrackingFrame,
    config: CompensationConfig
) -> List[TrackingIssue]:
    speed, angular_rate = pose_motion(previous, frame)
    if speed > config.max_camera_speed:
        return [TrackingIssue(
            type=TrackingIssueType.EXCESSIVE_MOTION,
            severity=Severity.MAJOR,
            description=f"Camera moved at {speed:.2f} m/s between frames",
            recommendation="Move the device more slowly",
        )]
    if angular_rate > config.angular_threshold:
        return [TrackingIssue(
            type=TrackingIssueType.EXCESSIVE_MOTION,
            severity=Severity.MINOR,
            description=f"Camera turned at {angular_rate:.3f} rad/s between frames",
            recommendation="Turn the device more slowly",
        )]
    return []


def validate_tracking(
    frame: TrackingFrame,
    history: Sequence[MotionSample],
    config: CompensationConfig,
    previous: Optional[TrackingFrame] = None
) -> TrackingValidationResult:
    """
    Validate a tracking frame against the motion history.

    Args:
        frame: Camera frame with pose and tracking state
        history: Motion history snapshot, oldest first
        config: Compensation configuration
        previous: Preceding frame; when given, the pose change between
            the two frames is checked against the speed limits

    Returns:
        TrackingValidationResult
    """
    issues: List[TrackingIssue] = []

    pose_valid = validate_transform(row_major_to_matrix(frame.transform_matrix))
    if not pose_valid:
        issues.append(TrackingIssue(
            type=TrackingIssueType.INVALID_POSE,
            severity=Severity.CRITICAL,
            description="Camera pose is not a rigid transform",
            recommendation="Restart the tracking session",
        ))
    elif previous is not None and validate_transform(row_major_to_matrix(previous.transform_matrix)):
        issues.extend(_pose_jump_issues(previous, frame, config))

    if frame.tracking_state != "normal":
        severity = Severity.MAJOR if frame.tracking_state == "limited" else Severity.CRITICAL
        issues.append(TrackingIssue(
            type=TrackingIssueType.FEATURE_LOSS,
            severity=severity,
            description=f"Tracking state is {frame.tracking_state}",
            recommendation="Point the camera at a textured, well-lit surface",
        ))

    samples = [s for s in history if s.timestamp <= frame.timestamp + config.sensor_gap_tolerance]
    if len(samples) < MIN_HISTORY:
        issues.append(TrackingIssue(
            type=TrackingIssueType.INSUFFICIENT_HISTORY,
            severity=Severity.MINOR,
            description=f"Only {len(samples)} motion samples available",
            recommendation="Keep the device steady while sensors warm up",
        ))
        return TrackingValidationResult(
            is_valid=False,
            tracking_quality=TrackingQuality.UNKNOWN,
            motion_consistency=0.0,
            temporal_stability=0.0,
            spatial_accuracy=AccuracyTier.DECIMETER.upper_bound,
            issues=tuple(issues),
        )

    consistency = motion_consistency(samples, config)
    regularity = temporal_stability(samples)
    latest = samples[-1]
    latest_magnitude = motion_magnitude(latest, config)

    if latest_magnitude > config.motion_threshold * config.high_motion_multiplier:
        issues.append(TrackingIssue(
            type=TrackingIssueType.EXCESSIVE_MOTION,
            severity=Severity.MAJOR,
            description=f"Motion magnitude {latest_magnitude:.3f} above limit",
            recommendation="Move the device more slowly",
        ))
    elif latest.rotation_magnitude > config.angular_threshold:
        issues.append(TrackingIssue(
            type=TrackingIssueType.EXCESSIVE_MOTION,
            severity=Severity.MINOR,
            description=f"Rotation rate {latest.rotation_magnitude:.3f} rad/s above limit",
            recommendation="Turn the device more slowly",
        ))

    accel_spread = float(np.std([s.acceleration_magnitude for s in samples]))
    if accel_spread > 0.5 * config.motion_threshold:
        issues.append(TrackingIssue(
            type=TrackingIssueType.SENSOR_NOISE,
            severity=Severity.MINOR,
            description=f"Acceleration noise {accel_spread:.3f} is high",
            recommendation="Brace the device against a surface",
        ))

    state_score = STATE_SCORES[frame.tracking_state]
    score = (consistency + regularity + state_score) / 3.0
    quality = TrackingQuality.from_score(score)

    trust = max(consistency * regularity * state_score, 0.01)
    spatial = config.compensation_accuracy * (1.0 + latest_magnitude / config.motion_threshold) / trust
    spatial = min(spatial, AccuracyTier.DECIMETER.upper_bound)

    blocking = any(i.severity in (Severity.CRITICAL, Severity.MAJOR) for i in issues)
    return TrackingValidationResult(
        is_valid=not blocking and quality.meets_requirements,
        tracking_quality=quality,
        motion_consistency=consistency,
        temporal_stability=regularity,
        spatial_accuracy=spatial,
        issues=tuple(issues),
    )
