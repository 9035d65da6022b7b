"""Tests for tracking-frame validation."""

import numpy as np
import pytest

from compensation.config import CompensationConfig
from compensation.models import Severity, TrackingQuality
from compensation.motion import MotionSample
from compensation.tracking import (
    TrackingIssueType,
    motion_consistency,
    pose_motion,
    temporal_stability,
    validate_tracking,
)
from utils.matrix import matrix_to_row_major
from utils.validation import TrackingFrame

RATE = 60.0


def frame(timestamp: float = 1.0, state: str = "normal", matrix=None) -> TrackingFrame:
    matrix = np.eye(4) if matrix is None else matrix
    return TrackingFrame(
        timestamp=timestamp,
        transform_matrix=matrix_to_row_major(matrix),
        tracking_state=state,
    )


def still(count: int = 60):
    return [MotionSample(timestamp=i / RATE) for i in range(count)]


def issue_types(result):
    return [i.type for i in result.issues]


class TestScores:
    """Tests for the consistency and regularity scores."""

    def test_still_is_consistent(self):
        assert motion_consistency(still(), CompensationConfig()) == 1.0

    def test_constant_motion_is_consistent(self):
        samples = [MotionSample(timestamp=i / RATE, user_acceleration=(0.02, 0.0, 0.0)) for i in range(10)]
        assert motion_consistency(samples, CompensationConfig()) == pytest.approx(1.0)

    def test_erratic_motion(self):
        samples = [
            MotionSample(timestamp=i / RATE, user_acceleration=(0.2 if i % 2 else 0.0, 0.0, 0.0))
            for i in range(10)
        ]
        assert motion_consistency(samples, CompensationConfig()) == pytest.approx(0.5)

    def test_regular_sampling(self):
        assert temporal_stability(still()) == pytest.approx(1.0)

    def test_dropped_samples(self):
        """Every gap of twice the median interval is irregular."""
        times = [0.0, 1.0, 2.0, 4.0, 5.0, 7.0]
        samples = [MotionSample(timestamp=t) for t in times]
        assert temporal_stability(samples) == pytest.approx(3 / 5)

    def test_single_sample(self):
        assert temporal_stability(still(1)) == 0.0


class TestValidateTracking:
    """Tests for the full tracking validation."""

    def test_good_tracking(self):
        result = validate_tracking(frame(), still(), CompensationConfig())

        assert result.is_valid
        assert result.tracking_quality == TrackingQuality.EXCELLENT
        assert result.issues == ()
        assert result.spatial_accuracy == pytest.approx(0.001)
        assert result.overall_score == pytest.approx((1.0 + 1.0 + 0.9) / 3)

    def test_insufficient_history(self):
        result = validate_tracking(frame(), still(3), CompensationConfig())

        assert not result.is_valid
        assert result.tracking_quality == TrackingQuality.UNKNOWN
        assert issue_types(result) == [TrackingIssueType.INSUFFICIENT_HISTORY]

    def test_limited_tracking(self):
        result = validate_tracking(frame(state="limited"), still(), CompensationConfig())

        assert not result.is_valid
        assert issue_types(result) == [TrackingIssueType.FEATURE_LOSS]
        assert result.issues[0].severity == Severity.MAJOR

    def test_tracking_lost(self):
        result = validate_tracking(frame(state="not_available"), still(), CompensationConfig())

        assert not result.is_valid
        assert result.issues[0].severity == Severity.CRITICAL

    def test_invalid_pose(self):
        matrix = np.eye(4)
        matrix[0, 0] = 3.0
        result = validate_tracking(frame(matrix=matrix), still(), CompensationConfig())

        assert not result.is_valid
        assert TrackingIssueType.INVALID_POSE in issue_types(result)

    def test_excessive_motion(self):
        samples = still()
        samples.append(MotionSample(timestamp=1.0, user_acceleration=(0.5, 0.0, 0.0)))
        result = validate_tracking(frame(), samples, CompensationConfig())

        assert not result.is_valid
        assert TrackingIssueType.EXCESSIVE_MOTION in issue_types(result)

    def test_fast_rotation_is_minor(self):
        samples = still()
        samples.append(MotionSample(timestamp=1.0, rotation_rate=(0.0, 0.3, 0.0)))
        result = validate_tracking(frame(), samples, CompensationConfig())

        excessive = [i for i in result.issues if i.type == TrackingIssueType.EXCESSIVE_MOTION]
        assert len(excessive) == 1
        assert excessive[0].severity == Severity.MINOR

    def test_future_samples_ignored(self):
        """Only samples up to the frame (plus gap tolerance) count."""
        samples = [MotionSample(timestamp=10.0 + i / RATE) for i in range(60)]
        result = validate_tracking(frame(timestamp=9.0), samples, CompensationConfig())

        assert result.tracking_quality == TrackingQuality.UNKNOWN


def moved(x: float = 0.0, yaw: float = 0.0) -> np.ndarray:
    matrix = np.eye(4)
    c, s = np.cos(yaw), np.sin(yaw)
    matrix[:3, :3] = [[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]]
    matrix[0, 3] = x
    return matrix


class TestPoseMotion:
    """Tests for camera motion between consecutive frames."""

    def test_speed_and_turn_rate(self):
        speed, turn = pose_motion(frame(0.9), frame(1.0, matrix=moved(x=0.02, yaw=0.01)))

        assert speed == pytest.approx(0.2)
        assert turn == pytest.approx(0.1)

    def test_unordered_frames(self):
        assert pose_motion(frame(1.0), frame(1.0, matrix=moved(x=1.0))) == (0.0, 0.0)

    def test_slow_pan_is_fine(self):
        result = validate_tracking(
            frame(1.0, matrix=moved(x=0.01)), still(), CompensationConfig(), previous=frame(0.9)
        )
        assert result.is_valid
        assert result.issues == ()

    def test_pose_jump_is_major(self):
        result = validate_tracking(
            frame(1.0, matrix=moved(x=0.5)), still(), CompensationConfig(), previous=frame(0.9)
        )

        assert not result.is_valid
        excessive = [i for i in result.issues if i.type == TrackingIssueType.EXCESSIVE_MOTION]
        assert excessive[0].severity == Severity.MAJOR
        assert "m/s" in excessive[0].description

    def test_fast_turn_is_minor(self):
        result = validate_tracking(
            frame(1.0, matrix=moved(yaw=0.05)), still(), CompensationConfig(), previous=frame(0.9)
        )

        assert result.is_valid
        assert [i.severity for i in result.issues] == [Severity.MINOR]

    def test_invalid_previous_pose_skipped(self):
        broken = np.eye(4)
        broken[0, 0] = 3.0
        result = validate_tracking(
            frame(1.0, matrix=moved(x=0.5)), still(), CompensationConfig(), previous=frame(0.9, matrix=broken)
        )
        assert result.issues == ()
