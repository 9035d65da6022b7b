"""Vector and rigid-transform utilities shared by measurement and calibration."""

import numpy as np
from typing import Iterable, List, Sequence, Tuple


def as_vector(values: Sequence[float]) -> np.ndarray:
    """Convert a 3-element sequence to a float64 vector."""
    vector = np.asarray(values, dtype=np.float64)
    if vector.shape != (3,):
        raise ValueError(f"Expected 3 elements, got shape {vector.shape}")
    return vector


def as_points(points: Iterable[Sequence[float]]) -> np.ndarray:
    """Stack a point sequence into an (N, 3) float64 array."""
    array = np.asarray(list(points), dtype=np.float64)
    if array.size == 0:
        return np.zeros((0, 3))
    if array.ndim != 2 or array.shape[1] != 3:
        raise ValueError(f"Expected (N, 3) points, got shape {array.shape}")
    return array


def vector_norm(values: Sequence[float]) -> float:
    """Euclidean length of a vector."""
    return float(np.linalg.norm(np.asarray(values, dtype=np.float64)))


def normalize(v: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """Return v scaled to unit length, or v unchanged if it has no length."""
    n = np.linalg.norm(v)
    return v / n if n > eps else v


def row_major_to_matrix(data: List[float]) -> np.ndarray:
    """Convert row-major 16-element list to 4x4 matrix."""
    if len(data) != 16:
        raise ValueError(f"Expected 16 elements, got {len(data)}")
    return np.array(data, dtype=np.float64).reshape(4, 4)


def matrix_to_row_major(matrix: np.ndarray) -> List[float]:
    """Convert 4x4 matrix to row-major 16-element list."""
    return matrix.flatten().tolist()


def validate_transform(matrix: np.ndarray) -> bool:
    """
    Validate that a 4x4 matrix is a valid rigid transformation matrix.

    Checks:
    - Shape is (4, 4)
    - No NaN or Inf values
    - Bottom row is [0, 0, 0, 1]
    - Rotation part is orthonormal (within tolerance)
    """
    if matrix.shape != (4, 4):
        return False

    if np.any(np.isnan(matrix)) or np.any(np.isinf(matrix)):
        return False

    if not np.allclose(matrix[3, :], [0, 0, 0, 1], atol=1e-6):
        return False

    rotation = matrix[:3, :3]
    should_be_identity = rotation @ rotation.T
    if not np.allclose(should_be_identity, np.eye(3), atol=1e-4):
        return False

    # A determinant of -1 would be a reflection
    det = np.linalg.det(rotation)
    if not np.isclose(det, 1.0, atol=1e-4):
        return False

    return True


def extract_position(matrix: np.ndarray) -> np.ndarray:
    """Extract translation/position from 4x4 transform matrix."""
    return matrix[:3, 3].copy()


def extract_rotation(matrix: np.ndarray) -> np.ndarray:
    """Extract 3x3 rotation matrix from 4x4 transform matrix."""
    return matrix[:3, :3].copy()


def compose_transform(rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    """Build a 4x4 transform from a rotation matrix and translation vector."""
    result = np.eye(4)
    result[:3, :3] = rotation
    result[:3, 3] = translation
    return result


def apply_transform(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Apply a 4x4 transform to a single point (3,) or a point array (N, 3).

    Points are lifted to homogeneous coordinates, so the full affine part
    of the matrix is honoured.
    """
    points = np.asarray(points, dtype=np.float64)
    single = points.ndim == 1
    pts = points.reshape(-1, 3)
    homogeneous = np.hstack([pts, np.ones((pts.shape[0], 1))])
    transformed = homogeneous @ matrix.T
    result = transformed[:, :3] / transformed[:, 3:4]
    return result[0] if single else result


def euler_to_rotation_matrix(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """
    Convert device attitude angles (radians) to a 3x3 rotation matrix.

    Uses the Z-X-Y order of CoreMotion attitude: yaw about Z, then pitch
    about X, then roll about Y.
    """
    cr, sr = np.cos(roll), np.sin(roll)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cy, sy = np.cos(yaw), np.sin(yaw)

    rz = np.array([[cy, -sy, 0], [sy, cy, 0], [0, 0, 1]])
    rx = np.array([[1, 0, 0], [0, cp, -sp], [0, sp, cp]])
    ry = np.array([[cr, 0, sr], [0, 1, 0], [-sr, 0, cr]])
    return rz @ rx @ ry


def rigid_transform_from_points(
    source: np.ndarray,
    target: np.ndarray
) -> Tuple[np.ndarray, float]:
    """
    Estimate the rigid transform mapping source points onto target points.

    Kabsch algorithm: centre both sets, take the SVD of the covariance and
    correct the sign so the result is a proper rotation.

    Args:
        source: (N, 3) measured points
        target: (N, 3) reference points, N >= 3

    Returns:
        Tuple of (4x4 transform, RMS residual in meters)
    """
    source = as_points(source)
    target = as_points(target)
    if source.shape != target.shape:
        raise ValueError(f"Point sets differ in shape: {source.shape} vs {target.shape}")
    if source.shape[0] < 3:
        raise ValueError(f"At least 3 correspondences required, got {source.shape[0]}")

    src_centroid = source.mean(axis=0)
    dst_centroid = target.mean(axis=0)
    H = (source - src_centroid).T @ (target - dst_centroid)

    U, _, Vt = np.linalg.svd(H)
    d = np.sign(np.linalg.det(Vt.T @ U.T))
    if d == 0:
        d = 1.0
    D = np.diag([1.0, 1.0, d])
    rotation = Vt.T @ D @ U.T
    translation = dst_centroid - rotation @ src_centroid

    transform = compose_transform(rotation, translation)
    residuals = apply_transform(transform, source) - target
    rms = float(np.sqrt(np.mean(np.sum(residuals ** 2, axis=1))))
    return transform, rms
