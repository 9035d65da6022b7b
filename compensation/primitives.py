"""
Measurement Primitives

Pure geometry over 3D points (meters) plus the typed measurement records
built from them. Geometry functions raise on degenerate input; record
constructors tolerate non-empty degenerate geometry (value 0.0) so the
validation gate can report it instead.
"""

import math
import time
from dataclasses import dataclass
from typing import ClassVar, Optional, Sequence, Tuple

import numpy as np

from utils.matrix import as_points, as_vector

from .models import MeasurementKind, PrecisionLevel, RawMeasurement, Vector3

Points = Sequence[Sequence[float]]


class MeasurementError(Exception):
    """Error while building a measurement."""
    pass


class DegenerateGeometryError(MeasurementError):
    """Geometry has too few points or zero-length vectors."""
    pass


def _tuple(v: np.ndarray) -> Vector3:
    return (float(v[0]), float(v[1]), float(v[2]))


def _require(points: np.ndarray, minimum: int, what: str) -> None:
    if len(points) < minimum:
        raise DegenerateGeometryError(
            f"{what} requires at least {minimum} points, got {len(points)}"
        )


# Geometry


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    return float(np.linalg.norm(as_vector(b) - as_vector(a)))


def polygon_area(points: Points) -> float:
    """Shoelace area of a polygon projected on the x/y plane."""
    pts = as_points(points)
    _require(pts, 3, "Polygon area")
    x, y = pts[:, 0], pts[:, 1]
    return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))) / 2.0)


def polygon_perimeter(points: Points) -> float:
    """Closed perimeter, last point joined back to the first."""
    pts = as_points(points)
    _require(pts, 2, "Perimeter")
    return float(np.sum(np.linalg.norm(np.roll(pts, -1, axis=0) - pts, axis=1)))


def centroid(points: Points) -> np.ndarray:
    pts = as_points(points)
    _require(pts, 1, "Centroid")
    return pts.mean(axis=0)


def bounding_box(points: Points) -> Tuple[np.ndarray, np.ndarray]:
    """Axis-aligned bounding box as (min corner, max corner)."""
    pts = as_points(points)
    _require(pts, 1, "Bounding box")
    return pts.min(axis=0), pts.max(axis=0)


def box_volume(points: Points) -> float:
    """Volume of the axis-aligned bounding box of the points."""
    pts = as_points(points)
    _require(pts, 4, "Volume")
    lo, hi = bounding_box(pts)
    return float(np.prod(hi - lo))


def box_surface_area(points: Points) -> float:
    lo, hi = bounding_box(points)
    dx, dy, dz = hi - lo
    return float(2.0 * (dx * dy + dy * dz + dz * dx))


def angle_between(
    vertex: Sequence[float],
    point1: Sequence[float],
    point2: Sequence[float]
) -> Tuple[float, float]:
    """
    Angle at a vertex between the arms to two points.

    Returns:
        Tuple of (radians, degrees)
    """
    v1 = as_vector(point1) - as_vector(vertex)
    v2 = as_vector(point2) - as_vector(vertex)
    n1, n2 = np.linalg.norm(v1), np.linalg.norm(v2)
    if n1 == 0 or n2 == 0:
        raise DegenerateGeometryError("Angle arm has zero length")

    # Clamp so rounding never pushes acos out of its domain
    cos_angle = float(np.clip(np.dot(v1, v2) / (n1 * n2), -1.0, 1.0))
    radians = math.acos(cos_angle)
    return radians, math.degrees(radians)


def dihedral_points(
    edge_start: Sequence[float],
    edge_end: Sequence[float],
    point1: Sequence[float],
    point2: Sequence[float]
) -> Tuple[Vector3, Vector3, Vector3]:
    """
    Vertex and arm ends whose plain angle equals the dihedral angle.

    Both points are projected onto the plane through edge_start normal to
    the edge, so the result can be measured as an ordinary angle.
    """
    origin = as_vector(edge_start)
    axis = as_vector(edge_end) - origin
    axis_length = np.linalg.norm(axis)
    if axis_length == 0:
        raise DegenerateGeometryError("Dihedral edge has zero length")
    axis = axis / axis_length

    arms = []
    for point in (point1, point2):
        offset = as_vector(point) - origin
        arm = offset - np.dot(offset, axis) * axis
        if np.linalg.norm(arm) == 0:
            raise DegenerateGeometryError("Dihedral point lies on the edge")
        arms.append(arm)

    return _tuple(origin), _tuple(origin + arms[0]), _tuple(origin + arms[1])


def dihedral_angle(
    edge_start: Sequence[float],
    edge_end: Sequence[float],
    point1: Sequence[float],
    point2: Sequence[float]
) -> Tuple[float, float]:
    """
    Angle between two half-planes sharing an edge, e.g. two walls at a corner.

    Each half-plane is given by the edge and one point on it.

    Returns:
        Tuple of (radians, degrees)
    """
    return angle_between(*dihedral_points(edge_start, edge_end, point1, point2))


def planarity_deviation(points: Points) -> float:
    """Largest distance of any point from the best-fit plane (SVD)."""
    pts = as_points(points)
    _require(pts, 3, "Planarity")
    centred = pts - pts.mean(axis=0)
    _, _, vt = np.linalg.svd(centred)
    normal = vt[-1]
    return float(np.max(np.abs(centred @ normal)))


# Shape generators


def circle_points(
    center: Sequence[float],
    radius: float,
    count: int = 32
) -> Tuple[Vector3, ...]:
    """Regular polygon approximating a circle in the x/y plane."""
    if count < 3:
        raise DegenerateGeometryError(f"Circle needs at least 3 points, got {count}")
    c = as_vector(center)
    angles = np.linspace(0.0, 2.0 * np.pi, count, endpoint=False)
    return tuple(
        (float(c[0] + radius * np.cos(a)), float(c[1] + radius * np.sin(a)), float(c[2]))
        for a in angles
    )


def box_corners(origin: Sequence[float], size: Sequence[float]) -> Tuple[Vector3, ...]:
    """Eight corners of an axis-aligned box."""
    o = as_vector(origin)
    s = as_vector(size)
    return tuple(
        _tuple(o + s * np.array([i, j, k], dtype=np.float64))
        for i in (0, 1) for j in (0, 1) for k in (0, 1)
    )


# Typed measurement records


def _raw(record, sensor_position: Optional[Sequence[float]]) -> RawMeasurement:
    pts = as_points(record.points)
    position = pts.mean(axis=0) if len(pts) else np.zeros(3)
    sensor = as_vector(sensor_position) if sensor_position is not None else np.zeros(3)
    return RawMeasurement(
        kind=record.kind,
        value=record.value,
        distance=float(np.linalg.norm(position - sensor)),
        position=_tuple(position),
        timestamp=record.timestamp,
        points=record.points,
    )


@dataclass(frozen=True)
class DistanceMeasurement:
    kind: ClassVar[MeasurementKind] = MeasurementKind.DISTANCE
    points: Tuple[Vector3, ...]
    value: float  # meters
    precision: PrecisionLevel = PrecisionLevel.MILLIMETER
    confidence: float = 0.98
    timestamp: float = 0.0

    @property
    def start(self) -> Vector3:
        return self.points[0]

    @property
    def end(self) -> Vector3:
        return self.points[-1]

    @classmethod
    def from_points(
        cls,
        points: Points,
        precision: PrecisionLevel = PrecisionLevel.MILLIMETER,
        confidence: Optional[float] = None,
        timestamp: Optional[float] = None
    ) -> "DistanceMeasurement":
        pts = as_points(points)
        if len(pts) == 0:
            raise MeasurementError("Distance requires points")
        value = distance(pts[0], pts[1]) if len(pts) >= 2 else 0.0
        return cls(
            points=tuple(_tuple(p) for p in pts),
            value=value,
            precision=precision,
            confidence=precision.confidence_level if confidence is None else confidence,
            timestamp=time.time() if timestamp is None else timestamp,
        )

    def to_raw(self, sensor_position: Optional[Sequence[float]] = None) -> RawMeasurement:
        return _raw(self, sensor_position)


@dataclass(frozen=True)
class AreaMeasurement:
    kind: ClassVar[MeasurementKind] = MeasurementKind.AREA
    points: Tuple[Vector3, ...]
    value: float  # square meters
    perimeter: float = 0.0
    centroid: Vector3 = (0.0, 0.0, 0.0)
    precision: PrecisionLevel = PrecisionLevel.MILLIMETER
    confidence: float = 0.98
    timestamp: float = 0.0

    @classmethod
    def from_points(
        cls,
        points: Points,
        precision: PrecisionLevel = PrecisionLevel.MILLIMETER,
        confidence: Optional[float] = None,
        timestamp: Optional[float] = None
    ) -> "AreaMeasurement":
        pts = as_points(points)
        if len(pts) == 0:
            raise MeasurementError("Area requires points")
        return cls(
            points=tuple(_tuple(p) for p in pts),
            value=polygon_area(pts) if len(pts) >= 3 else 0.0,
            perimeter=polygon_perimeter(pts) if len(pts) >= 2 else 0.0,
            centroid=_tuple(centroid(pts)),
            precision=precision,
            confidence=precision.confidence_level if confidence is None else confidence,
            timestamp=time.time() if timestamp is None else timestamp,
        )

    def to_raw(self, sensor_position: Optional[Sequence[float]] = None) -> RawMeasurement:
        return _raw(self, sensor_position)


@dataclass(frozen=True)
class VolumeMeasurement:
    kind: ClassVar[MeasurementKind] = MeasurementKind.VOLUME
    points: Tuple[Vector3, ...]
    value: float  # cubic meters
    bounding_box: Tuple[Vector3, Vector3] = ((0.0, 0.0, 0.0), (0.0, 0.0, 0.0))
    surface_area: float = 0.0
    precision: PrecisionLevel = PrecisionLevel.MILLIMETER
    confidence: float = 0.98
    timestamp: float = 0.0

    @property
    def dimensions(self) -> Vector3:
        lo, hi = self.bounding_box
        return (hi[0] - lo[0], hi[1] - lo[1], hi[2] - lo[2])

    @classmethod
    def from_points(
        cls,
        points: Points,
        precision: PrecisionLevel = PrecisionLevel.MILLIMETER,
        confidence: Optional[float] = None,
        timestamp: Optional[float] = None
    ) -> "VolumeMeasurement":
        pts = as_points(points)
        if len(pts) == 0:
            raise MeasurementError("Volume requires points")
        lo, hi = bounding_box(pts)
        return cls(
            points=tuple(_tuple(p) for p in pts),
            value=box_volume(pts) if len(pts) >= 4 else 0.0,
            bounding_box=(_tuple(lo), _tuple(hi)),
            surface_area=box_surface_area(pts),
            precision=precision,
            confidence=precision.confidence_level if confidence is None else confidence,
            timestamp=time.time() if timestamp is None else timestamp,
        )

    def to_raw(self, sensor_position: Optional[Sequence[float]] = None) -> RawMeasurement:
        return _raw(self, sensor_position)


@dataclass(frozen=True)
class AngleMeasurement:
    """Angle at points[0] between the arms to points[1] and points[2]."""
    kind: ClassVar[MeasurementKind] = MeasurementKind.ANGLE
    points: Tuple[Vector3, ...]
    value: float  # degrees
    radians: float = 0.0
    precision: PrecisionLevel = PrecisionLevel.MILLIMETER
    confidence: float = 0.98
    timestamp: float = 0.0

    @property
    def degrees(self) -> float:
        return self.value

    @property
    def vertex(self) -> Vector3:
        return self.points[0]

    @classmethod
    def from_points(
        cls,
        points: Points,
        precision: PrecisionLevel = PrecisionLevel.MILLIMETER,
        confidence: Optional[float] = None,
        timestamp: Optional[float] = None
    ) -> "AngleMeasurement":
        pts = as_points(points)
        if len(pts) == 0:
            raise MeasurementError("Angle requires points")
        try:
            radians, degrees = angle_between(pts[0], pts[1], pts[2])
        except (IndexError, DegenerateGeometryError):
            radians, degrees = 0.0, 0.0
        return cls(
            points=tuple(_tuple(p) for p in pts),
            value=degrees,
            radians=radians,
            precision=precision,
            confidence=precision.confidence_level if confidence is None else confidence,
            timestamp=time.time() if timestamp is None else timestamp,
        )

    def with_degrees(self, degrees: float) -> "AngleMeasurement":
        """Copy carrying a corrected angle, radians kept in step."""
        return AngleMeasurement(
            points=self.points,
            value=degrees,
            radians=math.radians(degrees),
            precision=self.precision,
            confidence=self.confidence,
            timestamp=self.timestamp,
        )

    def to_raw(self, sensor_position: Optional[Sequence[float]] = None) -> RawMeasurement:
        return _raw(self, sensor_position)


def direct_measurement(
    raw: RawMeasurement,
    precision: PrecisionLevel = PrecisionLevel.MILLIMETER
):
    """Value-only typed record for a reading that came without points."""
    if raw.kind == MeasurementKind.ANGLE:
        return AngleMeasurement(
            points=(),
            value=raw.value,
            radians=math.radians(raw.value),
            precision=precision,
            confidence=precision.confidence_level,
            timestamp=raw.timestamp,
        )
    record_type = {
        MeasurementKind.DISTANCE: DistanceMeasurement,
        MeasurementKind.AREA: AreaMeasurement,
        MeasurementKind.VOLUME: VolumeMeasurement,
    }[raw.kind]
    return record_type(
        points=(),
        value=raw.value,
        precision=precision,
        confidence=precision.confidence_level,
        timestamp=raw.timestamp,
    )
