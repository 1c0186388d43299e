import math
from dataclasses import dataclass
from typing import Mapping

import numpy as np

from config import LEFT_EYE, RIGHT_EYE, MOUTH_TOP, MOUTH_BOTTOM, JAW_OPEN_BLENDSHAPE


@dataclass(frozen=True)
class LandmarkFrame:
    """One inference result. `points` is None (or empty) when no face was found."""
    timestamp_ms: float
    points: np.ndarray | None = None  # (N, 2|3), normalized [0, 1]
    expressions: Mapping[str, float] | None = None
    pose: np.ndarray | None = None  # 4x4 transform or 3x3 rotation
    face_gray: np.ndarray | None = None  # grayscale crop of the face box

    @property
    def has_face(self) -> bool:
        return self.points is not None and len(self.points) > 0


@dataclass(frozen=True)
class FaceBounds:
    min_x: float = 0.0
    min_y: float = 0.0
    max_x: float = 0.0
    max_y: float = 0.0

    @property
    def center_x(self) -> float:
        return (self.min_x + self.max_x) / 2

    @property
    def center_y(self) -> float:
        return (self.min_y + self.max_y) / 2

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y


@dataclass(frozen=True)
class FrameSignals:
    ear_left: float
    ear_right: float
    bounds: FaceBounds
    yaw: float | None = None
    jaw_open: float | None = None
    mouth_gap: float = 0.0
    smoothed_ear: float | None = None

    @property
    def ear(self) -> float:
        return (self.ear_left + self.ear_right) / 2.0


def _dist(a, b):
    return math.hypot(a[0] - b[0], a[1] - b[1])


def _has_indices(points, indices) -> bool:
    return points is not None and len(points) > max(indices)


def compute_ear(points, eye_indices):
    """Eye Aspect Ratio = (|p2-p6| + |p3-p5|) / (2*|p1-p4|)"""
    if not _has_indices(points, eye_indices):
        return 0.0
    p1, p2, p3, p4, p5, p6 = [points[i] for i in eye_indices]
    vertical = _dist(p2, p6) + _dist(p3, p5)
    horizontal = _dist(p1, p4)
    if horizontal == 0:
        return 0.0
    return vertical / (2.0 * horizontal)


def face_bounds(points) -> FaceBounds:
    if points is None or len(points) == 0:
        return FaceBounds()
    pts = np.asarray(points, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] < 2:
        return FaceBounds()
    min_x, min_y = pts[:, 0].min(), pts[:, 1].min()
    max_x, max_y = pts[:, 0].max(), pts[:, 1].max()
    return FaceBounds(float(min_x), float(min_y), float(max_x), float(max_y))


def head_yaw(pose) -> float | None:
    """Yaw in degrees from the rotation block of a 3x3 or 4x4 pose transform."""
    if pose is None:
        return None
    m = np.asarray(pose, dtype=np.float64)
    if m.ndim != 2 or m.shape[0] < 3 or m.shape[1] < 3:
        return None
    yaw = math.degrees(math.atan2(m[0, 2], m[0, 0]))
    if not math.isfinite(yaw):
        return None
    return yaw


def mouth_gap(points, bounds: FaceBounds) -> float:
    """Vertical lip gap relative to face height."""
    if not _has_indices(points, (MOUTH_TOP, MOUTH_BOTTOM)) or bounds.height <= 0:
        return 0.0
    gap = abs(points[MOUTH_BOTTOM][1] - points[MOUTH_TOP][1])
    return float(gap / bounds.height)


def jaw_open_score(expressions) -> float | None:
    if not expressions:
        return None
    score = expressions.get(JAW_OPEN_BLENDSHAPE)
    return None if score is None else float(score)


def extract_signals(frame: LandmarkFrame) -> FrameSignals:
    """Derive per-frame features from a landmark frame. Never raises on malformed input."""
    points = frame.points
    bounds = face_bounds(points)
    return FrameSignals(
        ear_left=compute_ear(points, LEFT_EYE),
        ear_right=compute_ear(points, RIGHT_EYE),
        bounds=bounds,
        yaw=head_yaw(frame.pose),
        jaw_open=jaw_open_score(frame.expressions),
        mouth_gap=mouth_gap(points, bounds),
    )
