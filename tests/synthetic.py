import math
import random

import numpy as np

from config import LEFT_EYE, RIGHT_EYE, MOUTH_TOP, MOUTH_BOTTOM
from processing.signals import LandmarkFrame

NUM_POINTS = 478
EYE_WIDTH = 0.04
FACE_TOP = 0.2
FACE_BOTTOM = 0.8


class NoShuffle(random.Random):
    """Keeps challenges in declaration order: blink, left, right, mouth, forward."""

    def shuffle(self, x):
        pass


def _place_eye(points, indices, x0, y, ear):
    d = ear * EYE_WIDTH
    p1, p2, p3, p4, p5, p6 = indices
    points[p1] = [x0, y, 0.0]
    points[p4] = [x0 + EYE_WIDTH, y, 0.0]
    points[p2] = [x0 + 0.013, y - d / 2, 0.0]
    points[p6] = [x0 + 0.013, y + d / 2, 0.0]
    points[p3] = [x0 + 0.027, y - d / 2, 0.0]
    points[p5] = [x0 + 0.027, y + d / 2, 0.0]


def yaw_pose(degrees):
    a = math.radians(degrees)
    pose = np.eye(4)
    pose[0, 0] = math.cos(a)
    pose[0, 2] = math.sin(a)
    pose[2, 0] = -math.sin(a)
    pose[2, 2] = math.cos(a)
    return pose


def make_points(ear=0.3, width=0.4, gap=0.0):
    points = np.full((NUM_POINTS, 3), 0.5)
    points[0] = [0.5 - width / 2, FACE_TOP, 0.0]
    points[1] = [0.5 + width / 2, FACE_BOTTOM, 0.0]
    _place_eye(points, LEFT_EYE, 0.40, 0.4, ear)
    _place_eye(points, RIGHT_EYE, 0.56, 0.4, ear)
    points[MOUTH_TOP] = [0.5, 0.65, 0.0]
    points[MOUTH_BOTTOM] = [0.5, 0.65 + gap * (FACE_BOTTOM - FACE_TOP), 0.0]
    return points


def make_frame(ts, ear=0.3, yaw=0.0, jaw=None, width=0.4, gap=0.0, gray=None, face=True):
    if not face:
        return LandmarkFrame(timestamp_ms=ts)
    return LandmarkFrame(
        timestamp_ms=ts,
        points=make_points(ear=ear, width=width, gap=gap),
        expressions={"jawOpen": jaw} if jaw is not None else None,
        pose=yaw_pose(yaw) if yaw is not None else None,
        face_gray=gray,
    )


class FrameClock:
    """Monotonic frame timestamps plus a settable wall clock for deadlines."""

    def __init__(self):
        self.ts = 0
        self.now = 0.0

    def next_ts(self):
        self.ts += 33
        return self.ts

    def __call__(self):
        return self.now
