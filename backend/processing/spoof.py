"""
Heuristic presentation-attack checks that run alongside the challenges.

Two signals, either one terminal:
- Motion energy: mean absolute grayscale difference between consecutive face
  patches. A photo held in front of the camera barely changes between frames.
- EAR stability: a printed eye cutout or a looped clip keeps the smoothed EAR
  pinned to the same value.
"""

import cv2
import numpy as np
from collections import deque

from config import (
    CALIBRATION_FRAMES,
    MOTION_WINDOW, MOTION_MIN_SAMPLES, MOTION_ENERGY_THRESHOLD, STATIC_IMAGE_GRACE_FRAMES,
    EAR_STABILITY_EPSILON, STATIC_EYE_GRACE_FRAMES,
)

STATIC_IMAGE = "Static image detected"
STATIC_EYE_PATTERN = "Static eye pattern detected"


def motion_energy(previous: np.ndarray, current: np.ndarray) -> float | None:
    """Mean absolute difference per pixel between two grayscale patches."""
    if previous is None or current is None or previous.size == 0 or current.size == 0:
        return None
    if previous.shape != current.shape:
        h, w = current.shape[:2]
        previous = cv2.resize(previous, (w, h), interpolation=cv2.INTER_AREA)
    diff = np.abs(current.astype(np.float32) - previous.astype(np.float32))
    return float(diff.mean())


class SpoofMonitor:
    def __init__(
        self,
        ear_threshold: float,
        calibration_frames: int = CALIBRATION_FRAMES,
        window: int = MOTION_WINDOW,
        min_samples: int = MOTION_MIN_SAMPLES,
        motion_threshold: float = MOTION_ENERGY_THRESHOLD,
        static_grace_frames: int = STATIC_IMAGE_GRACE_FRAMES,
        ear_epsilon: float = EAR_STABILITY_EPSILON,
        eye_grace_frames: int = STATIC_EYE_GRACE_FRAMES,
    ):
        self.ear_threshold = ear_threshold
        self.calibration_frames = calibration_frames
        self.motion_history = deque(maxlen=window)
        self.min_samples = min_samples
        self.motion_threshold = motion_threshold
        self.static_grace_frames = static_grace_frames
        self.ear_epsilon = ear_epsilon
        self.eye_grace_frames = eye_grace_frames
        self.previous_patch: np.ndarray | None = None
        self.reason: str | None = None

    @property
    def flagged(self) -> bool:
        return self.reason is not None

    @property
    def mean_motion(self) -> float | None:
        if not self.motion_history:
            return None
        return sum(self.motion_history) / len(self.motion_history)

    def observe_patch(self, patch: np.ndarray | None):
        if patch is None:
            return
        energy = motion_energy(self.previous_patch, patch)
        if energy is not None:
            self.motion_history.append(energy)
        self.previous_patch = patch

    def update(self, patch: np.ndarray | None, smoothed_ear: float, blink_count: int, frames_seen: int) -> str | None:
        """Feed one post-calibration frame. Returns the spoof reason once flagged."""
        if self.flagged:
            return self.reason

        self.observe_patch(patch)

        if blink_count > 0:
            return None

        if (
            len(self.motion_history) >= self.min_samples
            and frames_seen > self.calibration_frames + self.static_grace_frames
            and self.mean_motion < self.motion_threshold
        ):
            self.reason = STATIC_IMAGE
        elif (
            frames_seen > self.calibration_frames + self.eye_grace_frames
            and abs(smoothed_ear - self.ear_threshold) < self.ear_epsilon
        ):
            self.reason = STATIC_EYE_PATTERN
        return self.reason
