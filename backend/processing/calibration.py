from dataclasses import dataclass

from config import (
    CALIBRATION_FRAMES, EAR_SMOOTHING_ALPHA, FALLBACK_EAR_THRESHOLD,
    EAR_THRESHOLD_RATIO, EAR_THRESHOLD_MIN, EAR_THRESHOLD_MAX,
    HEAD_POSE_CALIBRATION_FRAMES,
)


@dataclass(frozen=True)
class CalibrationProfile:
    ear_threshold: float


def clamp(value, low, high):
    return max(low, min(high, value))


def ear_threshold_from_mean(mean_ear: float) -> float:
    return clamp(mean_ear * EAR_THRESHOLD_RATIO, EAR_THRESHOLD_MIN, EAR_THRESHOLD_MAX)


class _RunningCalibration:
    """Averages a fixed number of samples, then stops accepting them."""

    def __init__(self, frame_count: int):
        self.frame_count = frame_count
        self.frames = 0
        self._total = 0.0

    @property
    def done(self) -> bool:
        return self.frames >= self.frame_count

    def _accumulate(self, value: float) -> bool:
        """Returns True on the sample that completes calibration."""
        if self.done:
            return False
        self._total += value
        self.frames += 1
        return self.done

    @property
    def mean(self) -> float:
        return self._total / self.frames if self.frames else 0.0


class EarCalibrator(_RunningCalibration):
    """Smooths the raw EAR every frame and derives the blink threshold once.

    The smoothed value keeps updating after calibration; detectors read it from here.
    """

    def __init__(
        self,
        frame_count: int = CALIBRATION_FRAMES,
        alpha: float = EAR_SMOOTHING_ALPHA,
        fallback_threshold: float = FALLBACK_EAR_THRESHOLD,
    ):
        super().__init__(frame_count)
        self.alpha = alpha
        self.smoothed: float | None = None
        self.profile: CalibrationProfile | None = None
        if frame_count == 0:
            self.profile = CalibrationProfile(ear_threshold=fallback_threshold)

    @property
    def threshold(self) -> float | None:
        return self.profile.ear_threshold if self.profile else None

    def smooth(self, raw_ear: float) -> float:
        if self.smoothed is None:
            self.smoothed = raw_ear
        self.smoothed += self.alpha * (raw_ear - self.smoothed)
        return self.smoothed

    def update(self, raw_ear: float) -> float:
        smoothed = self.smooth(raw_ear)
        if self.profile is None and self._accumulate(smoothed):
            self.profile = CalibrationProfile(ear_threshold=ear_threshold_from_mean(self.mean))
        return smoothed


class YawCalibrator(_RunningCalibration):
    """Neutral head yaw, re-derived for every turn challenge."""

    def __init__(self, frame_count: int = HEAD_POSE_CALIBRATION_FRAMES):
        super().__init__(frame_count)
        self.baseline: float | None = None

    def update(self, yaw: float) -> bool:
        if self._accumulate(yaw):
            self.baseline = self.mean
            return True
        return False
