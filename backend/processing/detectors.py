"""
Per-action challenge detectors.

Each detector owns its counters and is built fresh when its challenge becomes
active, so no state survives from one challenge to the next. All of them share
the same surface: `update(signals)` consumes one frame and returns whether the
action is satisfied, `progress` is a fraction in [0, 1].
"""

from collections import deque
from enum import Enum

from config import (
    LivenessConfig,
    EAR_CLOSED_FRAMES, MIN_OPEN_FRAMES_AFTER_BLINK, REQUIRED_BLINKS,
    TURN_ANGLE_THRESHOLD, CENTER_ANGLE_THRESHOLD, TURN_PERSISTENCE_FRAMES,
    HEAD_POSE_CALIBRATION_FRAMES,
    JAW_OPEN_THRESHOLD, JAW_OPEN_FRAMES, MOUTH_GAP_THRESHOLD, MOUTH_GAP_FRAMES,
    LEAN_WINDOW, LEAN_MIN_SAMPLES, LEAN_GROWTH_RATIO, LEAN_FRAMES,
)
from processing.calibration import YawCalibrator
from processing.challenges import ChallengeAction
from processing.signals import FrameSignals


class ActionDetector:
    action: ChallengeAction

    satisfied: bool = False

    def update(self, signals: FrameSignals) -> bool:
        raise NotImplementedError

    @property
    def progress(self) -> float:
        raise NotImplementedError

    def telemetry(self) -> dict:
        return {}


class BlinkDetector(ActionDetector):
    action = ChallengeAction.BLINK

    def __init__(
        self,
        threshold: float,
        required_blinks: int = REQUIRED_BLINKS,
        min_closed_frames: int = EAR_CLOSED_FRAMES,
        min_open_frames: int = MIN_OPEN_FRAMES_AFTER_BLINK,
    ):
        self.threshold = threshold
        self.required_blinks = required_blinks
        self.min_closed_frames = min_closed_frames
        self.min_open_frames = min_open_frames
        self.closed_frames = 0
        self.open_frames = 0
        self.latched = False
        self.blink_count = 0
        self.satisfied = False

    def feed(self, smoothed_ear: float) -> bool:
        """Returns True on the frame a blink registers."""
        blinked = False
        if smoothed_ear < self.threshold:
            self.closed_frames += 1
            self.open_frames = 0
        else:
            if self.closed_frames >= self.min_closed_frames and not self.latched:
                self.blink_count += 1
                self.latched = True
                blinked = True
            self.closed_frames = 0
            self.open_frames += 1
            # Eye must be visibly open again before another blink can register
            if self.latched and self.open_frames >= self.min_open_frames:
                self.latched = False
                self.open_frames = 0
        if self.blink_count >= self.required_blinks:
            self.satisfied = True
        return blinked

    def update(self, signals: FrameSignals) -> bool:
        ear = signals.smoothed_ear if signals.smoothed_ear is not None else signals.ear
        self.feed(ear)
        return self.satisfied

    @property
    def progress(self) -> float:
        return min(self.blink_count / self.required_blinks, 1.0)

    def telemetry(self) -> dict:
        return {"blinks": self.blink_count, "closed_frames": self.closed_frames, "latched": self.latched}


class TurnPhase(str, Enum):
    CALIBRATING = "CALIBRATING"
    ACTIVE = "ACTIVE"


class HeadTurnDetector(ActionDetector):
    """Counts frames turned past the threshold, relative to a per-challenge neutral yaw.

    Negative yaw delta is a left turn. A direction counter only advances while
    `returned_to_center` holds; once a turn reaches persistence the head must come
    back to center before another turn can count.
    """

    def __init__(
        self,
        direction: ChallengeAction,
        turn_threshold: float = TURN_ANGLE_THRESHOLD,
        center_threshold: float = CENTER_ANGLE_THRESHOLD,
        persistence_frames: int = TURN_PERSISTENCE_FRAMES,
        calibration_frames: int = HEAD_POSE_CALIBRATION_FRAMES,
    ):
        if direction not in (ChallengeAction.TURN_LEFT, ChallengeAction.TURN_RIGHT):
            raise ValueError(f"not a head turn action: {direction}")
        self.action = direction
        self.turn_threshold = turn_threshold
        self.center_threshold = center_threshold
        self.persistence_frames = persistence_frames
        self.calibrator = YawCalibrator(calibration_frames)
        self.phase = TurnPhase.CALIBRATING
        self.left_frames = 0
        self.right_frames = 0
        self.returned_to_center = True
        self.last_delta: float | None = None
        self.satisfied = False

    @property
    def baseline(self) -> float | None:
        return self.calibrator.baseline

    def feed(self, yaw: float | None) -> bool:
        if yaw is None:
            return self.satisfied

        if self.phase == TurnPhase.CALIBRATING:
            if self.calibrator.update(yaw):
                self.phase = TurnPhase.ACTIVE
                self.returned_to_center = True
            return self.satisfied

        delta = yaw - self.calibrator.baseline
        self.last_delta = delta

        if abs(delta) < self.center_threshold:
            self.returned_to_center = True
            self.left_frames = max(0, self.left_frames - 1)
            self.right_frames = max(0, self.right_frames - 1)
        elif delta <= -self.turn_threshold:
            if self.returned_to_center:
                self.left_frames += 1
                self.right_frames = 0
                if self.left_frames >= self.persistence_frames:
                    self._turn_completed(ChallengeAction.TURN_LEFT)
        elif delta >= self.turn_threshold:
            if self.returned_to_center:
                self.right_frames += 1
                self.left_frames = 0
                if self.right_frames >= self.persistence_frames:
                    self._turn_completed(ChallengeAction.TURN_RIGHT)
        return self.satisfied

    def _turn_completed(self, direction: ChallengeAction):
        self.returned_to_center = False
        if direction == self.action:
            self.satisfied = True

    def update(self, signals: FrameSignals) -> bool:
        return self.feed(signals.yaw)

    @property
    def direction_frames(self) -> int:
        return self.left_frames if self.action == ChallengeAction.TURN_LEFT else self.right_frames

    @property
    def progress(self) -> float:
        if self.satisfied:
            return 1.0
        return min(self.direction_frames / self.persistence_frames, 1.0)

    def telemetry(self) -> dict:
        return {
            "phase": self.phase.value,
            "baseline": self.baseline,
            "delta": self.last_delta,
            "left_frames": self.left_frames,
            "right_frames": self.right_frames,
            "returned_to_center": self.returned_to_center,
        }


class MouthOpenDetector(ActionDetector):
    """Jaw-open expression score when available, lip gap over face height otherwise."""

    action = ChallengeAction.MOUTH_OPEN

    def __init__(
        self,
        score_threshold: float = JAW_OPEN_THRESHOLD,
        score_frames: int = JAW_OPEN_FRAMES,
        gap_threshold: float = MOUTH_GAP_THRESHOLD,
        gap_frames: int = MOUTH_GAP_FRAMES,
    ):
        self.score_threshold = score_threshold
        self.score_frames = score_frames
        self.gap_threshold = gap_threshold
        self.gap_frames = gap_frames
        self.open_frames = 0
        self.required_frames = score_frames
        self.satisfied = False

    def feed(self, jaw_open: float | None = None, gap: float = 0.0) -> bool:
        if jaw_open is not None:
            is_open = jaw_open > self.score_threshold
            self.required_frames = self.score_frames
        else:
            is_open = gap > self.gap_threshold
            self.required_frames = self.gap_frames

        if is_open:
            self.open_frames += 1
        else:
            self.open_frames = max(0, self.open_frames - 1)

        if self.open_frames >= self.required_frames:
            self.satisfied = True
        return self.satisfied

    def update(self, signals: FrameSignals) -> bool:
        return self.feed(signals.jaw_open, signals.mouth_gap)

    @property
    def progress(self) -> float:
        if self.satisfied:
            return 1.0
        return min(self.open_frames / self.required_frames, 1.0)

    def telemetry(self) -> dict:
        return {"open_frames": self.open_frames, "required": self.required_frames}


class ForwardLeanDetector(ActionDetector):
    """Face width above the window start by a ratio, held for consecutive frames."""

    action = ChallengeAction.LEAN_FORWARD

    def __init__(
        self,
        window: int = LEAN_WINDOW,
        min_samples: int = LEAN_MIN_SAMPLES,
        growth_ratio: float = LEAN_GROWTH_RATIO,
        required_frames: int = LEAN_FRAMES,
    ):
        self.widths = deque(maxlen=window)
        self.min_samples = min_samples
        self.growth_ratio = growth_ratio
        self.required_frames = required_frames
        self.forward_frames = 0
        self.satisfied = False

    def feed(self, width: float) -> bool:
        self.widths.append(width)
        if len(self.widths) >= self.min_samples:
            first = self.widths[0]
            # The current frame must be wider, not just some earlier one
            if width > first * self.growth_ratio:
                self.forward_frames += 1
            else:
                self.forward_frames = 0
        if self.forward_frames >= self.required_frames:
            self.satisfied = True
        return self.satisfied

    def update(self, signals: FrameSignals) -> bool:
        return self.feed(signals.bounds.width)

    @property
    def progress(self) -> float:
        return min(self.forward_frames / self.required_frames, 1.0)

    def telemetry(self) -> dict:
        return {"samples": len(self.widths), "forward_frames": self.forward_frames}


def build_detector(action: ChallengeAction, config: LivenessConfig, ear_threshold: float) -> ActionDetector:
    """Fresh detector for a newly active challenge."""
    if action == ChallengeAction.BLINK:
        return BlinkDetector(
            ear_threshold,
            required_blinks=config.required_blink_count,
            min_closed_frames=config.min_closed_frames_for_blink,
            min_open_frames=config.min_open_frames_after_blink,
        )
    if action in (ChallengeAction.TURN_LEFT, ChallengeAction.TURN_RIGHT):
        return HeadTurnDetector(
            action,
            turn_threshold=config.turn_angle_threshold_degrees,
            persistence_frames=config.turn_persistence_frames,
            calibration_frames=config.head_pose_calibration_frames,
        )
    if action == ChallengeAction.MOUTH_OPEN:
        return MouthOpenDetector()
    if action == ChallengeAction.LEAN_FORWARD:
        return ForwardLeanDetector()
    raise ValueError(f"unknown challenge action: {action}")
