import random
from enum import Enum
from dataclasses import dataclass

from config import LivenessConfig
from processing.calibration import EarCalibrator
from processing.challenges import ChallengeSequencer, build_challenge_sequence
from processing.detectors import ActionDetector, BlinkDetector
from processing.spoof import SpoofMonitor
from schemas.messages import VerdictEvent


class SessionPhase(str, Enum):
    CALIBRATING = "CALIBRATING"
    CHALLENGE_ACTIVE = "CHALLENGE_ACTIVE"
    COMPLETE = "COMPLETE"
    FAKE = "FAKE"
    TIMEOUT = "TIMEOUT"


TERMINAL_PHASES = frozenset({SessionPhase.COMPLETE, SessionPhase.FAKE, SessionPhase.TIMEOUT})


@dataclass
class Session:
    """Everything one verification attempt mutates. Never shared between attempts."""

    config: LivenessConfig
    sequencer: ChallengeSequencer
    calibrator: EarCalibrator
    deadline: float | None = None
    phase: SessionPhase = SessionPhase.CALIBRATING

    # Built once calibration is done
    spoof_monitor: SpoofMonitor | None = None
    blink_watch: BlinkDetector | None = None

    # Detector for the active challenge only
    detector: ActionDetector | None = None

    frames_seen: int = 0
    last_timestamp: float | None = None
    spoof_reason: str | None = None
    verdict: VerdictEvent | None = None

    @classmethod
    def create(cls, config: LivenessConfig, now: float, rng: random.Random | None = None) -> "Session":
        steps = build_challenge_sequence(config.required_blink_count, rng)
        limit = config.session_time_limit_seconds
        session = cls(
            config=config,
            sequencer=ChallengeSequencer(steps),
            calibrator=EarCalibrator(
                frame_count=config.calibration_frame_count,
                alpha=config.ear_smoothing_alpha,
                fallback_threshold=config.fallback_ear_threshold,
            ),
            deadline=now + limit if limit > 0 else None,
        )
        if session.calibrated:
            session.start_challenges()
        return session

    def start_challenges(self):
        """Leave CALIBRATING: the threshold is fixed from here on."""
        threshold = self.calibrator.threshold
        self.spoof_monitor = SpoofMonitor(threshold, calibration_frames=self.config.calibration_frame_count)
        self.blink_watch = BlinkDetector(
            threshold,
            required_blinks=self.config.required_blink_count,
            min_closed_frames=self.config.min_closed_frames_for_blink,
            min_open_frames=self.config.min_open_frames_after_blink,
        )
        self.phase = SessionPhase.CHALLENGE_ACTIVE

    @property
    def calibrated(self) -> bool:
        return self.calibrator.profile is not None

    @property
    def spoofed(self) -> bool:
        return self.spoof_reason is not None

    @property
    def terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def blink_count(self) -> int:
        return self.blink_watch.blink_count if self.blink_watch else 0

    def flag_spoof(self, reason: str):
        if self.spoof_reason is None:
            self.spoof_reason = reason
            self.sequencer.mark_spoofed()
