import time
import random
import logging
from dataclasses import replace
from typing import Callable

from config import LivenessConfig
from processing.detectors import build_detector
from processing.signals import LandmarkFrame, extract_signals
from schemas.messages import (
    StatusEvent, ChallengeListEvent, ChallengeEntry, VerdictEvent,
    SessionEvent, Severity, Verdict,
)
from state.session import Session, SessionPhase

logger = logging.getLogger("uvicorn.error")

TelemetryHook = Callable[[str, dict], None]


def log_telemetry(event: str, data: dict):
    logger.info(f"[Telemetry] {event}: {data}")


def _emit(session: Session, telemetry: TelemetryHook | None, event: str, data: dict):
    if telemetry is not None and session.config.debug_telemetry_enabled:
        telemetry(event, data)


def challenge_list(session: Session) -> ChallengeListEvent:
    active = session.sequencer.active
    progress = 0.0
    if active is not None and session.detector is not None and session.detector.action == active.action:
        progress = session.detector.progress
    return ChallengeListEvent(entries=[ChallengeEntry(**row) for row in session.sequencer.entries(progress)])


def _resolve(session: Session, phase: SessionPhase, telemetry: TelemetryHook | None) -> list[SessionEvent]:
    session.phase = phase
    session.detector = None
    if phase == SessionPhase.COMPLETE:
        session.verdict = VerdictEvent(verdict=Verdict.VERIFIED)
        events = [
            StatusEvent(message="All challenges done.", severity=Severity.INFO),
            challenge_list(session),
        ]
    elif phase == SessionPhase.FAKE:
        session.verdict = VerdictEvent(verdict=Verdict.FAKE, reason=session.spoof_reason)
        events = [StatusEvent(message=f"Fake detected: {session.spoof_reason}", severity=Severity.ERROR)]
    else:
        session.verdict = VerdictEvent(verdict=Verdict.TIMEOUT, reason="Time limit reached")
        events = [StatusEvent(message="Time limit reached", severity=Severity.ERROR)]
    _emit(session, telemetry, "verdict", {"verdict": session.verdict.verdict.value, "reason": session.verdict.reason})
    events.append(session.verdict)
    return events


def check_deadline(session: Session, now: float, telemetry: TelemetryHook | None = None) -> list[SessionEvent]:
    if session.terminal or session.deadline is None or now <= session.deadline:
        return []
    return _resolve(session, SessionPhase.TIMEOUT, telemetry)


def step_session(
    session: Session,
    frame: LandmarkFrame | None,
    now: float,
    telemetry: TelemetryHook | None = None,
) -> tuple[Session, list[SessionEvent]]:
    """Advance one session by one frame. Returns the session and the events to render."""
    if session.terminal:
        return session, []

    events = check_deadline(session, now, telemetry)
    if events:
        return session, events

    # Duplicate frames are dropped, never queued
    if frame is None or frame.timestamp_ms == session.last_timestamp:
        return session, []
    session.last_timestamp = frame.timestamp_ms

    if not frame.has_face:
        return session, [StatusEvent(message="Show your face to the camera", severity=Severity.WARN)]

    signals = extract_signals(frame)
    session.frames_seen += 1
    smoothed = session.calibrator.update(signals.ear)
    signals = replace(signals, smoothed_ear=smoothed)

    # --- Calibration ---

    if session.phase == SessionPhase.CALIBRATING:
        calibrator = session.calibrator
        if not session.calibrated:
            return session, [StatusEvent(
                message=f"Calibrating… ({calibrator.frames}/{calibrator.frame_count})",
                severity=Severity.WARN,
            )]
        session.start_challenges()
        _emit(session, telemetry, "calibrated", {"mean_ear": calibrator.mean, "ear_threshold": calibrator.threshold})
        return session, [
            StatusEvent(message="Calibration done. Follow the challenges.", severity=Severity.WARN),
            challenge_list(session),
        ]

    # --- Challenges ---

    active = session.sequencer.active
    if session.detector is None or session.detector.action != active.action:
        session.detector = build_detector(active.action, session.config, session.calibrator.threshold)
    satisfied = session.detector.update(signals)

    if session.blink_watch.feed(smoothed):
        _emit(session, telemetry, "blink", {"blinks": session.blink_count})

    reason = session.spoof_monitor.update(frame.face_gray, smoothed, session.blink_count, session.frames_seen)
    _emit(session, telemetry, "frame", {
        "ear_raw": round(signals.ear, 3),
        "ear_smooth": round(smoothed, 3),
        "threshold": round(session.calibrator.threshold, 3),
        "blinks": session.blink_count,
        "motion": session.spoof_monitor.mean_motion,
        "challenge": active.action.value,
        "detector": session.detector.telemetry(),
    })

    if reason is not None:
        session.flag_spoof(reason)
        _emit(session, telemetry, "spoof_flagged", {"reason": reason, "frames_seen": session.frames_seen})
        return session, _resolve(session, SessionPhase.FAKE, telemetry)

    if session.sequencer.advance(satisfied):
        _emit(session, telemetry, "challenge_advanced", {"completed": active.action.value})
        session.detector = None

    if session.sequencer.completed and not session.spoofed:
        return session, _resolve(session, SessionPhase.COMPLETE, telemetry)

    return session, [
        StatusEvent(message=f"Do: {session.sequencer.active.label}", severity=Severity.WARN),
        challenge_list(session),
    ]


class SessionController:
    """Owns one verification attempt and the capture resource behind it.

    `on_release` is called exactly once: on the verdict, or on the first stop().
    """

    def __init__(
        self,
        config: LivenessConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
        telemetry: TelemetryHook | None = log_telemetry,
        on_release: Callable[[], None] | None = None,
    ):
        self.config = config or LivenessConfig()
        self.clock = clock
        self.rng = rng
        self.telemetry = telemetry
        self.on_release = on_release
        self.session: Session | None = None
        self.running = False
        self._released = False

    @property
    def phase(self) -> SessionPhase | None:
        return self.session.phase if self.session else None

    @property
    def verdict(self) -> VerdictEvent | None:
        return self.session.verdict if self.session else None

    def start(self) -> list[SessionEvent]:
        """Begin a fresh session. Nothing carries over from a previous one."""
        if self._released:
            raise RuntimeError("Capture resource already released; create a new SessionController")
        self.session = Session.create(self.config, self.clock(), self.rng)
        self.running = True
        order = [step.action.value for step in self.session.sequencer.steps]
        logger.info(f"[Session] started, deadline={self.session.deadline}, challenges={order}")
        return [
            StatusEvent(message="Look at the camera. Follow the challenges.", severity=Severity.WARN),
            challenge_list(self.session),
        ]

    def process_frame(self, frame: LandmarkFrame | None) -> list[SessionEvent]:
        if not self.running:
            return []
        _, events = step_session(self.session, frame, self.clock(), self.telemetry)
        self._finish_if_terminal()
        return events

    def tick(self) -> list[SessionEvent]:
        """Deadline check for when no frame is available."""
        if not self.running:
            return []
        events = check_deadline(self.session, self.clock(), self.telemetry)
        self._finish_if_terminal()
        return events

    def stop(self) -> list[SessionEvent]:
        was_running = self.running
        self.running = False
        self._release()
        if was_running:
            logger.info(f"[Session] stopped in phase {self.session.phase.value}")
            return [StatusEvent(message="Stopped.", severity=Severity.INFO)]
        return []

    def _finish_if_terminal(self):
        if self.session.terminal:
            self.running = False
            logger.info(f"[Session] verdict={self.session.verdict.verdict.value}, reason={self.session.verdict.reason}, frames={self.session.frames_seen}")
            self._release()

    def _release(self):
        if self._released:
            return
        self._released = True
        if self.on_release is not None:
            self.on_release()
