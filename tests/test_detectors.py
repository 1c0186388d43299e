import pytest

from config import LivenessConfig
from processing.challenges import ChallengeAction
from processing.detectors import (
    BlinkDetector, HeadTurnDetector, MouthOpenDetector, ForwardLeanDetector, TurnPhase, build_detector,
)
from processing.signals import FrameSignals, FaceBounds

OPEN = 0.30
CLOSED = 0.10


def feed_all(detector, values):
    for value in values:
        detector.feed(value)
    return detector


# --- Blink ---

def test_blink_counts_one_closed_then_reopened_cycle():
    detector = feed_all(BlinkDetector(0.225), [OPEN] + [CLOSED] * 4 + [OPEN])
    assert detector.blink_count == 1
    assert not detector.satisfied
    assert detector.progress == pytest.approx(0.5)


def test_blink_needs_minimum_closed_frames():
    detector = feed_all(BlinkDetector(0.225, min_closed_frames=3), [CLOSED] * 2 + [OPEN] * 3)
    assert detector.blink_count == 0


def test_sustained_closure_counts_once():
    detector = feed_all(BlinkDetector(0.225), [CLOSED] * 200 + [OPEN] * 5)
    assert detector.blink_count == 1


def test_blink_not_recounted_until_eye_reopens():
    detector = BlinkDetector(0.225, min_open_frames=2)
    feed_all(detector, [CLOSED] * 3 + [OPEN])
    assert detector.blink_count == 1 and detector.latched
    # Only one open frame before closing again: still latched
    feed_all(detector, [CLOSED] * 3 + [OPEN])
    assert detector.blink_count == 1
    feed_all(detector, [OPEN, CLOSED, CLOSED, CLOSED, OPEN])
    assert detector.blink_count == 2


def test_two_blinks_satisfy():
    cycle = [CLOSED] * 3 + [OPEN] * 3
    detector = feed_all(BlinkDetector(0.225, required_blinks=2), cycle * 2)
    assert detector.blink_count == 2
    assert detector.satisfied
    assert detector.progress == 1.0


# --- Head turn ---

def calibrated_turn(direction, baseline=2.0, **kwargs):
    detector = HeadTurnDetector(direction, calibration_frames=15, **kwargs)
    feed_all(detector, [baseline] * 15)
    assert detector.phase == TurnPhase.ACTIVE
    assert detector.baseline == pytest.approx(baseline)
    return detector


def test_turn_left_after_persistence():
    detector = calibrated_turn(ChallengeAction.TURN_LEFT, persistence_frames=5)
    for i in range(4):
        detector.feed(2.0 - 20.0)
        assert not detector.satisfied
        assert detector.right_frames == 0
    detector.feed(2.0 - 20.0)
    assert detector.satisfied
    assert detector.left_frames == 5
    assert detector.right_frames == 0


def test_turn_right_uses_positive_delta():
    detector = calibrated_turn(ChallengeAction.TURN_RIGHT, baseline=0.0, persistence_frames=4)
    feed_all(detector, [20.0] * 4)
    assert detector.satisfied


def test_no_scoring_while_calibrating_yaw():
    detector = HeadTurnDetector(ChallengeAction.TURN_LEFT, calibration_frames=15, persistence_frames=5)
    feed_all(detector, [-40.0] * 14)
    assert detector.phase == TurnPhase.CALIBRATING
    assert detector.left_frames == 0


def test_wrong_direction_turn_requires_return_to_center():
    detector = calibrated_turn(ChallengeAction.TURN_LEFT, baseline=0.0, persistence_frames=3)
    feed_all(detector, [20.0] * 3)
    assert detector.right_frames == 3
    assert not detector.returned_to_center
    # Swinging straight to the left without passing center does not count
    feed_all(detector, [-20.0] * 5)
    assert detector.left_frames == 0
    assert not detector.satisfied
    detector.feed(0.0)
    assert detector.returned_to_center
    feed_all(detector, [-20.0] * 3)
    assert detector.satisfied


def test_opposite_turn_resets_counter():
    detector = calibrated_turn(ChallengeAction.TURN_LEFT, baseline=0.0, persistence_frames=5)
    feed_all(detector, [-20.0] * 3)
    detector.feed(20.0)
    assert detector.left_frames == 0
    assert detector.right_frames == 1


def test_center_decays_counters_instead_of_resetting():
    detector = calibrated_turn(ChallengeAction.TURN_LEFT, baseline=0.0, persistence_frames=5)
    feed_all(detector, [-20.0] * 3)
    detector.feed(1.0)
    assert detector.left_frames == 2
    feed_all(detector, [0.0] * 5)
    assert detector.left_frames == 0


def test_dead_band_leaves_counters_alone():
    detector = calibrated_turn(ChallengeAction.TURN_LEFT, baseline=0.0, persistence_frames=5)
    feed_all(detector, [-20.0] * 2)
    detector.feed(-10.0)
    assert detector.left_frames == 2


def test_frames_without_pose_are_ignored():
    detector = calibrated_turn(ChallengeAction.TURN_LEFT, baseline=0.0, persistence_frames=2)
    feed_all(detector, [None] * 10)
    assert detector.left_frames == 0
    feed_all(detector, [-20.0] * 2)
    assert detector.satisfied


def test_head_turn_uses_pose_angle_not_face_shift():
    # Canonical head-turn detector is pose-angle based; the face-box shift
    # variant is not implemented. A shifted face with no pose never satisfies.
    detector = HeadTurnDetector(ChallengeAction.TURN_LEFT, calibration_frames=1, persistence_frames=1)
    shifted = FrameSignals(ear_left=0.3, ear_right=0.3, bounds=FaceBounds(0.0, 0.2, 0.3, 0.8))
    for _ in range(10):
        detector.update(shifted)
    assert not detector.satisfied


def test_head_turn_rejects_non_turn_action():
    with pytest.raises(ValueError):
        HeadTurnDetector(ChallengeAction.BLINK)


# --- Mouth ---

def test_mouth_open_from_jaw_score():
    detector = MouthOpenDetector()
    for _ in range(3):
        detector.feed(jaw_open=0.6)
    assert not detector.satisfied
    assert detector.progress == pytest.approx(0.75)
    detector.feed(jaw_open=0.6)
    assert detector.satisfied


def test_mouth_score_at_threshold_is_closed():
    detector = MouthOpenDetector()
    for _ in range(10):
        detector.feed(jaw_open=0.3)
    assert detector.open_frames == 0


def test_mouth_geometric_fallback_needs_more_frames():
    detector = MouthOpenDetector()
    for _ in range(5):
        detector.feed(jaw_open=None, gap=0.12)
    assert not detector.satisfied
    detector.feed(jaw_open=None, gap=0.12)
    assert detector.satisfied


def test_mouth_counter_decays_and_floors_at_zero():
    detector = MouthOpenDetector()
    for _ in range(3):
        detector.feed(jaw_open=0.8)
    detector.feed(jaw_open=0.1)
    assert detector.open_frames == 2
    for _ in range(5):
        detector.feed(jaw_open=0.1)
    assert detector.open_frames == 0


def test_single_closed_frame_does_not_reset_mouth():
    detector = MouthOpenDetector()
    for value in (0.8, 0.8, 0.8, 0.1, 0.8, 0.8):
        detector.feed(jaw_open=value)
    assert detector.satisfied


# --- Forward lean ---

def test_forward_lean_needs_sustained_growth():
    detector = ForwardLeanDetector()
    feed_all(detector, [0.40] * 10)
    assert detector.forward_frames == 0
    feed_all(detector, [0.50] * 2)
    assert not detector.satisfied
    detector.feed(0.50)
    assert detector.satisfied


def test_forward_lean_ignores_single_frame_spike():
    detector = ForwardLeanDetector()
    feed_all(detector, [0.40] * 10 + [0.60] + [0.40] * 3)
    assert not detector.satisfied
    assert detector.forward_frames == 0


def test_forward_lean_interrupted_growth_starts_over():
    detector = ForwardLeanDetector()
    feed_all(detector, [0.40] * 10 + [0.50] * 2 + [0.40] + [0.50] * 2)
    assert not detector.satisfied
    detector.feed(0.50)
    assert detector.satisfied


def test_forward_lean_waits_for_min_samples():
    detector = ForwardLeanDetector()
    feed_all(detector, [0.40] + [0.60] * 8)
    assert detector.forward_frames == 0


def test_forward_lean_small_growth_ignored():
    detector = ForwardLeanDetector()
    feed_all(detector, [0.40] * 10 + [0.44] * 10)
    assert detector.forward_frames == 0


def test_forward_lean_window_slides():
    detector = ForwardLeanDetector(window=30)
    feed_all(detector, [0.40] * 40)
    assert len(detector.widths) == 30


# --- Factory ---

def test_build_detector_uses_config():
    config = LivenessConfig(required_blink_count=3, turn_persistence_frames=7, head_pose_calibration_frames=9)
    blink = build_detector(ChallengeAction.BLINK, config, 0.2)
    assert isinstance(blink, BlinkDetector)
    assert blink.required_blinks == 3 and blink.threshold == 0.2
    turn = build_detector(ChallengeAction.TURN_RIGHT, config, 0.2)
    assert isinstance(turn, HeadTurnDetector)
    assert turn.action == ChallengeAction.TURN_RIGHT
    assert turn.persistence_frames == 7
    assert turn.calibrator.frame_count == 9
    assert isinstance(build_detector(ChallengeAction.MOUTH_OPEN, config, 0.2), MouthOpenDetector)
    assert isinstance(build_detector(ChallengeAction.LEAN_FORWARD, config, 0.2), ForwardLeanDetector)
