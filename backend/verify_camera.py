"""
Run a liveness session locally against a webcam or a recorded video.

Usage:
  python3 verify_camera.py              # default webcam
  python3 verify_camera.py 1            # webcam index 1
  python3 verify_camera.py clip.mp4     # replay a recording (useful for spoof tests)

Status lines and the final verdict are printed to the console. Set
DEBUG_TELEMETRY=1 to also log per-frame EAR, threshold and detector counters.
Frames never leave the process.
"""

import sys
import time
import logging

import cv2

from config import LivenessConfig
from processing.face_detection import create_landmarker, detect_face
from processing.pipeline import SessionController

logger = logging.getLogger("uvicorn.error")


class CaptureError(RuntimeError):
    pass


def open_capture(source):
    """Open a camera index or video path. Raises CaptureError with a readable reason."""
    cap = cv2.VideoCapture(source)
    if not cap.isOpened():
        cap.release()
        if isinstance(source, int):
            raise CaptureError(f"No camera found at index {source}, or it is already in use by another app.")
        raise CaptureError(f"Could not open video source: {source}")
    ok, _ = cap.read()
    if not ok:
        cap.release()
        raise CaptureError(f"Camera {source} opened but returned no frames (permission denied or device busy).")
    return cap


def frame_timestamp_ms(cap, started: float, is_file: bool) -> int:
    if is_file:
        return int(cap.get(cv2.CAP_PROP_POS_MSEC))
    return int((time.monotonic() - started) * 1000)


def print_events(events):
    for event in events:
        if event.type == "status":
            print(f"[{event.severity.value:5}] {event.message}")
        elif event.type == "verdict":
            reason = f" ({event.reason})" if event.reason else ""
            print(f"==> {event.verdict.value}{reason}")


def run(source) -> str | None:
    is_file = not isinstance(source, int)
    cap = open_capture(source)
    try:
        landmarker = create_landmarker()
    except Exception:
        cap.release()
        raise

    def release():
        cap.release()
        landmarker.close()

    controller = SessionController(LivenessConfig(), on_release=release)
    print_events(controller.start())

    started = time.monotonic()
    last_status = None
    last_ts = -1
    try:
        while controller.running:
            ok, frame = cap.read()
            if not ok:
                print("No more frames.")
                break
            ts = frame_timestamp_ms(cap, started, is_file)
            if ts <= last_ts:
                # Landmarker rejects non-increasing timestamps; the session would drop it anyway
                continue
            last_ts = ts
            events = controller.process_frame(detect_face(landmarker, frame, ts))
            # Only print status changes
            fresh = [e for e in events if e.type != "status" or e.message != last_status]
            for e in events:
                if e.type == "status":
                    last_status = e.message
            print_events(fresh)
    except KeyboardInterrupt:
        print("Interrupted.")
    finally:
        print_events(controller.stop())

    verdict = controller.verdict
    return verdict.verdict.value if verdict else None


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    arg = sys.argv[1] if len(sys.argv) > 1 else "0"
    source = int(arg) if arg.isdigit() else arg
    try:
        result = run(source)
    except CaptureError as e:
        print(f"Camera initialization failed: {e}")
        sys.exit(2)
    sys.exit(0 if result == "VERIFIED" else 1)
