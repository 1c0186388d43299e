import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")
load_dotenv(Path(__file__).resolve().parent / ".env")

BASE_DIR = Path(__file__).resolve().parent

# Landmarker model path
LANDMARKER_PATH = BASE_DIR / os.getenv("LANDMARKER_PATH", "weights/face_landmarker.task")

# Eye landmarks (MediaPipe FaceMesh indices), ordered p1..p6
LEFT_EYE = [33, 160, 158, 133, 153, 144]
RIGHT_EYE = [362, 385, 387, 263, 373, 380]

# Mouth landmarks
MOUTH_TOP = 13
MOUTH_BOTTOM = 14
JAW_OPEN_BLENDSHAPE = "jawOpen"

# Blink detection
REQUIRED_BLINKS = int(os.getenv("REQUIRED_BLINKS", "2"))
FALLBACK_EAR_THRESHOLD = float(os.getenv("FALLBACK_EAR_THRESHOLD", "0.22"))
CALIBRATION_FRAMES = int(os.getenv("CALIBRATION_FRAMES", "40"))
EAR_CLOSED_FRAMES = 3
MIN_OPEN_FRAMES_AFTER_BLINK = 2
EAR_SMOOTHING_ALPHA = float(os.getenv("EAR_SMOOTHING_ALPHA", "0.3"))
EAR_THRESHOLD_RATIO = 0.75
EAR_THRESHOLD_MIN = 0.16
EAR_THRESHOLD_MAX = 0.28

# Head turn (degrees)
TURN_ANGLE_THRESHOLD = float(os.getenv("TURN_ANGLE_THRESHOLD", "15.0"))
CENTER_ANGLE_THRESHOLD = 6.0
TURN_PERSISTENCE_FRAMES = int(os.getenv("TURN_PERSISTENCE_FRAMES", "5"))
HEAD_POSE_CALIBRATION_FRAMES = 15

# Mouth open
JAW_OPEN_THRESHOLD = 0.3
JAW_OPEN_FRAMES = 4
MOUTH_GAP_THRESHOLD = 0.07  # lip gap / face height
MOUTH_GAP_FRAMES = 6

# Forward lean
LEAN_WINDOW = 30
LEAN_MIN_SAMPLES = 10
LEAN_GROWTH_RATIO = 1.12
LEAN_FRAMES = 3

# Spoof heuristics
MOTION_WINDOW = 25
MOTION_MIN_SAMPLES = 20
MOTION_ENERGY_THRESHOLD = float(os.getenv("MOTION_ENERGY_THRESHOLD", "0.8"))
STATIC_IMAGE_GRACE_FRAMES = 20
EAR_STABILITY_EPSILON = float(os.getenv("EAR_STABILITY_EPSILON", "0.005"))
STATIC_EYE_GRACE_FRAMES = 40

# Session
SESSION_TIME_LIMIT = float(os.getenv("SESSION_TIME_LIMIT", "45"))
DEBUG_TELEMETRY = os.getenv("DEBUG_TELEMETRY", "0").lower() in ("1", "true", "yes")

# Server: comma-separated origins allowed to call the API
FRONTEND_URL = os.getenv("FRONTEND_URL", "*")
CORS_ORIGINS = [origin.strip() for origin in FRONTEND_URL.split(",") if origin.strip()]


@dataclass(frozen=True)
class LivenessConfig:
    required_blink_count: int = REQUIRED_BLINKS
    fallback_ear_threshold: float = FALLBACK_EAR_THRESHOLD
    calibration_frame_count: int = CALIBRATION_FRAMES
    min_closed_frames_for_blink: int = EAR_CLOSED_FRAMES
    min_open_frames_after_blink: int = MIN_OPEN_FRAMES_AFTER_BLINK
    turn_angle_threshold_degrees: float = TURN_ANGLE_THRESHOLD
    turn_persistence_frames: int = TURN_PERSISTENCE_FRAMES
    head_pose_calibration_frames: int = HEAD_POSE_CALIBRATION_FRAMES
    session_time_limit_seconds: float = SESSION_TIME_LIMIT
    ear_smoothing_alpha: float = EAR_SMOOTHING_ALPHA
    debug_telemetry_enabled: bool = DEBUG_TELEMETRY

    def __post_init__(self):
        for name in (
            "required_blink_count",
            "min_closed_frames_for_blink",
            "min_open_frames_after_blink",
            "turn_persistence_frames",
            "head_pose_calibration_frames",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1, got {getattr(self, name)}")
        if self.calibration_frame_count < 0:
            raise ValueError(f"calibration_frame_count must be >= 0, got {self.calibration_frame_count}")
        if not 0.0 < self.ear_smoothing_alpha <= 1.0:
            raise ValueError(f"ear_smoothing_alpha must be in (0, 1], got {self.ear_smoothing_alpha}")
        if self.session_time_limit_seconds < 0:
            raise ValueError("session_time_limit_seconds must be >= 0 (0 disables the deadline)")
        if self.turn_angle_threshold_degrees <= 0:
            raise ValueError("turn_angle_threshold_degrees must be positive")
