import cv2
import numpy as np
import mediapipe as mp

from config import LANDMARKER_PATH
from processing.signals import LandmarkFrame


def create_landmarker(model_path=LANDMARKER_PATH):
    """Create a new MediaPipe FaceLandmarker in VIDEO mode (one per session).

    Blendshapes and transformation matrices are enabled: jawOpen drives the
    mouth challenge and the pose matrix drives head yaw.
    """
    BaseOptions = mp.tasks.BaseOptions
    FaceLandmarker = mp.tasks.vision.FaceLandmarker
    FaceLandmarkerOptions = mp.tasks.vision.FaceLandmarkerOptions
    VisionRunningMode = mp.tasks.vision.RunningMode

    options = FaceLandmarkerOptions(
        base_options=BaseOptions(model_asset_path=str(model_path)),
        running_mode=VisionRunningMode.VIDEO,
        num_faces=1,
        min_face_detection_confidence=0.5,
        min_face_presence_confidence=0.5,
        output_face_blendshapes=True,
        output_facial_transformation_matrixes=True,
    )
    return FaceLandmarker.create_from_options(options)


def crop_face_gray(frame_bgr: np.ndarray, points: np.ndarray) -> np.ndarray | None:
    """Grayscale pixels inside the landmark bounding box, for motion energy."""
    img_h, img_w = frame_bgr.shape[:2]
    x_min = max(0, int(points[:, 0].min() * img_w))
    y_min = max(0, int(points[:, 1].min() * img_h))
    x_max = min(img_w, int(points[:, 0].max() * img_w))
    y_max = min(img_h, int(points[:, 1].max() * img_h))
    if x_max - x_min < 2 or y_max - y_min < 2:
        return None
    face_crop = frame_bgr[y_min:y_max, x_min:x_max]
    return cv2.cvtColor(face_crop, cv2.COLOR_BGR2GRAY)


def detect_face(landmarker, frame_bgr: np.ndarray, timestamp_ms: int) -> LandmarkFrame:
    """Run the landmarker on a BGR frame. Always returns a frame; points is None without a face."""
    frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
    mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=frame_rgb)
    result = landmarker.detect_for_video(mp_image, timestamp_ms)

    if not result.face_landmarks:
        return LandmarkFrame(timestamp_ms=timestamp_ms)

    points = np.array([[lm.x, lm.y, lm.z] for lm in result.face_landmarks[0]], dtype=np.float64)

    expressions = None
    if result.face_blendshapes:
        expressions = {b.category_name: b.score for b in result.face_blendshapes[0]}

    pose = None
    if result.facial_transformation_matrixes:
        pose = np.asarray(result.facial_transformation_matrixes[0], dtype=np.float64)

    return LandmarkFrame(
        timestamp_ms=timestamp_ms,
        points=points,
        expressions=expressions,
        pose=pose,
        face_gray=crop_face_gray(frame_bgr, points),
    )
