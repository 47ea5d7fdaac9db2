import cv2
import logging
import numpy as np
from pathlib import Path
from typing import Optional, Protocol, Tuple
try:
    import mediapipe as mp
    from mediapipe.tasks.python import vision
    from mediapipe.tasks.python import BaseOptions
except Exception as e:
    mp = None
    _MP_IMPORT_ERROR = e

from .features import mesh_eye_aspect_ratio
from .types import BoundingBox, Observation

logger = logging.getLogger(__name__)


class FaceDetector(Protocol):
    """Anything that turns a camera frame into one Observation."""

    def detect(self, frame_bgr: np.ndarray) -> Observation:
        ...


# FaceMesh eye contours, [p1..p6] = outer corner, upper lid x2, inner corner, lower lid x2
MESH_RIGHT_EYE = (33, 160, 158, 133, 153, 144)
MESH_LEFT_EYE = (362, 385, 387, 263, 373, 380)


def mesh_ear(mesh_xy: np.ndarray) -> float:
    """Mean EAR of both eyes from the (N,2) FaceMesh points."""
    mesh_xy = np.asarray(mesh_xy, dtype=np.float64)
    right = mesh_eye_aspect_ratio(mesh_xy[list(MESH_RIGHT_EYE)])
    left = mesh_eye_aspect_ratio(mesh_xy[list(MESH_LEFT_EYE)])
    return (right + left) / 2.0


def _clip_xyxy(x1: float, y1: float, x2: float, y2: float, W: int, H: int) -> Tuple[int, int, int, int]:
    x1 = int(max(0, min(W - 1, round(x1))))
    y1 = int(max(0, min(H - 1, round(y1))))
    x2 = int(max(0, min(W, round(x2))))
    y2 = int(max(0, min(H, round(y2))))
    return x1, y1, x2, y2


class HaarFaceMesh6pt:
    """
    Haar face box + MediaPipe FaceLandmarker on the face ROI, reduced to the
    6-point set: right_eye, left_eye, nose, mouth, right_ear, left_ear.
    "right" is the subject's right, i.e. the image-left point of a non-mirrored frame.
    """
    # FaceMesh indices
    IDX_RIGHT_EYE = 33
    IDX_LEFT_EYE = 263
    IDX_NOSE_TIP = 1
    IDX_MOUTH_LEFT = 61
    IDX_MOUTH_RIGHT = 291
    IDX_RIGHT_EAR = 234
    IDX_LEFT_EAR = 454

    def __init__(
        self,
        model_path: Optional[str] = None,
        haar_xml: Optional[str] = None,
        min_size: Tuple[int, int] = (70, 70),
    ):
        self.min_size = tuple(map(int, min_size))

        if haar_xml is None:
            haar_xml = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"

        self.face_cascade = cv2.CascadeClassifier(haar_xml)
        if self.face_cascade.empty():
            raise RuntimeError(f"Failed to load Haar cascade: {haar_xml}")

        if mp is None:
            raise RuntimeError(f"mediapipe import failed: {_MP_IMPORT_ERROR}\n Install: pip install mediapipe")

        if model_path is None:
            # Default to project_root/face_landmarker.task
            model_path = str(Path(__file__).resolve().parent.parent.parent / "face_landmarker.task")

        options = vision.FaceLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=str(model_path)),
            num_faces=1,  # one face per ROI
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False,
        )
        self.landmarker = vision.FaceLandmarker.create_from_options(options)

    def _largest_haar_face(self, gray: np.ndarray) -> Optional[Tuple[int, int, int, int]]:
        faces = self.face_cascade.detectMultiScale(
            gray,
            scaleFactor=1.1,
            minNeighbors=5,
            flags=cv2.CASCADE_SCALE_IMAGE,
            minSize=self.min_size,
        )
        if faces is None or len(faces) == 0:
            return None
        faces = np.asarray(faces, dtype=np.int32)
        areas = faces[:, 2] * faces[:, 3]
        x, y, w, h = faces[int(np.argmax(areas))]
        return int(x), int(y), int(w), int(h)

    def _roi_landmarks_6pt(self, roi_bgr: np.ndarray) -> Optional[Tuple[np.ndarray, float]]:
        H, W = roi_bgr.shape[:2]
        if H < 20 or W < 20:
            return None

        rgb = cv2.cvtColor(roi_bgr, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        res = self.landmarker.detect(mp_image)
        if not res.face_landmarks:
            return None

        lm = res.face_landmarks[0]
        mesh = np.array([[p.x * W, p.y * H] for p in lm], dtype=np.float64)

        def px(i: int) -> np.ndarray:
            return mesh[i].copy()

        mouth = (px(self.IDX_MOUTH_LEFT) + px(self.IDX_MOUTH_RIGHT)) / 2.0
        kps = np.stack([
            px(self.IDX_RIGHT_EYE),
            px(self.IDX_LEFT_EYE),
            px(self.IDX_NOSE_TIP),
            mouth,
            px(self.IDX_RIGHT_EAR),
            px(self.IDX_LEFT_EAR),
        ], axis=0)

        # enforce image-left/right ordering for eyes and ears
        if kps[0, 0] > kps[1, 0]:
            kps[[0, 1]] = kps[[1, 0]]
        if kps[4, 0] > kps[5, 0]:
            kps[[4, 5]] = kps[[5, 4]]
        return kps, mesh_ear(mesh)

    def detect(self, frame_bgr: np.ndarray) -> Observation:
        H, W = frame_bgr.shape[:2]
        gray = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2GRAY)

        face = self._largest_haar_face(gray)
        if face is None:
            return Observation()
        x, y, w, h = face

        # expand ROI a bit for FaceMesh stability
        mx, my = 0.25 * w, 0.35 * h
        rx1, ry1, rx2, ry2 = _clip_xyxy(x - mx, y - my, x + w + mx, y + h + my, W, H)
        roi = frame_bgr[ry1:ry2, rx1:rx2]

        found = self._roi_landmarks_6pt(roi)
        if found is None:
            logger.debug("FaceMesh found no landmarks in Haar ROI")
            return Observation()
        kps, ear = found

        # map ROI kps back to full-frame coords
        kps[:, 0] += float(rx1)
        kps[:, 1] += float(ry1)

        return Observation(
            landmarks=kps,
            bbox=BoundingBox.from_xyxy(x, y, x + w, y + h),
            ear=ear,
        )
