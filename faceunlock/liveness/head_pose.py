import math
from collections import deque
from typing import Deque, List
import numpy as np

from ..recognize.types import IDX_RIGHT_EYE, IDX_LEFT_EYE, IDX_NOSE, IDX_MOUTH
from .types import HeadPose

# Calibration constant standing in for the camera-to-face depth in pixels when
# turning the nose's horizontal offset into a yaw angle. Not a physical unit.
REFERENCE_DEPTH = 100.0

POSE_HISTORY_SIZE = 30
MIN_POSE_SAMPLES = 10
POSE_VARIATION_SCALE = 100.0


def estimate_head_pose(landmarks, reference_depth: float = REFERENCE_DEPTH) -> HeadPose:
    k = np.asarray(landmarks, dtype=np.float64).reshape(-1, 2)
    right_eye, left_eye, nose, mouth = k[IDX_RIGHT_EYE], k[IDX_LEFT_EYE], k[IDX_NOSE], k[IDX_MOUTH]

    eye_cx = (left_eye[0] + right_eye[0]) / 2.0
    eye_cy = (left_eye[1] + right_eye[1]) / 2.0

    yaw = math.degrees(math.atan2(nose[0] - eye_cx, reference_depth))
    pitch = math.degrees(math.atan2(mouth[1] - eye_cy, nose[1] - eye_cy))
    roll = math.degrees(math.atan2(right_eye[1] - left_eye[1], right_eye[0] - left_eye[0]))
    return HeadPose(pitch=pitch, yaw=yaw, roll=roll)


class HeadPoseTracker:
    """Per-frame head pose with a bounded FIFO history."""

    def __init__(
        self,
        history_size: int = POSE_HISTORY_SIZE,
        reference_depth: float = REFERENCE_DEPTH,
        min_samples: int = MIN_POSE_SAMPLES,
        variation_scale: float = POSE_VARIATION_SCALE,
    ):
        self.reference_depth = float(reference_depth)
        self.min_samples = int(min_samples)
        self.variation_scale = float(variation_scale)
        self.history: Deque[HeadPose] = deque(maxlen=int(history_size))

    def update(self, landmarks) -> HeadPose:
        pose = estimate_head_pose(landmarks, self.reference_depth)
        self.history.append(pose)
        return pose

    def poses(self) -> List[HeadPose]:
        return list(self.history)

    def variation_score(self) -> float:
        """0 below min_samples, else summed population std of roll/yaw/pitch over the scale, capped at 1."""
        if len(self.history) < self.min_samples:
            return 0.0
        arr = np.array([[p.roll, p.yaw, p.pitch] for p in self.history], dtype=np.float64)
        total = float(np.sum(np.std(arr, axis=0)))
        return min(total / self.variation_scale, 1.0)

    def reset(self) -> None:
        self.history.clear()
