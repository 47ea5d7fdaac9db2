import logging
from typing import Optional, Tuple

from .blink import BlinkDetector
from .head_pose import HeadPoseTracker
from .types import BlinkEvent, LivenessChecks

logger = logging.getLogger(__name__)

LIVENESS_THRESHOLD = 0.7
# blink, pose variation, stability
LIVENESS_WEIGHTS: Tuple[float, float, float] = (0.4, 0.35, 0.25)
BLINK_TARGET = 3
STABLE_FRAMES_TARGET = 60


class LivenessScorer:
    """
    Fuses three anti-spoofing signals into one score in [0, 1]:
    - blinks (a printed photo or still screen never blinks)
    - head pose variation (a rigid photo has none)
    - sustained detection (detector false positives flicker)
    """
    def __init__(
        self,
        blink_detector: Optional[BlinkDetector] = None,
        pose_tracker: Optional[HeadPoseTracker] = None,
        threshold: float = LIVENESS_THRESHOLD,
        weights: Tuple[float, float, float] = LIVENESS_WEIGHTS,
        blink_target: int = BLINK_TARGET,
        stable_target: int = STABLE_FRAMES_TARGET,
    ):
        self.blink_detector = blink_detector if blink_detector is not None else BlinkDetector()
        self.pose_tracker = pose_tracker if pose_tracker is not None else HeadPoseTracker()
        self.threshold = float(threshold)
        self.weights = weights
        self.blink_target = int(blink_target)
        self.stable_target = int(stable_target)
        self.stable_frames = 0

    def observe(self, landmarks, ear: float) -> Optional[BlinkEvent]:
        """Feed one frame with a visible face."""
        self.stable_frames += 1
        self.pose_tracker.update(landmarks)
        return self.blink_detector.update(ear)

    def score(self) -> float:
        w_blink, w_pose, w_stable = self.weights
        blink = min(self.blink_detector.blink_count / self.blink_target, 1.0)
        pose = self.pose_tracker.variation_score()
        stable = min(self.stable_frames / self.stable_target, 1.0)
        return min(w_blink * blink + w_pose * pose + w_stable * stable, 1.0)

    def is_live(self) -> bool:
        return self.score() > self.threshold

    def checks(self) -> LivenessChecks:
        return LivenessChecks(
            blink_detected=self.blink_detector.blink_count > 0,
            head_movement=len(self.pose_tracker.history) > 5,
            face_stability=self.stable_frames,
        )

    def reset(self) -> None:
        self.blink_detector.reset()
        self.pose_tracker.reset()
        self.stable_frames = 0
