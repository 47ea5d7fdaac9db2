from dataclasses import dataclass, field
from typing import Optional, Tuple
import numpy as np

Point = Tuple[float, float]

# Detector landmark order (6 points per face)
LANDMARK_NAMES = ("right_eye", "left_eye", "nose", "mouth", "right_ear", "left_ear")
NUM_LANDMARKS = len(LANDMARK_NAMES)
FEATURE_DIM = 12

IDX_RIGHT_EYE = 0
IDX_LEFT_EYE = 1
IDX_NOSE = 2
IDX_MOUTH = 3
IDX_RIGHT_EAR = 4
IDX_LEFT_EAR = 5


@dataclass(frozen=True)
class BoundingBox:
    top_left: Point
    bottom_right: Point

    @property
    def width(self) -> float:
        return float(self.bottom_right[0]) - float(self.top_left[0])

    @property
    def height(self) -> float:
        return float(self.bottom_right[1]) - float(self.top_left[1])

    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingBox":
        return cls(top_left=(float(x1), float(y1)), bottom_right=(float(x2), float(y2)))


@dataclass
class Observation:
    """One detector result for one frame.

    Both fields absent means no face was visible, which is a normal condition.
    """
    landmarks: Optional[np.ndarray] = None  # (6,2) pixel coords
    bbox: Optional[BoundingBox] = None
    ear: Optional[float] = None  # set by detectors with dense eye landmarks
    score: float = 1.0

    def __post_init__(self):
        if self.landmarks is not None and not isinstance(self.landmarks, np.ndarray):
            self.landmarks = np.asarray(self.landmarks, dtype=np.float64)

    @property
    def has_face(self) -> bool:
        return self.landmarks is not None and self.bbox is not None


@dataclass(frozen=True, eq=False)
class Template:
    identity_id: str
    pose_step: int
    features: np.ndarray  # (12,) read-only
    created_at: float = 0.0


@dataclass
class MatchResult:
    identity_id: Optional[str]
    confidence: float
    is_match: bool
    template_index: int = -1
    templates_compared: int = 0
    scores: np.ndarray = field(default_factory=lambda: np.zeros((0,), dtype=np.float64), repr=False)
