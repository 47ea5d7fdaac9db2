from collections import deque
from dataclasses import dataclass, field
from typing import Deque


@dataclass
class HeadPose:
    """Head pose angles in degrees.

    - yaw: nose offset from the eye midline (left/right turn)
    - pitch: nose/mouth vertical arrangement below the eyes
    - roll: tilt of the eye line
    """
    pitch: float = 0.0
    yaw: float = 0.0
    roll: float = 0.0


@dataclass
class BlinkEvent:
    frame_index: int  # frame on which the eye reopened
    duration: int  # frames below threshold
    blink_count: int


@dataclass
class BlinkState:
    is_blinking: bool = False
    blink_start_frame: int = 0
    frames_since_last_blink: int = 0
    blink_count: int = 0
    closed_frames: int = 0
    frame_index: int = 0
    ear_history: Deque[float] = field(default_factory=lambda: deque(maxlen=10))


@dataclass
class LivenessChecks:
    blink_detected: bool
    head_movement: bool
    face_stability: int
