"""Shared fixtures: a controllable clock and synthetic detector observations."""

import numpy as np
import pytest

from faceunlock.recognize.types import BoundingBox, Observation


# right_eye, left_eye, nose, mouth, right_ear, left_ear
FRONTAL_LANDMARKS = np.array(
    [[40.0, 50.0], [80.0, 50.0], [60.0, 70.0], [60.0, 90.0], [20.0, 60.0], [100.0, 60.0]],
    dtype=np.float64,
)
FRONTAL_BBOX = ((10.0, 20.0), (110.0, 140.0))


class FakeClock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def build_observation(nose_dx=0.0, ear=None, scale=1.0, offset=(0.0, 0.0), landmarks=None):
    k = np.array(FRONTAL_LANDMARKS if landmarks is None else landmarks, dtype=np.float64)
    k[2, 0] += nose_dx
    off = np.asarray(offset, dtype=np.float64)
    k = k * scale + off
    (x1, y1), (x2, y2) = FRONTAL_BBOX
    bbox = BoundingBox.from_xyxy(x1 * scale + off[0], y1 * scale + off[1], x2 * scale + off[0], y2 * scale + off[1])
    return Observation(landmarks=k, bbox=bbox, ear=ear)


def live_ear_sequence(n_frames: int, blinks: int = 3):
    """Open-eye baseline, then `blinks` two-frame blinks spaced past the refractory window."""
    ears = [0.3] * 10
    for _ in range(blinks):
        ears += [0.15, 0.075] + [0.3] * 8
    ears += [0.3] * max(0, n_frames - len(ears))
    return ears[:n_frames]


def live_stream(n_frames: int, blinks: int = 3, yaw_dx: float = 40.0):
    """A subject who blinks and turns the head left/right every frame."""
    ears = live_ear_sequence(n_frames, blinks)
    return [
        build_observation(nose_dx=yaw_dx if i % 2 == 0 else -yaw_dx, ear=ears[i])
        for i in range(n_frames)
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_obs():
    return build_observation


@pytest.fixture
def live_frames():
    return live_stream


@pytest.fixture
def ear_sequence():
    return live_ear_sequence
