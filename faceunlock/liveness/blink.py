"""
Blink detection over a per-frame eye-aspect-ratio stream.

The closing threshold follows the subject's own EAR baseline
(70% of the recent mean, capped at 0.25) so it works across faces,
cameras and distances. A blink counts only if the eye stayed closed
for 2..15 frames, and a new blink cannot open within 5 frames of the
last counted one.
"""

import logging
from collections import deque
from typing import Optional

from .types import BlinkEvent, BlinkState

logger = logging.getLogger(__name__)

EAR_HISTORY_SIZE = 10
THRESHOLD_CAP = 0.25
THRESHOLD_RATIO = 0.7
REOPEN_RATIO = 1.2
MIN_BLINK_FRAMES = 2
MAX_BLINK_FRAMES = 15
REFRACTORY_FRAMES = 5


class BlinkDetector:
    def __init__(
        self,
        history_size: int = EAR_HISTORY_SIZE,
        threshold_cap: float = THRESHOLD_CAP,
        threshold_ratio: float = THRESHOLD_RATIO,
        reopen_ratio: float = REOPEN_RATIO,
        min_frames: int = MIN_BLINK_FRAMES,
        max_frames: int = MAX_BLINK_FRAMES,
        refractory_frames: int = REFRACTORY_FRAMES,
    ):
        self.history_size = int(history_size)
        self.threshold_cap = float(threshold_cap)
        self.threshold_ratio = float(threshold_ratio)
        self.reopen_ratio = float(reopen_ratio)
        self.min_frames = int(min_frames)
        self.max_frames = int(max_frames)
        self.refractory_frames = int(refractory_frames)
        self.state = BlinkState(ear_history=deque(maxlen=self.history_size))
        self.threshold = self.threshold_cap

    @property
    def blink_count(self) -> int:
        return self.state.blink_count

    def update(self, ear: float) -> Optional[BlinkEvent]:
        s = self.state
        ear = float(ear)
        event: Optional[BlinkEvent] = None

        s.ear_history.append(ear)
        avg = sum(s.ear_history) / len(s.ear_history)
        self.threshold = min(self.threshold_cap, avg * self.threshold_ratio)

        if ear < self.threshold:
            if not s.is_blinking and s.frames_since_last_blink > self.refractory_frames:
                s.is_blinking = True
                s.blink_start_frame = s.frame_index
            s.closed_frames += 1
        elif ear > self.threshold * self.reopen_ratio:
            if s.is_blinking and s.closed_frames >= self.min_frames:
                duration = s.closed_frames
                if self.min_frames <= duration <= self.max_frames:
                    s.blink_count += 1
                    s.frames_since_last_blink = 0
                    event = BlinkEvent(frame_index=s.frame_index, duration=duration, blink_count=s.blink_count)
                    logger.debug("blink #%d (%d frames)", s.blink_count, duration)
                else:
                    logger.debug("eye closure of %d frames ignored", duration)
                s.is_blinking = False
            s.closed_frames = 0

        s.frames_since_last_blink += 1
        s.frame_index += 1
        return event

    def reset(self) -> None:
        self.state = BlinkState(ear_history=deque(maxlen=self.history_size))
        self.threshold = self.threshold_cap
