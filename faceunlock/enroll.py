"""
enroll.py
Guided enrollment: four pose steps, ten geometric samples per step.

camera -> Haar + FaceMesh 6pt -> 12-value feature vector -> step buffer
Every buffered vector becomes one Template when step 4 finishes.

Steps:
1. look straight at the camera
2. turn slightly left
3. turn slightly right
4. blink naturally

A step that cannot collect its samples within 5 s advances anyway, so a
session never blocks (such an identity simply ends up with fewer templates).

Outputs:
- data/db/face_templates.npz (per identity features/steps/created_at)
- data/db/face_templates.json (metadata)

Run:
python -m faceunlock.enroll --name Alice

Controls:
- c: cancel (discard everything captured so far)
- n: skip to the next step
- q: quit
"""

from __future__ import annotations
import argparse
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union
import numpy as np

from .recognize.errors import InvalidObservation, SessionAlreadyTerminal
from .recognize.features import extract_from_observation
from .recognize.types import Observation, Template

logger = logging.getLogger(__name__)

# -------------------------
# Config
# -------------------------
@dataclass
class EnrollConfig:
    max_steps: int = 4
    samples_per_step: int = 10
    step_timeout_s: float = 5.0
    capture_every_s: float = 0.1

    db_npz: Path = Path("data/db/face_templates.npz")
    db_json: Path = Path("data/db/face_templates.json")

    # UI
    window_main: str = "enroll"


STEP_POSES = {
    1: "frontal",
    2: "turn_left",
    3: "turn_right",
    4: "blink",
}

STEP_PROMPTS = {
    1: "Look straight at the camera",
    2: "Turn your head slightly left",
    3: "Turn your head slightly right",
    4: "Blink naturally",
}


# -------------------------
# Events
# -------------------------
@dataclass
class StepProgress:
    step: int
    samples_collected: int
    required: int


@dataclass
class StepAdvanced:
    step: int  # the step now active
    completed_step: int
    samples_collected: int
    timed_out: bool


@dataclass
class EnrollmentComplete:
    identity_id: str
    templates: List[Template] = field(default_factory=list)


@dataclass
class EnrollmentAbandoned:
    identity_id: str
    discarded: int


EnrollmentEvent = Union[StepProgress, StepAdvanced, EnrollmentComplete, EnrollmentAbandoned]


class EnrollmentState(str, Enum):
    COLLECTING = "collecting"
    COMPLETE = "complete"
    ABANDONED = "abandoned"


# -------------------------
# Session
# -------------------------
class EnrollmentSession:
    """
    One enrollment attempt for one identity.

    Frames go in through process_frame(); events come out. Timeouts are
    measured with the injected clock whenever a frame or tick() arrives.
    Nothing is persisted here: the templates are handed out once, in
    EnrollmentComplete, and a cancelled session hands out nothing.
    """

    def __init__(
        self,
        identity_id: str,
        config: Optional[EnrollConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        feature_extractor: Callable[[Observation], np.ndarray] = extract_from_observation,
        wall_clock: Callable[[], float] = time.time,
    ):
        if not identity_id:
            raise ValueError("identity_id must be a non-empty string")
        self.identity_id = identity_id
        self.config = config or EnrollConfig()
        self.clock = clock
        self.wall_clock = wall_clock
        self.feature_extractor = feature_extractor

        self.state = EnrollmentState.COLLECTING
        self.current_step = 1
        self.steps_timed_out = 0
        self._buffers: Dict[int, List[np.ndarray]] = {s: [] for s in range(1, self.config.max_steps + 1)}
        self._templates: List[Template] = []
        self._step_started = self.clock()

    @property
    def is_terminal(self) -> bool:
        return self.state != EnrollmentState.COLLECTING

    @property
    def templates(self) -> List[Template]:
        return list(self._templates)

    def samples_collected(self, step: Optional[int] = None) -> int:
        return len(self._buffers.get(step or self.current_step, []))

    def total_samples(self) -> int:
        return sum(len(b) for b in self._buffers.values())

    def _ensure_active(self) -> None:
        if self.is_terminal:
            raise SessionAlreadyTerminal(self.state.value)

    def _step_expired(self) -> bool:
        return (self.clock() - self._step_started) >= self.config.step_timeout_s

    def process_frame(self, obs: Observation) -> List[EnrollmentEvent]:
        try:
            self._ensure_active()
        except SessionAlreadyTerminal:
            logger.debug("enrollment for %s already %s; frame ignored", self.identity_id, self.state.value)
            return []

        events: List[EnrollmentEvent] = []
        if self._step_expired():
            events.extend(self._advance(timed_out=True))
            if self.is_terminal:
                return events

        try:
            feats = self.feature_extractor(obs)
        except InvalidObservation as e:
            logger.debug("step %d: frame skipped (%s)", self.current_step, e)
            return events

        buf = self._buffers[self.current_step]
        buf.append(feats)
        events.append(StepProgress(self.current_step, len(buf), self.config.samples_per_step))

        if len(buf) >= self.config.samples_per_step:
            events.extend(self._advance(timed_out=False))
        return events

    def tick(self) -> List[EnrollmentEvent]:
        """Run the step timeout check without a frame."""
        if self.is_terminal or not self._step_expired():
            return []
        return self._advance(timed_out=True)

    def force_advance(self) -> List[EnrollmentEvent]:
        """Finish the current step now, with whatever it has collected."""
        self._ensure_active()
        return self._advance(timed_out=False)

    def cancel(self) -> List[EnrollmentEvent]:
        if self.is_terminal:
            return []
        discarded = self.total_samples()
        for b in self._buffers.values():
            b.clear()
        self.state = EnrollmentState.ABANDONED
        logger.info("enrollment for %s abandoned at step %d (%d samples discarded)",
                    self.identity_id, self.current_step, discarded)
        return [EnrollmentAbandoned(self.identity_id, discarded)]

    def _advance(self, timed_out: bool) -> List[EnrollmentEvent]:
        completed = self.current_step
        n = len(self._buffers[completed])
        if timed_out:
            self.steps_timed_out += 1
            logger.warning("step %d (%s) timed out with %d/%d samples",
                           completed, STEP_POSES.get(completed, "?"), n, self.config.samples_per_step)

        if completed >= self.config.max_steps:
            return [self._finalize()]

        self.current_step = completed + 1
        self._step_started = self.clock()
        logger.info("enrollment for %s: step %d -> %d", self.identity_id, completed, self.current_step)
        return [StepAdvanced(self.current_step, completed, n, timed_out)]

    def _finalize(self) -> EnrollmentComplete:
        now = self.wall_clock()
        self._templates = [
            Template(identity_id=self.identity_id, pose_step=step, features=f, created_at=now)
            for step in sorted(self._buffers)
            for f in self._buffers[step]
        ]
        self.state = EnrollmentState.COMPLETE
        logger.info("enrollment for %s complete: %d templates (%d steps timed out)",
                    self.identity_id, len(self._templates), self.steps_timed_out)
        return EnrollmentComplete(self.identity_id, self.templates)


# -------------------------
# UI helpers
# -------------------------

def draw_status(frame: np.ndarray, session: EnrollmentSession, msg: str = "") -> None:
    import cv2

    step = session.current_step
    lines = [
        f"ENROLL: {session.identity_id}",
        f"Step {step}/{session.config.max_steps}: {STEP_PROMPTS.get(step, '')}",
        f"Samples: {session.samples_collected()} / {session.config.samples_per_step}",
        "n=next step | c=cancel | q=quit",
    ]
    if msg:
        lines.insert(0, msg)

    # draw with black shadow for readability
    y = 30
    for line in lines:
        cv2.putText(frame, line, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.62, (0, 0, 0), 4, cv2.LINE_AA)
        cv2.putText(frame, line, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.62, (255, 255, 255), 2, cv2.LINE_AA)
        y += 26


def draw_observation(frame: np.ndarray, obs: Observation, color=(0, 255, 0)) -> None:
    import cv2

    if obs.bbox is not None:
        (x1, y1), (x2, y2) = obs.bbox.top_left, obs.bbox.bottom_right
        cv2.rectangle(frame, (int(x1), int(y1)), (int(x2), int(y2)), color, 2)
    if obs.landmarks is not None:
        for (x, y) in obs.landmarks.astype(int):
            cv2.circle(frame, (int(x), int(y)), 3, color, -1)


# -------------------------
# Main
# -------------------------

def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Enroll a face with guided head poses.")
    ap.add_argument("--name", help="identity to enroll (prompted when omitted)")
    ap.add_argument("--camera", type=int, default=1, help="camera index (falls back to 0)")
    ap.add_argument("--samples", type=int, default=EnrollConfig.samples_per_step)
    ap.add_argument("--step-timeout", type=float, default=EnrollConfig.step_timeout_s)
    ap.add_argument("--db", type=Path, default=EnrollConfig.db_npz)
    ap.add_argument("-v", "--verbose", action="store_true")
    return ap.parse_args(argv)


def main(argv=None):
    import cv2
    from .camera import open_camera
    from .engine import FaceUnlockEngine
    from .recognize.detector import HaarFaceMesh6pt
    from .recognize.store import NpzTemplateStore

    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = EnrollConfig(
        samples_per_step=args.samples,
        step_timeout_s=args.step_timeout,
        db_npz=args.db,
        db_json=args.db.with_suffix(".json"),
    )
    name = args.name or input("Enter person name to enroll (e.g., Alice): ").strip()
    if not name:
        print("No name provided. Exiting.")
        return

    det = HaarFaceMesh6pt(min_size=(70, 70))
    store = NpzTemplateStore(npz_path=cfg.db_npz, json_path=cfg.db_json)
    engine = FaceUnlockEngine(store=store, enroll_config=cfg)
    session = engine.start_enrollment(name)

    cap = open_camera(args.camera)
    cv2.namedWindow(cfg.window_main, cv2.WINDOW_NORMAL)

    print("\nEnrollment started.")
    print("Tip: stable lighting, follow the prompt on screen.")
    print("Controls: n=next step, c=cancel, q=quit\n")

    status_msg = ""
    last_capture = 0.0
    try:
        while True:
            ok, frame = cap.read()
            if not ok:
                break

            vis = frame.copy()
            obs = det.detect(frame)
            draw_observation(vis, obs)

            now = time.time()
            events: List[EnrollmentEvent] = []
            if (now - last_capture) >= cfg.capture_every_s:
                events = engine.process_frame(obs)
                last_capture = now
            else:
                events = engine.tick()

            for ev in events:
                if isinstance(ev, StepAdvanced):
                    status_msg = f"Step {ev.completed_step} done ({ev.samples_collected} samples)"
                elif isinstance(ev, EnrollmentComplete):
                    status_msg = f"Saved '{name}': {len(ev.templates)} templates"
                    print(status_msg)
                elif isinstance(ev, EnrollmentAbandoned):
                    status_msg = "Enrollment cancelled."
                    print(status_msg)

            draw_status(vis, session, msg=status_msg)
            cv2.imshow(cfg.window_main, vis)
            key = cv2.waitKey(1) & 0xFF

            if session.is_terminal or key == ord("q"):
                break
            if key == ord("c"):
                engine.cancel()
            if key == ord("n"):
                engine.force_advance()
    finally:
        if not session.is_terminal:
            engine.cancel()
        cap.release()
        cv2.destroyAllWindows()


if __name__ == "__main__":
    main()
