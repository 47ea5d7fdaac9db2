"""
unlock.py
Face unlock: liveness gate first, then matching against enrolled templates.

camera -> Haar + FaceMesh 6pt -> {blink, head pose, stability} -> liveness score
-> (score > 0.7) -> fused similarity vs templates -> accept / reject / time out

Run:
python -m faceunlock.unlock              # any enrolled identity
python -m faceunlock.unlock --name Alice # claimed identity

Keys:
q : quit (cancels the attempt)
"""

from __future__ import annotations
import argparse
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union
import numpy as np

from .liveness.scorer import LivenessScorer, LIVENESS_THRESHOLD
from .recognize.errors import InvalidObservation, NoTemplatesForIdentity, SessionAlreadyTerminal
from .recognize.features import extract_from_observation, observation_ear
from .recognize.matcher import DEFAULT_MATCH_THRESHOLD, UNLOCK_CONFIDENCE_THRESHOLD, TemplateMatcher
from .recognize.types import MatchResult, Observation, Template

logger = logging.getLogger(__name__)

# -------------------------
# Config
# -------------------------
@dataclass
class UnlockConfig:
    liveness_threshold: float = LIVENESS_THRESHOLD
    match_threshold: float = DEFAULT_MATCH_THRESHOLD
    confidence_threshold: float = UNLOCK_CONFIDENCE_THRESHOLD

    # give up after this many stable frames past the gate without a match
    reject_stability: int = 50
    stability_decay: int = 2

    timeout_s: float = 15.0
    frame_interval_s: float = 0.2

    db_npz: Path = Path("data/db/face_templates.npz")
    db_json: Path = Path("data/db/face_templates.json")

    # UI
    window_main: str = "unlock"


class VerificationOutcome(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


# -------------------------
# Events
# -------------------------
@dataclass
class LivenessProgress:
    score: float
    face_stability: int


@dataclass
class VerificationAccepted:
    identity_id: Optional[str]
    confidence: float


@dataclass
class VerificationRejected:
    identity_id: Optional[str]  # best candidate, if any
    confidence: float


@dataclass
class VerificationTimedOut:
    elapsed_s: float
    frames_processed: int


@dataclass
class VerificationCancelled:
    frames_processed: int


VerificationEvent = Union[
    LivenessProgress, VerificationAccepted, VerificationRejected, VerificationTimedOut, VerificationCancelled
]


# -------------------------
# Session
# -------------------------
class VerificationSession:
    """
    One unlock attempt.

    Fed one Observation per frame. Matching only starts once the liveness
    score clears the gate; after that each live frame is matched until a
    template is close enough (accept) or the face has been held for more
    than reject_stability frames without one (reject). The time budget is
    checked on every frame and tick. Exactly one terminal event is emitted.
    """

    def __init__(
        self,
        templates: Sequence[Template],
        identity_id: Optional[str] = None,
        config: Optional[UnlockConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        scorer: Optional[LivenessScorer] = None,
        feature_extractor: Callable[[Observation], np.ndarray] = extract_from_observation,
    ):
        templates = list(templates)
        if not templates:
            raise NoTemplatesForIdentity(identity_id)

        self.identity_id = identity_id
        self.config = config or UnlockConfig()
        self.clock = clock
        self.feature_extractor = feature_extractor
        self.scorer = scorer if scorer is not None else LivenessScorer(threshold=self.config.liveness_threshold)
        self.matcher = TemplateMatcher(templates, match_threshold=self.config.match_threshold)

        self.outcome = VerificationOutcome.PENDING
        self.face_stability = 0
        self.frames_processed = 0
        self.liveness_score = 0.0
        self.last_match: Optional[MatchResult] = None
        self._started = self.clock()

        logger.info("verification started for %s against %d templates",
                    identity_id if identity_id is not None else "<any>", len(self.matcher))

    @property
    def is_terminal(self) -> bool:
        return self.outcome != VerificationOutcome.PENDING

    @property
    def elapsed_s(self) -> float:
        return self.clock() - self._started

    def _ensure_active(self) -> None:
        if self.is_terminal:
            raise SessionAlreadyTerminal(self.outcome.value)

    def _expired(self) -> bool:
        return self.elapsed_s >= self.config.timeout_s

    def process_frame(self, obs: Observation) -> List[VerificationEvent]:
        try:
            self._ensure_active()
        except SessionAlreadyTerminal:
            return []

        if self._expired():
            return [self._time_out()]

        self.frames_processed += 1
        if not obs.has_face:
            self.face_stability = max(0, self.face_stability - self.config.stability_decay)
            return []

        try:
            feats = self.feature_extractor(obs)
            ear = observation_ear(obs)
        except InvalidObservation as e:
            logger.debug("frame %d skipped (%s)", self.frames_processed, e)
            return []

        self.face_stability += 1
        self.scorer.observe(obs.landmarks, ear)
        self.liveness_score = self.scorer.score()
        events: List[VerificationEvent] = [LivenessProgress(self.liveness_score, self.face_stability)]

        if self.liveness_score <= self.config.liveness_threshold:
            return events

        mr = self.matcher.match(feats)
        self.last_match = mr
        if mr.is_match and mr.confidence > self.config.confidence_threshold:
            events.append(self._finish(VerificationOutcome.ACCEPTED))
        elif self.face_stability > self.config.reject_stability:
            events.append(self._finish(VerificationOutcome.REJECTED))
        return events

    def tick(self) -> List[VerificationEvent]:
        """Run the time budget check without a frame."""
        if self.is_terminal or not self._expired():
            return []
        return [self._time_out()]

    def cancel(self) -> List[VerificationEvent]:
        if self.is_terminal:
            return []
        return [self._finish(VerificationOutcome.CANCELLED)]

    def _time_out(self) -> VerificationEvent:
        return self._finish(VerificationOutcome.TIMED_OUT)

    def _finish(self, outcome: VerificationOutcome) -> VerificationEvent:
        self.outcome = outcome
        mr = self.last_match
        logger.info("verification %s after %d frames (liveness %.3f, confidence %s)",
                    outcome.value, self.frames_processed, self.liveness_score,
                    f"{mr.confidence:.4f}" if mr is not None else "n/a")

        if outcome == VerificationOutcome.ACCEPTED:
            return VerificationAccepted(mr.identity_id, mr.confidence)
        if outcome == VerificationOutcome.REJECTED:
            return VerificationRejected(mr.identity_id, mr.confidence)
        if outcome == VerificationOutcome.TIMED_OUT:
            return VerificationTimedOut(self.elapsed_s, self.frames_processed)
        return VerificationCancelled(self.frames_processed)


# -------------------------
# UI helpers
# -------------------------

def draw_status(frame: np.ndarray, session: VerificationSession, msg: str = "") -> None:
    import cv2

    checks = session.scorer.checks()
    remaining = max(0.0, session.config.timeout_s - session.elapsed_s)
    lines = [
        f"UNLOCK: {session.identity_id or 'any enrolled face'}",
        f"Liveness: {session.liveness_score:.2f} / {session.config.liveness_threshold:.2f}",
        f"Blink: {'yes' if checks.blink_detected else 'no'} | "
        f"Movement: {'yes' if checks.head_movement else 'no'} | Stable: {checks.face_stability}",
        f"Time left: {remaining:.1f}s",
    ]
    if session.last_match is not None:
        lines.append(f"Best match: {session.last_match.identity_id} ({session.last_match.confidence:.3f})")
    if msg:
        lines.insert(0, msg)

    y = 30
    for line in lines:
        cv2.putText(frame, line, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.62, (0, 0, 0), 4, cv2.LINE_AA)
        cv2.putText(frame, line, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.62, (255, 255, 255), 2, cv2.LINE_AA)
        y += 26


# -------------------------
# Main
# -------------------------

def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Unlock with a live face.")
    ap.add_argument("--name", help="claimed identity (any enrolled identity when omitted)")
    ap.add_argument("--camera", type=int, default=1, help="camera index (falls back to 0)")
    ap.add_argument("--timeout", type=float, default=UnlockConfig.timeout_s)
    ap.add_argument("--threshold", type=float, default=UnlockConfig.match_threshold,
                    help="fused similarity needed for a match")
    ap.add_argument("--db", type=Path, default=UnlockConfig.db_npz)
    ap.add_argument("--log-file", default="data/auth_activity.txt")
    ap.add_argument("-v", "--verbose", action="store_true")
    return ap.parse_args(argv)


def main(argv=None):
    import cv2
    from .camera import open_camera
    from .engine import FaceUnlockEngine
    from .recognize.detector import HaarFaceMesh6pt
    from .recognize.logger import ActivityLogger
    from .recognize.store import NpzTemplateStore

    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = UnlockConfig(timeout_s=args.timeout, match_threshold=args.threshold,
                       db_npz=args.db, db_json=args.db.with_suffix(".json"))
    store = NpzTemplateStore(npz_path=cfg.db_npz, json_path=cfg.db_json)
    engine = FaceUnlockEngine(store=store, unlock_config=cfg, activity_logger=ActivityLogger(args.log_file))

    try:
        session = engine.start_verification(args.name)
    except NoTemplatesForIdentity as e:
        print(f"[Error] {e}. Enroll first: python -m faceunlock.enroll")
        return

    det = HaarFaceMesh6pt(min_size=(70, 70))
    cap = open_camera(args.camera)
    cv2.namedWindow(cfg.window_main, cv2.WINDOW_NORMAL)
    print("Unlock started. Look at the camera, blink and move your head a little. q=quit")

    status_msg = ""
    last_frame = 0.0
    try:
        while not session.is_terminal:
            ok, frame = cap.read()
            if not ok:
                break

            vis = frame.copy()
            now = time.time()
            if (now - last_frame) >= cfg.frame_interval_s:
                obs = det.detect(frame)
                events = engine.process_frame(obs)
                last_frame = now
            else:
                events = engine.tick()

            for ev in events:
                if isinstance(ev, VerificationAccepted):
                    status_msg = f"UNLOCKED: {ev.identity_id} ({ev.confidence:.3f})"
                elif isinstance(ev, VerificationRejected):
                    status_msg = "Face not recognized."
                elif isinstance(ev, VerificationTimedOut):
                    status_msg = "Verification timed out."

            draw_status(vis, session, msg=status_msg)
            cv2.imshow(cfg.window_main, vis)
            if (cv2.waitKey(1) & 0xFF) == ord("q"):
                break
    finally:
        if not session.is_terminal:
            engine.cancel()
        cap.release()
        cv2.destroyAllWindows()

    print(f"Result: {session.outcome.value}" + (f" - {status_msg}" if status_msg else ""))


if __name__ == "__main__":
    main()
