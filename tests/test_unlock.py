"""Tests for the verification session: liveness gate, matching, reject and timeout."""

import numpy as np
import pytest

from faceunlock.liveness.types import LivenessChecks
from faceunlock.recognize.errors import NoTemplatesForIdentity
from faceunlock.recognize.features import extract_from_observation
from faceunlock.recognize.types import BoundingBox, Observation, Template
from faceunlock.unlock import (
    LivenessProgress,
    UnlockConfig,
    VerificationAccepted,
    VerificationCancelled,
    VerificationOutcome,
    VerificationRejected,
    VerificationSession,
    VerificationTimedOut,
)


ALICE = np.array([1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0], dtype=np.float64)


# ── Mocks ──


class StubScorer:
    """Liveness scorer with a fixed score."""

    def __init__(self, value: float):
        self.value = value
        self.observed = 0

    def observe(self, landmarks, ear):
        self.observed += 1
        return None

    def score(self) -> float:
        return self.value

    def checks(self) -> LivenessChecks:
        return LivenessChecks(blink_detected=False, head_movement=False, face_stability=self.observed)


def fixed_features(vector):
    def extract(obs):
        extract_from_observation(obs)  # still rejects invalid observations
        return vector
    return extract


def alice_templates():
    return [Template("alice", step, ALICE.copy()) for step in (1, 2, 3, 4) for _ in range(10)]


def templates_from(observations, identity_id="alice"):
    return [Template(identity_id, 1, extract_from_observation(o)) for o in observations]


def run(session, observations, clock=None, dt=0.0):
    events = []
    for obs in observations:
        events.extend(session.process_frame(obs))
        if clock is not None:
            clock.advance(dt)
    return events


def terminal(events):
    return [e for e in events if not isinstance(e, LivenessProgress)]


# ── Tests ──


class TestAliceScenario:
    def test_identical_vector_after_gate_accepted(self, clock, make_obs):
        session = VerificationSession(
            alice_templates(), identity_id="alice", clock=clock,
            scorer=StubScorer(0.9), feature_extractor=fixed_features(ALICE),
        )
        events = session.process_frame(make_obs())
        assert isinstance(events[0], LivenessProgress)
        assert isinstance(events[-1], VerificationAccepted)
        assert events[-1].identity_id == "alice"
        assert events[-1].confidence == pytest.approx(1.0)
        assert session.outcome == VerificationOutcome.ACCEPTED
        assert session.last_match.templates_compared == 40

    def test_gate_blocks_matching(self, clock, make_obs):
        session = VerificationSession(
            alice_templates(), clock=clock,
            scorer=StubScorer(0.7), feature_extractor=fixed_features(ALICE),
        )
        events = run(session, [make_obs() for _ in range(100)])
        assert terminal(events) == []
        assert session.last_match is None
        assert not session.is_terminal


class TestLiveSubject:
    def test_accepted_once_live(self, clock, live_frames):
        frames = live_frames(80)
        session = VerificationSession(templates_from(frames[:2]), identity_id="alice", clock=clock)
        events = run(session, frames, clock, 0.2)

        done = terminal(events)
        assert len(done) == 1
        assert isinstance(done[0], VerificationAccepted)
        assert done[0].confidence == pytest.approx(1.0)
        # 3 blinks, yaw swing and 54 stable frames clear 0.7
        assert session.face_stability == 54
        assert session.liveness_score > 0.7

    def test_rejected_after_sustained_failed_match(self, clock, live_frames):
        impostor = [Template("mallory", 1, np.full(12, -1.0))]
        session = VerificationSession(impostor, clock=clock)
        events = run(session, live_frames(80), clock, 0.2)

        done = terminal(events)
        assert len(done) == 1
        assert isinstance(done[0], VerificationRejected)
        assert done[0].identity_id == "mallory"
        assert done[0].confidence < 0.75
        assert session.face_stability > 50

    def test_no_reject_before_stability_cutoff(self, clock, make_obs):
        impostor = [Template("mallory", 1, np.full(12, -1.0))]
        session = VerificationSession(impostor, clock=clock, scorer=StubScorer(0.9))
        events = run(session, [make_obs() for _ in range(50)])
        assert terminal(events) == []
        assert session.last_match is not None
        events = session.process_frame(make_obs())
        assert isinstance(events[-1], VerificationRejected)


class TestTimeout:
    def test_still_stream_times_out(self, clock, make_obs):
        session = VerificationSession(alice_templates(), identity_id="alice", clock=clock)
        events = []
        for i in range(200):
            clock.t = i * 0.2
            events.extend(session.process_frame(make_obs()))
            if session.is_terminal:
                break

        done = terminal(events)
        assert len(done) == 1
        assert isinstance(done[0], VerificationTimedOut)
        assert done[0].elapsed_s >= 15.0
        assert session.liveness_score <= 0.7
        # the stability cutoff alone never rejects without a gate pass
        assert session.face_stability > 50

    def test_tick_times_out_without_frames(self, clock):
        session = VerificationSession(alice_templates(), clock=clock)
        clock.t = 14.9
        assert session.tick() == []
        clock.t = 15.0
        events = session.tick()
        assert len(events) == 1
        assert isinstance(events[0], VerificationTimedOut)
        assert session.outcome == VerificationOutcome.TIMED_OUT

    def test_configurable_budget(self, clock):
        session = VerificationSession(alice_templates(), config=UnlockConfig(timeout_s=3.0), clock=clock)
        clock.advance(3.0)
        assert isinstance(session.tick()[0], VerificationTimedOut)


class TestFrameHandling:
    def test_no_face_decays_stability(self, clock, make_obs):
        session = VerificationSession(alice_templates(), clock=clock, scorer=StubScorer(0.0))
        run(session, [make_obs() for _ in range(3)])
        assert session.face_stability == 3
        run(session, [Observation()])
        assert session.face_stability == 1
        run(session, [Observation()])
        assert session.face_stability == 0

    def test_invalid_face_skipped(self, clock, make_obs):
        scorer = StubScorer(0.0)
        session = VerificationSession(alice_templates(), clock=clock, scorer=scorer)
        run(session, [make_obs(), make_obs()])
        bad = Observation(landmarks=np.zeros((6, 2)), bbox=BoundingBox.from_xyxy(5, 5, 5, 50))
        assert session.process_frame(bad) == []
        assert session.face_stability == 2
        assert scorer.observed == 2

    def test_progress_reports_score(self, clock, make_obs):
        session = VerificationSession(alice_templates(), clock=clock, scorer=StubScorer(0.42))
        events = session.process_frame(make_obs())
        assert events == [LivenessProgress(score=0.42, face_stability=1)]


class TestTerminalStates:
    def test_exactly_one_terminal_event(self, clock, make_obs):
        session = VerificationSession(
            alice_templates(), clock=clock,
            scorer=StubScorer(0.9), feature_extractor=fixed_features(ALICE),
        )
        events = run(session, [make_obs() for _ in range(5)])
        clock.advance(30.0)
        events += session.tick()
        events += session.cancel()
        assert len(terminal(events)) == 1

    def test_cancel_stops_timeout(self, clock, make_obs):
        session = VerificationSession(alice_templates(), clock=clock)
        events = session.cancel()
        assert events == [VerificationCancelled(frames_processed=0)]
        clock.advance(60.0)
        assert session.tick() == []
        assert session.process_frame(make_obs()) == []
        assert session.outcome == VerificationOutcome.CANCELLED

    def test_no_templates(self, clock):
        with pytest.raises(NoTemplatesForIdentity):
            VerificationSession([], identity_id="bob", clock=clock)
