"""Tests for 2-D head pose estimation and pose variation."""

import math

import pytest

from faceunlock.liveness.head_pose import HeadPoseTracker, estimate_head_pose


class TestEstimateHeadPose:
    def test_frontal(self, make_obs):
        pose = estimate_head_pose(make_obs().landmarks)
        assert pose.yaw == pytest.approx(0.0)
        # mouth 40 below the eye line, nose 20 below
        assert pose.pitch == pytest.approx(math.degrees(math.atan2(40, 20)))
        # eyes level; right eye is image-left of the left eye
        assert abs(pose.roll) == pytest.approx(180.0)

    def test_yaw_from_nose_offset(self, make_obs):
        pose = estimate_head_pose(make_obs(nose_dx=40.0).landmarks)
        assert pose.yaw == pytest.approx(math.degrees(math.atan(0.4)))
        pose = estimate_head_pose(make_obs(nose_dx=-40.0).landmarks)
        assert pose.yaw == pytest.approx(-math.degrees(math.atan(0.4)))

    def test_reference_depth(self, make_obs):
        pose = estimate_head_pose(make_obs(nose_dx=40.0).landmarks, reference_depth=40.0)
        assert pose.yaw == pytest.approx(45.0)

    def test_roll_from_tilted_eyes(self, make_obs):
        k = make_obs().landmarks.copy()
        k[0, 1] += 10.0
        pose = estimate_head_pose(k)
        assert pose.roll == pytest.approx(math.degrees(math.atan2(10.0, -40.0)))


class TestHeadPoseTracker:
    def test_history_capped(self, make_obs):
        tracker = HeadPoseTracker()
        for i in range(31):
            tracker.update(make_obs(nose_dx=float(i)).landmarks)
        assert len(tracker.history) == 30
        # oldest (dx=0) evicted first
        assert tracker.history[0].yaw == pytest.approx(math.degrees(math.atan2(1.0, 100.0)))

    def test_update_returns_pose(self, make_obs):
        tracker = HeadPoseTracker()
        pose = tracker.update(make_obs(nose_dx=40.0).landmarks)
        assert pose is tracker.history[-1]
        assert tracker.poses() == [pose]

    def test_variation_needs_ten_samples(self, make_obs):
        tracker = HeadPoseTracker()
        for i in range(9):
            tracker.update(make_obs(nose_dx=40.0 if i % 2 else -40.0).landmarks)
        assert tracker.variation_score() == 0.0

    def test_variation_zero_for_still_face(self, make_obs):
        tracker = HeadPoseTracker()
        for _ in range(30):
            tracker.update(make_obs().landmarks)
        assert tracker.variation_score() == pytest.approx(0.0)

    def test_variation_from_yaw(self, make_obs):
        tracker = HeadPoseTracker()
        for i in range(30):
            tracker.update(make_obs(nose_dx=40.0 if i % 2 else -40.0).landmarks)
        # population std of +-a is a
        assert tracker.variation_score() == pytest.approx(math.degrees(math.atan(0.4)) / 100.0)

    def test_variation_capped(self, make_obs):
        tracker = HeadPoseTracker(variation_scale=10.0)
        for i in range(30):
            tracker.update(make_obs(nose_dx=40.0 if i % 2 else -40.0).landmarks)
        assert tracker.variation_score() == 1.0

    def test_reset(self, make_obs):
        tracker = HeadPoseTracker()
        tracker.update(make_obs().landmarks)
        tracker.reset()
        assert len(tracker.history) == 0
