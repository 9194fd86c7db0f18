#!/usr/bin/env python3
"""
Tests for the tracking session state machine, using a synthetic rig.
"""

import unittest
import numpy as np
import os
import sys

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from scipy.spatial.transform import Rotation

from marker_pose_tracking.config import CameraConfig, SessionConfig
from marker_pose_tracking.errors import CalibrationError, CameraError, ConfigError, TrackingError
from marker_pose_tracking.marker import MarkerPointSet
from marker_pose_tracking.session import SessionState, TrackingSession
from marker_pose_tracking.sinks import PoseSink

from synthetic_rig import make_rig, observe


class FakeRig:
    """Camera source whose frames are just sequence numbers."""

    def __init__(self, num_cameras):
        self.num_cameras = num_cameras
        self.frame_number = -1
        self.calls = []

    def grab_all(self):
        self.calls.append('grab')
        self.frame_number += 1

    def retrieve_all(self):
        self.calls.append('retrieve')
        return [self.frame_number] * self.num_cameras


class ScriptedDetector:
    """Returns pre-computed correspondences for each frame number (None = not found)."""

    def __init__(self, script):
        self.script = script

    def find_all(self, frames):
        return self.script[frames[0]]


class RecordingSink(PoseSink):

    def __init__(self):
        self.camera_poses = None
        self.poses = []

    def on_bootstrap(self, camera_poses, intrinsics):
        self.camera_poses = camera_poses

    def on_pose(self, transform, points):
        self.poses.append((transform, points))


class CountingStop:
    """Stop signal that fires after a number of checks."""

    def __init__(self, checks):
        self.remaining = checks

    def is_set(self):
        self.remaining -= 1
        return self.remaining < 0


class TestTrackingSession(unittest.TestCase):

    def setUp(self):
        self.config = SessionConfig()
        self.marker = MarkerPointSet.from_board(self.config.board)
        self.intr, _, self.Ps = make_rig(self.marker.centroid, num_cameras=2)

        R = Rotation.from_euler('xyz', [5, 20, -10], degrees=True).as_matrix()
        self.moved_R = R
        self.moved = (self.marker.points - self.marker.centroid) @ R.T + self.marker.centroid \
            + np.array([2.0, -1.0, 3.0])

        degenerate = [np.tile(obs[0], (len(self.marker), 1))
                      for obs in observe(self.Ps, self.marker.points)]

        self.script = [
            observe(self.Ps, self.marker.points),  # 0: bootstrap
            observe(self.Ps, self.marker.points),  # 1: reference position
            observe(self.Ps, self.moved),          # 2: moved
            None,                                  # 3: marker not found
            degenerate,                            # 4: every corner at one pixel
            observe(self.Ps, self.marker.points),  # 5
        ]
        self.rig = FakeRig(2)
        self.sink = RecordingSink()

    def make_session(self, script=None, intrinsics=True):
        return TrackingSession(
            self.config, self.rig,
            detector=ScriptedDetector(script or self.script),
            sink=self.sink,
            intrinsics=self.intr if intrinsics else None)

    def test_full_lifecycle(self):
        session = self.make_session()
        self.assertEqual(session.state, SessionState.IDLE)

        session.begin_inspection()
        self.assertEqual(session.state, SessionState.INSPECTING)

        session.bootstrap()
        self.assertEqual(session.state, SessionState.TRACKING)
        self.assertEqual(list(self.sink.camera_poses), ['camera0', 'camera1'])

        result = session.step()
        self.assertTrue(result.tracked)
        np.testing.assert_allclose(result.transform.rotation, np.eye(3), atol=1e-5)
        np.testing.assert_allclose(result.transform.translation, self.marker.centroid, atol=1e-3)
        np.testing.assert_allclose(result.points, self.marker.points, atol=1e-3)

        result = session.step()
        self.assertTrue(result.tracked)
        np.testing.assert_allclose(result.transform.rotation, self.moved_R, atol=1e-5)
        np.testing.assert_allclose(result.transform.translation, self.moved.mean(axis=0), atol=1e-3)
        moved_pose = result.transform

        session.stop()
        self.assertEqual(session.state, SessionState.TERMINATED)
        self.assertIs(session.last_pose, moved_pose)

    def test_grab_before_retrieve(self):
        session = self.make_session()
        session.bootstrap()
        session.step()
        self.assertEqual(self.rig.calls, ['grab', 'retrieve', 'grab', 'retrieve'])

    def test_skipped_frames_keep_last_pose(self):
        session = self.make_session()
        session.bootstrap()
        session.step()
        moved = session.step().transform

        missing = session.step()
        self.assertFalse(missing.tracked)
        self.assertIs(missing.transform, moved)
        self.assertIs(session.last_pose, moved)

        degenerate = session.step()
        self.assertFalse(degenerate.tracked)
        self.assertIs(session.last_pose, moved)

        self.assertTrue(session.step().tracked)
        self.assertEqual(session.frames_tracked, 3)
        self.assertEqual(session.frames_skipped, 2)
        self.assertEqual(len(self.sink.poses), 3)

    def test_cardinality_mismatch_skips_frame(self):
        script = list(self.script)
        obs = observe(self.Ps, self.marker.points)
        script[1] = [obs[0], obs[1][:-1]]
        session = self.make_session(script)
        session.bootstrap()

        result = session.step()
        self.assertFalse(result.tracked)
        self.assertIsNone(session.last_pose)
        self.assertEqual(self.sink.poses, [])

    def test_run_until_stopped(self):
        session = self.make_session()
        session.bootstrap()
        session.run(CountingStop(len(self.script) - 1))
        self.assertEqual(session.state, SessionState.TERMINATED)
        self.assertEqual(session.frames_tracked + session.frames_skipped, len(self.script) - 1)

    def test_run_max_frames(self):
        session = self.make_session()
        session.bootstrap()
        session.run(CountingStop(100), max_frames=2)
        self.assertEqual(session.frames_tracked, 2)
        self.assertEqual(session.state, SessionState.TERMINATED)

    def test_bootstrap_marker_not_found_is_fatal(self):
        script = [None] + self.script[1:]
        session = self.make_session(script)
        with self.assertRaises(CalibrationError):
            session.bootstrap()
        self.assertEqual(session.state, SessionState.TERMINATED)
        with self.assertRaises(TrackingError):
            session.step()

    def test_bootstrap_missing_intrinsics_is_fatal(self):
        config = SessionConfig(cameras=[
            CameraConfig('a', 0, '/nonexistent/a.yaml'),
            CameraConfig('b', 1, '/nonexistent/b.yaml'),
        ])
        session = TrackingSession(config, self.rig, detector=ScriptedDetector(self.script))
        with self.assertRaises(ConfigError):
            session.bootstrap()
        self.assertEqual(session.state, SessionState.TERMINATED)

    def test_bootstrap_too_few_cameras_in_frame(self):
        script = [[observe(self.Ps, self.marker.points)[0][:3]] * 2] + self.script[1:]
        session = self.make_session(script)
        with self.assertRaises(CalibrationError):
            session.bootstrap()
        self.assertEqual(session.state, SessionState.TERMINATED)

    def test_bootstrap_camera_failure_is_fatal(self):
        class DeadRig(FakeRig):
            def grab_all(self):
                raise CameraError("Camera 1 failed to grab a frame")

        session = TrackingSession(self.config, DeadRig(2),
                                  detector=ScriptedDetector(self.script),
                                  intrinsics=self.intr)
        with self.assertRaises(CameraError):
            session.bootstrap()
        self.assertEqual(session.state, SessionState.TERMINATED)

    def test_bootstrap_unexpected_error_is_fatal(self):
        """A malformed detector output still ends the session."""
        script = [[np.arange(5.0), np.arange(5.0)]] + self.script[1:]
        session = self.make_session(script)
        with self.assertRaises(ValueError):
            session.bootstrap()
        self.assertEqual(session.state, SessionState.TERMINATED)

    def test_tracked_frame_reports_reprojection_error(self):
        session = self.make_session()
        session.bootstrap()
        result = session.step()
        self.assertTrue(result.tracked)
        self.assertLess(result.reprojection_error, 1e-2)

        session.step()
        skipped = session.step()
        self.assertFalse(skipped.tracked)
        self.assertIsNone(skipped.reprojection_error)

    def test_step_before_bootstrap(self):
        session = self.make_session()
        with self.assertRaises(TrackingError):
            session.step()

    def test_bootstrap_twice(self):
        session = self.make_session()
        session.bootstrap()
        with self.assertRaises(TrackingError):
            session.bootstrap()

    def test_stop_from_any_state(self):
        session = self.make_session()
        session.stop()
        self.assertEqual(session.state, SessionState.TERMINATED)


if __name__ == '__main__':
    unittest.main()
