#!/usr/bin/env python3
"""
Unit tests for session configuration and marker geometry.
"""

import unittest
import numpy as np
import os
import sys
import tempfile

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from marker_pose_tracking.config import (
    BoardConfig, CameraConfig, SessionConfig, load_session_config
)
from marker_pose_tracking.errors import ConfigError, GeometryError
from marker_pose_tracking.marker import MarkerPointSet, check_cardinality, grid_points


class TestSessionConfig(unittest.TestCase):
    """Test loading and validation of the session configuration."""

    def test_defaults(self):
        config = SessionConfig()
        self.assertEqual(config.camera_indexes, [1, 2])
        self.assertEqual(config.board.size, (8, 5))
        self.assertEqual(config.board.num_corners, 40)
        self.assertAlmostEqual(config.board.square_size, 3.025)
        self.assertIsNone(config.tracking.max_reprojection_error)

    def test_load_yaml(self):
        content = (
            "cameras:\n"
            "  - name: left\n"
            "    index: 0\n"
            "    calibration_file: left.yaml\n"
            "  - name: right\n"
            "    index: 3\n"
            "    calibration_file: /abs/right.yaml\n"
            "board:\n"
            "  width: 6\n"
            "  height: 4\n"
            "  square_size: 2.5\n"
            "tracking:\n"
            "  fps: 60\n"
            "  max_reprojection_error: 1.5\n"
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'session.yaml')
            with open(path, 'w') as f:
                f.write(content)
            config = load_session_config(path)

            self.assertEqual(config.camera_names, ['left', 'right'])
            self.assertEqual(config.camera_indexes, [0, 3])
            self.assertEqual(config.cameras[0].calibration_file,
                             os.path.join(os.path.abspath(tmpdir), 'left.yaml'))
            self.assertEqual(config.cameras[1].calibration_file, '/abs/right.yaml')

        self.assertEqual(config.board, BoardConfig(width=6, height=4, square_size=2.5))
        self.assertEqual(config.tracking.fps, 60.0)
        self.assertEqual(config.tracking.max_reprojection_error, 1.5)
        self.assertFalse(config.tracking.refine_corners)

    def test_empty_file_gives_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'session.yaml')
            open(path, 'w').close()
            config = load_session_config(path)
        self.assertEqual(config.board.size, (8, 5))
        self.assertEqual(len(config.cameras), 2)

    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            load_session_config('/nonexistent/session.yaml')

    def test_malformed_yaml(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'session.yaml')
            with open(path, 'w') as f:
                f.write("board: {width: 8\n")
            with self.assertRaises(ConfigError):
                load_session_config(path)

    def test_camera_without_index(self):
        with self.assertRaises(ConfigError):
            SessionConfig.from_dict({'cameras': [{'name': 'a'}, {'name': 'b', 'index': 1}]})

    def test_single_camera_rejected(self):
        with self.assertRaises(ConfigError):
            SessionConfig(cameras=[CameraConfig('only', 0, 'cam.yaml')])

    def test_duplicate_names_rejected(self):
        with self.assertRaises(ConfigError):
            SessionConfig(cameras=[CameraConfig('a', 0, 'cam.yaml'),
                                   CameraConfig('a', 1, 'cam.yaml')])

    def test_bad_board_rejected(self):
        with self.assertRaises(ConfigError):
            SessionConfig(board=BoardConfig(width=1, height=5))
        with self.assertRaises(ConfigError):
            SessionConfig(board=BoardConfig(square_size=0.0))


class TestMarkerPointSet(unittest.TestCase):
    """Test the reference grid layout."""

    def test_grid_order(self):
        """Index z * width + x is the corner at (x * s, 0, z * s)."""
        marker = MarkerPointSet.from_board(BoardConfig(width=8, height=5, square_size=3.025))
        self.assertEqual(len(marker), 40)
        np.testing.assert_array_almost_equal(marker.points[0], [0.0, 0.0, 0.0])
        np.testing.assert_array_almost_equal(marker.points[1], [3.025, 0.0, 0.0])
        np.testing.assert_array_almost_equal(marker.points[8], [0.0, 0.0, 3.025])
        np.testing.assert_array_almost_equal(marker.points[3 * 8 + 5], [5 * 3.025, 0.0, 3 * 3.025])
        self.assertTrue(np.all(marker.points[:, 1] == 0))

    def test_centroid(self):
        marker = MarkerPointSet.from_board(BoardConfig(width=8, height=5, square_size=3.025))
        np.testing.assert_array_almost_equal(marker.centroid, [3.5 * 3.025, 0.0, 2.0 * 3.025])

    def test_check_cardinality(self):
        points = grid_points(3, 2, 1.0)[:, :2]
        check_cardinality([points, points.reshape(-1, 1, 2)], 6, GeometryError)
        with self.assertRaises(GeometryError):
            check_cardinality([points, points[:5]], 6, GeometryError)
        with self.assertRaises(ConfigError):
            check_cardinality([points], 7, ConfigError)


if __name__ == '__main__':
    unittest.main()
