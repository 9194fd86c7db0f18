#!/usr/bin/env python3
"""
Track a chessboard marker with a static multi-camera rig.

The camera feeds are shown first so the cameras can be aimed at the marker:
    n / space  start tracking (the marker's current position becomes the world frame)
    j / k      next / previous camera
    q          quit

Usage:
    python3 track_marker.py --config /path/to/session.yaml [--output poses.yaml]
"""

import argparse
import logging
import os
import sys
import threading

import cv2

# Add package to path for standalone execution
try:
    from marker_pose_tracking.capture import CameraRig
    from marker_pose_tracking.config import load_session_config
    from marker_pose_tracking.errors import TrackingError
    from marker_pose_tracking.session import TrackingSession
    from marker_pose_tracking.sinks import CompositePoseSink, LoggingPoseSink, YamlPoseRecorder
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from marker_pose_tracking.capture import CameraRig
    from marker_pose_tracking.config import load_session_config
    from marker_pose_tracking.errors import TrackingError
    from marker_pose_tracking.session import TrackingSession
    from marker_pose_tracking.sinks import CompositePoseSink, LoggingPoseSink, YamlPoseRecorder

WINDOW_NAME = 'Marker tracking'


def inspect_feeds(session: TrackingSession) -> bool:
    """
    Show the camera feeds until the user starts tracking.

    Returns:
        False if the user quit
    """
    session.begin_inspection()
    camera_count = len(session.config.cameras)
    current = 0

    while True:
        frames = session.capture_frames()
        result = session.detector.detect(frames[current])
        vis = session.detector.draw(frames[current], result)
        cv2.putText(vis, f"{session.config.cameras[current].name} ({result.num_corners} corners)",
                    (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 1, (0, 255, 0), 2)
        cv2.imshow(WINDOW_NAME, vis)

        key = cv2.waitKey(1) & 0xFF
        if key in (ord('n'), ord(' ')):
            return True
        if key == ord('q'):
            return False
        if key == ord('j'):
            current = (current + 1) % camera_count
        elif key == ord('k'):
            current = (current - 1 + camera_count) % camera_count


class KeyboardStop:
    """Stop signal set by 'q' in the preview window or by an external event."""

    def __init__(self, event: threading.Event, show_preview: bool):
        self.event = event
        self.show_preview = show_preview

    def is_set(self) -> bool:
        if self.show_preview and (cv2.waitKey(1) & 0xFF) == ord('q'):
            self.event.set()
        return self.event.is_set()


def main():
    parser = argparse.ArgumentParser(
        description='Track a chessboard marker with multiple calibrated cameras'
    )

    parser.add_argument('--config', '-c', type=str, required=True,
                       help='Path to session.yaml config file')
    parser.add_argument('--output', '-o', type=str, default=None,
                       help='Save camera poses and marker trajectory to this YAML file')
    parser.add_argument('--no-inspect', action='store_true',
                       help='Skip the camera preview and bootstrap immediately')
    parser.add_argument('--max-frames', type=int, default=None,
                       help='Stop after this many frames')
    parser.add_argument('--verbose', '-v', action='store_true',
                       help='Verbose output')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    try:
        config = load_session_config(args.config)
    except TrackingError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    print(f"Cameras: {', '.join(f'{c.name}@{c.index}' for c in config.cameras)}")
    print(f"Board: {config.board.width}x{config.board.height}, "
          f"square size {config.board.square_size}")

    sinks = [LoggingPoseSink()]
    if args.output:
        sinks.append(YamlPoseRecorder(args.output))
    sink = CompositePoseSink(sinks)

    try:
        rig = CameraRig(config.camera_indexes, fps=config.tracking.fps)
    except TrackingError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    with rig:
        session = TrackingSession(config, rig, sink=sink)

        if not args.no_inspect and not inspect_feeds(session):
            cv2.destroyAllWindows()
            return

        try:
            calibration = session.bootstrap()
        except TrackingError as e:
            print(f"ERROR: {e}")
            cv2.destroyAllWindows()
            sys.exit(1)

        print("\n" + "="*60)
        print("CAMERA POSES (world = marker's initial position)")
        print("="*60)
        for cam, ext in zip(config.cameras, calibration.extrinsics):
            p = ext.position
            print(f"  {cam.name}: ({p[0]:.3f}, {p[1]:.3f}, {p[2]:.3f}), "
                  f"reprojection error {ext.reprojection_error:.4f}px")

        print("\nTracking... press 'q' in the preview window or Ctrl+C to stop")

        stop_event = threading.Event()
        try:
            session.run(KeyboardStop(stop_event, not args.no_inspect),
                        max_frames=args.max_frames)
        except KeyboardInterrupt:
            session.stop()
        except TrackingError as e:
            print(f"ERROR: {e}")
            sys.exit(1)
        finally:
            cv2.destroyAllWindows()
            sink.close()

    print(f"\n✓ Tracked {session.frames_tracked} frames "
          f"({session.frames_skipped} skipped)")
    if args.output:
        print(f"  Poses saved to: {args.output}")


if __name__ == '__main__':
    main()
