#!/usr/bin/env python3
"""
Measure the frame rate of one camera, or of the whole rig with synchronized capture.

Usage:
    python3 measure_framerate.py --camera 0 [--fps 120]
    python3 measure_framerate.py --config /path/to/session.yaml
"""

import argparse
import os
import sys

import cv2

# Add package to path for standalone execution
try:
    from marker_pose_tracking.capture import CameraRig, FrameRateMeter
    from marker_pose_tracking.config import load_session_config
    from marker_pose_tracking.errors import TrackingError
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from marker_pose_tracking.capture import CameraRig, FrameRateMeter
    from marker_pose_tracking.config import load_session_config
    from marker_pose_tracking.errors import TrackingError


def main():
    parser = argparse.ArgumentParser(description='Measure camera frame rate')
    group = parser.add_mutually_exclusive_group()
    group.add_argument('--camera', type=int, default=0,
                       help='Camera index (default: 0)')
    group.add_argument('--config', type=str, default=None,
                       help='Measure all cameras of a session config together')
    parser.add_argument('--fps', type=float, default=None,
                        help='Requested frame rate')
    parser.add_argument('--no-display', action='store_true',
                        help='Don\'t show the video feed (stop with Ctrl+C)')

    args = parser.parse_args()

    try:
        if args.config:
            config = load_session_config(args.config)
            indexes = config.camera_indexes
            fps = args.fps if args.fps is not None else config.tracking.fps
        else:
            indexes = [args.camera]
            fps = args.fps
        rig = CameraRig(indexes, fps=fps)
    except TrackingError as e:
        print(f"error: {e}")
        sys.exit(1)

    meter = FrameRateMeter()
    print(f"Measuring frame rate of camera(s) {indexes}, press 'q' to quit")

    with rig:
        try:
            while True:
                frames = rig.capture()

                rate = meter.tick()
                if rate is not None:
                    print(f"{rate:.1f}")

                if not args.no_display:
                    cv2.imshow('Video feed', frames[0])
                    if (cv2.waitKey(1) & 0xFF) == ord('q'):
                        break
        except KeyboardInterrupt:
            pass
        except TrackingError as e:
            print(f"error: {e}")
            sys.exit(1)
        finally:
            cv2.destroyAllWindows()


if __name__ == '__main__':
    main()
