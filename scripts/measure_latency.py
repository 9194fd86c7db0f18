#!/usr/bin/env python3
"""
Measure the delay between the screen changing and the camera seeing it.

Point the camera at the "Display" window. Press space to flash it white;
the time until most of the camera image turns bright is printed along with
the number of frames captured meanwhile. Press q to quit.

Usage:
    python3 measure_latency.py --camera 0 [--fps 60]
"""

import argparse
import os
import sys
import time

import cv2
import numpy as np

# Add package to path for standalone execution
try:
    from marker_pose_tracking.capture import CameraRig, is_lit
    from marker_pose_tracking.errors import TrackingError
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from marker_pose_tracking.capture import CameraRig, is_lit
    from marker_pose_tracking.errors import TrackingError

PATCH_SIZE = 512


def main():
    parser = argparse.ArgumentParser(description='Measure camera latency')
    parser.add_argument('--camera', type=int, default=0,
                        help='Camera index (default: 0)')
    parser.add_argument('--fps', type=float, default=60,
                        help='Requested frame rate (default: 60)')
    parser.add_argument('--threshold', type=int, default=85,
                        help='Blue channel threshold for a lit pixel')
    parser.add_argument('--fraction', type=float, default=0.3,
                        help='Share of lit pixels that ends a measurement')

    args = parser.parse_args()

    # Red idle image keeps the blue channel dark
    image_idle = np.zeros((PATCH_SIZE, PATCH_SIZE, 3), dtype=np.uint8)
    image_idle[:, :, 2] = 255
    image_flash = np.full((PATCH_SIZE, PATCH_SIZE, 3), 255, dtype=np.uint8)

    try:
        rig = CameraRig([args.camera], fps=args.fps)
    except TrackingError as e:
        print(f"error: {e}")
        sys.exit(1)

    print("Press space to measure, 'q' to quit")

    measuring = False
    begin_time = time.monotonic()
    frames = 0

    with rig:
        cv2.imshow('Display', image_idle)
        try:
            while True:
                frame = rig.capture()[0]
                frames += 1

                if measuring and is_lit(frame, args.threshold, args.fraction):
                    elapsed_ms = (time.monotonic() - begin_time) * 1000.0
                    measuring = False
                    cv2.imshow('Display', image_idle)
                    print(f"{elapsed_ms:.0f}ms {frames} frames")

                cv2.imshow('Video feed', frame)
                key = cv2.waitKey(1) & 0xFF

                if not measuring and key == ord(' '):
                    cv2.imshow('Display', image_flash)
                    begin_time = time.monotonic()
                    measuring = True
                    frames = 0
                elif key == ord('q'):
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
