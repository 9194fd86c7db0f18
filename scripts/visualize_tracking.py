#!/usr/bin/env python3
"""
Visualize a recorded tracking session.

Plots the camera poses found during bootstrap and the marker trajectory
saved by track_marker.py --output.

Usage:
    python3 visualize_tracking.py --poses /path/to/poses.yaml
"""

import argparse
import os
import sys

import numpy as np

try:
    import matplotlib.pyplot as plt
    from mpl_toolkits.mplot3d import Axes3D  # noqa: F401
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False

# Add package to path for standalone execution
try:
    from marker_pose_tracking.errors import TrackingError
    from marker_pose_tracking.utils import load_poses_yaml
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from marker_pose_tracking.errors import TrackingError
    from marker_pose_tracking.utils import load_poses_yaml


def plot_frame(ax, T, name, scale=5.0, color='b'):
    """Plot a coordinate frame given as a 4x4 pose."""
    origin = T[:3, 3]

    # Axes (columns of rotation matrix)
    R = T[:3, :3]
    ax.quiver(*origin, *(R[:, 0] * scale), color='r', arrow_length_ratio=0.1)
    ax.quiver(*origin, *(R[:, 1] * scale), color='g', arrow_length_ratio=0.1)
    ax.quiver(*origin, *(R[:, 2] * scale), color='b', arrow_length_ratio=0.1)

    ax.scatter(*origin, s=50, c=[color], marker='o')
    if name:
        ax.text(origin[0], origin[1], origin[2] + scale * 0.5, name, fontsize=8)


def visualize_session(camera_poses: dict, trajectory: list, axis_scale: float = 5.0):
    """Create a 3D plot of the cameras and the marker path."""
    if not HAS_MATPLOTLIB:
        print("ERROR: matplotlib is required for visualization")
        print("Install with: pip install matplotlib")
        return

    fig = plt.figure(figsize=(12, 8))
    ax = fig.add_subplot(111, projection='3d')

    colors = plt.cm.tab10(np.linspace(0, 1, max(len(camera_poses), 1) + 1))

    # World frame = marker's initial position
    plot_frame(ax, np.eye(4), 'world', scale=axis_scale, color=colors[0])

    for idx, (cam_name, T) in enumerate(camera_poses.items()):
        plot_frame(ax, T, cam_name, scale=axis_scale, color=colors[idx + 1])

    if trajectory:
        path = np.array([T[:3, 3] for T in trajectory])
        ax.plot(path[:, 0], path[:, 1], path[:, 2], 'k-', linewidth=1)
        plot_frame(ax, trajectory[-1], 'marker', scale=axis_scale, color='k')

    ax.set_xlabel('X')
    ax.set_ylabel('Y')
    ax.set_zlabel('Z')
    ax.set_title('Marker Tracking Session')

    # Equal aspect ratio around everything plotted
    points = [T[:3, 3] for T in camera_poses.values()] + [T[:3, 3] for T in trajectory]
    points.append(np.zeros(3))
    points = np.array(points)
    center = points.mean(axis=0)
    max_range = max(np.abs(points - center).max(), axis_scale) * 1.2
    ax.set_xlim([center[0] - max_range, center[0] + max_range])
    ax.set_ylim([center[1] - max_range, center[1] + max_range])
    ax.set_zlim([center[2] - max_range, center[2] + max_range])

    plt.tight_layout()
    plt.show()


def print_session_summary(camera_poses: dict, trajectory: list):
    """Print a summary of the recorded poses."""
    print("\n" + "="*70)
    print("TRACKING SESSION SUMMARY")
    print("="*70)

    print(f"{'Camera':<25} {'Distance':<12} {'Position (x, y, z)'}")
    print("-"*70)

    for cam_name, T in camera_poses.items():
        x, y, z = T[:3, 3]
        print(f"{cam_name:<25} {np.linalg.norm(T[:3, 3]):<12.4f} ({x:.4f}, {y:.4f}, {z:.4f})")

    print()
    print(f"Marker poses recorded: {len(trajectory)}")
    if trajectory:
        path = np.array([T[:3, 3] for T in trajectory])
        travelled = np.sum(np.linalg.norm(np.diff(path, axis=0), axis=1))
        print(f"Path length: {travelled:.4f}")
    print()


def main():
    parser = argparse.ArgumentParser(
        description='Visualize a recorded marker tracking session'
    )

    parser.add_argument('--poses', '-p', type=str, required=True,
                       help='Path to poses YAML file written by track_marker.py')
    parser.add_argument('--axis-scale', type=float, default=5.0,
                       help='Length of drawn axes in world units (default: 5.0)')
    parser.add_argument('--no-plot', action='store_true',
                       help='Skip 3D visualization')

    args = parser.parse_args()

    if not os.path.exists(args.poses):
        print(f"ERROR: File not found: {args.poses}")
        sys.exit(1)

    try:
        camera_poses, trajectory = load_poses_yaml(args.poses)
    except TrackingError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    if not camera_poses:
        print("ERROR: No camera poses found in file")
        sys.exit(1)

    print_session_summary(camera_poses, trajectory)

    if not args.no_plot:
        visualize_session(camera_poses, trajectory, args.axis_scale)


if __name__ == '__main__':
    main()
