"""
Session configuration for multi-camera marker tracking.

A SessionConfig is built once (usually from a YAML file) and passed to every
component of the pipeline. Nothing in the package keeps module-level state.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraConfig:
    """One camera of the rig."""
    name: str
    index: int                 # cv2.VideoCapture device index
    calibration_file: str      # Intrinsics file (cameraMatrix)


@dataclass(frozen=True)
class BoardConfig:
    """Chessboard marker geometry: inner corner grid and square size in world units."""
    width: int = 8
    height: int = 5
    square_size: float = 3.025

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @property
    def num_corners(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class TrackingOptions:
    fps: Optional[float] = None
    max_reprojection_error: Optional[float] = None
    rank_tolerance: float = 1e-9
    refine_corners: bool = False


def _default_cameras() -> List[CameraConfig]:
    return [
        CameraConfig(name='camera0', index=1, calibration_file='ps_eye.yaml'),
        CameraConfig(name='camera1', index=2, calibration_file='ps_eye.yaml'),
    ]


@dataclass(frozen=True)
class SessionConfig:
    """Everything a tracking session needs to know, fixed for its lifetime."""
    cameras: List[CameraConfig] = field(default_factory=_default_cameras)
    board: BoardConfig = field(default_factory=BoardConfig)
    tracking: TrackingOptions = field(default_factory=TrackingOptions)

    def __post_init__(self):
        if len(self.cameras) < 2:
            raise ConfigError(
                f"At least 2 cameras are required, got {len(self.cameras)}")

        names = [cam.name for cam in self.cameras]
        if len(set(names)) != len(names):
            raise ConfigError(f"Duplicate camera names in {names}")

        if self.board.width < 2 or self.board.height < 2:
            raise ConfigError(
                f"Board grid must be at least 2x2, got "
                f"{self.board.width}x{self.board.height}")

        if not self.board.square_size > 0:
            raise ConfigError(
                f"Board square size must be positive, got {self.board.square_size}")

    @property
    def camera_names(self) -> List[str]:
        return [cam.name for cam in self.cameras]

    @property
    def camera_indexes(self) -> List[int]:
        return [cam.index for cam in self.cameras]

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: str = '') -> 'SessionConfig':
        """
        Build a configuration from a parsed YAML mapping.

        Args:
            data: Mapping with optional 'cameras', 'board' and 'tracking' sections
            base_dir: Directory that relative calibration file paths are resolved against

        Returns:
            SessionConfig
        """
        if not isinstance(data, dict):
            raise ConfigError("Session configuration must be a mapping")

        try:
            cameras = None
            if 'cameras' in data:
                cameras = []
                for i, cam in enumerate(data['cameras']):
                    calib = cam.get('calibration_file', 'ps_eye.yaml')
                    if base_dir and not os.path.isabs(calib):
                        calib = os.path.join(base_dir, calib)
                    cameras.append(CameraConfig(
                        name=str(cam.get('name', f'camera{i}')),
                        index=int(cam['index']),
                        calibration_file=calib,
                    ))

            board_cfg = data.get('board') or {}
            board = BoardConfig(
                width=int(board_cfg.get('width', BoardConfig.width)),
                height=int(board_cfg.get('height', BoardConfig.height)),
                square_size=float(board_cfg.get('square_size', BoardConfig.square_size)),
            )

            tracking_cfg = data.get('tracking') or {}
            max_error = tracking_cfg.get('max_reprojection_error')
            fps = tracking_cfg.get('fps')
            tracking = TrackingOptions(
                fps=float(fps) if fps is not None else None,
                max_reprojection_error=float(max_error) if max_error is not None else None,
                rank_tolerance=float(tracking_cfg.get('rank_tolerance', TrackingOptions.rank_tolerance)),
                refine_corners=bool(tracking_cfg.get('refine_corners', False)),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid session configuration: {e}") from e

        if cameras is None:
            return cls(board=board, tracking=tracking)
        return cls(cameras=cameras, board=board, tracking=tracking)


def load_session_config(config_path: str) -> SessionConfig:
    """Load the session configuration from a YAML file."""
    if not os.path.isfile(config_path):
        raise ConfigError(f"Session config not found: {config_path}")

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Couldn't read {config_path}: {e}") from e

    config = SessionConfig.from_dict(data or {}, os.path.dirname(os.path.abspath(config_path)))
    logger.debug("Loaded session config from %s: %d cameras, board %dx%d",
                 config_path, len(config.cameras), config.board.width, config.board.height)
    return config
