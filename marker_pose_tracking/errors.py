"""
Exception types raised by the marker pose tracking pipeline.

Bootstrap-phase errors (ConfigError, CalibrationError, CameraError) are fatal
to a tracking session. Per-frame errors (GeometryError, AlignmentError) only
cause the current frame to be skipped.
"""


class TrackingError(Exception):
    """Base class for all pose tracking errors."""


class ConfigError(TrackingError):
    """Missing, unreadable or malformed configuration or calibration data."""


class CalibrationError(TrackingError):
    """Extrinsic bootstrap failed (PnP failure, bad or mismatched correspondences)."""


class GeometryError(TrackingError):
    """Triangulation input is degenerate or under-determined."""


class AlignmentError(TrackingError):
    """Rigid fit input is degenerate (too few, coincident or collinear points)."""


class CameraError(TrackingError):
    """A camera could not be opened or failed to deliver a frame."""
