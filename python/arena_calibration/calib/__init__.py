"""Calibration records."""

from .calibration_config import CameraParams, CalibrationOutput, CORNER_KEYS

__all__ = ['CameraParams', 'CalibrationOutput', 'CORNER_KEYS']
