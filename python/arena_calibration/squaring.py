"""
Four-corner perspective correction of the arena panorama.
"""

from dataclasses import dataclass
import logging
from typing import Sequence, Tuple

import cv2
import numpy as np

from .errors import AmbiguousCornersError, InputValidationError

logger = logging.getLogger(__name__)

CORNER_NAMES = ('top-left', 'top-right', 'bottom-left', 'bottom-right')


@dataclass
class SquaredResult:
    image: np.ndarray  # output_size x output_size corrected arena
    corners: np.ndarray  # 4x2 float32, TL, TR, BL, BR in panorama pixels
    transform: np.ndarray  # 3x3 perspective matrix panorama -> squared image


def classify_corners(points, size: Tuple[int, int]) -> np.ndarray:
    """Order four points as TL, TR, BL, BR by the image midlines.

    Args:
        points: Four (x, y) points
        size: (w, h) of the image the points live in

    Returns:
        4x2 float32 array in TL, TR, BL, BR order

    Raises:
        AmbiguousCornersError: Two points fall in the same quadrant
    """
    pts = np.asarray(points, dtype=np.float32).reshape(-1, 2)
    if len(pts) != 4:
        raise InputValidationError("4 points needed to square - select them on the stitched image in the previous tab")

    w, h = size
    ordered = np.zeros((4, 2), dtype=np.float32)
    taken = [False] * 4
    for x, y in pts:
        role = (0 if y < h / 2.0 else 2) + (0 if x < w / 2.0 else 1)
        if taken[role]:
            raise AmbiguousCornersError(
                f"Two corners selected in the {CORNER_NAMES[role]} quadrant; "
                "select one corner per quadrant")
        taken[role] = True
        ordered[role] = (x, y)
    return ordered


def scale_points(points, from_size: Tuple[int, int], to_size: Tuple[int, int]) -> np.ndarray:
    """Rescale (x, y) points between two image sizes given as (w, h)."""
    pts = np.asarray(points, dtype=np.float32).reshape(-1, 2)
    factor = np.float32([to_size[0] / float(from_size[0]), to_size[1] / float(from_size[1])])
    return pts * factor


class Squarer:
    """Map the four picked arena corners onto the corners of a square image."""

    def __init__(self, output_size: int = 2000):
        self.output_size = int(output_size)

    def square(self, panorama: np.ndarray, corners, display_size: Tuple[int, int]) -> SquaredResult:
        """
        Args:
            panorama: Full-resolution composite
            corners: Four (x, y) points in display coordinates
            display_size: (w, h) of the display the corners were picked on
        """
        h, w = panorama.shape[:2]
        src = classify_corners(scale_points(corners, display_size, (w, h)), (w, h))

        s = float(self.output_size)
        dst = np.float32([[0, 0], [s, 0], [0, s], [s, s]])
        transform = cv2.getPerspectiveTransform(src, dst)
        image = cv2.warpPerspective(panorama, transform, (self.output_size, self.output_size))
        logger.info("Squared arena to %dx%d", self.output_size, self.output_size)
        return SquaredResult(image=image, corners=src, transform=transform)


def pan_crop(image: np.ndarray, focus: Tuple[float, float], display_size: Tuple[int, int],
             half_window: Tuple[int, int]) -> np.ndarray:
    """Crop a full-resolution window around a point picked on the display.

    The window centre is clamped so the 2*half_window crop stays inside the image.
    """
    h, w = image.shape[:2]
    hw, hh = half_window
    cx = int(focus[0] / float(display_size[0]) * w)
    cy = int(focus[1] / float(display_size[1]) * h)
    cx = min(max(cx, hw), w - hw - 1)
    cy = min(max(cy, hh), h - hh - 1)
    return image[cy - hh:cy + hh, cx - hw:cx + hw].copy()


def pan_reset(image: np.ndarray, display_size: Tuple[int, int]) -> np.ndarray:
    """Whole corrected image scaled to the display."""
    return cv2.resize(image, tuple(display_size))
