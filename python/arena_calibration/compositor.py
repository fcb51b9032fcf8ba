"""
Compositing of the four calibrated camera images into one arena panorama.
Warps every image with its refined camera, equalises exposure across the
overlaps and feathers the seams.
"""

from dataclasses import dataclass, field
import logging
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .calib.calibration_config import CameraParams
from .config import CompositorConfig
from .errors import check_cancel
from .projections.warpers import create_warper, warp_points

logger = logging.getLogger(__name__)


def median_focal(focals: Sequence[float]) -> float:
    """Warp scale shared by all cameras: the median focal length.

    Mean of the two middle values for an even count.
    """
    vals = sorted(float(f) for f in focals)
    if not vals:
        raise ValueError("median of an empty sequence")
    mid = len(vals) // 2
    if len(vals) % 2 == 1:
        return vals[mid]
    return (vals[mid - 1] + vals[mid]) * 0.5


@dataclass
class PanoramaResult:
    """Blended arena composite and the warp placement that produced it."""
    image: np.ndarray  # Full-resolution composite at the fixed compose size
    preview: np.ndarray  # Display-size copy
    cameras: List[CameraParams]
    corners: List[Tuple[int, int]]  # Top-left of each warped image on the surface
    sizes: List[Tuple[int, int]]  # (w, h) of each warped image
    scale: float  # Warp scale (median focal)
    warper: str = "plane"
    dst_roi: Tuple[int, int, int, int] = (0, 0, 0, 0)  # (x, y, w, h) of the blended canvas
    gains: Optional[np.ndarray] = field(default=None)

    @property
    def width(self) -> int:
        return self.image.shape[1]

    def is_valid(self, min_width: int = 100) -> bool:
        return self.image is not None and self.image.size > 0 and self.width >= min_width

    def project_point(self, camera_idx: int, xy) -> np.ndarray:
        """Map a pixel of one source camera into composite image coordinates."""
        cam = self.cameras[camera_idx]
        uv = warp_points(create_warper(self.warper, self.scale), xy, cam.K(), cam.R)
        x, y, w, h = self.dst_roi
        sx = self.image.shape[1] / float(w)
        sy = self.image.shape[0] / float(h)
        out = np.column_stack([(uv[:, 0] - x) * sx, (uv[:, 1] - y) * sy])
        return out[0] if np.ndim(xy) == 1 else out


def compensate_exposure(corners, images, masks) -> Tuple[List[np.ndarray], np.ndarray]:
    """Per-image gains equalising mean intensity in every overlap, applied to the images.

    Returns:
        (compensated 8-bit images, gain per image)
    """
    compensator = cv2.detail.ExposureCompensator_createDefault(cv2.detail.ExposureCompensator_GAIN)
    compensator.feed(corners=list(corners), images=list(images), masks=list(masks))
    gains = np.array([float(np.asarray(g).ravel()[0]) for g in compensator.getMatGains()])
    logger.debug("Exposure gains: %s", np.array2string(gains, precision=3))

    compensated = []
    for idx, (corner, img, mask) in enumerate(zip(corners, images, masks)):
        img = img.copy()
        compensator.apply(idx, tuple(corner), img, mask)
        compensated.append(img)
    return compensated, gains


def feather_blend(corners, images, masks, sharpness: float = 0.02):
    """Weighted average of placed images, weights growing with distance from each mask edge.

    Returns:
        (blended int16 image, uint8 coverage mask, (x, y, w, h) canvas roi)
    """
    sizes = [(img.shape[1], img.shape[0]) for img in images]
    dst_roi = tuple(int(v) for v in cv2.detail.resultRoi(corners=list(corners), sizes=sizes))

    blender = cv2.detail_FeatherBlender(sharpness)
    blender.prepare(dst_roi)
    for img, mask, corner in zip(images, masks, corners):
        blender.feed(img.astype(np.int16), mask, tuple(corner))
    result, result_mask = blender.blend(None, None)
    return result, result_mask, dst_roi


def to_8bit(img: np.ndarray) -> np.ndarray:
    """Saturating conversion of the blender output to 8 bits per channel."""
    return np.clip(img, 0, 255).astype(np.uint8)


class Compositor:
    """Warp, exposure-compensate and feather-blend the calibrated images."""

    def __init__(self, config: Optional[CompositorConfig] = None, display_size: Tuple[int, int] = (600, 600),
                 max_warp_pixels: int = 50_000_000):
        self.config = config or CompositorConfig()
        self.display_size = tuple(display_size)
        self.max_warp_pixels = max_warp_pixels

    def compose(self, images: Sequence[np.ndarray], cameras: Sequence[CameraParams], cancel=None) -> PanoramaResult:
        scale = median_focal([cam.focal for cam in cameras])
        warper = create_warper(self.config.warper, scale)
        logger.info("Warping %d images (%s, scale %.1f)", len(images), self.config.warper, scale)

        corners, sizes, images_warped, masks_warped = [], [], [], []
        for img, cam in zip(images, cameras):
            check_cancel(cancel)
            if img.ndim == 2:
                img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
            K = cam.K().astype(np.float32)
            R = np.asarray(cam.R, dtype=np.float32)
            roi = warper.warpRoi((img.shape[1], img.shape[0]), K, R)
            if roi[2] * roi[3] > self.max_warp_pixels:
                raise ValueError(f"Warped image {roi[2]}x{roi[3]} exceeds {self.max_warp_pixels} pixels")

            corner, warped = warper.warp(img, K, R, cv2.INTER_LINEAR, cv2.BORDER_REFLECT)
            mask = np.full(img.shape[:2], 255, dtype=np.uint8)
            _, mask_warped = warper.warp(mask, K, R, cv2.INTER_NEAREST, cv2.BORDER_CONSTANT)
            corners.append(tuple(int(v) for v in corner))
            sizes.append((warped.shape[1], warped.shape[0]))
            images_warped.append(warped)
            masks_warped.append(mask_warped)

        check_cancel(cancel)
        gains = np.ones(len(images_warped))
        if self.config.gain_compensation:
            images_warped, gains = compensate_exposure(corners, images_warped, masks_warped)

        check_cancel(cancel)
        blended, _, dst_roi = feather_blend(corners, images_warped, masks_warped,
                                            self.config.blend_sharpness)
        result = to_8bit(blended)
        logger.info("Blended panorama: %dx%d", result.shape[1], result.shape[0])

        image = cv2.resize(result, tuple(self.config.compose_size))
        preview = cv2.resize(image, self.display_size)
        return PanoramaResult(
            image=image,
            preview=preview,
            cameras=[cam.copy() for cam in cameras],
            corners=corners,
            sizes=sizes,
            scale=scale,
            warper=self.config.warper,
            dst_roi=dst_roi,
            gains=gains,
        )
