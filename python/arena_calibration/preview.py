"""
Downscaled preview images annotated with features, matches and arena corners.
"""

from typing import List, Sequence, Tuple

import cv2
import numpy as np

from .features import keypoint_array

KEYPOINT_COLOR = (0, 0, 100)
CORNER_COLOR = (0, 255, 0)

# BGR cycle for match circles: red, green, blue, cyan, magenta, yellow, then dark variants
MATCH_COLORS = [
    (0, 0, 255), (0, 255, 0), (255, 0, 0), (255, 255, 0), (255, 0, 255), (0, 255, 255),
    (0, 0, 128), (0, 128, 0), (128, 0, 0), (128, 128, 0), (128, 0, 128), (0, 128, 128),
]


def resize_previews(images: Sequence[np.ndarray], size: Tuple[int, int]) -> List[np.ndarray]:
    return [cv2.resize(img, tuple(size)) for img in images]


def _scaled(pt, ratio) -> Tuple[int, int]:
    return int(round(pt[0] * ratio[0])), int(round(pt[1] * ratio[1]))


def draw_feature_previews(images: Sequence[np.ndarray], features: Sequence,
                          matches: Sequence, size: Tuple[int, int]) -> List[np.ndarray]:
    """Small previews with every keypoint as a dot and matched keypoints as circles.

    Each pair with src < dst gets its own colour from MATCH_COLORS.
    """
    previews = resize_previews(images, size)
    ratios = [(size[0] / float(img.shape[1]), size[1] / float(img.shape[0])) for img in images]
    keypoints = [keypoint_array(feat) for feat in features]

    for idx, pts in enumerate(keypoints):
        for pt in pts:
            cv2.circle(previews[idx], _scaled(pt, ratios[idx]), 1, KEYPOINT_COLOR)

    c = 0
    for m in matches:
        i, j = m.src_img_idx, m.dst_img_idx
        if i < 0 or i >= j or len(m.matches) == 0:
            continue
        color = MATCH_COLORS[c % len(MATCH_COLORS)]
        c += 1
        for dm in m.matches:
            cv2.circle(previews[i], _scaled(keypoints[i][dm.queryIdx], ratios[i]), 3, color)
            cv2.circle(previews[j], _scaled(keypoints[j][dm.trainIdx], ratios[j]), 3, color)
    return previews


def draw_corners(image: np.ndarray, corners: Sequence[Tuple[float, float]], size: Tuple[int, int]) -> np.ndarray:
    """Resize an image to the display and mark the picked corners."""
    preview = cv2.resize(image, tuple(size))
    for x, y in corners:
        cv2.circle(preview, (int(round(x)), int(round(y))), 3, CORNER_COLOR)
    return preview
