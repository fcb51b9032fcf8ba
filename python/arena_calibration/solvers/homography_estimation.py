"""
Initial camera estimation from pairwise homographies.

Focal lengths come from the homography decomposition of every verified pair,
rotations are chained along the maximum spanning tree of the match graph.
"""

import logging
from typing import List, Sequence

import cv2

from ..calib.calibration_config import CameraParams
from ..errors import ConnectivityError

logger = logging.getLogger(__name__)


def estimate_initial(features: Sequence, matches: Sequence) -> List[CameraParams]:
    """Homography-based initial rotation and focal estimate for every camera.

    The principal point starts at the image centre and the rotations are
    expressed relative to the centre of the spanning tree.
    """
    estimator = cv2.detail_HomographyBasedEstimator()
    ok, cameras = estimator.apply(list(features), list(matches), None)
    if not ok:
        raise ConnectivityError("Homography estimation failed")

    cameras = [CameraParams.from_detail(cam) for cam in cameras]
    for i, cam in enumerate(cameras):
        logger.debug("Initial camera #%d: focal %.1f", i + 1, cam.focal)
    return cameras
