"""
Feature extraction for the four arena camera images.
"""

import logging
from typing import List, Sequence

import cv2
import numpy as np

from .config import NUM_CAMERAS
from .errors import InputValidationError

logger = logging.getLogger(__name__)

# Detector threshold 10 (slider default) maps onto SIFT's stock contrast threshold 0.04
CONTRAST_PER_THRESHOLD_STEP = 0.004


def validate_images(images: Sequence[np.ndarray]):
    """Require exactly four images that all share the first image's size."""
    if images is None or len(images) != NUM_CAMERAS:
        raise InputValidationError("Incorrect calibration image number")
    for img in images:
        if img is None or img.size == 0:
            raise InputValidationError("Calibration image is empty")
    size = images[0].shape[:2]
    for img in images[1:]:
        if img.shape[:2] != size:
            raise InputValidationError("Not all calibration images are the same size")


def contrast_threshold(detector_threshold: int) -> float:
    return max(0.0, float(detector_threshold)) * CONTRAST_PER_THRESHOLD_STEP


def create_detector(detector_threshold: int = 10, max_features: int = 0):
    return cv2.SIFT_create(nfeatures=max_features,
                           contrastThreshold=contrast_threshold(detector_threshold))


def keypoint_array(features) -> np.ndarray:
    """Nx2 float32 pixel locations of an image's keypoints."""
    if len(features.keypoints) == 0:
        return np.zeros((0, 2), dtype=np.float32)
    return np.float32([k.pt for k in features.keypoints]).reshape(-1, 2)


def detect_features(img: np.ndarray, img_idx: int, detector):
    """Detect keypoints and descriptors in a single image.

    Returns:
        cv2.detail_ImageFeatures tagged with img_idx
    """
    features = cv2.detail.computeImageFeatures2(detector, img)
    features.img_idx = img_idx
    return features


def extract_features(images: Sequence[np.ndarray], detector_threshold: int = 10,
                     max_features: int = 0) -> List:
    """Validate the image set and detect features in every image.

    Args:
        images: Four BGR images of identical size
        detector_threshold: Integer detector threshold (lower finds more features)
        max_features: Keep only the strongest N features per image (0 = all)

    Returns:
        One cv2.detail_ImageFeatures per image, in input order
    """
    validate_images(images)

    detector = create_detector(detector_threshold, max_features)
    features = []
    for i, img in enumerate(images):
        feat = detect_features(img, i, detector)
        logger.debug("Features in image #%d: %d", i + 1, len(feat.keypoints))
        features.append(feat)
    return features
