"""Joint refinement of all camera parameters by reprojection error."""

import logging
from typing import Dict, List, Optional, Sequence

import cv2
import numpy as np
from scipy.spatial.transform import Rotation

from ..calib.calibration_config import CameraParams
from ..errors import CalibrationError, check_cancel
from ..matching import confident_pairs

logger = logging.getLogger(__name__)

DEFAULT_REFINEMENT_MASK = {'focal': True, 'skew': True, 'ppx': True, 'aspect': True, 'ppy': True}

# Upper-triangular K entry governed by each mask key
MASK_ENTRIES = {'focal': (0, 0), 'skew': (0, 1), 'ppx': (0, 2), 'aspect': (1, 1), 'ppy': (1, 2)}

WAVE_CORRECT_KINDS = {
    'horiz': cv2.detail.WAVE_CORRECT_HORIZ,
    'vert': cv2.detail.WAVE_CORRECT_VERT,
}


def refinement_mask_matrix(mask: Dict[str, bool]) -> np.ndarray:
    refine = np.zeros((3, 3), np.uint8)
    for name, (r, c) in MASK_ENTRIES.items():
        if mask.get(name, False):
            refine[r, c] = 1
    return refine


def camera_change(before: Sequence[CameraParams], after: Sequence[CameraParams]) -> float:
    """Largest parameter change between two camera sets.

    Intrinsics are compared relative to the focal length, rotations by angle
    in radians.
    """
    change = 0.0
    for a, b in zip(before, after):
        change = max(change,
                     abs(a.focal - b.focal) / a.focal,
                     abs(a.ppx - b.ppx) / a.focal,
                     abs(a.ppy - b.ppy) / a.focal,
                     abs(a.aspect - b.aspect),
                     Rotation.from_matrix(a.R.T @ b.R).magnitude())
    return change


class BundleAdjuster:
    """Minimise the reprojection error of all confident inlier correspondences.

    Rotations of every camera are always refined; intrinsics follow the
    refinement mask over the upper-triangular entries of K. The solver runs
    in rounds of iterations_per_check iterations so a cancellation request
    is honoured between rounds.
    """

    def __init__(self, conf_thresh: float = 0.6, refinement_mask: Optional[Dict[str, bool]] = None,
                 max_iterations: int = 1000, iterations_per_check: int = 100, tolerance: float = 1e-6):
        self.conf_thresh = conf_thresh
        self.refinement_mask = dict(DEFAULT_REFINEMENT_MASK)
        if refinement_mask is not None:
            self.refinement_mask.update(refinement_mask)
        self.max_iterations = max_iterations
        self.iterations_per_check = max(1, iterations_per_check)
        self.tolerance = tolerance

    @classmethod
    def from_config(cls, config):
        return cls(conf_thresh=config.conf_thresh, refinement_mask=config.refinement_mask,
                   max_iterations=config.max_iterations,
                   iterations_per_check=config.iterations_per_check, tolerance=config.tolerance)

    def create(self):
        adjuster = cv2.detail_BundleAdjusterReproj()
        adjuster.setConfThresh(self.conf_thresh)
        adjuster.setRefinementMask(refinement_mask_matrix(self.refinement_mask))
        adjuster.setTermCriteria((cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS,
                                  self.iterations_per_check, np.finfo(np.float64).eps))
        return adjuster

    def refine(self, features: Sequence, matches: Sequence,
               cameras: Sequence[CameraParams], cancel=None) -> List[CameraParams]:
        """Refine cameras in place and return them.

        Args:
            features: cv2.detail_ImageFeatures of all images
            matches: Pairwise matches from FeatureMatcher.match
            cameras: Initial estimate, updated with the refined values
            cancel: Optional CancellationToken checked between solver rounds
        """
        pairs = confident_pairs(matches, self.conf_thresh)
        if not pairs:
            raise CalibrationError("No image pair is confident enough for bundle adjustment")
        logger.info("Bundle adjustment over %d pairs: %s", len(pairs), pairs)

        adjuster = self.create()
        current = [cam.copy() for cam in cameras]
        iterations = 0
        while iterations < self.max_iterations:
            check_cancel(cancel)
            ok, refined = adjuster.apply(list(features), list(matches),
                                         [cam.to_detail() for cam in current])
            if not ok:
                raise CalibrationError("Camera parameters adjusting failed")
            refined = [CameraParams.from_detail(cam) for cam in refined]
            if not all(np.isfinite(cam.K()).all() and np.isfinite(cam.R).all() for cam in refined):
                raise CalibrationError("Bundle adjustment diverged")

            iterations += self.iterations_per_check
            change = camera_change(current, refined)
            current = refined
            logger.debug("Bundle adjustment round done (%d iterations), change %.3g", iterations, change)
            if change < self.tolerance:
                break

        for cam, new in zip(cameras, current):
            cam.focal, cam.ppx, cam.ppy, cam.aspect = new.focal, new.ppx, new.ppy, new.aspect
            cam.R = new.R
        return list(cameras)


def wave_correct(rotations: Sequence[np.ndarray], kind: str = "horiz") -> List[np.ndarray]:
    """Remove the global tilt of a set of camera rotations."""
    rmats = [np.asarray(r, dtype=np.float64) for r in rotations]
    if kind == "none" or len(rmats) <= 1:
        return rmats
    if kind not in WAVE_CORRECT_KINDS:
        raise ValueError(f"Unknown wave correction kind: {kind}")

    corrected = cv2.detail.waveCorrect([r.astype(np.float32) for r in rmats], WAVE_CORRECT_KINDS[kind])
    return [np.asarray(r, dtype=np.float64) for r in corrected]
