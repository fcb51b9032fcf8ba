"""Camera estimation and refinement solvers."""

from .homography_estimation import estimate_initial
from .bundle_adjustment import BundleAdjuster, refinement_mask_matrix, wave_correct

__all__ = [
    'estimate_initial',
    'BundleAdjuster',
    'refinement_mask_matrix',
    'wave_correct',
]
