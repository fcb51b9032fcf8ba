"""
Arena Calibration Package for Four-Camera Overhead Rigs

Modules:
- features: Image validation and SIFT feature extraction
- matching: Best-of-two-nearest pairwise matching and the biggest component
- solvers: Homography-based initial cameras, bundle adjustment, wave correction
- projections: Plane and spherical rotation warper helpers
- compositor: Gain compensation and feather blending into one panorama
- squaring: Four-corner perspective correction and pan preview
- session: Stateful calibration workflow with a background stitch worker

Usage:
    from arena_calibration import CalibrationSession, PipelineConfig
    from arena_calibration.calib import CalibrationOutput
"""

from .errors import (
    CalibrationError,
    InputValidationError,
    ConnectivityError,
    AmbiguousCornersError,
    StitchCancelled,
    CancellationToken,
)

from .config import (
    PipelineConfig,
    FeatureConfig,
    MatcherConfig,
    AdjusterConfig,
    CompositorConfig,
    SquaringConfig,
    SessionConfig,
)

from .calib import CameraParams, CalibrationOutput

from .features import extract_features, keypoint_array, validate_images

from .matching import FeatureMatcher, leave_biggest_component, match_lookup

from .solvers import estimate_initial, BundleAdjuster, wave_correct

from .compositor import Compositor, PanoramaResult, median_focal

from .squaring import Squarer, SquaredResult, classify_corners

from .session import CalibrationSession, SessionState

__version__ = '1.0.0'
__all__ = [
    # Errors
    'CalibrationError', 'InputValidationError', 'ConnectivityError',
    'AmbiguousCornersError', 'StitchCancelled', 'CancellationToken',
    # Configuration
    'PipelineConfig', 'FeatureConfig', 'MatcherConfig', 'AdjusterConfig',
    'CompositorConfig', 'SquaringConfig', 'SessionConfig',
    # Records
    'CameraParams', 'CalibrationOutput',
    # Features and matching
    'extract_features', 'keypoint_array', 'validate_images',
    'FeatureMatcher', 'leave_biggest_component', 'match_lookup',
    # Camera estimation
    'estimate_initial', 'BundleAdjuster', 'wave_correct',
    # Compositing and squaring
    'Compositor', 'PanoramaResult', 'median_focal',
    'Squarer', 'SquaredResult', 'classify_corners',
    # Workflow
    'CalibrationSession', 'SessionState',
]
