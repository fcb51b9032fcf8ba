"""
Calibration session: the stateful driver behind the calibration tool.

Holds the loaded images and every intermediate result, runs extraction and
matching on the caller's thread and the estimate/refine/compose stages on a
single background worker. Results and status text are pushed to observers.
"""

from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
import functools
import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from .calib.calibration_config import CalibrationOutput
from .compositor import Compositor, PanoramaResult
from .config import NUM_CAMERAS, PipelineConfig
from .errors import (
    AmbiguousCornersError,
    CalibrationError,
    CancellationToken,
    InputValidationError,
    StitchCancelled,
)
from .features import extract_features
from .matching import FeatureMatcher, leave_biggest_component, match_lookup
from .preview import draw_corners, draw_feature_previews, resize_previews
from .solvers.bundle_adjustment import BundleAdjuster, wave_correct
from .solvers.homography_estimation import estimate_initial
from .squaring import SquaredResult, Squarer, classify_corners, pan_crop, pan_reset, scale_points

logger = logging.getLogger(__name__)

EVENTS = ('status', 'images', 'features', 'stitched', 'squared')

MSG_IMAGES_LOADED = "Images loaded"
MSG_NO_COMPONENT = "Cannot match all the images: try reducing the feature and/or match thresholds"
MSG_FEATURES_OK = "Features extracted successfully"
MSG_NO_GOOD_MATCHES = "No good matches, please repeat feature extraction"
MSG_STITCH_RUNNING = "Stitcher thread running..."
MSG_STITCH_DONE = "Stitching complete"
MSG_CANCEL_FAILED = "Couldn't end stitcher thread"
MSG_CANCELLED = "Stitcher thread terminated"
MSG_NEED_CORNERS = "4 points needed to square - select them on the stitched image in the previous tab"
MSG_SQUARED = "Squaring complete"
MSG_NO_PANORAMA = "No valid stitched image generated"
MSG_CORNERS_NOT_SET = "Arena corners for squaring not set"
MSG_NO_SAVE_FILE = "No save file given"


class SessionState(Enum):
    EMPTY = 'empty'
    IMAGES_LOADED = 'images_loaded'
    MATCHED = 'matched'
    STITCHED = 'stitched'
    CORNERS_PICKED = 'corners_picked'
    SQUARED = 'squared'


class CalibrationSession:
    """Four-camera arena calibration workflow.

    Usage:
        with CalibrationSession() as session:
            session.subscribe('status', print)
            session.set_calibration_images(images)
            if session.extract_features():
                session.stitch_images().result()
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.detector_threshold = int(self.config.features.detector_threshold)
        self.matcher_threshold = int(round(self.config.matcher.match_conf * 100))

        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='stitcher')
        self._observers: Dict[str, List[Callable]] = {event: [] for event in EVENTS}

        self.state = SessionState.EMPTY
        self.status = ""
        self.images: List[np.ndarray] = []
        self.features = []
        self.matches = []
        self.good_matches = False
        self.panorama: Optional[PanoramaResult] = None
        self.corners: List[tuple] = []
        self.squared: Optional[SquaredResult] = None

        self._future: Optional[Future] = None
        self._token: Optional[CancellationToken] = None

    # Observers

    def subscribe(self, event: str, callback: Callable):
        if event not in self._observers:
            raise ValueError(f"Unknown event '{event}', expected one of {EVENTS}")
        self._observers[event].append(callback)

    def _emit(self, event: str, payload):
        for callback in list(self._observers[event]):
            callback(payload)

    def _report(self, message: str):
        self.status = message
        logger.info(message)
        self._emit('status', message)

    # Thresholds

    @property
    def match_conf(self) -> float:
        return min(max(self.matcher_threshold / 100.0, 0.0), 1.0)

    @property
    def small_size(self):
        return tuple(self.config.session.small_image_size)

    @property
    def display_size(self):
        return self.config.display_size

    def _invalidate_matches(self):
        """Drop features and matches; a stitch still running on them is cancelled."""
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            self._future = None
            self._token = None
            self.features = []
            self.matches = []
            self.good_matches = False
            if self.images:
                self.state = SessionState.IMAGES_LOADED

    def set_feature_finder_threshold(self, value: int):
        self.detector_threshold = int(value)
        self._invalidate_matches()

    def set_matcher_threshold(self, value: int):
        self.matcher_threshold = int(value)
        self._invalidate_matches()

    # Stages

    def set_calibration_images(self, images: Sequence[np.ndarray]):
        """Replace the calibration images and drop every derived result."""
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            self._future = None
            self._token = None

            self.images = list(images)
            self.features = []
            self.matches = []
            self.good_matches = False
            self.panorama = None
            self.corners = []
            self.squared = None
            self.state = SessionState.IMAGES_LOADED
            previews = resize_previews([img for img in self.images if img is not None and img.size],
                                       self.small_size)

        self._emit('images', previews)
        self._report(MSG_IMAGES_LOADED)

    def extract_features(self) -> bool:
        """Detect, match and check connectivity. Returns True when all four images join up."""
        with self._lock:
            images = list(self.images)
        self._invalidate_matches()

        try:
            features = extract_features(images, self.detector_threshold,
                                        self.config.features.max_features)
        except InputValidationError as e:
            self._report(str(e))
            return False

        matcher = FeatureMatcher(self.match_conf, self.config.matcher)
        matches = matcher.match(features)
        indices = leave_biggest_component(features, matches,
                                          self.config.matcher.component_conf_threshold)
        logger.info("Matched %d pairs, biggest component %s", len(match_lookup(matches)) // 2, indices)

        previews = draw_feature_previews(images, features, matches, self.small_size)
        good = len(indices) >= NUM_CAMERAS
        with self._lock:
            self.features = features
            self.matches = matches
            self.good_matches = good
            if good:
                self.state = SessionState.MATCHED

        self._emit('features', previews)
        self._report(MSG_FEATURES_OK if good else MSG_NO_COMPONENT)
        return good

    def stitch_images(self, restart: bool = False) -> Optional[Future]:
        """Start a stitch on the worker, or cancel the one in flight.

        With an outstanding run this is a cancel request; restart=True then
        submits a fresh run once the cancel succeeds.

        Returns:
            Future resolving to a PanoramaResult, the unresolved outstanding
            future when it could not be stopped, or None
        """
        with self._lock:
            outstanding = self._future is not None and not self._future.done()
        if outstanding:
            if not self.cancel_stitch():
                return self._future
            if not restart:
                return None

        with self._lock:
            if not self.good_matches:
                self._report(MSG_NO_GOOD_MATCHES)
                return None
            token = CancellationToken()
            future = self._executor.submit(self._run_stitch, list(self.images),
                                           list(self.features), list(self.matches), token)
            self._future = future
            self._token = token

        self._report(MSG_STITCH_RUNNING)
        future.add_done_callback(functools.partial(self._on_stitch_done, token))
        return future

    def cancel_stitch(self) -> bool:
        """Request the outstanding stitch to stop. Returns True when nothing is left running."""
        with self._lock:
            future, token = self._future, self._token
        if future is None or future.done():
            return True

        token.cancel()
        future.cancel()
        done, _ = wait([future], timeout=self.config.session.cancel_grace_s)
        if not done:
            self._report(MSG_CANCEL_FAILED)
            return False

        with self._lock:
            if self._future is future:
                self._future = None
                self._token = None
        self._report(MSG_CANCELLED)
        return True

    def _run_stitch(self, images, features, matches, token: CancellationToken) -> PanoramaResult:
        token.check()
        logger.info("Estimating initial cameras")
        cameras = estimate_initial(features, matches)

        token.check()
        adjuster = BundleAdjuster.from_config(self.config.adjuster)
        adjuster.refine(features, matches, cameras, cancel=token)

        token.check()
        rotations = wave_correct([cam.R for cam in cameras], self.config.adjuster.wave_correction)
        for cam, R in zip(cameras, rotations):
            cam.R = R
        for i, cam in enumerate(cameras):
            logger.debug("Camera #%d: focal %.1f, pp (%.1f, %.1f), aspect %.4f",
                         i + 1, cam.focal, cam.ppx, cam.ppy, cam.aspect)

        compositor = Compositor(self.config.compositor, self.display_size)
        panorama = compositor.compose(images, cameras, cancel=token)
        self._adopt_panorama(panorama, token)
        return panorama

    def _adopt_panorama(self, panorama: PanoramaResult, token: CancellationToken):
        """Make a finished run's panorama current, unless a newer run or reload superseded it."""
        with self._lock:
            if token is not self._token or token.cancelled:
                logger.info("Discarding result of a superseded stitch")
                return
            self._future = None
            self._token = None
            self.panorama = panorama
            self.corners = []
            self.squared = None
            self.state = SessionState.STITCHED

        if not self._panorama_valid():
            self._report(MSG_NO_PANORAMA)
            return
        self._emit('stitched', panorama.preview)
        self._report(MSG_STITCH_DONE)

    def _on_stitch_done(self, token: CancellationToken, future: Future):
        if future.cancelled():
            logger.info("Stitch cancelled before it started")
            return
        exc = future.exception()
        if exc is None:
            return
        if isinstance(exc, StitchCancelled):
            logger.info("Stitch cancelled")
            return

        with self._lock:
            if token is not self._token:
                logger.info("Ignoring failure of a superseded stitch: %s", exc)
                return
            self._future = None
            self._token = None
        logger.error("Stitching failed: %s", exc, exc_info=exc)
        self._report(f"Stitching failed: {exc}")

    def wait_for_stitch(self, timeout: Optional[float] = None) -> Optional[PanoramaResult]:
        """Block until the outstanding stitch finishes; returns the adopted panorama."""
        with self._lock:
            future = self._future
        if future is not None:
            wait([future], timeout=timeout)
        return self.panorama

    # Corners and squaring

    def _panorama_valid(self) -> bool:
        return self.panorama is not None and self.panorama.is_valid(self.config.compositor.min_width)

    def _redraw_corners(self):
        with self._lock:
            if not self._panorama_valid():
                return
            preview = draw_corners(self.panorama.image, self.corners, self.display_size)
        self._emit('stitched', preview)

    def point_selected(self, point):
        """Record an arena corner picked on the panorama preview (at most four)."""
        with self._lock:
            if len(self.corners) < NUM_CAMERAS:
                self.corners.append((float(point[0]), float(point[1])))
            if self._panorama_valid():
                self.state = (SessionState.CORNERS_PICKED if len(self.corners) == NUM_CAMERAS
                              else SessionState.STITCHED)
        self._redraw_corners()

    def reset_point(self):
        """Forget the most recently picked corner."""
        with self._lock:
            if self.corners:
                self.corners.pop()
            if self._panorama_valid():
                self.state = SessionState.STITCHED
        self._redraw_corners()

    def square_arena(self) -> Optional[SquaredResult]:
        with self._lock:
            if len(self.corners) < NUM_CAMERAS:
                self._report(MSG_NEED_CORNERS)
                return None
            if not self._panorama_valid():
                self._report(MSG_NO_PANORAMA)
                return None
            panorama, corners = self.panorama, list(self.corners)

        squarer = Squarer(self.config.squaring.output_size)
        try:
            squared = squarer.square(panorama.image, corners, self.display_size)
        except CalibrationError as e:
            self._report(str(e))
            return None

        with self._lock:
            if panorama is not self.panorama:
                logger.info("Panorama replaced while squaring, discarding result")
                return None
            self.squared = squared
            self.state = SessionState.SQUARED
        self._emit('squared', pan_reset(squared.image, self.display_size))
        self._report(MSG_SQUARED)
        return squared

    def save_calibration(self, path) -> Optional[CalibrationOutput]:
        """Write corners, rotations and intrinsics. Format follows the file suffix."""
        with self._lock:
            if not self._panorama_valid():
                self._report(MSG_NO_PANORAMA)
                return None
            if len(self.corners) < NUM_CAMERAS:
                self._report(MSG_CORNERS_NOT_SET)
                return None
            panorama, corners = self.panorama, list(self.corners)

        if not path:
            self._report(MSG_NO_SAVE_FILE)
            return None

        h, w = panorama.image.shape[:2]
        try:
            ordered = classify_corners(scale_points(corners, self.display_size, (w, h)), (w, h))
        except AmbiguousCornersError as e:
            self._report(str(e))
            return None

        output = CalibrationOutput.from_cameras(ordered, panorama.cameras)
        try:
            output.save(path)
        except OSError as e:
            logger.error("Failed to save calibration: %s", e)
            self._report(f"Could not save calibration: {e}")
            return None
        self._report(f"Calibration saved to {path}")
        return output

    # Pan preview of the squared arena

    def zoom_move(self, point):
        with self._lock:
            squared = self.squared
        if squared is None:
            return
        crop = pan_crop(squared.image, point, self.display_size, self.small_size)
        self._emit('squared', crop)

    def zoom_move_done(self):
        with self._lock:
            squared = self.squared
        if squared is None:
            return
        self._emit('squared', pan_reset(squared.image, self.display_size))

    # Lifetime

    def close(self):
        with self._lock:
            if self._token is not None:
                self._token.cancel()
        # A worker that ignores its token must not block shutdown
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
