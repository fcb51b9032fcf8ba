"""
Pairwise feature matching and match-graph connectivity.
Matches every image pair with a two-nearest ratio test, verifies the pair with
a RANSAC homography and keeps the biggest mutually-connected set of images.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import MatcherConfig

logger = logging.getLogger(__name__)


def match_lookup(matches: Sequence) -> Dict[Tuple[int, int], object]:
    """Verified pairwise matches keyed by (src_img_idx, dst_img_idx)."""
    return {(m.src_img_idx, m.dst_img_idx): m for m in matches if m.src_img_idx >= 0}


def confident_pairs(matches: Sequence, conf_threshold: float) -> List[Tuple[int, int]]:
    """Image pairs (i < j) whose match confidence exceeds the threshold."""
    return sorted((i, j) for (i, j), m in match_lookup(matches).items()
                  if i < j and m.confidence > conf_threshold)


class FeatureMatcher:
    """Best-of-two-nearest matcher over every image pair.

    The slider confidence is the ratio test bound: a match is kept when its
    best descriptor distance is below match_conf times the second best, so a
    lower value keeps fewer, more distinctive matches.
    """

    def __init__(self, match_conf: float = 0.6, config: Optional[MatcherConfig] = None):
        self.config = config or MatcherConfig()
        self.match_conf = float(np.clip(match_conf, 0.0, 1.0))

    def create(self):
        # The library rejects matches unless best < (1 - conf) * second
        return cv2.detail_BestOf2NearestMatcher(False, 1.0 - self.match_conf,
                                                self.config.min_matches, self.config.min_inliers)

    def match(self, features: Sequence) -> List:
        """Match all image pairs.

        Returns:
            n*n cv2.detail_MatchesInfo list indexed by src * n + dst; every
            verified pair appears in both directions and diagonal entries
            carry src_img_idx = -1
        """
        matcher = self.create()
        matches = list(matcher.apply2(list(features)))
        matcher.collectGarbage()

        for (i, j), m in sorted(match_lookup(matches).items()):
            if i < j:
                logger.debug("Pair (%d, %d): %d matches, %d inliers, confidence %.3f",
                             i, j, len(m.matches), m.num_inliers, m.confidence)
        return matches


def leave_biggest_component(features: Sequence, matches: Sequence,
                            conf_threshold: float = 0.5) -> List[int]:
    """Image indices of the largest component joined by pairs with confidence >= conf_threshold."""
    if len(features) == 0:
        return []
    indices = cv2.detail.leaveBiggestComponent(list(features), list(matches), conf_threshold)
    return sorted(int(i) for i in np.asarray(indices).ravel())
