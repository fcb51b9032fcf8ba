"""Projection surfaces for warping camera images."""

from .warpers import create_warper, warp_points, WARPERS

__all__ = [
    'create_warper',
    'warp_points',
    'WARPERS',
]
