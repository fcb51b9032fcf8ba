"""Synthetic four-camera arena: textured plane z=1 seen by rotating pinhole cameras."""

import cv2
import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from arena_calibration.calib import CameraParams

FOCAL = 300.0
IMAGE_SIZE = (400, 400)  # (w, h)
TEXTURE_SIZE = 1600
TEXTURE_SCALE = 400.0  # texture pixels per unit of the arena plane

# 2x2 grid: TL, TR, BL, BR looking cameras (yaw, pitch) in radians
CAMERA_ANGLES = [(-0.25, 0.25), (0.25, 0.25), (-0.25, -0.25), (0.25, -0.25)]


def rotation(yaw, pitch):
    return Rotation.from_euler('YX', [yaw, pitch]).as_matrix()


def intrinsics(focal=FOCAL, size=IMAGE_SIZE):
    return np.array([[focal, 0, size[0] / 2.0], [0, focal, size[1] / 2.0], [0, 0, 1]])


def make_texture(seed=0):
    rng = np.random.default_rng(seed)
    base = rng.integers(0, 256, (40, 40, 3), dtype=np.uint8)
    tex = cv2.resize(base, (TEXTURE_SIZE, TEXTURE_SIZE), interpolation=cv2.INTER_CUBIC)
    for _ in range(500):
        center = tuple(int(c) for c in rng.integers(0, TEXTURE_SIZE, 2))
        color = tuple(int(c) for c in rng.integers(0, 256, 3))
        if rng.random() < 0.5:
            cv2.circle(tex, center, int(rng.integers(6, 30)), color, -1)
        else:
            size = rng.integers(8, 50, 2)
            cv2.rectangle(tex, center, (center[0] + int(size[0]), center[1] + int(size[1])), color, -1)
    return tex


def render_view(texture, K, R, size=IMAGE_SIZE, noise=2.0, seed=0):
    """Image of the plane z=1 seen by a camera at the origin with rotation R."""
    w, h = size
    ys, xs = np.mgrid[0:h, 0:w].astype(np.float64)
    pix = np.stack([xs.ravel(), ys.ravel(), np.ones(w * h)])
    rays = R @ np.linalg.inv(K) @ pix
    u = (TEXTURE_SCALE * rays[0] / rays[2] + TEXTURE_SIZE / 2.0).reshape(h, w).astype(np.float32)
    v = (TEXTURE_SCALE * rays[1] / rays[2] + TEXTURE_SIZE / 2.0).reshape(h, w).astype(np.float32)
    img = cv2.remap(texture, u, v, cv2.INTER_LINEAR, borderMode=cv2.BORDER_REFLECT)
    if noise:
        rng = np.random.default_rng(seed)
        img = np.clip(img.astype(np.float32) + rng.normal(0, noise, img.shape), 0, 255).astype(np.uint8)
    return img


def project_world(K, R, xy):
    """Pixel of the plane point (x, y, 1) in a camera, or None when behind it."""
    p = K @ R.T @ np.array([xy[0], xy[1], 1.0])
    if p[2] <= 0:
        return None
    return p[:2] / p[2]


def rotation_angle_deg(Ra, Rb):
    return np.degrees(Rotation.from_matrix(Ra.T @ Rb).magnitude())


@pytest.fixture(scope='session')
def arena_views():
    texture = make_texture()
    K = intrinsics()
    rotations = [rotation(yaw, pitch) for yaw, pitch in CAMERA_ANGLES]
    images = [render_view(texture, K, R, seed=i + 1) for i, R in enumerate(rotations)]
    return {'images': images, 'rotations': rotations, 'K': K}


@pytest.fixture(scope='session')
def true_cameras(arena_views):
    K = arena_views['K']
    return [CameraParams(focal=K[0, 0], ppx=K[0, 2], ppy=K[1, 2], R=R.copy())
            for R in arena_views['rotations']]


@pytest.fixture(scope='session')
def matched(arena_views):
    from arena_calibration.features import extract_features
    from arena_calibration.matching import FeatureMatcher

    features = extract_features(arena_views['images'], detector_threshold=10, max_features=200)
    matches = FeatureMatcher(0.6).match(features)
    return features, matches
