"""Full session run on the synthetic four-camera arena."""

import numpy as np
import pytest

from arena_calibration.calib import CalibrationOutput
from arena_calibration.config import PipelineConfig
from arena_calibration.session import CalibrationSession, SessionState
from arena_calibration.squaring import Squarer

from conftest import project_world, rotation_angle_deg

ARENA_HALF_SIZE = 0.6
# Arena corners on the plane z=1 in TL, TR, BL, BR order
ARENA_CORNERS = [(-ARENA_HALF_SIZE, -ARENA_HALF_SIZE), (ARENA_HALF_SIZE, -ARENA_HALF_SIZE),
                 (-ARENA_HALF_SIZE, ARENA_HALF_SIZE), (ARENA_HALF_SIZE, ARENA_HALF_SIZE)]


def visible_camera(K, rotations, xy, margin=20):
    """First camera that sees a plane point, with its pixel position."""
    for idx, R in enumerate(rotations):
        p = project_world(K, R, xy)
        if p is not None and margin <= p[0] < 400 - margin and margin <= p[1] < 400 - margin:
            return idx, p
    raise AssertionError(f"No camera sees {xy}")


def central_camera(K, rotations, xy):
    """Camera that sees a plane point closest to its image centre, with the pixel position."""
    views = [(idx, project_world(K, R, xy)) for idx, R in enumerate(rotations)]
    views = [(idx, p) for idx, p in views if p is not None]
    return min(views, key=lambda v: np.hypot(v[1][0] - K[0, 2], v[1][1] - K[1, 2]))


@pytest.fixture(scope='module')
def stitched_session(arena_views):
    config = PipelineConfig()
    config.features.max_features = 200
    session = CalibrationSession(config)
    session.messages = []
    session.stitched_frames = []
    session.subscribe('status', session.messages.append)
    session.subscribe('stitched', session.stitched_frames.append)

    session.set_calibration_images(arena_views['images'])
    assert session.extract_features()
    future = session.stitch_images()
    panorama = future.result(timeout=300)
    assert session.panorama is panorama
    yield session
    session.close()


def display_corners(session, arena_views):
    """Display-space clicks on the arena corners, found through the calibrated cameras."""
    K = arena_views['K']
    panorama = session.panorama
    scale = np.array(session.display_size, dtype=np.float64) / panorama.image.shape[1::-1]
    clicks = []
    for xy in ARENA_CORNERS:
        idx, pixel = visible_camera(K, arena_views['rotations'], xy)
        clicks.append(tuple(panorama.project_point(idx, pixel) * scale))
    return clicks


def test_stitch_produces_valid_panorama(stitched_session):
    session = stitched_session
    assert session.state is SessionState.STITCHED
    assert session.messages[-1] == "Stitching complete"
    assert session.panorama.image.shape == (1536, 1536, 3)
    assert session.panorama.is_valid(100)
    assert session.stitched_frames[-1].shape == (600, 600, 3)


def test_recovered_relative_rotations(stitched_session, arena_views):
    cameras = stitched_session.panorama.cameras
    truth = arena_views['rotations']
    for i in range(4):
        for j in range(i + 1, 4):
            est = cameras[i].R.T @ cameras[j].R
            assert rotation_angle_deg(est, truth[i].T @ truth[j]) < 3.0
    for cam in cameras:
        assert cam.focal == pytest.approx(300.0, rel=0.1)


def test_square_and_save(stitched_session, arena_views, tmp_path):
    session = stitched_session
    clicks = display_corners(session, arena_views)
    # Click in scrambled order; roles come from the quadrants
    for p in [clicks[3], clicks[0], clicks[2], clicks[1]]:
        session.point_selected(p)
    assert session.state is SessionState.CORNERS_PICKED

    squared = session.square_arena()
    assert squared is not None
    assert squared.image.shape == (2000, 2000, 3)
    assert session.messages[-1] == "Squaring complete"

    # The arena centre lands in the middle of the squared image
    K = arena_views['K']
    idx, pixel = visible_camera(K, arena_views['rotations'], (0.0, 0.0))
    centre = session.panorama.project_point(idx, pixel)
    mapped = squared.transform @ np.array([centre[0], centre[1], 1.0])
    np.testing.assert_allclose(mapped[:2] / mapped[2], [1000, 1000], atol=40)

    frames = []
    session.subscribe('squared', frames.append)
    session.zoom_move((300, 300))
    session.zoom_move_done()
    assert [f.shape for f in frames] == [(600, 600, 3), (600, 600, 3)]

    path = tmp_path / 'arena.xml'
    output = session.save_calibration(path)
    assert output is not None
    loaded = CalibrationOutput.load(path)
    assert len(loaded.rotations) == len(loaded.intrinsics) == 4
    np.testing.assert_allclose(np.asarray(loaded.corners), squared.corners, atol=1e-2)
    for K_saved, cam in zip(loaded.intrinsics, session.panorama.cameras):
        np.testing.assert_allclose(K_saved, cam.K(), rtol=1e-9)

    session.reset_point()
    assert session.state is SessionState.STITCHED


def test_squared_arena_grid_is_regular(stitched_session, arena_views):
    session = stitched_session
    panorama = session.panorama
    squared = Squarer(2000).square(panorama.image, display_corners(session, arena_views),
                                   session.display_size)

    K = arena_views['K']
    steps = np.linspace(-0.4, 0.4, 5)
    mapped = np.zeros((len(steps), len(steps), 2))
    for r, y in enumerate(steps):
        for c, x in enumerate(steps):
            idx, pixel = central_camera(K, arena_views['rotations'], (x, y))
            p = panorama.project_point(idx, pixel)
            q = squared.transform @ np.array([p[0], p[1], 1.0])
            mapped[r, c] = q[:2] / q[2]

    # Plane points on a regular grid land on a regular lattice of the 2000 px square
    scale = 2000 / (2 * ARENA_HALF_SIZE)
    gx, gy = np.meshgrid((steps + ARENA_HALF_SIZE) * scale, (steps + ARENA_HALF_SIZE) * scale)
    np.testing.assert_allclose(mapped[..., 0], gx, atol=25)
    np.testing.assert_allclose(mapped[..., 1], gy, atol=25)

    cell = 0.2 * scale
    np.testing.assert_allclose(np.diff(mapped[..., 0], axis=1), cell, rtol=0.08)
    np.testing.assert_allclose(np.diff(mapped[..., 1], axis=0), cell, rtol=0.08)
    np.testing.assert_allclose(np.diff(mapped[..., 1], axis=1), 0, atol=25)
    np.testing.assert_allclose(np.diff(mapped[..., 0], axis=0), 0, atol=25)
