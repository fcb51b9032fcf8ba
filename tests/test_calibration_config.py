import json

import numpy as np
import pytest

from arena_calibration.calib import CalibrationOutput, CameraParams, CORNER_KEYS

from conftest import rotation


@pytest.fixture
def output():
    cameras = [CameraParams(focal=300.0 + i, aspect=1.01, ppx=200.0, ppy=190.0 + i,
                            R=rotation(0.1 * i, -0.05 * i)) for i in range(4)]
    corners = [(10.5, 20.25), (1500.0, 30.0), (12.0, 1490.0), (1520.0, 1510.5)]
    return CalibrationOutput.from_cameras(corners, cameras)


def assert_same(a, b):
    np.testing.assert_allclose(np.asarray(a.corners), np.asarray(b.corners), atol=1e-4)
    assert len(b.rotations) == len(b.intrinsics) == 4
    for ra, rb in zip(a.rotations, b.rotations):
        np.testing.assert_allclose(ra, rb, atol=1e-12)
    for ka, kb in zip(a.intrinsics, b.intrinsics):
        np.testing.assert_allclose(ka, kb, atol=1e-12)


def test_camera_intrinsic_matrix():
    K = CameraParams(focal=300.0, aspect=1.5, ppx=10.0, ppy=20.0).K()
    np.testing.assert_array_equal(K, [[300, 0, 10], [0, 450, 20], [0, 0, 1]])


def test_camera_params_dict_round_trip():
    cam = CameraParams(focal=250.0, aspect=0.9, ppx=1.0, ppy=2.0, R=rotation(0.2, 0.1))
    back = CameraParams.from_dict(json.loads(json.dumps(cam.to_dict())))
    np.testing.assert_allclose(back.K(), cam.K())
    np.testing.assert_allclose(back.R, cam.R)


def test_record_keys(output):
    d = output.to_dict()
    assert set(d) == set(CORNER_KEYS) | {'R', 'K'}
    assert d['corner1'] == [10.5, 20.25]
    assert d['corner4'] == [1520.0, 1510.5]
    assert np.asarray(d['R']).shape == (4, 3, 3)


def test_json_round_trip(output, tmp_path):
    path = tmp_path / 'calibration.json'
    output.save(path)
    assert 'calibration' in json.loads(path.read_text())
    assert_same(output, CalibrationOutput.load(path))


@pytest.mark.parametrize('suffix', ['.xml', '.yml'])
def test_filestorage_round_trip(output, tmp_path, suffix):
    path = tmp_path / f'calibration{suffix}'
    output.save(path)
    text = path.read_text()
    for key in CORNER_KEYS:
        assert key in text
    assert_same(output, CalibrationOutput.load(path))


def test_detail_camera_round_trip():
    cam = CameraParams(focal=310.0, aspect=1.02, ppx=198.0, ppy=203.5, R=rotation(0.2, -0.1))
    detail = cam.to_detail()
    assert detail.R.dtype == np.float32
    back = CameraParams.from_detail(detail)
    np.testing.assert_allclose(back.K(), cam.K())
    np.testing.assert_allclose(back.R, cam.R, atol=1e-6)
