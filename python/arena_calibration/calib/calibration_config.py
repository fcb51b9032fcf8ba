"""
Calibration records for the four-camera arena rig.
"""

from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import List, Tuple

import cv2
import numpy as np

CORNER_KEYS = ('corner1', 'corner2', 'corner3', 'corner4')  # TL, TR, BL, BR
FILESTORAGE_SUFFIXES = ('.xml', '.yml', '.yaml')


@dataclass
class CameraParams:
    """Per-camera rotation and intrinsics."""
    focal: float = 1.0
    aspect: float = 1.0  # fy / fx
    ppx: float = 0.0  # Principal point X in pixels
    ppy: float = 0.0  # Principal point Y in pixels
    R: np.ndarray = field(default_factory=lambda: np.eye(3))  # Camera-to-world rotation

    def K(self) -> np.ndarray:
        """Intrinsic matrix built from focal, aspect and principal point."""
        return np.array([
            [self.focal, 0.0, self.ppx],
            [0.0, self.focal * self.aspect, self.ppy],
            [0.0, 0.0, 1.0],
        ], dtype=np.float64)

    def copy(self) -> 'CameraParams':
        return CameraParams(focal=self.focal, aspect=self.aspect, ppx=self.ppx,
                            ppy=self.ppy, R=np.array(self.R, dtype=np.float64, copy=True))

    @classmethod
    def from_detail(cls, cam):
        """Copy of a cv2.detail_CameraParams."""
        return cls(focal=float(cam.focal), aspect=float(cam.aspect), ppx=float(cam.ppx),
                   ppy=float(cam.ppy), R=np.asarray(cam.R, dtype=np.float64).copy())

    def to_detail(self):
        """cv2.detail_CameraParams with the float32 rotation the stitching module expects."""
        cam = cv2.detail_CameraParams()
        cam.focal = float(self.focal)
        cam.aspect = float(self.aspect)
        cam.ppx = float(self.ppx)
        cam.ppy = float(self.ppy)
        cam.R = np.asarray(self.R, dtype=np.float32)
        cam.t = np.zeros((3, 1), dtype=np.float64)
        return cam

    def to_dict(self):
        return {
            'focal': float(self.focal),
            'aspect': float(self.aspect),
            'ppx': float(self.ppx),
            'ppy': float(self.ppy),
            'R': np.asarray(self.R, dtype=np.float64).tolist(),
        }

    @classmethod
    def from_dict(cls, d):
        return cls(
            focal=d.get('focal', 1.0),
            aspect=d.get('aspect', 1.0),
            ppx=d.get('ppx', 0.0),
            ppy=d.get('ppy', 0.0),
            R=np.array(d.get('R', np.eye(3)), dtype=np.float64),
        )


@dataclass
class CalibrationOutput:
    """Squaring corners plus the refined rotation and intrinsics of each camera.

    Corners are stored in top-left, top-right, bottom-left, bottom-right order
    and are expressed in full-resolution panorama pixels.
    """
    corners: List[Tuple[float, float]]
    rotations: List[np.ndarray]
    intrinsics: List[np.ndarray]

    @classmethod
    def from_cameras(cls, corners, cameras: List[CameraParams]):
        return cls(
            corners=[(float(x), float(y)) for x, y in np.asarray(corners, dtype=np.float64)],
            rotations=[np.asarray(cam.R, dtype=np.float64) for cam in cameras],
            intrinsics=[cam.K() for cam in cameras],
        )

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        d = {key: [float(x), float(y)] for key, (x, y) in zip(CORNER_KEYS, self.corners)}
        d['R'] = [np.asarray(r, dtype=np.float64).tolist() for r in self.rotations]
        d['K'] = [np.asarray(k, dtype=np.float64).tolist() for k in self.intrinsics]
        return d

    @classmethod
    def from_dict(cls, d):
        """Create from dictionary (JSON format)."""
        return cls(
            corners=[tuple(float(v) for v in d[key]) for key in CORNER_KEYS],
            rotations=[np.array(r, dtype=np.float64) for r in d.get('R', [])],
            intrinsics=[np.array(k, dtype=np.float64) for k in d.get('K', [])],
        )

    @classmethod
    def load_json(cls, filepath):
        """Load calibration from JSON file."""
        with open(filepath) as f:
            data = json.load(f)
            return cls.from_dict(data.get('calibration', data))

    def save_json(self, filepath):
        """Save calibration to JSON file."""
        with open(filepath, 'w') as f:
            json.dump({'calibration': self.to_dict()}, f, indent=2)

    def save_filestorage(self, filepath):
        """Write an OpenCV FileStorage record (XML or YAML, chosen by suffix)."""
        fs = cv2.FileStorage(str(filepath), cv2.FILE_STORAGE_WRITE)
        if not fs.isOpened():
            raise OSError(f"Cannot open {filepath} for writing")
        try:
            for key, corner in zip(CORNER_KEYS, self.corners):
                fs.write(key, np.array(corner, dtype=np.float32).reshape(1, 2))
            for name, mats in (('R', self.rotations), ('K', self.intrinsics)):
                fs.startWriteStruct(name, cv2.FileNode_SEQ)
                for mat in mats:
                    fs.write('', np.asarray(mat, dtype=np.float64))
                fs.endWriteStruct()
        finally:
            fs.release()

    @classmethod
    def load_filestorage(cls, filepath):
        fs = cv2.FileStorage(str(filepath), cv2.FILE_STORAGE_READ)
        if not fs.isOpened():
            raise OSError(f"Cannot open {filepath} for reading")
        try:
            corners = [tuple(float(v) for v in fs.getNode(key).mat().ravel()) for key in CORNER_KEYS]
            mats = {}
            for name in ('R', 'K'):
                node = fs.getNode(name)
                mats[name] = [node.at(i).mat().astype(np.float64) for i in range(node.size())]
        finally:
            fs.release()
        return cls(corners=corners, rotations=mats['R'], intrinsics=mats['K'])

    def save(self, filepath):
        """Save using FileStorage for .xml/.yml/.yaml paths and JSON otherwise."""
        if Path(filepath).suffix.lower() in FILESTORAGE_SUFFIXES:
            self.save_filestorage(filepath)
        else:
            self.save_json(filepath)

    @classmethod
    def load(cls, filepath):
        if Path(filepath).suffix.lower() in FILESTORAGE_SUFFIXES:
            return cls.load_filestorage(filepath)
        return cls.load_json(filepath)
