#!/usr/bin/env python3
"""Rotation warpers projecting camera images onto a shared surface."""

import argparse
import sys

import cv2
import numpy as np

WARPERS = ('plane', 'spherical')


def create_warper(kind: str, scale: float):
    """cv2.PyRotationWarper of the given surface kind and scale."""
    if kind not in WARPERS:
        raise ValueError(f"Unknown warper '{kind}', expected one of {sorted(WARPERS)}")
    if scale <= 0:
        raise ValueError(f"Warper scale must be positive, got {scale}")
    return cv2.PyRotationWarper(kind, float(scale))


def warp_points(warper, pts, K: np.ndarray, R: np.ndarray) -> np.ndarray:
    """Map Nx2 image pixels onto the warper's surface."""
    K = np.asarray(K, dtype=np.float32)
    R = np.asarray(R, dtype=np.float32)
    out = [warper.warpPoint((float(x), float(y)), K, R)
           for x, y in np.asarray(pts, dtype=np.float64).reshape(-1, 2)]
    return np.asarray(out, dtype=np.float64).reshape(-1, 2)


def main():
    parser = argparse.ArgumentParser(description='Warp one image with a pure rotation')
    parser.add_argument('--input', '-i', required=True)
    parser.add_argument('--output', '-o', required=True)
    parser.add_argument('--focal', type=float, default=None, help='Focal length in pixels (default: image width)')
    parser.add_argument('--yaw', type=float, default=0.0, help='Yaw in degrees')
    parser.add_argument('--pitch', type=float, default=0.0, help='Pitch in degrees')
    parser.add_argument('--warper', choices=WARPERS, default='plane')
    args = parser.parse_args()

    img = cv2.imread(args.input)
    if img is None:
        print(f"Error: Could not load {args.input}", file=sys.stderr)
        sys.exit(1)

    h, w = img.shape[:2]
    focal = args.focal or float(w)
    K = np.array([[focal, 0, w / 2.0], [0, focal, h / 2.0], [0, 0, 1]], dtype=np.float32)
    R, _ = cv2.Rodrigues(np.radians([args.pitch, args.yaw, 0.0]))

    warper = create_warper(args.warper, focal)
    corner, warped = warper.warp(img, K, R.astype(np.float32), cv2.INTER_LINEAR, cv2.BORDER_REFLECT)
    cv2.imwrite(args.output, warped)
    print(f"Saved {warped.shape[1]}x{warped.shape[0]} (corner {corner}) to {args.output}")


if __name__ == '__main__':
    main()
