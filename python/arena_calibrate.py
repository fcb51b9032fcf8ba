#!/usr/bin/env python3
"""
Arena Calibrate - headless driver for the four-camera arena calibration

Loads one still per camera, matches and stitches them, squares the panorama
on the four arena corners and writes the calibration for the tracker.
"""

import argparse
import logging
import sys

import cv2

from arena_calibration import CalibrationSession, PipelineConfig

WINDOW_NAME = "Arena corners - click TL, TR, BL, BR; 'u' undo, Enter accept, ESC quit"


def pick_corners(session):
    """Let the user click the four arena corners on the panorama preview."""
    latest = {'image': session.panorama.preview.copy()}
    session.subscribe('stitched', lambda img: latest.update(image=img))

    def on_mouse(event, x, y, flags, param):
        if event == cv2.EVENT_LBUTTONDOWN:
            session.point_selected((x, y))

    cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_AUTOSIZE)
    cv2.setMouseCallback(WINDOW_NAME, on_mouse)
    try:
        while True:
            cv2.imshow(WINDOW_NAME, latest['image'])
            key = cv2.waitKey(30) & 0xFF
            if key in (ord('q'), 27):
                return False
            if key == ord('u'):
                session.reset_point()
            if key in (13, 10) and len(session.corners) == 4:
                return True
    finally:
        cv2.destroyWindow(WINDOW_NAME)


def main():
    parser = argparse.ArgumentParser(description='Four-camera arena calibration')
    parser.add_argument('images', nargs=4, help='Calibration image for each camera')
    parser.add_argument('--config', '-c', default=None,
                        help='TOML pipeline config (default: bundled calibration_config.toml)')
    parser.add_argument('--feature-threshold', type=int, default=None,
                        help='Feature detector threshold, lower finds more (default: from config)')
    parser.add_argument('--match-threshold', type=int, default=None,
                        help='Matcher threshold in percent (default: from config)')
    parser.add_argument('--corner', nargs=2, type=float, action='append', metavar=('X', 'Y'),
                        help='Arena corner on the panorama preview; give four times')
    parser.add_argument('--pick', action='store_true',
                        help='Pick the corners by clicking on the panorama preview')
    parser.add_argument('--output', '-o', default='arena_calibration.xml',
                        help='Calibration output (.xml/.yml for OpenCV FileStorage, else JSON)')
    parser.add_argument('--panorama', default=None, help='Save the panorama preview here')
    parser.add_argument('--squared', default=None, help='Save the squared arena image here')
    parser.add_argument('--verbose', '-v', action='store_true')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    config = PipelineConfig.load(args.config)
    if args.verbose:
        config.print_summary()

    images = []
    for path in args.images:
        img = cv2.imread(path, cv2.IMREAD_COLOR)
        if img is None:
            print(f"Error: Could not load {path}")
            return 1
        images.append(img)
        print(f"Loaded {path}: {img.shape[1]}x{img.shape[0]}")

    with CalibrationSession(config) as session:
        session.subscribe('status', lambda msg: print(f"[status] {msg}"))
        if args.feature_threshold is not None:
            session.set_feature_finder_threshold(args.feature_threshold)
        if args.match_threshold is not None:
            session.set_matcher_threshold(args.match_threshold)

        session.set_calibration_images(images)
        if not session.extract_features():
            return 1

        future = session.stitch_images()
        if future is None:
            return 1
        future.exception()  # block until the worker finishes
        panorama = session.wait_for_stitch()
        if panorama is None or not panorama.is_valid(config.compositor.min_width):
            return 1
        if args.panorama:
            cv2.imwrite(args.panorama, panorama.preview)
            print(f"Saved panorama preview to {args.panorama}")

        if args.pick:
            if not pick_corners(session):
                print("Corner picking aborted")
                return 1
        else:
            if not args.corner or len(args.corner) != 4:
                print("Four --corner X Y options (or --pick) are needed to square the arena")
                return 1
            for point in args.corner:
                session.point_selected(point)

        squared = session.square_arena()
        if squared is None:
            return 1
        if args.squared:
            cv2.imwrite(args.squared, squared.image)
            print(f"Saved squared arena to {args.squared}")

        output = session.save_calibration(args.output)
        if output is None:
            return 1

    print("\nCalibration summary:")
    for i, (R, K) in enumerate(zip(output.rotations, output.intrinsics)):
        print(f"  Camera #{i + 1}: f={K[0, 0]:.1f}, pp=({K[0, 2]:.1f}, {K[1, 2]:.1f})")
    for name, (x, y) in zip(('TL', 'TR', 'BL', 'BR'), output.corners):
        print(f"  {name}: ({x:.1f}, {y:.1f})")
    return 0


if __name__ == '__main__':
    sys.exit(main())
