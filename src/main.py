"""
Main entry point for the Codice-Cam detector.

Runs the capture loop: read a frame, detect markers, log the result.

Usage:
    python main.py                          # Detect from the default camera
    python main.py --video clip.mp4         # Detect from a video file
    python main.py --image frame.png        # Detect in a single image
    python main.py --debug-dir debug_output # Write throttled diagnostic snapshots
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from marker_detect import MarkerDetector
from utils import get_config, setup_logging, validate_config
from video import VideoProcessor

LOGGER = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Codice-Cam - square fiducial marker detection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument("--camera", "-c", type=int, default=None, help="Camera index")
    source.add_argument("--video", type=str, default=None, help="Video file to process")
    source.add_argument("--image", type=str, default=None, help="Single image to process")

    parser.add_argument("--config", type=str, default=None, help="JSON configuration file")
    parser.add_argument("--debug-dir", type=str, default=None,
                        help="Enable diagnostic snapshots in this directory")
    parser.add_argument("--max-frames", type=int, default=0,
                        help="Stop after this many frames (0 = until the source ends)")
    parser.add_argument("--json", action="store_true", help="Print detections as JSON lines")
    parser.add_argument("--verbose", "-V", action="store_true", help="Enable verbose/debug logging")

    return parser.parse_args(argv)


def open_source(args: argparse.Namespace, video_config: dict) -> Optional[VideoProcessor]:
    if args.camera is not None:
        video_config = dict(video_config, camera_id=args.camera)
    source = VideoProcessor(video_config)

    if args.image:
        ok = source.load_image(args.image)
    elif args.video:
        ok = source.load_video_file(args.video)
    else:
        ok = source.initialize()
    if not ok:
        return None

    info = source.get_frame_info()
    LOGGER.info(
        "Frame source: %sx%s @ %s fps (%s)",
        info.get('width'), info.get('height'), info.get('fps'), info.get('backend'),
    )
    return source


def run(detector: MarkerDetector, source: VideoProcessor, max_frames: int = 0,
        emit_json: bool = False) -> int:
    """Process frames until the source is exhausted.

    Returns:
        int: Number of frames read
    """
    frames = 0
    while max_frames <= 0 or frames < max_frames:
        frame = source.capture_frame()
        if frame is None:
            break
        frames += 1

        result = detector.detect(frame)
        if not result.success:
            LOGGER.warning("Frame %d skipped: %s", frames, result.error)
            continue

        for marker in result.markers:
            LOGGER.info(
                "Marker %d at (%.1f, %.1f) angle=%.1f conf=%.2f",
                marker.id, marker.center[0], marker.center[1], marker.angle, marker.confidence,
            )
        if emit_json:
            print(json.dumps(result.to_dict()))
    return frames


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(level=log_level)

    config = get_config(args.config)
    if args.debug_dir:
        config["diagnostics"].update(enabled=True, output_dir=args.debug_dir)
    if args.verbose:
        config["verbose"] = True
    if not validate_config(config):
        sys.exit(2)

    LOGGER.info("Starting Codice-Cam...")
    source = open_source(args, config["video"])
    if source is None:
        LOGGER.error("Could not open frame source")
        sys.exit(1)

    detector = MarkerDetector(config)
    try:
        run(detector, source, max_frames=args.max_frames, emit_json=args.json)
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")
    finally:
        source.cleanup()
        detector.close()

    LOGGER.info("%s", detector.detection_stats())
    sys.exit(0)


if __name__ == "__main__":
    main()
