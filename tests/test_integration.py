"""
Integration tests for the Codice-Cam pipeline.

Runs the capture loop end to end on synthetic frames written to disk, and
exercises the configuration helpers the command-line entry point relies on.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import List

import cv2
import numpy as np
import pytest

# Add src and tests directories to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))
sys.path.insert(0, os.path.dirname(__file__))

from main import open_source, parse_args, run
from marker_detect import MarkerDetector
from synthetic import render_frame
from utils import get_config, save_config, validate_config
from video import VideoProcessor


class FrameListSource:
    """Minimal frame source replaying a list of frames."""

    def __init__(self, frames: List[np.ndarray]):
        self.frames = list(frames)

    def capture_frame(self):
        return self.frames.pop(0) if self.frames else None


class TestConfiguration:
    """Configuration defaults, loading and validation."""

    def test_defaults_are_valid(self):
        config = get_config()
        assert validate_config(config)
        assert config["detection"]["min_confidence"] == 0.7
        assert config["contour_filter"]["max_contours"] == 1000

    def test_file_overlays_sections(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"edge_detection": {"low_threshold": 40}}))

        config = get_config(str(path))
        assert config["edge_detection"]["low_threshold"] == 40
        assert config["edge_detection"]["high_threshold"] == 100

    def test_save_and_reload(self, tmp_path):
        config = get_config()
        config["detection"]["min_marker_edge_px"] = 30
        path = tmp_path / "saved.json"

        assert save_config(config, str(path))
        assert get_config(str(path))["detection"]["min_marker_edge_px"] == 30

    def test_invalid_values_fail_validation(self):
        config = get_config()
        config["edge_detection"]["low_threshold"] = 200
        assert not validate_config(config)

    def test_unknown_keys_fail_validation(self):
        config = get_config()
        config["preprocessing"]["sharpen"] = True
        assert not validate_config(config)

    def test_missing_file_uses_defaults(self, tmp_path):
        config = get_config(str(tmp_path / "absent.json"))
        assert config["preprocessing"]["blur_kernel"] == 1


class TestCaptureLoop:
    """Frame source -> detector -> results."""

    def test_run_over_sequence(self):
        frames = [
            np.zeros((480, 640, 3), dtype=np.uint8),
            render_frame(42, top_left=(260, 180)),
            render_frame(7, top_left=(100, 100)),
        ]
        detector = MarkerDetector(get_config())

        processed = run(detector, FrameListSource(frames))

        assert processed == 3
        stats = detector.get_stats()
        assert stats.frames_processed == 3
        assert stats.markers_detected == 2

    def test_max_frames_limit(self):
        frames = [render_frame(42, top_left=(260, 180)) for _ in range(5)]
        detector = MarkerDetector()
        assert run(detector, FrameListSource(frames), max_frames=2) == 2
        assert detector.get_stats().frames_processed == 2

    def test_two_markers_in_one_frame(self):
        frame = render_frame(42, top_left=(60, 60))
        frame[260:380, 400:520] = render_frame(3000, top_left=(0, 0))[0:120, 0:120]

        result = MarkerDetector().detect(frame)
        assert sorted(m.id for m in result.markers) == [42, 3000]

    def test_image_source_via_cli_args(self, tmp_path, capsys):
        path = tmp_path / "marker.png"
        assert cv2.imwrite(str(path), render_frame(42, top_left=(260, 180)))

        args = parse_args(["--image", str(path), "--json"])
        source = open_source(args, get_config()["video"])
        assert isinstance(source, VideoProcessor)

        detector = MarkerDetector()
        assert run(detector, source, emit_json=args.json) == 1
        source.cleanup()

        line = capsys.readouterr().out.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["success"] is True
        assert [m["id"] for m in payload["markers"]] == [42]

    def test_open_source_reports_frame_info(self, tmp_path, caplog):
        path = tmp_path / "marker.png"
        assert cv2.imwrite(str(path), render_frame(42, top_left=(260, 180)))

        caplog.set_level(logging.INFO, logger="main")
        source = open_source(parse_args(["--image", str(path)]), {})

        assert source.get_frame_info() == {"width": 640, "height": 480, "fps": 0, "backend": "image"}
        assert "Frame source: 640x480" in caplog.text

        assert source.capture_frame() is not None
        source.cleanup()
        assert source.get_frame_info() == {}

    def test_unreadable_image(self, tmp_path):
        args = parse_args(["--image", str(tmp_path / "missing.png")])
        assert open_source(args, {}) is None

    def test_debug_dir_writes_snapshots(self, tmp_path):
        config = get_config()
        config["diagnostics"].update(enabled=True, output_dir=str(tmp_path), background_writes=True)
        detector = MarkerDetector(config)

        run(detector, FrameListSource([render_frame(42, top_left=(260, 180))] * 3))
        detector.close()

        frames = [name for name in os.listdir(tmp_path) if name.endswith("_frame.jpg")]
        assert len(frames) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
