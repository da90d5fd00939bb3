"""
Marker detection module.

Locates square Codice markers in video frames and decodes each into a
12-bit identifier. One call to ``MarkerDetector.detect`` processes one frame
synchronously: preprocessing, candidate extraction, then rectification and
decoding per candidate. A detector instance holds unsynchronized state
(statistics, snapshot throttle) and must be driven from a single thread;
use one instance per camera.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from candidates import CandidateExtractor, ContourFilterConfig, MarkerCandidate
from decoder import PatternDecoder
from diagnostics import DiagnosticsConfig, DiagnosticsRecorder, RunStatistics
from errors import ConfigurationError, DetectionError, InputError
from preprocess import EdgeDetectionConfig, ImageProcessor, PreprocessingConfig
from rectify import Rectifier

LOGGER = logging.getLogger(__name__)


@dataclass
class DetectionConfig:
    """Acceptance limits applied to decoded candidates."""

    min_marker_edge_px: float = 40.0
    max_marker_edge_px: float = 200.0
    min_confidence: float = 0.7

    def validate(self):
        if self.min_marker_edge_px < 0:
            raise ConfigurationError("min_marker_edge_px", self.min_marker_edge_px, "must be >= 0")
        if self.max_marker_edge_px <= self.min_marker_edge_px:
            raise ConfigurationError(
                "max_marker_edge_px",
                self.max_marker_edge_px,
                f"must be > min_marker_edge_px ({self.min_marker_edge_px})",
            )
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ConfigurationError("min_confidence", self.min_confidence, "must be within [0, 1]")


@dataclass(frozen=True)
class DecodedMarker:
    """A marker accepted in one frame."""

    id: int
    confidence: float
    center: Tuple[float, float]
    angle: float  # orientation after beacon resolution, degrees in [0, 360)
    deskew_angle: float  # corner 0 -> corner 1, degrees
    corners: Tuple[Tuple[float, float], ...]

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "confidence": self.confidence,
            "center": list(self.center),
            "angle": self.angle,
            "deskew_angle": self.deskew_angle,
            "corners": [list(c) for c in self.corners],
        }


@dataclass
class DetectionResult:
    """Outcome of processing one frame."""

    success: bool
    markers: List[DecodedMarker] = field(default_factory=list)
    error: Optional[DetectionError] = None
    candidate_count: int = 0
    processing_time: float = 0.0
    frame_index: int = 0

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "markers": [m.to_dict() for m in self.markers],
            "error": str(self.error) if self.error else None,
            "candidate_count": self.candidate_count,
            "processing_time_ms": self.processing_time * 1000,
            "frame_index": self.frame_index,
        }


def _section(config: Dict, name: str, cls):
    values = dict(config.get(name) or {})
    return cls(**{k: v for k, v in values.items() if k in cls.__dataclass_fields__})


class MarkerDetector:
    """Handles marker detection in video frames."""

    def __init__(self, config: Optional[Dict] = None):
        """Initialize marker detector.

        Args:
            config: Configuration dictionary with optional ``preprocessing``,
                ``edge_detection``, ``contour_filter``, ``detection`` and
                ``diagnostics`` sections (see ``utils.get_config``)
        """
        cfg = dict(config or {})
        self.image_processor = ImageProcessor(
            _section(cfg, "preprocessing", PreprocessingConfig),
            _section(cfg, "edge_detection", EdgeDetectionConfig),
        )
        self.extractor = CandidateExtractor(_section(cfg, "contour_filter", ContourFilterConfig))
        self.rectifier = Rectifier()
        self.decoder = PatternDecoder()

        self.config = _section(cfg, "detection", DetectionConfig)
        self.config.validate()

        self.verbose = bool(cfg.get("verbose", False))
        self.stats = RunStatistics()
        self.diagnostics: Optional[DiagnosticsRecorder] = None

        diagnostics_cfg = _section(cfg, "diagnostics", DiagnosticsConfig)
        if diagnostics_cfg.enabled:
            self.enable_diagnostics(diagnostics_cfg)

        LOGGER.info(
            "MarkerDetector initialized: edge=[%s, %s]px, min_confidence=%.2f",
            self.config.min_marker_edge_px,
            self.config.max_marker_edge_px,
            self.config.min_confidence,
        )

    # ------------------------------------------------------------------ #
    # Configuration
    # ------------------------------------------------------------------ #
    def set_detection_params(self, min_marker_edge_px: float = 40.0, max_marker_edge_px: float = 200.0,
                             min_confidence: float = 0.7):
        """Replace the acceptance limits.

        Raises:
            ConfigurationError: if the values are rejected; the previous
                limits remain in effect.
        """
        candidate = DetectionConfig(min_marker_edge_px, max_marker_edge_px, min_confidence)
        candidate.validate()
        self.config = candidate
        LOGGER.info(
            "Detection params updated: edge=[%s, %s]px, confidence=%.2f",
            min_marker_edge_px, max_marker_edge_px, min_confidence,
        )

    def set_preprocessing_params(self, blur_kernel: int = 1, contrast_alpha: float = 1.3,
                                 brightness_beta: float = 20.0):
        self.image_processor.set_preprocessing_params(blur_kernel, contrast_alpha, brightness_beta)

    def set_edge_detection_params(self, low_threshold: float = 30.0, high_threshold: float = 100.0):
        self.image_processor.set_edge_detection_params(low_threshold, high_threshold)

    def set_contour_filter_params(self, min_area: float = 500.0, max_area: float = 100000.0,
                                  min_perimeter: float = 80.0):
        self.extractor.set_contour_filter_params(min_area, max_area, min_perimeter)

    def set_verbose_mode(self, enable: bool):
        """Log per-frame summaries at INFO instead of DEBUG."""
        self.verbose = bool(enable)

    def enable_diagnostics(self, config: Optional[DiagnosticsConfig] = None):
        """Start writing throttled snapshots."""
        self.disable_diagnostics()
        self.diagnostics = DiagnosticsRecorder(config or DiagnosticsConfig(enabled=True))
        LOGGER.info("Diagnostics enabled, writing to %s", self.diagnostics.config.output_dir)

    def disable_diagnostics(self):
        if self.diagnostics is not None:
            self.diagnostics.close()
            self.diagnostics = None

    # ------------------------------------------------------------------ #
    # Detection
    # ------------------------------------------------------------------ #
    def detect(self, frame: Optional[np.ndarray]) -> DetectionResult:
        """Detect markers in the given frame.

        An empty frame yields ``success=False`` with an ``InputError``; a frame
        without markers yields ``success=True`` and an empty marker list.
        """
        if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
            LOGGER.warning("Input frame is empty")
            return DetectionResult(success=False, error=InputError("input frame is empty"))

        start = time.perf_counter()
        self.stats.frames_processed += 1
        frame_index = self.stats.frames_processed

        try:
            processed = self.image_processor.process_frame(frame)
            if processed is None:
                return DetectionResult(
                    success=False, error=InputError("frame preprocessing produced no output"),
                    frame_index=frame_index,
                )
            gray, edges = processed
            candidates = self.extractor.find_candidates(edges)
        except cv2.error as exc:
            LOGGER.error("OpenCV error while processing frame %d: %s", frame_index, exc)
            return DetectionResult(success=False, error=DetectionError(str(exc)), frame_index=frame_index)

        keep_crops = self.diagnostics is not None and self.diagnostics.config.save_crops
        crops: List[np.ndarray] = []
        markers: List[DecodedMarker] = []

        for index, candidate in enumerate(candidates):
            self.stats.detection_attempts += 1
            try:
                marker = self._process_candidate(gray, candidate, crops if keep_crops else None)
            except cv2.error as exc:
                LOGGER.warning("Error processing candidate %d: %s", index, exc)
                continue

            if marker is None:
                LOGGER.debug("Candidate %d did not match the marker pattern", index)
                continue
            if marker.confidence < self.config.min_confidence:
                LOGGER.debug("Candidate %d below confidence (%.2f)", index, marker.confidence)
                continue

            markers.append(marker)
            self.stats.markers_detected += 1

        if self.diagnostics is not None:
            self.diagnostics.observe(
                frame, edges, [c.corners for c in candidates], markers, crops, frame_index
            )

        elapsed = time.perf_counter() - start
        log = LOGGER.info if self.verbose else LOGGER.debug
        log(
            "Frame %d: %d contours, %d candidates, %d markers (%.1f ms)",
            frame_index, self.extractor.last_contour_count, len(candidates), len(markers),
            elapsed * 1000,
        )

        return DetectionResult(
            success=True,
            markers=markers,
            candidate_count=len(candidates),
            processing_time=elapsed,
            frame_index=frame_index,
        )

    def _process_candidate(self, gray: np.ndarray, candidate: MarkerCandidate,
                           crops: Optional[List[np.ndarray]]) -> Optional[DecodedMarker]:
        edge_length = candidate.edge_length
        if not self.config.min_marker_edge_px <= edge_length <= self.config.max_marker_edge_px:
            LOGGER.debug("Candidate edge %.1fpx outside marker size limits", edge_length)
            return None

        rectified = self.rectifier.rectify(gray, candidate.corners)
        if rectified is None:
            return None
        if crops is not None:
            crops.append(rectified.image)

        decoded = self.decoder.decode(rectified.image)
        if decoded is None:
            return None

        corners = tuple((float(x), float(y)) for x, y in rectified.corners)
        center = rectified.corners.mean(axis=0)
        return DecodedMarker(
            id=decoded.marker_id,
            confidence=decoded.confidence,
            center=(float(center[0]), float(center[1])),
            angle=(rectified.deskew_angle + decoded.rotation) % 360.0,
            deskew_angle=rectified.deskew_angle,
            corners=corners,
        )

    def decode_region(self, region: np.ndarray) -> Optional[Tuple[int, float]]:
        """Decode a pre-extracted, front-facing marker region.

        Returns:
            ``(marker_id, confidence)`` or None
        """
        decoded = self.decoder.decode(region)
        if decoded is None:
            return None
        return decoded.marker_id, decoded.confidence

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #
    @staticmethod
    def get_marker_corners(marker: DecodedMarker) -> np.ndarray:
        """Extract corner coordinates from detected marker."""
        return np.asarray(marker.corners, dtype=np.float32)

    @staticmethod
    def get_marker_id(marker: DecodedMarker) -> int:
        """Extract ID from detected marker."""
        return marker.id

    def get_stats(self) -> RunStatistics:
        """Snapshot of the run counters."""
        return self.stats.copy()

    def detection_stats(self) -> str:
        return self.stats.summary()

    def reset(self):
        """Clear statistics and the snapshot throttle."""
        self.stats = RunStatistics()
        if self.diagnostics is not None:
            self.diagnostics.reset()

    def close(self):
        self.disable_diagnostics()
