"""
Frame preprocessing for marker detection.

Turns a raw camera frame into a grayscale, contrast-adjusted raster and a
binary edge map. The grayscale raster is kept for later rectification since
decoding samples intensity, not edges.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from errors import ConfigurationError

LOGGER = logging.getLogger(__name__)


@dataclass
class PreprocessingConfig:
    """Grayscale smoothing and linear contrast settings."""

    blur_kernel: int = 1  # Gaussian kernel size, 1 disables blurring
    contrast_alpha: float = 1.3
    brightness_beta: float = 20.0

    def validate(self):
        if not isinstance(self.blur_kernel, (int, np.integer)) or self.blur_kernel < 1:
            raise ConfigurationError("blur_kernel", self.blur_kernel, "must be a positive integer")
        if self.blur_kernel % 2 == 0:
            raise ConfigurationError("blur_kernel", self.blur_kernel, "must be odd")
        if self.contrast_alpha <= 0:
            raise ConfigurationError("contrast_alpha", self.contrast_alpha, "must be > 0")


@dataclass
class EdgeDetectionConfig:
    """Canny hysteresis thresholds and the closing structuring element."""

    low_threshold: float = 30.0
    high_threshold: float = 100.0
    close_kernel: int = 3

    def validate(self):
        if self.low_threshold < 0:
            raise ConfigurationError("low_threshold", self.low_threshold, "must be >= 0")
        if self.high_threshold <= self.low_threshold:
            raise ConfigurationError(
                "high_threshold", self.high_threshold, f"must be > low_threshold ({self.low_threshold})"
            )
        if self.close_kernel not in (2, 3):
            raise ConfigurationError("close_kernel", self.close_kernel, "must be 2 or 3")


def to_grayscale(frame: np.ndarray) -> np.ndarray:
    """Return a single-channel copy of ``frame``."""
    if frame.ndim == 2:
        return frame.copy()
    channels = frame.shape[2]
    if channels == 1:
        return frame[:, :, 0].copy()
    if channels == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)


class ImageProcessor:
    """Grayscale conversion, noise reduction, contrast and edge detection."""

    def __init__(
        self,
        preprocessing: Optional[PreprocessingConfig] = None,
        edge_detection: Optional[EdgeDetectionConfig] = None,
    ):
        self.preprocessing = preprocessing or PreprocessingConfig()
        self.edge_detection = edge_detection or EdgeDetectionConfig()
        self.preprocessing.validate()
        self.edge_detection.validate()

        self._close_element = self._build_close_element(self.edge_detection.close_kernel)
        self.preprocessed_frame: Optional[np.ndarray] = None

    @staticmethod
    def _build_close_element(size: int) -> np.ndarray:
        return cv2.getStructuringElement(cv2.MORPH_RECT, (size, size))

    # ------------------------------------------------------------------ #
    # Configuration
    # ------------------------------------------------------------------ #
    def set_preprocessing_params(self, blur_kernel: int = 1, contrast_alpha: float = 1.3,
                                 brightness_beta: float = 20.0):
        """Replace the preprocessing parameters.

        Raises:
            ConfigurationError: if the values are rejected; the previous
                parameters remain in effect.
        """
        candidate = PreprocessingConfig(blur_kernel, contrast_alpha, brightness_beta)
        candidate.validate()
        self.preprocessing = candidate
        LOGGER.info(
            "Preprocessing params updated: blur=%s, contrast=%.2f, brightness=%.1f",
            blur_kernel, contrast_alpha, brightness_beta,
        )

    def set_edge_detection_params(self, low_threshold: float = 30.0, high_threshold: float = 100.0,
                                  close_kernel: int = 3):
        """Replace the edge detection parameters.

        Raises:
            ConfigurationError: if the values are rejected; the previous
                parameters remain in effect.
        """
        candidate = EdgeDetectionConfig(low_threshold, high_threshold, close_kernel)
        candidate.validate()
        self.edge_detection = candidate
        self._close_element = self._build_close_element(close_kernel)
        LOGGER.info("Edge detection params updated: low=%s, high=%s", low_threshold, high_threshold)

    def parameter_info(self) -> Dict[str, Dict]:
        """Describe the parameters currently in effect."""
        return {
            "preprocessing": asdict(self.preprocessing),
            "edge_detection": asdict(self.edge_detection),
        }

    # ------------------------------------------------------------------ #
    # Processing
    # ------------------------------------------------------------------ #
    def process_frame(self, frame: Optional[np.ndarray]) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """Preprocess ``frame`` and compute its edge map.

        Args:
            frame: BGR, BGRA or single-channel 8-bit image

        Returns:
            ``(gray, edges)`` or None if the frame is empty
        """
        if frame is None or frame.size == 0:
            LOGGER.debug("Skipping empty frame")
            return None

        gray = self.preprocess(frame)
        edges = self.detect_edges(gray)
        self.preprocessed_frame = gray
        return gray, edges

    def preprocess(self, frame: np.ndarray) -> np.ndarray:
        """Grayscale, optional blur, then ``clamp(alpha * in + beta, 0, 255)``."""
        cfg = self.preprocessing
        gray = to_grayscale(frame)
        if gray.dtype != np.uint8:
            gray = cv2.convertScaleAbs(gray)

        if cfg.blur_kernel > 1:
            gray = cv2.GaussianBlur(gray, (cfg.blur_kernel, cfg.blur_kernel), 0)

        if cfg.contrast_alpha != 1.0 or cfg.brightness_beta != 0:
            # addWeighted saturates to [0, 255]
            gray = cv2.addWeighted(gray, cfg.contrast_alpha, gray, 0.0, cfg.brightness_beta)

        return gray

    def detect_edges(self, gray: np.ndarray) -> np.ndarray:
        """Canny edges followed by one morphological close."""
        cfg = self.edge_detection
        edges = cv2.Canny(gray, cfg.low_threshold, cfg.high_threshold)
        return cv2.morphologyEx(edges, cv2.MORPH_CLOSE, self._close_element)
