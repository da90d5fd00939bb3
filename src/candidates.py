"""
Quadrilateral candidate extraction from an edge map.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from errors import ConfigurationError

LOGGER = logging.getLogger(__name__)


@dataclass
class ContourFilterConfig:
    """Size and shape envelope for marker candidates."""

    min_area: float = 500.0
    max_area: float = 100000.0
    min_perimeter: float = 80.0
    epsilon_ratio: float = 0.02  # polygon approximation tolerance, fraction of arc length
    min_aspect: float = 0.8
    max_aspect: float = 1.25
    max_contours: int = 1000  # boundaries beyond this are dropped

    def validate(self):
        if self.min_area < 0:
            raise ConfigurationError("min_area", self.min_area, "must be >= 0")
        if self.min_area >= self.max_area:
            raise ConfigurationError("max_area", self.max_area, f"must be > min_area ({self.min_area})")
        if self.min_perimeter < 0:
            raise ConfigurationError("min_perimeter", self.min_perimeter, "must be >= 0")
        if not 0.02 <= self.epsilon_ratio <= 0.05:
            raise ConfigurationError("epsilon_ratio", self.epsilon_ratio, "must be within [0.02, 0.05]")
        if not 0 < self.min_aspect <= 1.0 <= self.max_aspect:
            raise ConfigurationError(
                "min_aspect", (self.min_aspect, self.max_aspect), "must satisfy 0 < min <= 1 <= max"
            )
        if self.max_contours < 1:
            raise ConfigurationError("max_contours", self.max_contours, "must be >= 1")


@dataclass
class MarkerCandidate:
    """A boundary that approximated to a plausible square."""

    corners: np.ndarray  # shape (4, 2), float32, in approximation order
    contour: np.ndarray
    area: float
    perimeter: float
    aspect_ratio: float

    @property
    def edge_length(self) -> float:
        """Distance between corner 0 and corner 1."""
        return float(np.linalg.norm(self.corners[1] - self.corners[0]))

    @property
    def center(self) -> Tuple[float, float]:
        c = self.corners.mean(axis=0)
        return float(c[0]), float(c[1])


class CandidateExtractor:
    """Finds near-square quadrilaterals among the outer boundaries of an edge map."""

    def __init__(self, config: Optional[ContourFilterConfig] = None):
        self.config = config or ContourFilterConfig()
        self.config.validate()
        self.last_contour_count = 0

    def set_contour_filter_params(self, min_area: float = 500.0, max_area: float = 100000.0,
                                  min_perimeter: float = 80.0, **extra):
        """Replace the filter envelope.

        Extra keyword arguments set the remaining ``ContourFilterConfig``
        fields; unspecified ones fall back to their defaults.

        Raises:
            ConfigurationError: if the values are rejected
        """
        candidate = ContourFilterConfig(min_area=min_area, max_area=max_area,
                                        min_perimeter=min_perimeter, **extra)
        candidate.validate()
        self.config = candidate
        LOGGER.info(
            "Contour filter params updated: area=[%s, %s], min_perimeter=%s",
            min_area, max_area, min_perimeter,
        )

    def find_candidates(self, edge_map: np.ndarray) -> List[MarkerCandidate]:
        """Return the candidates in boundary-search order."""
        if edge_map is None or edge_map.size == 0:
            return []

        contours = cv2.findContours(edge_map, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)[-2]
        self.last_contour_count = len(contours)
        if len(contours) > self.config.max_contours:
            LOGGER.debug(
                "Dropping %d boundaries over the cap of %d",
                len(contours) - self.config.max_contours,
                self.config.max_contours,
            )
            contours = contours[: self.config.max_contours]

        candidates = []
        for contour in contours:
            candidate = self.evaluate_contour(contour)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def evaluate_contour(self, contour: np.ndarray) -> Optional[MarkerCandidate]:
        """Apply the shape and size checks to a single boundary."""
        cfg = self.config
        if len(contour) < 4:
            return None

        area = cv2.contourArea(contour)
        if area < cfg.min_area or area > cfg.max_area:
            return None

        perimeter = cv2.arcLength(contour, True)
        if perimeter < cfg.min_perimeter:
            return None

        approx = cv2.approxPolyDP(contour, cfg.epsilon_ratio * perimeter, True)
        if len(approx) != 4:
            return None

        corners = approx.reshape(4, 2).astype(np.float32)
        if abs(polygon_signed_area(corners)) < 1.0:
            return None  # degenerate quad

        _, _, width, height = cv2.boundingRect(contour)
        if height == 0:
            return None
        aspect_ratio = width / float(height)
        if aspect_ratio < cfg.min_aspect or aspect_ratio > cfg.max_aspect:
            return None

        return MarkerCandidate(
            corners=corners,
            contour=contour,
            area=float(area),
            perimeter=float(perimeter),
            aspect_ratio=aspect_ratio,
        )


def polygon_signed_area(points: np.ndarray) -> float:
    """Shoelace area in image coordinates; positive when clockwise on screen."""
    x = points[:, 0].astype(np.float64)
    y = points[:, 1].astype(np.float64)
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))
