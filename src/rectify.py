"""
Perspective rectification of marker candidates into canonical patches.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import cv2
import numpy as np

from candidates import polygon_signed_area

LOGGER = logging.getLogger(__name__)

GRID_CELLS = 6  # border ring plus 4x4 data grid
CELL_SIZE = 20
PATCH_SIZE = GRID_CELLS * CELL_SIZE


@dataclass
class RectifiedPatch:
    """Deskewed marker view and the corners it was sampled from."""

    image: np.ndarray  # PATCH_SIZE x PATCH_SIZE, uint8
    corners: np.ndarray  # (4, 2) float32, in the order mapped to the patch corners
    deskew_angle: float  # degrees, corner 0 -> corner 1


def normalize_winding(corners: np.ndarray) -> np.ndarray:
    """Keep corner 0 and make the traversal clockwise on screen.

    Counter-clockwise quads would rectify into a mirrored patch. No sorting
    by position is done; rotation is resolved later from the decoded beacon.
    """
    if polygon_signed_area(corners) < 0:
        return corners[[0, 3, 2, 1]]
    return corners


def deskew_angle(corners: np.ndarray) -> float:
    """Angle of corner 0 -> corner 1, taken after winding normalisation."""
    dx, dy = corners[1] - corners[0]
    return math.degrees(math.atan2(float(dy), float(dx)))


class Rectifier:
    """Maps a quadrilateral onto a fixed-size square via a homography."""

    def __init__(self, patch_size: int = PATCH_SIZE):
        self.patch_size = patch_size
        side = float(patch_size - 1)
        self._destination = np.array(
            [[0.0, 0.0], [side, 0.0], [side, side], [0.0, side]], dtype=np.float32
        )

    def rectify(self, gray: np.ndarray, corners: Sequence) -> Optional[RectifiedPatch]:
        """Resample ``gray`` through the candidate's perspective transform.

        Args:
            gray: preprocessed single-channel frame
            corners: the candidate's four corners

        Returns:
            RectifiedPatch or None when fewer than 4 corners are given or the
            resampled patch is empty
        """
        points = np.asarray(corners, dtype=np.float32).reshape(-1, 2)
        if points.shape[0] < 4 or gray is None or gray.size == 0:
            return None

        points = normalize_winding(points[:4])
        transform = cv2.getPerspectiveTransform(points, self._destination)
        patch = cv2.warpPerspective(
            gray,
            transform,
            (self.patch_size, self.patch_size),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_REPLICATE,
        )
        if patch is None or patch.size == 0:
            return None

        return RectifiedPatch(image=patch, corners=points, deskew_angle=deskew_angle(points))
