"""
Codice pattern decoding.

A canonical patch is a 6x6 grid of cells: a one-cell border ring around a
4x4 data grid. Exactly one corner of the data grid is white (the orientation
beacon); the other three corners are fixed framing cells and the remaining
12 cells carry the identifier, least-significant bit first in row-major
order once the beacon has been rotated to the top-left.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from rectify import CELL_SIZE, GRID_CELLS, PATCH_SIZE

LOGGER = logging.getLogger(__name__)

BINARY_THRESHOLD = 70  # "white" renders as light gray under real capture
WHITE_LEVEL = 127
BORDER_DISAGREEMENT_LIMIT = 0.6
MAX_MARKER_ID = 4095
DATA_BITS = 12

# Data-grid corners, (row, col) in the 4x4 grid, in beacon-rotation order:
# TL -> 0 deg, TR -> 90 deg, BR -> 180 deg, BL -> 270 deg (clockwise).
BEACON_POSITIONS: List[Tuple[int, int]] = [(0, 0), (0, 3), (3, 3), (3, 0)]
FRAMING_CELLS = frozenset(BEACON_POSITIONS)


@dataclass
class DecodeResult:
    """Identifier read from a canonical patch."""

    marker_id: int
    confidence: float
    rotation: int  # degrees clockwise the content was turned in the patch


def cell_center(row: int, col: int, cell_size: int = CELL_SIZE) -> Tuple[int, int]:
    """Pixel ``(y, x)`` at the centre of a cell of the 6x6 grid."""
    half = cell_size // 2
    return row * cell_size + half, col * cell_size + half


def data_bit_positions() -> List[Tuple[int, int]]:
    """Data-grid cells carrying identifier bits, in bit order."""
    return [
        (row, col)
        for row in range(4)
        for col in range(4)
        if (row, col) not in FRAMING_CELLS
    ]


class PatternDecoder:
    """Stateless reader of canonical patches."""

    def __init__(self, threshold: int = BINARY_THRESHOLD,
                 border_disagreement_limit: float = BORDER_DISAGREEMENT_LIMIT):
        self.threshold = threshold
        self.border_disagreement_limit = border_disagreement_limit

    def decode(self, patch: Optional[np.ndarray]) -> Optional[DecodeResult]:
        """Decode a canonical patch.

        Returns:
            DecodeResult, or None for an empty/too-small patch, an inconsistent
            border, zero or several beacons, or an out-of-range identifier
        """
        gray = self._normalize_patch(patch)
        if gray is None:
            return None

        _, binary = cv2.threshold(gray, self.threshold, 255, cv2.THRESH_BINARY)
        binary = self.normalize_polarity(binary)

        if not self.border_is_consistent(binary):
            LOGGER.debug("Decode rejected: inconsistent border")
            return None

        grid = self.sample_data_grid(binary)
        rotation_steps = self.find_beacon(grid)
        if rotation_steps is None:
            return None

        # np.rot90 turns counter-clockwise, undoing the clockwise turn
        upright = np.rot90(grid, rotation_steps)
        marker_id = self.bits_to_id(upright)
        if not 0 <= marker_id <= MAX_MARKER_ID:
            LOGGER.debug("Decode rejected: id %d out of range", marker_id)
            return None

        return DecodeResult(
            marker_id=marker_id,
            confidence=self.confidence(marker_id),
            rotation=rotation_steps * 90,
        )

    # ------------------------------------------------------------------ #
    # Stages
    # ------------------------------------------------------------------ #
    @staticmethod
    def _normalize_patch(patch: Optional[np.ndarray]) -> Optional[np.ndarray]:
        if patch is None or patch.size == 0:
            return None
        if patch.ndim == 3:
            code = cv2.COLOR_BGRA2GRAY if patch.shape[2] == 4 else cv2.COLOR_BGR2GRAY
            patch = cv2.cvtColor(patch, code)
        height, width = patch.shape[:2]
        if min(height, width) < GRID_CELLS:
            LOGGER.debug("Decode rejected: patch %dx%d too small", width, height)
            return None
        if (height, width) != (PATCH_SIZE, PATCH_SIZE):
            patch = cv2.resize(patch, (PATCH_SIZE, PATCH_SIZE), interpolation=cv2.INTER_AREA)
        if patch.dtype != np.uint8:
            patch = cv2.convertScaleAbs(patch)
        return patch

    @staticmethod
    def normalize_polarity(binary: np.ndarray) -> np.ndarray:
        """Invert a patch whose inner corner cells show inverted polarity.

        A valid marker shows exactly one white data-grid corner. None or all
        four white means the capture is inverted; three white is the inverted
        reading of a valid marker. Two white is left for later stages to reject.
        """
        white = sum(
            1 for row, col in BEACON_POSITIONS
            if binary[cell_center(row + 1, col + 1)] > WHITE_LEVEL
        )
        if white in (0, 3, 4):
            LOGGER.debug("Inverting patch polarity (%d white corners)", white)
            return cv2.bitwise_not(binary)
        return binary

    def border_is_consistent(self, binary: np.ndarray) -> bool:
        """Check the border ring against a colour inferred from its corner cells."""
        near = CELL_SIZE // 2
        far = PATCH_SIZE - 1 - near
        ring = np.concatenate([
            binary[near, near:far + 1],
            binary[far, near:far + 1],
            binary[near:far + 1, near],
            binary[near:far + 1, far],
        ]) > WHITE_LEVEL

        samples = [binary[near, near], binary[near, far], binary[far, near], binary[far, far]]
        white_samples = sum(1 for value in samples if value > WHITE_LEVEL)
        if white_samples == 2:
            border_white = bool(ring.mean() > 0.5)
        else:
            border_white = white_samples > 2

        disagreement = float(np.mean(ring != border_white))
        return disagreement <= self.border_disagreement_limit

    @staticmethod
    def sample_data_grid(binary: np.ndarray) -> np.ndarray:
        """Read the centre pixel of every data cell into a 4x4 bool grid."""
        grid = np.zeros((4, 4), dtype=bool)
        for row in range(4):
            for col in range(4):
                grid[row, col] = binary[cell_center(row + 1, col + 1)] > WHITE_LEVEL
        return grid

    @staticmethod
    def find_beacon(grid: np.ndarray) -> Optional[int]:
        """Return the number of clockwise quarter turns, or None if ambiguous."""
        white = [index for index, (row, col) in enumerate(BEACON_POSITIONS) if grid[row, col]]
        if len(white) != 1:
            LOGGER.debug("Decode rejected: %d orientation beacons", len(white))
            return None
        return white[0]

    @staticmethod
    def bits_to_id(upright: np.ndarray) -> int:
        marker_id = 0
        for bit, (row, col) in enumerate(data_bit_positions()):
            if upright[row, col]:
                marker_id |= 1 << bit
        return marker_id

    @staticmethod
    def confidence(marker_id: int) -> float:
        """Coarse structural confidence; does not measure pixel contrast."""
        confidence = 0.5
        if 0 <= marker_id <= MAX_MARKER_ID:
            confidence += 0.3
        confidence += 0.2
        return min(confidence, 1.0)
