"""
Synthetic Codice markers and frames for tests.
"""

import os
import sys

import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from decoder import BEACON_POSITIONS, data_bit_positions  # type: ignore
from rectify import CELL_SIZE, GRID_CELLS  # type: ignore


def marker_cells(marker_id, beacon=True):
    """6x6 cell grid (True = white): black border, beacon at data-grid top-left."""
    cells = np.zeros((GRID_CELLS, GRID_CELLS), dtype=bool)
    for bit, (row, col) in enumerate(data_bit_positions()):
        if marker_id & (1 << bit):
            cells[row + 1, col + 1] = True
    if beacon:
        row, col = BEACON_POSITIONS[0]
        cells[row + 1, col + 1] = True
    return cells


def render_patch(marker_id, cell_size=CELL_SIZE, beacon=True):
    """Canonical patch for ``marker_id`` with 0/255 cells."""
    cells = marker_cells(marker_id, beacon=beacon)
    block = np.ones((cell_size, cell_size), dtype=np.uint8)
    return np.kron(cells.astype(np.uint8) * 255, block).astype(np.uint8)


def render_frame(marker_id, top_left, width=640, height=480, cell_size=CELL_SIZE, quarter_turns=0):
    """White BGR frame with one marker pasted at ``top_left`` (x, y).

    ``quarter_turns`` rotates the marker counter-clockwise before pasting.
    """
    patch = np.rot90(render_patch(marker_id, cell_size), quarter_turns)
    frame = np.full((height, width, 3), 255, dtype=np.uint8)
    x, y = top_left
    size = patch.shape[0]
    frame[y:y + size, x:x + size] = patch[:, :, None]
    return frame
