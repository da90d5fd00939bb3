"""
Run statistics and throttled diagnostic snapshots.

Snapshots (annotated frame, edge map, per-candidate crops) are written only
when the set of accepted markers changes noticeably, so a stationary marker
does not flood the output directory. Writes can be handed to a background
thread to keep disk latency out of the frame loop.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from errors import ConfigurationError
from rectify import CELL_SIZE, GRID_CELLS

LOGGER = logging.getLogger(__name__)

Point = Tuple[float, float]


@dataclass
class RunStatistics:
    """Monotonic per-run counters."""

    frames_processed: int = 0
    detection_attempts: int = 0
    markers_detected: int = 0

    @property
    def detection_rate(self) -> float:
        """Accepted markers per processed frame."""
        return self.markers_detected / max(self.frames_processed, 1)

    def copy(self) -> RunStatistics:
        return RunStatistics(self.frames_processed, self.detection_attempts, self.markers_detected)

    def to_dict(self) -> dict:
        return {
            "frames_processed": self.frames_processed,
            "detection_attempts": self.detection_attempts,
            "markers_detected": self.markers_detected,
            "detection_rate": self.detection_rate,
        }

    def summary(self) -> str:
        lines = [
            "Marker Detection Statistics:",
            f"  Frames processed: {self.frames_processed}",
            f"  Detection attempts: {self.detection_attempts}",
            f"  Markers detected: {self.markers_detected}",
        ]
        if self.frames_processed > 0:
            lines.append(f"  Detection rate: {self.detection_rate:.2f} markers/frame")
        return "\n".join(lines)


@dataclass
class DiagnosticsConfig:
    """Snapshot output settings."""

    enabled: bool = False
    output_dir: str = "debug_output"
    movement_threshold_px: float = 30.0
    background_writes: bool = True
    save_crops: bool = True

    def validate(self):
        if self.movement_threshold_px < 0:
            raise ConfigurationError("movement_threshold_px", self.movement_threshold_px, "must be >= 0")
        if self.enabled and not self.output_dir:
            raise ConfigurationError("output_dir", self.output_dir, "required when diagnostics are enabled")


class SnapshotThrottle:
    """Decides whether a frame's markers differ enough from the last snapshot."""

    def __init__(self, movement_threshold_px: float = 30.0):
        self.movement_threshold_px = movement_threshold_px
        self.previous_centers: Optional[List[Point]] = None

    def reset(self):
        self.previous_centers = None

    def should_emit(self, centers: Sequence[Point]) -> bool:
        """Return True (and remember ``centers``) if a snapshot is due.

        A snapshot is due on the first detection, when the marker count
        changes, or when any marker moved further than the threshold from
        its nearest centre in the previous snapshot.
        """
        centers = [(float(x), float(y)) for x, y in centers]
        if not centers:
            return False

        if self.previous_centers is None:
            reason = "first detection"
        elif len(centers) != len(self.previous_centers):
            reason = "marker count changed"
        elif self._max_displacement(centers) > self.movement_threshold_px:
            reason = "marker moved"
        else:
            return False

        LOGGER.debug("Snapshot due: %s", reason)
        self.previous_centers = centers
        return True

    def _max_displacement(self, centers: List[Point]) -> float:
        previous = np.asarray(self.previous_centers, dtype=np.float64)
        worst = 0.0
        for center in centers:
            distances = np.linalg.norm(previous - np.asarray(center), axis=1)
            worst = max(worst, float(distances.min()))
        return worst


@dataclass
class Snapshot:
    """Images belonging to one diagnostic emission."""

    stem: str
    frame: np.ndarray
    edges: np.ndarray
    crops: List[np.ndarray] = field(default_factory=list)


class SnapshotWriter:
    """Writes snapshot images to disk, optionally on a worker thread."""

    def __init__(self, output_dir: str, background: bool = True):
        self.output_dir = Path(output_dir)
        self.background = background
        self._queue: Optional[queue.Queue] = None
        self._worker: Optional[threading.Thread] = None
        self.output_dir.mkdir(parents=True, exist_ok=True)

        if background:
            self._queue = queue.Queue(maxsize=16)
            self._worker = threading.Thread(target=self._run, name="snapshot-writer", daemon=True)
            self._worker.start()

    def submit(self, snapshot: Snapshot):
        if self._queue is None:
            self._write(snapshot)
            return
        try:
            self._queue.put_nowait(snapshot)
        except queue.Full:
            LOGGER.warning("Snapshot writer busy, dropping %s", snapshot.stem)

    def close(self):
        """Flush pending snapshots and stop the worker."""
        if self._queue is not None and self._worker is not None:
            self._queue.put(None)
            self._worker.join()
            self._queue = None
            self._worker = None

    def _run(self):
        while True:
            snapshot = self._queue.get()
            if snapshot is None:
                break
            self._write(snapshot)

    def _write(self, snapshot: Snapshot) -> List[Path]:
        paths = [
            (self.output_dir / f"{snapshot.stem}_frame.jpg", snapshot.frame),
            (self.output_dir / f"{snapshot.stem}_edges.png", snapshot.edges),
        ]
        for index, crop in enumerate(snapshot.crops):
            paths.append((self.output_dir / f"{snapshot.stem}_candidate_{index:02d}.png", crop))

        written = []
        for path, image in paths:
            if cv2.imwrite(str(path), image):
                written.append(path)
            else:
                LOGGER.error("Failed to write diagnostic image %s", path)
        LOGGER.debug("Snapshot %s written (%d files)", snapshot.stem, len(written))
        return written


# ---------------------------------------------------------------------- #
# Annotation
# ---------------------------------------------------------------------- #
def annotate_frame(frame: np.ndarray, candidate_corners: Sequence[np.ndarray], markers) -> np.ndarray:
    """Yellow candidate outlines, green marker outlines with id/confidence labels."""
    canvas = frame.copy()
    if canvas.ndim == 2:
        canvas = cv2.cvtColor(canvas, cv2.COLOR_GRAY2BGR)

    for index, corners in enumerate(candidate_corners):
        pts = np.asarray(corners, dtype=np.int32).reshape(-1, 1, 2)
        cv2.polylines(canvas, [pts], True, (0, 255, 255), 1)
        x, y = pts[0, 0]
        cv2.putText(canvas, f"#{index}", (int(x) + 5, int(y) - 5),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.3, (0, 255, 255), 1)

    for marker in markers:
        pts = np.asarray(marker.corners, dtype=np.int32).reshape(-1, 1, 2)
        cv2.polylines(canvas, [pts], True, (0, 255, 0), 2)
        cx, cy = int(marker.center[0]), int(marker.center[1])
        cv2.circle(canvas, (cx, cy), 5, (0, 0, 255), -1)
        cv2.putText(canvas, f"ID:{marker.id} C:{marker.confidence:.1f}", (cx - 20, cy - 20),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)
    return canvas


def annotate_patch(patch: np.ndarray) -> np.ndarray:
    """Draw the cell grid in red and the data grid in green."""
    canvas = cv2.cvtColor(patch, cv2.COLOR_GRAY2BGR) if patch.ndim == 2 else patch.copy()
    size = GRID_CELLS * CELL_SIZE
    for i in range(GRID_CELLS + 1):
        pos = min(i * CELL_SIZE, size - 1)
        cv2.line(canvas, (pos, 0), (pos, size - 1), (0, 0, 255), 1)
        cv2.line(canvas, (0, pos), (size - 1, pos), (0, 0, 255), 1)
    inner = (GRID_CELLS - 1) * CELL_SIZE
    cv2.rectangle(canvas, (CELL_SIZE, CELL_SIZE), (inner, inner), (0, 255, 0), 2)
    return canvas


class DiagnosticsRecorder:
    """Throttles and emits diagnostic snapshots for a detector."""

    def __init__(self, config: Optional[DiagnosticsConfig] = None):
        self.config = config or DiagnosticsConfig(enabled=True)
        self.config.validate()
        self.throttle = SnapshotThrottle(self.config.movement_threshold_px)
        self.writer = SnapshotWriter(self.config.output_dir, background=self.config.background_writes)
        self.snapshots_emitted = 0

    def reset(self):
        self.throttle.reset()
        self.snapshots_emitted = 0

    def observe(self, frame: np.ndarray, edges: np.ndarray, candidate_corners: Sequence[np.ndarray],
                markers, crops: Sequence[np.ndarray], frame_index: int) -> bool:
        """Emit a snapshot for this frame if the throttle allows it."""
        if not self.throttle.should_emit([marker.center for marker in markers]):
            return False

        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        snapshot = Snapshot(
            stem=f"{stamp}_f{frame_index:06d}",
            frame=annotate_frame(frame, candidate_corners, markers),
            edges=edges.copy(),
            crops=[annotate_patch(crop) for crop in crops] if self.config.save_crops else [],
        )
        self.writer.submit(snapshot)
        self.snapshots_emitted += 1
        return True

    def close(self):
        self.writer.close()
