"""
Video input utilities.

This module provides the frame source that feeds the detector: a camera, a
video file, or a single still image, read one frame per call.
"""

import logging
import platform
from typing import List, Optional

import cv2
import numpy as np


class VideoProcessor:
    """Handles frame acquisition from cameras, video files and images."""

    def __init__(self, config=None):
        """Initialize video processor.

        Args:
            config: ``video`` section of the configuration dictionary
        """
        self.config = config or {}
        self.cap: Optional[cv2.VideoCapture] = None
        self.still_image: Optional[np.ndarray] = None
        self.logger = logging.getLogger(__name__)

        self.camera_id = self.config.get('camera_id', 0)
        self.width = self.config.get('video_width', 1920)
        self.height = self.config.get('video_height', 1080)
        self.fps = self.config.get('video_fps', 15)

        self.backend_priority = self._resolve_backend_priority(
            self.config.get('camera_backend_priority')
        )
        self.selected_backend: Optional[int] = None
        self.max_init_attempts = self.config.get('camera_init_attempts', 10)

    @staticmethod
    def _resolve_backend_priority(user_priority: Optional[List[int]]) -> List[int]:
        """Determine backend priority order based on platform and config."""
        if user_priority:
            return user_priority

        system = platform.system()
        backends: List[int] = []

        def add_backend(name: str):
            value = getattr(cv2, name, None)
            if value is not None:
                backends.append(value)

        if system == 'Darwin':
            add_backend('CAP_AVFOUNDATION')
        elif system == 'Windows':
            add_backend('CAP_DSHOW')
            add_backend('CAP_MSMF')
        else:
            add_backend('CAP_V4L2')
            add_backend('CAP_GSTREAMER')

        add_backend('CAP_ANY')
        return backends or [cv2.CAP_ANY]

    @staticmethod
    def _backend_name(backend: Optional[int]) -> str:
        """Return human-readable name for backend constant."""
        if backend is None:
            return "Unknown"

        for attr in dir(cv2):
            if attr.startswith("CAP_") and getattr(cv2, attr) == backend:
                return attr
        return f"Backend({backend})"

    def initialize(self):
        """Open the configured camera.

        Returns:
            bool: True if initialization successful, False otherwise
        """
        self.cleanup()

        for backend in self.backend_priority:
            self.logger.info(
                "Attempting to initialize camera %s using backend %s",
                self.camera_id,
                self._backend_name(backend),
            )
            cap = cv2.VideoCapture(self.camera_id, backend)
            if not cap.isOpened():
                self.logger.warning(
                    "Failed to open camera %s with backend %s",
                    self.camera_id,
                    self._backend_name(backend),
                )
                cap.release()
                continue

            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            cap.set(cv2.CAP_PROP_FPS, self.fps)

            if self._warmup_camera(cap) is None:
                self.logger.warning(
                    "Camera opened but failed to provide frames (backend %s)",
                    self._backend_name(backend),
                )
                cap.release()
                continue

            self.cap = cap
            self.selected_backend = backend
            self.logger.info(
                "Camera initialized with backend %s: %sx%s @ %sfps",
                self._backend_name(backend),
                int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
                int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
                int(cap.get(cv2.CAP_PROP_FPS)),
            )
            return True

        self.logger.error(
            "Unable to initialize camera %s with available backends: %s",
            self.camera_id,
            [self._backend_name(b) for b in self.backend_priority],
        )
        return False

    def _warmup_camera(self, cap: cv2.VideoCapture) -> Optional[np.ndarray]:
        """Capture a few frames to allow camera to warm up."""
        for attempt in range(1, self.max_init_attempts + 1):
            ret, frame = cap.read()
            if ret and frame is not None and frame.size > 0:
                return frame
            self.logger.debug("Warmup frame %s not available; retrying...", attempt)
        return None

    def load_video_file(self, filepath):
        """Load a video file instead of camera.

        Returns:
            bool: True if load successful, False otherwise
        """
        self.cleanup()
        self.cap = cv2.VideoCapture(str(filepath))
        if not self.cap.isOpened():
            self.logger.error("Failed to open video file: %s", filepath)
            self.cap = None
            return False

        self.logger.info("Video file loaded: %s", filepath)
        return True

    def load_image(self, filepath):
        """Use a still image as a single-frame source.

        Returns:
            bool: True if the image could be read
        """
        self.cleanup()
        image = cv2.imread(str(filepath), cv2.IMREAD_COLOR)
        if image is None:
            self.logger.error("Failed to read image: %s", filepath)
            return False

        self.still_image = image
        self.logger.info("Image loaded: %s (%sx%s)", filepath, image.shape[1], image.shape[0])
        return True

    def capture_frame(self):
        """Capture the next frame.

        A still image is returned once; afterwards the source is exhausted.

        Returns:
            np.ndarray or None: Captured frame or None if the source is
            exhausted or failed
        """
        if self.still_image is not None:
            frame, self.still_image = self.still_image, None
            return frame

        if self.cap is None or not self.cap.isOpened():
            return None

        ret, frame = self.cap.read()
        if not ret:
            self.logger.debug("No frame available from capture")
            return None
        return frame

    def get_frame_info(self):
        """Describe the open source as negotiated, not as requested.

        Returns:
            dict: ``width``/``height``/``fps``/``backend``, or an empty dict
            when nothing is open
        """
        if self.still_image is not None:
            height, width = self.still_image.shape[:2]
            return {'width': width, 'height': height, 'fps': 0, 'backend': 'image'}

        if self.cap is None:
            return {}

        return {
            'width': int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            'height': int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            'fps': int(self.cap.get(cv2.CAP_PROP_FPS)),
            'backend': self._backend_name(self.selected_backend),
        }

    def cleanup(self):
        """Clean up video resources."""
        self.still_image = None
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info("Video processor cleaned up")
