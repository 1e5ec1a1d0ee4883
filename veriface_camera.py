"""
VeriFace - Frame Sources
========================
Owns ALL camera interaction. No other module should touch
cv2.VideoCapture directly.

A FrameSource yields frames on pull and is used as a context manager:
the underlying device is acquired on enter and released on exit,
whether the session passed, failed, raised or was cancelled.

Adapters:
  - CameraFrameSource:   live webcam with per-frame validation + health stats
  - StaticImageFrameSource: one still image, returned on every pull
  - RecordedFrameSource: deterministic replay of a fixed frame list or video
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import List, Optional, Sequence

import cv2
import numpy as np

from veriface_errors import CameraUnavailableError
from veriface_face_model import ImageInput, load_image
from veriface_utils import CONFIG

_log = logging.getLogger("VeriFaceCamera")


@dataclass
class Frame:
    """One pulled frame: BGR uint8 image + monotonic capture time."""
    image: np.ndarray
    timestamp: float


class FrameSource(ABC):
    """Pull-based frame provider with scoped acquisition."""

    @abstractmethod
    def open(self) -> None:
        """Acquire the underlying resource. Raises CameraUnavailableError."""
        pass

    @abstractmethod
    def read(self) -> Optional[Frame]:
        """Return the next frame, or None if this pull produced nothing usable."""
        pass

    @abstractmethod
    def release(self) -> None:
        """Release the underlying resource. Safe to call more than once."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    def __enter__(self) -> "FrameSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


# ═══════════════════════════════════════════════════════════════
# Live camera
# ═══════════════════════════════════════════════════════════════

class CameraFrameSource(FrameSource):
    """Validated webcam capture.

    Wraps cv2.VideoCapture with:
      - 1-frame buffer so each poll sees the current pose
      - Per-frame validation (shape, dtype, channels, size, brightness)
      - Health status reporting (FPS, drops, age)
    """

    EXPECTED_CHANNELS: int = 3
    EXPECTED_DTYPE = np.uint8
    FPS_WINDOW: int = 30

    def __init__(
        self,
        camera_id: Optional[int] = None,
        backend: int = cv2.CAP_ANY,
        width: Optional[int] = None,
        height: Optional[int] = None,
        config: Optional[dict] = None,
    ) -> None:
        cam_cfg = {**CONFIG["camera"], **(config or {})}
        self._camera_id: int = cam_cfg["camera_id"] if camera_id is None else camera_id
        self._backend: int = backend
        self._requested_size = (
            width or cam_cfg["width"],
            height or cam_cfg["height"],
        )
        self.min_width: int = cam_cfg["min_width"]
        self.min_height: int = cam_cfg["min_height"]
        self.min_brightness: float = cam_cfg["min_brightness"]
        self.max_brightness: float = cam_cfg["max_brightness"]

        self._cap: Optional[cv2.VideoCapture] = None
        self._resolution: tuple[int, int] = (0, 0)

        self._frames_total: int = 0
        self._frames_dropped: int = 0
        self._last_valid_timestamp: float = 0.0
        self._frame_times: deque[float] = deque(maxlen=self.FPS_WINDOW)

    # ── Lifecycle ─────────────────────────────────────────────

    def open(self) -> None:
        if self.is_open:
            return

        cap = cv2.VideoCapture(self._camera_id, self._backend)
        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            _log.error("Camera %d could not be opened", self._camera_id)
            raise CameraUnavailableError(f"Camera {self._camera_id} is unavailable or access was denied")

        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._requested_size[0])
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._requested_size[1])
        self._resolution = (
            int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )
        self._cap = cap

        _log.info("Camera opened - id=%d resolution=%s", self._camera_id, self._resolution)

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def release(self) -> None:
        """Release camera resources and log final statistics."""
        if self._cap is None:
            return
        health = self.get_health_status()
        _log.info(
            "Camera releasing - total=%d dropped=%d (%.1f%%) avg_fps=%.1f",
            health["frames_total"],
            health["frames_dropped"],
            health["drop_rate_pct"],
            health["fps_actual"],
        )
        self._cap.release()
        self._cap = None

    # ── Capture ───────────────────────────────────────────────

    def read(self) -> Optional[Frame]:
        """Read one frame and run the validation checklist.

        Returns None for a dropped frame. Raises CameraUnavailableError if
        the device was never opened or has disconnected.
        """
        if self._cap is None or not self._cap.isOpened():
            raise CameraUnavailableError("Camera is not open")

        self._frames_total += 1
        timestamp = time.monotonic()

        ret, image = self._cap.read()

        if not self._validate_frame(ret, image):
            self._frames_dropped += 1
            return None

        self._last_valid_timestamp = timestamp
        self._frame_times.append(timestamp)
        return Frame(image=image, timestamp=timestamp)

    def get_health_status(self) -> dict:
        """Snapshot of connection status, FPS, drop rate and frame age."""
        now = time.monotonic()
        last_age_ms = (
            (now - self._last_valid_timestamp) * 1000.0
            if self._last_valid_timestamp > 0
            else float("inf")
        )
        return {
            "connected": self.is_open,
            "fps_actual": self._calculate_fps(),
            "frames_total": self._frames_total,
            "frames_dropped": self._frames_dropped,
            "drop_rate_pct": (
                (self._frames_dropped / self._frames_total * 100.0)
                if self._frames_total > 0
                else 0.0
            ),
            "last_valid_frame_age_ms": round(last_age_ms, 2),
            "resolution": self._resolution,
        }

    # ── Private helpers ───────────────────────────────────────

    def _validate_frame(self, ret: bool, image: Optional[np.ndarray]) -> bool:
        if not ret or image is None:
            _log.debug("Validation FAIL: empty read")
            return False

        if image.ndim != 3 or image.shape[2] != self.EXPECTED_CHANNELS:
            _log.debug("Validation FAIL: shape=%s (expected HxWx3)", image.shape)
            return False

        if image.dtype != self.EXPECTED_DTYPE:
            _log.debug("Validation FAIL: dtype=%s (expected uint8)", image.dtype)
            return False

        # Tiny frames yield garbage landmarks
        h, w = image.shape[:2]
        if h < self.min_height or w < self.min_width:
            _log.debug(
                "Validation FAIL: resolution %dx%d below minimum %dx%d",
                w, h, self.min_width, self.min_height,
            )
            return False

        # Lens cap / saturated sensor
        mean_brightness = float(image.mean())
        if mean_brightness <= self.min_brightness or mean_brightness >= self.max_brightness:
            _log.debug("Validation FAIL: mean brightness %.2f", mean_brightness)
            return False

        return True

    def _calculate_fps(self) -> float:
        if len(self._frame_times) < 2:
            return 0.0
        elapsed = self._frame_times[-1] - self._frame_times[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._frame_times) - 1) / elapsed


# ═══════════════════════════════════════════════════════════════
# Still image
# ═══════════════════════════════════════════════════════════════

class StaticImageFrameSource(FrameSource):
    """Serves the same still image on every pull (selfie upload, tests)."""

    def __init__(self, image: ImageInput):
        self._source = image
        self._image: Optional[np.ndarray] = None

    def open(self) -> None:
        if self._image is None:
            self._image = load_image(self._source)

    @property
    def is_open(self) -> bool:
        return self._image is not None

    def read(self) -> Optional[Frame]:
        if self._image is None:
            raise CameraUnavailableError("Image source is not open")
        return Frame(image=self._image, timestamp=time.monotonic())

    def release(self) -> None:
        self._image = None


# ═══════════════════════════════════════════════════════════════
# Recorded replay
# ═══════════════════════════════════════════════════════════════

class RecordedFrameSource(FrameSource):
    """Replays a fixed frame list in order for deterministic sessions.

    Entries may be None to simulate dropped frames. Timestamps are
    synthetic (`index * frame_interval`) so replays are reproducible.
    Once the list is exhausted the last entry is held, or the list
    restarts when `loop=True`.
    """

    def __init__(
        self,
        frames: Sequence[Optional[np.ndarray]],
        frame_interval: float = 0.1,
        loop: bool = False,
    ):
        if not frames:
            raise ValueError("RecordedFrameSource needs at least one frame")
        self._frames: List[Optional[np.ndarray]] = list(frames)
        self._interval = frame_interval
        self._loop = loop
        self._index = 0
        self._open = False
        self.release_count = 0

    @classmethod
    def from_video(cls, path: str, frame_interval: Optional[float] = None, max_frames: int = 10_000) -> "RecordedFrameSource":
        """Decode a recorded clip into memory for replay."""
        cap = cv2.VideoCapture(path)
        if not cap.isOpened():
            cap.release()
            raise CameraUnavailableError(f"Could not open recording: {path}")
        try:
            fps = cap.get(cv2.CAP_PROP_FPS) or 10.0
            frames = []
            while len(frames) < max_frames:
                ret, image = cap.read()
                if not ret:
                    break
                frames.append(image)
        finally:
            cap.release()
        if not frames:
            raise CameraUnavailableError(f"Recording contains no frames: {path}")
        return cls(frames, frame_interval=frame_interval or 1.0 / fps)

    def open(self) -> None:
        self._index = 0
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def frames_served(self) -> int:
        return self._index

    def read(self) -> Optional[Frame]:
        if not self._open:
            raise CameraUnavailableError("Recorded source is not open")

        n = len(self._frames)
        if self._loop:
            image = self._frames[self._index % n]
        else:
            image = self._frames[min(self._index, n - 1)]
        timestamp = self._index * self._interval
        self._index += 1

        if image is None:
            return None
        return Frame(image=image, timestamp=timestamp)

    def release(self) -> None:
        if self._open:
            self.release_count += 1
        self._open = False
