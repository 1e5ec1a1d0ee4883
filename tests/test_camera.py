"""
VeriFace - Frame Source Tests
=============================
Synthetic NumPy frames and a mocked cv2.VideoCapture. No real camera
needed.
"""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from veriface_camera import (
    CameraFrameSource, Frame, RecordedFrameSource, StaticImageFrameSource,
)
from veriface_errors import CameraUnavailableError


# ─── Fixtures ─────────────────────────────────────────────────

def _make_valid_frame(
    height: int = 480,
    width: int = 640,
    brightness: int = 128,
) -> np.ndarray:
    """Create a synthetic BGR frame that passes all validation checks."""
    rng = np.random.RandomState(42)
    frame = rng.randint(
        max(20, brightness - 60),
        min(240, brightness + 60),
        size=(height, width, 3),
        dtype=np.uint8,
    )
    return frame


def _make_mock_capture(frame: np.ndarray | None, ret: bool = True, opened: bool = True):
    """Create a mock cv2.VideoCapture that returns the given frame."""
    mock_cap = MagicMock()
    mock_cap.read.return_value = (ret, frame)
    mock_cap.isOpened.return_value = opened
    mock_cap.get.side_effect = lambda prop: {
        cv2.CAP_PROP_FRAME_WIDTH: 640.0,
        cv2.CAP_PROP_FRAME_HEIGHT: 480.0,
    }.get(prop, 30.0)
    mock_cap.set.return_value = True
    return mock_cap


def _read_one(frame: np.ndarray | None, ret: bool = True):
    mock_cap = _make_mock_capture(frame, ret=ret)
    with patch("veriface_camera.cv2.VideoCapture", return_value=mock_cap):
        with CameraFrameSource(camera_id=0) as cam:
            return cam.read()


# ─── Test 1: Valid frame passes all checks ────────────────────

def test_valid_frame_passes_all_checks():
    """A normal 480x640 BGR uint8 frame with typical brightness
    should come back unchanged with a positive timestamp."""
    frame = _make_valid_frame()

    result = _read_one(frame)

    assert isinstance(result, Frame)
    assert result.timestamp > 0, "Timestamp should be positive"
    assert np.array_equal(result.image, frame), "Frame should be unchanged"


# ─── Test 2: Invalid frames are dropped ───────────────────────

def test_none_frame_is_dropped():
    assert _read_one(None) is None


def test_failed_read_is_dropped():
    assert _read_one(_make_valid_frame(), ret=False) is None


def test_wrong_channels_is_dropped():
    """A 4-channel BGRA frame should fail the channel check."""
    assert _read_one(np.full((480, 640, 4), 128, dtype=np.uint8)) is None


def test_wrong_dtype_is_dropped():
    assert _read_one(np.full((480, 640, 3), 0.5, dtype=np.float32)) is None


def test_all_black_frame_is_dropped():
    """Mean brightness <= 5 means lens cap or hardware failure."""
    assert _read_one(np.zeros((480, 640, 3), dtype=np.uint8)) is None


def test_all_white_frame_is_dropped():
    """Mean brightness >= 250 means sensor saturation."""
    assert _read_one(np.full((480, 640, 3), 255, dtype=np.uint8)) is None


def test_undersized_frame_is_dropped():
    """100x100 is below the 160x120 minimum for landmark detection."""
    assert _read_one(np.full((100, 100, 3), 128, dtype=np.uint8)) is None


# ─── Test 3: Acquisition failures ─────────────────────────────

def test_open_failure_raises_camera_unavailable():
    """A capture that never opens (denied / missing device) raises and
    releases the half-open handle."""
    mock_cap = _make_mock_capture(None, opened=False)

    with patch("veriface_camera.cv2.VideoCapture", return_value=mock_cap):
        cam = CameraFrameSource(camera_id=3)
        with pytest.raises(CameraUnavailableError):
            cam.open()

    mock_cap.release.assert_called_once()
    assert cam.is_open is False


def test_read_before_open_raises():
    cam = CameraFrameSource(camera_id=0)
    with pytest.raises(CameraUnavailableError):
        cam.read()


def test_disconnect_mid_stream_raises():
    mock_cap = _make_mock_capture(_make_valid_frame())

    with patch("veriface_camera.cv2.VideoCapture", return_value=mock_cap):
        cam = CameraFrameSource(camera_id=0)
        cam.open()
        assert cam.read() is not None

        mock_cap.isOpened.return_value = False
        with pytest.raises(CameraUnavailableError):
            cam.read()
    cam.release()


# ─── Test 4: Scoped acquisition ───────────────────────────────

def test_context_manager_releases_on_exception():
    mock_cap = _make_mock_capture(_make_valid_frame())

    with patch("veriface_camera.cv2.VideoCapture", return_value=mock_cap):
        with pytest.raises(RuntimeError):
            with CameraFrameSource(camera_id=0):
                raise RuntimeError("session blew up")

    mock_cap.release.assert_called_once()


def test_release_is_idempotent():
    mock_cap = _make_mock_capture(_make_valid_frame())

    with patch("veriface_camera.cv2.VideoCapture", return_value=mock_cap):
        cam = CameraFrameSource(camera_id=0)
        cam.open()
    cam.release()
    cam.release()

    mock_cap.release.assert_called_once()


def test_open_configures_single_frame_buffer():
    mock_cap = _make_mock_capture(_make_valid_frame())

    with patch("veriface_camera.cv2.VideoCapture", return_value=mock_cap):
        cam = CameraFrameSource(camera_id=0, width=1280, height=720)
        cam.open()

    mock_cap.set.assert_any_call(cv2.CAP_PROP_BUFFERSIZE, 1)
    mock_cap.set.assert_any_call(cv2.CAP_PROP_FRAME_WIDTH, 1280)
    mock_cap.set.assert_any_call(cv2.CAP_PROP_FRAME_HEIGHT, 720)
    cam.release()


# ─── Test 5: Health status reports correctly ──────────────────

def test_health_status_reports_correctly():
    """Health status dict should contain all required fields and
    reflect actual capture history."""
    valid_frame = _make_valid_frame()
    black_frame = np.zeros((480, 640, 3), dtype=np.uint8)
    frames = [valid_frame, black_frame, valid_frame]

    mock_cap = _make_mock_capture(valid_frame)
    mock_cap.read.side_effect = [(True, f) for f in frames]

    with patch("veriface_camera.cv2.VideoCapture", return_value=mock_cap):
        cam = CameraFrameSource(camera_id=0)
        cam.open()

        # valid, black (dropped), valid
        cam.read()
        cam.read()
        cam.read()

        health = cam.get_health_status()

    for key in ("connected", "fps_actual", "frames_total", "frames_dropped",
                "drop_rate_pct", "last_valid_frame_age_ms", "resolution"):
        assert key in health, f"missing health field {key}"

    assert health["connected"] is True
    assert health["frames_total"] == 3
    assert health["frames_dropped"] == 1, "Black frame should be counted as dropped"
    assert health["drop_rate_pct"] == pytest.approx(100.0 / 3.0)
    assert isinstance(health["fps_actual"], float)
    assert health["resolution"] == (640, 480)

    cam.release()


# ─── Test 6: Static image source ──────────────────────────────

def test_static_source_serves_same_image():
    image = _make_valid_frame()
    source = StaticImageFrameSource(image)

    with source:
        first = source.read()
        second = source.read()
        assert source.is_open is True

    assert first.image is image and second.image is image
    assert source.is_open is False


def test_static_source_missing_file_raises(tmp_path):
    source = StaticImageFrameSource(tmp_path / "missing.jpg")
    with pytest.raises(FileNotFoundError):
        source.open()


def test_static_source_loads_from_disk(tmp_path):
    path = tmp_path / "selfie.png"
    cv2.imwrite(str(path), _make_valid_frame(height=200, width=200))

    with StaticImageFrameSource(path) as source:
        frame = source.read()

    assert frame.image.shape == (200, 200, 3)


# ─── Test 7: Recorded replay ──────────────────────────────────

def test_recorded_source_replays_in_order_and_holds_last():
    a, b = _make_valid_frame(brightness=100), _make_valid_frame(brightness=150)
    source = RecordedFrameSource([a, b], frame_interval=0.1)

    with source:
        frames = [source.read() for _ in range(4)]

    assert [f.image is a for f in frames] == [True, False, False, False]
    assert [f.timestamp for f in frames] == pytest.approx([0.0, 0.1, 0.2, 0.3])
    assert source.release_count == 1


def test_recorded_source_loops():
    a, b = _make_valid_frame(brightness=100), _make_valid_frame(brightness=150)
    with RecordedFrameSource([a, b], loop=True) as source:
        images = [source.read().image for _ in range(3)]

    assert images[0] is a and images[1] is b and images[2] is a


def test_recorded_source_none_entry_is_dropped_frame():
    with RecordedFrameSource([None, _make_valid_frame()]) as source:
        assert source.read() is None
        assert source.read() is not None


def test_recorded_source_rejects_empty_list():
    with pytest.raises(ValueError):
        RecordedFrameSource([])


def test_recorded_source_from_unreadable_video_raises(tmp_path):
    with pytest.raises(CameraUnavailableError):
        RecordedFrameSource.from_video(str(tmp_path / "nope.mp4"))


# ─── Run ──────────────────────────────────────────────────────

if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
