"""
VeriFace - Face Model Capability Interface
==========================================
Defines the `FaceModel` base class every detector backend implements,
plus the loader and single-face analysis helpers shared by the liveness
runner, the face matcher and the passive checker.

The model itself (weights, architecture, detector internals) is an
external concern. VeriFace only requires:
  - detect:      one face region + detection confidence, or None
  - landmarks:   68 (x, y) pixel points for that region
  - descriptor:  fixed-length identity embedding
  - expressions: expression name -> probability

Readiness is explicit: any call made before `is_ready` is True fails
closed with ModelUnavailableError instead of silently reporting "no face".
"""

from __future__ import annotations

import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Optional, Union

import cv2
import numpy as np

from veriface_errors import ModelUnavailableError
from veriface_types import FaceDetection

_log = logging.getLogger("VeriFaceModel")

ImageInput = Union[np.ndarray, str, Path]


class FaceModel(ABC):
    """
    Abstract capability for all VeriFace face model backends.
    Implementations must be safe to share read-only across sessions.
    """

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """True once weights are loaded and inference may run."""
        pass

    @abstractmethod
    def detect(self, image: np.ndarray) -> Optional[FaceDetection]:
        """
        Detect the single most prominent face.

        Returns:
            FaceDetection with `bbox` and `confidence` filled, or None
            when no face is present.
        """
        pass

    @abstractmethod
    def landmarks(self, image: np.ndarray, face: FaceDetection) -> np.ndarray:
        """Return (68, 2) pixel landmarks for `face`."""
        pass

    @abstractmethod
    def descriptor(self, image: np.ndarray, face: FaceDetection) -> np.ndarray:
        """Return the identity embedding for `face`."""
        pass

    @abstractmethod
    def expressions(self, image: np.ndarray, face: FaceDetection) -> Dict[str, float]:
        """Return expression probabilities, e.g. {"happy": 0.91, "neutral": 0.05}."""
        pass

    def release(self):
        """Optional cleanup logic on shutdown."""
        pass


def ensure_ready(model: Optional[FaceModel]) -> FaceModel:
    """Fail closed if the model is missing or still loading."""
    if model is None or not model.is_ready:
        raise ModelUnavailableError("Face model is not loaded yet")
    return model


# ═══════════════════════════════════════════════════════════════
# ModelLoader
# ═══════════════════════════════════════════════════════════════

class ModelLoader:
    """Loads a FaceModel once and hands the same instance to every caller.

    Concurrent `load()` calls block on one lock, so the factory runs at
    most once per successful load. A failed load is not cached: the next
    call retries.
    """

    def __init__(self, factory: Callable[[], FaceModel]):
        self._factory = factory
        self._model: Optional[FaceModel] = None
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None and self._model.is_ready

    def load(self) -> FaceModel:
        if self._model is not None:
            return self._model

        with self._lock:
            if self._model is not None:
                return self._model

            t0 = time.perf_counter()
            _log.info("Loading face model...")
            try:
                model = self._factory()
            except Exception as e:
                _log.error("Face model failed to load: %s", e)
                raise ModelUnavailableError(f"Face model failed to load: {e}") from e

            if not model.is_ready:
                raise ModelUnavailableError("Face model loaded but reports not ready")

            self._model = model
            _log.info("Face model loaded in %.1f ms", (time.perf_counter() - t0) * 1000)
            return model

    def get(self) -> FaceModel:
        """Return the loaded model without triggering a load."""
        return ensure_ready(self._model)

    def release(self) -> None:
        with self._lock:
            if self._model is not None:
                self._model.release()
                self._model = None


# ═══════════════════════════════════════════════════════════════
# Analysis helpers
# ═══════════════════════════════════════════════════════════════

def load_image(image: ImageInput) -> np.ndarray:
    """Accept a BGR array or an image file path."""
    if isinstance(image, np.ndarray):
        return image
    path = os.fspath(image)
    img = cv2.imread(path)
    if img is None:
        raise FileNotFoundError(f"Could not read image: {path}")
    return img


def analyze_frame(
    model: FaceModel,
    image: np.ndarray,
    with_descriptor: bool = False,
    with_expressions: bool = True,
    timestamp: float = 0.0,
) -> Optional[FaceDetection]:
    """Run detection plus the requested per-face extractions.

    Returns None when no face is detected. Model errors propagate.
    """
    ensure_ready(model)

    face = model.detect(image)
    if face is None:
        return None

    face.landmarks_68 = np.asarray(model.landmarks(image, face), dtype=np.float64)
    if with_expressions:
        face.expressions = dict(model.expressions(image, face))
    if with_descriptor:
        face.descriptor = np.asarray(model.descriptor(image, face), dtype=np.float64)

    h, w = image.shape[:2]
    face.image_size = (w, h)
    face.timestamp = timestamp
    return face


def extract_descriptor(model: FaceModel, image: ImageInput) -> Optional[np.ndarray]:
    """Descriptor for the face in `image`, or None when no face is found."""
    face = analyze_frame(model, load_image(image), with_descriptor=True, with_expressions=False)
    if face is None:
        return None
    return face.descriptor
