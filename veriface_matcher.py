"""
VeriFace - Face Matcher
=======================
Decides whether a selfie and an identity document photo show the same
person by Euclidean distance between their face descriptors.

Decision table (distance d):
  d < 0.4          -> high confidence,   matched
  0.4 <= d < 0.6   -> medium confidence, matched
  d >= 0.6         -> low confidence,    not matched

The 0.4 / 0.6 cutoffs are calibrated to the 128-d descriptor space of the
production face model. A different embedding model needs its own cutoffs,
derived empirically from genuine/impostor pairs.

similarity = max(0, (1 - d) * 100) is a presentation value only; it
plays no part in the verdict.
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np

from veriface_face_model import FaceModel, ImageInput, analyze_frame, ensure_ready, load_image
from veriface_logger import AuditLogger
from veriface_types import ConfidenceTier, FaceComparisonResult
from veriface_utils import setup_logger

_log = setup_logger("VeriFaceMatcher")

HIGH_CONFIDENCE_DISTANCE = 0.4
MATCH_DISTANCE = 0.6
NO_FACE_DISTANCE = 1.0


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Straight-line distance between two descriptors, in float64."""
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.shape != vb.shape:
        raise ValueError(f"descriptor length mismatch: {va.shape[0]} vs {vb.shape[0]}")
    return float(np.sqrt(np.sum((va - vb) ** 2)))


def confidence_tier(distance: float) -> ConfidenceTier:
    if math.isnan(distance):
        raise ValueError("distance is NaN")
    if distance < HIGH_CONFIDENCE_DISTANCE:
        return ConfidenceTier.HIGH
    if distance < MATCH_DISTANCE:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


def is_match(distance: float) -> bool:
    return distance < MATCH_DISTANCE


def similarity_from_distance(distance: float) -> float:
    return max(0.0, (1.0 - distance) * 100.0)


def classify_distance(distance: float) -> FaceComparisonResult:
    """Build the full verdict for a precomputed distance."""
    if not math.isfinite(distance):
        raise ValueError(f"distance must be finite, got {distance}")
    return FaceComparisonResult(
        matched=is_match(distance),
        distance=distance,
        similarity=similarity_from_distance(distance),
        confidence=confidence_tier(distance),
    )


def no_face_result() -> FaceComparisonResult:
    return FaceComparisonResult(
        matched=False,
        distance=NO_FACE_DISTANCE,
        similarity=0.0,
        confidence=ConfidenceTier.LOW,
    )


class FaceMatcher:
    """Selfie vs document comparison on top of a shared, read-only FaceModel."""

    def __init__(self, model: FaceModel, audit: Optional[AuditLogger] = None):
        self.model = model
        self.audit = audit

    def compare(self, selfie: ImageInput, document: ImageInput) -> FaceComparisonResult:
        """Compare two still images.

        A missing face on either side is a deterministic non-match
        (distance 1.0, similarity 0, low confidence), not an error.

        Raises:
            ModelUnavailableError: model not ready.
            FileNotFoundError: an image path could not be read.
        """
        ensure_ready(self.model)
        selfie_img = load_image(selfie)
        document_img = load_image(document)

        selfie_face = analyze_frame(self.model, selfie_img, with_descriptor=True, with_expressions=False)
        document_face = analyze_frame(self.model, document_img, with_descriptor=True, with_expressions=False)

        if selfie_face is None or document_face is None:
            missing = [
                side for side, face in (("selfie", selfie_face), ("document", document_face))
                if face is None
            ]
            _log.info("No face detected in %s; reporting non-match", " and ".join(missing))
            result = no_face_result()
            self._record(result, no_face=missing)
            return result

        return self.compare_descriptors(selfie_face.descriptor, document_face.descriptor)

    def compare_descriptors(self, selfie_descriptor: np.ndarray, document_descriptor: np.ndarray) -> FaceComparisonResult:
        """Verdict for two descriptors already extracted by the caller."""
        distance = euclidean_distance(selfie_descriptor, document_descriptor)
        result = classify_distance(distance)
        _log.info(
            "Face comparison - distance=%.4f similarity=%.1f confidence=%s matched=%s",
            result.distance, result.similarity, result.confidence.value, result.matched,
        )
        self._record(result)
        return result

    def _record(self, result: FaceComparisonResult, no_face=None) -> None:
        if self.audit is None:
            return
        data = result.to_dict()
        if no_face:
            data["no_face"] = no_face
        self.audit.log_comparison(data)
