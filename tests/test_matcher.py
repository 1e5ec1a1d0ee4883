"""
VeriFace - Face Matcher Tests
=============================
Distance thresholds, confidence tiers, the no-face rule and the audit
trail of selfie vs document comparisons.
"""

from __future__ import annotations

import json
import math
import sys
from pathlib import Path

import numpy as np
import pytest

_project_root = Path(__file__).resolve().parent.parent
for _p in (str(_project_root), str(_project_root / "tests")):
    if _p not in sys.path:
        sys.path.insert(0, _p)

from fake_face_model import FakeFace, FakeFaceModel, make_frame
from veriface_errors import ModelUnavailableError
from veriface_logger import AuditLogger
from veriface_matcher import (
    FaceMatcher,
    classify_distance,
    confidence_tier,
    euclidean_distance,
    similarity_from_distance,
)
from veriface_types import ConfidenceTier


SELFIE_TAG, DOCUMENT_TAG = 1, 2


def _descriptor(offset: float = 0.0, size: int = 128) -> np.ndarray:
    """Zero descriptor with the first component shifted by `offset`."""
    d = np.zeros(size, dtype=np.float64)
    d[0] = offset
    return d


def _matcher(selfie_face, document_face, audit=None) -> FaceMatcher:
    model = FakeFaceModel(faces_by_tag={SELFIE_TAG: selfie_face, DOCUMENT_TAG: document_face})
    return FaceMatcher(model, audit=audit)


# ─── Test 1: decision table ───────────────────────────────────

@pytest.mark.parametrize("distance, matched, tier", [
    (0.0, True, ConfidenceTier.HIGH),
    (0.25, True, ConfidenceTier.HIGH),
    (0.39, True, ConfidenceTier.HIGH),
    (0.4, True, ConfidenceTier.MEDIUM),
    (0.5, True, ConfidenceTier.MEDIUM),
    (0.59, True, ConfidenceTier.MEDIUM),
    (0.6, False, ConfidenceTier.LOW),
    (0.65, False, ConfidenceTier.LOW),
    (1.4, False, ConfidenceTier.LOW),
])
def test_distance_decision_table(distance, matched, tier):
    result = classify_distance(distance)

    assert result.matched is matched
    assert result.confidence == tier
    assert result.distance == distance


def test_matched_iff_confidence_not_low():
    for d in np.linspace(0.0, 1.2, 121):
        result = classify_distance(float(d))
        assert result.matched == (result.confidence != ConfidenceTier.LOW), f"d={d}"


def test_similarity_is_clamped_presentation_value():
    assert similarity_from_distance(0.0) == 100.0
    assert similarity_from_distance(0.65) == pytest.approx(35.0)
    assert similarity_from_distance(1.0) == 0.0
    assert similarity_from_distance(1.7) == 0.0


def test_nan_distance_rejected():
    with pytest.raises(ValueError):
        confidence_tier(float("nan"))
    with pytest.raises(ValueError):
        classify_distance(float("inf"))


# ─── Test 2: descriptor distance ──────────────────────────────

def test_euclidean_distance_float64():
    a = np.array([0.0, 3.0], dtype=np.float32)
    b = np.array([4.0, 0.0], dtype=np.float32)

    assert euclidean_distance(a, b) == pytest.approx(5.0)
    assert isinstance(euclidean_distance(a, b), float)


def test_descriptor_length_mismatch_rejected():
    with pytest.raises(ValueError):
        euclidean_distance(np.zeros(128), np.zeros(512))


# ─── Test 3: end-to-end compare ───────────────────────────────

def test_identical_faces_match_with_high_confidence():
    same = FakeFace(descriptor=_descriptor(0.1))
    matcher = _matcher(same, same)

    result = matcher.compare(make_frame(SELFIE_TAG), make_frame(DOCUMENT_TAG))

    assert result.distance == 0.0
    assert result.similarity == 100.0
    assert result.matched is True
    assert result.confidence == ConfidenceTier.HIGH


def test_different_faces_do_not_match():
    matcher = _matcher(FakeFace(descriptor=_descriptor(0.0)), FakeFace(descriptor=_descriptor(0.65)))

    result = matcher.compare(make_frame(SELFIE_TAG), make_frame(DOCUMENT_TAG))

    assert result.distance == pytest.approx(0.65)
    assert result.similarity == pytest.approx(35.0)
    assert result.matched is False
    assert result.confidence == ConfidenceTier.LOW


def test_compare_is_idempotent():
    matcher = _matcher(FakeFace(descriptor=_descriptor(0.0)), FakeFace(descriptor=_descriptor(0.45)))
    selfie, document = make_frame(SELFIE_TAG), make_frame(DOCUMENT_TAG)

    first = matcher.compare(selfie, document)
    second = matcher.compare(selfie, document)

    assert (first.matched, first.distance, first.similarity, first.confidence) == \
        (second.matched, second.distance, second.similarity, second.confidence)
    assert first.confidence == ConfidenceTier.MEDIUM


def test_compare_accepts_image_paths(tmp_path):
    import cv2

    selfie_path, document_path = tmp_path / "selfie.png", tmp_path / "id.png"
    cv2.imwrite(str(selfie_path), make_frame(SELFIE_TAG))
    cv2.imwrite(str(document_path), make_frame(DOCUMENT_TAG))
    matcher = _matcher(FakeFace(descriptor=_descriptor(0.0)), FakeFace(descriptor=_descriptor(0.2)))

    result = matcher.compare(selfie_path, str(document_path))

    assert result.distance == pytest.approx(0.2)
    assert result.confidence == ConfidenceTier.HIGH


# ─── Test 4: no face on either side ───────────────────────────

@pytest.mark.parametrize("selfie_face, document_face", [
    (None, FakeFace()),
    (FakeFace(), None),
    (None, None),
])
def test_missing_face_is_deterministic_non_match(selfie_face, document_face):
    matcher = _matcher(selfie_face, document_face)

    result = matcher.compare(make_frame(SELFIE_TAG), make_frame(DOCUMENT_TAG))

    assert result.matched is False
    assert result.distance == 1.0
    assert result.similarity == 0.0
    assert result.confidence == ConfidenceTier.LOW


# ─── Test 5: infrastructure errors ────────────────────────────

def test_model_not_ready_raises():
    matcher = FaceMatcher(FakeFaceModel(ready=False))

    with pytest.raises(ModelUnavailableError):
        matcher.compare(make_frame(SELFIE_TAG), make_frame(DOCUMENT_TAG))


def test_unreadable_image_path_raises(tmp_path):
    matcher = _matcher(FakeFace(), FakeFace())

    with pytest.raises(FileNotFoundError):
        matcher.compare(tmp_path / "missing.jpg", make_frame(DOCUMENT_TAG))


# ─── Test 6: audit trail ──────────────────────────────────────

def test_comparisons_are_audited(tmp_path):
    audit = AuditLogger(log_dir=str(tmp_path))
    matcher = _matcher(FakeFace(descriptor=_descriptor(0.0)), None, audit=audit)

    matcher.compare(make_frame(SELFIE_TAG), make_frame(DOCUMENT_TAG))
    matcher.compare_descriptors(_descriptor(0.0), _descriptor(0.3))
    audit.close()

    lines = (tmp_path / AuditLogger.FILENAME).read_text(encoding="utf-8").splitlines()
    comparisons = [json.loads(l) for l in lines if json.loads(l)["event"] == "face_comparison"]

    assert len(comparisons) == 2
    assert comparisons[0]["data"]["no_face"] == ["document"]
    assert comparisons[0]["data"]["matched"] is False
    assert comparisons[1]["data"]["confidence"] == "high"
    assert math.isclose(comparisons[1]["data"]["distance"], 0.3)


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
