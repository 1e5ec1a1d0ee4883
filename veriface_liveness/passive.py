"""
VeriFace - Passive Single-Frame Liveness
========================================
Quick heuristic screen on one still frame, used before a full
challenge-response session (or when the subject cannot perform
gestures). Four checks, each scored 0-100:

  detection_quality      detector confidence              pass > 50
  face_size              face area vs. frame area         pass > 30
  landmark_variance      spread of the 68 landmarks       pass > 40
  expression_naturalness 1 - dominant expression prob.    always passes

is_live requires at least 3 passing checks and a mean score above 50.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np

from veriface_face_model import FaceModel, ImageInput, analyze_frame, load_image
from veriface_utils import round_half_up

_log = logging.getLogger("VeriFacePassive")


@dataclass(frozen=True)
class PassiveCheck:
    name: str
    passed: bool
    score: int


@dataclass(frozen=True)
class PassiveLivenessReport:
    is_live: bool
    score: int
    checks: List[PassiveCheck] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_live": self.is_live,
            "score": self.score,
            "checks": [vars(c) for c in self.checks],
        }


class PassiveLivenessChecker:
    MIN_PASSED_CHECKS = 3
    MIN_MEAN_SCORE = 50.0

    def __init__(self, model: FaceModel):
        self.model = model

    def check(self, image: ImageInput) -> PassiveLivenessReport:
        img = load_image(image)
        face = analyze_frame(self.model, img, with_expressions=True)

        if face is None:
            return PassiveLivenessReport(
                is_live=False,
                score=0,
                checks=[PassiveCheck("face_detected", False, 0)],
            )

        checks = []

        detection_score = face.confidence * 100.0
        checks.append(PassiveCheck("detection_quality", detection_score > 50, round_half_up(detection_score)))

        # A face filling ~25% of the frame scores 100
        _, _, bw, bh = face.bbox
        h, w = img.shape[:2]
        area_ratio = (bw * bh) / float(w * h) if w * h else 0.0
        size_score = min(100.0, area_ratio * 400.0)
        checks.append(PassiveCheck("face_size", size_score > 30, round_half_up(size_score)))

        # Flat print-outs compress the landmark cloud
        points = np.asarray(face.landmarks_68, dtype=np.float64)
        variance = float(points[:, 0].var() + points[:, 1].var()) if len(points) else 0.0
        variance_score = min(100.0, variance / 50.0)
        checks.append(PassiveCheck("landmark_variance", variance_score > 40, round_half_up(variance_score)))

        dominant = max(face.expressions.values(), default=1.0)
        expression_score = min(100.0, (1.0 - dominant) * 200.0 + 50.0)
        checks.append(PassiveCheck("expression_naturalness", True, round_half_up(expression_score)))

        mean_score = sum(c.score for c in checks) / len(checks)
        passed_checks = sum(1 for c in checks if c.passed)
        report = PassiveLivenessReport(
            is_live=passed_checks >= self.MIN_PASSED_CHECKS and mean_score > self.MIN_MEAN_SCORE,
            score=round_half_up(mean_score),
            checks=checks,
        )
        _log.debug("Passive liveness: %s", report.to_dict())
        return report
