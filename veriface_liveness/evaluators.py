"""
VeriFace - Challenge Evaluators
===============================
Pure pass/fail decisions for one challenge kind on one frame.

Every evaluator has the signature

    (current, previous, expressions) -> bool

where `current` / `previous` are LandmarkSnapshot or None. A missing
current snapshot (no face in the frame) is always "not passed".

Thresholds are raw pixel distances in the detector's coordinate space,
matching the calibrated production behaviour. They are resolution
dependent: a 1280x720 stream makes the same gesture roughly twice as
large in pixels as a 640x480 one.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Mapping, Optional

from veriface_types import ChallengeKind, LandmarkSnapshot

_log = logging.getLogger("VeriFaceEvaluators")

HEAD_TURN_THRESHOLD_PX = 15.0
SMILE_THRESHOLD = 0.7
EYE_CLOSED_THRESHOLD_PX = 5.0
NOD_THRESHOLD_PX = 20.0

Evaluator = Callable[
    [Optional[LandmarkSnapshot], Optional[LandmarkSnapshot], Mapping[str, float]],
    bool,
]


def head_turn(snapshot: LandmarkSnapshot) -> float:
    """Horizontal offset of the nose tip from the eye midpoint (px).

    Negative when the nose sits left of the midpoint in image space.
    """
    nose_x = snapshot.nose_tip[0]
    eye_center = (snapshot.left_eye[0][0] + snapshot.right_eye[3][0]) / 2.0
    return float(nose_x - eye_center)


def eye_heights(snapshot: LandmarkSnapshot) -> tuple[float, float]:
    """Vertical eyelid span (px) for the left and right eye."""
    left = abs(snapshot.left_eye[1][1] - snapshot.left_eye[5][1])
    right = abs(snapshot.right_eye[1][1] - snapshot.right_eye[5][1])
    return float(left), float(right)


def evaluate_turn_left(current, previous, expressions) -> bool:
    if current is None:
        return False
    return head_turn(current) < -HEAD_TURN_THRESHOLD_PX


def evaluate_turn_right(current, previous, expressions) -> bool:
    if current is None:
        return False
    return head_turn(current) > HEAD_TURN_THRESHOLD_PX


def evaluate_smile(current, previous, expressions) -> bool:
    if current is None:
        return False
    return float((expressions or {}).get("happy", 0.0)) > SMILE_THRESHOLD


def evaluate_blink(current, previous, expressions) -> bool:
    if current is None:
        return False
    left, right = eye_heights(current)
    return left < EYE_CLOSED_THRESHOLD_PX and right < EYE_CLOSED_THRESHOLD_PX


def evaluate_nod(current, previous, expressions) -> bool:
    """Vertical nose displacement since the previous observed frame."""
    if current is None or previous is None:
        return False
    if previous.timestamp >= current.timestamp:
        _log.warning(
            "Out-of-order landmark snapshots (previous=%.3f current=%.3f); nod rejected",
            previous.timestamp, current.timestamp,
        )
        return False
    return bool(abs(current.nose_tip[1] - previous.nose_tip[1]) > NOD_THRESHOLD_PX)


EVALUATORS: Dict[ChallengeKind, Evaluator] = {
    ChallengeKind.TURN_LEFT: evaluate_turn_left,
    ChallengeKind.TURN_RIGHT: evaluate_turn_right,
    ChallengeKind.SMILE: evaluate_smile,
    ChallengeKind.BLINK: evaluate_blink,
    ChallengeKind.NOD: evaluate_nod,
}


def evaluate_challenge(
    kind,
    current: Optional[LandmarkSnapshot],
    previous: Optional[LandmarkSnapshot] = None,
    expressions: Optional[Mapping[str, float]] = None,
) -> bool:
    """Dispatch to the evaluator for `kind`."""
    return EVALUATORS[ChallengeKind(kind)](current, previous, expressions or {})
