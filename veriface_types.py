"""
VeriFace - Shared Result & Data Types
=====================================
Dataclasses exchanged between the face model adapter, the liveness
runner, the face matcher and the surrounding KYC pipeline.

68-point landmark layout (iBUG convention, 0-indexed):
  27-35: Nose (bridge top -> tip at 30 -> nostrils)
  36-41: Left eye  (image left; outer corner first, then upper, inner, lower)
  42-47: Right eye (image right; inner corner first, outer corner at 45)
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np

from veriface_utils import round_half_up


NOSE_SLICE = slice(27, 36)
LEFT_EYE_SLICE = slice(36, 42)
RIGHT_EYE_SLICE = slice(42, 48)
NOSE_TIP = 3          # index within the nose subset (point 30)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChallengeKind(str, Enum):
    TURN_LEFT = "turn_left"
    TURN_RIGHT = "turn_right"
    SMILE = "smile"
    BLINK = "blink"
    NOD = "nod"


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# ═══════════════════════════════════════════════════════════════
# Face model output
# ═══════════════════════════════════════════════════════════════

@dataclass
class FaceDetection:
    """Everything the face model reported about one face in one frame.

    Attributes:
        bbox: (x, y, w, h) bounding box in pixel coordinates.
        confidence: Detection confidence [0.0, 1.0].
        landmarks_68: (68, 2) pixel coordinates.
        expressions: Expression name -> probability (e.g. "happy": 0.92).
        descriptor: Identity embedding, only filled when requested.
        image_size: (width, height) of the analysed frame.
        timestamp: Monotonic capture time of the analysed frame.
    """
    bbox: Tuple[int, int, int, int]
    confidence: float = 0.0
    landmarks_68: np.ndarray = field(default_factory=lambda: np.empty((0, 2)))
    expressions: Dict[str, float] = field(default_factory=dict)
    descriptor: Optional[np.ndarray] = None
    image_size: Tuple[int, int] = (0, 0)
    timestamp: float = 0.0


@dataclass(frozen=True)
class LandmarkSnapshot:
    """Nose and eye landmark subsets at one instant."""
    nose: np.ndarray        # (9, 2)
    left_eye: np.ndarray    # (6, 2)
    right_eye: np.ndarray   # (6, 2)
    timestamp: float = 0.0

    @classmethod
    def from_landmarks_68(cls, landmarks: np.ndarray, timestamp: float = 0.0) -> "LandmarkSnapshot":
        points = np.asarray(landmarks, dtype=np.float64)
        if points.shape != (68, 2):
            raise ValueError(f"expected (68, 2) landmarks, got {points.shape}")
        return cls(
            nose=points[NOSE_SLICE].copy(),
            left_eye=points[LEFT_EYE_SLICE].copy(),
            right_eye=points[RIGHT_EYE_SLICE].copy(),
            timestamp=timestamp,
        )

    @property
    def nose_tip(self) -> np.ndarray:
        return self.nose[NOSE_TIP]


# ═══════════════════════════════════════════════════════════════
# Liveness
# ═══════════════════════════════════════════════════════════════

@dataclass
class Challenge:
    """One liveness gesture. `completed` flips to True at most once.

    Copies handed out in results and progress callbacks are sealed:
    every attribute assignment on them raises AttributeError.
    """
    kind: ChallengeKind
    label: str
    instruction: str
    completed: bool = False

    def __setattr__(self, name, value):
        if getattr(self, "_sealed", False):
            raise AttributeError(f"challenge {self.kind.value!r} is a read-only snapshot")
        if name == "completed" and not value and getattr(self, "completed", False):
            raise ValueError(f"challenge {self.kind.value!r} is already completed")
        super().__setattr__(name, value)

    def mark_completed(self) -> bool:
        """Set completed; returns False if it already was."""
        if self.completed:
            return False
        self.completed = True
        return True

    @property
    def sealed(self) -> bool:
        return getattr(self, "_sealed", False)

    def sealed_copy(self) -> "Challenge":
        """Read-only snapshot of the current state."""
        snapshot = copy.copy(self)
        object.__setattr__(snapshot, "_sealed", True)
        return snapshot

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "label": self.label,
            "instruction": self.instruction,
            "completed": self.completed,
        }


@dataclass(frozen=True)
class LivenessResult:
    """Outcome of one completed liveness session."""
    passed: bool
    score: float                          # 100 * completed / total
    challenges: Tuple[Challenge, ...]
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        object.__setattr__(self, "challenges", tuple(
            c if c.sealed else c.sealed_copy() for c in self.challenges
        ))

    @property
    def completed_count(self) -> int:
        return sum(1 for c in self.challenges if c.completed)

    @property
    def total_challenges(self) -> int:
        return len(self.challenges)

    @property
    def rounded_score(self) -> int:
        """Score for display: 2/3 -> 67."""
        return round_half_up(self.score)

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "score": self.score,
            "rounded_score": self.rounded_score,
            "completed_count": self.completed_count,
            "total_challenges": self.total_challenges,
            "challenges": [c.to_dict() for c in self.challenges],
            "timestamp": self.timestamp.isoformat(),
        }


# ═══════════════════════════════════════════════════════════════
# Face matching
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FaceComparisonResult:
    """Selfie vs document photo verdict."""
    matched: bool
    distance: float
    similarity: float                     # 0..100, presentation only
    confidence: ConfidenceTier
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["confidence"] = self.confidence.value
        data["timestamp"] = self.timestamp.isoformat()
        return data
