"""
VeriFace - Liveness Session Runner
==================================
Drives one challenge-response liveness attempt against a FrameSource.

State machine:
  NOT_STARTED -> RUNNING -> COMPLETED
                         -> CANCELLED  (caller abort, no result)
                         -> FAILED     (camera / model infrastructure error)

Protocol per challenge (strictly sequential):
  1. Poll the frame source every `poll_interval` seconds.
  2. First passing frame marks the challenge completed and advances.
  3. After `max_attempts` failing polls the challenge is left incomplete
     and the runner advances anyway.
  4. A `settle_delay` pause follows every challenge so the subject can
     relax before the next gesture.

score = 100 * completed / total, passed = score >= pass_score.
Missing one gesture out of three still passes.

All waits go through a threading.Event, so `cancel()` from another
thread interrupts a poll or settle pause immediately. The frame source
is released on every exit path.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

from veriface_camera import FrameSource
from veriface_errors import SessionCancelled
from veriface_face_model import FaceModel, analyze_frame, ensure_ready
from veriface_liveness.challenges import DEFAULT_SEQUENCE, build_challenges
from veriface_liveness.evaluators import evaluate_challenge
from veriface_logger import AuditLogger
from veriface_types import (
    Challenge,
    ChallengeKind,
    LandmarkSnapshot,
    LivenessResult,
    SessionState,
)
from veriface_utils import CONFIG, setup_logger

_log = setup_logger("VeriFaceLiveness")

ChallengeCallback = Callable[[Challenge, int], None]


@dataclass(frozen=True)
class LivenessConfig:
    """Timing and verdict settings for one runner."""
    poll_interval: float = 0.1
    max_attempts: int = 50
    settle_delay: float = 0.5
    pass_score: float = 66.0
    sequence: Tuple[ChallengeKind, ...] = DEFAULT_SEQUENCE

    @classmethod
    def from_dict(cls, cfg: Optional[dict] = None) -> "LivenessConfig":
        """Build from the `liveness` section of config.yaml."""
        section = {**CONFIG["liveness"], **(cfg or {})}
        return cls(
            poll_interval=section["poll_interval_ms"] / 1000.0,
            max_attempts=int(section["max_attempts"]),
            settle_delay=section["settle_delay_ms"] / 1000.0,
            pass_score=float(section["pass_score"]),
            sequence=tuple(ChallengeKind(k) for k in section["default_sequence"]),
        )


class LivenessSessionRunner:
    """One verification attempt. Not reusable: build a new runner per attempt."""

    def __init__(
        self,
        model: FaceModel,
        frame_source: FrameSource,
        config: Optional[LivenessConfig] = None,
        challenges: Optional[Iterable] = None,
        on_challenge_update: Optional[ChallengeCallback] = None,
        audit: Optional[AuditLogger] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.model = model
        self.frame_source = frame_source
        self.config = config or LivenessConfig.from_dict()
        self.challenges: List[Challenge] = build_challenges(
            challenges if challenges is not None else self.config.sequence
        )
        self.on_challenge_update = on_challenge_update
        self.audit = audit
        self._cancel = cancel_event or threading.Event()

        self.state = SessionState.NOT_STARTED
        self.current_index: Optional[int] = None
        self.previous_snapshot: Optional[LandmarkSnapshot] = None
        self.completed_count = 0
        self.result: Optional[LivenessResult] = None

    # ── Public API ────────────────────────────────────────────

    def cancel(self) -> None:
        """Request abort; safe to call from any thread."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self.state == SessionState.CANCELLED

    def run(self) -> Optional[LivenessResult]:
        """Run every challenge in order.

        Returns:
            LivenessResult once all challenges were attempted, or None if
            the session was cancelled.

        Raises:
            ModelUnavailableError: model not ready (checked before the
                camera is touched).
            CameraUnavailableError: frame source could not be acquired
                or was lost mid-session.
        """
        if self.state != SessionState.NOT_STARTED:
            raise RuntimeError(f"Liveness session already {self.state.value}; create a new runner")

        ensure_ready(self.model)
        self.state = SessionState.RUNNING
        t0 = time.perf_counter()

        try:
            with self.frame_source:
                for index, challenge in enumerate(self.challenges):
                    self.current_index = index
                    self._notify(challenge, index)
                    self._run_challenge(challenge, index)
                    self._pause(self.config.settle_delay)
        except SessionCancelled:
            self.state = SessionState.CANCELLED
            _log.info(
                "Liveness session cancelled at challenge %s/%d",
                self.current_index, len(self.challenges),
            )
            if self.audit:
                self.audit.log({
                    "challenge_index": self.current_index,
                    "completed_count": self.completed_count,
                }, event="session_cancelled")
            return None
        except Exception as e:
            self.state = SessionState.FAILED
            _log.error("Liveness session aborted: %s", e)
            if self.audit:
                self.audit.error("Liveness session aborted", exception=e)
            raise

        total = len(self.challenges)
        score = 100.0 * self.completed_count / total
        self.result = LivenessResult(
            passed=score >= self.config.pass_score,
            score=score,
            challenges=tuple(self.challenges),
        )
        self.state = SessionState.COMPLETED

        _log.info(
            "Liveness session complete - %d/%d challenges, score=%.1f passed=%s (%.1f s)",
            self.completed_count, total, score, self.result.passed,
            time.perf_counter() - t0,
        )
        if self.audit:
            self.audit.log_liveness(self.result.to_dict())
        return self.result

    # ── Private helpers ───────────────────────────────────────

    def _run_challenge(self, challenge: Challenge, index: int) -> bool:
        for attempt in range(self.config.max_attempts):
            if self._cancel.is_set():
                raise SessionCancelled()

            snapshot, expressions = self._observe()
            passed = evaluate_challenge(
                challenge.kind, snapshot, self.previous_snapshot, expressions,
            )
            self.previous_snapshot = snapshot

            if passed:
                challenge.mark_completed()
                self.completed_count += 1
                _log.debug("Challenge %s passed on attempt %d", challenge.kind.value, attempt + 1)
                self._notify(challenge, index)
                return True

            self._pause(self.config.poll_interval)

        _log.info(
            "Challenge %s not completed after %d attempts",
            challenge.kind.value, self.config.max_attempts,
        )
        return False

    def _observe(self) -> tuple[Optional[LandmarkSnapshot], dict]:
        """Pull one frame and reduce it to a landmark snapshot.

        Dropped frames and frames without a face yield (None, {}).
        """
        frame = self.frame_source.read()
        if frame is None:
            return None, {}

        face = analyze_frame(self.model, frame.image, timestamp=frame.timestamp)
        if face is None:
            return None, {}

        snapshot = LandmarkSnapshot.from_landmarks_68(face.landmarks_68, frame.timestamp)
        return snapshot, face.expressions

    def _pause(self, seconds: float) -> None:
        if self._cancel.wait(seconds):
            raise SessionCancelled()

    def _notify(self, challenge: Challenge, index: int) -> None:
        if self.audit:
            self.audit.log({
                "index": index,
                "challenge": challenge.to_dict(),
            }, event="challenge_update")

        if self.on_challenge_update is None:
            return
        try:
            self.on_challenge_update(challenge.sealed_copy(), index)
        except Exception as e:
            _log.warning("on_challenge_update callback failed: %s", e)
