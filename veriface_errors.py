"""
VeriFace - Error Taxonomy
=========================
Infrastructure failures raised to the caller. Biometric disagreement
(a failed gesture, two different faces, no face in a frame) is never an
exception: it is reported as data in LivenessResult / FaceComparisonResult.
"""


class VerificationError(Exception):
    """Base class for all VeriFace infrastructure errors."""

    retryable: bool = False


class ModelUnavailableError(VerificationError):
    """FaceModel was used before loading completed, or failed to load.

    Fails closed: the caller should retry once the model is ready rather
    than treat this as a failed liveness check or a non-match.
    """

    retryable = True


class CameraUnavailableError(VerificationError):
    """Camera could not be acquired (denied, absent, or lost mid-session)."""


class SessionCancelled(VerificationError):
    """Caller-initiated abort.

    Raised by a FaceModel or FrameSource to interrupt inference; the
    liveness runner converts it into the CANCELLED state instead of
    propagating it.
    """
