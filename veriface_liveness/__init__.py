"""
VeriFace - Liveness Package
===========================
Challenge-response liveness detection built on an injected FaceModel.
"""
from .challenges import DEFAULT_SEQUENCE, build_challenges, make_challenge
from .evaluators import EVALUATORS, evaluate_challenge
from .passive import PassiveLivenessChecker, PassiveLivenessReport
from .session_runner import LivenessConfig, LivenessSessionRunner
