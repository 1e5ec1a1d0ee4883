"""
VeriFace - Challenge Catalogue
==============================
Prompt templates for every supported gesture and the production
challenge order.
"""

from typing import Iterable, List, Optional

from veriface_types import Challenge, ChallengeKind

CHALLENGE_TEMPLATES = {
    ChallengeKind.TURN_LEFT: ("Turn left", "Slowly turn your head to the left"),
    ChallengeKind.TURN_RIGHT: ("Turn right", "Slowly turn your head to the right"),
    ChallengeKind.SMILE: ("Smile", "Smile naturally"),
    ChallengeKind.BLINK: ("Blink", "Close both eyes briefly"),
    ChallengeKind.NOD: ("Nod", "Nod your head up and down"),
}

# blink and nod have evaluators but are not part of the production flow
DEFAULT_SEQUENCE = (
    ChallengeKind.TURN_LEFT,
    ChallengeKind.TURN_RIGHT,
    ChallengeKind.SMILE,
)


def make_challenge(kind) -> Challenge:
    kind = ChallengeKind(kind)
    label, instruction = CHALLENGE_TEMPLATES[kind]
    return Challenge(kind=kind, label=label, instruction=instruction)


def build_challenges(kinds: Optional[Iterable] = None) -> List[Challenge]:
    """Fresh, uncompleted challenges in the given (or default) order."""
    sequence = list(DEFAULT_SEQUENCE if kinds is None else kinds)
    if not sequence:
        raise ValueError("a liveness session needs at least one challenge")
    return [make_challenge(kind) for kind in sequence]
