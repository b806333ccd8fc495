"""
Typing cadence synthesis.

Turns a block of text into keystroke frames whose delays imitate a person
typing: the text is cut into bursts, each burst types at its own speed, and
individual characters are slowed or sped up by what they are.

char_delay() is a pure function of its inputs; all randomness comes from the
`random.Random` passed to build_frames(), so a seeded generator reproduces
the same frames.
"""

import random
from dataclasses import dataclass
from typing import List, Optional

BURST_MIN_CHARS = 6
BURST_MAX_CHARS = 18
BURST_MIN_CPS = 17.0
BURST_MAX_CPS = 34.0

MIN_DELAY_MS = 8.0
MAX_DELAY_MS = 360.0

AFTER_SPACE_FACTOR = 0.6
PAUSE_BONUS_MS = 70.0
SENTENCE_BONUS_MS = 220.0
CAPITAL_BONUS_MS = 45.0
HESITATION_CHANCE = 0.04
HESITATION_MIN_MS = 90.0
HESITATION_MAX_MS = 250.0

PAUSE_CHARS = frozenset(",;:")
SENTENCE_CHARS = frozenset(".!?")


@dataclass(frozen=True)
class Frame:
    content: str
    delay_ms: float


def char_delay(char: str, next_char: Optional[str], cps: float, draw: float) -> float:
    """
    Delay in milliseconds between typing `char` and the character after it.

    Args:
        char: Character just typed
        next_char: Character about to be typed (None at the end of the text)
        cps: Characters per second of the current burst
        draw: Uniform random number in [0, 1)

    Returns:
        Delay clamped to [MIN_DELAY_MS, MAX_DELAY_MS]
    """
    delay = (1000.0 / cps) * (0.85 + 0.3 * draw)

    if char == " ":
        delay *= AFTER_SPACE_FACTOR
        if next_char is not None and next_char.isupper():
            delay += CAPITAL_BONUS_MS
    elif char in SENTENCE_CHARS:
        delay += SENTENCE_BONUS_MS
    elif char in PAUSE_CHARS:
        delay += PAUSE_BONUS_MS

    if draw < HESITATION_CHANCE:
        delay += HESITATION_MIN_MS + (draw / HESITATION_CHANCE) * (HESITATION_MAX_MS - HESITATION_MIN_MS)

    return max(MIN_DELAY_MS, min(MAX_DELAY_MS, delay))


def build_frames(text: str, rng: random.Random) -> List[Frame]:
    """
    Build one frame per character of `text`.

    Frame i carries text[:i+1] and the delay before frame i+1 fires.
    """
    frames: List[Frame] = []
    burst_left = 0
    cps = BURST_MIN_CPS

    for index, char in enumerate(text):
        if burst_left == 0:
            burst_left = rng.randint(BURST_MIN_CHARS, BURST_MAX_CHARS)
            cps = rng.uniform(BURST_MIN_CPS, BURST_MAX_CPS)

        next_char = text[index + 1] if index + 1 < len(text) else None
        frames.append(Frame(content=text[: index + 1], delay_ms=char_delay(char, next_char, cps, rng.random())))
        burst_left -= 1

    return frames
