"""
Constrained choice.

Forces a free-text model reply into one of a fixed set of options. The reply
is matched by substring first, then read as an option number, and when
neither works a random option is picked so the caller always gets a member
of ``choices`` back.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence

logger = logging.getLogger(__name__)


def build_choice_prompt(prompt: str, choices: Sequence[str]) -> str:
    options = "\n".join(f"{i}. {choice}" for i, choice in enumerate(choices, start=1))
    return (
        f"{prompt}\n\n"
        "You must respond with EXACTLY ONE of the following options (no other text):\n"
        f"{options}\n\n"
        "Response:"
    )


def resolve_choice(
    reply: str,
    choices: Sequence[str],
    rng: random.Random | None = None,
) -> str:
    """
    Map ``reply`` onto one of ``choices``.

    1. case-insensitive substring match in either direction
    2. the digits found in the reply, read as one number, select that
       1-based option
    3. otherwise a uniformly random option

    Raises:
        ValueError: If ``choices`` is empty.
    """
    if not choices:
        raise ValueError("choices must not be empty")

    cleaned = reply.strip()
    lowered = cleaned.lower()

    # An empty reply is a substring of everything
    if lowered:
        for choice in choices:
            option = choice.lower()
            if option in lowered or lowered in option:
                return choice

    digits = "".join(c for c in cleaned if c.isdecimal())
    if digits:
        index = int(digits)
        if 1 <= index <= len(choices):
            return choices[index - 1]

    picked = (rng or random).choice(list(choices))
    logger.info(f"Reply {cleaned[:80]!r} matched no option; picked '{picked}' at random")
    return picked
