"""Decide whether a turn should try for an authentic passage at all."""

from __future__ import annotations

import logging
import random

from book_quotes.models import TargetEnding

logger = logging.getLogger(__name__)


def should_attempt_authentic(
    target_percentage: float,
    ending: TargetEnding,
    rng: random.Random | None = None,
) -> bool:
    """One uniform draw in [0, 100) against the configured rate.

    The draw is the same for every ending type; passages that do not suit a
    non-source ending are filtered later by the compatibility score.
    """
    if not 0 <= target_percentage <= 100:
        logger.warning("Authenticity rate %s outside 0-100, clamping", target_percentage)
        target_percentage = min(max(target_percentage, 0), 100)
    if target_percentage == 0:
        return False
    if target_percentage == 100:
        return True
    draw = (rng or random).random() * 100
    return draw < target_percentage
