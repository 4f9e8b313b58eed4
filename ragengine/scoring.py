"""Confidence scoring derived from retrieval score statistics."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .models import VectorMatch

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0
RESULT_COUNT_SATURATION = 3
BONUS_WEIGHT = 0.1


def calculate_confidence(matches: Sequence[VectorMatch]) -> float:
    """Summarize how trustworthy an answer grounded in ``matches`` is.

    The top score is the base. Up to 0.1 is added for having several
    corroborating matches (saturating at three) and up to 0.1 for how close
    the average score sits to the top score. The consistency bonus is
    skipped when the top score is not positive, since the ratio is then
    meaningless.

    Args:
        matches: Retrieved matches, in any order.

    Returns:
        Confidence in ``[0.1, 1.0]``; exactly 0.1 for no matches.
    """
    if not matches:
        return MIN_CONFIDENCE

    scores = [match.score for match in matches]
    top_score = max(scores)
    result_count_bonus = (
        min(len(scores) / RESULT_COUNT_SATURATION, 1.0) * BONUS_WEIGHT
    )

    consistency_bonus = 0.0
    if top_score > 0:
        average_score = sum(scores) / len(scores)
        consistency_bonus = (average_score / top_score) * BONUS_WEIGHT

    confidence = top_score + result_count_bonus + consistency_bonus
    return max(MIN_CONFIDENCE, min(confidence, MAX_CONFIDENCE))
