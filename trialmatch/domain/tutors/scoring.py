"""
Tutor score arithmetic

composite = success * reliability * availability, each component clamped to
[0, 10], so the composite lies in [0, 1000]. A missing component counts as 5.

The product is zero-sensitive: one component at 0 zeroes the composite and
drops the tutor to the bottom of every ranking. Missing components must
therefore never be read as 0.
"""

import math
from typing import Optional

from ...config import DEFAULT_SCORE, MAX_SCORE, MIN_SCORE
from ...exceptions import ValidationError

SCORE_FIELDS = ("score_success", "score_reliability", "score_availability")


def clamp_score(value) -> float:
    if value is None:
        return DEFAULT_SCORE
    try:
        value = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Score must be a number, got {value!r}") from e
    if math.isnan(value):
        raise ValidationError("Score must be a number, got NaN")
    return max(MIN_SCORE, min(MAX_SCORE, value))


def effective_score(value: Optional[float]) -> float:
    return DEFAULT_SCORE if value is None else value


def composite_score(success: Optional[float], reliability: Optional[float], availability: Optional[float]) -> float:
    return effective_score(success) * effective_score(reliability) * effective_score(availability)


def validate_score_input(field: str, value) -> float:
    """Strict check for admin input: numbers in [0, 10] only, no clamping"""
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {field}: must be a number between 0 and 10") from e
    if math.isnan(number) or number < MIN_SCORE or number > MAX_SCORE:
        raise ValidationError(f"Invalid {field}: must be a number between 0 and 10")
    return number
