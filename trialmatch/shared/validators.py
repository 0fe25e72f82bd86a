"""Shared validation utilities"""

import re
from typing import Optional

from ..enums import LocationType
from ..exceptions import ValidationError

WORD_PATTERN = re.compile(r"\b[\w'’-]+\b", re.UNICODE)

ONLINE_MARKERS = ("online", "zoom", "google meet", "teams", "virtual", "remote")
LIBRARY_MARKERS = ("library",)


def count_words(text: Optional[str]) -> int:
    """Count words the way a reader would (punctuation is not a word)"""
    if not text:
        return 0
    return len(WORD_PATTERN.findall(text))


def require_min_words(field: str, text: Optional[str], minimum: int) -> str:
    """
    Enforce a minimum word count on free-text feedback.

    Raises:
        ValidationError: If the text has fewer than `minimum` words
    """
    words = count_words(text)
    if words < minimum:
        raise ValidationError(
            f"{field} must be at least {minimum} words (got {words})",
            context={"field": field, "minimum": minimum, "actual": words},
        )
    return text.strip()


def categorize_location(location: Optional[str]) -> LocationType:
    """Classify a free-text location as online, library or in-home"""
    text = (location or "").strip().lower()
    if any(marker in text for marker in ONLINE_MARKERS):
        return LocationType.ONLINE
    if any(marker in text for marker in LIBRARY_MARKERS):
        return LocationType.LIBRARY
    return LocationType.IN_HOME


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email


def require_reason(reason: Optional[str]) -> str:
    if reason is None or not reason.strip():
        raise ValidationError("A reason is required")
    return reason.strip()
