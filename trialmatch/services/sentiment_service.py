"""
Cancellation reason sentiment scoring

The scorer is an external HTTP service that reads a tutor's cancellation
reason and returns how legitimate it sounds: a score in [0, 1] (1 = clearly
valid emergency) plus a short free-text explanation.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import (
    EXTERNAL_TIMEOUT_SECONDS,
    NEUTRAL_SENTIMENT_SCORE,
    SENTIMENT_API_KEY,
    SENTIMENT_API_URL,
)
from ..exceptions import ExternalServiceFailure
from ..shared.retry import call_with_backoff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SentimentResult:
    score: float
    reasoning: Optional[str]
    fallback: bool = False


class SentimentService:
    def __init__(
        self,
        api_url: Optional[str] = SENTIMENT_API_URL,
        api_key: Optional[str] = SENTIMENT_API_KEY,
        http_client: Optional[httpx.Client] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.http_client = http_client

    def score(self, reason_text: str) -> SentimentResult:
        """
        Score a cancellation reason.

        Never raises: when the scorer is not configured or keeps failing, the
        neutral default is returned with fallback=True so the record can be
        flagged for review.
        """
        if not self.api_url:
            logger.warning("⚠️ SENTIMENT_API_URL not set, using neutral sentiment score")
            return SentimentResult(score=NEUTRAL_SENTIMENT_SCORE, reasoning=None, fallback=True)

        try:
            return call_with_backoff(lambda: self._request(reason_text), name="Sentiment scorer")
        except ExternalServiceFailure:
            return SentimentResult(score=NEUTRAL_SENTIMENT_SCORE, reasoning=None, fallback=True)

    def _request(self, reason_text: str) -> SentimentResult:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {"text": reason_text or ""}

        if self.http_client is not None:
            resp = self.http_client.post(self.api_url, json=body, headers=headers)
        else:
            with httpx.Client(timeout=EXTERNAL_TIMEOUT_SECONDS) as client:
                resp = client.post(self.api_url, json=body, headers=headers)
        resp.raise_for_status()
        return parse_sentiment(resp.json())


def parse_sentiment(payload: dict) -> SentimentResult:
    raw = payload.get("score")
    try:
        score = float(raw)
    except (TypeError, ValueError):
        logger.warning(f"Sentiment scorer returned a non-numeric score: {raw!r}")
        return SentimentResult(score=NEUTRAL_SENTIMENT_SCORE, reasoning=None, fallback=True)

    if math.isnan(score):
        return SentimentResult(score=NEUTRAL_SENTIMENT_SCORE, reasoning=None, fallback=True)
    score = max(0.0, min(1.0, score))
    return SentimentResult(score=score, reasoning=payload.get("reasoning"))
