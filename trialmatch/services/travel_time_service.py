"""
Travel time lookup between a tutor's suburb and the lesson location.

Uses the Google Distance Matrix API. Results are cached in Redis when it is
configured. Any provider failure degrades to an unknown travel time; ranking
still works, unknown times just sort after known ones.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..cache import travel_cache
from ..config import (
    EXTERNAL_TIMEOUT_SECONDS,
    GOOGLE_DISTANCE_MATRIX_URL,
    GOOGLE_MAPS_API_KEY,
)
from ..exceptions import ExternalServiceFailure
from ..shared.retry import call_with_backoff

logger = logging.getLogger(__name__)

UNKNOWN_TEXT = "N/A"


@dataclass(frozen=True)
class TravelEstimate:
    minutes: Optional[int]
    text: str

    @classmethod
    def unknown(cls) -> "TravelEstimate":
        return cls(minutes=None, text=UNKNOWN_TEXT)


class TravelTimeService:
    def __init__(self, api_key: Optional[str] = GOOGLE_MAPS_API_KEY, http_client: Optional[httpx.Client] = None):
        self.api_key = api_key
        self.http_client = http_client

    def lookup(self, origin: Optional[str], destination: Optional[str]) -> TravelEstimate:
        if not origin or not destination:
            return TravelEstimate.unknown()
        if not self.api_key:
            logger.debug("GOOGLE_MAPS_API_KEY not set, travel time unknown")
            return TravelEstimate.unknown()

        cached = travel_cache.get(origin, destination)
        if cached:
            return TravelEstimate(minutes=cached.get("minutes"), text=cached.get("text", UNKNOWN_TEXT))

        try:
            estimate = call_with_backoff(
                lambda: self._fetch(origin, destination), name="Distance Matrix"
            )
        except ExternalServiceFailure:
            logger.warning(f"⚠️ Travel time unavailable for {origin} → {destination}")
            return TravelEstimate.unknown()

        if estimate.minutes is not None:
            travel_cache.set(origin, destination, estimate.minutes, estimate.text)
        return estimate

    def _fetch(self, origin: str, destination: str) -> TravelEstimate:
        params = {
            "origins": origin,
            "destinations": destination,
            "mode": "driving",
            "key": self.api_key,
        }
        if self.http_client is not None:
            resp = self.http_client.get(GOOGLE_DISTANCE_MATRIX_URL, params=params)
        else:
            with httpx.Client(timeout=EXTERNAL_TIMEOUT_SECONDS) as client:
                resp = client.get(GOOGLE_DISTANCE_MATRIX_URL, params=params)
        resp.raise_for_status()
        return parse_distance_matrix(resp.json())


def parse_distance_matrix(payload: dict) -> TravelEstimate:
    try:
        element = payload["rows"][0]["elements"][0]
    except (KeyError, IndexError, TypeError):
        logger.warning(f"Unexpected Distance Matrix payload: {str(payload)[:200]}")
        return TravelEstimate.unknown()

    if element.get("status") != "OK" or "duration" not in element:
        return TravelEstimate.unknown()

    seconds = element["duration"].get("value")
    minutes = int(round(seconds / 60)) if seconds is not None else None
    return TravelEstimate(minutes=minutes, text=element["duration"].get("text") or UNKNOWN_TEXT)
