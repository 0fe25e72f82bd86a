"""
Redis cache for travel time estimates

Distance Matrix calls are billed per element, and a tutor's suburb to a lesson
address rarely changes, so estimates are kept for TRAVEL_TIME_CACHE_SECONDS.
Redis is optional: without it, or when it errors, every read is a miss and
every write is dropped.
"""
import json
import logging
from typing import Optional

from .config import TRAVEL_TIME_CACHE_SECONDS
from .redis_client import get_redis_client

logger = logging.getLogger(__name__)


class TravelTimeCache:
    prefix = "travel"

    def __init__(self, ttl: int = TRAVEL_TIME_CACHE_SECONDS):
        self.ttl = ttl
        self._client = None
        self._unavailable = False

    def _redis(self):
        if self._client is None and not self._unavailable:
            try:
                self._client = get_redis_client()
            except Exception as e:
                logger.warning(f"⚠️ Travel time cache disabled, Redis unavailable: {e}")
                self._unavailable = True
        return self._client

    def key(self, origin: str, destination: str) -> str:
        return f"{self.prefix}:{origin.strip().lower()}|{destination.strip().lower()}"

    def get(self, origin: str, destination: str) -> Optional[dict]:
        """Cached {"minutes", "text"} for the pair, or None"""
        client = self._redis()
        if client is None:
            return None

        key = self.key(origin, destination)
        try:
            raw = client.get(key)
        except Exception as e:
            logger.error(f"❌ Travel cache read failed for {key}: {e}")
            return None
        if not raw:
            return None
        logger.debug(f"✅ Travel cache hit: {key}")
        return json.loads(raw)

    def set(self, origin: str, destination: str, minutes: int, text: str) -> bool:
        client = self._redis()
        if client is None:
            return False

        key = self.key(origin, destination)
        try:
            client.setex(key, self.ttl, json.dumps({"minutes": minutes, "text": text}))
        except Exception as e:
            logger.error(f"❌ Travel cache write failed for {key}: {e}")
            return False
        return True


travel_cache = TravelTimeCache()
