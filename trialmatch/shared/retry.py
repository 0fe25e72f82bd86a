import logging
import time
from typing import Callable, Tuple, Type, TypeVar

import httpx

from ..config import EXTERNAL_MAX_RETRIES, EXTERNAL_RETRY_BASE_SECONDS
from ..exceptions import ExternalServiceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (httpx.TransportError, httpx.HTTPStatusError)


def call_with_backoff(
    operation: Callable[[], T],
    *,
    name: str,
    max_retries: int = EXTERNAL_MAX_RETRIES,
    base_delay: float = EXTERNAL_RETRY_BASE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run operation, retrying transient HTTP failures with exponential backoff.

    Raises:
        ExternalServiceFailure: After the last attempt fails
    """
    for attempt in range(max_retries):
        try:
            return operation()
        except TRANSIENT_ERRORS as e:
            if attempt == max_retries - 1:
                logger.error(f"❌ {name} failed after {max_retries} attempts: {e}")
                raise ExternalServiceFailure(f"{name} unavailable") from e

            retry_delay = min(base_delay * (2**attempt), 10)  # Cap at 10 seconds
            logger.warning(
                f"⚠️ {name} attempt {attempt + 1} failed: {e}, retrying in {retry_delay}s..."
            )
            sleep(retry_delay)

    raise ExternalServiceFailure(f"{name} unavailable")
