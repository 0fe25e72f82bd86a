"""
ARQ background worker
Runs the reschedule priority window sweep on a short cron interval
"""

import logging
import os

from arq.cron import cron

from . import models  # noqa: F401
from .config import RESCHEDULE_SWEEP_INTERVAL_MINUTES
from .database import SessionLocal
from .domain.sessions.service import SessionStateMachine
from .redis_client import get_redis_settings
from .shared.clock import Clock, system_clock

logger = logging.getLogger(__name__)


def run_reschedule_sweep(db, clock: Clock = system_clock) -> dict:
    """Expire lapsed priority windows and reopen their sessions"""
    return SessionStateMachine(db, clock=clock).expire_reschedule_windows()


async def reschedule_expiry_task(ctx):
    """
    Cron job: priority tutors who did not answer in time lose the slot and the
    session goes back to general matching at the requested time.
    """
    db = SessionLocal()
    try:
        summary = run_reschedule_sweep(db)
        if summary["expired"]:
            logger.info(f"⌛ Reschedule sweep complete: {summary}")
        return summary
    except Exception as e:
        logger.error(f"❌ Reschedule sweep failed: {str(e)}")
        raise
    finally:
        db.close()


def sweep_minutes(interval: int) -> set:
    """Minutes of the hour at which a job every `interval` minutes fires"""
    interval = max(1, min(interval, 60))
    return set(range(0, 60, interval))


class WorkerSettings:
    """ARQ Worker Settings"""

    functions = [reschedule_expiry_task]
    redis_settings = get_redis_settings()

    max_jobs = int(os.getenv("ARQ_MAX_JOBS", "10"))
    job_timeout = int(os.getenv("ARQ_JOB_TIMEOUT", "300"))
    keep_result = int(os.getenv("ARQ_KEEP_RESULT", "3600"))

    # Health check settings
    health_check_interval = 60

    cron_jobs = [
        cron(
            reschedule_expiry_task,
            minute=sweep_minutes(RESCHEDULE_SWEEP_INTERVAL_MINUTES),
            run_at_startup=True,
        ),
    ]

    logger.info(
        f"🔧 ARQ Worker configured: sweep every {RESCHEDULE_SWEEP_INTERVAL_MINUTES} min, max_jobs={max_jobs}"
    )
