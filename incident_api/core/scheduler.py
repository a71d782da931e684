import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.memory import MemoryJobStore

from incident_api.core.config import settings

logger = logging.getLogger(__name__)

TOKEN_CLEANUP_JOB_ID = "token_cleanup"

scheduler = BackgroundScheduler(
    jobstores={"default": MemoryJobStore()},
    job_defaults={"coalesce": True, "max_instances": 1},
)


def cleanup_expired_tokens_job(session_factory=None) -> int:
    """Scheduled purge of expired blacklist entries and refresh tokens."""
    from incident_api.api.deps import build_auth_service
    from incident_api.core.database import SessionLocal

    db = (session_factory or SessionLocal)()
    try:
        return build_auth_service(db).cleanup_expired_tokens()
    except Exception as e:
        # Keep the scheduler alive; the next run retries
        logger.error(f"Token cleanup failed: {e}")
        return 0
    finally:
        db.close()


def start_scheduler(session_factory=None):
    """Start the scheduler with the periodic token cleanup job."""
    scheduler.add_job(
        cleanup_expired_tokens_job,
        trigger="interval",
        minutes=settings.TOKEN_CLEANUP_INTERVAL_MINUTES,
        id=TOKEN_CLEANUP_JOB_ID,
        kwargs={"session_factory": session_factory},
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"APScheduler started; token cleanup every {settings.TOKEN_CLEANUP_INTERVAL_MINUTES} minutes"
    )


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler shut down")
