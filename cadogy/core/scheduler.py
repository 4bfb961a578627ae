"""
Background scheduler for periodic tasks.

This module manages background jobs that run on a schedule:
- Purge expired verification tokens: Runs every TOKEN_CLEANUP_INTERVAL_MINUTES
"""

from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from cadogy.core.config import Settings
from cadogy.services.auth_service import auth_service
import logging

logger = logging.getLogger(__name__)


def purge_expired_tokens_job(session_factory: sessionmaker):
    """
    Background job to delete expired verification and reset tokens.

    Expired tokens are already unusable; this only keeps the table small.
    """
    db = session_factory()
    try:
        deleted = auth_service.purge_expired_tokens(db)
        if deleted > 0:
            logger.info(f"Token cleanup job completed: Deleted {deleted} expired tokens")
        else:
            logger.info("Token cleanup job completed: No expired tokens found")
    except SQLAlchemyError as e:
        logger.error(f"Error in purge_expired_tokens_job: {str(e)}")
        db.rollback()
    finally:
        db.close()


def start_scheduler(session_factory: sessionmaker, settings: Settings) -> Optional[BackgroundScheduler]:
    """
    Start the background scheduler.

    Called from the application lifespan with the app's own session factory.
    Returns None when the scheduler is disabled in settings.
    """
    if not settings.ENABLE_SCHEDULER:
        logger.info("Background scheduler disabled")
        return None

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        purge_expired_tokens_job,
        trigger=IntervalTrigger(minutes=settings.TOKEN_CLEANUP_INTERVAL_MINUTES),
        args=[session_factory],
        id="purge_expired_tokens",
        name="Purge expired verification tokens",
        replace_existing=True
    )

    scheduler.start()
    logger.info(
        f"Background scheduler started. Token cleanup scheduled every "
        f"{settings.TOKEN_CLEANUP_INTERVAL_MINUTES} minutes."
    )
    return scheduler


def stop_scheduler(scheduler: Optional[BackgroundScheduler]):
    """
    Stop the background scheduler.

    This should be called when the FastAPI app shuts down.
    """
    if scheduler is not None and scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped.")
