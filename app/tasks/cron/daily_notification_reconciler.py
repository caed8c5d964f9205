import asyncio

from app.celery import celery
from app.config.settings import settings
from app.db.session import get_sync_session
from app.services.notifications.reconciliation import ReconciliationScheduler
from app.utils.context import request_id_scope
from app.utils.datetime_utils import now_in_zone
from app.utils.errors import TransientStoreError
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def daily_notification_reconciler_task(self, request_id: str):
    """
    Daily sweep that brings every user's reminders in line with their tasks.

    Runs shortly after midnight in NOTIFICATION_TIMEZONE to:
    1. Load every open task that has a due date
    2. Create, update or tier-change reminders per task, one user at a time
    3. Collapse duplicate active reminders left by concurrent writers

    A user whose reconciliation fails is reported and skipped; the sweep is
    only retried when the task list itself cannot be loaded.

    Args:
        request_id: Request ID for tracking purposes
    """
    try:
        return asyncio.run(_async_daily_notification_reconciler(request_id))
    except TransientStoreError as e:
        raise self.retry(exc=e)


async def _async_daily_notification_reconciler(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    with request_id_scope(request_id):
        for db_session in get_sync_session():
            now = now_in_zone(settings.NOTIFICATION_TIMEZONE)
            logger.info(f"Daily notification reconciler started for {now.date()}")

            scheduler = ReconciliationScheduler(
                db_session,
                upcoming_window_days=settings.NOTIFICATION_UPCOMING_WINDOW_DAYS,
            )
            report = await scheduler.run_sweep(now)

            if report.failed_users:
                logger.warning(
                    "Daily notification reconciler completed with failures",
                    failed_users=report.failed_users,
                )

            return {
                "success": not report.failed_users,
                "request_id": request_id,
                "date": now.date().isoformat(),
                **report.model_dump(),
            }
