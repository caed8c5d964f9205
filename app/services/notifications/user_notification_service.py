from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models import DismissReason, Notification
from app.schemas.notification_schemas import GetUserNotificationItem
from app.utils.errors import (
    BusinessLogicError,
    NotFoundError,
    NotificationServiceError,
    TransientStoreError,
)
from app.utils.logging import get_logger

from .mute_store import MutePreferenceStore
from .reconciliation import ReconciliationScheduler, SweepReport
from .rendering import MessageRenderer
from .store import NotificationStore, decode_params

logger = get_logger()


class UserNotificationService:
    """
    Read and mutate operations exposed to the UI/API layer.

    Dismissals made here are the user's own, so they also mute the task;
    tier-change dismissals made by the engine never do.
    """

    def __init__(
        self,
        db_session: Session,
        renderer: Optional[MessageRenderer] = None,
    ):
        self.db = db_session
        self.store = NotificationStore(db_session)
        self.mute_store = MutePreferenceStore(db_session)
        self.renderer = renderer or MessageRenderer()

    async def list_active(
        self, user_id: str, locale: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Active notifications for a user, newest first, with rendered text"""
        try:
            notifications = await self.store.find_active_for_user(user_id)
        except TransientStoreError as e:
            logger.error(f"Failed to get notifications for user {user_id}: {e.message}")
            raise NotificationServiceError() from e

        items = [
            self._construct_notification_item(notification, locale).model_dump(
                by_alias=True
            )
            for notification in notifications
        ]
        logger.info(f"Retrieved {len(items)} notifications for user {user_id}")
        return items

    async def get_unread_count(self, user_id: str) -> int:
        try:
            result = self.db.execute(
                select(func.count(Notification.id)).where(
                    and_(
                        Notification.user_id == user_id,
                        Notification.dismissed == False,
                        Notification.read == False,
                    )
                )
            )
            return result.scalar() or 0
        except SQLAlchemyError as e:
            logger.error(f"Failed to get unread count for user {user_id}: {e}")
            raise NotificationServiceError() from e

    async def mark_read(
        self,
        user_id: str,
        notification_id: Optional[str] = None,
        all: bool = False,
        as_unread: bool = False,
    ) -> int:
        """Mark one notification, or all active ones, as read (or unread)"""
        if not all and not notification_id:
            raise BusinessLogicError(
                "Either a notification id or all=true is required", "INVALID_PARAMETERS"
            )

        try:
            updated = await self.store.set_read(
                user_id, None if all else notification_id, read=not as_unread
            )
            self.db.commit()
        except TransientStoreError as e:
            self.db.rollback()
            logger.error(f"Failed to update read state for user {user_id}: {e.message}")
            raise NotificationServiceError() from e

        if not all and updated == 0:
            raise NotFoundError("Notification not found")

        logger.info(
            f"Marked {updated} notifications as {'unread' if as_unread else 'read'} for user {user_id}"
        )
        return updated

    async def dismiss(
        self,
        user_id: str,
        notification_id: Optional[str] = None,
        task_id: Optional[str] = None,
        all: bool = False,
    ) -> int:
        """
        User dismissal by notification id, by task id, or of everything.

        Every form tags the rows donotrecreate. The task and all forms also
        record a mute preference for each affected task.
        """
        if not (notification_id or task_id or all):
            raise BusinessLogicError(
                "A notification id, a task id or all=true is required",
                "INVALID_PARAMETERS",
            )

        try:
            if notification_id:
                notification = await self.store.get(user_id, notification_id)
                if notification is None:
                    raise NotFoundError("Notification not found")
                dismissed = await self.store.dismiss_notifications(
                    [notification], DismissReason.USER_DISMISSED, do_not_recreate=True
                )

            elif task_id:
                await self.mute_store.set_muted(user_id, task_id, True)
                dismissed = await self.store.dismiss(
                    user_id,
                    task_id,
                    do_not_recreate=True,
                    reason=DismissReason.USER_DISMISSED,
                )

            else:
                active = await self.store.find_active_for_user(user_id)
                for muted_task_id in sorted({n.task_id for n in active}):
                    await self.mute_store.set_muted(user_id, muted_task_id, True)
                dismissed = await self.store.dismiss_notifications(
                    active, DismissReason.USER_DISMISSED, do_not_recreate=True
                )

            self.db.commit()

        except TransientStoreError as e:
            self.db.rollback()
            logger.error(f"Failed to dismiss notifications for user {user_id}: {e.message}")
            raise NotificationServiceError() from e

        logger.info(f"Dismissed {dismissed} notifications for user {user_id}")
        return dismissed

    async def unmute(self, user_id: str, task_id: str) -> None:
        """Let the engine remind the user about this task again"""
        try:
            await self.mute_store.set_muted(user_id, task_id, False)
            self.db.commit()
        except TransientStoreError as e:
            self.db.rollback()
            logger.error(f"Failed to unmute task {task_id} for user {user_id}: {e.message}")
            raise NotificationServiceError() from e

    async def delete_all(self, user_id: str) -> int:
        """Administrative reset: hard delete every notification of the user"""
        try:
            deleted = await self.store.delete_all_for_user(user_id)
            self.db.commit()
        except TransientStoreError as e:
            self.db.rollback()
            logger.error(f"Failed to delete notifications for user {user_id}: {e.message}")
            raise NotificationServiceError() from e

        logger.info(f"Deleted {deleted} notifications for user {user_id}")
        return deleted

    async def refresh(self, user_id: str, now: Union[date, datetime]) -> SweepReport:
        """Run the reconciliation sweep for this user only"""
        try:
            report = await ReconciliationScheduler(self.db).reconcile_user(user_id, now)
        except TransientStoreError as e:
            self.db.rollback()
            raise NotificationServiceError() from e

        if report.failed_users:
            raise NotificationServiceError()
        return report

    def _construct_notification_item(
        self, notification: Notification, locale: Optional[str] = None
    ) -> GetUserNotificationItem:
        params = decode_params(notification.message_params)
        message = self.renderer.render(
            notification.title, notification.message, params, locale
        )

        return GetUserNotificationItem(
            id=notification.id,
            task_id=notification.task_id,
            tier=notification.tier.value,
            title_key=notification.title,
            message_key=notification.message,
            message_params=params,
            subject=message["subject"],
            body=message["body"],
            due_date=notification.due_date.isoformat() if notification.due_date else None,
            is_read=notification.read,
            created_at=notification.created_at.isoformat(),
            updated_at=notification.updated_at.isoformat(),
        )

