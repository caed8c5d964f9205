import enum
import functools
import json
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import select, update, delete, and_, or_, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models import DismissReason, Notification, NotificationTier, Task
from app.utils.datetime_utils import naive_utc_now
from app.utils.errors import TransientStoreError
from app.utils.logging import get_logger

from .origin_tag import DO_NOT_RECREATE_SUFFIX, OriginTag
from .states import DismissedReminder, PendingReminder, state_of

logger = get_logger()


class UpsertOutcome(enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def translate_store_errors(func):
    """Re-raise any database failure as TransientStoreError"""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.warning(f"Store call {func.__name__} failed: {e}")
            raise TransientStoreError(f"{func.__name__} failed: {e}") from e

    return wrapper


def encode_params(params: Dict[str, Any]) -> str:
    return json.dumps(params, sort_keys=True, default=str)


def decode_params(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning(f"Unreadable notification parameters: {raw!r}")
        return {}


class NotificationStore:
    """
    Durable notification rows.

    No locking: two concurrent upserts may both insert, and the dedup pass
    collapses the result. Methods flush; callers own commit and rollback.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def _active(self, user_id: str):
        return select(Notification).where(
            and_(Notification.user_id == user_id, Notification.dismissed == False)
        )

    @translate_store_errors
    async def get(self, user_id: str, notification_id: str) -> Optional[Notification]:
        result = self.db.execute(
            select(Notification).where(
                and_(
                    Notification.id == notification_id,
                    Notification.user_id == user_id,
                )
            )
        )
        return result.scalar_one_or_none()

    @translate_store_errors
    async def find_active(self, user_id: str, task_id: str) -> List[Notification]:
        result = self.db.execute(
            self._active(user_id)
            .where(Notification.task_id == task_id)
            .order_by(desc(Notification.updated_at))
        )
        return list(result.scalars().all())

    @translate_store_errors
    async def find_active_by_tier(
        self, user_id: str, task_id: str, tier: NotificationTier
    ) -> Optional[Notification]:
        """Most recently updated active row for the tier, if any"""
        result = self.db.execute(
            self._active(user_id)
            .where(and_(Notification.task_id == task_id, Notification.tier == tier))
            .order_by(desc(Notification.updated_at))
            .limit(1)
        )
        return result.scalar_one_or_none()

    @translate_store_errors
    async def find_active_for_user(
        self, user_id: str, task_ids: Optional[Iterable[str]] = None
    ) -> List[Notification]:
        query = self._active(user_id)
        if task_ids is not None:
            task_ids = list(task_ids)
            if not task_ids:
                return []
            query = query.where(Notification.task_id.in_(task_ids))

        result = self.db.execute(query.order_by(desc(Notification.created_at)))
        return list(result.scalars().all())

    @translate_store_errors
    async def find_all_active(self, user_id: Optional[str] = None) -> List[Notification]:
        query = select(Notification).where(Notification.dismissed == False)
        if user_id is not None:
            query = query.where(Notification.user_id == user_id)

        result = self.db.execute(
            query.order_by(Notification.user_id, Notification.task_id)
        )
        return list(result.scalars().all())

    @translate_store_errors
    async def find_active_without_open_task(
        self, user_id: Optional[str] = None
    ) -> List[Tuple[Notification, Optional[Task]]]:
        """
        Active rows whose task is completed, lost its due date or is gone.

        The task is None when no row of the owner matches anymore.
        """
        query = (
            select(Notification, Task)
            .outerjoin(
                Task,
                and_(
                    Task.id == Notification.task_id,
                    Task.user_id == Notification.user_id,
                ),
            )
            .where(
                and_(
                    Notification.dismissed == False,
                    or_(
                        Task.id.is_(None),
                        Task.is_completed == True,
                        Task.due_date.is_(None),
                    ),
                )
            )
        )
        if user_id is not None:
            query = query.where(Notification.user_id == user_id)

        result = self.db.execute(
            query.order_by(Notification.user_id, Notification.task_id)
        )
        return [(notification, task) for notification, task in result.all()]

    @translate_store_errors
    async def upsert(
        self,
        user_id: str,
        task_id: str,
        reminder: PendingReminder,
        due_date: Optional[date],
        existing: Optional[Notification] = None,
    ) -> Tuple[Notification, UpsertOutcome]:
        """
        Update the active row of the same (user, task, tier) in place, or insert.

        ``existing`` lets batch callers pass the row they already loaded.
        """
        if existing is None:
            existing = await self.find_active_by_tier(user_id, task_id, reminder.tier)

        params = encode_params(reminder.params)

        if existing is not None:
            if (
                existing.title == reminder.title_key
                and existing.message == reminder.message_key
                and (existing.message_params or "") == params
                and existing.due_date == due_date
            ):
                return existing, UpsertOutcome.UNCHANGED

            existing.title = reminder.title_key
            existing.message = reminder.message_key
            existing.message_params = params
            existing.due_date = due_date
            existing.updated_at = naive_utc_now()
            self.db.flush()
            return existing, UpsertOutcome.UPDATED

        timestamp = naive_utc_now()
        notification = Notification(
            user_id=user_id,
            task_id=task_id,
            tier=reminder.tier,
            title=reminder.title_key,
            message=reminder.message_key,
            message_params=params,
            due_date=due_date,
            read=False,
            dismissed=False,
            origin_tag=OriginTag(tier=reminder.tier, task_id=task_id).to_string(),
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.db.add(notification)
        self.db.flush()
        return notification, UpsertOutcome.CREATED

    @translate_store_errors
    async def dismiss(
        self,
        user_id: str,
        task_id: str,
        tier: Optional[NotificationTier] = None,
        do_not_recreate: bool = False,
        reason: DismissReason = DismissReason.USER_DISMISSED,
    ) -> int:
        """Dismiss the task's active rows, optionally only those of one tier"""
        query = self._active(user_id).where(Notification.task_id == task_id)
        if tier is not None:
            query = query.where(Notification.tier == tier)

        rows = list(self.db.execute(query).scalars().all())
        return await self.dismiss_notifications(rows, reason, do_not_recreate)

    @translate_store_errors
    async def dismiss_notifications(
        self,
        notifications: Sequence[Notification],
        reason: DismissReason,
        do_not_recreate: bool = False,
    ) -> int:
        timestamp = naive_utc_now()
        count = 0
        for notification in notifications:
            if notification.dismissed:
                continue

            notification.dismissed = True
            notification.dismiss_reason = reason
            notification.updated_at = timestamp
            if do_not_recreate:
                tag = OriginTag.parse(notification.origin_tag) or OriginTag(
                    tier=notification.tier, task_id=notification.task_id
                )
                notification.origin_tag = tag.muted().to_string()
            count += 1

        if count:
            self.db.flush()
        return count

    @translate_store_errors
    async def dismiss_ids(self, notification_ids: Sequence[str], reason: DismissReason) -> int:
        if not notification_ids:
            return 0

        result = self.db.execute(
            update(Notification)
            .where(
                and_(
                    Notification.id.in_(list(notification_ids)),
                    Notification.dismissed == False,
                )
            )
            .values(dismissed=True, dismiss_reason=reason, updated_at=naive_utc_now())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    @translate_store_errors
    async def delete_all(self, user_id: str, task_id: str) -> int:
        """Hard delete every row of the task, dismissed ones included"""
        result = self.db.execute(
            delete(Notification)
            .where(
                and_(Notification.user_id == user_id, Notification.task_id == task_id)
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    @translate_store_errors
    async def delete_active(self, user_id: str, task_id: str) -> int:
        """Hard delete the task's active rows, keeping dismissal history"""
        result = self.db.execute(
            delete(Notification)
            .where(
                and_(
                    Notification.user_id == user_id,
                    Notification.task_id == task_id,
                    Notification.dismissed == False,
                )
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    @translate_store_errors
    async def delete_all_for_user(self, user_id: str) -> int:
        result = self.db.execute(
            delete(Notification)
            .where(Notification.user_id == user_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    @translate_store_errors
    async def do_not_recreate_tiers(
        self, user_id: str, task_ids: Iterable[str]
    ) -> Dict[str, Set[NotificationTier]]:
        """Tiers blocked by a donotrecreate dismissal, per task"""
        task_ids = list(task_ids)
        if not task_ids:
            return {}

        result = self.db.execute(
            select(Notification).where(
                and_(
                    Notification.user_id == user_id,
                    Notification.task_id.in_(task_ids),
                    Notification.dismissed == True,
                    Notification.origin_tag.like(f"%-{DO_NOT_RECREATE_SUFFIX}"),
                )
            )
        )

        blocked: Dict[str, Set[NotificationTier]] = {}
        for notification in result.scalars().all():
            state = state_of(notification)
            if isinstance(state, DismissedReminder) and state.permanently_muted:
                blocked.setdefault(notification.task_id, set()).add(state.tier)
        return blocked

    async def has_do_not_recreate(
        self, user_id: str, task_id: str, tier: NotificationTier
    ) -> bool:
        blocked = await self.do_not_recreate_tiers(user_id, [task_id])
        return tier in blocked.get(task_id, set())

    @translate_store_errors
    async def set_read(
        self,
        user_id: str,
        notification_id: Optional[str] = None,
        read: bool = True,
    ) -> int:
        """Set the read flag on one row, or on every active row when no id is given"""
        conditions = [Notification.user_id == user_id]
        if notification_id is not None:
            conditions.append(Notification.id == notification_id)
        else:
            conditions.append(Notification.dismissed == False)

        # Read state is not a content update; dedup ranks rows by updated_at
        result = self.db.execute(
            update(Notification)
            .where(and_(*conditions))
            .values(read=read, updated_at=Notification.updated_at)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0
