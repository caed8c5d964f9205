from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.models import DismissReason, Notification, NotificationTier
from app.utils.errors import InvariantViolation
from app.utils.logging import get_logger

from .store import NotificationStore

logger = get_logger()

GroupKey = Tuple[str, str, NotificationTier]


class DedupReport(BaseModel):
    groups_checked: int = 0
    duplicate_groups: int = 0
    dismissed: int = 0


def _recency(notification: Notification):
    return (notification.updated_at, notification.created_at, notification.id)


def group_active_notifications(
    notifications: List[Notification],
) -> Dict[GroupKey, List[Notification]]:
    groups: Dict[GroupKey, List[Notification]] = defaultdict(list)
    for notification in notifications:
        groups[(notification.user_id, notification.task_id, notification.tier)].append(
            notification
        )
    return groups


class DedupPass:
    """
    Collapses active rows sharing (user, task, tier) to the most recently
    updated one. Duplicates come from unlocked concurrent upserts and are
    expected now and then; they are logged, never raised.
    """

    def __init__(self, db_session: Session, store: Optional[NotificationStore] = None):
        self.db = db_session
        self.store = store or NotificationStore(db_session)

    async def run(self, user_id: Optional[str] = None) -> DedupReport:
        report = DedupReport()
        groups = group_active_notifications(await self.store.find_all_active(user_id))
        report.groups_checked = len(groups)

        stale_ids: List[str] = []
        for (group_user_id, task_id, tier), members in groups.items():
            if len(members) <= 1:
                continue

            violation = InvariantViolation(group_user_id, task_id, tier.value, len(members))
            logger.info(f"Collapsing duplicates: {violation}")

            ordered = sorted(members, key=_recency, reverse=True)
            stale_ids.extend(n.id for n in ordered[1:])
            report.duplicate_groups += 1

        if stale_ids:
            report.dismissed = await self.store.dismiss_ids(
                stale_ids, DismissReason.DUPLICATE
            )
            self.db.commit()

        if report.duplicate_groups:
            logger.info(
                "Dedup pass completed",
                duplicate_groups=report.duplicate_groups,
                dismissed=report.dismissed,
            )
        return report
