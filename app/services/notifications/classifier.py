"""
Urgency classification of a task's due date.

Rules, first match wins (all on calendar days):

- due before today          -> danger,  "overdue_task"
- due today                 -> danger,  "due_today"
- due tomorrow              -> warning, "due_tomorrow"
- due in 2..window days     -> info,    "upcoming_deadline"
- anything later            -> no reminder

The upcoming window defaults to 4 days and comes from
``NOTIFICATION_UPCOMING_WINDOW_DAYS``.
"""

from datetime import date, datetime
from typing import Optional, Union

from app.config.settings import settings
from app.db.models import NotificationTier
from app.utils.datetime_utils import to_calendar_date

from .deadline_utils import DeadlineCalculator
from .states import PendingReminder

OVERDUE_TITLE = "overdue_task"
DUE_TODAY_TITLE = "due_today"
DUE_TOMORROW_TITLE = "due_tomorrow"
UPCOMING_TITLE = "upcoming_deadline"


def _message_key(title_key: str) -> str:
    return f"{title_key}_message"


def classify(
    due_date: Union[date, datetime],
    now: Union[date, datetime],
    task_title: str = "",
    upcoming_window_days: Optional[int] = None,
) -> Optional[PendingReminder]:
    """Return the reminder a task due on ``due_date`` should carry at ``now``."""
    window = upcoming_window_days or settings.NOTIFICATION_UPCOMING_WINDOW_DAYS
    due_day = to_calendar_date(due_date)
    today = to_calendar_date(now)

    days_until_due = DeadlineCalculator.calculate_days_until(due_day, today)

    if DeadlineCalculator.is_overdue(due_day, today):
        return PendingReminder(
            tier=NotificationTier.DANGER,
            title_key=OVERDUE_TITLE,
            message_key=_message_key(OVERDUE_TITLE),
            params={
                "title": task_title,
                "days_overdue": DeadlineCalculator.calculate_days_overdue(
                    due_day, today
                ),
            },
        )

    if days_until_due == 0:
        return PendingReminder(
            tier=NotificationTier.DANGER,
            title_key=DUE_TODAY_TITLE,
            message_key=_message_key(DUE_TODAY_TITLE),
            params={"title": task_title},
        )

    if days_until_due == 1:
        return PendingReminder(
            tier=NotificationTier.WARNING,
            title_key=DUE_TOMORROW_TITLE,
            message_key=_message_key(DUE_TOMORROW_TITLE),
            params={"title": task_title},
        )

    if 2 <= days_until_due <= window:
        return PendingReminder(
            tier=NotificationTier.INFO,
            title_key=UPCOMING_TITLE,
            message_key=_message_key(UPCOMING_TITLE),
            params={"title": task_title, "days_until_due": days_until_due},
        )

    return None
