from .daily_notification_reconciler import daily_notification_reconciler_task

__all__ = [
    "daily_notification_reconciler_task",
]
