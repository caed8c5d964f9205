from .cron import *

__all__ = [
    # Scheduled/Cron Tasks
    "daily_notification_reconciler_task",
]
