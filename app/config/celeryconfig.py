from celery.schedules import crontab
from .settings import settings

# Basic Celery Configuration
broker_url = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
result_backend = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# Task Discovery
include = ["app.tasks"]

# Timezone Configuration
timezone = settings.NOTIFICATION_TIMEZONE
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 30 * 60  # 30 minutes
task_soft_time_limit = 25 * 60  # 25 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Task Retry Configuration
task_acks_late = True
task_reject_on_worker_lost = True
task_default_retry_delay = 60  # 60 seconds
task_max_retries = 3

# Exponential Backoff Settings
task_retry_backoff = True
task_retry_backoff_max = 700  # Max 700 seconds
task_retry_jitter = False

# All scheduled tasks use the notification timezone
beat_schedule = {
    # Full reminder reconciliation sweep - once a day shortly after midnight
    "daily-notification-reconciler": {
        "task": "app.tasks.cron.daily_notification_reconciler.daily_notification_reconciler_task",
        "schedule": crontab(
            hour=settings.RECONCILIATION_CRON_HOUR,
            minute=settings.RECONCILIATION_CRON_MINUTE,
        ),
        "args": ("daily_notification_reconciler_cron",),
    },
}

# Default Queue
task_default_queue = "reminders"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
