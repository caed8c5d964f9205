from celery import Celery

# Create Celery app for the reminder reconciliation jobs
celery = Celery("reminder_engine")

# Load configuration from app.config.celeryconfig module
celery.config_from_object("app.config.celeryconfig")
