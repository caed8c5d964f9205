from .classifier import classify
from .dedup import DedupPass, DedupReport
from .deadline_utils import DeadlineCalculator
from .lifecycle import LifecycleOutcome, NotificationLifecycleManager
from .mute_store import MutePreferenceStore
from .reconciliation import ReconciliationScheduler, SweepReport
from .rendering import MessageRenderer
from .store import NotificationStore, UpsertOutcome
from .user_notification_service import UserNotificationService

__all__ = [
    "classify",
    "DedupPass",
    "DedupReport",
    "DeadlineCalculator",
    "LifecycleOutcome",
    "NotificationLifecycleManager",
    "MutePreferenceStore",
    "ReconciliationScheduler",
    "SweepReport",
    "MessageRenderer",
    "NotificationStore",
    "UpsertOutcome",
    "UserNotificationService",
]
