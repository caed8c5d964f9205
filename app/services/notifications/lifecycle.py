from datetime import date, datetime
from typing import AbstractSet, Any, Mapping, Optional, Sequence, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.models import DismissReason, Notification, NotificationTier, Task
from app.schemas.task_schemas import TaskSnapshot
from app.utils.errors import TaskValidationError, TransientStoreError
from app.utils.logging import get_logger

from .classifier import classify
from .mute_store import MutePreferenceStore
from .store import NotificationStore, UpsertOutcome

logger = get_logger()

TaskInput = Union[TaskSnapshot, Task, Mapping[str, Any]]


class LifecycleOutcome(BaseModel):
    """What the reactive path did for one task change."""

    action: str
    tier: Optional[NotificationTier] = None
    created: bool = False
    dismissed: int = 0
    deleted: int = 0


class TaskReconcileResult(BaseModel):
    created: int = 0
    updated: int = 0
    dismissed: int = 0
    unchanged: int = 0
    skipped: int = 0

    @property
    def writes(self) -> int:
        return self.created + self.updated + self.dismissed

    def add(self, other: "TaskReconcileResult") -> None:
        self.created += other.created
        self.updated += other.updated
        self.dismissed += other.dismissed
        self.unchanged += other.unchanged
        self.skipped += other.skipped


def _as_snapshot(task: TaskInput) -> TaskSnapshot:
    if isinstance(task, TaskSnapshot):
        return task
    if isinstance(task, Mapping):
        return TaskSnapshot.parse(task)
    return TaskSnapshot.from_model(task)


def _task_id(task: TaskInput) -> Optional[str]:
    if isinstance(task, Mapping):
        return task.get("id")
    return getattr(task, "id", None)


class NotificationLifecycleManager:
    """Keeps one task's reminder set in line with the task's current state."""

    def __init__(
        self,
        db_session: Session,
        store: Optional[NotificationStore] = None,
        mute_store: Optional[MutePreferenceStore] = None,
        upcoming_window_days: Optional[int] = None,
    ):
        self.db = db_session
        self.store = store or NotificationStore(db_session)
        self.mute_store = mute_store or MutePreferenceStore(db_session)
        self.upcoming_window_days = upcoming_window_days

    async def handle_task_change(
        self,
        user_id: str,
        task: TaskInput,
        previous_task: Optional[TaskInput] = None,
        *,
        now: Union[date, datetime],
    ) -> LifecycleOutcome:
        """
        Reactive path, run inline with a task mutation.

        Never raises: reminder side effects are best effort relative to the
        task itself, and the next sweep corrects anything skipped here.
        """
        task_id = None
        try:
            task_id = _task_id(task)
            snapshot = _as_snapshot(task)
            previous = _as_snapshot(previous_task) if previous_task is not None else None

            outcome = await self._apply_task_change(user_id, snapshot, previous, now)
            self.db.commit()

            if outcome.action != "unchanged":
                logger.info(
                    f"Task {snapshot.id} reminders {outcome.action}",
                    user_id=user_id,
                    tier=outcome.tier.value if outcome.tier else None,
                    dismissed=outcome.dismissed,
                    deleted=outcome.deleted,
                )
            return outcome

        except TaskValidationError as e:
            self.db.rollback()
            logger.warning(f"Skipping reminders for invalid task {task_id}: {e.message}")
            return LifecycleOutcome(action="invalid")

        except TransientStoreError as e:
            self.db.rollback()
            logger.error(
                f"Reminder update for task {task_id} skipped, store unavailable: {e.message}"
            )
            return LifecycleOutcome(action="failed")

    async def _apply_task_change(
        self,
        user_id: str,
        task: TaskSnapshot,
        previous: Optional[TaskSnapshot],
        now: Union[date, datetime],
    ) -> LifecycleOutcome:
        if task.is_completed:
            dismissed = await self.store.dismiss(
                user_id, task.id, reason=DismissReason.COMPLETED
            )
            return LifecycleOutcome(action="dismissed", dismissed=dismissed)

        if task.due_date is None:
            deleted = await self.store.delete_all(user_id, task.id)
            return LifecycleOutcome(action="deleted", deleted=deleted)

        due_date_changed = previous is None or previous.due_date != task.due_date
        title_changed = previous is None or previous.title != task.title
        if not (due_date_changed or title_changed):
            return LifecycleOutcome(action="unchanged")

        deleted = await self.store.delete_active(user_id, task.id)

        # Only the tier that matches today is created, so the task never
        # holds more than one active reminder.
        reminder = classify(task.due_date, now, task.title, self.upcoming_window_days)
        if reminder is None:
            return LifecycleOutcome(action="cleared", deleted=deleted)

        if await self.mute_store.is_muted(user_id, task.id):
            return LifecycleOutcome(action="muted", tier=reminder.tier, deleted=deleted)

        if await self.store.has_do_not_recreate(user_id, task.id, reminder.tier):
            return LifecycleOutcome(
                action="blocked", tier=reminder.tier, deleted=deleted
            )

        _, outcome = await self.store.upsert(user_id, task.id, reminder, task.due_date)
        return LifecycleOutcome(
            action="recreated",
            tier=reminder.tier,
            created=outcome == UpsertOutcome.CREATED,
            deleted=deleted,
        )

    async def handle_task_deleted(self, user_id: str, task_id: str) -> LifecycleOutcome:
        """The task is gone, so are its reminders and their history"""
        try:
            deleted = await self.store.delete_all(user_id, task_id)
            self.db.commit()
            logger.info(f"Deleted {deleted} notifications of removed task {task_id}")
            return LifecycleOutcome(action="deleted", deleted=deleted)
        except TransientStoreError as e:
            self.db.rollback()
            logger.error(
                f"Cleanup of removed task {task_id} skipped, store unavailable: {e.message}"
            )
            return LifecycleOutcome(action="failed")

    async def reconcile_task(
        self,
        task: TaskSnapshot,
        existing_active: Sequence[Notification],
        *,
        now: Union[date, datetime],
        muted: bool = False,
        blocked_tiers: AbstractSet[NotificationTier] = frozenset(),
    ) -> TaskReconcileResult:
        """
        One task's step of the reconciliation sweep.

        The caller loads active rows, mute state and donotrecreate markers in
        batches and commits; this method only flushes.
        """
        result = TaskReconcileResult()

        if task.due_date is None:
            raise TaskValidationError("Task selected for reconciliation has no due date", task.id)

        reminder = classify(task.due_date, now, task.title, self.upcoming_window_days)
        if reminder is None:
            # Out of the reminder window; stale rows are not proactively removed
            result.skipped += 1
            return result

        same_tier = [n for n in existing_active if n.tier == reminder.tier]
        other_tiers = [n for n in existing_active if n.tier != reminder.tier]

        if other_tiers:
            # Tier moved on; this cleanup is not a user dismissal and never mutes
            result.dismissed += await self.store.dismiss_notifications(
                other_tiers, DismissReason.TIER_CHANGED
            )

        if same_tier:
            # Extra same-tier rows are left to the dedup pass
            current = max(same_tier, key=lambda n: (n.updated_at, n.created_at, n.id))
            _, outcome = await self.store.upsert(
                task.user_id, task.id, reminder, task.due_date, existing=current
            )
            if outcome == UpsertOutcome.UPDATED:
                result.updated += 1
            else:
                result.unchanged += 1
            return result

        if muted or reminder.tier in blocked_tiers:
            result.skipped += 1
            return result

        _, outcome = await self.store.upsert(
            task.user_id, task.id, reminder, task.due_date
        )
        if outcome == UpsertOutcome.CREATED:
            result.created += 1
        elif outcome == UpsertOutcome.UPDATED:
            result.updated += 1
        else:
            result.unchanged += 1
        return result
