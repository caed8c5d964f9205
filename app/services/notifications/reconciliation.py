from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field
from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models import DismissReason, Notification, Task
from app.schemas.task_schemas import TaskSnapshot
from app.utils.errors import TaskValidationError, TransientStoreError
from app.utils.logging import get_logger

from .dedup import DedupPass
from .lifecycle import NotificationLifecycleManager, TaskReconcileResult
from .mute_store import MutePreferenceStore
from .store import NotificationStore

logger = get_logger()


class SweepReport(BaseModel):
    users_processed: int = 0
    tasks_processed: int = 0
    created: int = 0
    updated: int = 0
    dismissed: int = 0
    deleted: int = 0
    unchanged: int = 0
    skipped: int = 0
    invalid_tasks: int = 0
    deduplicated: int = 0
    failed_users: List[str] = Field(default_factory=list)

    @property
    def writes(self) -> int:
        return (
            self.created
            + self.updated
            + self.dismissed
            + self.deleted
            + self.deduplicated
        )

    def absorb(self, result: TaskReconcileResult) -> None:
        self.created += result.created
        self.updated += result.updated
        self.dismissed += result.dismissed
        self.unchanged += result.unchanged
        self.skipped += result.skipped


class ReconciliationScheduler:
    """
    Full sweep over every open task with a due date.

    Work is committed per user so a failed user never undoes or blocks the
    others, and a sweep interrupted part-way can simply be run again.
    """

    def __init__(
        self,
        db_session: Session,
        upcoming_window_days: Optional[int] = None,
    ):
        self.db = db_session
        self.store = NotificationStore(db_session)
        self.mute_store = MutePreferenceStore(db_session)
        self.lifecycle = NotificationLifecycleManager(
            db_session,
            store=self.store,
            mute_store=self.mute_store,
            upcoming_window_days=upcoming_window_days,
        )
        self.dedup = DedupPass(db_session, store=self.store)

    async def run_sweep(self, now: Union[date, datetime]) -> SweepReport:
        report = SweepReport()

        tasks_by_user = await self._load_open_tasks_by_user()
        for user_id, tasks in tasks_by_user.items():
            await self._reconcile_user_tasks(user_id, tasks, now, report)

        await self._retire_closed_task_reminders(report)
        await self._run_dedup(report)

        logger.info(
            "Reconciliation sweep completed",
            users_processed=report.users_processed,
            tasks_processed=report.tasks_processed,
            created=report.created,
            updated=report.updated,
            dismissed=report.dismissed,
            deleted=report.deleted,
            deduplicated=report.deduplicated,
            failed_users=len(report.failed_users),
        )
        return report

    async def reconcile_user(
        self, user_id: str, now: Union[date, datetime]
    ) -> SweepReport:
        """The same sweep restricted to one user's tasks"""
        report = SweepReport()

        tasks_by_user = await self._load_open_tasks_by_user(user_id)
        await self._reconcile_user_tasks(
            user_id, tasks_by_user.get(user_id, []), now, report
        )
        await self._retire_closed_task_reminders(report, user_id)
        await self._run_dedup(report, user_id)
        return report

    async def _load_open_tasks_by_user(
        self, user_id: Optional[str] = None
    ) -> Dict[str, List[TaskSnapshot]]:
        query = select(Task).where(
            and_(Task.is_completed == False, Task.due_date.is_not(None))
        )
        if user_id is not None:
            query = query.where(Task.user_id == user_id)

        try:
            rows = self.db.execute(query.order_by(Task.user_id, Task.due_date))
            tasks = list(rows.scalars().all())
        except SQLAlchemyError as e:
            raise TransientStoreError(f"Loading open tasks failed: {e}") from e

        tasks_by_user: Dict[str, List[TaskSnapshot]] = defaultdict(list)
        for task in tasks:
            tasks_by_user[task.user_id].append(TaskSnapshot.from_model(task))
        return tasks_by_user

    async def _reconcile_user_tasks(
        self,
        user_id: str,
        tasks: List[TaskSnapshot],
        now: Union[date, datetime],
        report: SweepReport,
    ) -> None:
        if not tasks:
            return

        try:
            task_ids = [task.id for task in tasks]
            active_by_task: Dict[str, List[Notification]] = defaultdict(list)
            for notification in await self.store.find_active_for_user(user_id, task_ids):
                active_by_task[notification.task_id].append(notification)
            muted = await self.mute_store.muted_task_ids(user_id, task_ids)
            blocked = await self.store.do_not_recreate_tiers(user_id, task_ids)

            user_result = TaskReconcileResult()
            invalid = 0
            for task in tasks:
                try:
                    user_result.add(
                        await self.lifecycle.reconcile_task(
                            task,
                            active_by_task.get(task.id, []),
                            now=now,
                            muted=task.id in muted,
                            blocked_tiers=blocked.get(task.id, set()),
                        )
                    )
                except TaskValidationError as e:
                    invalid += 1
                    logger.warning(f"Skipping task {e.task_id}: {e.message}")

            self.db.commit()

            report.absorb(user_result)
            report.invalid_tasks += invalid
            report.tasks_processed += len(tasks)
            report.users_processed += 1

        except Exception as e:
            self.db.rollback()
            report.failed_users.append(user_id)
            logger.error(
                f"Reconciliation failed for user {user_id}, continuing with the next user: {e}"
            )

    async def _retire_closed_task_reminders(
        self, report: SweepReport, user_id: Optional[str] = None
    ) -> None:
        """
        Catch up on completions and removals the reactive path missed.

        Completed tasks get their rows dismissed without a marker or a mute.
        Tasks that lost their due date or no longer exist lose every row.
        """
        try:
            rows = await self.store.find_active_without_open_task(user_id)

            completed = [n for n, task in rows if task is not None and task.is_completed]
            closed = sorted(
                {
                    (n.user_id, n.task_id)
                    for n, task in rows
                    if task is None or not task.is_completed
                }
            )

            dismissed = await self.store.dismiss_notifications(
                completed, DismissReason.COMPLETED
            )
            deleted = 0
            for owner_id, task_id in closed:
                deleted += await self.store.delete_all(owner_id, task_id)

            self.db.commit()

        except TransientStoreError as e:
            self.db.rollback()
            logger.error(f"Closed task cleanup skipped, store unavailable: {e.message}")
            return

        report.dismissed += dismissed
        report.deleted += deleted
        if dismissed or deleted:
            logger.info(
                f"Retired reminders of closed tasks: {dismissed} dismissed, {deleted} deleted"
            )

    async def _run_dedup(self, report: SweepReport, user_id: Optional[str] = None) -> None:
        try:
            dedup_report = await self.dedup.run(user_id)
            report.deduplicated += dedup_report.dismissed
        except TransientStoreError as e:
            self.db.rollback()
            logger.error(f"Dedup pass skipped, store unavailable: {e.message}")
