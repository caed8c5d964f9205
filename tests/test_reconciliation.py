import pytest
from datetime import date, timedelta
from unittest.mock import AsyncMock, patch

from app.db.models import DismissReason, NotificationTier
from app.services.notifications.lifecycle import NotificationLifecycleManager
from app.services.notifications.mute_store import MutePreferenceStore
from app.services.notifications.reconciliation import ReconciliationScheduler
from app.services.notifications.store import NotificationStore
from app.utils.errors import TransientStoreError

from tests.conftest import NOW, TODAY, active_notifications, all_notifications


@pytest.fixture
def scenario_tasks(db_session, user_id, make_task):
    """Tasks A-F of a user, with F muted."""
    tasks = {
        "A": make_task(user_id, "Task A", date(2024, 1, 8)),
        "B": make_task(user_id, "Task B", date(2024, 1, 10)),
        "C": make_task(user_id, "Task C", date(2024, 1, 11)),
        "D": make_task(user_id, "Task D", date(2024, 1, 13)),
        "E": make_task(user_id, "Task E", date(2024, 1, 20)),
        "F": make_task(user_id, "Task F", date(2024, 1, 10)),
    }
    make_task(user_id, "Done already", date(2024, 1, 9), is_completed=True)
    make_task(user_id, "Someday", None)
    return tasks


async def _mute(db_session, user_id, task_id):
    await MutePreferenceStore(db_session).set_muted(user_id, task_id, True)
    db_session.commit()


class TestFullSweep:
    @pytest.mark.asyncio
    async def test_sweep_produces_expected_reminders(
        self, db_session, user_id, scenario_tasks
    ):
        await _mute(db_session, user_id, scenario_tasks["F"].id)

        report = await ReconciliationScheduler(db_session).run_sweep(NOW)

        by_task = {n.task_id: n for n in active_notifications(db_session, user_id)}
        expected = {
            "A": (NotificationTier.DANGER, "overdue_task"),
            "B": (NotificationTier.DANGER, "due_today"),
            "C": (NotificationTier.WARNING, "due_tomorrow"),
            "D": (NotificationTier.INFO, "upcoming_deadline"),
        }
        assert len(by_task) == len(expected)
        for name, (tier, title_key) in expected.items():
            notification = by_task[scenario_tasks[name].id]
            assert (notification.tier, notification.title) == (tier, title_key)

        assert scenario_tasks["E"].id not in by_task
        assert scenario_tasks["F"].id not in by_task

        assert report.users_processed == 1
        assert report.tasks_processed == 6
        assert report.created == 4
        assert report.skipped == 2
        assert report.failed_users == []

    @pytest.mark.asyncio
    async def test_second_sweep_writes_nothing(self, db_session, user_id, scenario_tasks):
        scheduler = ReconciliationScheduler(db_session)
        await scheduler.run_sweep(NOW)

        second = await scheduler.run_sweep(NOW)

        assert second.writes == 0
        assert second.unchanged == 5

    @pytest.mark.asyncio
    async def test_next_day_moves_tiers_without_muting(
        self, db_session, user_id, make_task
    ):
        task = make_task(user_id, "Rent", date(2024, 1, 12))
        scheduler = ReconciliationScheduler(db_session)
        await scheduler.run_sweep(NOW)

        report = await scheduler.run_sweep(NOW + timedelta(days=1))

        assert report.dismissed == 1
        assert report.created == 1
        rows = all_notifications(db_session, user_id, task.id)
        dismissed = [n for n in rows if n.dismissed]
        assert dismissed[0].dismiss_reason == DismissReason.TIER_CHANGED
        assert [n.tier for n in rows if not n.dismissed] == [NotificationTier.WARNING]
        assert not await MutePreferenceStore(db_session).is_muted(user_id, task.id)

    @pytest.mark.asyncio
    async def test_overdue_count_is_refreshed_daily(self, db_session, user_id, make_task):
        make_task(user_id, "Taxes", date(2024, 1, 8))
        scheduler = ReconciliationScheduler(db_session)
        await scheduler.run_sweep(NOW)

        report = await scheduler.run_sweep(NOW + timedelta(days=1))

        assert report.updated == 1
        assert len(active_notifications(db_session, user_id)) == 1

    @pytest.mark.asyncio
    async def test_user_dismissed_tier_stays_dismissed(
        self, db_session, user_id, make_task
    ):
        task = make_task(user_id, "Rent", TODAY)
        scheduler = ReconciliationScheduler(db_session)
        await scheduler.run_sweep(NOW)
        await NotificationStore(db_session).dismiss(
            user_id, task.id, do_not_recreate=True
        )
        db_session.commit()

        report = await scheduler.run_sweep(NOW)

        assert report.created == 0
        assert active_notifications(db_session, user_id) == []

    @pytest.mark.asyncio
    async def test_failed_user_does_not_stop_the_sweep(
        self, db_session, user_id, make_task
    ):
        make_task(user_id, "Fine", TODAY)
        make_task("unlucky-user", "Broken", TODAY)
        scheduler = ReconciliationScheduler(db_session)
        original = scheduler.mute_store.muted_task_ids

        async def flaky(owner_id, task_ids):
            if owner_id == "unlucky-user":
                raise TransientStoreError("timed out")
            return await original(owner_id, task_ids)

        with patch.object(scheduler.mute_store, "muted_task_ids", side_effect=flaky):
            report = await scheduler.run_sweep(NOW)

        assert report.failed_users == ["unlucky-user"]
        assert report.users_processed == 1
        assert len(active_notifications(db_session, user_id)) == 1
        assert all_notifications(db_session, "unlucky-user") == []

    @pytest.mark.asyncio
    async def test_task_list_unavailable_is_raised(self, db_session):
        scheduler = ReconciliationScheduler(db_session)

        with patch.object(
            scheduler,
            "_load_open_tasks_by_user",
            AsyncMock(side_effect=TransientStoreError()),
        ):
            with pytest.raises(TransientStoreError):
                await scheduler.run_sweep(NOW)


class TestClosedTaskCleanup:
    @pytest.mark.asyncio
    async def test_missed_completion_is_dismissed_on_next_sweep(
        self, db_session, user_id, make_task
    ):
        task = make_task(user_id, "Rent", TODAY)
        scheduler = ReconciliationScheduler(db_session)
        await scheduler.run_sweep(NOW)
        assert len(active_notifications(db_session, user_id)) == 1

        task.is_completed = True
        db_session.commit()
        manager = NotificationLifecycleManager(db_session)
        manager.store.dismiss = AsyncMock(side_effect=TransientStoreError())
        outcome = await manager.handle_task_change(user_id, task, now=NOW)
        assert outcome.action == "failed"

        report = await scheduler.run_sweep(NOW)

        assert active_notifications(db_session, user_id) == []
        assert report.dismissed == 1
        (row,) = all_notifications(db_session, user_id, task.id)
        assert row.dismiss_reason == DismissReason.COMPLETED
        assert not row.origin_tag.endswith("-donotrecreate")
        assert not await MutePreferenceStore(db_session).is_muted(user_id, task.id)

    @pytest.mark.asyncio
    async def test_missed_due_date_removal_deletes_rows(
        self, db_session, user_id, make_task, make_notification
    ):
        task = make_task(user_id, "Rent", TODAY)
        make_notification(user_id, task.id)
        make_notification(user_id, task.id, dismissed=True)
        task.due_date = None
        db_session.commit()

        report = await ReconciliationScheduler(db_session).run_sweep(NOW)

        assert report.deleted == 2
        assert all_notifications(db_session, user_id, task.id) == []

    @pytest.mark.asyncio
    async def test_rows_of_deleted_tasks_are_removed(
        self, db_session, user_id, make_notification
    ):
        make_notification(user_id, "deleted-task")

        report = await ReconciliationScheduler(db_session).reconcile_user(user_id, NOW)

        assert report.deleted == 1
        assert all_notifications(db_session, user_id) == []

    @pytest.mark.asyncio
    async def test_cleanup_is_idempotent(self, db_session, user_id, make_task):
        task = make_task(user_id, "Rent", TODAY)
        scheduler = ReconciliationScheduler(db_session)
        await scheduler.run_sweep(NOW)
        task.is_completed = True
        db_session.commit()
        await scheduler.run_sweep(NOW)

        second = await scheduler.run_sweep(NOW)

        assert second.writes == 0


class TestReconcileUser:
    @pytest.mark.asyncio
    async def test_only_the_given_user_is_touched(self, db_session, user_id, make_task):
        make_task(user_id, "Mine", TODAY)
        make_task("other-user", "Theirs", TODAY)

        report = await ReconciliationScheduler(db_session).reconcile_user(user_id, NOW)

        assert report.created == 1
        assert len(active_notifications(db_session, user_id)) == 1
        assert all_notifications(db_session, "other-user") == []

    @pytest.mark.asyncio
    async def test_collapses_duplicates_of_the_user(
        self, db_session, user_id, make_task, make_notification
    ):
        task = make_task(user_id, "Write report", TODAY)
        make_notification(user_id, task.id, updated_at=NOW - timedelta(hours=2))
        make_notification(user_id, task.id, updated_at=NOW - timedelta(hours=1))

        report = await ReconciliationScheduler(db_session).reconcile_user(user_id, NOW)

        assert report.deduplicated == 1
        assert len(active_notifications(db_session, user_id)) == 1
