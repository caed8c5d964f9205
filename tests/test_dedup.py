import pytest
from datetime import timedelta

from app.db.models import DismissReason, NotificationTier
from app.services.notifications.dedup import DedupPass, group_active_notifications

from tests.conftest import NOW, active_notifications, all_notifications


class TestDedupPass:
    @pytest.mark.asyncio
    async def test_three_duplicates_leave_the_newest(
        self, db_session, user_id, make_notification
    ):
        oldest = make_notification(user_id, "task-1", updated_at=NOW - timedelta(hours=3))
        newest = make_notification(user_id, "task-1", updated_at=NOW)
        middle = make_notification(user_id, "task-1", updated_at=NOW - timedelta(hours=1))

        report = await DedupPass(db_session).run()

        assert report.duplicate_groups == 1
        assert report.dismissed == 2
        assert [n.id for n in active_notifications(db_session, user_id)] == [newest.id]

        db_session.expire_all()
        for row in (oldest, middle):
            assert row.dismissed
            assert row.dismiss_reason == DismissReason.DUPLICATE

    @pytest.mark.asyncio
    async def test_different_tiers_are_not_duplicates(
        self, db_session, user_id, make_notification
    ):
        make_notification(user_id, "task-1", NotificationTier.DANGER)
        make_notification(user_id, "task-1", NotificationTier.WARNING, "due_tomorrow")
        make_notification(user_id, "task-2", NotificationTier.DANGER)

        report = await DedupPass(db_session).run()

        assert report.groups_checked == 3
        assert report.dismissed == 0

    @pytest.mark.asyncio
    async def test_dismissed_rows_are_ignored(
        self, db_session, user_id, make_notification
    ):
        make_notification(user_id, "task-1", dismissed=True)
        make_notification(user_id, "task-1")

        report = await DedupPass(db_session).run()

        assert report.dismissed == 0
        assert len(all_notifications(db_session, user_id)) == 2

    @pytest.mark.asyncio
    async def test_restricted_to_one_user(self, db_session, user_id, make_notification):
        make_notification(user_id, "task-1")
        make_notification(user_id, "task-1")
        make_notification("other-user", "task-9")
        make_notification("other-user", "task-9")

        report = await DedupPass(db_session).run(user_id)

        assert report.dismissed == 1
        assert len(active_notifications(db_session, "other-user")) == 2

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, db_session, user_id, make_notification):
        make_notification(user_id, "task-1")
        make_notification(user_id, "task-1")
        dedup = DedupPass(db_session)
        await dedup.run()

        report = await dedup.run()

        assert report.duplicate_groups == 0
        assert report.dismissed == 0


def test_grouping_key(user_id, make_notification):
    first = make_notification(user_id, "task-1")
    second = make_notification(user_id, "task-1")
    other = make_notification(user_id, "task-1", NotificationTier.INFO)

    groups = group_active_notifications([first, second, other])

    assert len(groups[(user_id, "task-1", NotificationTier.DANGER)]) == 2
    assert len(groups[(user_id, "task-1", NotificationTier.INFO)]) == 1
