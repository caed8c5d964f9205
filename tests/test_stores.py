import pytest
import uuid
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.db.models import DismissReason, NotificationTier
from app.services.notifications.classifier import classify
from app.services.notifications.mute_store import MutePreferenceStore
from app.services.notifications.origin_tag import OriginTag
from app.services.notifications.states import (
    ActiveReminder,
    DismissedReminder,
    state_of,
)
from app.services.notifications.store import (
    NotificationStore,
    UpsertOutcome,
    decode_params,
)
from app.utils.errors import TransientStoreError

from tests.conftest import NOW, TODAY, active_notifications, all_notifications


class TestOriginTag:
    def test_string_form(self):
        tag = OriginTag(tier=NotificationTier.WARNING, task_id="42")
        assert tag.to_string() == "warning-42"
        assert tag.muted().to_string() == "warning-42-donotrecreate"

    def test_parse_keeps_hyphenated_task_ids(self):
        task_id = str(uuid.uuid4())
        tag = OriginTag.parse(f"danger-{task_id}-donotrecreate")

        assert tag.tier == NotificationTier.DANGER
        assert tag.task_id == task_id
        assert tag.permanently_muted

    @pytest.mark.parametrize("raw", [None, "", "danger", "urgent-42", "info-"])
    def test_parse_rejects_unrecognised_tags(self, raw):
        assert OriginTag.parse(raw) is None


class TestNotificationStoreUpsert:
    @pytest.mark.asyncio
    async def test_insert_then_unchanged(self, db_session, user_id):
        store = NotificationStore(db_session)
        reminder = classify(TODAY, NOW, "Pay rent")

        row, outcome = await store.upsert(user_id, "task-1", reminder, TODAY)
        assert outcome == UpsertOutcome.CREATED
        assert row.origin_tag == "danger-task-1"
        assert decode_params(row.message_params) == {"title": "Pay rent"}

        again, outcome = await store.upsert(user_id, "task-1", reminder, TODAY)
        assert outcome == UpsertOutcome.UNCHANGED
        assert again.id == row.id
        assert len(active_notifications(db_session, user_id)) == 1

    @pytest.mark.asyncio
    async def test_changed_parameters_update_in_place(self, db_session, user_id):
        store = NotificationStore(db_session)
        row, _ = await store.upsert(
            user_id, "task-1", classify(TODAY, NOW, "Pay rent"), TODAY
        )

        updated, outcome = await store.upsert(
            user_id, "task-1", classify(TODAY, NOW, "Pay the rent"), TODAY
        )

        assert outcome == UpsertOutcome.UPDATED
        assert updated.id == row.id
        assert decode_params(updated.message_params)["title"] == "Pay the rent"

    @pytest.mark.asyncio
    async def test_database_errors_become_transient(self, db_session, user_id):
        store = NotificationStore(db_session)
        failure = OperationalError("SELECT", {}, Exception("database is locked"))

        with patch.object(db_session, "execute", side_effect=failure):
            with pytest.raises(TransientStoreError):
                await store.find_active(user_id, "task-1")


class TestNotificationStoreDismissal:
    @pytest.mark.asyncio
    async def test_dismiss_with_do_not_recreate(
        self, db_session, user_id, make_notification
    ):
        store = NotificationStore(db_session)
        make_notification(user_id, "task-1", NotificationTier.DANGER)

        dismissed = await store.dismiss(user_id, "task-1", do_not_recreate=True)
        db_session.commit()

        assert dismissed == 1
        row = all_notifications(db_session, user_id)[0]
        assert row.dismissed
        assert row.dismiss_reason == DismissReason.USER_DISMISSED
        assert row.origin_tag == "danger-task-1-donotrecreate"

        assert await store.has_do_not_recreate(
            user_id, "task-1", NotificationTier.DANGER
        )
        assert not await store.has_do_not_recreate(
            user_id, "task-1", NotificationTier.WARNING
        )

    @pytest.mark.asyncio
    async def test_dismiss_limited_to_tier(self, db_session, user_id, make_notification):
        store = NotificationStore(db_session)
        make_notification(user_id, "task-1", NotificationTier.INFO, "upcoming_deadline")
        make_notification(user_id, "task-1", NotificationTier.WARNING, "due_tomorrow")

        await store.dismiss(
            user_id, "task-1", tier=NotificationTier.INFO, reason=DismissReason.TIER_CHANGED
        )
        db_session.commit()

        remaining = active_notifications(db_session, user_id)
        assert [n.tier for n in remaining] == [NotificationTier.WARNING]

    @pytest.mark.asyncio
    async def test_engine_dismissal_leaves_no_marker(
        self, db_session, user_id, make_notification
    ):
        store = NotificationStore(db_session)
        make_notification(user_id, "task-1", NotificationTier.INFO, "upcoming_deadline")

        await store.dismiss(user_id, "task-1", reason=DismissReason.TIER_CHANGED)
        db_session.commit()

        assert await store.do_not_recreate_tiers(user_id, ["task-1"]) == {}

    @pytest.mark.asyncio
    async def test_delete_active_keeps_history(
        self, db_session, user_id, make_notification
    ):
        store = NotificationStore(db_session)
        make_notification(user_id, "task-1", NotificationTier.INFO, dismissed=True)
        make_notification(user_id, "task-1", NotificationTier.WARNING, "due_tomorrow")

        deleted = await store.delete_active(user_id, "task-1")
        db_session.commit()

        assert deleted == 1
        remaining = all_notifications(db_session, user_id)
        assert len(remaining) == 1
        assert remaining[0].dismissed

    @pytest.mark.asyncio
    async def test_delete_all_removes_dismissed_rows_too(
        self, db_session, user_id, make_notification
    ):
        store = NotificationStore(db_session)
        make_notification(user_id, "task-1", NotificationTier.INFO, dismissed=True)
        make_notification(user_id, "task-1", NotificationTier.WARNING, "due_tomorrow")
        make_notification(user_id, "task-2")

        assert await store.delete_all(user_id, "task-1") == 2
        db_session.commit()

        assert [n.task_id for n in all_notifications(db_session, user_id)] == ["task-2"]

    @pytest.mark.asyncio
    async def test_set_read_all_only_touches_active(
        self, db_session, user_id, make_notification
    ):
        store = NotificationStore(db_session)
        make_notification(user_id, "task-1")
        make_notification(user_id, "task-2")
        make_notification(user_id, "task-3", dismissed=True)

        assert await store.set_read(user_id) == 2

    @pytest.mark.asyncio
    async def test_set_read_keeps_updated_at(self, db_session, user_id, make_notification):
        store = NotificationStore(db_session)
        row = make_notification(user_id, "task-1", updated_at=NOW)

        assert await store.set_read(user_id, row.id) == 1
        db_session.commit()
        db_session.expire_all()

        assert row.read
        assert row.updated_at == NOW

    @pytest.mark.asyncio
    async def test_closed_task_rows_are_found(
        self, db_session, user_id, make_task, make_notification
    ):
        store = NotificationStore(db_session)
        open_task = make_task(user_id, "Open", TODAY)
        done = make_task(user_id, "Done", TODAY, is_completed=True)
        undated = make_task(user_id, "Someday", None)
        make_notification(user_id, open_task.id)
        make_notification(user_id, done.id)
        make_notification(user_id, undated.id)
        make_notification(user_id, "deleted-task")
        make_notification(user_id, done.id, dismissed=True)

        rows = await store.find_active_without_open_task(user_id)

        found = {notification.task_id: task for notification, task in rows}
        assert set(found) == {done.id, undated.id, "deleted-task"}
        assert found["deleted-task"] is None
        assert found[done.id].is_completed


class TestReminderStates:
    def test_active_row(self, user_id, make_notification):
        row = make_notification(user_id, "task-1", NotificationTier.WARNING)
        assert state_of(row) == ActiveReminder(
            notification_id=row.id, tier=NotificationTier.WARNING
        )

    @pytest.mark.asyncio
    async def test_dismissed_row_reports_marker(
        self, db_session, user_id, make_notification
    ):
        row = make_notification(user_id, "task-1")
        await NotificationStore(db_session).dismiss_notifications(
            [row], DismissReason.USER_DISMISSED, do_not_recreate=True
        )

        state = state_of(row)
        assert isinstance(state, DismissedReminder)
        assert state.permanently_muted
        assert state.reason == DismissReason.USER_DISMISSED


class TestMutePreferenceStore:
    @pytest.mark.asyncio
    async def test_not_muted_without_preference(self, db_session, user_id):
        assert not await MutePreferenceStore(db_session).is_muted(user_id, "task-1")

    @pytest.mark.asyncio
    async def test_mute_and_unmute(self, db_session, user_id):
        mute_store = MutePreferenceStore(db_session)

        await mute_store.set_muted(user_id, "task-1", True)
        db_session.commit()
        assert await mute_store.is_muted(user_id, "task-1")

        await mute_store.set_muted(user_id, "task-1", False)
        db_session.commit()
        assert not await mute_store.is_muted(user_id, "task-1")

    @pytest.mark.asyncio
    async def test_batch_lookup(self, db_session, user_id):
        mute_store = MutePreferenceStore(db_session)
        await mute_store.set_muted(user_id, "task-1", True)
        await mute_store.set_muted(user_id, "task-2", False)
        await mute_store.set_muted("someone-else", "task-3", True)
        db_session.commit()

        muted = await mute_store.muted_task_ids(user_id, ["task-1", "task-2", "task-3"])
        assert muted == {"task-1"}

    @pytest.mark.asyncio
    async def test_database_errors_become_transient(self, db_session, user_id):
        mute_store = MutePreferenceStore(db_session)
        failure = OperationalError("SELECT", {}, Exception("database is locked"))

        with patch.object(db_session, "execute", side_effect=failure):
            with pytest.raises(TransientStoreError):
                await mute_store.set_muted(user_id, "task-1", True)
            with pytest.raises(TransientStoreError):
                await mute_store.is_muted(user_id, "task-1")
