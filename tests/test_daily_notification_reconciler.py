import pytest
from datetime import date
from unittest.mock import AsyncMock, patch

from celery.exceptions import Retry

from app.tasks.cron.daily_notification_reconciler import (
    daily_notification_reconciler_task,
)
from app.utils.errors import TransientStoreError

from tests.conftest import NOW, active_notifications

MODULE = "app.tasks.cron.daily_notification_reconciler"


@pytest.fixture
def patched_runtime(db_session):
    with patch(f"{MODULE}.get_sync_session", side_effect=lambda: iter([db_session])):
        with patch(f"{MODULE}.now_in_zone", return_value=NOW):
            yield


class TestDailyNotificationReconcilerTask:
    def test_runs_sweep_and_reports(self, db_session, user_id, make_task, patched_runtime):
        make_task(user_id, "Rent", date(2024, 1, 10))
        make_task(user_id, "Gym", date(2024, 1, 11))

        result = daily_notification_reconciler_task("test-request")

        assert result["success"] is True
        assert result["request_id"] == "test-request"
        assert result["date"] == "2024-01-10"
        assert result["created"] == 2
        assert result["failed_users"] == []
        assert len(active_notifications(db_session, user_id)) == 2

    def test_rerun_is_idempotent(self, db_session, user_id, make_task, patched_runtime):
        make_task(user_id, "Rent", date(2024, 1, 10))
        daily_notification_reconciler_task("first")

        result = daily_notification_reconciler_task("second")

        assert result["created"] == 0
        assert result["updated"] == 0
        assert result["unchanged"] == 1

    def test_unavailable_store_is_retried(self, patched_runtime):
        with patch(
            f"{MODULE}._async_daily_notification_reconciler",
            AsyncMock(side_effect=TransientStoreError()),
        ):
            with patch.object(
                daily_notification_reconciler_task, "retry", side_effect=Retry()
            ) as retry:
                with pytest.raises(Retry):
                    daily_notification_reconciler_task("test-request")

        retry.assert_called_once()
