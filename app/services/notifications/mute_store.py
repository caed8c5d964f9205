from typing import Iterable, Set

from sqlalchemy import select, and_
from sqlalchemy.orm import Session

from app.db.models import MutePreference
from app.utils.datetime_utils import naive_utc_now
from app.utils.logging import get_logger

from .store import translate_store_errors

logger = get_logger()


class MutePreferenceStore:
    """Per-(user, task) "stop reminding me" preference."""

    def __init__(self, db_session: Session):
        self.db = db_session

    @translate_store_errors
    async def is_muted(self, user_id: str, task_id: str) -> bool:
        """Muted only when a preference row exists and says so"""
        result = self.db.execute(
            select(MutePreference.muted).where(
                and_(
                    MutePreference.user_id == user_id,
                    MutePreference.task_id == task_id,
                )
            )
        )
        return bool(result.scalar_one_or_none())

    @translate_store_errors
    async def muted_task_ids(self, user_id: str, task_ids: Iterable[str]) -> Set[str]:
        """Batch variant of is_muted for the reconciliation sweep"""
        task_ids = list(task_ids)
        if not task_ids:
            return set()

        result = self.db.execute(
            select(MutePreference.task_id).where(
                and_(
                    MutePreference.user_id == user_id,
                    MutePreference.task_id.in_(task_ids),
                    MutePreference.muted == True,
                )
            )
        )
        return set(result.scalars().all())

    @translate_store_errors
    async def set_muted(self, user_id: str, task_id: str, muted: bool = True) -> None:
        result = self.db.execute(
            select(MutePreference).where(
                and_(
                    MutePreference.user_id == user_id,
                    MutePreference.task_id == task_id,
                )
            )
        )
        preference = result.scalar_one_or_none()

        if preference is None:
            self.db.add(
                MutePreference(
                    user_id=user_id,
                    task_id=task_id,
                    muted=muted,
                    updated_at=naive_utc_now(),
                )
            )
        elif preference.muted != muted:
            preference.muted = muted
            preference.updated_at = naive_utc_now()

        self.db.flush()
        logger.info(
            f"{'Muted' if muted else 'Unmuted'} notifications for task {task_id} of user {user_id}"
        )
