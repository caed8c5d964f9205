from typing import Optional
from datetime import datetime, date
import uuid
from sqlalchemy import (
    String,
    Boolean,
    Text,
    Enum,
    Index,
    UniqueConstraint,
    DateTime,
    Date,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import enum

from app.utils.datetime_utils import naive_utc_now


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


# Enums
class NotificationTier(enum.Enum):
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]

    def __lt__(self, other: "NotificationTier") -> bool:
        if not isinstance(other, NotificationTier):
            return NotImplemented
        return self.rank < other.rank


_TIER_RANKS = {
    NotificationTier.INFO: 0,
    NotificationTier.WARNING: 1,
    NotificationTier.DANGER: 2,
}


class DismissReason(enum.Enum):
    COMPLETED = "completed"
    TIER_CHANGED = "tier_changed"
    DUPLICATE = "duplicate"
    USER_DISMISSED = "user_dismissed"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now, nullable=False
    )


# Models
class Task(Base, AuditMixin):
    """
    Read model of the task subsystem's todo entity.

    The reminder engine only ever selects from this table.
    """

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("idx_tasks_user_id", "user_id"),
        Index("idx_tasks_open_due", "is_completed", "due_date"),
    )


class Notification(Base, AuditMixin):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    task_id: Mapped[str] = mapped_column(String(36), nullable=False)
    tier: Mapped[NotificationTier] = mapped_column(
        Enum(NotificationTier), nullable=False
    )
    # Template keys, rendered by the message renderer at read time
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str] = mapped_column(String(100), nullable=False)
    # JSON stored as Text - serialize/deserialize in application
    message_params: Mapped[Optional[str]] = mapped_column(Text)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dismissed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dismiss_reason: Mapped[Optional[DismissReason]] = mapped_column(
        Enum(DismissReason)
    )
    origin_tag: Mapped[str] = mapped_column(String(120), nullable=False)

    __table_args__ = (
        Index("idx_notif_user_task_tier", "user_id", "task_id", "tier", "dismissed"),
        Index("idx_notif_user_dismissed", "user_id", "dismissed"),
        Index("idx_notif_dismissed_updated", "dismissed", "updated_at"),
    )


class MutePreference(Base):
    __tablename__ = "mute_preferences"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    task_id: Mapped[str] = mapped_column(String(36), nullable=False)
    muted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "task_id", name="uq_mute_pref_user_task"),
    )
