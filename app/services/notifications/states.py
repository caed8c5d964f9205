from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from app.db.models import DismissReason, Notification, NotificationTier

from .origin_tag import OriginTag


class PendingReminder(BaseModel):
    """A reminder the classifier wants to exist but that is not persisted yet."""

    model_config = ConfigDict(frozen=True)

    tier: NotificationTier
    title_key: str
    message_key: str
    params: Dict[str, Any] = Field(default_factory=dict)


class ActiveReminder(BaseModel):
    model_config = ConfigDict(frozen=True)

    notification_id: str
    tier: NotificationTier


class DismissedReminder(BaseModel):
    model_config = ConfigDict(frozen=True)

    notification_id: str
    tier: NotificationTier
    reason: Optional[DismissReason] = None
    permanently_muted: bool = False


ReminderState = Union[PendingReminder, ActiveReminder, DismissedReminder]


def state_of(notification: Notification) -> Union[ActiveReminder, DismissedReminder]:
    """Lift a persisted row into its lifecycle state."""
    if not notification.dismissed:
        return ActiveReminder(notification_id=notification.id, tier=notification.tier)

    tag = OriginTag.parse(notification.origin_tag)
    return DismissedReminder(
        notification_id=notification.id,
        tier=notification.tier,
        reason=notification.dismiss_reason,
        permanently_muted=tag.permanently_muted if tag else False,
    )
