from typing import Any, Dict, Optional
from pydantic import Field

from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class GetUserNotificationItem(BaseModel):
    id: str = Field(..., description="Notification ID")
    task_id: str = Field(..., description="Task the reminder is about")
    tier: str = Field(..., description="Urgency tier: info, warning or danger")

    title_key: str = Field(..., description="Title template key")
    message_key: str = Field(..., description="Message template key")
    message_params: Dict[str, Any] = Field(
        default_factory=dict, description="Template parameters"
    )
    subject: str = Field(..., description="Rendered notification title")
    body: str = Field(..., description="Rendered notification body")

    due_date: Optional[str] = Field(None, description="Task due date in ISO format")
    is_read: bool = Field(..., description="Whether notification has been read")
    created_at: str = Field(..., description="Creation timestamp in ISO format")
    updated_at: str = Field(..., description="Update timestamp in ISO format")


class NotificationStats(BaseModel):
    unread_count: Optional[int] = Field(0, description="Count of unread notifications")
    updated_count: Optional[int] = Field(
        0, description="Count of notifications changed by the request"
    )
    dismissed_count: Optional[int] = Field(
        0, description="Count of notifications dismissed by the request"
    )
    deleted_count: Optional[int] = Field(
        0, description="Count of notifications deleted by the request"
    )
