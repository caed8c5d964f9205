from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.session import get_sync_session
from app.middlewares.auth_middleware import (
    AuthState,
    get_current_user,
    require_user_type,
)
from app.schemas.notification_schemas import NotificationStats
from app.schemas.task_schemas import TaskDeletedEvent, TaskSavedEvent
from app.services.notifications.lifecycle import NotificationLifecycleManager
from app.services.notifications.user_notification_service import (
    UserNotificationService,
)
from app.utils.datetime_utils import now_in_zone
from app.utils.errors import AuthorizationError
from app.utils.responses import ResponseBuilder
from app.utils.logging import get_logger

notifications_router = APIRouter()
logger = get_logger()


def _stats(**counts) -> dict:
    return NotificationStats(**counts).model_dump(by_alias=True)


@notifications_router.get("/")
async def get_notifications(
    request: Request,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_sync_session)],
    locale: Optional[str] = Query(
        default=None, description="Locale used to render notification text"
    ),
):
    """
    Get the active notifications of the current user, newest first.

    Dismissed notifications are never returned.
    """
    service = UserNotificationService(db)
    notifications = await service.list_active(current_user.user_id, locale)
    unread_count = await service.get_unread_count(current_user.user_id)

    return ResponseBuilder.success(
        request=request,
        data={"notifications": notifications, "unreadCount": unread_count},
        message=f"Retrieved {len(notifications)} notifications",
    )


@notifications_router.get("/count")
async def get_unread_count(
    request: Request,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_sync_session)],
):
    """Unread badge count for the current user"""
    service = UserNotificationService(db)
    unread_count = await service.get_unread_count(current_user.user_id)

    return ResponseBuilder.success(
        request=request,
        data=_stats(unread_count=unread_count),
        message="Unread count retrieved",
    )


@notifications_router.patch("/read-all")
async def mark_all_notifications_as_read(
    request: Request,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_sync_session)],
):
    service = UserNotificationService(db)
    updated_count = await service.mark_read(current_user.user_id, all=True)

    return ResponseBuilder.success(
        request=request,
        data=_stats(updated_count=updated_count, unread_count=0),
        message=f"Marked {updated_count} notifications as read",
    )


@notifications_router.patch("/dismiss-all")
async def dismiss_all_notifications(
    request: Request,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_sync_session)],
):
    """
    Dismiss every active notification and mute the tasks they belong to.

    The engine will not remind the user about those tasks again until they
    are unmuted.
    """
    service = UserNotificationService(db)
    dismissed_count = await service.dismiss(current_user.user_id, all=True)

    return ResponseBuilder.success(
        request=request,
        data=_stats(dismissed_count=dismissed_count),
        message=f"Dismissed {dismissed_count} notifications",
    )


@notifications_router.patch("/{notification_id}/read")
async def mark_notification_as_read(
    request: Request,
    notification_id: str,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_sync_session)],
    unread: bool = Query(default=False, description="Mark as unread instead"),
):
    service = UserNotificationService(db)
    updated_count = await service.mark_read(
        current_user.user_id, notification_id=notification_id, as_unread=unread
    )
    unread_count = await service.get_unread_count(current_user.user_id)

    return ResponseBuilder.success(
        request=request,
        data=_stats(updated_count=updated_count, unread_count=unread_count),
        message=f"Notification marked as {'unread' if unread else 'read'}",
    )


@notifications_router.patch("/{notification_id}/dismiss")
async def dismiss_notification(
    request: Request,
    notification_id: str,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_sync_session)],
):
    """
    Dismiss a single notification.

    The same urgency tier is not recreated for the task afterwards, but a
    later, more urgent tier still is.
    """
    service = UserNotificationService(db)
    dismissed_count = await service.dismiss(
        current_user.user_id, notification_id=notification_id
    )
    unread_count = await service.get_unread_count(current_user.user_id)

    return ResponseBuilder.success(
        request=request,
        data=_stats(dismissed_count=dismissed_count, unread_count=unread_count),
        message="Notification dismissed",
    )


@notifications_router.patch("/tasks/{task_id}/dismiss")
async def dismiss_task_notifications(
    request: Request,
    task_id: str,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_sync_session)],
):
    """Dismiss every notification of a task and mute the task"""
    service = UserNotificationService(db)
    dismissed_count = await service.dismiss(current_user.user_id, task_id=task_id)

    return ResponseBuilder.success(
        request=request,
        data=_stats(dismissed_count=dismissed_count),
        message=f"Dismissed {dismissed_count} notifications and muted the task",
    )


@notifications_router.patch("/tasks/{task_id}/unmute")
async def unmute_task(
    request: Request,
    task_id: str,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_sync_session)],
):
    service = UserNotificationService(db)
    await service.unmute(current_user.user_id, task_id)

    return ResponseBuilder.success(
        request=request,
        data={"taskId": task_id, "muted": False},
        message="Task reminders re-enabled",
    )


@notifications_router.post("/refresh")
async def refresh_notifications(
    request: Request,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_sync_session)],
):
    """Reconcile the current user's reminders against their open tasks now"""
    service = UserNotificationService(db)
    report = await service.refresh(
        current_user.user_id, now_in_zone(settings.NOTIFICATION_TIMEZONE)
    )

    return ResponseBuilder.success(
        request=request,
        data=report.model_dump(),
        message="Notifications refreshed",
    )


@notifications_router.delete("/")
async def delete_all_notifications(
    request: Request,
    current_user: Annotated[AuthState, Depends(require_user_type("admin"))],
    db: Annotated[Session, Depends(get_sync_session)],
    user_id: Optional[str] = Query(
        default=None, description="User whose notifications are reset"
    ),
):
    """Administrative reset: permanently delete a user's notifications"""
    target_user_id = user_id or current_user.user_id
    service = UserNotificationService(db)
    deleted_count = await service.delete_all(target_user_id)

    logger.info(
        f"Admin {current_user.user_id} reset notifications of user {target_user_id}"
    )
    return ResponseBuilder.success(
        request=request,
        data=_stats(deleted_count=deleted_count),
        message=f"Deleted {deleted_count} notifications",
    )


@notifications_router.post("/task-events/saved")
async def task_saved(
    request: Request,
    event: TaskSavedEvent,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_sync_session)],
):
    """
    Hook called by the task subsystem after a task is created or updated.

    Reminder failures are logged and reported in the payload, never as an
    error status, so the task write itself is never affected.
    """
    _ensure_owner(current_user, event.task.user_id)

    manager = NotificationLifecycleManager(db)
    outcome = await manager.handle_task_change(
        event.task.user_id,
        event.task,
        event.previous_task,
        now=now_in_zone(settings.NOTIFICATION_TIMEZONE),
    )

    return ResponseBuilder.success(
        request=request,
        data=outcome.model_dump(mode="json"),
        message=f"Task reminders {outcome.action}",
    )


@notifications_router.post("/task-events/deleted")
async def task_deleted(
    request: Request,
    event: TaskDeletedEvent,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_sync_session)],
):
    _ensure_owner(current_user, event.user_id)

    manager = NotificationLifecycleManager(db)
    outcome = await manager.handle_task_deleted(event.user_id, event.task_id)

    return ResponseBuilder.success(
        request=request,
        data=outcome.model_dump(mode="json"),
        message=f"Task reminders {outcome.action}",
    )


def _ensure_owner(current_user: AuthState, user_id: str) -> None:
    if current_user.user_id != user_id and current_user.user_type not in (
        "admin",
        "service",
    ):
        raise AuthorizationError(
            "Cannot change reminders of another user", "INSUFFICIENT_PERMISSIONS"
        )
