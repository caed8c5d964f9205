from datetime import date, datetime
from typing import Any, Mapping, Optional

from pydantic import Field, ValidationError, field_validator

from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from app.utils.errors import TaskValidationError


class TaskSnapshot(BaseModel):
    """State of a task as seen by the reminder engine."""

    id: str = Field(..., description="Task ID")
    user_id: str = Field(..., description="Owner user ID")
    title: str = Field(..., description="Task title")
    due_date: Optional[date] = Field(None, description="Due date (calendar day)")
    is_completed: bool = Field(False, description="Whether the task is completed")

    @field_validator("due_date", mode="before")
    def normalise_due_date(cls, v: Any) -> Any:
        if v in (None, ""):
            return None
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and "T" in v:
            return datetime.fromisoformat(v.replace("Z", "+00:00")).date()
        return v

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> "TaskSnapshot":
        """Validate raw task data, raising TaskValidationError when malformed."""
        try:
            return cls.model_validate(raw)
        except (ValidationError, ValueError) as e:
            raise TaskValidationError(
                f"Malformed task payload: {e}", task_id=str(raw.get("id"))
            ) from e

    @classmethod
    def from_model(cls, task: Any) -> "TaskSnapshot":
        """Snapshot of a task row, raising TaskValidationError when it is not one."""
        try:
            return cls(
                id=task.id,
                user_id=task.user_id,
                title=task.title,
                due_date=task.due_date,
                is_completed=task.is_completed,
            )
        except (AttributeError, ValidationError, ValueError) as e:
            raise TaskValidationError(
                f"Malformed task: {e}", task_id=str(getattr(task, "id", None))
            ) from e


class TaskSavedEvent(BaseModel):
    task: TaskSnapshot = Field(..., description="New task state")
    previous_task: Optional[TaskSnapshot] = Field(
        None, description="Task state before the change, absent on create"
    )


class TaskDeletedEvent(BaseModel):
    user_id: str = Field(..., description="Owner user ID")
    task_id: str = Field(..., description="Deleted task ID")
