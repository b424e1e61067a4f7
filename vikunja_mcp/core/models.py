"""Task record model for the Vikunja API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Vikunja serializes unset dates as the zero time instead of null
ZERO_DATE_YEAR = 1


class Task(BaseModel):
    """A Vikunja task with a fixed set of filterable fields.

    Unknown keys in API payloads are ignored so the record shape stays closed.
    Label and assignee objects are flattened to their title and username.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int = Field(..., description="Task id")
    title: str = Field(default="", description="Task title")
    description: str = Field(default="", description="Task description (HTML)")
    done: bool = Field(default=False, description="Whether the task is done")
    priority: int = Field(default=0, description="Priority 0-5")
    percent_done: float = Field(default=0.0, description="Progress between 0 and 1")
    due_date: datetime | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    done_at: datetime | None = None
    created: datetime | None = None
    updated: datetime | None = None
    project_id: int | None = None
    labels: list[str] = Field(default_factory=list, description="Label titles")
    assignees: list[str] = Field(default_factory=list, description="Assignee usernames")

    @field_validator(
        "due_date", "start_date", "end_date", "done_at", "created", "updated", mode="after"
    )
    @classmethod
    def drop_zero_dates(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.year == ZERO_DATE_YEAR:
            return None
        return v

    @field_validator("description", "title", mode="before")
    @classmethod
    def null_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("labels", mode="before")
    @classmethod
    def flatten_labels(cls, v: Any) -> list[str]:
        if not v:
            return []
        return [item.get("title", "") if isinstance(item, dict) else str(item) for item in v]

    @field_validator("assignees", mode="before")
    @classmethod
    def flatten_assignees(cls, v: Any) -> list[str]:
        if not v:
            return []
        return [item.get("username", "") if isinstance(item, dict) else str(item) for item in v]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return self.model_dump(mode="json")
