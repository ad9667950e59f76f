from __future__ import annotations

import datetime as _dt
import uuid
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

INBOX_TITLE = "<Inbox>"

Status = Literal["next_action", "done"]
EnergyLevel = Literal["low", "medium", "high"]
Source = Literal["manual", "import", "voice", "email", "system", "recurrence"]

RECURRENCE_PATTERNS = ("daily", "weekly", "biweekly", "monthly")


def utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.UTC)


def new_id() -> str:
    return str(uuid.uuid4())


def _as_utc(value: _dt.datetime | None) -> _dt.datetime | None:
    # Naive instants (MLO exports, hand-written JSON) are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=_dt.UTC)
    return value


class _Schema(BaseModel):
    """Closed schema: unknown keys are rejected, camelCase and snake_case both accepted."""

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class Recurrence(_Schema):
    # Stored verbatim; unrecognized patterns recur weekly
    pattern: str


class Review(_Schema):
    enabled: bool = True
    interval_days: int = Field(default=7, ge=1)
    last_reviewed: _dt.datetime | None = None
    next_review: _dt.datetime | None = None

    @field_validator("last_reviewed", "next_review")
    @classmethod
    def _utc(cls, value: _dt.datetime | None) -> _dt.datetime | None:
        return _as_utc(value)


class PriorityBreakdown(_Schema):
    importance: float
    urgency: float
    quick_win: float
    energy: float


class TaskFields(_Schema):
    """User-settable fields accepted when a task is created."""

    title: str
    description: str | None = None
    status: Status = "next_action"
    importance: int = Field(default=3, ge=1, le=5)
    urgency: int = Field(default=3, ge=1, le=5)
    context: str | None = None
    time_estimate_minutes: int | None = Field(default=None, ge=0)
    energy_level: EnergyLevel = "medium"
    is_project: bool = False
    today_focus: bool = False
    start_date: _dt.datetime | None = None
    due_date: _dt.datetime | None = None
    completed_date: _dt.datetime | None = None
    recurrence: Recurrence | None = None
    review: Review | None = None
    source: Source = "manual"

    @field_validator("title")
    @classmethod
    def _title_non_empty(cls, value: str) -> str:
        v = value.strip()
        if not v:
            raise ValueError("title must be non-empty")
        return v

    @field_validator("start_date", "due_date", "completed_date")
    @classmethod
    def _utc(cls, value: _dt.datetime | None) -> _dt.datetime | None:
        return _as_utc(value)


class Task(TaskFields):
    """A task record as persisted in the store.

    Structural fields (``child_count``, ``level``, ``path``) and the priority
    fields are derived and only written by the engine and the importer.
    """

    id: str = Field(default_factory=new_id)
    owner_id: str
    parent_id: str | None = None
    computed_priority: float = 0.0
    priority_breakdown: PriorityBreakdown | None = None
    last_priority_update: _dt.datetime | None = None
    child_count: int = Field(default=0, ge=0)
    level: int = Field(default=0, ge=0)
    path: list[str] = Field(default_factory=list)
    created_at: _dt.datetime = Field(default_factory=utcnow)
    modified_at: _dt.datetime = Field(default_factory=utcnow)

    @field_validator("last_priority_update", "created_at", "modified_at")
    @classmethod
    def _utc_stamps(cls, value: _dt.datetime | None) -> _dt.datetime | None:
        return _as_utc(value)

    @property
    def is_done(self) -> bool:
        return self.status == "done"

    @property
    def is_inbox(self) -> bool:
        return self.title == INBOX_TITLE and self.parent_id is None


class TaskUpdate(_Schema):
    """Partial edit of user-settable fields. Unset fields are left alone.

    Reparenting goes through ``move_task`` and completion through
    ``toggle_complete`` so the structural invariants stay with the engine.
    """

    non_null_fields: ClassVar[tuple[str, ...]] = (
        "title",
        "importance",
        "urgency",
        "energy_level",
        "is_project",
        "today_focus",
    )

    title: str | None = None
    description: str | None = None
    importance: int | None = Field(default=None, ge=1, le=5)
    urgency: int | None = Field(default=None, ge=1, le=5)
    context: str | None = None
    time_estimate_minutes: int | None = Field(default=None, ge=0)
    energy_level: EnergyLevel | None = None
    is_project: bool | None = None
    today_focus: bool | None = None
    start_date: _dt.datetime | None = None
    due_date: _dt.datetime | None = None
    recurrence: Recurrence | None = None
    review: Review | None = None

    @field_validator("title")
    @classmethod
    def _title_non_empty(cls, value: str | None) -> str | None:
        if value is None:
            return None
        v = value.strip()
        if not v:
            raise ValueError("title must be non-empty")
        return v

    @field_validator("start_date", "due_date")
    @classmethod
    def _utc(cls, value: _dt.datetime | None) -> _dt.datetime | None:
        return _as_utc(value)

    @model_validator(mode="after")
    def _no_null_required(self) -> TaskUpdate:
        # An explicit null may clear optional fields only
        nulled = [
            name
            for name in self.non_null_fields
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if nulled:
            raise ValueError(f"fields cannot be null: {', '.join(nulled)}")
        return self

    def changes(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in self.model_fields_set}


__all__ = [
    "INBOX_TITLE",
    "RECURRENCE_PATTERNS",
    "EnergyLevel",
    "PriorityBreakdown",
    "Recurrence",
    "Review",
    "Source",
    "Status",
    "Task",
    "TaskFields",
    "TaskUpdate",
    "new_id",
    "utcnow",
]
