"""
Database models and request schemas for the task manager.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import field_validator
from sqlalchemy import JSON, Column, DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, Relationship, SQLModel

DEFAULT_TAG_COLOR = "#808080"

# Largest id SQLite's INTEGER can hold.
MAX_ID = 2**63 - 1

DONE_TAG = "done"
DUE_TAG = "due"

# name -> color of the system-owned tags
PREDEFINED_TAGS = {
    DONE_TAG: "#4CAF50",
    DUE_TAG: "#F44336",
}

FilterMode = Literal["AND", "OR"]
SortKey = Literal["dueDate", "createdAt"]
SortOrder = Literal["asc", "desc"]


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime | None) -> datetime | None:
    """Make a datetime aware UTC. Naive values are taken to be UTC already."""
    if value is None:
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Stores UTC as a plain DATETIME and hands back aware UTC values.

    SQLite keeps no offset, so the conversion happens at the column.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        value = to_utc(value)
        return value.replace(tzinfo=None) if value is not None else None

    def process_result_value(self, value, dialect):
        return to_utc(value)


def _utc_column(nullable: bool = False) -> Column:
    return Column(UTCDateTime(), nullable=nullable)


def _required_text(value: str | None, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} cannot be empty")
    return value.strip()


def _optional_text(value: str | None) -> str | None:
    return value.strip() if isinstance(value, str) else value


class TaskTagLink(SQLModel, table=True):
    """Association between a task and one of its tags."""

    task_id: int | None = Field(default=None, foreign_key="task.id", primary_key=True)
    tag_id: int | None = Field(default=None, foreign_key="tag.id", primary_key=True)


class Tag(SQLModel, table=True):
    """
    A label that can be attached to tasks.

    Attributes:
        id: Unique identifier for the tag.
        name: Tag name, unique across all tags.
        color: Display color as a hex string.
        is_predefined: True for the system tags "done" and "due".
        created_at: When the tag was created.
        updated_at: When the tag was last changed.
    """

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    color: str = Field(default=DEFAULT_TAG_COLOR)
    is_predefined: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())

    tasks: list["Task"] = Relationship(back_populates="tags", link_model=TaskTagLink)


class Task(SQLModel, table=True):
    """
    A task in the task list.

    Attributes:
        id: Unique identifier for the task.
        title: The task title.
        description: Optional free text.
        due_date: Optional due date (UTC).
        completed: Whether the task is finished.
        created_at: When the task was created.
        updated_at: Refreshed on every mutation.
        tags: Tags attached to the task, including derived "done"/"due".
    """

    id: int | None = Field(default=None, primary_key=True)
    title: str = Field(index=True)
    description: str | None = Field(default=None)
    due_date: datetime | None = Field(default=None, sa_column=_utc_column(nullable=True))
    completed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())

    tags: list[Tag] = Relationship(back_populates="tasks", link_model=TaskTagLink)


class Tab(SQLModel, table=True):
    """
    A saved filter and sort preset over the task list.

    filter_tags holds tag names, not ids, so renaming a tag breaks
    tabs that filter on its old name.
    """

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    filter_tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    filter_mode: str = Field(default="OR")  # AND, OR
    sort_by: str = Field(default="dueDate")  # dueDate, createdAt
    sort_order: str = Field(default="asc")  # asc, desc
    is_default: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())


class TaskCreate(SQLModel):
    """Schema for creating a new task."""

    title: str
    description: str | None = None
    due_date: datetime | None = None
    # Raw tag ids; entries that are not valid ids are dropped, not rejected.
    tags: list[Any] = []
    completed: bool = False

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, value):
        return _required_text(value, "Title")

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value):
        return _optional_text(value)

    @field_validator("due_date")
    @classmethod
    def _due_date(cls, value):
        return to_utc(value)


class TaskUpdate(SQLModel):
    """Schema for updating a task. Only fields present in the body are applied."""

    title: str | None = None
    description: str | None = None
    due_date: datetime | None = None
    tags: list[Any] | None = None
    completed: bool | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, value):
        return _required_text(value, "Title")

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value):
        return _optional_text(value)

    @field_validator("due_date")
    @classmethod
    def _due_date(cls, value):
        return to_utc(value)


class TagCreate(SQLModel):
    """Schema for creating a tag. Predefined tags cannot be created by clients."""

    name: str
    color: str = DEFAULT_TAG_COLOR

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value):
        return _required_text(value, "Name")

    @field_validator("color", mode="before")
    @classmethod
    def _color(cls, value):
        value = _optional_text(value)
        return value or DEFAULT_TAG_COLOR


class TagUpdate(SQLModel):
    """Schema for updating a tag."""

    name: str | None = None
    color: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value):
        return _required_text(value, "Name")

    @field_validator("color", mode="before")
    @classmethod
    def _color(cls, value):
        return _optional_text(value)


class TabCreate(SQLModel):
    """Schema for creating a tab."""

    name: str
    filter_tags: list[str] = []
    filter_mode: FilterMode = "OR"
    sort_by: SortKey = "dueDate"
    sort_order: SortOrder = "asc"
    is_default: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value):
        return _required_text(value, "Name")


class TabUpdate(SQLModel):
    """Schema for updating a tab."""

    name: str | None = None
    filter_tags: list[str] | None = None
    filter_mode: FilterMode | None = None
    sort_by: SortKey | None = None
    sort_order: SortOrder | None = None
    is_default: bool | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value):
        return _required_text(value, "Name")
