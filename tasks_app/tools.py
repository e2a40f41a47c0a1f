"""
Operations on tasks, tags and tabs.

Every function takes an open Session, commits its own changes, and returns
plain dictionaries ready to be sent as JSON. Failures are raised as the
errors defined in ``errors.py``.
"""

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, func, select

from .errors import ConflictError, NotFoundError
from .models import (
    DONE_TAG,
    DUE_TAG,
    MAX_ID,
    PREDEFINED_TAGS,
    Tab,
    TabCreate,
    TabUpdate,
    Tag,
    TagCreate,
    TagUpdate,
    Task,
    TaskCreate,
    TaskTagLink,
    TaskUpdate,
    utcnow,
)
from .rules import derive_tags, ensure_tag_mutable, view

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _iso(value):
    return value.isoformat() if value else None


def tag_to_dict(tag: Tag) -> dict:
    return {
        "id": tag.id,
        "name": tag.name,
        "color": tag.color,
        "is_predefined": tag.is_predefined,
        "created_at": _iso(tag.created_at),
        "updated_at": _iso(tag.updated_at),
    }


def task_to_dict(task: Task) -> dict:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "due_date": _iso(task.due_date),
        "completed": task.completed,
        "tags": [tag_to_dict(t) for t in task.tags],
        "created_at": _iso(task.created_at),
        "updated_at": _iso(task.updated_at),
    }


def tab_to_dict(tab: Tab) -> dict:
    return {
        "id": tab.id,
        "name": tab.name,
        "filter_tags": list(tab.filter_tags or []),
        "filter_mode": tab.filter_mode,
        "sort_by": tab.sort_by,
        "sort_order": tab.sort_order,
        "is_default": tab.is_default,
        "created_at": _iso(tab.created_at),
        "updated_at": _iso(tab.updated_at),
    }


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


def ensure_predefined_tags(session: Session) -> list[str]:
    """
    Create any missing predefined tag ("done", "due").

    Safe to call repeatedly; existing tags are left untouched.

    Returns:
        Names of the tags that were created.
    """
    created = []
    for name, color in PREDEFINED_TAGS.items():
        if _find_tag_by_name(session, name) is None:
            session.add(Tag(name=name, color=color, is_predefined=True))
            created.append(name)

    if created:
        session.commit()
        logger.info("Created predefined tags: %s", ", ".join(created))
    return created


def _storable_id(value: int) -> bool:
    return 0 < value <= MAX_ID


def _find_tag_by_name(session: Session, name: str) -> Tag | None:
    return session.exec(select(Tag).where(Tag.name == name)).first()


def _get_tag_or_404(session: Session, tag_id: int) -> Tag:
    tag = session.get(Tag, tag_id) if _storable_id(tag_id) else None
    if tag is None:
        raise NotFoundError("Tag not found")
    return tag


def _commit_unique(session: Session, message: str) -> None:
    # The pre-checks cover the normal path; the unique index catches the rest.
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError(message) from exc


def list_tags(session: Session) -> list[dict]:
    """Return all tags ordered by id."""
    tags = session.exec(select(Tag).order_by(Tag.id)).all()
    return [tag_to_dict(t) for t in tags]


def get_tag(session: Session, tag_id: int) -> dict:
    return tag_to_dict(_get_tag_or_404(session, tag_id))


def create_tag(session: Session, data: TagCreate) -> dict:
    """
    Create a user tag.

    Args:
        session: Database session.
        data: Validated tag fields.

    Returns:
        The created tag.

    Raises:
        ConflictError: A tag with the same name already exists.
    """
    if _find_tag_by_name(session, data.name) is not None:
        raise ConflictError("Tag with this name already exists")

    tag = Tag(name=data.name, color=data.color)
    session.add(tag)
    _commit_unique(session, "Tag with this name already exists")
    session.refresh(tag)

    logger.info("Created tag %d '%s'", tag.id, tag.name)
    return tag_to_dict(tag)


def update_tag(session: Session, tag_id: int, data: TagUpdate) -> dict:
    """
    Update a user tag's name or color.

    Raises:
        NotFoundError: No tag with this id.
        ForbiddenError: The tag is predefined.
        ConflictError: The new name belongs to another tag.
    """
    tag = _get_tag_or_404(session, tag_id)
    ensure_tag_mutable(tag, "modify")

    changes = data.model_dump(exclude_unset=True)
    new_name = changes.get("name")
    if new_name is not None and new_name != tag.name:
        if _find_tag_by_name(session, new_name) is not None:
            raise ConflictError("Tag with this name already exists")
        tag.name = new_name
    if changes.get("color"):
        tag.color = changes["color"]
    tag.updated_at = utcnow()

    session.add(tag)
    _commit_unique(session, "Tag with this name already exists")
    session.refresh(tag)

    logger.info("Updated tag %d '%s'", tag.id, tag.name)
    return tag_to_dict(tag)


def delete_tag(session: Session, tag_id: int) -> dict:
    """
    Delete a user tag and detach it from every task.

    Raises:
        NotFoundError: No tag with this id.
        ForbiddenError: The tag is predefined.
    """
    tag = _get_tag_or_404(session, tag_id)
    ensure_tag_mutable(tag, "delete")

    name = tag.name
    session.delete(tag)
    session.commit()

    logger.info("Deleted tag %d '%s'", tag_id, name)
    return {"message": "Tag deleted successfully"}


def tag_usage(session: Session, tag_id: int) -> dict:
    """Count the tasks that carry a tag."""
    if not _storable_id(tag_id):
        return {"count": 0}
    count = session.exec(
        select(func.count()).select_from(TaskTagLink).where(TaskTagLink.tag_id == tag_id)
    ).one()
    return {"count": count}


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def parse_tag_ids(raw: list[Any] | None) -> list[int]:
    """
    Keep the entries that are syntactically valid tag ids.

    Integers and digit strings in the range of a stored id are accepted;
    anything else is dropped silently. Duplicates are collapsed, first occurrence wins.
    """
    ids = []
    for value in raw or []:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            tag_id = value
        elif isinstance(value, str) and value.strip().isdigit():
            tag_id = int(value.strip())
        else:
            continue
        if _storable_id(tag_id) and tag_id not in ids:
            ids.append(tag_id)
    return ids


def _resolve_tags(session: Session, tag_ids: list[int]) -> list[Tag]:
    """Load tags by id in the given order, skipping ids with no stored tag."""
    if not tag_ids:
        return []
    found = {t.id: t for t in session.exec(select(Tag).where(col(Tag.id).in_(tag_ids))).all()}
    return [found[i] for i in tag_ids if i in found]


def _apply_derived_tags(session: Session, task: Task, tags: list[Tag]) -> None:
    done = _find_tag_by_name(session, DONE_TAG)
    due = _find_tag_by_name(session, DUE_TAG)
    tag_ids = derive_tags(
        [t.id for t in tags],
        task.completed,
        task.due_date,
        done.id if done else None,
        due.id if due else None,
    )
    task.tags = _resolve_tags(session, tag_ids)


def _get_task_or_404(session: Session, task_id: int) -> Task:
    task = session.get(Task, task_id) if _storable_id(task_id) else None
    if task is None:
        raise NotFoundError("Task not found")
    return task


def list_tasks(
    session: Session,
    tab_id: int | None = None,
    sort_by: str | None = None,
    sort_order: str | None = None,
) -> list[dict]:
    """
    List tasks, optionally through a tab's filter, in the requested order.

    Args:
        session: Database session.
        tab_id: Tab whose filter applies. None shows all tasks.
        sort_by: "dueDate" or "createdAt". Defaults to the tab's setting, else "dueDate".
        sort_order: "asc" or "desc". Defaults to the tab's setting, else "asc".

    Returns:
        List of tasks with their tags resolved.
    """
    tab = get_tab_record(session, tab_id) if tab_id is not None else None
    if tab is not None:
        sort_by = sort_by or tab.sort_by
        sort_order = sort_order or tab.sort_order

    tasks = session.exec(select(Task).order_by(Task.id)).all()
    ordered = view(tasks, tab, sort_by or "dueDate", sort_order or "asc")
    return [task_to_dict(t) for t in ordered]


def get_task(session: Session, task_id: int) -> dict:
    return task_to_dict(_get_task_or_404(session, task_id))


def create_task(session: Session, data: TaskCreate) -> dict:
    """
    Create a new task.

    Unknown or malformed tag ids are dropped, then "done"/"due" are
    derived from the completed flag and the due date.

    Args:
        session: Database session.
        data: Validated task fields.

    Returns:
        The created task with resolved tags.
    """
    task = Task(
        title=data.title,
        description=data.description,
        due_date=data.due_date,
        completed=data.completed,
    )
    _apply_derived_tags(session, task, _resolve_tags(session, parse_tag_ids(data.tags)))

    session.add(task)
    session.commit()
    session.refresh(task)

    logger.info("Created task %d '%s'", task.id, task.title)
    return task_to_dict(task)


def update_task(session: Session, task_id: int, data: TaskUpdate) -> dict:
    """
    Update an existing task.

    Only fields present in the request are changed. The tag list is replaced
    only when ``tags`` is present. Derived tags are recomputed afterwards.

    Args:
        session: Database session.
        task_id: ID of the task to update.
        data: Fields to change.

    Returns:
        The updated task with resolved tags.

    Raises:
        NotFoundError: No task with this id.
    """
    task = _get_task_or_404(session, task_id)
    changes = data.model_dump(exclude_unset=True)

    for field in ("title", "description", "due_date"):
        if field in changes:
            setattr(task, field, changes[field])
    if changes.get("completed") is not None:
        task.completed = changes["completed"]

    if "tags" in changes:
        tags = _resolve_tags(session, parse_tag_ids(changes["tags"]))
    else:
        tags = list(task.tags)
    _apply_derived_tags(session, task, tags)
    task.updated_at = utcnow()

    session.add(task)
    session.commit()
    session.refresh(task)

    logger.info("Updated task %d '%s'", task.id, task.title)
    return task_to_dict(task)


def delete_task(session: Session, task_id: int) -> dict:
    """
    Delete a task.

    Raises:
        NotFoundError: No task with this id.
    """
    task = _get_task_or_404(session, task_id)
    session.delete(task)
    session.commit()

    logger.info("Deleted task %d", task_id)
    return {"message": "Task deleted successfully"}


# ---------------------------------------------------------------------------
# Tabs
# ---------------------------------------------------------------------------


def get_tab_record(session: Session, tab_id: int) -> Tab:
    tab = session.get(Tab, tab_id) if _storable_id(tab_id) else None
    if tab is None:
        raise NotFoundError("Tab not found")
    return tab


def _tab_name_taken(session: Session, name: str, exclude_id: int | None = None) -> bool:
    query = select(Tab).where(Tab.name == name)
    if exclude_id is not None:
        query = query.where(Tab.id != exclude_id)
    return session.exec(query).first() is not None


def list_tabs(session: Session) -> list[dict]:
    tabs = session.exec(select(Tab).order_by(Tab.id)).all()
    return [tab_to_dict(t) for t in tabs]


def get_tab(session: Session, tab_id: int) -> dict:
    return tab_to_dict(get_tab_record(session, tab_id))


def create_tab(session: Session, data: TabCreate) -> dict:
    """
    Create a tab.

    Raises:
        ConflictError: A tab with the same name already exists.
    """
    if _tab_name_taken(session, data.name):
        raise ConflictError("Tab with this name already exists")

    tab = Tab(**data.model_dump())
    session.add(tab)
    _commit_unique(session, "Tab with this name already exists")
    session.refresh(tab)

    logger.info("Created tab %d '%s'", tab.id, tab.name)
    return tab_to_dict(tab)


def update_tab(session: Session, tab_id: int, data: TabUpdate) -> dict:
    """
    Update a tab. Fields sent as null are left unchanged.

    Raises:
        NotFoundError: No tab with this id.
        ConflictError: The new name belongs to another tab.
    """
    tab = get_tab_record(session, tab_id)
    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}

    if "name" in changes and _tab_name_taken(session, changes["name"], exclude_id=tab.id):
        raise ConflictError("Tab with this name already exists")

    for field, value in changes.items():
        # filter_tags is a JSON column; assign a fresh list so the change is tracked.
        setattr(tab, field, list(value) if field == "filter_tags" else value)
    tab.updated_at = utcnow()

    session.add(tab)
    _commit_unique(session, "Tab with this name already exists")
    session.refresh(tab)

    logger.info("Updated tab %d '%s'", tab.id, tab.name)
    return tab_to_dict(tab)


def delete_tab(session: Session, tab_id: int) -> dict:
    """
    Delete a tab.

    Raises:
        NotFoundError: No tab with this id.
    """
    tab = get_tab_record(session, tab_id)
    session.delete(tab)
    session.commit()

    logger.info("Deleted tab %d", tab_id)
    return {"message": "Tab deleted successfully"}
