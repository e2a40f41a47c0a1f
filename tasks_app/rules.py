"""
Rule engine for derived tags, predefined-tag protection, and tab views.

Everything here works on plain values or on any object exposing the same
attributes as the models (tasks: ``tags``, ``due_date``, ``created_at``;
tags: ``name``, ``is_predefined``; tabs: ``filter_tags``, ``filter_mode``).
Nothing here touches the database.
"""

from datetime import datetime
from functools import cmp_to_key
from typing import Any, Iterable, Sequence

from .errors import ForbiddenError
from .models import to_utc, utcnow

SORT_FIELDS = {
    "dueDate": "due_date",
    "createdAt": "created_at",
}


def derive_tags(
    current_tag_ids: Iterable[int],
    completed: bool,
    due_date: datetime | None,
    done_tag_id: int | None,
    due_tag_id: int | None,
    now: datetime | None = None,
) -> list[int]:
    """
    Compute a task's tag ids with the "done" and "due" tags corrected.

    A completed task carries "done" and never "due". An open task never
    carries "done", and carries "due" only when its due date is strictly
    in the past.

    Args:
        current_tag_ids: Tag ids currently on the task.
        completed: The task's completed flag.
        due_date: The task's due date, or None. Naive values are read as UTC.
        done_tag_id: Id of the "done" tag, None if it does not exist.
        due_tag_id: Id of the "due" tag, None if it does not exist.
        now: Reference time. Defaults to the current UTC time.

    Returns:
        The corrected id list. Existing order is kept and duplicates are
        collapsed. If either predefined tag is missing the input is
        returned unchanged.
    """
    if done_tag_id is None or due_tag_id is None:
        return list(current_tag_ids)
    tag_ids = list(dict.fromkeys(current_tag_ids))

    def add(tag_id: int) -> None:
        if tag_id not in tag_ids:
            tag_ids.append(tag_id)

    def remove(tag_id: int) -> None:
        if tag_id in tag_ids:
            tag_ids.remove(tag_id)

    if completed:
        add(done_tag_id)
        remove(due_tag_id)
        return tag_ids

    remove(done_tag_id)
    if due_date is not None and to_utc(due_date) < to_utc(now or utcnow()):
        add(due_tag_id)
    else:
        remove(due_tag_id)
    return tag_ids


def ensure_tag_mutable(tag: Any, action: str = "modify") -> None:
    """Raise ForbiddenError if ``tag`` is predefined; ``action`` names the attempted change."""
    if tag.is_predefined:
        raise ForbiddenError(f"Cannot {action} predefined tags")


def task_matches_tab(task: Any, tab: Any | None) -> bool:
    """
    Check whether a task passes a tab's tag filter.

    Without a tab everything passes. Untagged tasks never pass a tab. In
    AND mode an empty filter list passes every tagged task; in OR mode it
    passes none.
    """
    if tab is None:
        return True
    if not task.tags:
        return False

    names = {tag.name for tag in task.tags}
    if tab.filter_mode == "AND":
        return all(name in names for name in tab.filter_tags)
    return any(name in names for name in tab.filter_tags)


def _compare_on(field: str):
    def compare(a: Any, b: Any) -> int:
        left = getattr(a, field, None)
        right = getattr(b, field, None)
        # A missing value is equal to anything.
        if left is None or right is None:
            return 0
        return (left > right) - (left < right)

    return compare


def view(
    tasks: Sequence[Any],
    tab: Any | None,
    sort_by: str = "dueDate",
    sort_order: str = "asc",
) -> list[Any]:
    """
    Filter tasks through a tab and order them.

    Args:
        tasks: Tasks to show.
        tab: Selected tab, or None for the "all" view.
        sort_by: "dueDate" or "createdAt".
        sort_order: "asc" for earliest first, "desc" for latest first.

    Returns:
        A new list; the input is not modified.
    """
    if sort_by not in SORT_FIELDS:
        raise ValueError(f"Unknown sort key: {sort_by}")

    visible = [task for task in tasks if task_matches_tab(task, tab)]
    return sorted(
        visible,
        key=cmp_to_key(_compare_on(SORT_FIELDS[sort_by])),
        reverse=sort_order == "desc",
    )
