"""
Move intents.

The UI's drag library reports where a card was dropped; this module turns
that into a destination the store understands:

    ColumnDrop(status, index)  - move into a column, optionally at an index
    DeleteZone()               - delete the todo

The store never sees pointer or drag events, only these destinations.
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from .ordering import sorted_column
from .schema import Todo, TodoStatus


@dataclass(frozen=True)
class ColumnDrop:
    """Drop into a column. index=None appends to the end."""
    status: TodoStatus
    index: Optional[int] = None


@dataclass(frozen=True)
class DeleteZone:
    """Drop onto the delete zone."""
    pass


Destination = Union[ColumnDrop, DeleteZone]


def resolve_drag_end(
    todos: Iterable[Todo],
    active_id: str,
    over_id: Optional[str],
    delete_zone: bool = False,
) -> Optional[Destination]:
    """
    Translate a drag-end into a destination, or None when nothing should happen.

    Rules:
        delete zone active      → DeleteZone
        dropped over nothing    → None
        dropped on a column id  → append to that column
        dropped on another todo → insert at that todo's position in its
                                  column, counted without the dragged todo
    """
    if delete_zone:
        return DeleteZone()
    if not over_id:
        return None

    todos = list(todos)
    if not any(t.id == active_id for t in todos):
        return None

    for status in TodoStatus:
        if over_id == status.value:
            return ColumnDrop(status)
    if over_id == "do":
        return ColumnDrop(TodoStatus.TODO)

    over = next((t for t in todos if t.id == over_id), None)
    if over is None:
        return None

    siblings = sorted_column(todos, over.status, exclude_id=active_id)
    index = next((i for i, t in enumerate(siblings) if t.id == over_id), None)
    return ColumnDrop(over.status, index)
