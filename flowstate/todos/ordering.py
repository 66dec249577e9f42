"""
Column ordering.

Every column keeps a dense ordering: the todos in a column carry
order = 0..n-1 with no gaps and no duplicates. These functions are pure;
they compute positions and leave it to the store to apply them.
"""
from typing import Dict, Iterable, List, Optional

from .schema import Todo, TodoStatus


def sorted_column(todos: Iterable[Todo], status: TodoStatus, exclude_id: Optional[str] = None) -> List[Todo]:
    """
    Todos in one column sorted ascending by order.

    sorted() is stable, so equal orders keep their iteration (insertion) order.
    """
    column = [t for t in todos if t.status == status and t.id != exclude_id]
    return sorted(column, key=lambda t: t.order)


def insertion_index(sibling_count: int, target_index: Optional[int]) -> int:
    """
    Where a moved todo lands among sibling_count siblings.

    An index inside [0, sibling_count) inserts there; anything else
    (None, negative, past the end) appends.
    """
    if target_index is not None and 0 <= target_index < sibling_count:
        return target_index
    return sibling_count


def plan_move(todos: Iterable[Todo], todo_id: str, target_status: TodoStatus,
              target_index: Optional[int] = None) -> Dict[str, int]:
    """
    Compute new orders for a move.

    Returns {todo_id: new_order} covering the moved todo, every todo in the
    destination column and, for a cross-column move, every todo left in the
    source column. Todos absent from the result keep their order.
    """
    todos = list(todos)
    moving = next((t for t in todos if t.id == todo_id), None)
    if moving is None:
        raise KeyError(todo_id)

    siblings = sorted_column(todos, target_status, exclude_id=todo_id)
    position = insertion_index(len(siblings), target_index)
    siblings.insert(position, moving)

    orders = renumber(siblings)
    if moving.status != target_status:
        orders.update(renumber(sorted_column(todos, moving.status, exclude_id=todo_id)))
    return orders


def renumber(column: List[Todo]) -> Dict[str, int]:
    """Dense orders for an already-sorted column."""
    return {t.id: i for i, t in enumerate(column)}


def is_dense(column: List[Todo]) -> bool:
    """True if a sorted column carries exactly the orders 0..n-1."""
    return [t.order for t in column] == list(range(len(column)))
