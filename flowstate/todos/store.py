"""
To-do store (in memory).

Single owner of every Todo and of the active-timer slot. All reads are
projections (filter by column, sort by order); all writes go through the
methods below. One writer at a time: callers that share a store across
threads must serialize access themselves (see server.TimerPoller).
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from . import ordering
from .errors import InvalidStateError, NotFoundError, ValidationError
from .intents import ColumnDrop, DeleteZone, Destination
from .schema import (
    Todo,
    TodoStatus,
    make_todo_id,
    utc_now,
    validate_description,
    validate_timer_minutes,
    validate_title,
)
from .timer import TimerReading, tick

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "description", "timer_minutes")


class TodoStore:
    """In-memory store for board todos and the single active timer."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._todos: Dict[str, Todo] = {}
        self.active_timer_id: Optional[str] = None

    # ──────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────

    def get(self, todo_id: str) -> Todo:
        """Return a todo or raise NotFoundError."""
        todo = self._todos.get(todo_id)
        if todo is None:
            raise NotFoundError(todo_id)
        return todo

    def list_all(self) -> List[Todo]:
        """Every todo, in insertion order."""
        return list(self._todos.values())

    def list_by_status(self, status: TodoStatus) -> List[Todo]:
        """One column, ascending by order (stable for equal orders)."""
        return ordering.sorted_column(self._todos.values(), status)

    def counts(self) -> Dict[str, int]:
        """Number of todos per column."""
        return {s.value: len(self.list_by_status(s)) for s in TodoStatus}

    def __len__(self) -> int:
        return len(self._todos)

    def __contains__(self, todo_id: object) -> bool:
        return todo_id in self._todos

    # ──────────────────────────────────────────
    # CRUD
    # ──────────────────────────────────────────

    def create(self, title: str, description: Optional[str] = None,
               timer_minutes: Optional[int] = None) -> Todo:
        """Append a new todo to the end of the todo column."""
        title = validate_title(title)
        description = validate_description(description)
        if timer_minutes is not None:
            timer_minutes = validate_timer_minutes(timer_minutes)

        now = self._clock()
        todo = Todo(
            id=make_todo_id(),
            title=title,
            description=description,
            status=TodoStatus.TODO,
            order=len(self.list_by_status(TodoStatus.TODO)),
            timer_minutes=timer_minutes,
            created_at=now,
            updated_at=now,
        )
        self._todos[todo.id] = todo
        logger.debug(f"Created todo {todo.id} at order {todo.order}")
        return todo

    def update(self, todo_id: str, fields: Dict[str, Any]) -> Todo:
        """
        Merge fields into a todo and bump updated_at.

        Only title, description and timer_minutes are editable here;
        column and position change through move().
        """
        todo = self.get(todo_id)
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown or read-only fields: {', '.join(sorted(unknown))}"
            )

        changes: Dict[str, Any] = {}
        if "title" in fields:
            changes["title"] = validate_title(fields["title"])
        if "description" in fields:
            changes["description"] = validate_description(fields["description"])
        if "timer_minutes" in fields:
            value = fields["timer_minutes"]
            changes["timer_minutes"] = None if value is None else validate_timer_minutes(value)

        if "timer_minutes" in changes and changes["timer_minutes"] is None:
            self.stop_timer(todo_id)

        for name, value in changes.items():
            setattr(todo, name, value)
        todo.updated_at = self._clock()
        logger.debug(f"Updated todo {todo_id}: {sorted(changes)}")
        return todo

    def delete(self, todo_id: str) -> bool:
        """
        Remove a todo. Idempotent: returns False if it was already gone.

        Clears the active-timer slot if this todo held it and compacts the
        column it left.
        """
        todo = self._todos.pop(todo_id, None)
        if todo is None:
            return False
        if self.active_timer_id == todo_id:
            self.active_timer_id = None
            logger.info(f"Cleared active timer: todo {todo_id} deleted")
        self._apply_orders(ordering.renumber(self.list_by_status(todo.status)))
        logger.debug(f"Deleted todo {todo_id}")
        return True

    # ──────────────────────────────────────────
    # Moves
    # ──────────────────────────────────────────

    def move(self, todo_id: str, target_status: TodoStatus, target_index: Optional[int] = None) -> Todo:
        """
        Move a todo into a column, at target_index or appended.

        Both the destination and the source column end up densely ordered.
        Timer fields are left alone.
        """
        todo = self.get(todo_id)
        if not isinstance(target_status, TodoStatus):
            target_status = TodoStatus.from_str(target_status)

        orders = ordering.plan_move(self._todos.values(), todo_id, target_status, target_index)
        todo.status = target_status
        self._apply_orders(orders)
        todo.updated_at = self._clock()
        logger.debug(f"Moved todo {todo_id} to {target_status.value}[{todo.order}]")
        return todo

    def apply_move_intent(self, todo_id: str, destination: Destination) -> Optional[Todo]:
        """
        Single entry point for drag-and-drop results.

        ColumnDrop moves the todo and returns it; DeleteZone deletes it and
        returns None.
        """
        if isinstance(destination, DeleteZone):
            self.delete(todo_id)
            return None
        if isinstance(destination, ColumnDrop):
            return self.move(todo_id, destination.status, destination.index)
        raise ValidationError(f"Unsupported destination: {destination!r}")

    def _apply_orders(self, orders: Dict[str, int]) -> None:
        for todo_id, order in orders.items():
            self._todos[todo_id].order = order

    # ──────────────────────────────────────────
    # Timers
    # ──────────────────────────────────────────

    def is_running(self, todo_id: str) -> bool:
        return self.active_timer_id == todo_id

    def active_todo(self) -> Optional[Todo]:
        if self.active_timer_id is None:
            return None
        return self._todos.get(self.active_timer_id)

    def start_timer(self, todo_id: str) -> Todo:
        """
        Start a todo's countdown.

        Any other running timer is stopped first; only one runs at a time.
        """
        todo = self.get(todo_id)
        if not todo.has_timer:
            raise InvalidStateError(f"Todo {todo_id} has no timer configured")

        previous = self.active_timer_id
        if previous is not None and previous != todo_id:
            logger.info(f"Preempting timer of todo {previous} for {todo_id}")
            self.stop_timer(previous)

        now = self._clock()
        todo.timer_started_at = now
        todo.timer_ended_at = None
        todo.updated_at = now
        self.active_timer_id = todo_id
        logger.info(f"Started {todo.timer_minutes} min timer for todo {todo_id}")
        return todo

    def stop_timer(self, todo_id: str) -> Todo:
        """Stop a todo's countdown. No-op if it is not running."""
        todo = self.get(todo_id)
        if not self.is_running(todo_id):
            return todo

        now = self._clock()
        todo.timer_started_at = None
        todo.timer_ended_at = now
        todo.updated_at = now
        self.active_timer_id = None
        logger.info(f"Stopped timer for todo {todo_id}")
        return todo

    def tick(self, now: Optional[datetime] = None) -> Optional[TimerReading]:
        """Reading for the active timer, or None if no timer is running."""
        todo = self.active_todo()
        if todo is None:
            return None
        return tick(todo, now or self._clock())

    # ──────────────────────────────────────────
    # Snapshots
    # ──────────────────────────────────────────

    def to_snapshot(self) -> Dict[str, Any]:
        """Plain-data representation of the whole board."""
        return {
            "todos": [t.to_dict() for t in self._todos.values()],
            "active_timer_id": self.active_timer_id,
        }

    def load_snapshot(self, snapshot: Dict[str, Any]) -> None:
        """
        Replace the whole board with a snapshot.

        Columns are renumbered densely. An active_timer_id that does not
        point at a started todo is dropped, and every other todo that still
        looks started is stopped so at most one timer is running.
        """
        todos: Dict[str, Todo] = {}
        for raw in snapshot.get("todos", []):
            todo = Todo.from_dict(raw)
            if todo.id in todos:
                raise ValidationError(f"Duplicate todo id in snapshot: {todo.id}")
            todos[todo.id] = todo

        for status in TodoStatus:
            for i, todo in enumerate(ordering.sorted_column(todos.values(), status)):
                todo.order = i

        active = snapshot.get("active_timer_id")
        running = todos.get(active) if active else None
        if running is None or running.timer_started_at is None or not running.has_timer:
            if active:
                logger.warning(f"Ignoring stale active timer {active} in snapshot")
            active = None

        now = self._clock()
        for todo in todos.values():
            if todo.id != active and todo.timer_started_at is not None:
                logger.warning(f"Stopping orphaned timer on todo {todo.id} in snapshot")
                todo.timer_started_at = None
                todo.timer_ended_at = now

        self._todos = todos
        self.active_timer_id = active
        logger.info(f"Loaded {len(todos)} todos (active timer: {active})")

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any], clock: Callable[[], datetime] = utc_now) -> "TodoStore":
        store = cls(clock=clock)
        store.load_snapshot(snapshot)
        return store

