"""
Countdown arithmetic for todo timers.

tick() is pure: it reads a running todo and a clock value and reports the
remaining time. It never stops the timer itself; callers react to
expired=True (see events.TodoEventBridge.poll_timers).
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict

from .errors import InvalidStateError
from .schema import Todo

_ONE_MS = timedelta(milliseconds=1)


@dataclass(frozen=True)
class TimerReading:
    """Result of one tick."""
    todo_id: str
    remaining_ms: int
    expired: bool

    @property
    def display(self) -> str:
        return format_remaining(self.remaining_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "todo_id": self.todo_id,
            "remaining_ms": self.remaining_ms,
            "expired": self.expired,
            "display": self.display,
        }


def duration_ms(todo: Todo) -> int:
    """Total countdown length in milliseconds."""
    if todo.timer_minutes is None:
        raise InvalidStateError(f"Todo {todo.id} has no timer configured")
    return todo.timer_minutes * 60 * 1000


def tick(todo: Todo, now: datetime) -> TimerReading:
    """
    Remaining time for a running todo at `now`.

    remaining = timer_minutes * 60s - (now - timer_started_at), floored at 0.
    A start time in the future counts as no time elapsed.
    expired is True once the full duration has elapsed.
    """
    if todo.timer_started_at is None:
        raise InvalidStateError(f"Timer for todo {todo.id} is not running")
    total = duration_ms(todo)
    elapsed = max(0, (now - todo.timer_started_at) // _ONE_MS)
    remaining = total - elapsed
    return TimerReading(
        todo_id=todo.id,
        remaining_ms=max(0, remaining),
        expired=remaining <= 0,
    )


def format_remaining(ms: int) -> str:
    """MM:SS from whole seconds (rounded down)."""
    total_seconds = max(0, ms) // 1000
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes:02d}:{seconds:02d}"
