"""
Todo schema.

Board columns:
  todo → doing → done

Any column can move to any other; the column is just where a todo sits.
Timer fields are only touched by start/stop, never by moves.
"""
import time
import uuid
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from .errors import ValidationError


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def make_todo_id() -> str:
    """Generate a sortable unique todo ID (ms-precision timestamp + random hex)."""
    ts = int(time.time() * 1000)
    rand = uuid.uuid4().hex[:8]
    return f"todo-{ts}-{rand}"


class TodoStatus(Enum):
    """The three board columns."""
    TODO = "todo"
    DOING = "doing"
    DONE = "done"

    @classmethod
    def from_str(cls, value: str) -> "TodoStatus":
        """Parse a column name. Accepts the legacy "do" for the first column."""
        if not isinstance(value, str):
            raise ValidationError(f"Invalid status: '{value}'. Status must be a string")
        normalized = value.strip().lower()
        if normalized == "do":
            return cls.TODO
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(
                f"Invalid status: '{value}'. "
                f"Allowed: {', '.join(s.value for s in cls)}"
            )


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid timestamp: '{value}'")


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Todo:
    """One card on the board."""

    id: str
    title: str
    description: str = ""
    status: TodoStatus = TodoStatus.TODO
    order: int = 0

    # Countdown
    timer_minutes: Optional[int] = None
    timer_started_at: Optional[datetime] = None
    timer_ended_at: Optional[datetime] = None

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def has_timer(self) -> bool:
        return self.timer_minutes is not None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to plain JSON-compatible data."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "order": self.order,
            "timer_minutes": self.timer_minutes,
            "timer_started_at": _format_ts(self.timer_started_at),
            "timer_ended_at": _format_ts(self.timer_ended_at),
            "created_at": _format_ts(self.created_at),
            "updated_at": _format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Todo":
        """Deserialize from dict. Raises ValidationError on malformed data."""
        todo_id = data.get("id")
        title = (data.get("title") or "").strip()
        if not todo_id:
            raise ValidationError("Todo is missing an id")
        if not title:
            raise ValidationError(f"Todo {todo_id} has an empty title")

        timer_minutes = data.get("timer_minutes")
        if timer_minutes is not None:
            timer_minutes = validate_timer_minutes(timer_minutes)

        try:
            order = int(data.get("order", 0))
        except (TypeError, ValueError):
            raise ValidationError(f"Todo {todo_id} has a non-integer order")

        now = utc_now()
        return cls(
            id=str(todo_id),
            title=title,
            description=validate_description(data.get("description")),
            status=TodoStatus.from_str(data.get("status", "todo")),
            order=max(order, 0),
            timer_minutes=timer_minutes,
            timer_started_at=_parse_ts(data.get("timer_started_at")),
            timer_ended_at=_parse_ts(data.get("timer_ended_at")),
            created_at=_parse_ts(data.get("created_at")) or now,
            updated_at=_parse_ts(data.get("updated_at")) or now,
        )


def validate_title(title: Any) -> str:
    """Return the trimmed title, or raise ValidationError if it is blank."""
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title must not be empty")
    return title.strip()


def validate_description(value: Any) -> str:
    """Return the description, or "" for None. Non-strings raise ValidationError."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"description must be a string, got: {type(value).__name__}")
    return value


# One week
MAX_TIMER_MINUTES = 7 * 24 * 60


def validate_timer_minutes(value: Any) -> int:
    """Coerce a timer duration to a whole, positive number of minutes."""
    if isinstance(value, bool):
        raise ValidationError(f"timer_minutes must be an integer, got: '{value}'")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"timer_minutes must be a whole number, got: {value}")
        minutes = int(value)
    else:
        try:
            minutes = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"timer_minutes must be an integer, got: '{value}'")
    if not 0 < minutes <= MAX_TIMER_MINUTES:
        raise ValidationError(
            f"timer_minutes must be between 1 and {MAX_TIMER_MINUTES}, got: {minutes}"
        )
    return minutes
