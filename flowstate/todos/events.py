"""
Event bridge: connects UI-side events (drag ends, timer polls) to the store.

The store itself never schedules anything. A caller polls
poll_timers(now) about once per second; when the active timer has run
out the bridge stops it and emits "timer_expired" exactly once.

Events:
    todo_moved     todo_id, status, order
    todo_deleted   todo_id
    timer_expired  todo_id, title
"""
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .intents import DeleteZone, resolve_drag_end
from .store import TodoStore
from .timer import TimerReading

logger = logging.getLogger(__name__)


class TodoEventBridge:
    """Routes drag and timer events to store updates and subscribers."""

    def __init__(self, store: TodoStore):
        self.store = store
        self.subscribers: Dict[str, List[Callable]] = {}  # event_type -> callbacks

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        self.subscribers.setdefault(event_type, []).append(callback)

    def _emit(self, event_type: str, **kwargs) -> None:
        """Emit an event to all subscribers. A failing subscriber does not stop the others."""
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(**kwargs)
            except Exception:
                logger.exception(f"Error in {event_type} callback")

    def on_drag_end(self, active_id: str, over_id: Optional[str], delete_zone: bool = False) -> bool:
        """
        Apply a finished drag. Returns True if the board changed.
        """
        destination = resolve_drag_end(self.store.list_all(), active_id, over_id, delete_zone)
        if destination is None:
            return False

        if isinstance(destination, DeleteZone):
            if not self.store.delete(active_id):
                return False
            self._emit("todo_deleted", todo_id=active_id)
            return True

        todo = self.store.apply_move_intent(active_id, destination)
        self._emit("todo_moved", todo_id=todo.id, status=todo.status, order=todo.order)
        return True

    def poll_timers(self, now: Optional[datetime] = None) -> Optional[TimerReading]:
        """
        One timer poll.

        Returns the active timer's reading (None when idle). On expiry the
        timer is stopped before subscribers hear about it, so the next poll
        sees no active timer and the event cannot fire twice.
        """
        reading = self.store.tick(now)
        if reading is None or not reading.expired:
            return reading

        todo = self.store.stop_timer(reading.todo_id)
        logger.info(f"Timer expired for todo {todo.id}")
        self._emit("timer_expired", todo_id=todo.id, title=todo.title)
        return reading
