"""
Errors raised by the to-do store.

All are deterministic given the input and current state; none are retryable.
"""


class TodoError(Exception):
    """Base class for to-do board errors."""
    pass


class ValidationError(TodoError):
    """Raised when input fields are empty or invalid (e.g. blank title)."""
    pass


class NotFoundError(TodoError):
    """Raised when an operation references an unknown todo id."""

    def __init__(self, todo_id: str):
        super().__init__(f"Todo {todo_id} not found")
        self.todo_id = todo_id


class InvalidStateError(TodoError):
    """Raised when an operation is not allowed in the todo's current state."""
    pass
