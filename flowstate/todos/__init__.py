# To-do board: ordered three-column task list with per-task countdown timers
#
# Components:
#   schema.py    - Data model (Todo, TodoStatus)
#   errors.py    - Typed errors raised by the store
#   ordering.py  - Pure reorder functions (dense per-column ordering)
#   store.py     - In-memory store, single owner of todos and the active timer
#   timer.py     - Countdown arithmetic (tick) and display formatting
#   intents.py   - Drag-end translation into move/delete destinations
#   events.py    - Event bridge: drag handling, timer polling, subscribers
#   notifier.py  - Timer-expiry notification sink (log / webhook)
#   snapshot.py  - SQLite snapshot persistence
