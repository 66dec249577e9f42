#!/usr/bin/env python3
"""
FlowState Board Server
----------------------
JSON API for the kanban to-do board, backed by a SQLite snapshot.

Usage:
    flowstate-server --config flowstate.yaml
    python -m flowstate.server --port 3000

API:
    GET    /health                        → { status, db, active_timer_id }
    GET    /api/board                     → { columns, counts, active_timer_id }
    GET    /api/todos?status=doing        → { todos, count }
    POST   /api/todos                     → { title, description?, timer_minutes? }
    PUT    /api/todos/<id>                → { title?, description?, timer_minutes? }
    DELETE /api/todos/<id>                → { deleted }
    POST   /api/todos/<id>/move           → { status, index? }
    POST   /api/drag                      → { active_id, over_id?, delete_zone? }
    POST   /api/todos/<id>/timer/start
    POST   /api/todos/<id>/timer/stop
    GET    /api/timer                     → { active, remaining_ms, expired, display }

Mutating routes require an X-API-Key header matching FLOWSTATE_API_SECRET.
"""

import argparse
import hmac
import logging
import sys
import threading
from contextlib import contextmanager
from functools import wraps
from typing import Any, Dict, Iterator, List, Optional

from flask import Flask, current_app, jsonify, request

from flowstate.config import Config
from flowstate.todos.errors import (
    InvalidStateError,
    NotFoundError,
    TodoError,
    ValidationError,
)
from flowstate.todos.events import TodoEventBridge
from flowstate.todos.notifier import NotificationSettings, TimerNotifier
from flowstate.todos.schema import TodoStatus
from flowstate.todos.snapshot import SnapshotStore
from flowstate.todos.store import TodoStore
from flowstate.todos.timer import TimerReading

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    InvalidStateError: 409,
}


# ── Board state ──────────────────────────────────────────────────────────────


class BoardState:
    """
    Store, event bridge, notifier and snapshot storage for one server.

    Requests and the timer poller share the store; every access goes
    through `lock` so there is only ever one writer.
    """

    def __init__(self, cfg: Config, store: Optional[TodoStore] = None):
        self.cfg = cfg
        self.lock = threading.Lock()
        self.snapshots = SnapshotStore(cfg.db_path)
        if store is None:
            store = TodoStore()
            snapshot = self.snapshots.load()
            if snapshot:
                store.load_snapshot(snapshot)
        self.store = store

        self.bridge = TodoEventBridge(self.store)
        self._pending: List[Dict[str, Any]] = []
        self.notifier = TimerNotifier(
            NotificationSettings(
                enabled=cfg.notifications_enabled,
                todo_timers=cfg.todo_timer_notifications,
            ),
            webhook_url=cfg.notify_webhook_url,
            timeout=cfg.notify_timeout_secs,
        )
        self.bridge.subscribe("timer_expired", self._queue_expiry)

    @contextmanager
    def reading(self) -> Iterator[TodoStore]:
        with self.lock:
            yield self.store

    @contextmanager
    def writing(self) -> Iterator[TodoStore]:
        """
        Exclusive access; saves a snapshot if the block completes.

        If the save fails the in-memory board is rolled back, so memory
        never holds changes the database does not.
        """
        with self.lock:
            before = self.store.to_snapshot()
            yield self.store
            self._save_or_rollback(before)

    def _save_or_rollback(self, before: Dict[str, Any]) -> None:
        try:
            self.snapshots.save(self.store.to_snapshot())
        except Exception:
            logger.exception("Saving board failed, rolling back in-memory changes")
            self.store.load_snapshot(before)
            raise

    def _queue_expiry(self, **event):
        self._pending.append(event)

    def poll_timers(self) -> Optional[TimerReading]:
        """
        One timer poll; persists the board when a timer expired.

        Expiry notifications go out after the lock is released.
        """
        with self.lock:
            before = self.store.to_snapshot()
            reading = self.bridge.poll_timers()
            expired, self._pending = self._pending, []
            if reading is not None and reading.expired:
                self._save_or_rollback(before)

        for event in expired:
            self.notifier(**event)
        return reading


class TimerPoller(threading.Thread):
    """Background thread polling the active timer every `interval` seconds."""

    def __init__(self, board: BoardState, interval: float = 1.0):
        super().__init__(name="timer-poller", daemon=True)
        self.board = board
        self.interval = interval
        self._stopped = threading.Event()

    def run(self):
        while not self._stopped.wait(self.interval):
            try:
                self.board.poll_timers()
            except Exception:
                logger.exception("Timer poll failed")

    def stop(self):
        self._stopped.set()


def _board() -> BoardState:
    return current_app.config["BOARD"]


# ── Auth ─────────────────────────────────────────────────────────────────────


def require_api_key(f):
    """Decorator: reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = _board().cfg.api_secret
        if not secret:
            return jsonify({"error": "FLOWSTATE_API_SECRET not set"}), 503
        provided = request.headers.get("X-API-Key", "").strip()
        if not hmac.compare_digest(provided, secret):
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


# ── Helpers ──────────────────────────────────────────────────────────────────


def _json_body() -> Dict[str, Any]:
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _optional_index(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"index must be an integer, got: '{value}'")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"index must be an integer, got: '{value}'")


def _board_payload(store: TodoStore) -> Dict[str, Any]:
    return {
        "columns": {
            s.value: [t.to_dict() for t in store.list_by_status(s)]
            for s in TodoStatus
        },
        "counts": store.counts(),
        "active_timer_id": store.active_timer_id,
    }


# ── App ──────────────────────────────────────────────────────────────────────


def create_app(cfg: Optional[Config] = None, store: Optional[TodoStore] = None) -> Flask:
    """Build the Flask app around a BoardState."""
    cfg = cfg or Config.load()
    app = Flask(__name__)
    app.config["BOARD"] = BoardState(cfg, store=store)

    @app.errorhandler(TodoError)
    def handle_todo_error(e: TodoError):
        code = next((c for cls, c in ERROR_STATUS.items() if isinstance(e, cls)), 400)
        return jsonify({"error": str(e)}), code

    @app.route("/health")
    def health():
        with _board().reading() as store:
            active = store.active_timer_id
        return jsonify({"status": "ok", "db": str(_board().snapshots.db_path), "active_timer_id": active})

    @app.route("/api/board")
    def api_board():
        with _board().reading() as store:
            return jsonify(_board_payload(store))

    @app.route("/api/todos", methods=["GET"])
    def api_list_todos():
        status = request.args.get("status")
        with _board().reading() as store:
            if status:
                todos = store.list_by_status(TodoStatus.from_str(status))
            else:
                todos = [t for s in TodoStatus for t in store.list_by_status(s)]
            payload = [t.to_dict() for t in todos]
        return jsonify({"todos": payload, "count": len(payload)})

    @app.route("/api/todos", methods=["POST"])
    @require_api_key
    def api_create_todo():
        data = _json_body()
        with _board().writing() as store:
            todo = store.create(
                data.get("title", ""),
                description=data.get("description"),
                timer_minutes=data.get("timer_minutes"),
            )
            payload = todo.to_dict()
        return jsonify({"todo": payload, "id": payload["id"]}), 201

    @app.route("/api/todos/<todo_id>", methods=["PUT"])
    @require_api_key
    def api_update_todo(todo_id):
        data = _json_body()
        with _board().writing() as store:
            todo = store.update(todo_id, data)
            payload = todo.to_dict()
        return jsonify({"todo": payload})

    @app.route("/api/todos/<todo_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_todo(todo_id):
        with _board().writing() as store:
            deleted = store.delete(todo_id)
        return jsonify({"deleted": deleted})

    @app.route("/api/todos/<todo_id>/move", methods=["POST"])
    @require_api_key
    def api_move_todo(todo_id):
        data = _json_body()
        if not data.get("status"):
            raise ValidationError("status is required")
        status = TodoStatus.from_str(data["status"])
        index = _optional_index(data.get("index"))
        with _board().writing() as store:
            todo = store.move(todo_id, status, index)
            payload = todo.to_dict()
        return jsonify({"todo": payload})

    @app.route("/api/drag", methods=["POST"])
    @require_api_key
    def api_drag_end():
        data = _json_body()
        active_id = data.get("active_id")
        if not active_id:
            raise ValidationError("active_id is required")
        with _board().writing() as store:
            changed = _board().bridge.on_drag_end(
                active_id,
                data.get("over_id"),
                delete_zone=bool(data.get("delete_zone", False)),
            )
            payload = _board_payload(store)
        return jsonify({"changed": changed, "board": payload})

    @app.route("/api/todos/<todo_id>/timer/start", methods=["POST"])
    @require_api_key
    def api_start_timer(todo_id):
        with _board().writing() as store:
            todo = store.start_timer(todo_id)
            payload = todo.to_dict()
        return jsonify({"todo": payload, "active_timer_id": todo_id})

    @app.route("/api/todos/<todo_id>/timer/stop", methods=["POST"])
    @require_api_key
    def api_stop_timer(todo_id):
        with _board().writing() as store:
            todo = store.stop_timer(todo_id)
            payload = todo.to_dict()
            active = store.active_timer_id
        return jsonify({"todo": payload, "active_timer_id": active})

    @app.route("/api/timer")
    def api_timer():
        with _board().reading() as store:
            reading = store.tick()
        if reading is None:
            return jsonify({"active": False})
        return jsonify({"active": True, **reading.to_dict()})

    return app


# ── Main ─────────────────────────────────────────────────────────────────────


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="FlowState Board Server")
    parser.add_argument("--config", help="Path to flowstate.yaml (overrides FLOWSTATE_CONFIG)")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to todos.db (overrides FLOWSTATE_DB and config)")
    args = parser.parse_args(argv)

    cfg = Config.load(args.config)
    if args.host:
        cfg.host = args.host
    if args.port:
        cfg.port = args.port
    if args.db:
        cfg.db_path = args.db
        cfg.resolve_paths()

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [flowstate] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    app = create_app(cfg)
    board: BoardState = app.config["BOARD"]
    poller = TimerPoller(board, interval=cfg.poll_interval_secs)
    poller.start()

    logger.info(f"Serving on http://{cfg.host}:{cfg.port}  db={cfg.db_path}  todos={len(board.store)}")
    if not cfg.api_secret:
        logger.warning("FLOWSTATE_API_SECRET not set: mutating routes will answer 503")

    try:
        app.run(host=cfg.host, port=cfg.port, debug=False, threaded=True)
    finally:
        poller.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
