"""
Tests for the Flask board API.

Covers:
    - auth          : X-API-Key handling on mutating routes
    - CRUD routes   : create / update / delete / list / board
    - move + drag   : ordering through the API
    - timer routes  : start / stop / tick, error mapping
    - persistence   : snapshot saved per mutation, reloaded on startup
    - BoardState    : timer polling, notification outside the lock, rollback on failed save
"""

import sqlite3

import pytest

from flowstate.config import Config
from flowstate.server import BoardState, create_app

SECRET = "test-secret"
AUTH = {"X-API-Key": SECRET}


def _config(tmp_path, **overrides):
    cfg = Config(db_path=str(tmp_path / "todos.db"), api_secret=SECRET)
    for k, v in overrides.items():
        setattr(cfg, k, v)
    return cfg


@pytest.fixture
def cfg(tmp_path):
    return _config(tmp_path)


@pytest.fixture
def app(cfg, store):
    app = create_app(cfg, store=store)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def _create(client, title, **extra):
    r = client.post("/api/todos", json={"title": title, **extra}, headers=AUTH)
    assert r.status_code == 201, r.get_json()
    return r.get_json()["todo"]


def _titles(client, status):
    return [t["title"] for t in client.get("/api/board").get_json()["columns"][status]]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Auth
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestAuth:

    def test_missing_key(self, client):
        r = client.post("/api/todos", json={"title": "A"})
        assert r.status_code == 401

    def test_wrong_key(self, client):
        r = client.post("/api/todos", json={"title": "A"}, headers={"X-API-Key": "nope"})
        assert r.status_code == 403

    def test_secret_not_configured(self, tmp_path, store):
        client = create_app(_config(tmp_path, api_secret=""), store=store).test_client()
        r = client.post("/api/todos", json={"title": "A"}, headers=AUTH)
        assert r.status_code == 503

    def test_reads_are_open(self, client):
        assert client.get("/api/board").status_code == 200
        assert client.get("/health").get_json()["status"] == "ok"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CRUD
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestCrud:

    def test_create_and_board(self, client):
        a = _create(client, "A", description="first", timer_minutes=25)
        _create(client, "B")
        assert a["status"] == "todo"
        assert a["order"] == 0
        assert a["timer_minutes"] == 25

        board = client.get("/api/board").get_json()
        assert [t["title"] for t in board["columns"]["todo"]] == ["A", "B"]
        assert board["counts"] == {"todo": 2, "doing": 0, "done": 0}
        assert board["active_timer_id"] is None

    def test_create_blank_title(self, client):
        r = client.post("/api/todos", json={"title": "  "}, headers=AUTH)
        assert r.status_code == 400
        assert "Title" in r.get_json()["error"]

    def test_create_bad_timer(self, client):
        r = client.post("/api/todos", json={"title": "A", "timer_minutes": 0}, headers=AUTH)
        assert r.status_code == 400

    @pytest.mark.parametrize("extra", [
        {"description": {"a": 1}},
        {"timer_minutes": 10**30},
        {"timer_minutes": 25.9},
    ])
    def test_bad_field_rejected_and_board_keeps_working(self, client, extra):
        r = client.post("/api/todos", json={"title": "bad", **extra}, headers=AUTH)
        assert r.status_code == 400
        _create(client, "good")
        assert _titles(client, "todo") == ["good"]

    def test_non_object_body(self, client):
        r = client.post("/api/todos", json=["A"], headers=AUTH)
        assert r.status_code == 400

    def test_update(self, client):
        a = _create(client, "A")
        r = client.put(f"/api/todos/{a['id']}", json={"title": "A2", "timer_minutes": 5}, headers=AUTH)
        assert r.status_code == 200
        assert r.get_json()["todo"]["title"] == "A2"
        assert r.get_json()["todo"]["timer_minutes"] == 5

    def test_update_unknown(self, client):
        r = client.put("/api/todos/missing", json={"title": "x"}, headers=AUTH)
        assert r.status_code == 404

    def test_update_readonly_field(self, client):
        a = _create(client, "A")
        r = client.put(f"/api/todos/{a['id']}", json={"order": 3}, headers=AUTH)
        assert r.status_code == 400

    def test_delete_is_idempotent(self, client):
        a = _create(client, "A")
        assert client.delete(f"/api/todos/{a['id']}", headers=AUTH).get_json() == {"deleted": True}
        assert client.delete(f"/api/todos/{a['id']}", headers=AUTH).get_json() == {"deleted": False}

    def test_list_filtered(self, client):
        a = _create(client, "A")
        _create(client, "B")
        client.post(f"/api/todos/{a['id']}/move", json={"status": "done"}, headers=AUTH)

        done = client.get("/api/todos?status=done").get_json()
        assert done["count"] == 1
        assert done["todos"][0]["id"] == a["id"]
        assert client.get("/api/todos").get_json()["count"] == 2
        assert client.get("/api/todos?status=bogus").status_code == 400


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Move + drag
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestMoves:

    def test_move_with_index(self, client):
        ids = [_create(client, n)["id"] for n in "XYZW"]
        for todo_id in ids[:3]:
            client.post(f"/api/todos/{todo_id}/move", json={"status": "doing"}, headers=AUTH)
        r = client.post(f"/api/todos/{ids[3]}/move", json={"status": "doing", "index": 1}, headers=AUTH)
        assert r.status_code == 200
        assert r.get_json()["todo"]["order"] == 1
        assert _titles(client, "doing") == ["X", "W", "Y", "Z"]

    def test_move_requires_status(self, client):
        a = _create(client, "A")
        r = client.post(f"/api/todos/{a['id']}/move", json={}, headers=AUTH)
        assert r.status_code == 400

    def test_move_bad_index(self, client):
        a = _create(client, "A")
        r = client.post(f"/api/todos/{a['id']}/move", json={"status": "doing", "index": "two"}, headers=AUTH)
        assert r.status_code == 400

    def test_move_non_string_status(self, client):
        a = _create(client, "A")
        r = client.post(f"/api/todos/{a['id']}/move", json={"status": 5}, headers=AUTH)
        assert r.status_code == 400
        assert _titles(client, "todo") == ["A"]

    def test_move_unknown(self, client):
        r = client.post("/api/todos/missing/move", json={"status": "doing"}, headers=AUTH)
        assert r.status_code == 404

    def test_drag_onto_todo(self, client):
        a = _create(client, "A")
        b = _create(client, "B")
        r = client.post("/api/drag", json={"active_id": b["id"], "over_id": a["id"]}, headers=AUTH)
        body = r.get_json()
        assert body["changed"] is True
        assert [t["title"] for t in body["board"]["columns"]["todo"]] == ["B", "A"]

    def test_drag_onto_column(self, client):
        a = _create(client, "A")
        client.post("/api/drag", json={"active_id": a["id"], "over_id": "doing"}, headers=AUTH)
        assert _titles(client, "doing") == ["A"]

    def test_drag_to_delete_zone(self, client):
        a = _create(client, "A")
        r = client.post("/api/drag", json={"active_id": a["id"], "delete_zone": True}, headers=AUTH)
        assert r.get_json()["changed"] is True
        assert client.get("/api/board").get_json()["counts"]["todo"] == 0

    def test_drag_over_nothing(self, client):
        a = _create(client, "A")
        r = client.post("/api/drag", json={"active_id": a["id"]}, headers=AUTH)
        assert r.get_json()["changed"] is False

    def test_drag_requires_active_id(self, client):
        r = client.post("/api/drag", json={"over_id": "doing"}, headers=AUTH)
        assert r.status_code == 400


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Timers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestTimers:

    def test_start_tick_stop(self, client, clock):
        a = _create(client, "A", timer_minutes=25)
        r = client.post(f"/api/todos/{a['id']}/timer/start", headers=AUTH)
        assert r.status_code == 200
        assert r.get_json()["active_timer_id"] == a["id"]

        clock.advance(minutes=5, seconds=30)
        timer = client.get("/api/timer").get_json()
        assert timer["active"] is True
        assert timer["todo_id"] == a["id"]
        assert timer["display"] == "19:30"
        assert timer["expired"] is False

        r = client.post(f"/api/todos/{a['id']}/timer/stop", headers=AUTH)
        assert r.get_json()["active_timer_id"] is None
        assert r.get_json()["todo"]["timer_ended_at"] is not None
        assert client.get("/api/timer").get_json() == {"active": False}

    def test_start_without_duration_conflicts(self, client):
        a = _create(client, "A")
        r = client.post(f"/api/todos/{a['id']}/timer/start", headers=AUTH)
        assert r.status_code == 409

    def test_start_unknown(self, client):
        r = client.post("/api/todos/missing/timer/start", headers=AUTH)
        assert r.status_code == 404

    def test_second_start_preempts(self, client):
        a = _create(client, "A", timer_minutes=5)
        b = _create(client, "B", timer_minutes=5)
        client.post(f"/api/todos/{a['id']}/timer/start", headers=AUTH)
        client.post(f"/api/todos/{b['id']}/timer/start", headers=AUTH)

        board = client.get("/api/board").get_json()
        assert board["active_timer_id"] == b["id"]
        a_after = next(t for t in board["columns"]["todo"] if t["id"] == a["id"])
        assert a_after["timer_started_at"] is None
        assert a_after["timer_ended_at"] is not None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Persistence + polling
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestBoardState:

    def test_mutations_persist_and_reload(self, cfg, client):
        a = _create(client, "A", timer_minutes=5)
        _create(client, "B")
        client.post(f"/api/todos/{a['id']}/move", json={"status": "doing"}, headers=AUTH)
        client.post(f"/api/todos/{a['id']}/timer/start", headers=AUTH)

        reloaded = create_app(cfg).test_client()
        board = reloaded.get("/api/board").get_json()
        assert [t["title"] for t in board["columns"]["doing"]] == ["A"]
        assert [t["title"] for t in board["columns"]["todo"]] == ["B"]
        assert board["active_timer_id"] == a["id"]

    def test_failed_mutation_does_not_persist(self, cfg, client):
        _create(client, "A")
        client.post("/api/todos", json={"title": ""}, headers=AUTH)
        board = BoardState(cfg)
        assert len(board.store) == 1

    def test_poll_expires_notifies_and_saves(self, cfg, store, clock, monkeypatch):
        board = BoardState(cfg, store=store)
        sent = []
        monkeypatch.setattr(board.notifier, "notify", lambda todo_id, title: sent.append((todo_id, title)))

        t = store.create("Focus", timer_minutes=1)
        store.start_timer(t.id)
        clock.advance(seconds=30)
        assert board.poll_timers().expired is False
        clock.advance(seconds=30)
        assert board.poll_timers().expired is True
        assert board.poll_timers() is None

        assert sent == [(t.id, "Focus")]
        saved = board.snapshots.load()
        assert saved["active_timer_id"] is None
        assert saved["todos"][0]["timer_ended_at"] is not None

    def test_failed_save_rolls_back_memory(self, cfg, store, monkeypatch):
        board = BoardState(cfg, store=store)
        with board.writing() as s:
            kept = s.create("A")

        def broken_save(snapshot):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(board.snapshots, "save", broken_save)
        with pytest.raises(sqlite3.OperationalError):
            with board.writing() as s:
                s.create("B")
                s.move(kept.id, "done")

        assert [t.title for t in board.store.list_all()] == ["A"]
        assert board.store.get(kept.id).status.value == "todo"
        assert board.snapshots.load()["todos"][0]["title"] == "A"

        monkeypatch.undo()
        with board.writing() as s:
            s.create("C")
        assert [t["title"] for t in board.snapshots.load()["todos"]] == ["A", "C"]

    def test_notifier_runs_without_holding_the_lock(self, cfg, store, clock, monkeypatch):
        board = BoardState(cfg, store=store)
        lock_held = []
        monkeypatch.setattr(board.notifier, "notify", lambda todo_id, title: lock_held.append(board.lock.locked()))

        t = store.create("Focus", timer_minutes=1)
        store.start_timer(t.id)
        clock.advance(minutes=1)
        assert board.poll_timers().expired is True
        assert lock_held == [False]
