import logging
import sqlite3

import pytest

from aiolite.database import Database
from aiolite.events import Emitter


class TestEmitter:
    def test_listeners_called_in_registration_order(self):
        emitter = Emitter()
        calls = []
        emitter.on("trace", lambda sql: calls.append(("first", sql)))
        emitter.on("trace", lambda sql: calls.append(("second", sql)))

        assert emitter.emit("trace", "SELECT 1") == 2
        assert calls == [("first", "SELECT 1"), ("second", "SELECT 1")]

    def test_same_listener_registered_twice_runs_twice(self):
        emitter = Emitter()
        calls = []

        def listener():
            calls.append(1)

        emitter.on("open", listener)
        emitter.on("open", listener)
        emitter.emit("open")

        assert calls == [1, 1]

    def test_off_removes_one_registration(self):
        emitter = Emitter()
        calls = []

        def listener():
            calls.append(1)

        emitter.on("close", listener)
        emitter.on("close", listener)

        assert emitter.off("close", listener) is True
        emitter.emit("close")
        assert calls == [1]

    def test_off_unknown_listener(self):
        emitter = Emitter()

        assert emitter.off("close", lambda: None) is False

    def test_unknown_event_rejected(self):
        emitter = Emitter()

        with pytest.raises(ValueError, match="Unknown event"):
            emitter.on("commit", lambda: None)
        with pytest.raises(ValueError):
            emitter.emit("commit")

    def test_failing_listener_reported_on_error_and_others_still_run(self):
        emitter = Emitter()
        errors = []
        calls = []
        boom = RuntimeError("boom")

        def failing(sql):
            raise boom

        emitter.on("error", errors.append)
        emitter.on("trace", failing)
        emitter.on("trace", calls.append)
        emitter.emit("trace", "SELECT 1")

        assert errors == [boom]
        assert calls == ["SELECT 1"]

    def test_unhandled_background_error_logged(self, caplog):
        emitter = Emitter()

        with caplog.at_level(logging.ERROR, logger="aiolite.events"):
            emitter.report(RuntimeError("lost"))

        assert "Unhandled background error: lost" in caplog.text

    def test_failing_error_listener_logged_not_recursed(self, caplog):
        emitter = Emitter()
        calls = []

        def failing(err):
            raise ValueError("listener broke")

        emitter.on("error", failing)
        emitter.on("error", calls.append)

        with caplog.at_level(logging.ERROR, logger="aiolite.events"):
            emitter.report(RuntimeError("original"))

        assert len(calls) == 1
        assert "listener broke" in caplog.text


@pytest.mark.asyncio
async def test_two_trace_listeners_each_called_once_in_order(db):
    calls = []
    db.on("trace", lambda sql: calls.append(("a", sql)))
    db.on("trace", lambda sql: calls.append(("b", sql)))

    await db.run("INSERT INTO t(v) VALUES (?)", 42)

    assert [name for name, _ in calls] == ["a", "b"]
    assert calls[0][1] == calls[1][1]
    assert "INSERT INTO t" in calls[0][1]


@pytest.mark.asyncio
async def test_trace_fires_per_statement_in_exec(db):
    traced = []
    db.on("trace", traced.append)

    await db.exec("INSERT INTO t(v) VALUES (1); INSERT INTO t(v) VALUES (2);")

    assert len(traced) == 2
    assert all("INSERT INTO t" in sql for sql in traced)


@pytest.mark.asyncio
async def test_trace_stops_after_off(db):
    traced = []
    db.on("trace", traced.append)
    await db.run("INSERT INTO t(v) VALUES (1)")

    assert db.off("trace", traced.append) is True
    await db.run("INSERT INTO t(v) VALUES (2)")

    assert len(traced) == 1


@pytest.mark.asyncio
async def test_profile_reports_sql_and_elapsed_ms(db):
    profiles = []
    db.on("profile", lambda sql, ms: profiles.append((sql, ms)))

    await db.all("SELECT * FROM t")

    assert len(profiles) == 1
    sql, ms = profiles[0]
    assert sql == "SELECT * FROM t"
    assert isinstance(ms, float)
    assert ms >= 0


@pytest.mark.asyncio
async def test_profile_fires_per_statement_in_exec(db):
    seen = []
    db.on("trace", lambda sql: seen.append(("trace", sql)))
    db.on("profile", lambda sql, ms: seen.append(("profile", sql)))

    await db.exec("INSERT INTO t(v) VALUES (1); INSERT INTO t(v) VALUES (2);")

    assert [kind for kind, _ in seen] == ["trace", "profile", "trace", "profile"]
    assert seen[0][1] == seen[1][1]
    assert seen[2][1] == seen[3][1]
    assert seen[0][1] != seen[2][1]


@pytest.mark.asyncio
async def test_profile_emitted_for_statement_that_fails_while_running(db):
    await db.run("INSERT INTO t(id, v) VALUES (1, 1)")
    profiles = []
    db.on("profile", lambda sql, ms: profiles.append(sql))

    with pytest.raises(sqlite3.IntegrityError):
        await db.run("INSERT INTO t(id, v) VALUES (1, 2)")

    assert len(profiles) == 1
    assert "INSERT INTO t" in profiles[0]


@pytest.mark.asyncio
async def test_profile_not_emitted_for_statement_that_fails_to_prepare(db):
    profiles = []
    db.on("profile", lambda sql, ms: profiles.append(sql))

    with pytest.raises(sqlite3.OperationalError):
        await db.all("SELECT * FROM nope")

    assert profiles == []


@pytest.mark.asyncio
async def test_open_and_close_events(tmp_path):
    db = Database(tmp_path / "events.db")
    lifecycle = []
    db.on("open", lambda: lifecycle.append("open"))
    db.on("close", lambda: lifecycle.append("close"))

    await db.open()
    assert lifecycle == ["open"]

    await db.close()
    assert lifecycle == ["open", "close"]


@pytest.mark.asyncio
async def test_call_errors_not_emitted_on_error_event(db):
    errors = []
    db.on("error", errors.append)

    with pytest.raises(sqlite3.OperationalError):
        await db.run("INSERT INTO missing VALUES (1)")

    assert errors == []


@pytest.mark.asyncio
async def test_listener_failure_surfaces_on_error_event(db):
    errors = []
    boom = RuntimeError("listener failed")

    def failing(sql):
        raise boom

    db.on("error", errors.append)
    db.on("trace", failing)

    result = await db.run("INSERT INTO t(v) VALUES (1)")

    assert result.changes == 1
    assert errors == [boom]


@pytest.mark.asyncio
async def test_listeners_snapshot(db):
    def listener(sql):
        pass

    db.on("trace", listener)

    assert db.listeners("trace") == [listener]
    assert db.listeners("error") == []
