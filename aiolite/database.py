"""Awaitable handle over one SQLite connection.

Each operation maps to exactly one engine call. Statements run in the
engine's FIFO order; this layer adds no locking, retries or transactions.
"""

import asyncio
import enum
import logging
import sqlite3
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import aiosqlite

from . import config, events, flags
from . import registry as registries
from .errors import BusyError, MisuseError
from .events import Emitter, Listener
from .rows import Row
from .sqlite import EngineConnection, connect

logger = logging.getLogger(__name__)

T = TypeVar("T")

_verbose = False


class State(enum.Enum):
    UNOPENED = "unopened"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class RunResult:
    """Effect of one statement: last inserted rowid and rows changed."""

    last_id: int
    changes: int

    @property
    def lastID(self) -> int:
        return self.last_id


def _bind(params: tuple) -> Any:
    """Positional varargs, or a single sequence/mapping passed through as-is."""
    if len(params) == 1 and isinstance(params[0], (Mapping, list, tuple)):
        return params[0]
    return params


class Database:
    """Async handle: unopened -> opening -> open -> closing -> closed.

    Listeners may be registered before open() so `open` is observable.
    With cached=True the connection is shared through a ConnectionRegistry
    with every other cached handle on the same path.
    """

    OPEN_READONLY = flags.OPEN_READONLY
    OPEN_READWRITE = flags.OPEN_READWRITE
    OPEN_CREATE = flags.OPEN_CREATE

    def __init__(
        self,
        path: str | Path,
        mode: int | None = None,
        cached: bool = False,
        *,
        registry: registries.ConnectionRegistry | None = None,
    ):
        self._path = str(path)
        self._mode = flags.DEFAULT_MODE if mode is None else flags.OpenMode(mode)
        self._cached = cached
        self._registry = registry
        self._key = flags.cache_key(self._path)
        self._engine: EngineConnection | None = None
        self._state = State.UNOPENED
        self._events = Emitter()
        self._verbose = False
        self._in_flight = 0

    @classmethod
    def verbose(cls) -> type["Database"]:
        """Annotate call errors with the failing operation and SQL.

        Also turns on tracebacks for exceptions raised in engine callbacks.
        """
        global _verbose
        _verbose = True
        sqlite3.enable_callback_tracebacks(True)
        return cls

    @classmethod
    async def connect(
        cls,
        path: str | Path,
        mode: int | None = None,
        cached: bool = False,
        *,
        registry: registries.ConnectionRegistry | None = None,
    ) -> "Database":
        """Construct and open a handle in one step."""
        db = cls(path, mode, cached, registry=registry)
        return await db.open()

    @property
    def path(self) -> str:
        return self._path

    @property
    def mode(self) -> flags.OpenMode:
        return self._mode

    @property
    def cached(self) -> bool:
        return self._cached

    @property
    def state(self) -> State:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is State.OPEN

    def _active_registry(self) -> registries.ConnectionRegistry:
        return self._registry if self._registry is not None else registries.default

    async def open(self) -> "Database":
        """Open the connection. Engine errors propagate unchanged."""
        if self._state is not State.UNOPENED:
            raise MisuseError(f"Database {self._path!r} is {self._state.value}; a handle opens once")

        self._state = State.OPENING
        try:
            flags.uri_mode(self._mode)
            settings = config.settings()
            self._verbose = _verbose or settings.verbose
            if self._verbose:
                sqlite3.enable_callback_tracebacks(True)

            if self._cached:
                engine = await self._active_registry().acquire(
                    self._key, lambda: connect(self._path, self._mode, settings)
                )
            else:
                engine = await connect(self._path, self._mode, settings)
        except BaseException:
            self._state = State.CLOSED
            raise

        engine.subscribe(asyncio.get_running_loop(), self._on_engine)
        self._engine = engine
        self._state = State.OPEN
        logger.debug(f"Opened {self._key} (cached={self._cached})")
        self._events.emit(events.OPEN)
        return self

    async def close(self) -> None:
        """Close the handle. Cached handles close the connection only as last holder.

        Fails with BusyError while this handle still has operations in flight.
        """
        engine = self._require_open("close")
        if self._in_flight:
            raise BusyError(
                f"unable to close {self._key}: {self._in_flight} operation(s) still in flight"
            )
        self._state = State.CLOSING
        try:
            if self._cached:
                await self._active_registry().release(self._key)
            else:
                await engine.close()
        except BaseException:
            self._state = State.CLOSED if self._cached else State.OPEN
            raise
        finally:
            if self._state is not State.OPEN:
                engine.unsubscribe(self._on_engine)
                self._engine = None

        self._state = State.CLOSED
        logger.debug(f"Closed {self._key}")
        self._events.emit(events.CLOSE)

    def on(self, event: str, listener: Listener) -> None:
        """Subscribe to trace, profile, error, open or close."""
        self._events.on(event, listener)

    def off(self, event: str, listener: Listener) -> bool:
        return self._events.off(event, listener)

    def listeners(self, event: str) -> list[Listener]:
        return self._events.listeners(event)

    def _on_engine(self, event: str, *args: Any) -> None:
        if event == events.CLOSE:
            self._detach()
        elif event == events.ERROR:
            self._events.report(*args)
        else:
            self._events.emit(event, *args)

    def _detach(self) -> None:
        """The connection was closed under this handle, e.g. by close_all()."""
        if self._state is not State.OPEN:
            return
        self._engine.unsubscribe(self._on_engine)
        self._engine = None
        self._state = State.CLOSED
        logger.debug(f"Connection {self._key} closed under open handle")
        self._events.emit(events.CLOSE)

    def _require_open(self, op: str) -> EngineConnection:
        if self._state is not State.OPEN or self._engine is None or self._engine.closed:
            raise MisuseError(f"Database#{op} called on a {self._state.value} database")
        return self._engine

    async def _call(
        self, op: str, sql: str, fn: Callable[[aiosqlite.Connection], Awaitable[T]]
    ) -> T:
        engine = self._require_open(op)
        self._in_flight += 1
        engine.begin()
        try:
            result = await fn(engine.conn)
        except Exception as e:
            if self._verbose or _verbose:
                e.add_note(f"--> in Database#{op}({sql!r})")
            raise
        finally:
            self._in_flight -= 1
            engine.end()
        return result

    async def run(self, sql: str, *params: Any) -> RunResult:
        """Execute a single statement and report lastID/changes."""
        bound = _bind(params)

        async def execute(conn: aiosqlite.Connection) -> RunResult:
            async with conn.execute(sql, bound) as cursor:
                return RunResult(cursor.lastrowid or 0, max(cursor.rowcount, 0))

        return await self._call("run", sql, execute)

    async def get(self, sql: str, *params: Any) -> Row | None:
        """First result row, or None when the query matches nothing."""
        bound = _bind(params)

        async def fetch(conn: aiosqlite.Connection) -> Row | None:
            async with conn.execute(sql, bound) as cursor:
                return await cursor.fetchone()

        return await self._call("get", sql, fetch)

    async def all(self, sql: str, *params: Any) -> list[Row]:
        bound = _bind(params)

        async def fetch(conn: aiosqlite.Connection) -> list[Row]:
            async with conn.execute(sql, bound) as cursor:
                return list(await cursor.fetchall())

        return await self._call("all", sql, fetch)

    async def exec(self, sql: str) -> None:
        """Run a semicolon-separated script, stopping at the first failure.

        Statements already executed stay applied unless the script wraps
        them in its own BEGIN/COMMIT.
        """

        async def execute(conn: aiosqlite.Connection) -> None:
            async with conn.executescript(sql):
                pass

        await self._call("exec", sql, execute)

    async def __aenter__(self) -> "Database":
        if self._state is State.UNOPENED:
            await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._state is State.OPEN:
            await self.close()

    def __repr__(self) -> str:
        return f"Database({self._path!r}, mode={self._mode!r}, cached={self._cached}, state={self._state.value})"
