"""Engine adapter: one aiosqlite connection per EngineConnection."""

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path

import aiosqlite

from . import events, flags
from .config import Settings
from .rows import dict_factory

logger = logging.getLogger(__name__)

Subscriber = Callable[..., None]


class EngineConnection:
    """An open engine connection and the handles subscribed to it.

    SQLite reports executed statements on the engine thread; they are handed
    to each subscriber on its own event loop as `trace`, followed by
    `profile` once the statement is done. A statement is done when the next
    one starts or when the last call running on the connection returns.
    """

    def __init__(self, conn: aiosqlite.Connection, key: str):
        self.conn = conn
        self.key = key
        self._subscribers: list[tuple[asyncio.AbstractEventLoop, Subscriber]] = []
        self._lock = threading.Lock()
        self._statement: tuple[str, float] | None = None
        self._calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, loop: asyncio.AbstractEventLoop, subscriber: Subscriber) -> None:
        """subscriber(event, *args) receives trace, profile, error and close."""
        self._subscribers.append((loop, subscriber))

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self._subscribers = [sub for sub in self._subscribers if sub[1] != subscriber]

    @property
    def subscribers(self) -> int:
        return len(self._subscribers)

    def _dispatch(self, event: str, *args, inline: bool = False) -> None:
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None

        for loop, subscriber in list(self._subscribers):
            if loop.is_closed():
                continue
            if inline and loop is current:
                subscriber(event, *args)
            else:
                loop.call_soon_threadsafe(subscriber, event, *args)

    def _trace(self, sql: str) -> None:
        now = time.perf_counter()
        with self._lock:
            previous, self._statement = self._statement, (sql, now)
        if previous:
            self._dispatch(events.PROFILE, previous[0], (now - previous[1]) * 1000)
        self._dispatch(events.TRACE, sql)

    def begin(self) -> None:
        """Mark a call as running on this connection."""
        with self._lock:
            self._calls += 1

    def end(self) -> None:
        """Mark a call as returned; the last one finishes the open statement."""
        now = time.perf_counter()
        with self._lock:
            self._calls -= 1
            if self._calls:
                return
            previous, self._statement = self._statement, None
        if previous:
            self._dispatch(events.PROFILE, previous[0], (now - previous[1]) * 1000, inline=True)

    def report(self, error: BaseException) -> None:
        """Hand a background error to every subscriber."""
        self._dispatch(events.ERROR, error)

    async def close(self) -> None:
        await self.conn.close()
        self._closed = True
        with self._lock:
            self._statement = None
        logger.debug(f"Closed engine connection {self.key}")
        self._dispatch(events.CLOSE, inline=True)

    def __repr__(self) -> str:
        return f"EngineConnection({self.key!r})"


def _literal(value) -> str:
    if isinstance(value, bool):
        return "ON" if value else "OFF"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


async def connect(path: str | Path, mode: int, settings: Settings) -> EngineConnection:
    """Open an engine connection in autocommit mode with dict rows.

    Engine errors propagate unchanged.
    """
    database, uri = flags.connect_target(path, mode)
    key = flags.cache_key(path)
    start = time.perf_counter()

    conn = await aiosqlite.connect(database, uri=uri, timeout=settings.timeout, isolation_level=None)
    try:
        conn.row_factory = dict_factory
        for name, value in settings.pragmas.items():
            async with conn.execute(f"PRAGMA {name} = {_literal(value)}"):
                pass
        engine = EngineConnection(conn, key)
        await conn.set_trace_callback(engine._trace)
    except BaseException:
        await conn.close()
        raise

    elapsed = time.perf_counter() - start
    if elapsed > 0.1:
        logger.warning(f"SQLite connection to {key} took {elapsed:.3f}s (possible lock contention)")
    logger.debug(f"Opened engine connection {key} (mode={flags.uri_mode(mode)})")
    return engine
