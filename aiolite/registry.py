"""Process-wide cache of shared engine connections, keyed by path."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .sqlite import EngineConnection

logger = logging.getLogger(__name__)

Opener = Callable[[], Awaitable[EngineConnection]]


class _Entry:
    __slots__ = ("engine", "refs")

    def __init__(self, engine: EngineConnection):
        self.engine = engine
        self.refs = 0


class ConnectionRegistry:
    """Reference-counted path -> connection map.

    A connection is closed only when its last holder releases it.
    """

    def __init__(self):
        self._entries: dict[str, _Entry] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._waiters: dict[str, int] = {}
        self._closing: set[asyncio.Task] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def refs(self, key: str) -> int:
        entry = self._entries.get(key)
        return entry.refs if entry else 0

    async def _open(self, key: str, opener: Opener) -> _Entry:
        try:
            engine = await opener()
        finally:
            self._pending.pop(key, None)
        entry = _Entry(engine)
        self._entries[key] = entry
        return entry

    async def acquire(self, key: str, opener: Opener) -> EngineConnection:
        """Return the cached connection for key, opening it with opener if absent.

        Concurrent acquirers of the same key share a single open.
        """
        while True:
            entry = self._entries.get(key)
            if entry is None:
                pending = self._pending.get(key)
                if pending is None:
                    pending = asyncio.ensure_future(self._open(key, opener))
                    self._pending[key] = pending
                entry = await self._wait(key, pending)
            # released to zero while this acquirer was waiting
            if self._entries.get(key) is entry:
                break

        entry.refs += 1
        logger.debug(f"Acquired {key} (refs={entry.refs})")
        return entry.engine

    async def _wait(self, key: str, pending: asyncio.Future) -> _Entry:
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            pending.add_done_callback(lambda fut: self._discard_unclaimed(key, fut))
            raise
        finally:
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]

    def _discard_unclaimed(self, key: str, pending: asyncio.Future) -> None:
        """Close a connection whose every acquirer was cancelled during the open."""
        if pending.cancelled() or pending.exception() is not None:
            return
        entry = pending.result()
        if self._waiters.get(key) or entry.refs or self._entries.get(key) is not entry:
            return

        del self._entries[key]
        logger.debug(f"Discarding unclaimed connection {key}")
        task = asyncio.ensure_future(self._close_unclaimed(key, entry.engine))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_unclaimed(self, key: str, engine: EngineConnection) -> None:
        try:
            await engine.close()
        except Exception as e:
            logger.error(f"Failed to close unclaimed connection {key}: {e}")

    async def release(self, key: str) -> bool:
        """Drop one reference. Returns True when the connection was closed."""
        entry = self._entries.get(key)
        if entry is None:
            return False

        entry.refs -= 1
        logger.debug(f"Released {key} (refs={entry.refs})")
        if entry.refs > 0:
            return False

        del self._entries[key]
        await entry.engine.close()
        return True

    async def close_all(self) -> list[BaseException]:
        """Close every cached connection regardless of holders.

        Open handles on those connections move to closed and emit `close`.
        Close failures are reported to the connection's subscribers and
        returned.
        """
        entries = list(self._entries.items())
        self._entries.clear()

        errors: list[BaseException] = []
        for key, entry in entries:
            try:
                await entry.engine.close()
            except Exception as e:
                logger.error(f"Failed to close cached connection {key}: {e}")
                entry.engine.report(e)
                errors.append(e)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
        return errors


default = ConnectionRegistry()


async def close_all() -> list[BaseException]:
    """Close all connections in the default registry."""
    return await default.close_all()


async def _reset_for_testing() -> None:
    """Close and replace the default registry (test-only)."""
    global default
    await default.close_all()
    default = ConnectionRegistry()
