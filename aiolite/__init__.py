"""Awaitable SQLite handle with event subscription."""

from aiolite.database import Database, RunResult, State
from aiolite.errors import AioliteError, BusyError, MisuseError, OpenModeError
from aiolite.flags import (
    DEFAULT_MODE,
    MEMORY,
    OPEN_CREATE,
    OPEN_READONLY,
    OPEN_READWRITE,
    TEMPORARY,
    OpenMode,
)
from aiolite.registry import ConnectionRegistry, close_all
from aiolite.rows import Row

connect = Database.connect
verbose = Database.verbose

__all__ = [
    "Database",
    "RunResult",
    "State",
    "connect",
    "verbose",
    "OpenMode",
    "OPEN_READONLY",
    "OPEN_READWRITE",
    "OPEN_CREATE",
    "DEFAULT_MODE",
    "MEMORY",
    "TEMPORARY",
    "AioliteError",
    "BusyError",
    "MisuseError",
    "OpenModeError",
    "ConnectionRegistry",
    "close_all",
    "Row",
]
