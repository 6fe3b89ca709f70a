import sqlite3


class AioliteError(Exception):
    """Base exception for aiolite errors."""

    pass


class MisuseError(AioliteError, sqlite3.ProgrammingError):
    """Raised when an operation is invoked on a handle that is not open."""

    pass


class OpenModeError(AioliteError, ValueError):
    """Raised when an open mode combines flags the engine cannot honour."""

    pass


class BusyError(AioliteError, sqlite3.OperationalError):
    """Raised when a handle is closed while its own operations are in flight."""

    pass
