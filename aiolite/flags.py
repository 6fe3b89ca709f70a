"""Open mode flags and their translation into engine connect arguments."""

import enum
from pathlib import Path
from urllib.parse import quote

from .errors import OpenModeError


class OpenMode(enum.IntFlag):
    READ_ONLY = 0x00000001
    READ_WRITE = 0x00000002
    CREATE = 0x00000004


OPEN_READONLY = OpenMode.READ_ONLY
OPEN_READWRITE = OpenMode.READ_WRITE
OPEN_CREATE = OpenMode.CREATE

DEFAULT_MODE = OpenMode.CREATE | OpenMode.READ_WRITE

MEMORY = ":memory:"
TEMPORARY = ""


def is_sentinel(path: str) -> bool:
    """True for the in-memory and temporary-file names the engine reserves."""
    return path in (MEMORY, TEMPORARY)


def uri_mode(mode: int) -> str:
    """Map an OpenMode bitmask to the SQLite URI `mode` parameter."""
    mode = OpenMode(mode)
    readonly = OpenMode.READ_ONLY in mode
    readwrite = OpenMode.READ_WRITE in mode

    if readonly == readwrite:
        raise OpenModeError(f"Open mode {mode!r} must include exactly one of READ_ONLY, READ_WRITE")
    if readonly:
        if OpenMode.CREATE in mode:
            raise OpenModeError("CREATE cannot be combined with READ_ONLY")
        return "ro"
    return "rwc" if OpenMode.CREATE in mode else "rw"


def cache_key(path: str | Path) -> str:
    """Registry key for a database path."""
    path = str(path)
    if is_sentinel(path):
        return path
    return str(Path(path).expanduser().absolute())


def connect_target(path: str | Path, mode: int) -> tuple[str, bool]:
    """Return (database, uri) arguments for sqlite3.connect.

    Sentinel names are passed verbatim; regular paths become `file:` URIs
    carrying the access mode.
    """
    access = uri_mode(mode)
    path = str(path)
    if is_sentinel(path):
        return path, False
    posix = Path(path).expanduser().absolute().as_posix()
    return f"file:{quote(posix, safe='/:')}?mode={access}", True
