import sqlite3
from typing import Any

Row = dict[str, Any]


def dict_factory(cursor: sqlite3.Cursor, row: tuple) -> Row:
    """sqlite3 row factory producing {column: value} in column order."""
    return {col[0]: value for col, value in zip(cursor.description, row)}
