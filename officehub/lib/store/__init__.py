"""Database connection management and utilities."""

from officehub.lib.store.connection import (
    Row,
    _reset_for_testing,
    close_all,
    database_exists,
    ensure,
    from_row,
)
from officehub.lib.store.sqlite import connect

__all__ = [
    "ensure",
    "from_row",
    "Row",
    "database_exists",
    "_reset_for_testing",
    "close_all",
    "connect",
]
