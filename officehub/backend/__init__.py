"""Remote data store: rows, live feed, object storage, identity."""

from officehub.backend import auth, feed, storage, tables

__all__ = ["auth", "feed", "storage", "tables"]
