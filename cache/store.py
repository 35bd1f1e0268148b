"""
cache/store.py -- SQLite-backed cache of rendered page state.

Server-rendered views that depend on the session (the current user's profile
page, the admin layout) are cached per (path, key) with a TTL. Auth actions
invalidate them whenever the data behind them changes:

  login / logout      -> invalidate("/", layout=True)    everything
  profile update      -> invalidate("/admin/profile")    that page only
  role change         -> invalidate("/admin", layout=True)

Usage:
    views = ViewCache()
    data = views.get("/admin/profile", user_id)      # dict or None
    views.set("/admin/profile", user_id, data)
    views.invalidate("/admin/profile")
    views.purge_expired()                           # call periodically
"""

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger("quillpress.cache")

_DEFAULT_DB = Path(__file__).resolve().parent.parent / "quillpress_views.db"
_DEFAULT_TTL = 300  # 5 minutes

_DDL = """
CREATE TABLE IF NOT EXISTS view_cache (
    path        TEXT NOT NULL,
    key         TEXT NOT NULL,
    data        TEXT NOT NULL,
    cached_at   REAL NOT NULL,
    PRIMARY KEY (path, key)
);
"""


def _normalize_path(path: str) -> str:
    if path != "/":
        path = path.rstrip("/")
    return path if path.startswith("/") else f"/{path}"


class ViewCache:
    def __init__(self, db_path: Union[Path, str] = _DEFAULT_DB, ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        if str(db_path) != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, path: str, key: str) -> Optional[dict]:
        """Return the cached view for (path, key) if present and not expired."""
        path = _normalize_path(path)
        with self._lock:
            row = self._conn.execute(
                "SELECT data, cached_at FROM view_cache WHERE path = ? AND key = ?",
                (path, key),
            ).fetchone()
        if row is None:
            return None
        data, cached_at = row
        if time.time() - cached_at > self.ttl:
            self._delete(path, key)
            return None
        return json.loads(data)

    def set(self, path: str, key: str, data: dict) -> None:
        """Store a view, replacing any existing entry."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO view_cache (path, key, data, cached_at) VALUES (?, ?, ?, ?)",
                (_normalize_path(path), key, json.dumps(data), time.time()),
            )
            self._conn.commit()

    def invalidate(self, path: str, layout: bool = False) -> int:
        """Drop cached views for path. Returns number of rows removed.

        layout=False drops only views stored under exactly this path.
        layout=True also drops every path nested beneath it; "/" drops all.
        """
        path = _normalize_path(path)
        with self._lock:
            if layout and path == "/":
                cursor = self._conn.execute("DELETE FROM view_cache")
            elif layout:
                cursor = self._conn.execute(
                    "DELETE FROM view_cache WHERE path = ? OR substr(path, 1, ?) = ?",
                    (path, len(path) + 1, f"{path}/"),
                )
            else:
                cursor = self._conn.execute("DELETE FROM view_cache WHERE path = ?", (path,))
            self._conn.commit()
        logger.debug("Invalidated %d cached view(s) under %s (layout=%s)", cursor.rowcount, path, layout)
        return cursor.rowcount

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of rows removed."""
        cutoff = time.time() - self.ttl
        with self._lock:
            cursor = self._conn.execute("DELETE FROM view_cache WHERE cached_at < ?", (cutoff,))
            self._conn.commit()
        return cursor.rowcount

    def _delete(self, path: str, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM view_cache WHERE path = ? AND key = ?", (path, key))
            self._conn.commit()

    def close(self) -> None:
        self._conn.close()
