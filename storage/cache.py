"""
Optional SQLite cache of GitHub GET responses.

Entries are keyed by a namespaced resource key (``github:repo:owner/name``) and stamped
with their fetch time; each caller decides how old an entry it is willing to reuse.
"""

import json
import time
import sqlite3
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from .retry import perform_request_with_retries, configure_retry

logger = logging.getLogger(__name__)

# noinspection SqlResolve
SCHEMA = """
CREATE TABLE IF NOT EXISTS http_cache (
    key TEXT PRIMARY KEY,
    response TEXT,
    status INTEGER,
    timestamp REAL
);
"""


def _decode(payload: Optional[str]) -> Any:
    try:
        return json.loads(payload)
    except (TypeError, ValueError):
        return payload


class Cache:
    """Thread-safe response cache; path=None keeps it in memory.

    ttl_seconds drops entries older than that on read and write. max_entries keeps only
    the newest entries after each write.
    """

    def __init__(self, path: Optional[str] = None, max_entries: Optional[int] = None, ttl_seconds: Optional[float] = None):
        self.path = path or ':memory:'
        self.max_entries = int(max_entries) if max_entries is not None else None
        self.ttl_seconds = float(ttl_seconds) if ttl_seconds is not None else None
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        with self._lock:
            self.conn.executescript(SCHEMA)

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            cur = self.conn.cursor()
            try:
                yield cur
                self.conn.commit()
            finally:
                cur.close()

    def close(self):
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _expired(self, timestamp: Optional[float]) -> bool:
        return self.ttl_seconds is not None and timestamp is not None and time.time() - float(timestamp) > self.ttl_seconds

    # noinspection SqlResolve
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute('SELECT response, status, timestamp FROM http_cache WHERE key = ?', (key,))
            row = cur.fetchone()
        if row is None:
            return None
        response, status, timestamp = row
        if self._expired(timestamp):
            self.delete_key(key)
            return None
        return {'response': _decode(response), 'status': status, 'timestamp': timestamp}

    def fresh(self, key: str, max_age: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Return the entry for key if it is at most max_age seconds old (any age when max_age is None)."""
        entry = self.get(key)
        if entry is None:
            return None
        if max_age is not None and time.time() - float(entry['timestamp'] or 0) > float(max_age):
            return None
        return entry

    # noinspection SqlResolve
    def set(self, key: str, response: Any, status: int = 200):
        try:
            payload = json.dumps(response)
        except (TypeError, ValueError):
            payload = json.dumps(str(response))
        with self._cursor() as cur:
            cur.execute(
                'REPLACE INTO http_cache(key, response, status, timestamp) VALUES (?, ?, ?, ?)',
                (key, payload, status, time.time()),
            )
            self._prune(cur)

    # noinspection SqlResolve
    def _prune(self, cur: sqlite3.Cursor):
        if self.ttl_seconds is not None:
            cur.execute('DELETE FROM http_cache WHERE timestamp < ?', (time.time() - self.ttl_seconds,))
        if self.max_entries is not None:
            cur.execute(
                'DELETE FROM http_cache WHERE key NOT IN (SELECT key FROM http_cache ORDER BY timestamp DESC LIMIT ?)',
                (self.max_entries,),
            )

    # noinspection SqlResolve
    def delete_key(self, key: str) -> int:
        """Delete one key; returns the number of rows removed."""
        with self._cursor() as cur:
            cur.execute('DELETE FROM http_cache WHERE key = ?', (key,))
            return cur.rowcount

    # noinspection SqlWithoutWhere
    def clear(self):
        with self._cursor() as cur:
            cur.execute('DELETE FROM http_cache')

    # noinspection SqlResolve
    def stats(self) -> Dict[str, Any]:
        """Entry count and the oldest/newest fetch times."""
        with self._cursor() as cur:
            cur.execute('SELECT COUNT(1), MIN(timestamp), MAX(timestamp) FROM http_cache')
            count, oldest, newest = cur.fetchone()
        return {'path': self.path, 'count': int(count or 0), 'oldest': oldest, 'newest': newest}

    # noinspection SqlResolve
    def list_keys(self, limit: int = 1000) -> List[Dict[str, Any]]:
        """Keys with status and fetch time, newest first."""
        with self._cursor() as cur:
            cur.execute('SELECT key, status, timestamp FROM http_cache ORDER BY timestamp DESC LIMIT ?', (limit,))
            rows = cur.fetchall()
        return [{'key': k, 'status': status, 'timestamp': ts} for k, status, ts in rows]


def rate_limited_get(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    cache: Optional[Cache] = None,
    cache_key: Optional[str] = None,
    min_wait: Optional[float] = None,
    max_age: Optional[float] = None,
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """GET url, reusing a cached answer younger than max_age, otherwise fetching under the retry policy.

    Returns {'response', 'status', 'timestamp'}.
    """
    if cache is not None and cache_key:
        cached = cache.fresh(cache_key, max_age)
        if cached is not None:
            logger.debug("Cache hit for %s", cache_key)
            return cached

    return perform_request_with_retries(
        url,
        headers,
        params,
        cache=cache,
        cache_key=cache_key,
        min_wait=min_wait,
        max_retries=max_retries,
        backoff_base=backoff_base,
        backoff_jitter=backoff_jitter,
        max_backoff=max_backoff,
        timeout=timeout,
    )


__all__ = ["Cache", "rate_limited_get", "configure_retry"]
