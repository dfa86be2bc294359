"""Write-through response cache keyed by feature, repository, target and version.

The key is a pure function of its inputs; bumping the version tag invalidates
every earlier answer at once. Expired rows are treated as absent and deleted
when read.
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from repolens.db.models import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_VERSION = "v1"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(feature: str, repository_id: str, target: str = "", version: str = DEFAULT_VERSION) -> str:
    """SHA-256 hex of ``feature:repository_id:target:version``."""
    return hashlib.sha256(f"{feature}:{repository_id}:{target}:{version}".encode("utf-8")).hexdigest()


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")


class ResponseCache:
    """Cache entries stored in the ``cache_entries`` table.

    Args:
        conn: Open connection with the schema initialised.
        ttl_seconds: Lifetime of a written entry.
        version: Version tag embedded in every key.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        version: str = DEFAULT_VERSION,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")
        self._conn = conn
        self.ttl_seconds = ttl_seconds
        self.version = version
        self._clock = clock

    def key(self, feature: str, repository_id: str, target: str = "") -> str:
        return cache_key(feature, repository_id, target, self.version)

    def get(self, feature: str, repository_id: str, target: str = "") -> str | None:
        """Return the live response for the triple, or ``None``."""
        key = self.key(feature, repository_id, target)
        row = self._conn.execute(
            "SELECT response, expires_at FROM cache_entries WHERE cache_key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        if row["expires_at"] <= _iso(self._clock()):
            self._conn.execute("DELETE FROM cache_entries WHERE cache_key = ?", (key,))
            self._conn.commit()
            logger.debug("Cache entry for %s on %s expired", feature, repository_id)
            return None
        return row["response"]

    def put(self, feature: str, repository_id: str, target: str, response: str) -> CacheEntry:
        """Insert or overwrite the entry for the triple (last writer wins)."""
        now = self._clock()
        entry = CacheEntry(
            cache_key=self.key(feature, repository_id, target),
            feature=feature,
            repository_id=repository_id,
            target=target,
            response=response,
            created_at=_iso(now),
            expires_at=_iso(now + timedelta(seconds=self.ttl_seconds)),
        )
        self._conn.execute(
            """
            INSERT INTO cache_entries
                (cache_key, feature, repository_id, target, response, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(cache_key) DO UPDATE SET
                feature = excluded.feature,
                repository_id = excluded.repository_id,
                target = excluded.target,
                response = excluded.response,
                created_at = excluded.created_at,
                expires_at = excluded.expires_at
            """,
            (
                entry.cache_key,
                entry.feature,
                entry.repository_id,
                entry.target,
                entry.response,
                entry.created_at,
                entry.expires_at,
            ),
        )
        self._conn.commit()
        return entry

    def purge_expired(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        cur = self._conn.execute(
            "DELETE FROM cache_entries WHERE expires_at <= ?", (_iso(self._clock()),)
        )
        self._conn.commit()
        return cur.rowcount

    def stats(self) -> tuple[int, int]:
        """``(live, expired)`` entry counts."""
        now = _iso(self._clock())
        row = self._conn.execute(
            """
            SELECT
                COALESCE(SUM(CASE WHEN expires_at > ? THEN 1 ELSE 0 END), 0) AS live,
                COALESCE(SUM(CASE WHEN expires_at <= ? THEN 1 ELSE 0 END), 0) AS expired
            FROM cache_entries
            """,
            (now, now),
        ).fetchone()
        return row["live"], row["expired"]
