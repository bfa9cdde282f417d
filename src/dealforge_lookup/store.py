from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing, contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from dealforge_lookup.freshness import as_utc


logger = logging.getLogger("dfl.store")


class StorageUnavailable(Exception):
    """The cache table could not be read or written."""


@dataclass(frozen=True)
class CachedLookup:
    domain: str
    key: str
    payload: Dict[str, Any]
    source: str
    fetched_at: datetime

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "key": self.key,
            "payload": self.payload,
            "source": self.source,
            "fetched_at": to_iso(self.fetched_at),
        }


def to_iso(value: datetime) -> str:
    # Fixed width so that stored timestamps compare correctly as text.
    return as_utc(value).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


_SCHEMA = """
CREATE TABLE IF NOT EXISTS lookup_cache (
    domain TEXT NOT NULL,
    key TEXT NOT NULL,
    payload TEXT NOT NULL,
    source TEXT NOT NULL,
    fetched_at TEXT NOT NULL,
    PRIMARY KEY (domain, key)
);
CREATE INDEX IF NOT EXISTS idx_lookup_cache_fetched_at ON lookup_cache(domain, fetched_at);
"""

_UPSERT = """
INSERT INTO lookup_cache (domain, key, payload, source, fetched_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(domain, key) DO UPDATE SET
    payload = excluded.payload,
    source = excluded.source,
    fetched_at = excluded.fetched_at
WHERE excluded.fetched_at >= lookup_cache.fetched_at
"""

_COLUMNS = "domain, key, payload, source, fetched_at"
_BATCH = 500


def _decode(row: sqlite3.Row) -> CachedLookup:
    try:
        payload = json.loads(row["payload"])
        fetched_at = from_iso(row["fetched_at"])
    except ValueError as exc:
        raise StorageUnavailable(f"corrupt cache row for {row['domain']}:{row['key']}: {exc}") from exc
    return CachedLookup(
        domain=row["domain"],
        key=row["key"],
        payload=payload,
        source=row["source"],
        fetched_at=fetched_at,
    )


class LookupCacheStore:
    """SQLite persistence for cached external lookups.

    Every call opens its own connection, so a store can be shared between
    request threads. Each read and each write is a single statement.
    """

    def __init__(self, path: str, timeout_s: float = 5.0) -> None:
        self.path = Path(path)
        self.timeout_s = float(timeout_s)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.executescript(_SCHEMA)
        except (OSError, sqlite3.Error) as exc:
            raise StorageUnavailable(f"cannot open cache store at {self.path}: {exc}") from exc

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(str(self.path), timeout=self.timeout_s)) as conn:
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn

    def read(self, domain: str, key: str) -> Optional[CachedLookup]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM lookup_cache WHERE domain = ? AND key = ?",
                    (domain, key),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"read failed for {domain}:{key}: {exc}") from exc
        if row is None:
            return None
        return _decode(row)

    def read_many(self, domain: str, keys: Iterable[str]) -> Dict[str, CachedLookup]:
        """Rows for whichever of ``keys`` are cached, keyed by key. Missing keys are left out."""

        wanted = sorted({k for k in keys if k})
        found: Dict[str, CachedLookup] = {}
        # Chunked to stay under SQLite's bound-parameter limit.
        for start in range(0, len(wanted), _BATCH):
            chunk = wanted[start : start + _BATCH]
            marks = ", ".join("?" for _ in chunk)
            try:
                with self._connect() as conn:
                    rows = conn.execute(
                        f"SELECT {_COLUMNS} FROM lookup_cache WHERE domain = ? AND key IN ({marks})",
                        (domain, *chunk),
                    ).fetchall()
            except sqlite3.Error as exc:
                raise StorageUnavailable(f"batch read failed for {domain}: {exc}") from exc
            for row in rows:
                found[row["key"]] = _decode(row)
        return found

    def find_parcel(self, prop_id: str, county: Optional[str] = None) -> Optional[CachedLookup]:
        """Newest cached parcel with this property id, optionally within one county."""

        sql = (
            f"SELECT {_COLUMNS} FROM lookup_cache "
            "WHERE domain = 'parcel' AND json_extract(payload, '$.prop_id') = ?"
        )
        params: list = [str(prop_id).strip()]
        if county:
            sql += " AND UPPER(json_extract(payload, '$.county')) = ?"
            params.append(county.strip().upper())
        sql += " ORDER BY fetched_at DESC LIMIT 1"
        try:
            with self._connect() as conn:
                row = conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"parcel search failed for {prop_id}: {exc}") from exc
        return _decode(row) if row is not None else None

    def write(
        self,
        domain: str,
        key: str,
        payload: Dict[str, Any],
        source: str,
        now: datetime,
    ) -> None:
        """Upsert one row. An older ``now`` than the stored one is a no-op."""

        body = json.dumps(payload, sort_keys=True, default=str)
        try:
            with self._connect() as conn:
                conn.execute(_UPSERT, (domain, key, body, source, to_iso(now)))
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"write failed for {domain}:{key}: {exc}") from exc
        logger.debug("cached %s:%s from %s", domain, key, source)

    def count(self, domain: Optional[str] = None) -> int:
        sql = "SELECT COUNT(*) FROM lookup_cache"
        params: tuple = ()
        if domain:
            sql += " WHERE domain = ?"
            params = (domain,)
        try:
            with self._connect() as conn:
                return int(conn.execute(sql, params).fetchone()[0])
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"count failed: {exc}") from exc

    def list_keys(self, domain: str, *, older_than: Optional[datetime] = None) -> List[str]:
        sql = "SELECT key FROM lookup_cache WHERE domain = ?"
        params: list = [domain]
        if older_than is not None:
            sql += " AND fetched_at < ?"
            params.append(to_iso(older_than))
        sql += " ORDER BY key"
        try:
            with self._connect() as conn:
                return [r["key"] for r in conn.execute(sql, params).fetchall()]
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"list failed for {domain}: {exc}") from exc

    def stats(self) -> Dict[str, int]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT domain, COUNT(*) AS n FROM lookup_cache GROUP BY domain ORDER BY domain"
                ).fetchall()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"stats failed: {exc}") from exc
        return {r["domain"]: int(r["n"]) for r in rows}
