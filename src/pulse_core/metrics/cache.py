"""Cache store for per-day source metrics keyed by (source_tag, date).

Backends:
- InMemoryCacheStore: tests and single-shot scripts
- SQLiteCacheStore: default persistent table (WAL mode)
- RedisCacheStore: shared cache for multi-process deployments

Entries are never evicted; upserts are idempotent and last-writer-wins.
"""
import json
import logging
import sqlite3
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Union

from redis.asyncio import Redis

from .schema import CacheEntry, DailyMetric


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_fresh(entry: CacheEntry, ttl: timedelta, now: datetime) -> bool:
    return now - entry.updated_at < ttl


def _encode_metric(metric: Optional[DailyMetric]) -> Optional[str]:
    if metric is None:
        return None
    return json.dumps(metric.counters, sort_keys=True, separators=(",", ":"))


def _decode_metric(
    source: Optional[str], metric_date: date, counters_json: Optional[str]
) -> Optional[DailyMetric]:
    if counters_json is None or source is None:
        return None
    return DailyMetric(source=source, date=metric_date, counters=json.loads(counters_json))


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CacheStore:
    """Key-value store interface for cached daily metrics."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or utc_now

    async def get(self, source_tag: str, start: date, end: date) -> list[CacheEntry]:
        """Return cached entries for start..end inclusive, ascending by date."""
        raise NotImplementedError

    async def put(
        self, source_tag: str, metric_date: date, metric: Optional[DailyMetric]
    ) -> None:
        """Upsert one day. metric=None records a fetched day with no activity."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InMemoryCacheStore(CacheStore):
    """Dict-backed store."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        super().__init__(clock)
        self._entries: dict[tuple[str, date], CacheEntry] = {}

    async def get(self, source_tag: str, start: date, end: date) -> list[CacheEntry]:
        entries = [
            entry
            for (tag, day), entry in self._entries.items()
            if tag == source_tag and start <= day <= end
        ]
        return sorted(entries, key=lambda e: e.date)

    async def put(
        self, source_tag: str, metric_date: date, metric: Optional[DailyMetric]
    ) -> None:
        self._entries[(source_tag, metric_date)] = CacheEntry(
            source_tag=source_tag,
            date=metric_date,
            metric=metric,
            updated_at=self.clock(),
        )


def init_cache_database(conn: sqlite3.Connection) -> None:
    """Create the metric_cache table if needed.

    Args:
        conn: SQLite connection
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    cursor = conn.execute("SELECT MAX(version) FROM schema_version")
    current_version = cursor.fetchone()[0] or 0

    if current_version >= SCHEMA_VERSION:
        logger.debug("Cache schema up to date (version %s)", current_version)
        return

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS metric_cache (
            source_tag TEXT NOT NULL,
            metric_date TEXT NOT NULL,
            source TEXT,
            counters_json TEXT,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (source_tag, metric_date)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_cache_updated
        ON metric_cache(source_tag, updated_at)
        """
    )

    conn.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    conn.commit()
    logger.info("Cache schema initialized (version %s)", SCHEMA_VERSION)


class SQLiteCacheStore(CacheStore):
    """Persistent cache table in a local SQLite database."""

    def __init__(
        self,
        db_path: Union[str, Path, sqlite3.Connection] = "data/pulse_cache.db",
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(clock)

        if isinstance(db_path, sqlite3.Connection):
            self.conn = db_path
        else:
            if str(db_path) != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
            if str(db_path) != ":memory:":
                self.conn.execute("PRAGMA journal_mode=WAL")

        init_cache_database(self.conn)

    async def get(self, source_tag: str, start: date, end: date) -> list[CacheEntry]:
        cursor = self.conn.execute(
            """
            SELECT metric_date, source, counters_json, updated_at
            FROM metric_cache
            WHERE source_tag=? AND metric_date BETWEEN ? AND ?
            ORDER BY metric_date
            """,
            (source_tag, start.isoformat(), end.isoformat()),
        )

        entries = []
        for metric_date, source, counters_json, updated_at in cursor.fetchall():
            day = date.fromisoformat(metric_date)
            entries.append(
                CacheEntry(
                    source_tag=source_tag,
                    date=day,
                    metric=_decode_metric(source, day, counters_json),
                    updated_at=_parse_timestamp(updated_at),
                )
            )
        return entries

    async def put(
        self, source_tag: str, metric_date: date, metric: Optional[DailyMetric]
    ) -> None:
        try:
            self.conn.execute(
                """
                INSERT INTO metric_cache (
                    source_tag, metric_date, source, counters_json, updated_at
                )
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(source_tag, metric_date)
                DO UPDATE SET
                    source=excluded.source,
                    counters_json=excluded.counters_json,
                    updated_at=excluded.updated_at
                """,
                (
                    source_tag,
                    metric_date.isoformat(),
                    metric.source if metric else None,
                    _encode_metric(metric),
                    self.clock().isoformat(),
                ),
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            logger.error("SQLite cache write failed for %s: %s", source_tag, exc)
            raise

    async def close(self) -> None:
        self.conn.close()


class RedisCacheStore(CacheStore):
    """One Redis hash per source tag, field = ISO date."""

    KEY_PREFIX = "pulse:cache:"

    def __init__(self, redis: Redis, clock: Optional[Clock] = None) -> None:
        super().__init__(clock)
        self.redis = redis

    def _key(self, source_tag: str) -> str:
        return f"{self.KEY_PREFIX}{source_tag}"

    async def get(self, source_tag: str, start: date, end: date) -> list[CacheEntry]:
        raw = await self.redis.hgetall(self._key(source_tag))

        entries = []
        for field, value in raw.items():
            if isinstance(field, bytes):
                field = field.decode("utf-8")
            day = date.fromisoformat(field)
            if not start <= day <= end:
                continue

            payload = json.loads(value)
            counters = payload.get("counters")
            entries.append(
                CacheEntry(
                    source_tag=source_tag,
                    date=day,
                    metric=(
                        DailyMetric(source=payload["source"], date=day, counters=counters)
                        if counters is not None
                        else None
                    ),
                    updated_at=_parse_timestamp(payload["updated_at"]),
                )
            )
        return sorted(entries, key=lambda e: e.date)

    async def put(
        self, source_tag: str, metric_date: date, metric: Optional[DailyMetric]
    ) -> None:
        payload = {
            "source": metric.source if metric else None,
            "counters": metric.counters if metric else None,
            "updated_at": self.clock().isoformat(),
        }
        await self.redis.hset(
            self._key(source_tag),
            metric_date.isoformat(),
            json.dumps(payload, sort_keys=True, separators=(",", ":")),
        )

    async def close(self) -> None:
        await self.redis.aclose()
