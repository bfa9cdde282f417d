from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

import httpx

from dealforge_lookup.freshness import Freshness, classify, utc_now
from dealforge_lookup.settings import LookupSettings
from dealforge_lookup.sources import build_sources
from dealforge_lookup.sources.base import AdapterError, LookupSource
from dealforge_lookup.store import CachedLookup, LookupCacheStore, StorageUnavailable, to_iso


logger = logging.getLogger("dfl.lookup")


class LookupFailed(Exception):
    """No payload could be produced for a lookup."""

    def __init__(self, domain: str, key: str, reason: str) -> None:
        self.domain = domain
        self.key = key
        self.reason = reason
        super().__init__(f"lookup failed for {domain}:{key}: {reason}")


class UnknownDomain(LookupFailed):
    pass


@dataclass(frozen=True)
class LookupResult:
    domain: str
    key: str
    payload: Dict[str, Any]
    source: str
    degraded: bool
    fetched_at: datetime
    freshness: Freshness
    from_cache: bool

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "key": self.key,
            "payload": self.payload,
            "source": self.source,
            "degraded": self.degraded,
            "fetched_at": to_iso(self.fetched_at),
            "freshness": self.freshness.value,
            "from_cache": self.from_cache,
        }


class SingleFlight:
    """Lets concurrent callers for the same key share one call."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inflight: Dict[Tuple[str, str], Future] = {}

    def do(self, key: Tuple[str, str], fn: Callable[[], Any]) -> Any:
        with self._lock:
            fut = self._inflight.get(key)
            leader = fut is None
            if leader:
                fut = Future()
                self._inflight[key] = fut
        if not leader:
            return fut.result()
        try:
            result = fn()
        except BaseException as exc:
            fut.set_exception(exc)
            raise
        else:
            fut.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight.pop(key, None)


class LookupOrchestrator:
    """Cache-first resolution of external lookups.

    Fresh rows are served without touching the source. Stale or missing rows
    trigger one fetch; a successful fetch is written back, a failed one falls
    back to the stale row (marked degraded) when there is one.
    """

    def __init__(
        self,
        store: LookupCacheStore,
        sources: Mapping[str, LookupSource],
        ttls: Mapping[str, timedelta],
        *,
        single_flight: bool = False,
    ) -> None:
        self.store = store
        self.sources = dict(sources)
        self.ttls = dict(ttls)
        self._flight = SingleFlight() if single_flight else None

    def domains(self) -> list[str]:
        return sorted(self.sources.keys())

    def resolve(
        self,
        domain: str,
        key: str,
        now: Optional[datetime] = None,
        *,
        force_refresh: bool = False,
    ) -> LookupResult:
        source = self.sources.get(domain)
        ttl = self.ttls.get(domain)
        if source is None or ttl is None:
            raise UnknownDomain(domain, key, "unknown domain")
        now = now or utc_now()

        cached = self._read(domain, key)
        freshness = classify(cached.fetched_at if cached else None, ttl, now)
        if freshness is Freshness.FRESH and not force_refresh:
            logger.debug("cache hit %s:%s", domain, key)
            return _result(cached, freshness, degraded=False)

        if self._flight is None:
            return self._refresh(source, domain, key, now, cached, freshness)
        return self._flight.do(
            (domain, key),
            lambda: self._refresh(source, domain, key, now, cached, freshness),
        )

    def cached_many(
        self, domain: str, keys: Iterable[str], now: Optional[datetime] = None
    ) -> Dict[str, LookupResult]:
        """Cached results for many keys at once, without fetching anything.

        Keys with no row are left out; stale rows are returned with their
        freshness so the caller can decide what to refresh.
        """

        ttl = self.ttls.get(domain)
        if domain not in self.sources or ttl is None:
            raise UnknownDomain(domain, "*", "unknown domain")
        now = now or utc_now()
        try:
            rows = self.store.read_many(domain, keys)
        except StorageUnavailable as exc:
            logger.warning("batch cache read failed for %s, treating as absent: %s", domain, exc)
            return {}
        return {
            key: _result(row, classify(row.fetched_at, ttl, now), degraded=False)
            for key, row in rows.items()
        }

    def cached_parcel(
        self, prop_id: str, county: Optional[str] = None, now: Optional[datetime] = None
    ) -> Optional[LookupResult]:
        """Look up a cached parcel by property id instead of by point."""

        ttl = self.ttls.get("parcel")
        if ttl is None:
            raise UnknownDomain("parcel", prop_id, "unknown domain")
        now = now or utc_now()
        try:
            row = self.store.find_parcel(prop_id, county)
        except StorageUnavailable as exc:
            logger.warning("parcel search failed for %s, treating as absent: %s", prop_id, exc)
            return None
        if row is None:
            return None
        return _result(row, classify(row.fetched_at, ttl, now), degraded=False)

    def _read(self, domain: str, key: str) -> Optional[CachedLookup]:
        try:
            return self.store.read(domain, key)
        except StorageUnavailable as exc:
            logger.warning("cache read failed, treating %s:%s as absent: %s", domain, key, exc)
            return None

    def _refresh(
        self,
        source: LookupSource,
        domain: str,
        key: str,
        now: datetime,
        cached: Optional[CachedLookup],
        freshness: Freshness,
    ) -> LookupResult:
        try:
            payload = source.fetch(key)
        except AdapterError as exc:
            if cached is None:
                logger.warning("fetch failed for %s:%s with nothing cached: %s", domain, key, exc)
                raise LookupFailed(domain, key, exc.reason) from exc
            logger.warning("fetch failed for %s:%s, serving stale copy: %s", domain, key, exc)
            return _result(cached, freshness, degraded=True)

        logger.info("fetched %s:%s from %s", domain, key, source.source_name)
        try:
            self.store.write(domain, key, payload, source.source_name, now)
        except StorageUnavailable as exc:
            logger.warning("cache write dropped for %s:%s: %s", domain, key, exc)
        return LookupResult(
            domain=domain,
            key=key,
            payload=payload,
            source=source.source_name,
            degraded=False,
            fetched_at=now,
            freshness=freshness,
            from_cache=False,
        )


def _result(cached: CachedLookup, freshness: Freshness, *, degraded: bool) -> LookupResult:
    return LookupResult(
        domain=cached.domain,
        key=cached.key,
        payload=cached.payload,
        source=cached.source,
        degraded=degraded,
        fetched_at=cached.fetched_at,
        freshness=freshness,
        from_cache=True,
    )


def build_orchestrator(settings: LookupSettings, client: httpx.Client) -> LookupOrchestrator:
    """Wire store, sources and TTLs from settings. The caller owns ``client``."""

    return LookupOrchestrator(
        LookupCacheStore(settings.db_path),
        build_sources(settings, client),
        settings.ttls(),
        single_flight=settings.single_flight,
    )
