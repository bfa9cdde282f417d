from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from datetime import datetime
from typing import List, Optional

from dealforge_lookup.address import lookup_address
from dealforge_lookup.freshness import utc_now
from dealforge_lookup.jobs import JobStore, run_refresh_job
from dealforge_lookup.normalize import normalize_key
from dealforge_lookup.orchestrator import LookupFailed, LookupResult, build_orchestrator
from dealforge_lookup.settings import DOMAINS, get_settings
from dealforge_lookup.sources.http import build_http_client


def _dumps(obj) -> str:
    return json.dumps(obj, sort_keys=True, default=str)


def _log_line(domain: str, key: str, res: Optional[LookupResult] = None, reason: str = "") -> str:
    if res is None:
        return _dumps({"domain": domain, "key": key, "status": "failed", "reason": reason})
    return _dumps(
        {
            "domain": domain,
            "key": key,
            "source": res.source,
            "degraded": res.degraded,
            "freshness": res.freshness.value,
            "from_cache": res.from_cache,
            "status": "degraded" if res.degraded else "ok",
        }
    )


def _parse_now(raw: Optional[str]) -> datetime:
    if not raw:
        return utc_now()
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"--now must be ISO8601, got {raw!r}")


def _split_keys(domain: str, raw: str) -> List[str]:
    sep = ";" if domain in ("parcel", "flood_zone") else ","
    return [normalize_key(domain, p) for p in str(raw).split(sep) if p.strip()]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dealforge_lookup",
        description="Cached lookups of parcels, fair market rents, geocodes and flood zones",
    )
    parser.add_argument("--db", default=None, help="SQLite cache path (default: LOOKUP_DB_PATH)")
    parser.add_argument("--now", default=None, help="Override current time (ISO8601)")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (DEBUG, INFO, etc.)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit one JSON log line per lookup",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_resolve = sub.add_parser("resolve", help="Resolve one key in one domain")
    p_resolve.add_argument("--domain", required=True, choices=DOMAINS)
    p_resolve.add_argument("--key", required=True, help="Address, ZIP code or lat,lon")
    p_resolve.add_argument(
        "--force",
        action="store_true",
        help="Fetch from the source even if the cached copy is fresh",
    )

    p_address = sub.add_parser("address", help="Geocode an address and gather parcel, rents and flood zone")
    p_address.add_argument("--address", required=True)

    p_refresh = sub.add_parser("refresh", help="Force-refresh cached keys as a tracked job")
    p_refresh.add_argument("--domain", required=True, choices=DOMAINS)
    which = p_refresh.add_mutually_exclusive_group(required=True)
    which.add_argument(
        "--keys",
        default=None,
        help="Keys to refresh, comma-separated (semicolon-separated for lat,lon points)",
    )
    which.add_argument("--stale", action="store_true", help="Refresh every cached key past its TTL")

    p_cached = sub.add_parser("cached", help="Read many keys from the cache without fetching")
    p_cached.add_argument("--domain", required=True, choices=DOMAINS)
    p_cached.add_argument(
        "--keys",
        required=True,
        help="Keys to read, comma-separated (semicolon-separated for lat,lon points)",
    )

    p_parcel = sub.add_parser("parcel-by-id", help="Find a cached parcel by property id")
    p_parcel.add_argument("--prop-id", required=True)
    p_parcel.add_argument("--county", default=None)

    sub.add_parser("stats", help="Print cached row counts per domain")
    sub.add_parser("domains", help="List configured lookup domains")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=str(args.log_level).upper())

    settings = get_settings()
    if args.db:
        settings = dataclasses.replace(settings, db_path=str(args.db))

    try:
        now = _parse_now(args.now)
    except ValueError as exc:
        print(_dumps({"error": str(exc)}))
        return 2

    with build_http_client(settings) as client:
        orchestrator = build_orchestrator(settings, client)

        if args.cmd == "domains":
            print(_dumps({"domains": orchestrator.domains()}))
            return 0

        if args.cmd == "stats":
            print(_dumps({"db": settings.db_path, "rows": orchestrator.store.stats()}))
            return 0

        if args.cmd == "resolve":
            try:
                key = normalize_key(args.domain, args.key)
            except ValueError as exc:
                print(_dumps({"error": str(exc), "domain": args.domain}))
                return 2
            try:
                res = orchestrator.resolve(args.domain, key, now, force_refresh=bool(args.force))
            except LookupFailed as exc:
                if args.log_json:
                    print(_log_line(args.domain, key, reason=exc.reason))
                print(_dumps({"error": str(exc), "domain": exc.domain, "key": exc.key, "reason": exc.reason}))
                return 1
            if args.log_json:
                print(_log_line(args.domain, key, res))
            print(_dumps(res.to_dict()))
            return 0

        if args.cmd == "address":
            try:
                out = lookup_address(orchestrator, args.address, now)
            except ValueError as exc:
                print(_dumps({"error": str(exc)}))
                return 2
            except LookupFailed as exc:
                if args.log_json:
                    print(_log_line(exc.domain, exc.key, reason=exc.reason))
                print(_dumps({"error": str(exc), "domain": exc.domain, "key": exc.key, "reason": exc.reason}))
                return 1
            if args.log_json:
                for domain in ("geocode", "parcel", "fmr", "flood_zone"):
                    if domain in out.errors:
                        print(_dumps({"domain": domain, "status": "failed", "reason": out.errors[domain]}))
                    elif domain in out.sources:
                        status = "degraded" if domain in out.degraded_domains else "ok"
                        print(_dumps({"domain": domain, "source": out.sources[domain], "status": status}))
            body = out.model_dump(mode="json")
            body["degraded"] = out.degraded
            print(_dumps(body))
            return 0

        if args.cmd == "cached":
            try:
                keys = _split_keys(args.domain, args.keys)
            except ValueError as exc:
                print(_dumps({"error": str(exc), "domain": args.domain}))
                return 2
            try:
                found = orchestrator.cached_many(args.domain, keys, now)
            except LookupFailed as exc:
                print(_dumps({"error": str(exc), "domain": exc.domain, "reason": exc.reason}))
                return 1
            print(
                _dumps(
                    {
                        "domain": args.domain,
                        "results": {k: r.to_dict() for k, r in found.items()},
                        "missing": [k for k in keys if k not in found],
                    }
                )
            )
            return 0

        if args.cmd == "parcel-by-id":
            res = orchestrator.cached_parcel(args.prop_id, args.county, now)
            if res is None:
                print(_dumps({"error": "parcel not cached", "prop_id": args.prop_id, "county": args.county}))
                return 1
            print(_dumps(res.to_dict()))
            return 0

        if args.cmd == "refresh":
            if args.stale:
                ttl = orchestrator.ttls[args.domain]
                keys = orchestrator.store.list_keys(args.domain, older_than=now - ttl)
            else:
                try:
                    keys = _split_keys(args.domain, args.keys)
                except ValueError as exc:
                    print(_dumps({"error": str(exc), "domain": args.domain}))
                    return 2
            job = run_refresh_job(JobStore(settings.db_path), orchestrator, args.domain, keys, now)
            print(_dumps(job.to_dict()))
            return 0 if job.status.value == "completed" else 1

    return 2


def _safe_main():
    try:
        code = main()
    except SystemExit:
        raise
    except Exception as exc:
        print(json.dumps({"error": str(exc)}))
        raise SystemExit(1)
    raise SystemExit(code)


if __name__ == "__main__":
    _safe_main()
