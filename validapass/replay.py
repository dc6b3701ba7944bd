#!/usr/bin/env python3
"""
ValidaPass webhook replay (async)

Re-delivers stored raw webhook events to a running endpoint:
  1) read webhook_raw_events (oldest first, optional provider filter)
  2) POST each payload to /webhooks/sales with that provider's token
  3) tally the "status" the endpoint answered with

Processing is idempotent, so already-provisioned sales come back as
duplicates and send no email.

Usage:
  python -m validapass.replay --db sqlite:///./validapass.sqlite \
                              --base http://localhost:8000 --limit 500

  python -m validapass.replay --provider lastlink --concurrency 4 --dry-run
"""

import argparse
import asyncio
import os
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .infra.sql import make_async_engine
from .model.webhooklog import WebhookLogStore
from .providers import PROVIDERS


@dataclass
class Replayed:
    event_id: str
    provider: str
    status: str  # processed/skipped/skipped_unpaid/error/HTTP_xxx/ERROR
    duplicate: Optional[bool] = None
    err: Optional[str] = None


@dataclass
class Stats:
    results: List[Replayed] = field(default_factory=list)

    def add(self, r: Replayed):
        self.results.append(r)

    def summary(self) -> Dict[str, int]:
        c = Counter(r.status for r in self.results)
        c["duplicate"] = sum(1 for r in self.results if r.duplicate)
        c["total"] = len(self.results)
        return dict(c)

    def print(self, elapsed_s: float):
        s = self.summary()
        print("\n=== Replay Summary ===")
        print(f"Total: {s.pop('total')}   "
              f"Duplicates: {s.pop('duplicate')}")
        for status, n in sorted(s.items()):
            print(f"  {status:<16} {n}")
        errors = [r for r in self.results if r.err]
        for r in errors[:10]:
            print(f"  ! {r.event_id} ({r.provider}): {r.err}")
        if len(errors) > 10:
            print(f"  ! ... {len(errors) - 10} more")
        print(f"Wall time: {elapsed_s:.3f}s")


def provider_tokens() -> Dict[str, str]:
    return {
        name: os.environ.get(p.token_env, "")
        for name, p in PROVIDERS.items()
    }


async def load_events(
    database_url: str, limit: int, provider: Optional[str]
) -> List[Dict[str, Any]]:
    engine, SessionAsync, gated = make_async_engine(database_url)
    try:
        async with SessionAsync() as db:
            rows = await WebhookLogStore(db=db, gated=gated).list_raw_events(
                limit=limit, provider=provider
            )
            return [
                {"id": r.id, "provider": r.provider, "payload": r.payload}
                for r in rows
            ]
    finally:
        await engine.dispose()


async def replay_one(
    client: httpx.AsyncClient, base: str, event: Dict[str, Any], token: str
) -> Replayed:
    r = Replayed(event_id=event["id"], provider=event["provider"],
                 status="ERROR")
    payload = event["payload"]
    if isinstance(payload, dict) and "_raw" in payload:
        r.status = "UNPARSEABLE"
        return r
    try:
        resp = await client.post(
            f"{base}/webhooks/sales",
            json=payload,
            headers={"authorization": f"Bearer {token}"},
            timeout=30.0,
        )
    except httpx.HTTPError as e:
        r.err = str(e)
        return r
    if resp.status_code != 200:
        r.status = f"HTTP_{resp.status_code}"
        r.err = resp.text[:200]
        return r
    j = resp.json()
    r.status = j.get("status", "unknown")
    r.duplicate = j.get("duplicate")
    return r


async def run_replay(
    events: List[Dict[str, Any]],
    base: str,
    concurrency: int,
    tokens: Dict[str, str],
) -> Stats:
    sem = asyncio.Semaphore(concurrency)
    stats = Stats()

    limits = httpx.Limits(
        max_keepalive_connections=concurrency, max_connections=concurrency
    )
    async with httpx.AsyncClient(
        limits=limits, headers={"User-Agent": "ValidaPassReplay/1.0"}
    ) as client:

        async def worker(event: Dict[str, Any]):
            token = tokens.get(event["provider"], "")
            if not token:
                stats.add(Replayed(event_id=event["id"],
                                   provider=event["provider"],
                                   status="NO_TOKEN"))
                return
            async with sem:
                stats.add(await replay_one(client, base, event, token))

        await asyncio.gather(*(worker(e) for e in events))

    return stats


def main():
    ap = argparse.ArgumentParser(description="ValidaPass webhook replay")
    ap.add_argument("--db", default=os.environ.get("DATABASE_URL"),
                    help="Database URL (default: $DATABASE_URL)")
    ap.add_argument("--base", default="http://localhost:8000",
                    help="Base URL of the app")
    ap.add_argument("--provider", choices=sorted(PROVIDERS),
                    help="Only replay events of this provider")
    ap.add_argument("--limit", type=int, default=100,
                    help="Max events to replay (oldest first)")
    ap.add_argument("--concurrency", type=int, default=4,
                    help="Concurrent deliveries")
    ap.add_argument("--dry-run", action="store_true",
                    help="List what would be replayed and exit")
    args = ap.parse_args()

    if not args.db:
        print("NEED --db or DATABASE_URL!")
        raise SystemExit(1)

    events = asyncio.run(load_events(args.db, args.limit, args.provider))
    print(f"{len(events)} stored events selected")
    if args.dry_run:
        for e in events:
            print(f"  {e['id']}  {e['provider']}")
        return

    t_start = time.perf_counter()
    stats = asyncio.run(run_replay(
        events=events,
        base=args.base.rstrip("/"),
        concurrency=max(1, args.concurrency),
        tokens=provider_tokens(),
    ))
    stats.print(time.perf_counter() - t_start)


if __name__ == "__main__":
    main()
