#!/usr/bin/env python3
"""Cron entry point: trigger check-in dispatch on the API and exit non-zero on failure.
Usage: APP_URL=https://api.example.com CHECKINS_DISPATCH_TOKEN=... python scripts/dispatch_checkins.py [--dry-run] [--limit N]"""
import argparse
import json
import os
import sys

import httpx

APP_URL = os.environ.get("APP_URL", "http://localhost:8000").rstrip("/")
DISPATCH_TOKEN = os.environ.get("CHECKINS_DISPATCH_TOKEN", "")


def main() -> int:
    parser = argparse.ArgumentParser(description="Trigger check-in dispatch")
    parser.add_argument("--dry-run", action="store_true", help="render and report without sending")
    parser.add_argument("--limit", type=int, default=None, help="max events this run (server clamps)")
    args = parser.parse_args()

    if not DISPATCH_TOKEN:
        print("Set CHECKINS_DISPATCH_TOKEN in environment", file=sys.stderr)
        return 1

    params = {"dryRun": "1" if args.dry_run else "0"}
    if args.limit is not None:
        params["limit"] = str(args.limit)
    try:
        r = httpx.post(
            f"{APP_URL}/api/v1/checkins/dispatch",
            params=params,
            headers={"X-Dispatch-Token": DISPATCH_TOKEN},
            timeout=120.0,
        )
    except httpx.HTTPError as e:
        print(f"Dispatch request failed: {e}", file=sys.stderr)
        return 1
    if r.status_code // 100 != 2:
        print(f"Dispatch failed: HTTP {r.status_code}: {r.text[:500]}", file=sys.stderr)
        return 1
    summary = r.json()
    print(json.dumps({k: summary.get(k) for k in ("selected", "sent", "failed", "skipped", "deferred", "dry_run")}))
    return 0


if __name__ == "__main__":
    sys.exit(main())
