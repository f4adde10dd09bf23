#!/usr/bin/env python3
"""Drive the embedding backfill endpoint until every receipt is embedded."""

from __future__ import annotations

import argparse
import os
import sys
import time
from typing import Any

import httpx


def _env(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--base-url", default=_env("RECEIPTSEARCH_URL", "http://localhost:8000"))
    parser.add_argument("--api-key", default=_env("RECEIPTSEARCH_API_KEY"))
    parser.add_argument("--batch-size", type=int, default=5)
    parser.add_argument("--user-id", default=None)
    parser.add_argument("--max-batches", type=int, default=1000)
    parser.add_argument("--pause", type=float, default=0.5, help="Seconds between batches")
    return parser.parse_args(argv)


def run_batch(client: httpx.Client, batch_size: int, user_id: str | None) -> dict[str, Any]:
    payload: dict[str, Any] = {"batchSize": batch_size}
    if user_id:
        payload["userId"] = user_id
    response = client.post("/embeddings/backfill", json=payload)
    if response.status_code != 200:
        raise RuntimeError(f"Backfill failed: {response.status_code}: {response.text}")
    return response.json()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    headers = {"Content-Type": "application/json"}
    if args.api_key:
        headers["Authorization"] = f"Bearer {args.api_key}"

    with httpx.Client(base_url=args.base_url.rstrip("/"), headers=headers, timeout=120.0) as client:
        for batch_number in range(1, args.max_batches + 1):
            result = run_batch(client, args.batch_size, args.user_id)
            print(
                f"Batch {batch_number}: processed={result['processed']} "
                f"successful={result['successful']} errors={result['errors']} "
                f"remaining={result['remaining']}"
            )
            for item in result.get("results", []):
                if item["status"] == "error":
                    print(f"  {item['receiptId']}: {item.get('error')}")

            if result["remaining"] == 0:
                print("Backfill complete.")
                return 0
            if result["successful"] == 0:
                print("No progress in this batch; stopping.", file=sys.stderr)
                return 1
            time.sleep(args.pause)

    print("Reached --max-batches before completion.", file=sys.stderr)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
