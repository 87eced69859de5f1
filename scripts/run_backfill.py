"""Trigger one backfill batch and print its stats JSON."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for cron-driven or manual backfill runs."""

    parser = argparse.ArgumentParser(description="Run one post-sale backfill batch.")
    parser.add_argument("--backfill-url", default="http://localhost:8006")
    parser.add_argument("--api-key", required=True)
    parser.add_argument("--limit", type=int, default=20)
    args = parser.parse_args()

    resp = httpx.post(
        f"{args.backfill_url}/backfill/process",
        params={"limit": args.limit},
        headers={"x-api-key": args.api_key},
        timeout=60.0,
    )
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
