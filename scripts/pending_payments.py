"""Print payments still Pending, oldest first, for manual reconciliation."""

import argparse
import json
from datetime import datetime, timedelta, timezone

import httpx


def fetch_pending(base_url: str, api_key: str, page_size: int) -> list[dict]:
    """Walk every page of the admin listing filtered to Pending."""

    records: list[dict] = []
    page = 1
    with httpx.Client(base_url=base_url, timeout=10.0, headers={"x-api-key": api_key}) as client:
        while True:
            resp = client.get("/admin/payments", params={"status": "Pending", "page": page, "limit": page_size})
            resp.raise_for_status()
            body = resp.json()
            records.extend(body["data"])
            if page >= body["totalPages"]:
                return records
            page += 1


def created_at(record: dict) -> datetime:
    """Parse `createdAt`; naive timestamps (SQLite dev setups) are UTC."""

    value = datetime.fromisoformat(record["createdAt"])
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def stale_payments(records: list[dict], cutoff: datetime) -> list[dict]:
    stale = [r for r in records if created_at(r) < cutoff]
    stale.sort(key=created_at)
    return stale


def main() -> None:
    """CLI entrypoint for the pending-payments report."""

    parser = argparse.ArgumentParser(description="List Pending STK pushes older than a threshold.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default="dev-secret")
    parser.add_argument("--older-than-minutes", type=int, default=10)
    parser.add_argument("--page-size", type=int, default=100)
    args = parser.parse_args()

    cutoff = datetime.now(timezone.utc) - timedelta(minutes=args.older_than_minutes)
    stale = stale_payments(fetch_pending(args.base_url, args.api_key, args.page_size), cutoff)
    print(json.dumps({"count": len(stale), "payments": stale}, indent=2))


if __name__ == "__main__":
    main()
