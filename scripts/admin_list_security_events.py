from __future__ import annotations

import argparse
import json
import os
import sys
from collections import Counter
from typing import Any

import httpx

from modqueue_api.domain.suspicious_activity import SEVERITY_ORDER, Severity


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Review reversal tampering and other moderation security events."
    )
    parser.add_argument(
        "--base-url",
        default=os.environ.get("MODQUEUE_API_BASE_URL", "http://localhost:8000"),
    )
    parser.add_argument("--admin-user-id", default=os.environ.get("MODQUEUE_ADMIN_USER_ID"))
    parser.add_argument("--user-id")
    parser.add_argument(
        "--event-type",
        action="append",
        default=[],
        help="Repeat to match several event types.",
    )
    parser.add_argument(
        "--tamper-only",
        action="store_true",
        help="Only reversal modification, integrity and self-reversal events.",
    )
    parser.add_argument(
        "--min-severity",
        choices=[severity.value for severity in Severity],
        help="Drop events whose recorded severity is lower, or missing.",
    )
    parser.add_argument("--created-after")
    parser.add_argument("--created-before")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print counts per event type and severity instead of the events.",
    )
    return parser.parse_args()


def at_least(events: list[dict[str, Any]], minimum: Severity) -> list[dict[str, Any]]:
    floor = SEVERITY_ORDER[minimum]
    kept = []
    for event in events:
        recorded = (event.get("details") or {}).get("severity")
        if recorded in Severity.__members__ and SEVERITY_ORDER[Severity(recorded)] >= floor:
            kept.append(event)
    return kept


def summarize(events: list[dict[str, Any]]) -> dict[str, dict[str, int]]:
    counts: dict[str, Counter[str]] = {}
    for event in events:
        severity = (event.get("details") or {}).get("severity", "unrated")
        counts.setdefault(event["event_type"], Counter())[severity] += 1
    return {event_type: dict(counts[event_type]) for event_type in sorted(counts)}


def main() -> None:
    args = parse_args()
    if not args.admin_user_id:
        print(
            "Missing admin user id. Set MODQUEUE_ADMIN_USER_ID or pass --admin-user-id.",
            file=sys.stderr,
        )
        sys.exit(2)

    params: dict[str, Any] = {"limit": args.limit}
    if args.event_type:
        params["event_type"] = args.event_type
    if args.tamper_only:
        params["tamper_only"] = "true"
    if args.user_id:
        params["user_id"] = args.user_id
    if args.created_after:
        params["created_after"] = args.created_after
    if args.created_before:
        params["created_before"] = args.created_before

    with httpx.Client(base_url=args.base_url, headers={"X-User-Id": args.admin_user_id}) as client:
        response = client.get("/v1/admin/security-events", params=params)
        response.raise_for_status()
    events = response.json()["events"]
    if args.min_severity:
        events = at_least(events, Severity(args.min_severity))

    if args.summary:
        print(json.dumps(summarize(events), indent=2))
    else:
        print(json.dumps({"events": events}, indent=2))


if __name__ == "__main__":
    main()
