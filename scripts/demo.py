#!/usr/bin/env python3
"""Demo: enqueue one notification per channel and watch it move.

Requires the intake gateway and a dispatch worker to be running:
    python -m intake_gateway &
    python -m dispatch_worker &

Usage:
    python scripts/demo.py [--gateway-url URL] [--wait SECONDS]
"""

import argparse
import sys
import time
import uuid

import httpx

USER_ID = f"demo-{uuid.uuid4().hex[:8]}"

NOTIFICATIONS = [
    {
        "channel": "email",
        "priority": "high",
        "title": "Welcome aboard",
        "message": "Thanks for signing up.",
        "recipient_info": {"email": "alice@example.com"},
    },
    {
        "channel": "push",
        "priority": "urgent",
        "title": "Payment failed",
        "message": "Please update your card.",
        "recipient_info": {"device_tokens": ["demo-device-token"]},
    },
    {
        "channel": "sms",
        "priority": "normal",
        "title": "Order shipped",
        "message": "Your order is on its way.",
        "recipient_info": {"phone": "+15550001234"},
    },
    {
        "channel": "in_app",
        "priority": "low",
        "title": "New feature",
        "message": "Dark mode is here.",
        "recipient_info": {},
    },
]


def main() -> None:
    parser = argparse.ArgumentParser(description="Enqueue demo notifications")
    parser.add_argument(
        "--gateway-url",
        default="http://localhost:8000",
        help="Intake Gateway base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=10.0,
        help="Seconds to wait for dispatch before printing statuses",
    )
    args = parser.parse_args()

    with httpx.Client(base_url=args.gateway_url, timeout=10.0) as client:
        try:
            resp = client.get("/health")
        except httpx.ConnectError:
            print(f"Cannot connect to {args.gateway_url}")
            print("Make sure the intake gateway is running: python -m intake_gateway")
            sys.exit(1)

        if resp.status_code != 200:
            print(f"Gateway unhealthy: {resp.text}")
            sys.exit(1)

        print(f"Gateway healthy at {args.gateway_url}\n")

        accepted: list[tuple[str, str]] = []
        for notification in NOTIFICATIONS:
            resp = client.post("/notifications", json={"user_id": USER_ID, **notification})
            body = resp.json()
            channel = notification["channel"]
            if resp.status_code == 202:
                accepted.append((channel, body["notification_id"]))
                print(f"  {channel:8s} -> accepted  id={body['notification_id']}")
            else:
                print(f"  {channel:8s} -> ERROR {resp.status_code}: {body}")

        print(f"\nWaiting {args.wait:.0f}s for the dispatch worker...\n")
        time.sleep(args.wait)

        for channel, notification_id in accepted:
            record = client.get(f"/notifications/{notification_id}").json()
            print(
                f"  {channel:8s} {record['status']:10s} "
                f"attempts={record['attempt_count']}"
            )

        logs = client.get(f"/users/{USER_ID}/logs").json()["logs"]
        print(f"\n{len(logs)} delivery log entries for {USER_ID}.")


if __name__ == "__main__":
    main()
