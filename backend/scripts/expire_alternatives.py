#!/usr/bin/env python3
"""Run the alternative-proposal expiry sweep once.

Meant for cron or any external scheduler; running it repeatedly is safe.
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

REPO_BACKEND = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_BACKEND))

from app.config import LOG_LEVEL  # noqa: E402
from app.models import Booking  # noqa: E402
from app.services.booking_lifecycle import booking_lifecycle  # noqa: E402


def _parse_now(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO-8601 timestamp: {value!r}") from exc


def build_report(expired: List[Booking]) -> Dict[str, Any]:
    return {
        "count": len(expired),
        "expired": [
            {
                "booking_id": booking.id,
                "booking_number": booking.booking_number,
                "vendor_id": booking.vendor_id,
                "customer_id": booking.customer_id,
            }
            for booking in expired
        ],
    }


def print_human(report: Dict[str, Any]) -> None:
    print(f"Expired alternative proposals: {report['count']}")
    for row in report["expired"]:
        print(f"  - {row['booking_number']} ({row['booking_id']}) vendor={row['vendor_id']}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Expire alternative booking times past their deadline.")
    parser.add_argument(
        "--now",
        type=_parse_now,
        default=None,
        help="Evaluate deadlines as of this ISO-8601 instant instead of the current time.",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    report = build_report(booking_lifecycle.expire_alternatives(now=args.now))
    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print_human(report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
