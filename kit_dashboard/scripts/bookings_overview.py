#!/usr/bin/env python3
"""Print one day's booking groups straight from the upstream API."""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from services.booking_service import list_todays_bookings
from services.override_service import OverrideStore
from services.siso_service import SisoClient, SisoSettings, UpstreamAuthError, UpstreamFetchError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Fetch bookings from SISO and show the grouped dashboard view.",
    )
    parser.add_argument("--date", default=None, help="Day to show as YYYY-MM-DD; defaults to today.")
    parser.add_argument("--json", action="store_true", help="Print the raw JSON payload instead of a table.")
    parser.add_argument("--debug", action="store_true", help="Include the evidence source of every category.")
    parser.add_argument(
        "--data-dir",
        default=os.environ.get("KIT_DASHBOARD_DATA_DIR", "").strip() or str(APP_DIR / "data"),
        help="Directory holding lists.json, categories.json and statuses.json.",
    )
    parser.add_argument(
        "--timezone",
        default=(os.environ.get("BOOKINGS_TIMEZONE") or "Europe/London").strip(),
        help="Zone used for 'today' and for timestamps without an offset.",
    )
    parser.add_argument("--window", type=int, default=int(os.environ.get("BOOKING_BUCKET_MINUTES") or "5"))
    return parser


def _print_table(bookings: list[dict], debug: bool) -> None:
    if not bookings:
        print("No bookings.")
        return
    for booking in bookings:
        print(f"{booking['startdatetime']}  {booking['username']:<24} {booking['status']}")
        for asset in booking["assets"]:
            source = f"  [{asset['source']}]" if debug else ""
            print(f"    - {asset['name']} ({asset['category']}){source}")


def main() -> int:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args()

    tz = ZoneInfo(args.timezone)
    if args.date:
        try:
            day = date.fromisoformat(args.date)
        except ValueError:
            parser.error("--date must be YYYY-MM-DD")
    else:
        day = datetime.now(tz).date()
    if args.window <= 0:
        parser.error("--window must be > 0")

    client = SisoClient(SisoSettings.from_env())
    try:
        rows = client.list_bookings(day)
    except (UpstreamAuthError, UpstreamFetchError) as exc:
        print(f"ERROR {exc}", file=sys.stderr)
        return 1

    store = OverrideStore(args.data_dir)
    bookings = list_todays_bookings(
        rows,
        day,
        category_overrides=store.list_category_overrides(),
        status_overrides=store.list_status_overrides(),
        curated_lists=store.load_lists(),
        window_minutes=args.window,
        tz=tz,
        debug=args.debug,
    )

    if args.json:
        print(json.dumps({"success": True, "bookings": bookings}, indent=2, ensure_ascii=False))
    else:
        _print_table(bookings, args.debug)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
