from __future__ import annotations

import logging
from datetime import date, timezone, tzinfo
from typing import Any, Iterable, Mapping

from services.bucket_service import DEFAULT_WINDOW_MINUTES, group_rows, is_listable_row
from services.category_service import CuratedIndex, build_override_index, explain_category
from services.normalize_service import clean_text, row_value
from services.status_service import derive_status


LOGGER = logging.getLogger("kit_dashboard.bookings")


def filter_todays_rows(rows: Iterable[Mapping[str, Any]], day: date) -> list[Mapping[str, Any]]:
    return [row for row in rows if is_listable_row(row, day)]


def build_booking_groups(
    rows: Iterable[Mapping[str, Any]],
    *,
    category_overrides: Mapping[str, Any] | None = None,
    status_overrides: Mapping[str, Any] | None = None,
    curated_lists: Mapping[str, Any] | None = None,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
    tz: tzinfo = timezone.utc,
    debug: bool = False,
) -> list[dict[str, Any]]:
    """Group already-filtered rows and attach categories and pickup status."""
    override_index = build_override_index(category_overrides)
    curated = CuratedIndex.from_lists(curated_lists)

    bookings: list[dict[str, Any]] = []
    for key, group in group_rows(rows, window_minutes=window_minutes, tz=tz).items():
        assets = []
        statuses = []
        for row in group["rows"]:
            asset_name = row_value(row, "assetname")
            decision = explain_category(row, override_index, curated, asset_name=asset_name)
            asset = {"name": asset_name, "category": decision.category}
            if debug:
                asset["source"] = decision.source
            assets.append(asset)
            statuses.append(clean_text(row_value(row, "currentstatus")).lower())

        bookings.append(
            {
                "username": group["username"],
                "startdatetime": group["startdatetime"],
                "assets": assets,
                "status": derive_status(statuses, key, status_overrides),
                "_groupKey": key,
            }
        )
    return bookings


def list_todays_bookings(
    rows: Iterable[Mapping[str, Any]],
    day: date,
    *,
    category_overrides: Mapping[str, Any] | None = None,
    status_overrides: Mapping[str, Any] | None = None,
    curated_lists: Mapping[str, Any] | None = None,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
    tz: tzinfo = timezone.utc,
    debug: bool = False,
) -> list[dict[str, Any]]:
    all_rows = list(rows)
    todays = filter_todays_rows(all_rows, day)
    bookings = build_booking_groups(
        todays,
        category_overrides=category_overrides,
        status_overrides=status_overrides,
        curated_lists=curated_lists,
        window_minutes=window_minutes,
        tz=tz,
        debug=debug,
    )
    LOGGER.info(
        "Built %s booking groups from %s rows (%s kept for %s)",
        len(bookings),
        len(all_rows),
        len(todays),
        day.isoformat(),
    )
    return bookings
