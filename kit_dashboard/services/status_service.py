from __future__ import annotations

from typing import Any, Iterable, Mapping


NOT_PICKED = "Not Picked"
PREPARING = "Preparing"
READY_FOR_COLLECTION = "Ready for Collection"

STATUS_RANK = {NOT_PICKED: 0, PREPARING: 1, READY_FOR_COLLECTION: 2}

FULFILLED_KEYWORDS = ("picked", "ready", "collected", "complete", "completed", "returned", "issued")

OVERRIDE_LABELS = {
    "preparing": PREPARING,
    "ready": READY_FOR_COLLECTION,
    "notpicked": NOT_PICKED,
    "not picked": NOT_PICKED,
}


def is_fulfilled(status: Any) -> bool:
    text = str(status or "").lower()
    return any(keyword in text for keyword in FULFILLED_KEYWORDS)


def automatic_status(group_statuses: Iterable[Any]) -> str:
    statuses = list(group_statuses)
    total = len(statuses)
    fulfilled = sum(1 for status in statuses if is_fulfilled(status))
    if fulfilled == 0:
        return NOT_PICKED
    if fulfilled < total:
        return PREPARING
    return READY_FOR_COLLECTION


def override_status(group_key: str, status_override_map: Mapping[str, Any] | None) -> str | None:
    raw = (status_override_map or {}).get(group_key)
    if not raw:
        return None
    return OVERRIDE_LABELS.get(str(raw).strip().lower())


def derive_status(
    group_statuses: Iterable[Any],
    group_key: str,
    status_override_map: Mapping[str, Any] | None = None,
) -> str:
    """Pickup status for one group; a stored override for the key replaces the computed value."""
    manual = override_status(group_key, status_override_map)
    if manual:
        return manual
    return automatic_status(group_statuses)
