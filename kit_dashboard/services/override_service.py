from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from services.category_service import CATEGORIES, LIST_PRIORITY
from services.normalize_service import clean_text, normalize_text


LOGGER = logging.getLogger("kit_dashboard.overrides")

STATUS_FILE_NAME = "statuses.json"
CATEGORY_FILE_NAME = "categories.json"
LISTS_FILE_NAME = "lists.json"

STATUS_OVERRIDE_VALUES = ("preparing", "ready", "notpicked", "not picked", "clear")
CLEAR_STATUS = "clear"


class OverrideValidationError(ValueError):
    pass


def default_lists() -> dict[str, list[str]]:
    return {"grip": [], "video": [], "lighting": [], "sound": []}


def _coerce_lists(stored: dict[str, Any]) -> dict[str, list[str]]:
    lists = default_lists()
    for name in LIST_PRIORITY:
        entries = stored.get(name)
        if isinstance(entries, list):
            lists[name] = [str(entry) for entry in entries]
    return lists


class OverrideStore:
    """JSON files for curated lists and manual overrides.

    Every mutation reads the whole file, changes it in memory and writes it back.
    The lock only covers this process; separate processes writing the same file
    race and the last write wins.
    """

    def __init__(self, data_dir: Path | str):
        self.data_dir = Path(data_dir)
        self.status_path = self.data_dir / STATUS_FILE_NAME
        self.category_path = self.data_dir / CATEGORY_FILE_NAME
        self.lists_path = self.data_dir / LISTS_FILE_NAME
        self._lock = threading.Lock()

    def _read_json_unlocked(self, path: Path, fallback: dict[str, Any]) -> dict[str, Any]:
        if not path.exists():
            self._write_json_unlocked(path, fallback)
            return fallback
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("Could not read %s: %s", path, exc)
            return fallback
        if not raw.strip():
            return fallback
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            LOGGER.warning("Ignoring unreadable JSON in %s", path)
            return fallback
        if not isinstance(payload, dict):
            return fallback
        return payload

    def _write_json_unlocked(self, path: Path, payload: dict[str, Any]) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError:
            LOGGER.exception("Could not write %s", path)

    def list_status_overrides(self) -> dict[str, str]:
        with self._lock:
            return dict(self._read_json_unlocked(self.status_path, {}))

    def list_category_overrides(self) -> dict[str, str]:
        with self._lock:
            return dict(self._read_json_unlocked(self.category_path, {}))

    def load_lists(self) -> dict[str, list[str]]:
        with self._lock:
            return _coerce_lists(self._read_json_unlocked(self.lists_path, default_lists()))

    def set_category_override(self, asset_name: Any, category: Any) -> dict[str, str]:
        key = normalize_text(asset_name)
        label = clean_text(category).lower()
        if not key or label not in CATEGORIES:
            raise OverrideValidationError("assetName and valid category required")
        with self._lock:
            overrides = self._read_json_unlocked(self.category_path, {})
            overrides[key] = label
            self._write_json_unlocked(self.category_path, overrides)
        LOGGER.info("Category override set asset=%s category=%s", key, label)
        return dict(overrides)

    def set_status_override(self, group_key: Any, status: Any) -> str | None:
        key = clean_text(group_key)
        value = clean_text(status).lower()
        if not key or value not in STATUS_OVERRIDE_VALUES:
            raise OverrideValidationError("Missing key or invalid status")
        with self._lock:
            statuses = self._read_json_unlocked(self.status_path, {})
            if value == CLEAR_STATUS:
                statuses.pop(key, None)
            else:
                statuses[key] = value
            self._write_json_unlocked(self.status_path, statuses)
        LOGGER.info("Status override key=%s status=%s", key, value)
        return statuses.get(key)

    def update_lists(self, incoming: dict[str, Any]) -> dict[str, list[str]]:
        with self._lock:
            lists = _coerce_lists(self._read_json_unlocked(self.lists_path, default_lists()))
            for name in LIST_PRIORITY:
                entries = (incoming or {}).get(name)
                if isinstance(entries, list):
                    lists[name] = [clean_text(entry) for entry in entries if clean_text(entry)]
            self._write_json_unlocked(self.lists_path, lists)
        LOGGER.info("Curated lists updated sizes=%s", {name: len(lists[name]) for name in LIST_PRIORITY})
        return lists
