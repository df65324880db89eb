from __future__ import annotations

import http.client
import json
import logging
import os
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable


LOGGER = logging.getLogger("kit_dashboard.siso")

DEFAULT_BASE_URL = "https://lsa.siso.co"
TOKEN_PATH = "/scripts/api/v1/jwt_request"
LIST_BOOKINGS_PATH = "/scripts/api/v1/listbookings"
TOKEN_LIFETIME_SECONDS = 55.0
TOKEN_SAFETY_MARGIN_SECONDS = 3.0
TOKEN_TIMEOUT_SECONDS = 8
FETCH_TIMEOUT_SECONDS = 12
BOOKINGS_LIMIT = 1000


class UpstreamAuthError(RuntimeError):
    pass


class UpstreamFetchError(RuntimeError):
    def __init__(self, message: str, payload: Any = None, status: int | None = None):
        super().__init__(message)
        self.payload = payload
        self.status = status


class _Unauthorized(Exception):
    pass


class TokenCache:
    """Holds one upstream JWT and the wall-clock second it stops being usable."""

    def __init__(
        self,
        lifetime_seconds: float = TOKEN_LIFETIME_SECONDS,
        safety_margin_seconds: float = TOKEN_SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.lifetime_seconds = lifetime_seconds
        self.safety_margin_seconds = safety_margin_seconds
        self.clock = clock
        self.token: str | None = None
        self.expires_at = 0.0

    def get(self) -> str | None:
        if self.token and self.clock() < self.expires_at - self.safety_margin_seconds:
            return self.token
        return None

    def store(self, token: str) -> None:
        self.token = token
        self.expires_at = self.clock() + self.lifetime_seconds

    def invalidate(self) -> None:
        self.token = None
        self.expires_at = 0.0


@dataclass
class SisoSettings:
    base_url: str
    auth_token: str
    auth_key: str

    @classmethod
    def from_env(cls) -> "SisoSettings":
        return cls(
            base_url=(os.environ.get("SISO_BASE_URL") or DEFAULT_BASE_URL).strip().rstrip("/"),
            auth_token=(os.environ.get("SISO_AUTH_TOKEN") or "").strip(),
            auth_key=(os.environ.get("SISO_AUTH_KEY") or "").strip(),
        )


def format_date_for_api(day: date) -> str:
    return f"{day.day:02d}/{day.month:02d}/{day.year:04d}"


def _decode_body(raw: bytes) -> Any:
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text or None


def _extract_token(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    token = payload.get("token")
    if not token and isinstance(payload.get("response"), dict):
        token = payload["response"].get("token")
    return str(token) if token else None


class SisoClient:
    def __init__(self, settings: SisoSettings, token_cache: TokenCache | None = None):
        self.settings = settings
        self.token_cache = token_cache or TokenCache()

    def request_token(self) -> str:
        if not self.settings.auth_token or not self.settings.auth_key:
            raise UpstreamAuthError("Missing SISO_AUTH_TOKEN or SISO_AUTH_KEY")
        request = urllib.request.Request(
            url=f"{self.settings.base_url}{TOKEN_PATH}",
            data=b"{}",
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "AuthToken": self.settings.auth_token,
                "AuthKey": self.settings.auth_key,
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=TOKEN_TIMEOUT_SECONDS) as response:
                payload = _decode_body(response.read())
        except urllib.error.HTTPError as exc:
            raise UpstreamAuthError(f"Token request HTTP error: {exc.code}") from exc
        except urllib.error.URLError as exc:
            raise UpstreamAuthError(f"Token request connection error: {exc.reason}") from exc
        except TimeoutError as exc:
            raise UpstreamAuthError("Token request timed out") from exc
        except (OSError, http.client.HTTPException) as exc:
            raise UpstreamAuthError(f"Token request failed: {exc!r}") from exc

        token = _extract_token(payload)
        if not token:
            raise UpstreamAuthError("No token returned from jwt_request")
        self.token_cache.store(token)
        LOGGER.info("Fetched new upstream token")
        return token

    def get_token(self) -> str:
        cached = self.token_cache.get()
        if cached:
            return cached
        return self.request_token()

    def _get_bookings(self, token: str, day: date) -> Any:
        query = urllib.parse.urlencode(
            {
                "date": format_date_for_api(day),
                "limit": BOOKINGS_LIMIT,
                "_": int(time.time() * 1000),
            }
        )
        request = urllib.request.Request(
            url=f"{self.settings.base_url}{LIST_BOOKINGS_PATH}?{query}",
            headers={"Accept": "application/json", "Authorization": f"Bearer {token}"},
            method="GET",
        )
        try:
            with urllib.request.urlopen(request, timeout=FETCH_TIMEOUT_SECONDS) as response:
                raw = response.read()
        except urllib.error.HTTPError as exc:
            if exc.code == 401:
                raise _Unauthorized() from exc
            payload = _decode_body(exc.read() or b"")
            raise UpstreamFetchError(f"Booking list HTTP error: {exc.code}", payload=payload, status=exc.code) from exc
        except urllib.error.URLError as exc:
            raise UpstreamFetchError(f"Booking list connection error: {exc.reason}") from exc
        except TimeoutError as exc:
            raise UpstreamFetchError("Booking list request timed out") from exc
        except (OSError, http.client.HTTPException) as exc:
            raise UpstreamFetchError(f"Booking list request failed: {exc!r}") from exc

        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise UpstreamFetchError("Booking list returned invalid JSON") from exc

    def list_bookings(self, day: date) -> list[dict[str, Any]]:
        """Raw booking rows for one day; a rejected token is replaced once and the call retried."""
        try:
            payload = self._get_bookings(self.get_token(), day)
        except _Unauthorized:
            LOGGER.warning("Upstream rejected cached token; refreshing and retrying once")
            self.token_cache.invalidate()
            try:
                payload = self._get_bookings(self.request_token(), day)
            except _Unauthorized as exc:
                raise UpstreamFetchError("Booking list HTTP error: 401", status=401) from exc

        if not isinstance(payload, dict):
            raise UpstreamFetchError("Booking list payload is not an object", payload=payload)
        rows = payload.get("response") or []
        if not isinstance(rows, list):
            raise UpstreamFetchError("Booking list payload has no row list", payload=payload)
        return [row for row in rows if isinstance(row, dict)]
