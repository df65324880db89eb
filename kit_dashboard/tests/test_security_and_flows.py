import os
import sys
import tempfile
import unittest
from datetime import date
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient


os.environ.setdefault("TECH_PASSWORD", "tech-test-pass")
os.environ.setdefault("BOOKINGS_TIMEZONE", "UTC")
os.environ.setdefault("BOOKING_BUCKET_MINUTES", "5")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import KitDash as app_module
from services.override_service import OverrideStore
from services.siso_service import SisoClient, SisoSettings, TokenCache, UpstreamAuthError, UpstreamFetchError


TECH_AUTH = ("tech", os.environ["TECH_PASSWORD"])
TODAY = date(2024, 6, 1)


class FakeSisoClient:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.days = []

    def list_bookings(self, day):
        self.days.append(day)
        if self.error:
            raise self.error
        return list(self.rows)


class SecurityAndFlowTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = OverrideStore(self._tmp.name)
        self.siso = FakeSisoClient()
        app_module.app.dependency_overrides[app_module.get_override_store] = lambda: self.store
        app_module.app.dependency_overrides[app_module.get_siso_client] = lambda: self.siso
        app_module.app.dependency_overrides[app_module.get_today] = lambda: TODAY
        self.client = TestClient(app_module.app)

    def tearDown(self):
        app_module.app.dependency_overrides.clear()
        self._tmp.cleanup()

    def test_healthcheck(self):
        response = self.client.get("/healthz")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_tech_endpoints_challenge_without_credentials(self):
        response = self.client.post("/api/update-status", json={"key": "Alice_x", "status": "ready"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.headers.get("www-authenticate"), 'Basic realm="Technician Area"')
        self.assertEqual(response.json()["success"], False)
        self.assertEqual(self.store.list_status_overrides(), {})

    def test_tech_endpoints_reject_wrong_password(self):
        response = self.client.post("/api/lists", json={"video": []}, auth=("tech", "wrong"))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"success": False, "error": "Access denied."})

    def test_tech_page_redirect_and_protection(self):
        redirect = self.client.get("/tech.html", follow_redirects=False)
        self.assertEqual(redirect.status_code, 302)
        self.assertEqual(redirect.headers["location"], "/tech")
        self.assertEqual(self.client.get("/tech").status_code, 401)
        page = self.client.get("/tech", auth=TECH_AUTH)
        self.assertEqual(page.status_code, 200)
        self.assertIn("Technician", page.text)

    def test_curated_lists_public_read_and_protected_write(self):
        self.assertEqual(self.client.get("/api/lists").json()["lists"]["video"], [])
        denied = self.client.post("/api/lists", json={"video": ["Sony A7IV"]})
        self.assertEqual(denied.status_code, 401)

        updated = self.client.post("/api/lists", json={"video": ["Sony A7IV"], "grip": ["C-Stand"]}, auth=TECH_AUTH)
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()["lists"]["video"], ["Sony A7IV"])
        self.assertEqual(self.client.get("/api/lists").json()["lists"]["grip"], ["C-Stand"])

    def test_category_override_validation_and_storage(self):
        bad = self.client.post("/api/category-override", json={"assetName": "Sony A7IV", "category": "props"}, auth=TECH_AUTH)
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(bad.json(), {"success": False, "error": "assetName and valid category required"})
        self.assertEqual(self.store.list_category_overrides(), {})

        good = self.client.post("/api/category-override", json={"assetName": " SONY A7IV ", "category": "Grip"}, auth=TECH_AUTH)
        self.assertEqual(good.status_code, 200)
        self.assertEqual(good.json()["overrides"], {"sony a7iv": "grip"})

        listed = self.client.get("/api/category-override")
        self.assertEqual(listed.json(), {"success": True, "overrides": {"sony a7iv": "grip"}})

    def test_malformed_body_is_client_error(self):
        response = self.client.post("/api/update-status", json={"key": ["a"], "status": 3}, auth=TECH_AUTH)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["success"], False)

    def test_status_override_flow_changes_bookings(self):
        self.siso.rows = [
            {
                "username": "Alice",
                "startdatetime": "01/06/2024 10:02:00",
                "assetname": "Sony A7IV",
                "currentstatus": "Picked Up",
            }
        ]
        self.store.update_lists({"video": ["Sony A7IV"]})

        first = self.client.get("/api/bookings").json()
        self.assertEqual(first["success"], True)
        booking = first["bookings"][0]
        self.assertEqual(booking["status"], "Ready for Collection")
        self.assertEqual(booking["assets"], [{"name": "Sony A7IV", "category": "video"}])
        key = booking["_groupKey"]
        self.assertEqual(key, "Alice_2024-06-01T10:00:00.000Z")

        forced = self.client.post("/api/update-status", json={"key": key, "status": "notpicked"}, auth=TECH_AUTH)
        self.assertEqual(forced.json(), {"success": True, "key": key, "status": "notpicked"})
        self.assertEqual(self.client.get("/api/bookings").json()["bookings"][0]["status"], "Not Picked")
        self.assertEqual(self.client.get("/api/status-overrides").json()["overrides"], {key: "notpicked"})

        cleared = self.client.post("/api/update-status", json={"key": key, "status": "clear"}, auth=TECH_AUTH)
        self.assertEqual(cleared.json(), {"success": True, "key": key, "status": None})
        self.assertEqual(self.client.get("/api/bookings").json()["bookings"][0]["status"], "Ready for Collection")
        self.assertEqual(self.siso.days, [TODAY, TODAY, TODAY])

    def test_invalid_status_is_rejected_without_change(self):
        response = self.client.post("/api/update-status", json={"key": "Alice_x", "status": "done"}, auth=TECH_AUTH)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"success": False, "error": "Missing key or invalid status"})
        self.assertEqual(self.store.list_status_overrides(), {})

    def test_bookings_debug_exposes_category_source(self):
        self.siso.rows = [
            {"username": "Bob", "startdatetime": "2024-06-01 09:00", "assetname": "Zoom H6", "currentstatus": "Booked"},
        ]
        body = self.client.get("/api/bookings", params={"debug": "true"}).json()
        self.assertEqual(body["bookings"][0]["assets"], [{"name": "Zoom H6", "category": "sound", "source": "keyword"}])

    def test_upstream_fetch_error_is_single_failure_payload(self):
        self.siso.error = UpstreamFetchError("Booking list HTTP error: 500", payload={"error": "db down"}, status=500)
        response = self.client.get("/api/bookings")
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json(), {"success": False, "error": {"error": "db down"}})

    def test_upstream_auth_error_is_service_error(self):
        self.siso.error = UpstreamAuthError("No token returned from jwt_request")
        response = self.client.get("/api/bookings")
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json(), {"success": False, "error": "No token returned from jwt_request"})

    def test_dropped_upstream_connection_is_single_failure_payload(self):
        settings = SisoSettings(base_url="https://siso.test", auth_token="tok", auth_key="key")
        app_module.app.dependency_overrides[app_module.get_siso_client] = lambda: SisoClient(settings, TokenCache())
        with mock.patch("urllib.request.urlopen", side_effect=ConnectionResetError(104, "reset")):
            response = self.client.get("/api/bookings")
        self.assertEqual(response.status_code, 502)
        self.assertFalse(response.json()["success"])
        self.assertIn("Token request failed", response.json()["error"])

    def test_static_board_is_served(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("Today's Bookings", response.text)


if __name__ == "__main__":
    unittest.main()
