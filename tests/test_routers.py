"""
API Tests

Exercise the routers through FastAPI's TestClient with the database
dependency pointed at the in-memory session. The app lifespan is not
entered, so no scheduler is started.
"""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.database import get_db
from app.main import app
from app.models.booking import Booking
from app.services.feed_fetcher import FeedFetcher, FetchSummary
from app.services.manual_edits import ManualEditService
from app.services.reconciliation import SyncError


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class TestErrorMapping:
    """Domain exceptions become {success: false, error} with the right status"""

    def test_merge_non_adjacent_is_400(self, client, make_booking):
        a = make_booking((2030, 1, 10), (2030, 1, 15))
        b = make_booking((2030, 1, 17), (2030, 1, 18))

        response = client.post("/api/ical/merge", json={"ids": [a.id, b.id]})

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "adjacent" in response.json()["error"]

    def test_merge_unknown_is_404(self, client):
        response = client.post("/api/ical/merge", json={"ids": ["x", "y"]})
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_merge_requires_two_ids(self, client):
        response = client.post("/api/ical/merge", json={"ids": ["x"]})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_block_overlap_is_409_with_payload(self, client, make_booking):
        upstream = make_booking((2030, 1, 12), (2030, 1, 14))

        response = client.post("/api/ical/blocks", json={
            "property_name": "Apt 1",
            "start": "2030-01-10",
            "end": "2030-01-15",
            "reason": "Repairs",
        })

        assert response.status_code == 409
        body = response.json()
        assert body["conflict_type"] == "ical-overlap"
        assert body["conflicts"][0]["id"] == upstream.id

    def test_second_merge_of_same_original_is_409(self, client, make_booking):
        a = make_booking((2030, 1, 10), (2030, 1, 15))
        b = make_booking((2030, 1, 15), (2030, 1, 18))
        c = make_booking((2030, 1, 18), (2030, 1, 20))

        assert client.post("/api/ical/merge", json={"ids": [a.id, b.id]}).status_code == 200
        response = client.post("/api/ical/merge", json={"ids": [b.id, c.id]})

        assert response.status_code == 409

    def test_sync_store_error_is_500(self, client):
        with patch("app.routers.ical.run_sync", new=AsyncMock(side_effect=SyncError("write failed"))):
            response = client.post("/api/ical/sync", json={"days_ahead": 10})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "write failed"}


class TestIcalRoutes:

    def test_sync_without_sources(self, client):
        response = client.post("/api/ical/sync")
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_fetch_needs_both_range_ends(self, client):
        response = client.get("/api/ical/fetch", params={"from": "2030-01-01"})
        assert response.status_code == 400

    def test_fetch_without_range_uses_days_ahead(self, client):
        rolling = AsyncMock(return_value=([], FetchSummary()))
        ranged = AsyncMock(return_value=([], FetchSummary()))

        with patch.object(FeedFetcher, "fetch_reservations", new=rolling), \
                patch.object(FeedFetcher, "fetch_reservations_in_range", new=ranged):
            response = client.get("/api/ical/fetch", params={"daysAhead": 10})

        assert response.status_code == 200
        assert response.json()["count"] == 0
        assert rolling.await_args.args[1] == 10
        ranged.assert_not_awaited()

    def test_fetch_with_range_uses_overlap(self, client):
        ranged = AsyncMock(return_value=([], FetchSummary()))

        with patch.object(FeedFetcher, "fetch_reservations_in_range", new=ranged):
            response = client.get("/api/ical/fetch", params={"from": "2030-01-01", "to": "2030-01-31"})

        assert response.status_code == 200
        ranged.assert_awaited_once()

    def test_data_lists_bookings(self, client, make_booking):
        make_booking((2030, 1, 10), (2030, 1, 15), uid="listed")

        response = client.get("/api/ical/data", params={"from": "2030-01-01", "to": "2030-01-31"})

        assert response.status_code == 200
        body = response.json()
        assert body["mode"] == "range"
        assert [r["uid"] for r in body["rows"]] == ["listed"]

    def test_data_rejects_bad_date(self, client):
        response = client.get("/api/ical/data", params={"from": "soon", "to": "2030-01-31"})
        assert response.status_code == 400

    def test_guests_and_notes(self, client, make_booking, db):
        a = make_booking((2030, 1, 10), (2030, 1, 15))

        assert client.post("/api/ical/guests", json={"id": a.id, "guests": 3}).json() == {"success": True}
        assert client.post("/api/ical/notes", json={"id": a.id, "notes": "Crib"}).json() == {"success": True}

        db.expire_all()
        booking = db.get(Booking, a.id)
        assert (booking.guests, booking.notes) == (3, "Crib")

    def test_guests_above_limit_is_400(self, client, make_booking):
        a = make_booking((2030, 1, 10), (2030, 1, 15))
        response = client.post("/api/ical/guests", json={"id": a.id, "guests": 99})
        assert response.status_code == 400

    def test_split_and_undo(self, client, make_booking):
        a = make_booking((2030, 1, 10), (2030, 1, 15))

        split = client.post("/api/ical/split", json={"id": a.id, "split_date": "2030-01-12"})
        assert split.status_code == 200
        part_id = split.json()["bookings"][0]["id"]

        undo = client.post("/api/ical/undo-split", json={"id": part_id})
        assert undo.json()["deleted"] == 2

    def test_block_lifecycle(self, client):
        created = client.post("/api/ical/blocks", json={
            "property_name": "Apt 1", "start": "2030-01-10", "end": "2030-01-15"
        })
        block_id = created.json()["block"]["id"]

        updated = client.put(f"/api/ical/blocks/{block_id}", json={
            "start": "2030-01-11T12:00:00Z", "end": "2030-01-16T10:00:00Z", "reason": "Moved"
        })
        resolved = client.post(f"/api/ical/blocks/{block_id}/resolve-conflict")
        deleted = client.delete(f"/api/ical/blocks/{block_id}")

        assert updated.status_code == 200
        assert resolved.status_code == 200
        assert deleted.status_code == 200
        assert client.delete(f"/api/ical/blocks/{block_id}").status_code == 404

    def test_drift_resolution_of_block_is_400(self, client):
        created = client.post("/api/ical/blocks", json={
            "property_name": "Apt 1", "start": "2030-01-10", "end": "2030-01-15"
        })
        block_id = created.json()["block"]["id"]

        response = client.post("/api/ical/resolve-conflict", json={"manual_id": block_id, "decision": "remove"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_block_end_before_start_is_400(self, client):
        response = client.post("/api/ical/blocks", json={
            "property_name": "Apt 1", "start": "2030-01-15", "end": "2030-01-10"
        })
        assert response.status_code == 400


class TestSummaryRoutes:

    def test_range_summary(self, client, make_booking, make_property):
        make_property("Apt 1", cleaning_cost=120)
        make_booking((2030, 1, 10), (2030, 1, 15))

        response = client.get("/api/ical/summary", params={"from": "2030-01-01", "to": "2030-01-31"})

        assert response.status_code == 200
        assert response.json()["total"] == 120.0

    def test_bad_dates_are_400(self, client):
        assert client.get("/api/ical/summary", params={"from": "01/01/2030", "to": "2030-01-31"}).status_code == 400
        assert client.get("/api/ical/summary", params={"from": "2030-02-01", "to": "2030-01-31"}).status_code == 400

    def test_current_month(self, client):
        response = client.get("/api/ical/summary/current-month")
        assert response.status_code == 200
        assert response.json()["success"] is True


class TestExportRoutes:

    def test_export_unknown_token_is_404(self, client):
        assert client.get("/ical/export/not-a-token").status_code == 404

    def test_export_serves_calendar(self, client, db, make_property):
        prop = make_property("Apt 1")
        ManualEditService(db).create_block("Apt 1", datetime(2030, 1, 10), datetime(2030, 1, 12))

        response = client.get(f"/ical/export/{prop.export_token}")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/calendar")
        assert 'filename="Apt 1.ics"' in response.headers["content-disposition"]
        assert b"BEGIN:VEVENT" in response.content

    def test_export_non_latin_property_name(self, client, db, make_property):
        prop = make_property("Apartament Słoneczny")
        ManualEditService(db).create_block("Apartament Słoneczny", datetime(2030, 1, 10), datetime(2030, 1, 12))

        response = client.get(f"/ical/export/{prop.export_token}")

        assert response.status_code == 200
        assert "filename*=UTF-8''Apartament%20S%C5%82oneczny.ics" in response.headers["content-disposition"]
        assert b"BEGIN:VEVENT" in response.content

    def test_rotate_token(self, client, make_property):
        prop = make_property("Apt 1")
        old_token = prop.export_token

        response = client.post(f"/api/properties/{prop.id}/export-token")

        assert response.status_code == 200
        assert response.json()["export_token"] != old_token
        assert client.get(f"/ical/export/{old_token}").status_code == 404

    def test_rotate_unknown_property_is_404(self, client):
        assert client.post("/api/properties/missing/export-token").status_code == 404


class TestHealthRoutes:

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_ready(self, client):
        assert client.get("/health/ready").json()["status"] == "ready"

    def test_detailed(self, client):
        body = client.get("/health/detailed").json()
        assert body["checks"]["database"]["status"] == "up"
        assert "sync" in body["checks"]

    def test_request_id_echoed(self, client):
        response = client.get("/health/live", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"
