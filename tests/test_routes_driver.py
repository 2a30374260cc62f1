"""Tests for haulsync/routes/driver.py"""

import pytest

from haulsync.dependencies.auth import issue_access_token
from haulsync.models.company import ActivityLog


def _headers(user):
    return {"Authorization": f"Bearer {issue_access_token(user.id)}"}


@pytest.fixture
def on_trip(seed):
    company = seed.company()
    user = seed.user(company, role="driver")
    driver = seed.driver(company, user=user)
    trip = seed.trip(company, driver_id=driver.id, trip_number="TR-5")
    load = seed.load(company, load_number="LD-21")
    seed.attach(trip, load)
    return _headers(user), trip, load


class TestDriverIdentity:
    def test_staff_without_driver_profile(self, client, seed):
        staff = seed.user(seed.company())
        response = client.post("/api/driver/loads/1/accept", headers=_headers(staff))
        assert response.status_code == 403
        assert response.json() == {"error": "Driver profile not found"}

    def test_load_on_someone_elses_trip(self, client, seed, on_trip):
        _, _, load = on_trip
        other = seed.user(seed.company(), role="driver")
        seed.driver(seed.company(), user=other, first_name="Sam")
        response = client.post(f"/api/driver/loads/{load.id}/accept", headers=_headers(other))
        assert response.status_code == 404


class TestLoadRoutes:
    def test_full_delivery_over_http(self, client, db, on_trip):
        headers, _, load = on_trip
        base = f"/api/driver/loads/{load.id}"

        assert client.post(f"{base}/accept", headers=headers).json()["load"]["load_status"] == "accepted"
        assert client.post(f"{base}/start-loading", json={"starting_cuft": 0}, headers=headers).status_code == 200
        finished = client.post(f"{base}/finish-loading", json={"actual_cuft_loaded": 940}, headers=headers)
        assert finished.json()["load"]["actual_cuft_loaded"] == 940
        assert client.post(f"{base}/start-delivery", headers=headers).json()["load"]["load_status"] == "in_transit"
        delivered = client.post(
            f"{base}/complete-delivery",
            json={"amount_collected": 800, "payment_method": "cash"},
            headers=headers,
        )
        assert delivered.status_code == 200
        assert delivered.json()["load"]["load_status"] == "delivered"

        db.expire_all()
        assert db.query(ActivityLog).filter(ActivityLog.load_id == load.id).count() == 5

    def test_wrong_state_returns_error_envelope(self, client, on_trip):
        headers, _, load = on_trip
        response = client.post(f"/api/driver/loads/{load.id}/start-delivery", headers=headers)
        assert response.status_code == 400
        assert response.json() == {
            "error": 'Cannot start delivery - load must be loaded first (current status: "pending")'
        }

    def test_pickup_complete_needs_body(self, client, on_trip):
        headers, _, load = on_trip
        client.post(f"/api/driver/loads/{load.id}/accept", headers=headers)
        response = client.post(f"/api/driver/loads/{load.id}/pickup-complete", headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid input"


class TestTripRoutes:
    def test_start_check_complete(self, client, db, on_trip):
        headers, trip, load = on_trip
        base = f"/api/driver/trips/{trip.id}"

        started = client.post(f"{base}/start", json={"odometer_start": 42000}, headers=headers)
        assert started.json()["trip"]["status"] == "active"

        check = client.get(f"{base}/completion-check", headers=headers).json()
        assert check["canComplete"] is False
        assert "1 load(s) still pending delivery" in check["reasons"]

        blocked = client.post(f"{base}/complete", json={"odometer_end": 42600}, headers=headers)
        assert blocked.status_code == 400
        assert blocked.json()["reasons"] == ["1 load(s) still pending delivery"]

        load.load_status = "delivered"
        db.commit()
        done = client.post(f"{base}/complete", json={"odometer_end": 42600}, headers=headers)
        assert done.status_code == 200
        assert done.json()["trip"]["actual_miles"] == 600

    def test_completion_check_for_foreign_trip(self, client, seed, on_trip):
        headers, _, _ = on_trip
        foreign = seed.trip(seed.company())
        response = client.get(f"/api/driver/trips/{foreign.id}/completion-check", headers=headers)
        assert response.status_code == 404
