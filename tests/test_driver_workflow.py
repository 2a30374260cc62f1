"""Tests for haulsync/services/driver_workflow.py"""

import pytest

from haulsync.models.company import ActivityLog
from haulsync.services.activity_log import log_activity
from haulsync.services.driver_workflow import (
    LOAD_NOT_FOUND,
    TRIP_NOT_FOUND,
    accept_load,
    check_trip_can_complete,
    complete_delivery,
    complete_trip,
    finish_loading,
    load_for_driver,
    pickup_complete,
    start_delivery,
    start_loading,
    start_trip,
    storage_complete,
)


@pytest.fixture
def assigned(seed):
    """A driver with one load on a trip assigned to them."""
    company = seed.company()
    driver = seed.driver(company)
    trip = seed.trip(company, driver_id=driver.id)
    load = seed.load(company, load_number="LD-7")
    seed.attach(trip, load)
    return driver, trip, load


# ── Access ────────────────────────────────────────────────────────────────────

class TestAccess:
    def test_load_on_assigned_trip(self, db, assigned):
        driver, trip, load = assigned
        assert load_for_driver(db, load.id, driver) == (load, trip)

    def test_join_table_only(self, seed, db):
        company = seed.company()
        driver = seed.driver(company)
        trip = seed.trip(company, driver_id=driver.id)
        load = seed.load(company)
        seed.attach(trip, load)
        load.trip_id = None
        db.commit()
        assert load_for_driver(db, load.id, driver) == (load, trip)

    def test_other_driver_gets_not_found(self, seed, db, assigned):
        _, _, load = assigned
        stranger = seed.driver(seed.company(), first_name="Sam")
        result = accept_load(db, driver=stranger, load_id=load.id)
        assert result == {"success": False, "error": LOAD_NOT_FOUND, "status_code": 404}

    def test_missing_load(self, db, assigned):
        driver, _, _ = assigned
        assert accept_load(db, driver=driver, load_id=9999)["status_code"] == 404


# ── Load transitions ──────────────────────────────────────────────────────────

class TestLoadPath:
    def test_full_path_with_activity(self, db, assigned):
        driver, trip, load = assigned

        assert accept_load(db, driver=driver, load_id=load.id)["load"]["load_status"] == "accepted"
        assert start_loading(db, driver=driver, load_id=load.id, starting_cuft=100)["load"]["load_status"] == "loading"
        finished = finish_loading(db, driver=driver, load_id=load.id, ending_cuft=1350)
        assert finished["load"]["actual_cuft_loaded"] == 1250
        assert start_delivery(db, driver=driver, load_id=load.id)["load"]["load_status"] == "in_transit"
        delivered = complete_delivery(db, driver=driver, load_id=load.id, amount_collected=1500, payment_method="zelle")
        assert delivered["load"]["load_status"] == "delivered"
        assert delivered["load"]["amount_collected_on_delivery"] == 1500.0

        db.expire_all()
        assert load.status == "delivered"
        types = [row.activity_type for row in db.query(ActivityLog).order_by(ActivityLog.id)]
        assert types == ["load_accepted", "loading_started", "loading_finished", "delivery_started", "delivery_completed"]
        entries = {row.activity_type: row for row in db.query(ActivityLog)}
        assert entries["load_accepted"].title == "Dana Reyes accepted load LD-7"
        assert entries["loading_finished"].description == "1,250 CF loaded"
        assert entries["delivery_completed"].description == "Collected $1,500.00 (zelle)"
        assert entries["delivery_completed"].trip_id == trip.id

    def test_rejection_names_current_status(self, db, assigned):
        driver, _, load = assigned
        result = start_delivery(db, driver=driver, load_id=load.id)
        assert result["status_code"] == 400
        assert result["error"] == 'Cannot start delivery - load must be loaded first (current status: "pending")'

    def test_cannot_accept_twice(self, db, assigned):
        driver, _, load = assigned
        accept_load(db, driver=driver, load_id=load.id)
        assert accept_load(db, driver=driver, load_id=load.id)["error"] == 'Cannot accept load - current status is "accepted"'

    def test_finish_loading_below_start(self, db, assigned):
        driver, _, load = assigned
        accept_load(db, driver=driver, load_id=load.id)
        start_loading(db, driver=driver, load_id=load.id, starting_cuft=500)
        result = finish_loading(db, driver=driver, load_id=load.id, ending_cuft=400)
        assert result["error"] == "Ending cubic feet cannot be less than starting cubic feet"

    def test_pickup_complete_shortcut(self, db, assigned):
        driver, _, load = assigned
        accept_load(db, driver=driver, load_id=load.id)
        assert pickup_complete(db, driver=driver, load_id=load.id, actual_cuft_loaded=0)["error"] == (
            "Actual cubic feet loaded must be greater than 0"
        )
        result = pickup_complete(db, driver=driver, load_id=load.id, actual_cuft_loaded=900)
        assert result["load"]["load_status"] == "loaded"
        assert result["load"]["loading_started_at"] is not None

    def test_storage_from_loaded(self, db, assigned):
        driver, _, load = assigned
        load.load_status = "loaded"
        db.commit()
        result = storage_complete(db, driver=driver, load_id=load.id, storage_location="Bay 4")
        assert result["load"]["load_status"] == "storage_completed"
        db.expire_all()
        assert load.storage_location == "Bay 4"

    def test_bad_payment_method(self, db, assigned):
        driver, _, load = assigned
        load.load_status = "in_transit"
        db.commit()
        result = complete_delivery(db, driver=driver, load_id=load.id, payment_method="bitcoin")
        assert result["error"].startswith("payment_method must be one of:")


# ── Trips ─────────────────────────────────────────────────────────────────────

class TestTripPath:
    def test_start_requires_odometer(self, db, assigned):
        driver, trip, _ = assigned
        assert start_trip(db, driver=driver, trip_id=trip.id, odometer_start=None)["error"] == (
            "Odometer start reading is required"
        )
        started = start_trip(db, driver=driver, trip_id=trip.id, odometer_start=120000)
        assert started["trip"]["status"] == "active"
        again = start_trip(db, driver=driver, trip_id=trip.id, odometer_start=120000)
        assert again["error"] == 'Cannot start trip - trip must be planned (current status: "active")'

    def test_other_driver_trip(self, seed, db, assigned):
        _, trip, _ = assigned
        stranger = seed.driver(seed.company())
        assert start_trip(db, driver=stranger, trip_id=trip.id, odometer_start=1)["error"] == TRIP_NOT_FOUND

    def test_completion_check_lists_every_reason(self, db, assigned):
        _, trip, _ = assigned
        check = check_trip_can_complete(db, trip)
        assert check == {
            "canComplete": False,
            "reasons": [
                "Trip is planned, must be active to complete",
                "1 load(s) still pending delivery",
                "Please enter odometer end reading first",
            ],
            "loadCount": 1,
        }

    def test_complete_blocked_keeps_odometer_unsaved(self, db, assigned):
        driver, trip, _ = assigned
        start_trip(db, driver=driver, trip_id=trip.id, odometer_start=1000)
        result = complete_trip(db, driver=driver, trip_id=trip.id, odometer_end=1500)
        assert result["success"] is False
        assert result["reasons"] == ["1 load(s) still pending delivery"]
        db.expire_all()
        assert trip.odometer_end is None

    def test_odometer_must_increase(self, db, assigned):
        driver, trip, _ = assigned
        start_trip(db, driver=driver, trip_id=trip.id, odometer_start=1000)
        result = complete_trip(db, driver=driver, trip_id=trip.id, odometer_end=900)
        assert result["error"] == "Odometer end reading must be greater than the start reading"

    def test_complete(self, db, assigned):
        driver, trip, load = assigned
        start_trip(db, driver=driver, trip_id=trip.id, odometer_start=1000)
        load.load_status = "delivered"
        db.commit()

        result = complete_trip(db, driver=driver, trip_id=trip.id, odometer_end=1850, notes="Clean run")
        assert result["trip"]["status"] == "completed"
        assert result["trip"]["actual_miles"] == 850
        last = db.query(ActivityLog).order_by(ActivityLog.id.desc()).first()
        assert last.activity_type == "trip_completed"
        assert last.description == "850 miles • 1 load(s) delivered"


class TestActivityLog:
    def test_failed_insert_returns_false(self, db):
        assert log_activity(db, company_id=None, activity_type="x", title="broken") is False
