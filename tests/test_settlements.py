"""Tests for haulsync/services/settlements.py and settlement_export.py"""

import csv
import io
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from haulsync.models.trip import TripExpense
from haulsync.services.settlement_export import settlement_csv, settlement_filename, settlement_pdf
from haulsync.services.settlements import (
    build_settlement_preview,
    calculate_driver_pay,
    calculate_trip_totals,
    days_worked,
)


@pytest.fixture
def finished_trip(seed, db):
    company = seed.company()
    driver = seed.driver(company, pay_mode="per_mile_and_cuft", rate_per_mile=0.60, rate_per_cuft=0.25)
    trip = seed.trip(
        company,
        driver_id=driver.id,
        trip_number="TR-88",
        odometer_start=1000,
        odometer_end=1850,
        start_date=date(2026, 3, 2),
        end_date=date(2026, 3, 5),
    )
    first = seed.load(
        company,
        load_number="LD-1",
        actual_cuft_loaded=1200,
        total_revenue=5000,
        amount_collected_on_delivery=1500,
        payment_method="cash",
    )
    second = seed.load(company, load_number="LD-2", actual_cuft_loaded=800, total_revenue=3000)
    seed.attach(trip, first, 0)
    seed.attach(trip, second, 1)
    db.add_all([
        TripExpense(trip_id=trip.id, category="fuel", expense_type="Diesel", amount=400, paid_by="company_card"),
        TripExpense(trip_id=trip.id, category="tolls", expense_type="Tolls", amount=45.50, paid_by="driver_cash"),
        TripExpense(trip_id=trip.id, category="lumper", description="Lumper", amount=120, paid_by="driver_card"),
    ])
    db.commit()
    return trip


class TestDaysWorked:
    @pytest.mark.parametrize(
        "start,end,expected",
        [
            (date(2026, 3, 2), date(2026, 3, 5), 4),
            (date(2026, 3, 2), date(2026, 3, 2), 1),
            (date(2026, 3, 5), date(2026, 3, 2), 1),
            (None, date(2026, 3, 2), 1),
        ],
    )
    def test_inclusive_with_floor(self, start, end, expected):
        assert days_worked(start, end) == expected


class TestDriverPay:
    def _pay(self, **driver):
        return calculate_driver_pay(
            SimpleNamespace(**driver), miles=Decimal("850"), cuft=Decimal("2000"), revenue=Decimal("8000"), days=4
        )

    def test_per_mile_is_default(self):
        gross, items = self._pay(pay_mode=None, rate_per_mile=0.5)
        assert gross == Decimal("425.00")
        assert items == [{"label": "Per Mile", "calculation": "850 mi × $0.50/mi", "amount": 425.0}]

    def test_percent_of_revenue(self):
        gross, items = self._pay(pay_mode="percent_of_revenue", percent_of_revenue=30)
        assert gross == Decimal("2400.00")
        assert items[0]["calculation"] == "30% × $8,000.00"

    def test_flat_daily(self):
        gross, items = self._pay(pay_mode="flat_daily_rate", flat_daily_rate=250)
        assert gross == Decimal("1000.00")
        assert items[0]["calculation"] == "4 day(s) × $250.00/day"

    def test_zero_rates_produce_no_lines(self):
        gross, items = self._pay(pay_mode="per_mile_and_cuft", rate_per_mile=0, rate_per_cuft=None)
        assert gross == Decimal("0.00")
        assert items == []


class TestSettlementPreview:
    def test_preview(self, db, finished_trip):
        preview = build_settlement_preview(db, finished_trip)
        assert preview["success"] is True
        assert preview["payModeLabel"] == "Per Mile + Cubic Foot"
        assert [item["calculation"] for item in preview["breakdown"]] == [
            "850 mi × $0.60/mi",
            "2,000 cf × $0.25/cf",
        ]
        assert preview["grossPay"] == 1010.0
        assert [item["description"] for item in preview["reimbursements"]] == ["Tolls", "Lumper"]
        assert preview["totalReimbursements"] == 165.5
        assert preview["collections"] == [{"loadNumber": "LD-1", "amount": 1500.0, "method": "cash"}]
        assert preview["netPay"] == -324.5
        assert preview["metrics"] == {
            "actualMiles": 850.0,
            "totalCuft": 2000.0,
            "totalRevenue": 8000.0,
            "daysWorked": 4,
        }

    def test_requires_driver(self, seed, db):
        trip = seed.trip(seed.company())
        assert build_settlement_preview(db, trip) == {"success": False, "error": "Trip has no driver assigned"}

    def test_odometer_rollback_counts_zero_miles(self, seed, db):
        company = seed.company()
        driver = seed.driver(company)
        trip = seed.trip(company, driver_id=driver.id, odometer_start=5000, odometer_end=4000)
        preview = build_settlement_preview(db, trip)
        assert preview["metrics"]["actualMiles"] == 0.0
        assert preview["grossPay"] == 0.0


class TestTripTotals:
    def test_totals(self, db, finished_trip):
        totals = calculate_trip_totals(db, finished_trip)
        assert totals["revenue"] == 8000.0
        assert totals["driverPay"] == 1010.0
        assert totals["companyPaidExpenses"] == 400.0
        assert totals["driverPaidExpenses"] == 165.5
        assert totals["totalExpenses"] == 565.5
        assert totals["profit"] == 6424.5
        assert totals["collectedOnDelivery"] == 1500.0
        assert totals["receivables"] == 6500.0
        assert totals["loadCount"] == 2

    def test_without_driver(self, seed, db):
        trip = seed.trip(seed.company())
        assert calculate_trip_totals(db, trip)["driverPay"] == 0.0


class TestExport:
    def test_csv(self, db, finished_trip):
        preview = build_settlement_preview(db, finished_trip)
        rows = list(csv.reader(io.StringIO(settlement_csv(preview))))
        assert rows[0] == ["section", "description", "detail", "amount"]
        assert rows[1] == ["driver", "Dana Reyes", "Per Mile + Cubic Foot", ""]
        assert ["earnings", "Gross pay", "", "1010.00"] in rows
        assert ["collection", "LD-1", "cash", "-1500.00"] in rows
        assert rows[-1] == ["total", "Net pay", "", "-324.50"]

    def test_pdf(self, db, finished_trip):
        preview = build_settlement_preview(db, finished_trip)
        pdf = settlement_pdf(preview, company_name="Acme Van Lines")
        assert pdf.startswith(b"%PDF")
        assert settlement_filename(preview, "pdf") == "settlement-trip-TR-88.pdf"
