"""settlements.py

Driver settlement preview and trip financial totals.

Settlement rules (in order):
  1. Gross pay follows the driver's pay_mode (per_mile when unset). A
     breakdown line is produced for every component whose rate is > 0.
  2. Miles come from the odometer (end - start, 0 when end <= start). Cubic
     feet are the sum of actual_cuft_loaded. Revenue is the sum of load
     total_revenue.
  3. Days worked = (end_date - start_date) + 1, never below 1.
  4. Reimbursements: expenses the driver paid out of pocket.
     Collections: cash the driver collected on delivery.
  5. net = gross + reimbursements - collections, rounded half-up to cents.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from sqlalchemy.orm import Session

from haulsync.models.fleet import Driver
from haulsync.models.load import Load
from haulsync.models.trip import Trip, TripExpense, TripLoad

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

PAY_MODE_LABELS = {
    "per_mile": "Per Mile",
    "per_cuft": "Per Cubic Foot",
    "per_mile_and_cuft": "Per Mile + Cubic Foot",
    "percent_of_revenue": "Percent of Revenue",
    "flat_daily_rate": "Daily Rate",
}

DRIVER_PAID = {"driver_cash", "driver_card", "driver_personal"}
COMPANY_PAID = {"company_card", "fuel_card", "efs_card", "comdata"}


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value))


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _fmt_number(value: Decimal | float) -> str:
    number = float(value)
    return f"{number:,.0f}" if number == int(number) else f"{number:,.1f}"


def days_worked(start_date: date | None, end_date: date | None) -> int:
    if not start_date or not end_date:
        return 1
    return max(1, (end_date - start_date).days + 1)


def odometer_miles(trip: Trip) -> Decimal:
    start = _to_decimal(trip.odometer_start)
    end = _to_decimal(trip.odometer_end)
    return end - start if end > start else ZERO


def calculate_driver_pay(
    driver: Any,
    *,
    miles: Decimal,
    cuft: Decimal,
    revenue: Decimal,
    days: int,
) -> tuple[Decimal, list[dict[str, Any]]]:
    pay_mode = getattr(driver, "pay_mode", None) or "per_mile"
    rate_per_mile = _to_decimal(getattr(driver, "rate_per_mile", None))
    rate_per_cuft = _to_decimal(getattr(driver, "rate_per_cuft", None))
    percent = _to_decimal(getattr(driver, "percent_of_revenue", None))
    daily = _to_decimal(getattr(driver, "flat_daily_rate", None))

    items: list[dict[str, Any]] = []

    def add(label: str, calculation: str, amount: Decimal) -> None:
        items.append({"label": label, "calculation": calculation, "amount": float(_money(amount))})

    if pay_mode in ("per_mile", "per_mile_and_cuft") and rate_per_mile > 0:
        add("Per Mile", f"{_fmt_number(miles)} mi × ${rate_per_mile:.2f}/mi", miles * rate_per_mile)
    if pay_mode in ("per_cuft", "per_mile_and_cuft") and rate_per_cuft > 0:
        add("Per Cubic Foot", f"{_fmt_number(cuft)} cf × ${rate_per_cuft:.2f}/cf", cuft * rate_per_cuft)
    if pay_mode == "percent_of_revenue" and percent > 0:
        add("Percent of Revenue", f"{_fmt_number(percent)}% × ${revenue:,.2f}", revenue * percent / 100)
    if pay_mode == "flat_daily_rate" and daily > 0:
        add("Daily Rate", f"{days} day(s) × ${daily:.2f}/day", daily * days)

    gross = _money(sum((_to_decimal(item["amount"]) for item in items), ZERO))
    return gross, items


def _trip_loads(db: Session, trip_id: int) -> list[Load]:
    rows = (
        db.query(Load)
        .join(TripLoad, TripLoad.load_id == Load.id)
        .filter(TripLoad.trip_id == trip_id)
        .order_by(TripLoad.sequence_index.asc(), TripLoad.id.asc())
        .all()
    )
    return rows


def _trip_expenses(db: Session, trip_id: int) -> list[TripExpense]:
    return db.query(TripExpense).filter(TripExpense.trip_id == trip_id).order_by(TripExpense.id.asc()).all()


def build_settlement_preview(db: Session, trip: Trip) -> dict[str, Any]:
    driver = db.query(Driver).filter(Driver.id == trip.driver_id).first() if trip.driver_id else None
    if not driver:
        return {"success": False, "error": "Trip has no driver assigned"}

    loads = _trip_loads(db, trip.id)
    expenses = _trip_expenses(db, trip.id)

    miles = odometer_miles(trip)
    cuft = sum((_to_decimal(load.actual_cuft_loaded) for load in loads), ZERO)
    revenue = sum((_to_decimal(load.total_revenue) for load in loads), ZERO)
    days = days_worked(trip.start_date, trip.end_date)

    gross, breakdown = calculate_driver_pay(driver, miles=miles, cuft=cuft, revenue=revenue, days=days)

    reimbursements = [
        {
            "description": expense.expense_type or expense.description or "Expense",
            "category": expense.category,
            "paidBy": expense.paid_by,
            "amount": float(_money(_to_decimal(expense.amount))),
        }
        for expense in expenses
        if expense.paid_by in DRIVER_PAID
    ]
    collections = [
        {
            "loadNumber": load.load_number,
            "amount": float(_money(_to_decimal(load.amount_collected_on_delivery))),
            "method": load.payment_method or "cash",
        }
        for load in loads
        if _to_decimal(load.amount_collected_on_delivery) > 0
    ]

    total_reimbursements = _money(sum((_to_decimal(item["amount"]) for item in reimbursements), ZERO))
    total_collections = _money(sum((_to_decimal(item["amount"]) for item in collections), ZERO))
    net = _money(gross + total_reimbursements - total_collections)

    pay_mode = driver.pay_mode or "per_mile"
    return {
        "success": True,
        "tripId": trip.id,
        "tripNumber": trip.trip_number,
        "driver": {"id": driver.id, "name": driver.full_name},
        "payMode": pay_mode,
        "payModeLabel": PAY_MODE_LABELS.get(pay_mode, pay_mode),
        "grossPay": float(gross),
        "breakdown": breakdown,
        "reimbursements": reimbursements,
        "totalReimbursements": float(total_reimbursements),
        "collections": collections,
        "totalCollections": float(total_collections),
        "netPay": float(net),
        "metrics": {
            "actualMiles": float(miles),
            "totalCuft": float(cuft),
            "totalRevenue": float(_money(revenue)),
            "daysWorked": days,
        },
    }


def calculate_trip_totals(db: Session, trip: Trip) -> dict[str, Any]:
    loads = _trip_loads(db, trip.id)
    expenses = _trip_expenses(db, trip.id)
    driver = db.query(Driver).filter(Driver.id == trip.driver_id).first() if trip.driver_id else None

    miles = odometer_miles(trip)
    cuft = sum((_to_decimal(load.actual_cuft_loaded) for load in loads), ZERO)
    revenue = _money(sum((_to_decimal(load.total_revenue) for load in loads), ZERO))
    collected = _money(sum((_to_decimal(load.amount_collected_on_delivery) for load in loads), ZERO))

    driver_pay = ZERO
    if driver:
        driver_pay, _ = calculate_driver_pay(
            driver,
            miles=miles,
            cuft=cuft,
            revenue=revenue,
            days=days_worked(trip.start_date, trip.end_date),
        )

    company_expenses = _money(
        sum((_to_decimal(e.amount) for e in expenses if e.paid_by not in DRIVER_PAID), ZERO)
    )
    driver_expenses = _money(sum((_to_decimal(e.amount) for e in expenses if e.paid_by in DRIVER_PAID), ZERO))
    total_expenses = company_expenses + driver_expenses
    profit = _money(revenue - driver_pay - total_expenses)

    return {
        "tripId": trip.id,
        "revenue": float(revenue),
        "driverPay": float(driver_pay),
        "companyPaidExpenses": float(company_expenses),
        "driverPaidExpenses": float(driver_expenses),
        "totalExpenses": float(total_expenses),
        "profit": float(profit),
        "collectedOnDelivery": float(collected),
        "receivables": float(_money(revenue - collected)),
        "actualMiles": float(miles),
        "loadCount": len(loads),
    }
