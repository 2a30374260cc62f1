"""Tests for haulsync/services/compliance.py"""

from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from haulsync.models.fleet import ComplianceAlert
from haulsync.services.compliance import (
    check_trip_assignment_compliance,
    driver_issues,
    expiry_message,
    generate_compliance_alerts,
    list_open_alerts,
    severity_for,
    vehicle_issues,
)

TODAY = date(2026, 3, 6)


def _in(days):
    return TODAY + timedelta(days=days)


def _truck(**kwargs):
    defaults = dict(
        id=1,
        unit_number="101",
        registration_expiry=None,
        inspection_expiry=None,
        insurance_expiry=None,
        permit_expiry=None,
    )
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


def _driver(**kwargs):
    defaults = dict(
        id=7,
        full_name="Dana Reyes",
        license_expiry=None,
        medical_card_expiry=None,
        twic_card_expiry=None,
    )
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


class TestSeverity:
    @pytest.mark.parametrize(
        "days,expected",
        [
            (None, "expired"),
            (-10, "expired"),
            (0, "expired"),
            (1, "critical"),
            (7, "critical"),
            (8, "urgent"),
            (14, "urgent"),
            (15, "warning"),
            (30, "warning"),
            (31, None),
        ],
    )
    def test_thresholds(self, days, expected):
        assert severity_for(days) == expected

    def test_messages(self):
        assert expiry_message("Registration", -3) == "Registration expired 3 days ago"
        assert expiry_message("Medical card", 12) == "Medical card expires in 12 days"


class TestIssues:
    def test_vehicle_issues_sorted_expired_first(self):
        truck = _truck(registration_expiry=_in(20), insurance_expiry=_in(-2), permit_expiry=_in(90))
        issues = vehicle_issues(truck, TODAY)
        assert [issue["type"] for issue in issues] == ["vehicle_insurance", "vehicle_registration"]
        assert issues[0]["severity"] == "expired"
        assert issues[0]["message"] == "Insurance expired 2 days ago"
        assert issues[0]["subjectName"] == "Truck 101"

    def test_untracked_documents_not_reported(self):
        assert vehicle_issues(_truck(), TODAY) == []

    def test_driver_issues(self):
        issues = driver_issues(_driver(medical_card_expiry=_in(5)), TODAY)
        assert len(issues) == 1
        assert issues[0]["type"] == "driver_medical_card"
        assert issues[0]["severity"] == "critical"
        assert issues[0]["subjectName"] == "Dana Reyes"


class TestTripCheck:
    def test_warnings_do_not_block(self):
        result = check_trip_assignment_compliance(
            driver=_driver(license_expiry=_in(20)), block_expired=True, today=TODAY
        )
        assert result["canProceed"] is True
        assert result["warnings"] == ["Dana Reyes: License expires in 20 days"]

    def test_expired_blocks_when_requested(self):
        driver = _driver(license_expiry=_in(-1))
        assert check_trip_assignment_compliance(driver=driver, block_expired=True, today=TODAY)["canProceed"] is False
        assert check_trip_assignment_compliance(driver=driver, block_expired=False, today=TODAY)["canProceed"] is True


class TestGenerateAlerts:
    def test_full_refresh(self, seed, db):
        company = seed.company()
        today = date.today()
        seed.truck(company, registration_expiry=today - timedelta(days=1))
        seed.trailer(company, inspection_expiry=today + timedelta(days=10))
        seed.driver(company, license_expiry=today + timedelta(days=200))
        seed.truck(company, status="inactive", insurance_expiry=today)

        first = generate_compliance_alerts(db, company.id)
        assert first["created"] == 2
        assert first["resolved"] == 0
        assert first["counts"] == {"expired": 1, "critical": 0, "urgent": 1, "warning": 0}

        second = generate_compliance_alerts(db, company.id)
        assert second["resolved"] == 2
        assert db.query(ComplianceAlert).filter(ComplianceAlert.is_resolved.is_(False)).count() == 2

        alerts = list_open_alerts(db, company.id)
        assert [alert["severity"] for alert in alerts] == ["expired", "urgent"]
        assert list_open_alerts(db, company.id, "urgent")[0]["subject_kind"] == "trailer"
