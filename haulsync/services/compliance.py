"""compliance.py

Document expiry checks for trucks, trailers and drivers.

Severity by days until expiry (today = 0):
  missing date or <= 0  expired
  <= 7                  critical
  <= 14                 urgent
  <= 30                 warning
Anything further out is not reported.

generate_compliance_alerts() is a full refresh: every open alert for the
company is resolved, then the current issues are inserted as new rows.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from haulsync.models.fleet import ComplianceAlert, Driver, Trailer, Truck

logger = logging.getLogger(__name__)

WARNING_WINDOW_DAYS = 30
SEVERITY_ORDER = {"expired": 0, "critical": 1, "urgent": 2, "warning": 3}

# (attribute, alert_type, label)
VEHICLE_DOCUMENTS = (
    ("registration_expiry", "vehicle_registration", "Registration"),
    ("inspection_expiry", "vehicle_inspection", "Annual inspection"),
    ("insurance_expiry", "vehicle_insurance", "Insurance"),
    ("permit_expiry", "vehicle_permit", "Permit"),
)
DRIVER_DOCUMENTS = (
    ("license_expiry", "driver_license", "License"),
    ("medical_card_expiry", "driver_medical_card", "Medical card"),
    ("twic_card_expiry", "driver_twic_card", "TWIC card"),
)


def severity_for(days_until: int | None) -> str | None:
    if days_until is None or days_until <= 0:
        return "expired"
    if days_until <= 7:
        return "critical"
    if days_until <= 14:
        return "urgent"
    if days_until <= WARNING_WINDOW_DAYS:
        return "warning"
    return None


def expiry_message(label: str, days_until: int | None) -> str:
    if days_until is None:
        return f"{label} expiry date not on file"
    if days_until <= 0:
        return f"{label} expired {abs(days_until)} days ago"
    return f"{label} expires in {days_until} days"


def _issues_for(
    subject: Any,
    *,
    subject_kind: str,
    subject_name: str,
    documents: tuple[tuple[str, str, str], ...],
    today: date,
) -> list[dict[str, Any]]:
    issues = []
    for attribute, alert_type, label in documents:
        expiry = getattr(subject, attribute, None)
        # Untracked documents are not reported
        if expiry is None:
            continue
        days = (expiry - today).days
        severity = severity_for(days)
        if severity is None:
            continue
        issues.append({
            "type": alert_type,
            "subjectKind": subject_kind,
            "subjectId": subject.id,
            "subjectName": subject_name,
            "expiryDate": expiry.isoformat(),
            "daysUntil": days,
            "severity": severity,
            "message": expiry_message(label, days),
        })
    return issues


def _sort(issues: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(
        issues,
        key=lambda issue: (
            SEVERITY_ORDER[issue["severity"]],
            issue["daysUntil"] if issue["daysUntil"] is not None else -10**6,
        ),
    )


def vehicle_issues(vehicle: Truck | Trailer, today: date | None = None) -> list[dict[str, Any]]:
    kind = "trailer" if isinstance(vehicle, Trailer) else "truck"
    return _sort(
        _issues_for(
            vehicle,
            subject_kind=kind,
            subject_name=f"{kind.title()} {vehicle.unit_number}",
            documents=VEHICLE_DOCUMENTS,
            today=today or date.today(),
        )
    )


def driver_issues(driver: Driver, today: date | None = None) -> list[dict[str, Any]]:
    return _sort(
        _issues_for(
            driver,
            subject_kind="driver",
            subject_name=driver.full_name,
            documents=DRIVER_DOCUMENTS,
            today=today or date.today(),
        )
    )


def company_compliance_issues(db: Session, company_id: int, today: date | None = None) -> list[dict[str, Any]]:
    today = today or date.today()
    issues: list[dict[str, Any]] = []
    for truck in db.query(Truck).filter(Truck.company_id == company_id, Truck.status == "active"):
        issues.extend(vehicle_issues(truck, today))
    for trailer in db.query(Trailer).filter(Trailer.company_id == company_id, Trailer.status == "active"):
        issues.extend(vehicle_issues(trailer, today))
    for driver in db.query(Driver).filter(Driver.company_id == company_id, Driver.status == "active"):
        issues.extend(driver_issues(driver, today))
    return _sort(issues)


def generate_compliance_alerts(db: Session, company_id: int, today: date | None = None) -> dict[str, Any]:
    issues = company_compliance_issues(db, company_id, today)
    now = datetime.now(timezone.utc)

    resolved = (
        db.query(ComplianceAlert)
        .filter(ComplianceAlert.company_id == company_id, ComplianceAlert.is_resolved.is_(False))
        .update({"is_resolved": True, "resolved_at": now}, synchronize_session=False)
    )
    for issue in issues:
        db.add(
            ComplianceAlert(
                company_id=company_id,
                alert_type=issue["type"],
                subject_kind=issue["subjectKind"],
                subject_id=issue["subjectId"],
                subject_name=issue["subjectName"],
                expiry_date=date.fromisoformat(issue["expiryDate"]) if issue["expiryDate"] else None,
                days_until_expiry=issue["daysUntil"],
                severity=issue["severity"],
                message=issue["message"],
            )
        )
    db.commit()

    counts = {severity: 0 for severity in SEVERITY_ORDER}
    for issue in issues:
        counts[issue["severity"]] += 1
    logger.info("compliance: company=%s resolved=%s created=%s", company_id, resolved, len(issues))
    return {"created": len(issues), "resolved": resolved, "counts": counts}


def list_open_alerts(db: Session, company_id: int, severity: str | None = None) -> list[dict[str, Any]]:
    query = db.query(ComplianceAlert).filter(
        ComplianceAlert.company_id == company_id,
        ComplianceAlert.is_resolved.is_(False),
    )
    if severity:
        query = query.filter(ComplianceAlert.severity == severity)
    rows = query.all()
    rows.sort(key=lambda row: (SEVERITY_ORDER.get(row.severity, 9), row.days_until_expiry or 0))
    return [
        {
            "id": row.id,
            "alert_type": row.alert_type,
            "subject_kind": row.subject_kind,
            "subject_id": row.subject_id,
            "subject_name": row.subject_name,
            "expiry_date": row.expiry_date.isoformat() if row.expiry_date else None,
            "days_until_expiry": row.days_until_expiry,
            "severity": row.severity,
            "message": row.message,
        }
        for row in rows
    ]


def check_trip_assignment_compliance(
    *,
    driver: Driver | None = None,
    truck: Truck | None = None,
    trailer: Trailer | None = None,
    block_expired: bool = False,
    today: date | None = None,
) -> dict[str, Any]:
    issues: list[dict[str, Any]] = []
    if truck is not None:
        issues.extend(vehicle_issues(truck, today))
    if trailer is not None:
        issues.extend(vehicle_issues(trailer, today))
    if driver is not None:
        issues.extend(driver_issues(driver, today))
    issues = _sort(issues)

    has_expired = any(issue["severity"] == "expired" for issue in issues)
    return {
        "canProceed": not (block_expired and has_expired),
        "issues": issues,
        "warnings": [f"{issue['subjectName']}: {issue['message']}" for issue in issues],
    }
