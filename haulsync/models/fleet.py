from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from haulsync.database import Base


class Driver(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, unique=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(40), nullable=True)
    email = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="active", index=True)

    # per_mile|per_cuft|per_mile_and_cuft|percent_of_revenue|flat_daily_rate
    pay_mode = Column(String(30), nullable=False, default="per_mile")
    rate_per_mile = Column(Numeric(8, 2), nullable=True)
    rate_per_cuft = Column(Numeric(8, 2), nullable=True)
    percent_of_revenue = Column(Numeric(5, 2), nullable=True)
    flat_daily_rate = Column(Numeric(10, 2), nullable=True)

    license_number = Column(String(40), nullable=True)
    license_state = Column(String(2), nullable=True)
    license_expiry = Column(Date, nullable=True)
    medical_card_expiry = Column(Date, nullable=True)
    twic_card_expiry = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Truck(Base):
    __tablename__ = "trucks"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_number = Column(String(40), nullable=False)
    cubic_capacity = Column(Float, nullable=True)
    status = Column(String(20), nullable=False, default="active")
    registration_expiry = Column(Date, nullable=True)
    inspection_expiry = Column(Date, nullable=True)
    insurance_expiry = Column(Date, nullable=True)
    permit_expiry = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Trailer(Base):
    __tablename__ = "trailers"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_number = Column(String(40), nullable=False)
    capacity_cuft = Column(Float, nullable=True)
    status = Column(String(20), nullable=False, default="active")
    registration_expiry = Column(Date, nullable=True)
    inspection_expiry = Column(Date, nullable=True)
    insurance_expiry = Column(Date, nullable=True)
    permit_expiry = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ComplianceAlert(Base):
    __tablename__ = "compliance_alerts"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    alert_type = Column(String(40), nullable=False, index=True)  # e.g. vehicle_registration, driver_license
    subject_kind = Column(String(20), nullable=False)  # truck|trailer|driver
    subject_id = Column(Integer, nullable=False, index=True)
    subject_name = Column(String(255), nullable=True)
    expiry_date = Column(Date, nullable=True)
    days_until_expiry = Column(Integer, nullable=True)
    severity = Column(String(20), nullable=False, index=True)  # expired|critical|urgent|warning
    message = Column(Text, nullable=False)
    is_resolved = Column(Boolean, nullable=False, default=False, index=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
