from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from haulsync.database import Base


class Trip(Base):
    __tablename__ = "trips"
    __table_args__ = (UniqueConstraint("company_id", "trip_number", name="uq_trips_company_trip_number"),)

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    trip_number = Column(String(40), nullable=True, index=True)
    driver_id = Column(Integer, ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True, index=True)
    truck_id = Column(Integer, ForeignKey("trucks.id", ondelete="SET NULL"), nullable=True)
    trailer_id = Column(Integer, ForeignKey("trailers.id", ondelete="SET NULL"), nullable=True)
    # planned|active|en_route|completed|settled|cancelled
    status = Column(String(20), nullable=False, default="planned", index=True)

    origin_city = Column(String(120), nullable=True)
    origin_state = Column(String(2), nullable=True)
    origin_zip = Column(String(10), nullable=True)
    destination_city = Column(String(120), nullable=True)
    destination_state = Column(String(2), nullable=True)
    destination_zip = Column(String(10), nullable=True)
    return_state = Column(String(2), nullable=True)

    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    odometer_start = Column(Float, nullable=True)
    odometer_end = Column(Float, nullable=True)
    actual_miles = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    completion_notes = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class TripLoad(Base):
    __tablename__ = "trip_loads"
    __table_args__ = (UniqueConstraint("trip_id", "load_id", name="uq_trip_loads_trip_load"),)

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    load_id = Column(Integer, ForeignKey("loads.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TripExpense(Base):
    __tablename__ = "trip_expenses"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    # fuel|tolls|driver_pay|lumper|parking|maintenance|other
    category = Column(String(30), nullable=False, default="other")
    expense_type = Column(String(60), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    # company_card|fuel_card|efs_card|comdata|driver_cash|driver_card|driver_personal
    paid_by = Column(String(30), nullable=True)
    description = Column(Text, nullable=True)
    incurred_on = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
