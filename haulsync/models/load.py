import secrets

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from haulsync.database import Base


def new_public_token() -> str:
    return secrets.token_urlsafe(16)


class Load(Base):
    __tablename__ = "loads"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    posted_by_company_id = Column(Integer, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True, index=True)
    assigned_carrier_id = Column(Integer, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="SET NULL"), nullable=True, index=True)
    load_number = Column(String(40), nullable=True, index=True)
    posting_type = Column(String(20), nullable=False, default="load")  # load|pickup
    load_subtype = Column(String(20), nullable=True)  # live|rfd
    description = Column(Text, nullable=True)

    pickup_city = Column(String(120), nullable=True)
    pickup_state = Column(String(2), nullable=True)
    pickup_zip = Column(String(10), nullable=True)
    delivery_city = Column(String(120), nullable=True)
    delivery_state = Column(String(2), nullable=True)
    delivery_zip = Column(String(10), nullable=True)
    pickup_date = Column(Date, nullable=True, index=True)
    pickup_window_start = Column(Date, nullable=True)
    pickup_window_end = Column(Date, nullable=True)
    delivery_date = Column(Date, nullable=True)

    cubic_feet = Column(Float, nullable=True)
    cubic_feet_estimate = Column(Float, nullable=True)
    remaining_cf = Column(Float, nullable=True)
    rate_per_cuft = Column(Numeric(10, 2), nullable=True)
    total_rate = Column(Numeric(12, 2), nullable=True)
    linehaul_amount = Column(Numeric(12, 2), nullable=True)
    balance_due = Column(Numeric(12, 2), nullable=True)
    total_revenue = Column(Numeric(12, 2), nullable=True)

    # Carrier-side contract and delivery balance
    contract_rate_per_cuft = Column(Numeric(10, 2), nullable=True)
    contract_accessorials_total = Column(Numeric(12, 2), nullable=True)
    balance_due_on_delivery = Column(Numeric(12, 2), nullable=True)
    remaining_balance_for_delivery = Column(Numeric(12, 2), nullable=True)
    balance_adjusted = Column(Boolean, nullable=False, default=False)
    balance_adjusted_reason = Column(Text, nullable=True)
    cod_received = Column(Boolean, nullable=False, default=False)
    company_approved_exception = Column(Boolean, nullable=False, default=False)

    # Key for the public load page; the integer id is never accepted there
    public_token = Column(String(32), unique=True, nullable=True, index=True, default=new_public_token)
    is_marketplace_visible = Column(Boolean, nullable=False, default=False, index=True)
    posting_status = Column(String(20), nullable=True, index=True)  # draft|posted|claimed
    posted_to_marketplace_at = Column(DateTime(timezone=True), nullable=True)
    is_open_to_counter = Column(Boolean, nullable=False, default=False)
    carrier_rate = Column(Numeric(12, 2), nullable=True)
    carrier_rate_type = Column(String(20), nullable=True)  # per_cuft|flat
    carrier_assigned_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)

    # Driver workflow: pending|accepted|loading|loaded|in_transit|delivered|storage_completed
    load_status = Column(String(20), nullable=True, index=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    loading_started_at = Column(DateTime(timezone=True), nullable=True)
    starting_cuft = Column(Float, nullable=True)
    loading_finished_at = Column(DateTime(timezone=True), nullable=True)
    ending_cuft = Column(Float, nullable=True)
    actual_cuft_loaded = Column(Float, nullable=True)
    delivery_started_at = Column(DateTime(timezone=True), nullable=True)
    delivery_finished_at = Column(DateTime(timezone=True), nullable=True)
    amount_collected_on_delivery = Column(Numeric(12, 2), nullable=True)
    payment_method = Column(String(20), nullable=True)
    delivery_notes = Column(Text, nullable=True)
    storage_location = Column(String(255), nullable=True)

    rfd_date = Column(Date, nullable=True, index=True)
    rfd_date_tbd = Column(Boolean, nullable=False, default=False)
    rfd_delivery_deadline = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class BalanceDispute(Base):
    __tablename__ = "load_balance_disputes"

    id = Column(Integer, primary_key=True, index=True)
    load_id = Column(Integer, ForeignKey("loads.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="SET NULL"), nullable=True)
    original_balance = Column(Numeric(12, 2), nullable=True)
    driver_note = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending|resolved
    resolution_type = Column(String(30), nullable=True)  # confirmed_zero|balance_updated|cancelled
    new_balance = Column(Numeric(12, 2), nullable=True)
    resolution_note = Column(Text, nullable=True)
    resolved_by_id = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
