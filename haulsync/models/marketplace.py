from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from haulsync.database import Base


class LoadSuggestion(Base):
    __tablename__ = "load_suggestions"
    __table_args__ = (UniqueConstraint("trip_id", "load_id", name="uq_load_suggestions_trip_load"),)

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    load_id = Column(Integer, ForeignKey("loads.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    # partner_load|high_profit|backhaul|capacity_fit|near_delivery
    match_type = Column(String(20), nullable=False)
    match_score = Column(Integer, nullable=False)
    proximity_score = Column(Integer, nullable=False, default=0)
    profit_score = Column(Integer, nullable=False, default=0)
    capacity_score = Column(Integer, nullable=False, default=0)
    route_score = Column(Integer, nullable=False, default=0)
    partner_score = Column(Integer, nullable=False, default=0)
    deadhead_miles = Column(Float, nullable=True)
    loaded_miles = Column(Float, nullable=True)
    estimated_revenue = Column(Numeric(12, 2), nullable=True)
    estimated_cost = Column(Numeric(12, 2), nullable=True)
    estimated_profit = Column(Numeric(12, 2), nullable=True)
    profit_per_mile = Column(Numeric(8, 2), nullable=True)
    capacity_utilization = Column(Float, nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending|viewed|dismissed|accepted
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ShareAnalytics(Base):
    __tablename__ = "share_analytics"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    load_id = Column(Integer, ForeignKey("loads.id", ondelete="SET NULL"), nullable=True, index=True)
    event_type = Column(String(30), nullable=False, index=True)  # public_view|load_view|claim_click|claim_submitted|share_generated
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class LoadRequest(Base):
    """A carrier's bid on a marketplace load."""

    __tablename__ = "load_requests"

    id = Column(Integer, primary_key=True, index=True)
    load_id = Column(Integer, ForeignKey("loads.id", ondelete="CASCADE"), nullable=False, index=True)
    carrier_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by_id = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    request_type = Column(String(20), nullable=False, default="accept_listed")  # accept_listed|counter_offer
    is_partner = Column(Boolean, nullable=False, default=False)
    accepted_company_rate = Column(Boolean, nullable=False, default=True)
    offered_rate = Column(Numeric(12, 2), nullable=True)
    offered_rate_type = Column(String(20), nullable=False, default="per_cuft")
    message = Column(Text, nullable=True)
    proposed_load_date_start = Column(Date, nullable=True)
    proposed_load_date_end = Column(Date, nullable=True)
    proposed_delivery_date_start = Column(Date, nullable=True)
    proposed_delivery_date_end = Column(Date, nullable=True)
    # pending|accepted|declined|withdrawn
    status = Column(String(20), nullable=False, default="pending", index=True)
    final_rate = Column(Numeric(12, 2), nullable=True)
    final_rate_type = Column(String(20), nullable=True)
    creates_partnership = Column(Boolean, nullable=False, default=False)
    response_message = Column(Text, nullable=True)
    responded_by_id = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
