from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from haulsync.database import Base

JSONType = JSON().with_variant(JSONB, "postgresql")


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    dot_number = Column(String(20), nullable=True, index=True)
    mc_number = Column(String(20), nullable=True, index=True)
    phone = Column(String(40), nullable=True)
    email = Column(String(255), nullable=True)
    trust_level = Column(String(20), nullable=False, default="cod_required")  # trusted|cod_required

    public_board_enabled = Column(Boolean, nullable=False, default=True)
    public_board_slug = Column(String(50), unique=True, nullable=True, index=True)
    public_board_show_rates = Column(Boolean, nullable=False, default=True)
    public_board_show_contact = Column(Boolean, nullable=False, default=True)
    public_board_require_auth_to_claim = Column(Boolean, nullable=False, default=True)
    public_board_custom_message = Column(Text, nullable=True)
    public_board_logo_url = Column(String(2000), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(40), nullable=True)

    is_admin = Column(Boolean, nullable=False, default=False)
    permission_preset = Column(String(30), nullable=True)
    can_post_pickups = Column(Boolean, nullable=False, default=False)
    can_post_loads = Column(Boolean, nullable=False, default=False)
    can_manage_carrier_requests = Column(Boolean, nullable=False, default=False)
    can_manage_drivers = Column(Boolean, nullable=False, default=False)
    can_manage_vehicles = Column(Boolean, nullable=False, default=False)
    can_manage_trips = Column(Boolean, nullable=False, default=False)
    can_manage_loads = Column(Boolean, nullable=False, default=False)
    can_view_financials = Column(Boolean, nullable=False, default=False)
    can_manage_settlements = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CompanyMembership(Base):
    __tablename__ = "company_memberships"
    __table_args__ = (UniqueConstraint("user_id", "company_id", name="uq_company_memberships_user_company"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(30), nullable=False, default="member")
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CompanyPartnership(Base):
    __tablename__ = "company_partnerships"
    __table_args__ = (UniqueConstraint("company_a_id", "company_b_id", name="uq_company_partnerships_pair"),)

    id = Column(Integer, primary_key=True, index=True)
    company_a_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    company_b_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CompanyMatchingSettings(Base):
    __tablename__ = "company_matching_settings"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    min_profit_per_mile = Column(Numeric(6, 2), nullable=False, default=1.00)
    max_deadhead_miles = Column(Integer, nullable=False, default=150)
    min_match_score = Column(Integer, nullable=False, default=50)
    preferred_return_states = Column(JSONType, nullable=False, default=list)
    excluded_states = Column(JSONType, nullable=False, default=list)
    min_capacity_utilization_percent = Column(Integer, nullable=False, default=30)
    max_capacity_utilization_percent = Column(Integer, nullable=False, default=100)
    notification_preference = Column(String(30), nullable=False, default="dashboard_only")
    auto_post_capacity_enabled = Column(Boolean, nullable=False, default=False)
    auto_post_min_capacity_cuft = Column(Integer, nullable=False, default=500)
    default_location_sharing = Column(Boolean, nullable=False, default=False)
    default_capacity_visibility = Column(String(20), nullable=False, default="private")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ActivityLog(Base):
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True, index=True)
    actor_name = Column(String(255), nullable=True)
    activity_type = Column(String(40), nullable=False, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="SET NULL"), nullable=True, index=True)
    load_id = Column(Integer, ForeignKey("loads.id", ondelete="SET NULL"), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    activity_metadata = Column("metadata", JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
