import os

os.environ["DATABASE_URL"] = "sqlite://"

from datetime import date  # noqa: E402

import pytest  # noqa: E402
import requests  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from haulsync.database import Base, SessionLocal, engine  # noqa: E402
from haulsync.main import app  # noqa: E402
from haulsync.models.company import Company, CompanyMembership, Profile  # noqa: E402
from haulsync.models.fleet import Driver, Trailer, Truck  # noqa: E402
from haulsync.models.load import Load  # noqa: E402
from haulsync.models.trip import Trip, TripLoad  # noqa: E402
from haulsync.services import geocoding  # noqa: E402


def _network_disabled(*args, **kwargs):
    raise requests.ConnectionError("network disabled in tests")


@pytest.fixture(autouse=True)
def _no_network(monkeypatch):
    """Zip lookups fall back to state centers; pushes come back as error tickets."""
    monkeypatch.setattr("haulsync.services.geocoding.requests.get", _network_disabled)
    monkeypatch.setattr("haulsync.services.push_notifications.requests.post", _network_disabled)
    geocoding.clear_cache()
    yield
    geocoding.clear_cache()


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    return TestClient(app)


class Seed:
    """Row builders with sensible defaults. Every builder commits."""

    def __init__(self, session):
        self.db = session
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def company(self, **kwargs) -> Company:
        n = self._next()
        defaults = dict(name=f"Company {n}", email=f"ops{n}@example.com", phone="555-0100")
        defaults.update(kwargs)
        return self._save(Company(**defaults))

    def user(self, company: Company | None = None, *, role: str = "dispatcher", **kwargs) -> Profile:
        n = self._next()
        defaults = dict(email=f"user{n}@example.com", full_name=f"User {n}")
        defaults.update(kwargs)
        profile = self._save(Profile(**defaults))
        if company is not None:
            self._save(
                CompanyMembership(user_id=profile.id, company_id=company.id, role=role, is_primary=True)
            )
        return profile

    def driver(self, company: Company, user: Profile | None = None, **kwargs) -> Driver:
        defaults = dict(
            company_id=company.id,
            user_id=user.id if user else None,
            first_name="Dana",
            last_name="Reyes",
            pay_mode="per_mile",
            rate_per_mile=0.60,
        )
        defaults.update(kwargs)
        return self._save(Driver(**defaults))

    def truck(self, company: Company, **kwargs) -> Truck:
        defaults = dict(company_id=company.id, unit_number=f"T-{self._next()}", cubic_capacity=2000)
        defaults.update(kwargs)
        return self._save(Truck(**defaults))

    def trailer(self, company: Company, **kwargs) -> Trailer:
        defaults = dict(company_id=company.id, unit_number=f"TR-{self._next()}", capacity_cuft=4000)
        defaults.update(kwargs)
        return self._save(Trailer(**defaults))

    def trip(self, company: Company, **kwargs) -> Trip:
        defaults = dict(
            company_id=company.id,
            trip_number=f"TR{100 + self._next()}",
            status="planned",
            origin_city="Chicago",
            origin_state="IL",
            destination_city="Dallas",
            destination_state="TX",
            start_date=date(2026, 3, 2),
        )
        defaults.update(kwargs)
        return self._save(Trip(**defaults))

    def load(self, company: Company, **kwargs) -> Load:
        defaults = dict(
            company_id=company.id,
            load_number=f"LD-{1000 + self._next()}",
            pickup_city="Chicago",
            pickup_state="IL",
            delivery_city="Dallas",
            delivery_state="TX",
            cubic_feet=1000,
            status="pending",
        )
        defaults.update(kwargs)
        return self._save(Load(**defaults))

    def attach(self, trip: Trip, load: Load, sequence_index: int = 0) -> TripLoad:
        load.trip_id = trip.id
        return self._save(TripLoad(trip_id=trip.id, load_id=load.id, sequence_index=sequence_index))


@pytest.fixture
def seed(db) -> Seed:
    return Seed(db)
