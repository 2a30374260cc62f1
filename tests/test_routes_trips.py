"""Tests for haulsync/routes/trips.py and haulsync/routes/matching.py"""

from datetime import date, timedelta

import pytest

from haulsync.core.config import settings
from haulsync.dependencies.auth import issue_access_token


def _headers(user):
    return {"Authorization": f"Bearer {issue_access_token(user.id)}"}


@pytest.fixture
def carrier(seed):
    company = seed.company(name="Northline Movers")
    dispatcher = seed.user(company, can_manage_trips=True)
    accountant = seed.user(company, role="accountant", can_view_financials=True)
    return company, dispatcher, accountant


# ── Auth ──────────────────────────────────────────────────────────────────────

class TestAuth:
    def test_missing_identity(self, client, carrier):
        company, _, _ = carrier
        response = client.get("/api/trips/1/matches")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_unknown_user_id(self, client, carrier):
        response = client.get("/api/trips/1/matches", headers={"Authorization": f"Bearer {issue_access_token(99999)}"})
        assert response.status_code == 401

    def test_bare_user_id_header_is_not_identity(self, client, carrier):
        _, dispatcher, _ = carrier
        response = client.get("/api/me/permissions", headers={"X-User-Id": str(dispatcher.id)})
        assert response.status_code == 401

    def test_tampered_token(self, client, carrier):
        _, dispatcher, _ = carrier
        token = issue_access_token(dispatcher.id)
        forged = token.rsplit(".", 1)[0] + ".bm90LWEtcmVhbC1zaWduYXR1cmU"
        response = client.get("/api/me/permissions", headers={"Authorization": f"Bearer {forged}"})
        assert response.status_code == 401

    def test_token_signed_with_other_secret(self, client, carrier, monkeypatch):
        _, dispatcher, _ = carrier
        monkeypatch.setattr(settings, "SESSION_SECRET_KEY", "some-other-secret")
        forged = issue_access_token(dispatcher.id)
        monkeypatch.undo()
        response = client.get("/api/me/permissions", headers={"Authorization": f"Bearer {forged}"})
        assert response.status_code == 401

    def test_expired_token(self, client, carrier, monkeypatch):
        _, dispatcher, _ = carrier
        monkeypatch.setattr(settings, "ACCESS_TOKEN_MAX_AGE_SECONDS", -1)
        response = client.get("/api/me/permissions", headers=_headers(dispatcher))
        assert response.status_code == 401

    def test_issued_token_identifies_caller(self, client, carrier):
        _, dispatcher, _ = carrier
        issued = client.post("/api/me/token", headers=_headers(dispatcher)).json()
        assert issued["tokenType"] == "bearer"
        headers = {"Authorization": f"Bearer {issued['accessToken']}"}
        assert client.get("/api/me/permissions", headers=headers).json()["userId"] == dispatcher.id

    def test_user_without_company(self, client, seed):
        loner = seed.user()
        response = client.get("/api/trips/1/matches", headers=_headers(loner))
        assert response.status_code == 400
        assert response.json() == {"error": "No company found"}

    def test_foreign_trip_is_not_found(self, client, seed, carrier):
        _, dispatcher, _ = carrier
        other_trip = seed.trip(seed.company())
        response = client.get(f"/api/trips/{other_trip.id}/matches", headers=_headers(dispatcher))
        assert response.status_code == 404
        assert response.json() == {"error": "Trip not found"}


# ── Financials ────────────────────────────────────────────────────────────────

class TestFinancials:
    @pytest.mark.parametrize(
        "path",
        ["financials", "settlement-preview", "settlement.csv", "settlement.pdf"],
    )
    def test_requires_financial_permission(self, client, seed, carrier, path):
        company, dispatcher, _ = carrier
        trip = seed.trip(company)
        response = client.get(f"/api/trips/{trip.id}/{path}", headers=_headers(dispatcher))
        assert response.status_code == 403
        assert response.json() == {"error": "Permission denied"}

    def test_admin_passes_every_gate(self, client, seed, carrier):
        company, _, _ = carrier
        admin = seed.user(company, is_admin=True)
        trip = seed.trip(company)
        assert client.get(f"/api/trips/{trip.id}/financials", headers=_headers(admin)).status_code == 200

    def test_preview_without_driver(self, client, seed, carrier):
        company, _, accountant = carrier
        trip = seed.trip(company)
        response = client.get(f"/api/trips/{trip.id}/settlement-preview", headers=_headers(accountant))
        assert response.status_code == 400
        assert response.json() == {"error": "Trip has no driver assigned"}

    def test_exports(self, client, seed, carrier):
        company, _, accountant = carrier
        driver = seed.driver(company)
        trip = seed.trip(
            company,
            driver_id=driver.id,
            trip_number="TR-51",
            odometer_start=500,
            odometer_end=900,
            end_date=date(2026, 3, 3),
        )
        seed.attach(trip, seed.load(company, actual_cuft_loaded=900, total_revenue=2500))

        csv_response = client.get(f"/api/trips/{trip.id}/settlement.csv", headers=_headers(accountant))
        assert csv_response.status_code == 200
        assert csv_response.headers["content-type"].startswith("text/csv")
        assert 'filename="settlement-trip-TR-51.csv"' in csv_response.headers["content-disposition"]

        pdf_response = client.get(f"/api/trips/{trip.id}/settlement.pdf", headers=_headers(accountant))
        assert pdf_response.status_code == 200
        assert pdf_response.headers["content-type"] == "application/pdf"
        assert pdf_response.content.startswith(b"%PDF")

    def test_preview_body(self, client, seed, carrier):
        company, _, accountant = carrier
        driver = seed.driver(company)
        trip = seed.trip(company, driver_id=driver.id, odometer_start=1000, odometer_end=1100)
        response = client.get(f"/api/trips/{trip.id}/settlement-preview", headers=_headers(accountant))
        assert response.status_code == 200
        assert response.json()["success"] is True


# ── Suggestions and matches ───────────────────────────────────────────────────

def _backhaul(seed, owner, **kwargs):
    defaults = dict(
        posting_status="posted",
        pickup_city="Dallas",
        pickup_state="TX",
        delivery_city="Chicago",
        delivery_state="IL",
        cubic_feet=2000,
        total_rate=5000,
        pickup_date=date.today() + timedelta(days=3),
    )
    defaults.update(kwargs)
    return seed.load(owner, **defaults)


class TestMatches:
    def test_refresh_requires_manage_trips(self, client, seed, carrier):
        company, _, accountant = carrier
        trip = seed.trip(company)
        response = client.post(f"/api/trips/{trip.id}/matches/refresh", headers=_headers(accountant))
        assert response.status_code == 403

    def test_refresh_with_nothing_posted(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        trip = seed.trip(company)
        response = client.post(f"/api/trips/{trip.id}/matches/refresh", headers=_headers(dispatcher))
        assert response.json() == {"success": True, "matchCount": 0, "suggestions": []}

    def test_refresh_then_update_status(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        trip = seed.trip(company, return_state="il")
        load = _backhaul(seed, seed.company())

        refreshed = client.post(f"/api/trips/{trip.id}/matches/refresh", headers=_headers(dispatcher)).json()
        assert refreshed["matchCount"] == 1
        suggestion = refreshed["suggestions"][0]
        assert suggestion["load_id"] == load.id
        assert suggestion["match_score"] == 85
        assert suggestion["status"] == "pending"

        patched = client.patch(
            f"/api/matching/suggestions/{suggestion['id']}",
            json={"status": "dismissed"},
            headers=_headers(dispatcher),
        )
        assert patched.status_code == 200
        assert patched.json()["suggestion"]["status"] == "dismissed"

        listed = client.get(f"/api/trips/{trip.id}/matches", headers=_headers(dispatcher)).json()
        assert listed == {"suggestions": []}
        with_dismissed = client.get(
            f"/api/trips/{trip.id}/matches",
            params={"include_dismissed": "true"},
            headers=_headers(dispatcher),
        ).json()
        assert len(with_dismissed["suggestions"]) == 1

    def test_suggestion_status_rejects_pending(self, client, carrier):
        _, dispatcher, _ = carrier
        response = client.patch("/api/matching/suggestions/1", json={"status": "pending"}, headers=_headers(dispatcher))
        assert response.status_code == 400
        assert response.json() == {"error": "status must be one of: viewed, dismissed, accepted"}

    def test_trip_suggestions_lists_marketplace_loads(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        trip = seed.trip(company, trailer_id=seed.trailer(company).id)
        broker = seed.company()
        on_route = seed.load(
            broker,
            posting_status="posted",
            is_marketplace_visible=True,
            pickup_city="Springfield",
            pickup_state="MO",
        )
        response = client.get(
            f"/api/trips/{trip.id}/suggestions",
            params={"maxDetour": "all"},
            headers=_headers(dispatcher),
        )
        assert response.status_code == 200
        body = response.json()
        assert [item["id"] for item in body["suggestions"]] == [on_route.id]
        assert body["filters"] == {"maxDetour": None, "maxCuft": None}

    @pytest.mark.parametrize("raw", ["nan", "inf", "-5"])
    def test_trip_suggestions_non_finite_detour_uses_default(self, client, seed, carrier, raw):
        company, dispatcher, _ = carrier
        trip = seed.trip(company)
        response = client.get(
            f"/api/trips/{trip.id}/suggestions",
            params={"maxDetour": raw, "maxCuft": raw},
            headers=_headers(dispatcher),
        )
        assert response.status_code == 200
        assert response.json()["filters"] == {"maxDetour": 50.0, "maxCuft": None}


# ── Matching settings ─────────────────────────────────────────────────────────

class TestMatchingSettings:
    def test_defaults(self, client, carrier):
        _, dispatcher, _ = carrier
        settings = client.get("/api/matching/settings", headers=_headers(dispatcher)).json()["settings"]
        assert settings["max_deadhead_miles"] == 150
        assert settings["min_match_score"] == 50

    def test_patch_normalizes_states(self, client, carrier):
        _, dispatcher, _ = carrier
        response = client.patch(
            "/api/matching/settings",
            json={"excluded_states": ["ca", " ny", "CA"], "min_match_score": 70},
            headers=_headers(dispatcher),
        )
        assert response.status_code == 200
        settings = response.json()["settings"]
        assert settings["excluded_states"] == ["CA", "NY"]
        assert settings["min_match_score"] == 70

    def test_patch_validation(self, client, carrier):
        _, dispatcher, _ = carrier
        response = client.patch(
            "/api/matching/settings",
            json={"min_capacity_utilization_percent": 90, "max_capacity_utilization_percent": 50},
            headers=_headers(dispatcher),
        )
        assert response.status_code == 400
        assert response.json() == {
            "error": "min_capacity_utilization_percent cannot exceed max_capacity_utilization_percent"
        }

    def test_patch_requires_permission(self, client, carrier):
        _, _, accountant = carrier
        response = client.patch("/api/matching/settings", json={"min_match_score": 10}, headers=_headers(accountant))
        assert response.status_code == 403


# ── Trip records ──────────────────────────────────────────────────────────────

class TestTripCrud:
    def test_create_and_detail(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        driver = seed.driver(company)
        response = client.post(
            "/api/trips",
            json={"trip_number": "NL-1", "driver_id": driver.id, "origin_state": "il", "start_date": "2026-03-02"},
            headers=_headers(dispatcher),
        )
        assert response.status_code == 200
        trip_id = response.json()["trip"]["id"]

        detail = client.get(f"/api/trips/{trip_id}", headers=_headers(dispatcher)).json()
        assert detail["trip"]["origin_state"] == "IL"
        assert detail["trip"]["start_date"] == "2026-03-02"
        assert (detail["loads"], detail["expenses"]) == ([], [])

    def test_create_requires_permission(self, client, carrier):
        _, _, accountant = carrier
        assert client.post("/api/trips", json={}, headers=_headers(accountant)).status_code == 403

    def test_list_by_status(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        seed.trip(company, status="planned")
        active = seed.trip(company, status="active")
        seed.trip(seed.company(), status="active")
        body = client.get("/api/trips", params={"status": "active"}, headers=_headers(dispatcher)).json()
        assert [trip["id"] for trip in body["trips"]] == [active.id]

    def test_patch_validation_message(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        trip = seed.trip(company)
        response = client.patch(f"/api/trips/{trip.id}", json={"status": "active"}, headers=_headers(dispatcher))
        assert response.status_code == 400
        assert response.json() == {"error": "You must enter the starting odometer to activate this trip."}

    def test_assign_driver(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        trip = seed.trip(company)
        driver = seed.driver(company)
        response = client.put(f"/api/trips/{trip.id}/driver", json={"driver_id": driver.id}, headers=_headers(dispatcher))
        assert response.json()["trip"]["driver_id"] == driver.id

    def test_assign_foreign_driver(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        trip = seed.trip(company)
        stranger = seed.driver(seed.company())
        response = client.put(f"/api/trips/{trip.id}/driver", json={"driver_id": stranger.id}, headers=_headers(dispatcher))
        assert response.status_code == 404
        assert response.json() == {"error": "Driver not found"}

    def test_loads_add_reorder_remove(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        trip = seed.trip(company)
        first, second = seed.load(company), seed.load(company)
        headers = _headers(dispatcher)
        client.post(f"/api/trips/{trip.id}/loads", json={"load_id": first.id}, headers=headers)
        client.post(f"/api/trips/{trip.id}/loads", json={"load_id": second.id}, headers=headers)

        reordered = client.put(
            f"/api/trips/{trip.id}/loads/order",
            json={"loads": [{"load_id": first.id, "sequence_index": 1}, {"load_id": second.id, "sequence_index": 0}]},
            headers=headers,
        ).json()
        assert [row["load_id"] for row in reordered["loads"]] == [second.id, first.id]

        assert client.delete(f"/api/trips/{trip.id}/loads/{second.id}", headers=headers).json() == {"success": True}
        detail = client.get(f"/api/trips/{trip.id}", headers=headers).json()
        assert [row["load_id"] for row in detail["loads"]] == [first.id]

    def test_add_load_twice(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        trip = seed.trip(company)
        load = seed.load(company)
        client.post(f"/api/trips/{trip.id}/loads", json={"load_id": load.id}, headers=_headers(dispatcher))
        response = client.post(f"/api/trips/{trip.id}/loads", json={"load_id": load.id}, headers=_headers(dispatcher))
        assert response.status_code == 409

    def test_expenses(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        trip = seed.trip(company)
        headers = _headers(dispatcher)
        created = client.post(
            f"/api/trips/{trip.id}/expenses",
            json={"category": "fuel", "amount": 95.5, "incurred_on": "2026-03-03"},
            headers=headers,
        ).json()["expense"]
        assert created["incurred_on"] == "2026-03-03"
        updated = client.patch(f"/api/trips/{trip.id}/expenses/{created['id']}", json={"amount": 99}, headers=headers)
        assert updated.json()["expense"]["amount"] == 99.0
        bad = client.post(f"/api/trips/{trip.id}/expenses", json={"category": "fuel", "amount": 0}, headers=headers)
        assert bad.json() == {"error": "Amount must be greater than zero"}
        assert client.delete(f"/api/trips/{trip.id}/expenses/{created['id']}", headers=headers).status_code == 200

    def test_delete(self, client, seed, carrier):
        company, dispatcher, _ = carrier
        trip = seed.trip(company)
        assert client.delete(f"/api/trips/{trip.id}", headers=_headers(dispatcher)).json() == {"success": True}
        assert client.get(f"/api/trips/{trip.id}", headers=_headers(dispatcher)).status_code == 404

    def test_foreign_trip_cannot_be_edited(self, client, seed, carrier):
        _, dispatcher, _ = carrier
        other = seed.trip(seed.company())
        response = client.patch(f"/api/trips/{other.id}", json={"notes": "mine now"}, headers=_headers(dispatcher))
        assert response.status_code == 404
