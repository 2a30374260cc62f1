"""Route tests for the smaller routers: me, compliance, push tokens, disputes, sharing, loads, messaging, marketplace."""

from datetime import date, timedelta

import pytest

from haulsync.dependencies.auth import issue_access_token
from haulsync.models.load import BalanceDispute
from haulsync.models.messaging import PushToken


def _headers(user):
    return {"Authorization": f"Bearer {issue_access_token(user.id)}"}


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy", "database": "connected"}


# ── Me ────────────────────────────────────────────────────────────────────────

class TestMyPermissions:
    def test_preset_detected_from_flags(self, client, seed):
        company = seed.company()
        user = seed.user(company, can_view_financials=True, can_manage_settlements=True)
        body = client.get("/api/me/permissions", headers=_headers(user)).json()
        assert body["companyId"] == company.id
        assert body["isAdmin"] is False
        assert body["preset"] == "accountant"
        assert body["presetLabel"] == "Accountant"
        assert body["summary"] == ["Financial"]
        assert body["permissions"]["can_view_financials"] is True
        assert body["permissions"]["can_post_loads"] is False

    def test_admin(self, client, seed):
        user = seed.user(seed.company(), is_admin=True)
        body = client.get("/api/me/permissions", headers=_headers(user)).json()
        assert body["preset"] == "admin"
        assert body["isAdmin"] is True

    def test_requires_identity(self, client, db):
        assert client.get("/api/me/permissions").status_code == 401


# ── Compliance ────────────────────────────────────────────────────────────────

class TestComplianceRoutes:
    def test_generate_and_list(self, client, seed):
        company = seed.company()
        fleet = seed.user(company, can_manage_vehicles=True)
        seed.truck(company, registration_expiry=date.today() - timedelta(days=3))

        generated = client.post("/api/compliance/alerts/generate", headers=_headers(fleet)).json()
        assert generated["success"] is True
        assert generated["created"] == 1
        assert generated["counts"]["expired"] == 1

        alerts = client.get("/api/compliance/alerts", headers=_headers(fleet)).json()["alerts"]
        assert [alert["severity"] for alert in alerts] == ["expired"]

    def test_generate_requires_fleet_permission(self, client, seed):
        user = seed.user(seed.company(), can_manage_trips=True)
        assert client.post("/api/compliance/alerts/generate", headers=_headers(user)).status_code == 403

    def test_bad_severity(self, client, seed):
        user = seed.user(seed.company())
        response = client.get("/api/compliance/alerts", params={"severity": "mild"}, headers=_headers(user))
        assert response.status_code == 400
        assert response.json()["error"].startswith("severity must be one of:")

    def test_trip_check_scoped_to_company(self, client, seed):
        company = seed.company()
        user = seed.user(company)
        foreign_truck = seed.truck(seed.company())
        response = client.get("/api/compliance/trip-check", params={"truck_id": foreign_truck.id}, headers=_headers(user))
        assert response.status_code == 404
        assert response.json() == {"error": "Truck not found"}

    def test_trip_check_blocks_expired(self, client, seed):
        company = seed.company()
        user = seed.user(company)
        driver = seed.driver(company, license_expiry=date.today() - timedelta(days=1))
        response = client.get(
            "/api/compliance/trip-check",
            params={"driver_id": driver.id, "block_expired": "true"},
            headers=_headers(user),
        )
        assert response.status_code == 200
        assert response.json()["canProceed"] is False


# ── Push tokens ───────────────────────────────────────────────────────────────

class TestPushTokenRoutes:
    def test_register_and_remove(self, client, db, seed):
        company = seed.company()
        user = seed.user(company, role="driver")
        driver = seed.driver(company, user=user)

        created = client.post(
            "/api/push-tokens",
            json={"token": "ExponentPushToken[abc]", "platform": "ios"},
            headers=_headers(user),
        )
        assert created.status_code == 200
        row = db.query(PushToken).filter(PushToken.id == created.json()["id"]).one()
        assert row.driver_id == driver.id

        removed = client.request(
            "DELETE", "/api/push-tokens", json={"token": "ExponentPushToken[abc]"}, headers=_headers(user)
        )
        assert removed.json() == {"success": True}
        db.expire_all()
        assert row.is_active is False

    def test_bad_platform(self, client, seed):
        user = seed.user(seed.company())
        response = client.post("/api/push-tokens", json={"token": "t", "platform": "web"}, headers=_headers(user))
        assert response.status_code == 400
        assert response.json() == {"error": "platform must be ios or android"}

    def test_remove_unknown(self, client, seed):
        user = seed.user(seed.company())
        response = client.request("DELETE", "/api/push-tokens", json={"token": "nope"}, headers=_headers(user))
        assert response.status_code == 404
        assert response.json() == {"error": "Push token not found"}


# ── Balance disputes ──────────────────────────────────────────────────────────

@pytest.fixture
def dispute_setup(seed, db):
    company = seed.company()
    manager = seed.user(company, can_manage_loads=True)
    driver = seed.driver(company)
    load = seed.load(company, load_number="LD-31", balance_due_on_delivery=900)
    dispute = BalanceDispute(load_id=load.id, company_id=company.id, driver_id=driver.id, original_balance=900)
    db.add(dispute)
    db.commit()
    return manager, load, dispute


class TestDisputeRoutes:
    def test_list_and_resolve(self, client, db, dispute_setup):
        manager, load, dispute = dispute_setup
        listed = client.get("/api/balance-disputes", headers=_headers(manager)).json()
        assert listed["success"] is True
        assert [item["id"] for item in listed["disputes"]] == [dispute.id]

        response = client.post(
            "/api/balance-disputes/resolve",
            json={"disputeId": dispute.id, "resolutionType": "balance_updated", "newBalance": 450},
            headers=_headers(manager),
        )
        assert response.json() == {"success": True, "message": "Balance updated to $450.00. Driver has been notified."}
        db.expire_all()
        assert float(load.balance_due_on_delivery) == 450.0

        again = client.post(
            "/api/balance-disputes/resolve",
            json={"disputeId": dispute.id, "resolutionType": "confirmed_zero"},
            headers=_headers(manager),
        )
        assert again.status_code == 409

    def test_resolve_requires_manage_loads(self, client, seed, dispute_setup):
        _, load, dispute = dispute_setup
        viewer = seed.user(seed.company())
        response = client.post(
            "/api/balance-disputes/resolve",
            json={"disputeId": dispute.id, "resolutionType": "cancelled"},
            headers=_headers(viewer),
        )
        assert response.status_code == 403
        assert response.json() == {"error": "Permission denied"}


# ── Sharing ───────────────────────────────────────────────────────────────────

class TestSharingRoutes:
    def test_public_board_needs_no_identity(self, client, seed):
        company = seed.company(name="Acme Van Lines", public_board_slug="acme")
        load = seed.load(company)
        body = client.get("/api/sharing/board/acme").json()
        assert "success" not in body
        assert [item["id"] for item in body["loads"]] == [load.id]

    def test_unknown_board(self, client, db):
        assert client.get("/api/sharing/board/nobody").status_code == 404

    def test_public_load_gone(self, client, seed):
        company = seed.company(public_board_slug="gone")
        load = seed.load(company, status="delivered")
        assert client.get(f"/api/sharing/load/{load.public_token}").status_code == 410

    def test_public_load_not_reachable_by_id(self, client, seed):
        company = seed.company(public_board_slug="walk")
        load = seed.load(company)
        assert client.get(f"/api/sharing/load/{load.id}").status_code == 404
        assert client.post(f"/api/sharing/load/{load.id}", json={"action": "claim_click"}).status_code == 404
        shared = client.get(f"/api/sharing/load/{load.public_token}").json()
        assert shared["load"]["id"] == load.id

    def test_settings_require_post_loads(self, client, seed):
        user = seed.user(seed.company())
        response = client.post("/api/sharing/settings", json={"public_board_show_rates": False}, headers=_headers(user))
        assert response.status_code == 403

    def test_slug_check(self, client, seed):
        seed.company(public_board_slug="taken")
        user = seed.user(seed.company())
        body = client.put("/api/sharing/settings", json={"slug": "taken"}, headers=_headers(user)).json()
        assert body["available"] is False

    def test_share_message_uses_configured_base_url(self, client, seed):
        company = seed.company(name="Acme", public_board_slug="acme")
        user = seed.user(company)
        load = seed.load(company)
        body = client.post(
            "/api/sharing/message",
            json={"loadIds": [load.id], "format": "plain"},
            headers=_headers(user),
        ).json()
        assert body["link"] == f"https://app.haulsync.io/loads/{load.public_token}/public"
        assert body["loadCount"] == 1

    def test_share_message_without_loads(self, client, seed):
        user = seed.user(seed.company())
        response = client.post("/api/sharing/message", json={"loadIds": []}, headers=_headers(user))
        assert response.status_code == 400
        assert response.json() == {"error": "No loads specified"}


# ── Loads ─────────────────────────────────────────────────────────────────────

class TestLoadRoutes:
    def test_unknown_urgency_level(self, client, seed):
        user = seed.user(seed.company())
        response = client.get("/api/loads/rfd-urgency", params={"levels": "critical,someday"}, headers=_headers(user))
        assert response.status_code == 400
        assert response.json() == {"error": "Unknown urgency level: someday"}

    def test_delivery_check_for_owner(self, client, seed):
        company = seed.company()
        user = seed.user(company)
        load = seed.load(company)
        response = client.get(f"/api/loads/{load.id}/delivery-check", headers=_headers(user))
        assert response.status_code == 200

    def test_delivery_check_hidden_from_strangers(self, client, seed):
        load = seed.load(seed.company())
        stranger = seed.user(seed.company())
        response = client.get(f"/api/loads/{load.id}/delivery-check", headers=_headers(stranger))
        assert response.status_code == 404
        assert response.json() == {"error": "Load not found"}

    def test_delivery_check_for_assigned_driver(self, client, seed):
        company = seed.company()
        driver_user = seed.user()
        driver = seed.driver(company, user=driver_user)
        trip = seed.trip(company, driver_id=driver.id)
        load = seed.load(company)
        seed.attach(trip, load)
        assert client.get(f"/api/loads/{load.id}/delivery-check", headers=_headers(driver_user)).status_code == 200

    def test_create_and_post(self, client, seed):
        company = seed.company()
        poster = seed.user(company, can_post_loads=True)
        created = client.post(
            "/api/loads", json={"pickup_state": "IL", "cubic_feet": 900}, headers=_headers(poster)
        ).json()["load"]
        posted = client.post(f"/api/loads/{created['id']}/marketplace", headers=_headers(poster)).json()
        assert posted["load"]["posting_status"] == "posted"

    def test_pickup_poster_cannot_post_load(self, client, seed):
        company = seed.company()
        poster = seed.user(company, can_post_pickups=True)
        load = seed.load(company, posting_type="load")
        response = client.post(f"/api/loads/{load.id}/marketplace", headers=_headers(poster))
        assert response.status_code == 403
        assert response.json() == {"error": "Permission denied"}

    def test_status_needs_load_permission(self, client, seed):
        company = seed.company()
        load = seed.load(company)
        viewer = seed.user(company)
        manager = seed.user(company, can_manage_loads=True)
        url = f"/api/loads/{load.id}/status"
        assert client.patch(url, json={"status": "assigned"}, headers=_headers(viewer)).status_code == 403
        assert client.patch(url, json={"status": "assigned"}, headers=_headers(manager)).json()["load"]["status"] == "assigned"


# ── Messaging ─────────────────────────────────────────────────────────────────

class TestMessagingRoutes:
    def test_conversation_round_trip(self, client, seed):
        company = seed.company()
        user = seed.user(company)
        load = seed.load(company)

        created = client.post(
            "/api/messaging/conversations",
            json={"type": "load_internal", "load_id": load.id},
            headers=_headers(user),
        )
        assert created.status_code == 200
        conversation_id = created.json()["conversation"]["id"]

        sent = client.post(
            "/api/messaging/messages",
            json={"conversation_id": conversation_id, "body": "Customer wants a 9am window"},
            headers=_headers(user),
        )
        assert sent.json()["message"]["body"] == "Customer wants a 9am window"

        listed = client.get(
            "/api/messaging/messages", params={"conversation_id": conversation_id}, headers=_headers(user)
        ).json()
        assert [message["body"] for message in listed["messages"]] == ["Customer wants a 9am window"]
        assert listed["hasMore"] is False

        conversations = client.get("/api/messaging/conversations", headers=_headers(user)).json()["conversations"]
        assert [item["id"] for item in conversations] == [conversation_id]
        assert client.get("/api/messaging/unread-count", headers=_headers(user)).json() == {"unreadCount": 0}
        assert client.post(f"/api/messaging/conversations/{conversation_id}/read", headers=_headers(user)).json() == {
            "success": True
        }

    def test_messages_need_conversation_id(self, client, seed):
        user = seed.user(seed.company())
        response = client.get("/api/messaging/messages", headers=_headers(user))
        assert response.status_code == 400
        assert response.json() == {"error": "conversation_id is required"}

    def test_foreign_load_conversation(self, client, seed):
        user = seed.user(seed.company())
        load = seed.load(seed.company())
        response = client.post(
            "/api/messaging/conversations",
            json={"type": "load_internal", "load_id": load.id},
            headers=_headers(user),
        )
        assert response.status_code == 404

    @pytest.mark.parametrize("body", ["", "x" * 10001])
    def test_body_length_bounds(self, client, seed, body):
        user = seed.user(seed.company())
        response = client.post("/api/messaging/messages", json={"conversation_id": 1, "body": body}, headers=_headers(user))
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid input"

    def test_longest_body_accepted(self, client, seed, monkeypatch):
        company = seed.company()
        user = seed.user(company)
        monkeypatch.setattr("haulsync.services.messaging.notify_message_recipients_job", lambda *args: None)
        conversation_id = client.post(
            "/api/messaging/conversations", json={"type": "general"}, headers=_headers(user)
        ).json()["conversation"]["id"]
        response = client.post(
            "/api/messaging/messages",
            json={"conversation_id": conversation_id, "body": "x" * 10000},
            headers=_headers(user),
        )
        assert response.status_code == 200

    def test_push_scheduled_after_response(self, client, seed, monkeypatch):
        company = seed.company()
        user = seed.user(company)
        scheduled = []
        monkeypatch.setattr(
            "haulsync.services.messaging.notify_message_recipients_job",
            lambda *args: scheduled.append(args),
        )
        conversation_id = client.post(
            "/api/messaging/conversations", json={"type": "general"}, headers=_headers(user)
        ).json()["conversation"]["id"]
        client.post(
            "/api/messaging/messages",
            json={"conversation_id": conversation_id, "body": "Dock 4 is open"},
            headers=_headers(user),
        )
        assert scheduled == [(conversation_id, user.id, "Dock 4 is open")]


# ── Marketplace ───────────────────────────────────────────────────────────────

@pytest.fixture
def listing(seed):
    shipper = seed.company()
    owner = seed.user(shipper, can_manage_carrier_requests=True)
    carrier = seed.company()
    bidder = seed.user(carrier, can_manage_trips=True)
    load = seed.load(shipper, is_marketplace_visible=True, posting_status="posted", rate_per_cuft=3)
    return shipper, owner, carrier, bidder, load


class TestMarketplaceRoutes:
    def test_request_accept_and_dispatch(self, client, seed, listing):
        shipper, owner, carrier, bidder, load = listing
        board = client.get("/api/marketplace/loads", headers=_headers(bidder)).json()
        assert [row["id"] for row in board["loads"]] == [load.id]

        request = client.post(
            f"/api/marketplace/loads/{load.id}/requests", json={"message": "Can load Friday"}, headers=_headers(bidder)
        ).json()["request"]
        listed = client.get(f"/api/marketplace/loads/{load.id}/requests", headers=_headers(owner)).json()
        assert [row["id"] for row in listed["requests"]] == [request["id"]]

        accepted = client.post(f"/api/marketplace/requests/{request['id']}/accept", json={}, headers=_headers(owner))
        assert accepted.json()["load"]["assigned_carrier_id"] == carrier.id

        trip = seed.trip(carrier)
        assigned = client.post(
            f"/api/marketplace/loads/{load.id}/assign-trip", json={"trip_id": trip.id}, headers=_headers(bidder)
        )
        assert [row["load_id"] for row in assigned.json()["loads"]] == [load.id]

    def test_accept_requires_permission(self, client, seed, listing):
        shipper, _, _, bidder, load = listing
        request = client.post(f"/api/marketplace/loads/{load.id}/requests", json={}, headers=_headers(bidder)).json()
        clerk = seed.user(shipper)
        response = client.post(f"/api/marketplace/requests/{request['request']['id']}/accept", json={}, headers=_headers(clerk))
        assert response.status_code == 403

    def test_requests_hidden_from_non_owner(self, client, listing):
        _, _, _, bidder, load = listing
        response = client.get(f"/api/marketplace/loads/{load.id}/requests", headers=_headers(bidder))
        assert response.status_code == 404

    def test_duplicate_request(self, client, listing):
        _, _, _, bidder, load = listing
        client.post(f"/api/marketplace/loads/{load.id}/requests", json={}, headers=_headers(bidder))
        response = client.post(f"/api/marketplace/loads/{load.id}/requests", json={}, headers=_headers(bidder))
        assert response.status_code == 409
        assert response.json() == {"error": "You already have a pending request for this load"}

    def test_withdraw_and_mine(self, client, listing):
        _, _, _, bidder, load = listing
        request = client.post(f"/api/marketplace/loads/{load.id}/requests", json={}, headers=_headers(bidder)).json()
        client.post(f"/api/marketplace/requests/{request['request']['id']}/withdraw", headers=_headers(bidder))
        mine = client.get("/api/marketplace/requests/mine", headers=_headers(bidder)).json()
        assert [row["status"] for row in mine["requests"]] == ["withdrawn"]
