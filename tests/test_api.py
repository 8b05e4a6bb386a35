"""
HTTP-level tests for the bookings, billing, roles and webhook routers
"""

import time
from datetime import timedelta

import pytest

from app.domain.authorization.role_store import RoleName
from app.models import Notification, Subscription
from app.utils.clock import utcnow
from app.webhook_security import build_manifest, compute_hmac_sha256

from conftest import ADMIN_ID, CLIENT_ID, OWNER_ID, add_booking, add_plan, add_role

OWNER = {"X-User-Id": OWNER_ID}
CLIENT = {"X-User-Id": CLIENT_ID}
ADMIN = {"X-User-Id": ADMIN_ID}


@pytest.fixture
def publisher(db_session):
    return add_role(db_session, OWNER_ID, RoleName.PUBLISHER)


@pytest.fixture
def admin(db_session):
    return add_role(db_session, ADMIN_ID, RoleName.SUPERADMIN, assigned_by=ADMIN_ID)


def booking_payload(**overrides):
    payload = {
        "postId": "post-1",
        "clientId": CLIENT_ID,
        "ownerId": OWNER_ID,
        "startDate": "2030-01-10T14:00:00",
        "endDate": "2030-01-13T10:00:00",
        "totalAmount": 500,
        "currency": "ars",
        "guestCount": 2,
        "clientData": {"name": "Ana", "email": "ana@example.com"},
        "cancellationPolicies": [
            {"daysThreshold": 7, "type": "fixed", "amount": 50},
            {"daysThreshold": 3, "type": "percentage", "amount": 100},
        ],
    }
    payload.update(overrides)
    return payload


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestCreateBooking:
    def test_create_booking(self, client, db_session, publisher):
        response = client.post("/bookings", json=booking_payload(), headers=CLIENT)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "requested"
        assert body["currency"] == "ARS"
        assert body["cancellationPolicies"][0]["days_threshold"] == 7
        assert set(body["allowedActions"]) == {"accept", "decline", "cancel"}
        notification = db_session.query(Notification).filter_by(user_id=OWNER_ID).one()
        assert notification.type == "booking_request"

    def test_owner_without_publisher_role(self, client):
        response = client.post("/bookings", json=booking_payload(), headers=CLIENT)
        assert response.status_code == 403

    def test_requires_identity(self, client, publisher):
        assert client.post("/bookings", json=booking_payload()).status_code == 401

    def test_cannot_book_for_someone_else(self, client, publisher):
        response = client.post("/bookings", json=booking_payload(), headers={"X-User-Id": "other"})
        assert response.status_code == 403

    @pytest.mark.parametrize(
        "overrides",
        [
            {"totalAmount": 0},
            {"endDate": "2030-01-09T10:00:00"},
            {"guestCount": 0},
            {"cancellationPolicies": [{"daysThreshold": 3, "type": "percentage", "amount": 150}]},
        ],
    )
    def test_invalid_payload(self, client, publisher, overrides):
        response = client.post("/bookings", json=booking_payload(**overrides), headers=CLIENT)
        assert response.status_code == 422


class TestBookingLifecycle:
    def test_owner_accepts(self, client, db_session):
        booking = add_booking(db_session)

        response = client.post(f"/bookings/{booking.id}/accept", headers=OWNER)

        assert response.status_code == 200
        assert response.json()["status"] == "accepted"
        assert response.json()["acceptedAt"] is not None

    def test_client_cannot_accept(self, client, db_session):
        booking = add_booking(db_session)
        assert client.post(f"/bookings/{booking.id}/accept", headers=CLIENT).status_code == 403

    def test_stranger_cannot_read(self, client, db_session):
        booking = add_booking(db_session)
        response = client.get(f"/bookings/{booking.id}", headers={"X-User-Id": "stranger"})
        assert response.status_code == 403

    def test_unknown_booking(self, client):
        assert client.get("/bookings/missing", headers=OWNER).status_code == 404

    def test_invalid_transition_is_conflict(self, client, db_session):
        booking = add_booking(db_session, status="completed")

        response = client.post(f"/bookings/{booking.id}/decline", headers=OWNER)

        assert response.status_code == 409
        assert response.json()["currentStatus"] == "completed"
        assert response.json()["attemptedStatus"] == "declined"

    def test_repeated_accept_is_noop(self, client, db_session):
        booking = add_booking(db_session)
        client.post(f"/bookings/{booking.id}/accept", headers=OWNER)

        response = client.post(f"/bookings/{booking.id}/accept", headers=OWNER)

        assert response.status_code == 200
        assert db_session.query(Notification).filter_by(type="booking_accepted").count() == 1


class TestCancellation:
    def test_client_cancel_applies_policy(self, client, db_session):
        booking = add_booking(db_session, start_date=utcnow() + timedelta(days=5))

        response = client.post(
            f"/bookings/{booking.id}/cancel", json={"cancelledBy": "client"}, headers=CLIENT
        )

        assert response.status_code == 200
        assert response.json()["penaltyAmount"] == 50
        assert response.json()["refundAmount"] == 450
        db_session.refresh(booking)
        assert booking.status == "cancelled"
        assert booking.total_amount == 500
        assert booking.cancelled_by == "client"

    def test_owner_cancel_refunds_everything(self, client, db_session):
        booking = add_booking(db_session, start_date=utcnow() + timedelta(days=1))

        response = client.post(
            f"/bookings/{booking.id}/cancel", json={"cancelledBy": "owner"}, headers=OWNER
        )

        assert response.json()["penaltyAmount"] == 0
        assert response.json()["refundAmount"] == 500

    def test_cancel_twice_returns_recorded_outcome(self, client, db_session):
        booking = add_booking(db_session, start_date=utcnow() + timedelta(days=5))
        client.post(f"/bookings/{booking.id}/cancel", json={"cancelledBy": "client"}, headers=CLIENT)

        response = client.post(
            f"/bookings/{booking.id}/cancel", json={"cancelledBy": "client"}, headers=CLIENT
        )

        assert response.status_code == 200
        assert response.json()["penaltyAmount"] == 50
        assert response.json()["message"] == "Booking was already cancelled"

    def test_cancel_completed_booking_is_conflict(self, client, db_session):
        booking = add_booking(db_session, status="completed")
        response = client.post(
            f"/bookings/{booking.id}/cancel", json={"cancelledBy": "client"}, headers=CLIENT
        )
        assert response.status_code == 409

    def test_cannot_cancel_as_the_other_party(self, client, db_session):
        booking = add_booking(db_session)
        response = client.post(
            f"/bookings/{booking.id}/cancel", json={"cancelledBy": "owner"}, headers=CLIENT
        )
        assert response.status_code == 403

    def test_system_is_not_a_cancelling_party(self, client, db_session):
        booking = add_booking(db_session)
        response = client.post(
            f"/bookings/{booking.id}/cancel", json={"cancelledBy": "system"}, headers=CLIENT
        )
        assert response.status_code == 422

    def test_quote_does_not_cancel(self, client, db_session):
        booking = add_booking(db_session, start_date=utcnow() + timedelta(days=2))

        response = client.get(f"/bookings/{booking.id}/cancellation-quote", headers=CLIENT)

        assert response.status_code == 200
        assert response.json()["penaltyAmount"] == 500
        assert response.json()["appliedPolicy"]["days_threshold"] == 3
        db_session.refresh(booking)
        assert booking.status == "requested"


class TestCheckout:
    def test_checkout_creates_preference(self, client, db_session, mercadopago):
        booking = add_booking(db_session, status="accepted")
        mercadopago.add(
            "POST",
            "/checkout/preferences",
            {"id": "pref-1", "init_point": "https://mp/checkout/pref-1"},
            status=201,
        )

        response = client.post(f"/bookings/{booking.id}/checkout", headers=CLIENT)

        assert response.status_code == 200
        assert response.json()["preferenceId"] == "pref-1"
        assert response.json()["status"] == "pending_payment"
        [request] = mercadopago.calls("POST", "/checkout/preferences")
        assert b'"external_reference":"booking_' in request.content.replace(b" ", b"")

    def test_repeated_checkout_reuses_preference(self, client, db_session, mercadopago):
        booking = add_booking(db_session, status="accepted")
        mercadopago.add("POST", "/checkout/preferences", {"id": "pref-1"}, status=201)

        client.post(f"/bookings/{booking.id}/checkout", headers=CLIENT)
        response = client.post(f"/bookings/{booking.id}/checkout", headers=CLIENT)

        assert response.json()["preferenceId"] == "pref-1"
        assert len(mercadopago.calls("POST", "/checkout/preferences")) == 1

    def test_processor_failure_leaves_booking_accepted(self, client, db_session, mercadopago):
        booking = add_booking(db_session, status="accepted")
        mercadopago.add("POST", "/checkout/preferences", {"message": "down"}, status=500)

        response = client.post(f"/bookings/{booking.id}/checkout", headers=CLIENT)

        assert response.status_code == 502
        db_session.refresh(booking)
        assert booking.status == "accepted"

    def test_checkout_requires_accepted_booking(self, client, db_session):
        booking = add_booking(db_session)
        response = client.post(f"/bookings/{booking.id}/checkout", headers=CLIENT)
        assert response.status_code == 409


class TestBilling:
    def test_public_plans_hide_inactive(self, client, db_session):
        add_plan(db_session, name="Basic")
        add_plan(db_session, name="Legacy", is_active=False)

        response = client.get("/billing/plans")

        assert [plan["name"] for plan in response.json()] == ["Basic"]

    def test_create_plan_requires_superadmin(self, client):
        payload = {"name": "Pro", "price": 200}
        assert client.post("/billing/plans", json=payload, headers=OWNER).status_code == 403

    def test_admin_creates_plan(self, client, admin):
        response = client.post(
            "/billing/plans", json={"name": "Pro", "price": 200, "billingCycle": "yearly"}, headers=ADMIN
        )
        assert response.status_code == 201
        assert response.json()["billingCycle"] == "yearly"
        assert response.json()["externalPlanId"] is None

    def test_update_plan_upstream_failure(self, client, db_session, admin, mercadopago):
        plan = add_plan(db_session, external_plan_id="ext-1")
        mercadopago.add("PUT", "/preapproval_plan/ext-1", {"message": "down"}, status=500)

        response = client.put(f"/billing/plans/{plan.id}", json={"price": 120}, headers=ADMIN)

        assert response.status_code == 502
        db_session.refresh(plan)
        assert plan.price == 100.0

    def test_start_subscription(self, client, db_session, mercadopago):
        plan = add_plan(db_session, external_plan_id="ext-1")
        mercadopago.add("POST", "/preapproval", {"id": "pre-1", "init_point": "https://mp/pre-1"}, 201)

        response = client.post(
            "/billing/subscriptions",
            json={"planId": plan.id, "userId": OWNER_ID, "payerEmail": "owner@example.com"},
            headers=OWNER,
        )

        assert response.status_code == 200
        assert response.json() == {"subscriptionId": "pre-1", "initPoint": "https://mp/pre-1"}
        assert db_session.query(Subscription).count() == 0

    def test_second_subscription_is_conflict(self, client, db_session):
        plan = add_plan(db_session)
        db_session.add(Subscription(user_id=OWNER_ID, plan_id=plan.id, status="active"))
        db_session.commit()

        response = client.post(
            "/billing/subscriptions",
            json={"planId": plan.id, "userId": OWNER_ID, "payerEmail": "owner@example.com"},
            headers=OWNER,
        )

        assert response.status_code == 409

    def test_unknown_plan(self, client):
        response = client.post(
            "/billing/subscriptions",
            json={"planId": "missing", "userId": OWNER_ID, "payerEmail": "owner@example.com"},
            headers=OWNER,
        )
        assert response.status_code == 404


class TestRoles:
    def test_admin_grant_is_manual(self, client, db_session, admin, role_store):
        response = client.post(f"/users/{OWNER_ID}/roles/publisher", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["changed"] is True
        assignment = role_store.get_assignment(OWNER_ID, RoleName.PUBLISHER)
        assert assignment.assigned_by == ADMIN_ID

    def test_roles_listing_reflects_revocation(self, client, db_session, admin, publisher):
        assert client.get(f"/users/{OWNER_ID}/roles").json()["roles"] == ["publisher"]

        client.delete(f"/users/{OWNER_ID}/roles/publisher", headers=ADMIN)

        assert client.get(f"/users/{OWNER_ID}/roles").json()["roles"] == []

    def test_non_admin_cannot_grant(self, client):
        assert client.post(f"/users/{OWNER_ID}/roles/superadmin", headers=OWNER).status_code == 403


class TestWebhooks:
    def test_subscription_payment_webhook(self, client, db_session, mercadopago):
        plan = add_plan(db_session)
        mercadopago.add_payment("555", "approved", f"subscription_{plan.id}_{OWNER_ID}")

        response = client.post(
            "/webhooks/mercadopago/subscriptions", json={"type": "payment", "data": {"id": 555}}
        )

        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": "created"}
        assert db_session.query(Subscription).filter_by(status="active").count() == 1

    def test_garbage_reference_is_acknowledged(self, client, mercadopago):
        mercadopago.add_payment("555", "approved", "garbage")
        response = client.post(
            "/webhooks/mercadopago/subscriptions", json={"type": "payment", "data": {"id": "555"}}
        )
        assert response.status_code == 200
        assert response.json()["outcome"] == "invalid_reference"

    def test_unknown_event_type_is_acknowledged(self, client, mercadopago):
        response = client.post(
            "/webhooks/mercadopago/subscriptions", json={"type": "plan", "data": {"id": "1"}}
        )
        assert response.json()["outcome"] == "ignored"
        assert mercadopago.requests == []

    def test_processor_failure_asks_for_retry(self, client):
        response = client.post(
            "/webhooks/mercadopago/subscriptions", json={"type": "payment", "data": {"id": "777"}}
        )
        assert response.status_code == 502

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b'{"type": "payment"}',
            b'{"data": {"id": ""}}',
            b'{"type": "payment", "data": {"id": "../v1/users/me"}}',
            b'{"type": "payment", "data": {"id": "555?access_token=x"}}',
        ],
    )
    def test_malformed_body(self, client, body):
        response = client.post(
            "/webhooks/mercadopago", content=body, headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    def test_path_like_id_never_reaches_processor(self, client, mercadopago):
        response = client.post(
            "/webhooks/mercadopago/subscriptions",
            json={"type": "payment", "data": {"id": "1/../../v1/users/me"}},
        )
        assert response.status_code == 400
        assert mercadopago.requests == []

    def test_booking_payment_webhook(self, client, db_session, mercadopago):
        booking = add_booking(db_session, status="pending_payment")
        mercadopago.add_payment("900", "approved", f"booking_{booking.id}", transaction_amount=500.0)

        response = client.post("/webhooks/mercadopago", json={"type": "payment", "data": {"id": "900"}})

        assert response.json()["outcome"] == "updated"
        db_session.refresh(booking)
        assert booking.status == "paid"

    def test_signed_webhook(self, client, db_session, mercadopago):
        client.app.state.webhook_secret = "whsec-test"
        mercadopago.add_payment("555", "pending", "garbage")
        ts = str(int(time.time()))
        manifest = build_manifest("555", "req-1", ts)
        signature = f"ts={ts},v1={compute_hmac_sha256('whsec-test', manifest.encode())}"

        response = client.post(
            "/webhooks/mercadopago/subscriptions",
            json={"type": "payment", "data": {"id": "555"}},
            headers={"x-signature": signature, "x-request-id": "req-1"},
        )

        assert response.status_code == 200

    def test_bad_signature_rejected(self, client, mercadopago):
        client.app.state.webhook_secret = "whsec-test"

        response = client.post(
            "/webhooks/mercadopago/subscriptions",
            json={"type": "payment", "data": {"id": "555"}},
            headers={"x-signature": f"ts={int(time.time())},v1=deadbeef", "x-request-id": "req-1"},
        )

        assert response.status_code == 401
        assert mercadopago.requests == []
