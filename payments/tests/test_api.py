"""
API tests for the payments endpoints.

Exercises the checkout flow end to end through DRF, the organizer
Connect endpoints and the staff payout dashboard.
"""
import pytest

from payments.exceptions import ProviderGatewayError
from payments.models import AuditLog, Payment, Payout, StripeAccount
from payments.tasks import process_due_payouts

from .fakes import enabled_account_payload

CHECKOUT = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com", "phone": "555-0100"}


@pytest.mark.django_db
def test_calculate_price_is_public(client, gateway, paid_event):
    resp = client.get(f"/api/payments/calculate/?event_id={paid_event.pk}&quantity=7")

    assert resp.status_code == 200
    data = resp.json()
    assert data["subtotal"] == 8638
    assert data["processing_fee"] == 281
    assert data["total"] == 8919
    assert data["total_display"] == "89.19"


@pytest.mark.django_db
def test_calculate_price_unknown_event(client, gateway):
    assert client.get("/api/payments/calculate/?event_id=424242").status_code == 404


@pytest.mark.django_db
def test_checkout_requires_login(client, gateway, paid_event):
    resp = client.post(
        "/api/payments/create-payment-intent/",
        {"event_id": paid_event.pk, "quantity": 1, **CHECKOUT},
        content_type="application/json",
    )
    assert resp.status_code == 401


@pytest.mark.django_db
def test_checkout_and_confirm(auth_client, gateway, paid_event):
    resp = auth_client.post(
        "/api/payments/create-payment-intent/",
        {"event_id": paid_event.pk, "quantity": 2, **CHECKOUT},
        content_type="application/json",
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["client_secret"].endswith("_secret")
    assert body["breakdown"]["total"] == 2570
    assert body["organizer_has_stripe"] is False

    intent_id = Payment.objects.get(pk=body["payment_id"]).stripe_payment_intent_id
    not_yet = auth_client.post(
        "/api/payments/confirm/", {"payment_intent_id": intent_id}, content_type="application/json"
    )
    assert not_yet.status_code == 400

    gateway.intents[intent_id] = "succeeded"
    confirmed = auth_client.post(
        "/api/payments/confirm/", {"payment_intent_id": intent_id}, content_type="application/json"
    )
    assert confirmed.status_code == 200
    tickets = confirmed.json()["tickets"]
    assert len(tickets) == 2
    assert sum(t["total_price"] for t in tickets) == 2570

    mine = auth_client.get("/api/payments/mine/")
    assert mine.status_code == 200
    assert mine.json()[0]["status"] == "succeeded"


@pytest.mark.django_db
def test_checkout_validation_errors(auth_client, gateway, free_event, limited_event):
    free = auth_client.post(
        "/api/payments/create-payment-intent/",
        {"event_id": free_event.pk, "quantity": 1, **CHECKOUT},
        content_type="application/json",
    )
    assert free.status_code == 400

    sold_out = auth_client.post(
        "/api/payments/create-payment-intent/",
        {"event_id": limited_event.pk, "quantity": 6, **CHECKOUT},
        content_type="application/json",
    )
    assert sold_out.status_code == 400
    assert sold_out.json()["detail"] == "Only 5 tickets available."

    missing_email = auth_client.post(
        "/api/payments/create-payment-intent/",
        {"event_id": limited_event.pk, "quantity": 1, "first_name": "Ada", "last_name": "L"},
        content_type="application/json",
    )
    assert missing_email.status_code == 400


@pytest.mark.django_db
def test_refund_endpoint(client_for, gateway, user, other_user, paid_event, purchase):
    payment = purchase(user, paid_event)
    ticket = payment.tickets.get()

    assert client_for(other_user).post(f"/api/payments/refund/{ticket.pk}/").status_code == 403

    resp = client_for(user).post(f"/api/payments/refund/{ticket.pk}/")
    assert resp.status_code == 200
    assert resp.json()["amount"] == ticket.total_price
    assert client_for(user).post("/api/payments/refund/999999/").status_code == 404


@pytest.mark.django_db
def test_gateway_outage_returns_503(auth_client, gateway, paid_event):
    gateway.errors["create_payment_intent"] = ProviderGatewayError("timed out", ambiguous=True)
    resp = auth_client.post(
        "/api/payments/create-payment-intent/",
        {"event_id": paid_event.pk, "quantity": 1, **CHECKOUT},
        content_type="application/json",
    )
    assert resp.status_code == 503


@pytest.mark.django_db
def test_connect_onboarding_flow(client_for, gateway, organizer, user, past_event, purchase):
    organizer_client = client_for(organizer)

    created = organizer_client.post("/api/payments/connect/create/")
    assert created.status_code == 201
    account_id = created.json()["account_id"]
    assert created.json()["onboarding_url"].endswith(account_id)

    again = organizer_client.post("/api/payments/connect/create/")
    assert again.status_code == 201
    assert again.json()["account_id"] == account_id
    assert len(gateway.calls_to("create_account")) == 1

    status = organizer_client.get("/api/payments/connect/status/")
    assert status.json()["onboarding_complete"] is False
    assert organizer_client.get("/api/payments/connect/dashboard/").status_code == 400

    payout = Payout.objects.get(payment=purchase(user, past_event))
    gateway.accounts[account_id] = enabled_account_payload(account_id)
    status = organizer_client.get("/api/payments/connect/status/")
    assert status.json()["payouts_enabled"] is True
    payout.refresh_from_db()
    assert payout.payout_method == Payout.METHOD_STRIPE

    assert organizer_client.post("/api/payments/connect/create/").status_code == 400
    dashboard = organizer_client.get("/api/payments/connect/dashboard/")
    assert dashboard.json()["dashboard_url"].endswith(account_id)
    refresh = organizer_client.post("/api/payments/connect/refresh-link/")
    assert refresh.status_code == 200


@pytest.mark.django_db
def test_connect_endpoints_without_account(auth_client, gateway):
    assert auth_client.get("/api/payments/connect/status/").json() == {
        "connected": False,
        "onboarding_complete": False,
    }
    assert auth_client.post("/api/payments/connect/refresh-link/").status_code == 404


@pytest.mark.django_db
def test_organizer_earnings(client_for, gateway, organizer, user, past_event, purchase):
    purchase(user, past_event, quantity=3)

    resp = client_for(organizer).get("/api/payments/earnings/")

    assert resp.status_code == 200
    assert resp.json()["total_earnings"] == 6000
    assert resp.json()["payout_history"][0]["payout_method"] == "manual"


@pytest.mark.django_db
def test_admin_dashboard_requires_staff(auth_client, gateway):
    assert auth_client.get("/api/payments/admin/payouts/").status_code == 403
    assert auth_client.get("/api/payments/admin/revenue/").status_code == 403


@pytest.mark.django_db
def test_admin_payout_actions(client_for, gateway, staff_user, organizer, user, past_event, purchase):
    staff = client_for(staff_user)
    manual = Payout.objects.get(payment=purchase(user, past_event))

    listing = staff.get("/api/payments/admin/payouts/?payout_method=manual")
    assert listing.status_code == 200
    assert [p["id"] for p in listing.json()["results"]] == [manual.pk]

    marked = staff.post(
        f"/api/payments/admin/payouts/{manual.pk}/mark-paid/", {"note": "wire sent"}, content_type="application/json"
    )
    assert marked.status_code == 200
    assert marked.json()["status"] == "paid"
    assert staff.post(f"/api/payments/admin/payouts/{manual.pk}/mark-paid/").status_code == 400
    assert staff.post("/api/payments/admin/payouts/999999/mark-paid/").status_code == 404
    assert staff.post(f"/api/payments/admin/payouts/{manual.pk}/retry/").status_code == 400

    StripeAccount.objects.create(
        user=organizer,
        stripe_account_id="acct_host",
        is_onboarding_complete=True,
        charges_enabled=True,
        payouts_enabled=True,
    )
    pending = Payout.objects.get(payment=purchase(user, past_event))
    assert pending.payout_method == Payout.METHOD_STRIPE

    processed = staff.post("/api/payments/admin/payouts/process/", {}, content_type="application/json")
    assert processed.status_code == 200
    assert processed.json()["succeeded"] == 1
    assert AuditLog.objects.filter(action="payout.batch", actor=staff_user).exists()

    summary = staff.get("/api/payments/admin/payouts/summary/").json()
    assert summary["paid_amount"] == 4000

    revenue = staff.get("/api/payments/admin/revenue/").json()
    assert revenue["platform_revenue"] == 1000


@pytest.mark.django_db
def test_admin_migrate_endpoint(client_for, gateway, staff_user, organizer, user, past_event, purchase):
    payout = Payout.objects.get(payment=purchase(user, past_event))
    staff = client_for(staff_user)

    refused = staff.post(
        "/api/payments/admin/payouts/migrate/", {"organizer_id": organizer.pk}, content_type="application/json"
    )
    assert refused.status_code == 400

    StripeAccount.objects.create(
        user=organizer,
        stripe_account_id="acct_host",
        is_onboarding_complete=True,
        charges_enabled=True,
        payouts_enabled=True,
    )
    resp = staff.post(
        "/api/payments/admin/payouts/migrate/", {"organizer_id": organizer.pk}, content_type="application/json"
    )
    assert resp.json() == {"migrated": 1}
    payout.refresh_from_db()
    assert payout.payout_method == Payout.METHOD_STRIPE


@pytest.mark.django_db
def test_process_due_payouts_task(gateway, user, past_event, connected_account, purchase):
    purchase(user, past_event)

    assert process_due_payouts.delay().get() == {"processed": 1, "paid": 1, "failed": 0}
