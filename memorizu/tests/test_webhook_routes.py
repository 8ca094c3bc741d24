import json

from memorizu.errors import StoreError
from memorizu.models import PaymentStatus

from .support import create_page, create_user, get_page, post_webhook, sign_payload, stripe_event


def completed_event(user_id, page_id, intent="pi_1"):
    return stripe_event(
        "checkout.session.completed",
        {"payment_intent": intent, "metadata": {"userId": user_id, "pageId": page_id, "type": "page_publication"}},
    )


def test_webhook_publishes_page_without_csrf(app, client):
    user_id = create_user(app)
    page_id = create_page(app, user_id)

    response = post_webhook(client, completed_event(user_id, page_id))
    assert response.status_code == 200
    assert response.get_json() == {"received": True}

    page = get_page(app, page_id)
    assert page.published is True
    assert page.payment_status == PaymentStatus.PAID.value
    assert page.payment_intent_id == "pi_1"
    assert page.published_url == page_id


def test_webhook_rejects_missing_or_bad_signature(app, client):
    user_id = create_user(app)
    page_id = create_page(app, user_id)
    payload = json.dumps(completed_event(user_id, page_id))

    missing = client.post("/webhooks/publication", data=payload, content_type="application/json")
    assert missing.status_code == 400
    assert missing.get_json() == {"error": "No signature"}

    forged = client.post(
        "/webhooks/publication",
        data=payload,
        content_type="application/json",
        headers={"Stripe-Signature": sign_payload(payload, secret="whsec_forged")},
    )
    assert forged.status_code == 400
    assert forged.get_json() == {"error": "Invalid signature"}
    assert get_page(app, page_id).published is False


def test_uncorrelated_and_unknown_events_are_acknowledged(app, client):
    user_id = create_user(app)
    page_id = create_page(app, user_id)
    intruder_id = create_user(app, email="intruder@example.com")

    assert post_webhook(client, completed_event(intruder_id, page_id)).status_code == 200
    assert post_webhook(client, completed_event(user_id, "missing-page")).status_code == 200
    assert post_webhook(client, stripe_event("invoice.paid", {"id": "in_1"})).status_code == 200
    assert get_page(app, page_id).published is False


def test_store_failure_returns_500(app, client, monkeypatch):
    user_id = create_user(app)
    page_id = create_page(app, user_id)
    store = app.extensions["memorizu.page_store"]

    def broken_update(page, **fields):
        raise StoreError("Unable to update page.", page_id=page.id)

    monkeypatch.setattr(store, "update", broken_update)
    response = post_webhook(client, completed_event(user_id, page_id))
    assert response.status_code == 500
    assert response.get_json() == {"error": "Webhook handler failed"}
    assert get_page(app, page_id).published is False
