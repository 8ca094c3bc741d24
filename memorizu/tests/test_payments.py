import json
import time

import pytest
import stripe

from memorizu.errors import PublicationStateError, StoreError, WebhookSignatureError
from memorizu.gate import PageState, classify
from memorizu.models import PaymentStatus
from memorizu.payments import ACTION_APPLIED, ACTION_DROPPED, ACTION_IGNORED, ACTION_STALE, PublicationBilling
from memorizu.store import InMemoryPageStore

from .support import WEBHOOK_SECRET, sign_payload, stripe_event


@pytest.fixture()
def store():
    store = InMemoryPageStore()
    store.create("u1", "Anniversary", page_id="abc")
    return store


@pytest.fixture()
def billing(store):
    return PublicationBilling(store, "sk_test_123", WEBHOOK_SECRET)


def deliver(billing, event):
    payload = json.dumps(event)
    return billing.process_webhook(payload.encode("utf-8"), sign_payload(payload))


def checkout_completed(intent="pi_1", created=None, user_id="u1", page_id="abc"):
    return stripe_event(
        "checkout.session.completed",
        {
            "id": "cs_test_1",
            "object": "checkout.session",
            "payment_intent": intent,
            "metadata": {"userId": user_id, "pageId": page_id, "type": "page_publication"},
        },
        created=created,
    )


def payment_failed(intent="pi_1", created=None):
    return stripe_event(
        "payment_intent.payment_failed",
        {"id": intent, "object": "payment_intent", "metadata": {"userId": "u1", "pageId": "abc"}},
        created=created,
    )


def test_checkout_completed_publishes_page(billing, store):
    result = deliver(billing, checkout_completed())
    page = store.get("abc")
    assert result["action"] == ACTION_APPLIED
    assert page.published is True
    assert page.status == PaymentStatus.PAID
    assert page.payment_intent_id == "pi_1"
    assert page.published_url == "abc"
    assert page.paid_at is not None and page.published_at is not None
    assert classify(page) == PageState.PUBLISHED


def test_checkout_completed_is_idempotent(billing, store):
    event = checkout_completed()
    deliver(billing, event)
    first = {"published": store.get("abc").published, "status": store.get("abc").status}
    deliver(billing, event)
    page = store.get("abc")
    assert {"published": page.published, "status": page.status} == first
    assert page.payment_intent_id == "pi_1"


def test_payment_intent_succeeded_publishes_page(billing, store):
    event = stripe_event(
        "payment_intent.succeeded",
        {"id": "pi_9", "object": "payment_intent", "metadata": {"userId": "u1", "pageId": "abc"}},
    )
    deliver(billing, event)
    assert store.get("abc").status == PaymentStatus.PAID
    assert store.get("abc").payment_intent_id == "pi_9"


def test_payment_failed_unpublishes(billing, store):
    now = int(time.time())
    deliver(billing, checkout_completed(created=now - 60))
    result = deliver(billing, payment_failed(intent="pi_1", created=now))
    page = store.get("abc")
    assert result["action"] == ACTION_APPLIED
    assert page.published is False
    assert page.status == PaymentStatus.FAILED
    assert page.published_url is None
    assert classify(page) == PageState.PAYMENT_FAILED


def test_stale_failure_does_not_unpublish(billing, store):
    now = int(time.time())
    deliver(billing, checkout_completed(created=now))
    result = deliver(billing, payment_failed(intent="pi_1", created=now - 120))
    page = store.get("abc")
    assert result["action"] == ACTION_STALE
    assert page.published is True
    assert page.status == PaymentStatus.PAID


def test_failure_of_abandoned_intent_does_not_unpublish(billing, store):
    now = int(time.time())
    deliver(billing, checkout_completed(intent="pi_2", created=now))
    result = deliver(billing, payment_failed(intent="pi_1", created=now + 5))
    assert result["action"] == ACTION_STALE
    assert store.get("abc").status == PaymentStatus.PAID


def test_dispute_with_expanded_charge(billing, store):
    deliver(billing, checkout_completed())
    event = stripe_event(
        "charge.dispute.created",
        {
            "id": "dp_1",
            "object": "dispute",
            "charge": {"id": "ch_1", "metadata": {"userId": "u1", "pageId": "abc"}},
        },
    )
    deliver(billing, event)
    page = store.get("abc")
    assert page.status == PaymentStatus.DISPUTED
    assert page.published is False
    assert page.dispute_id == "dp_1"
    assert page.disputed_at is not None


def test_dispute_looks_up_charge_by_id(store):
    lookups = []

    def charge_lookup(charge_id):
        lookups.append(charge_id)
        return {"id": charge_id, "metadata": {"userId": "u1", "pageId": "abc"}}

    billing = PublicationBilling(store, "sk_test_123", WEBHOOK_SECRET, charge_lookup=charge_lookup)
    deliver(billing, stripe_event("charge.dispute.created", {"id": "dp_2", "charge": "ch_2"}))
    assert lookups == ["ch_2"]
    assert store.get("abc").status == PaymentStatus.DISPUTED


@pytest.mark.parametrize(
    "metadata",
    [
        {},
        {"userId": "u1"},
        {"userId": "u1", "pageId": "missing"},
        {"userId": "intruder", "pageId": "abc"},
    ],
)
def test_uncorrelated_events_are_dropped(billing, store, metadata):
    event = stripe_event("checkout.session.completed", {"payment_intent": "pi_1", "metadata": metadata})
    result = deliver(billing, event)
    assert result["action"] == ACTION_DROPPED
    assert store.get("abc").published is False


def test_unknown_event_type_is_ignored(billing):
    result = deliver(billing, stripe_event("customer.created", {"id": "cus_1"}))
    assert result == {
        "action": ACTION_IGNORED,
        "handled": False,
        "event_id": result["event_id"],
        "event_type": "customer.created",
    }


def test_signature_is_required(billing):
    payload = json.dumps(checkout_completed())
    with pytest.raises(WebhookSignatureError):
        billing.process_webhook(payload, "")
    with pytest.raises(WebhookSignatureError):
        billing.process_webhook(payload, sign_payload(payload, secret="whsec_other"))
    with pytest.raises(WebhookSignatureError):
        billing.process_webhook(payload, sign_payload(payload, timestamp=time.time() - 3600))


def test_unconfigured_secret_rejects_everything(store):
    billing = PublicationBilling(store, "sk_test_123", "")
    payload = json.dumps(checkout_completed())
    with pytest.raises(WebhookSignatureError):
        billing.process_webhook(payload, sign_payload(payload))


def test_store_failure_propagates(billing, store):
    def broken_update(page, **fields):
        raise StoreError("Unable to update page.", page_id=page.id)

    store.update = broken_update
    with pytest.raises(StoreError):
        deliver(billing, checkout_completed())


def test_force_publish_uses_manual_override(billing, store):
    page = billing.force_publish(store.get("abc"))
    assert page.published is True
    assert page.payment_intent_id == "manual-override"
    with pytest.raises(PublicationStateError):
        billing.refund_publication(page)


def test_pricing(billing):
    assert billing.publication_pricing() == {
        "price": 4.99,
        "price_cents": 499,
        "currency": "usd",
        "description": "Page Publication Fee",
    }


def test_redelivered_success_does_not_undo_refund(billing, store, monkeypatch):
    monkeypatch.setattr(stripe.Refund, "create", lambda **kwargs: {"id": "re_1", "amount": 499})
    event = checkout_completed()
    deliver(billing, event)
    billing.refund_publication(store.get("abc"))

    result = deliver(billing, event)
    page = store.get("abc")
    assert result["action"] == ACTION_STALE
    assert page.status == PaymentStatus.REFUNDED
    assert page.published is False


def test_later_success_for_refunded_intent_is_ignored(billing, store, monkeypatch):
    monkeypatch.setattr(stripe.Refund, "create", lambda **kwargs: {"id": "re_1", "amount": 499})
    deliver(billing, checkout_completed(intent="pi_1"))
    billing.refund_publication(store.get("abc"))

    late = stripe_event(
        "payment_intent.succeeded",
        {"id": "pi_1", "metadata": {"userId": "u1", "pageId": "abc"}},
        created=time.time() + 60,
    )
    assert deliver(billing, late)["action"] == ACTION_STALE
    assert store.get("abc").status == PaymentStatus.REFUNDED

    # A fresh payment for the same page is still accepted.
    deliver(billing, checkout_completed(intent="pi_2", created=time.time() + 120))
    assert store.get("abc").status == PaymentStatus.PAID
