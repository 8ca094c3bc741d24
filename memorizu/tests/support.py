import hashlib
import hmac
import json
import time
import uuid

from memorizu import create_app
from memorizu.models import Page, PaymentStatus, User, db

WEBHOOK_SECRET = "whsec_test"
CSRF_TOKEN = "test-csrf-token"


def build_test_app(tmp_path, monkeypatch, overrides=None):
    db_path = tmp_path / f"memorizu_test_{uuid.uuid4().hex[:8]}.db"

    monkeypatch.delenv("SENTRY_DSN", raising=False)

    config = {
        "TESTING": True,
        "SECRET_KEY": "test-secret-key",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SQLALCHEMY_ENGINE_OPTIONS": {},
        "STRIPE_SECRET_KEY": "sk_test_123",
        "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "BULK_DELETE_PACING_SECONDS": 0,
        "PUBLIC_BASE_URL": "https://memorizu.test",
        "LOG_JSON": False,
        "SESSION_COOKIE_SECURE": False,
    }
    if overrides:
        config.update(overrides)
    return create_app(config)


def create_user(app, email="owner@example.com", password="correct-horse"):
    with app.app_context():
        user = User(email=email, display_name=email.split("@")[0])
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user.id


def create_page(app, owner_id, title="Our Anniversary", published=False, status=PaymentStatus.UNPAID, **fields):
    components = fields.pop("components", None)
    with app.app_context():
        page = Page(
            owner_id=owner_id,
            title=title,
            published=published,
            payment_status=PaymentStatus(status).value,
            **fields,
        )
        page.components = components or [
            {"id": "c1", "type": "heading", "data": {"text": title}},
            {"id": "c2", "type": "text", "data": {"content": "<p>Happy anniversary, love!</p>"}},
        ]
        db.session.add(page)
        db.session.commit()
        return page.id


def get_page(app, page_id):
    with app.app_context():
        page = db.session.get(Page, page_id)
        if page is not None:
            db.session.expunge(page)
        return page


def login(client, user_id):
    with client.session_transaction() as session:
        session["_user_id"] = user_id
        session["_fresh"] = True
        session["_csrf_token"] = CSRF_TOKEN


def csrf_headers():
    return {"X-CSRF-Token": CSRF_TOKEN}


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    timestamp = int(timestamp or time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type, obj, created=None, event_id=None):
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:12]}",
        "object": "event",
        "type": event_type,
        "created": int(created or time.time()),
        "data": {"object": obj},
    }


def post_webhook(client, event, secret=WEBHOOK_SECRET):
    payload = json.dumps(event)
    return client.post(
        "/webhooks/publication",
        data=payload,
        content_type="application/json",
        headers={"Stripe-Signature": sign_payload(payload, secret)},
    )
