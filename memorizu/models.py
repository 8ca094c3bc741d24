from datetime import datetime, timezone
from enum import Enum
import json
import uuid
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()


class PaymentStatus(str, Enum):
    UNPAID = 'unpaid'
    PENDING = 'pending'
    PAID = 'paid'
    FAILED = 'failed'
    DISPUTED = 'disputed'
    REFUNDED = 'refunded'


PAYMENT_STATUSES = tuple(status.value for status in PaymentStatus)

MANUAL_OVERRIDE_INTENT = 'manual-override'
SLUG_COLUMN_LENGTH = 50


def utc_now_naive():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_record_id():
    return uuid.uuid4().hex


def normalize_payment_status(value, default=PaymentStatus.UNPAID):
    if isinstance(value, PaymentStatus):
        return value
    candidate = (value or '').strip().lower()
    if candidate in PAYMENT_STATUSES:
        return PaymentStatus(candidate)
    return default


def _loads(raw_value, fallback):
    if not raw_value:
        return fallback
    try:
        return json.loads(raw_value)
    except (TypeError, json.JSONDecodeError):
        return fallback


class User(UserMixin, db.Model):
    id = db.Column(db.String(32), primary_key=True, default=new_record_id)
    email = db.Column(db.String(200), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(120))
    password_hash = db.Column(db.String(256), nullable=False)
    stripe_customer_id = db.Column(db.String(80), index=True)
    created_at = db.Column(db.DateTime, default=utc_now_naive)

    pages = db.relationship('Page', backref='owner', lazy=True, cascade='all, delete-orphan')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)


class Page(db.Model):
    id = db.Column(db.String(32), primary_key=True, default=new_record_id)
    owner_id = db.Column(db.String(32), db.ForeignKey('user.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False, default='Untitled Page')
    components_json = db.Column(db.Text, nullable=False, default='[]')
    settings_json = db.Column(db.Text, nullable=False, default='{}')
    custom_slug = db.Column(db.String(SLUG_COLUMN_LENGTH), unique=True, index=True)
    published = db.Column(db.Boolean, nullable=False, default=False, index=True)
    payment_status = db.Column(db.String(20), nullable=False, default=PaymentStatus.UNPAID.value, index=True)
    payment_intent_id = db.Column(db.String(120), index=True)
    published_url = db.Column(db.String(200))
    published_at = db.Column(db.DateTime)
    paid_at = db.Column(db.DateTime)
    disputed_at = db.Column(db.DateTime)
    dispute_id = db.Column(db.String(120))
    refunded_at = db.Column(db.DateTime)
    refund_id = db.Column(db.String(120))
    recovered_at = db.Column(db.DateTime)
    payment_event_at = db.Column(db.DateTime)  # created time of the last applied processor event
    created_at = db.Column(db.DateTime, default=utc_now_naive, index=True)
    updated_at = db.Column(db.DateTime, default=utc_now_naive, onupdate=utc_now_naive, index=True)

    __table_args__ = (
        db.Index('ix_page_owner_updated', 'owner_id', 'updated_at'),
    )

    @property
    def status(self):
        return normalize_payment_status(self.payment_status)

    @property
    def components(self):
        value = _loads(self.components_json, [])
        return value if isinstance(value, list) else []

    @components.setter
    def components(self, value):
        self.components_json = json.dumps(list(value or []), ensure_ascii=False)

    @property
    def settings(self):
        value = _loads(self.settings_json, {})
        return value if isinstance(value, dict) else {}

    @settings.setter
    def settings(self, value):
        self.settings_json = json.dumps(dict(value or {}), ensure_ascii=False)


class PageQRCode(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    page_id = db.Column(db.String(32), db.ForeignKey('page.id', ondelete='CASCADE'), unique=True, nullable=False, index=True)
    page_url = db.Column(db.String(300), nullable=False)
    qr_code_url = db.Column(db.String(600), nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now_naive, index=True)

    page = db.relationship(
        'Page',
        backref=db.backref('qr_code', uselist=False, lazy=True, cascade='all, delete-orphan'),
    )
