"""
Stripe integration for pay-to-publish.

Handles:
- Verifying and applying publication webhooks
- Creating publication checkout sessions
- Refunds, payment recovery and the debug publish override

Webhook events are delivered at least once and in no guaranteed order. Each
page remembers the creation time of the last processor event applied to it
(``payment_event_at``); older events are dropped instead of rolling the page
back.
"""

import json
import logging
from datetime import datetime, timezone

import stripe
from flask import current_app

from .errors import (
    PageNotFoundError,
    PaymentNotFoundError,
    PaymentProviderError,
    PublicationStateError,
    WebhookSignatureError,
)
from .models import MANUAL_OVERRIDE_INTENT, PaymentStatus, db, utc_now_naive

logger = logging.getLogger(__name__)

PUBLICATION_PAYMENT_TYPE = 'page_publication'
REFUND_REASONS = {'duplicate', 'fraudulent', 'requested_by_customer'}

EVENT_CHECKOUT_COMPLETED = 'checkout.session.completed'
EVENT_PAYMENT_SUCCEEDED = 'payment_intent.succeeded'
EVENT_PAYMENT_FAILED = 'payment_intent.payment_failed'
EVENT_DISPUTE_CREATED = 'charge.dispute.created'

ACTION_APPLIED = 'applied'
ACTION_DROPPED = 'dropped'
ACTION_STALE = 'stale'
ACTION_IGNORED = 'ignored'


def _field(obj, name, default=None):
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _event_time(created):
    try:
        return datetime.fromtimestamp(int(created), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def get_billing():
    return current_app.extensions['memorizu.billing']


class PublicationBilling:
    """Stripe billing for page publication."""

    def __init__(
        self,
        store,
        stripe_secret_key='',
        stripe_webhook_secret='',
        *,
        webhook_tolerance=300,
        price_cents=499,
        currency='usd',
        description='Page Publication Fee',
        charge_lookup=None,
    ):
        """
        Initialize billing.

        Args:
            store: Page store that receives every page mutation
            stripe_secret_key: Stripe secret API key
            stripe_webhook_secret: Webhook signing secret
            webhook_tolerance: Maximum accepted signature age in seconds
            price_cents: Publication price in the smallest currency unit
            currency: ISO currency code
            description: Line item description shown at checkout
            charge_lookup: Callable returning a charge for a charge id,
                defaults to ``stripe.Charge.retrieve``
        """
        self.store = store
        self.secret_key = stripe_secret_key
        self.webhook_secret = stripe_webhook_secret
        self.webhook_tolerance = webhook_tolerance
        self.price_cents = price_cents
        self.currency = currency
        self.description = description
        self.charge_lookup = charge_lookup or self._retrieve_charge

    @classmethod
    def from_config(cls, config, store):
        return cls(
            store,
            config.get('STRIPE_SECRET_KEY', ''),
            config.get('STRIPE_WEBHOOK_SECRET', ''),
            webhook_tolerance=config.get('STRIPE_WEBHOOK_TOLERANCE_SECONDS', 300),
            price_cents=config.get('PUBLICATION_PRICE_CENTS', 499),
            currency=config.get('PUBLICATION_CURRENCY', 'usd'),
            description=config.get('PUBLICATION_DESCRIPTION', 'Page Publication Fee'),
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook_signature(self, payload, signature):
        """
        Verify the Stripe-Signature header and decode the event.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header

        Returns:
            The event as a dict

        Raises:
            WebhookSignatureError: If the header is missing or does not verify
        """
        if not signature:
            raise WebhookSignatureError('No signature')
        if not self.webhook_secret:
            logger.error('Publication webhook received but STRIPE_WEBHOOK_SECRET is not configured.')
            raise WebhookSignatureError('Invalid signature')

        body = payload.decode('utf-8') if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                self.webhook_tolerance,
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning('Webhook signature verification failed: %s', exc)
            raise WebhookSignatureError('Invalid signature') from exc

        try:
            event = json.loads(body)
        except json.JSONDecodeError as exc:
            raise WebhookSignatureError('Invalid payload') from exc
        if not isinstance(event, dict):
            raise WebhookSignatureError('Invalid payload')
        return event

    def process_webhook(self, payload, signature):
        """
        Process an incoming Stripe webhook.

        Signature failures raise ``WebhookSignatureError``. Store failures
        propagate so the endpoint answers 500 and Stripe retries later.
        Everything else, including events that cannot be correlated to a
        page, returns a result dict.
        """
        event = self.verify_webhook_signature(payload, signature)
        event_type = event.get('type') or ''
        event_id = event.get('id') or ''
        event_at = _event_time(event.get('created'))
        obj = _field(event.get('data'), 'object') or {}

        handlers = {
            EVENT_CHECKOUT_COMPLETED: self.handle_checkout_completed,
            EVENT_PAYMENT_SUCCEEDED: self.handle_payment_succeeded,
            EVENT_PAYMENT_FAILED: self.handle_payment_failed,
            EVENT_DISPUTE_CREATED: self.handle_charge_dispute,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info('Unhandled event type: %s', event_type)
            result = {'action': ACTION_IGNORED, 'handled': False}
        else:
            result = handler(obj, event_at=event_at)
            result['handled'] = True
        result['event_id'] = event_id
        result['event_type'] = event_type
        return result

    def handle_checkout_completed(self, session, event_at=None):
        """Handle checkout.session.completed: the publication was paid."""
        return self._apply_paid(
            _field(session, 'metadata'),
            _field(session, 'payment_intent'),
            event_at=event_at,
        )

    def handle_payment_succeeded(self, payment_intent, event_at=None):
        """Handle payment_intent.succeeded: same transition as a completed checkout."""
        return self._apply_paid(
            _field(payment_intent, 'metadata'),
            _field(payment_intent, 'id'),
            event_at=event_at,
        )

    def handle_payment_failed(self, payment_intent, event_at=None):
        """Handle payment_intent.payment_failed: unpublish and mark failed."""
        intent_id = _field(payment_intent, 'id')
        page = self._correlate(_field(payment_intent, 'metadata'), EVENT_PAYMENT_FAILED)
        if page is None:
            return {'action': ACTION_DROPPED}
        if self._is_stale(page, event_at):
            return {'action': ACTION_STALE, 'page_id': page.id}
        if page.status == PaymentStatus.PAID and page.payment_intent_id and page.payment_intent_id != intent_id:
            logger.warning(
                'Ignoring failed intent %s for page %s already paid by %s.',
                intent_id,
                page.id,
                page.payment_intent_id,
            )
            return {'action': ACTION_STALE, 'page_id': page.id}

        self.store.update(
            page,
            payment_status=PaymentStatus.FAILED,
            payment_intent_id=intent_id or page.payment_intent_id,
            published=False,
            published_url=None,
            payment_event_at=event_at or page.payment_event_at,
        )
        logger.info('Payment failed for page %s, user %s', page.id, page.owner_id)
        return {'action': ACTION_APPLIED, 'page_id': page.id}

    def handle_charge_dispute(self, dispute, event_at=None):
        """
        Handle charge.dispute.created.

        Disputes reference charges rather than payment intents, so the page is
        found through the disputed charge's metadata.
        """
        charge = _field(dispute, 'charge')
        if isinstance(charge, str):
            charge = self.charge_lookup(charge)
        page = self._correlate(_field(charge, 'metadata'), EVENT_DISPUTE_CREATED)
        if page is None:
            return {'action': ACTION_DROPPED}
        if self._is_stale(page, event_at):
            return {'action': ACTION_STALE, 'page_id': page.id}

        self.store.update(
            page,
            payment_status=PaymentStatus.DISPUTED,
            published=False,
            published_url=None,
            disputed_at=utc_now_naive(),
            dispute_id=_field(dispute, 'id'),
            payment_event_at=event_at or page.payment_event_at,
        )
        logger.info('Dispute created for page %s, user %s', page.id, page.owner_id)
        return {'action': ACTION_APPLIED, 'page_id': page.id}

    def _retrieve_charge(self, charge_id):
        return stripe.Charge.retrieve(charge_id, api_key=self.secret_key or None)

    def _correlate(self, metadata, event_type):
        user_id = _field(metadata, 'userId')
        page_id = _field(metadata, 'pageId')
        if not user_id or not page_id:
            logger.warning('Dropping %s event without userId/pageId metadata.', event_type)
            return None
        page = self.store.get_for_owner(user_id, page_id)
        if page is None:
            logger.warning('Dropping %s event for unknown page %s of user %s.', event_type, page_id, user_id)
        return page

    def _is_stale(self, page, event_at):
        if event_at is None or page.payment_event_at is None:
            return False
        if event_at < page.payment_event_at:
            logger.warning(
                'Dropping out-of-order event for page %s (event %s, last applied %s).',
                page.id,
                event_at.isoformat(),
                page.payment_event_at.isoformat(),
            )
            return True
        return False

    def _apply_paid(self, metadata, intent_id, event_at=None):
        page = self._correlate(metadata, 'payment success')
        if page is None:
            return {'action': ACTION_DROPPED}
        if self._is_stale(page, event_at):
            return {'action': ACTION_STALE, 'page_id': page.id}
        if page.status == PaymentStatus.REFUNDED and intent_id and intent_id == page.payment_intent_id:
            logger.warning('Ignoring success for refunded intent %s on page %s.', intent_id, page.id)
            return {'action': ACTION_STALE, 'page_id': page.id}
        self.mark_paid(page, intent_id or page.payment_intent_id, event_at=event_at)
        logger.info('Page %s published successfully for user %s', page.id, page.owner_id)
        return {'action': ACTION_APPLIED, 'page_id': page.id}

    def mark_paid(self, page, intent_id, event_at=None, **extra):
        now = utc_now_naive()
        return self.store.update(
            page,
            payment_status=PaymentStatus.PAID,
            payment_intent_id=intent_id,
            paid_at=extra.pop('paid_at', None) or now,
            published=True,
            published_url=page.id,
            published_at=now,
            payment_event_at=event_at or page.payment_event_at,
            **extra,
        )

    # ------------------------------------------------------------------
    # Owner-initiated payment operations
    # ------------------------------------------------------------------

    def publication_pricing(self):
        return {
            'price': self.price_cents / 100,
            'price_cents': self.price_cents,
            'currency': self.currency,
            'description': self.description,
        }

    def _payment_metadata(self, page):
        return {
            'userId': page.owner_id,
            'pageId': page.id,
            'type': PUBLICATION_PAYMENT_TYPE,
        }

    def ensure_customer(self, user):
        if user.stripe_customer_id:
            return user.stripe_customer_id
        try:
            customer = stripe.Customer.create(
                email=user.email,
                metadata={'userId': user.id},
                api_key=self.secret_key or None,
            )
        except stripe.StripeError as exc:
            logger.exception('Error creating Stripe customer for user %s', user.id)
            raise PaymentProviderError('Failed to create publication payment') from exc
        user.stripe_customer_id = _field(customer, 'id')
        db.session.commit()
        return user.stripe_customer_id

    def create_publication_checkout(self, user, page, success_url, cancel_url):
        """
        Create a one-off Checkout Session that pays for publishing ``page``.

        Returns:
            Dict with session_id and url
        """
        if page.owner_id != user.id:
            raise PageNotFoundError('Page not found.', page_id=page.id)
        if page.published and page.status == PaymentStatus.PAID:
            raise PublicationStateError('Page is already published and paid', page_id=page.id)

        customer_id = self.ensure_customer(user)
        metadata = self._payment_metadata(page)
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode='payment',
                line_items=[
                    {
                        'price_data': {
                            'currency': self.currency,
                            'product_data': {
                                'name': f'Publish Page: {page.title or "Untitled Page"}',
                                'description': self.description,
                                'metadata': {'pageId': page.id, 'userId': page.owner_id},
                            },
                            'unit_amount': self.price_cents,
                        },
                        'quantity': 1,
                    }
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                payment_intent_data={'metadata': metadata},
                billing_address_collection='auto',
                api_key=self.secret_key or None,
            )
        except stripe.StripeError as exc:
            logger.exception('Error creating publication payment for page %s', page.id)
            raise PaymentProviderError('Failed to create publication payment') from exc

        if page.status != PaymentStatus.PAID:
            self.store.update(page, payment_status=PaymentStatus.PENDING)
        return {'session_id': _field(session, 'id'), 'url': _field(session, 'url')}

    def refund_publication(self, page, reason=None):
        if page.status != PaymentStatus.PAID:
            raise PublicationStateError('Page is not paid or already refunded', page_id=page.id)
        if not page.payment_intent_id or page.payment_intent_id == MANUAL_OVERRIDE_INTENT:
            raise PublicationStateError('Page has no refundable payment', page_id=page.id)

        refund_reason = reason if reason in REFUND_REASONS else 'requested_by_customer'
        try:
            refund = stripe.Refund.create(
                payment_intent=page.payment_intent_id,
                reason=refund_reason,
                metadata={
                    'type': 'page_publication_refund',
                    'refund_reason': refund_reason,
                },
                api_key=self.secret_key or None,
            )
        except stripe.StripeError as exc:
            logger.exception('Error creating refund for page %s', page.id)
            raise PaymentProviderError('Failed to process refund') from exc

        now = utc_now_naive()
        self.store.update(
            page,
            payment_status=PaymentStatus.REFUNDED,
            published=False,
            published_url=None,
            refunded_at=now,
            refund_id=_field(refund, 'id'),
            payment_event_at=now,
        )
        return {
            'refund_id': _field(refund, 'id'),
            'amount': (_field(refund, 'amount') or 0) / 100,
        }

    def find_publication_charge(self, user, page):
        if not user.stripe_customer_id:
            raise PaymentNotFoundError('No Stripe customer found')
        try:
            charges = stripe.Charge.list(
                customer=user.stripe_customer_id,
                limit=100,
                api_key=self.secret_key or None,
            )
        except stripe.StripeError as exc:
            logger.exception('Error listing charges for user %s', user.id)
            raise PaymentProviderError('Failed to verify payment') from exc

        for charge in _field(charges, 'data') or []:
            metadata = _field(charge, 'metadata')
            if (
                _field(charge, 'status') == 'succeeded'
                and _field(metadata, 'pageId') == page.id
                and _field(metadata, 'userId') == user.id
                and _field(metadata, 'type') == PUBLICATION_PAYMENT_TYPE
            ):
                return charge
        return None

    def verify_and_publish(self, user, page):
        """Publish a page whose payment succeeded but whose webhook never landed."""
        charge = self.find_publication_charge(user, page)
        if charge is None:
            raise PaymentNotFoundError('No successful payment found for this page', page_id=page.id)

        self.mark_paid(
            page,
            _field(charge, 'payment_intent'),
            paid_at=_event_time(_field(charge, 'created')),
            recovered_at=utc_now_naive(),
        )
        logger.info('Recovered payment %s for page %s', _field(charge, 'id'), page.id)
        return {
            'charge_id': _field(charge, 'id'),
            'amount': (_field(charge, 'amount') or 0) / 100,
        }

    def force_publish(self, page, payment_intent_id=None):
        self.mark_paid(page, payment_intent_id or MANUAL_OVERRIDE_INTENT)
        logger.warning('Page %s forced to published status', page.id)
        return page
