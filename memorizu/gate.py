"""Publication gate.

Public visibility is a pure function of ``published`` and ``payment_status``.
Once a page has been published it stays reachable even if its payment later
runs into trouble, so links that were already shared keep working; the
payment status only changes the label owners see.
"""

from enum import Enum

from flask import current_app, has_app_context

from .models import PaymentStatus, normalize_payment_status

DEFAULT_PUBLIC_BASE_URL = 'https://www.memorizu.com'


class PageState(str, Enum):
    PUBLISHED = 'published'
    PUBLISHED_WITH_ISSUE = 'published_with_issue'
    PAYMENT_PENDING = 'payment_pending'
    PAYMENT_FAILED = 'payment_failed'
    DRAFT = 'draft'


PAGE_STATE_LABELS = {
    PageState.PUBLISHED: 'Published',
    PageState.PUBLISHED_WITH_ISSUE: 'Published (payment issue)',
    PageState.PAYMENT_PENDING: 'Pending Payment',
    PageState.PAYMENT_FAILED: 'Payment Failed',
    PageState.DRAFT: 'Draft',
}
VISIBLE_STATES = frozenset({PageState.PUBLISHED, PageState.PUBLISHED_WITH_ISSUE})


def classify_fields(published, payment_status):
    status = normalize_payment_status(payment_status)
    if published:
        if status == PaymentStatus.PAID:
            return PageState.PUBLISHED
        return PageState.PUBLISHED_WITH_ISSUE
    if status == PaymentStatus.PENDING:
        return PageState.PAYMENT_PENDING
    if status == PaymentStatus.FAILED:
        return PageState.PAYMENT_FAILED
    return PageState.DRAFT


def classify(page):
    return classify_fields(bool(page.published), page.payment_status)


def is_publicly_visible(page):
    return page is not None and classify(page) in VISIBLE_STATES


def state_label(state):
    return PAGE_STATE_LABELS[state]


def canonical_url(page):
    if page.custom_slug:
        return f'/s/{page.custom_slug}'
    return f'/p/{page.id}'


def absolute_url(page):
    base_url = DEFAULT_PUBLIC_BASE_URL
    if has_app_context():
        base_url = (current_app.config.get('PUBLIC_BASE_URL') or DEFAULT_PUBLIC_BASE_URL).rstrip('/')
    return f'{base_url}{canonical_url(page)}'


def page_summary(page):
    state = classify(page)
    return {
        'id': page.id,
        'title': page.title,
        'custom_slug': page.custom_slug,
        'published': bool(page.published),
        'payment_status': page.status.value,
        'state': state.value,
        'state_label': state_label(state),
        'canonical_url': canonical_url(page),
        'created_at': page.created_at.isoformat() if page.created_at else None,
        'updated_at': page.updated_at.isoformat() if page.updated_at else None,
    }
