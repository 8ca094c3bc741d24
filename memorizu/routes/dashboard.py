import logging

from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user, login_required

from ..cleanup import bulk_delete, list_unpaid_pages
from ..errors import PageNotFoundError
from ..gate import is_publicly_visible, page_summary
from ..payments import get_billing
from ..qr_codes import generate_page_qr_code, get_page_qr_code, list_owner_qr_codes, qr_code_payload
from ..slugs import assign_custom_slug, check_slug_availability, generate_slug, remove_custom_slug, suggest_slug
from ..store import get_page_store
from ..utils import clean_text, isoformat, json_body

logger = logging.getLogger(__name__)

dashboard_bp = Blueprint('dashboard', __name__)
PAGE_TITLE_MAX_LENGTH = 200
BULK_DELETE_MAX_PAGES = 100


def _owned_page(page_id):
    page = get_page_store().get_for_owner(current_user.id, page_id)
    if page is None:
        raise PageNotFoundError('Page not found.', page_id=page_id)
    return page


def page_detail(page):
    payload = page_summary(page)
    payload.update({
        'components': page.components,
        'settings': page.settings,
        'payment_intent_id': page.payment_intent_id,
        'published_url': page.published_url,
        'published_at': isoformat(page.published_at),
        'paid_at': isoformat(page.paid_at),
        'disputed_at': isoformat(page.disputed_at),
        'refunded_at': isoformat(page.refunded_at),
    })
    return payload


def _page_fields(payload, partial=False):
    fields = {}
    if 'title' in payload or not partial:
        fields['title'] = clean_text(payload.get('title'), PAGE_TITLE_MAX_LENGTH) or 'Untitled Page'
    if 'components' in payload:
        if not isinstance(payload['components'], list):
            abort(400, description='components must be a list.')
        fields['components'] = payload['components']
    if 'settings' in payload:
        if not isinstance(payload['settings'], dict):
            abort(400, description='settings must be an object.')
        fields['settings'] = payload['settings']
    return fields


def _refresh_qr_code(page):
    # A QR code always encodes the page's current canonical URL.
    if get_page_qr_code(page) is not None and is_publicly_visible(page):
        generate_page_qr_code(page)


def _debug_routes_enabled():
    if not current_app.config.get('DEBUG_ROUTES_ENABLED'):
        abort(404)


# Pages
@dashboard_bp.route('/pages')
@login_required
def list_pages():
    pages = get_page_store().list_for_owner(current_user.id)
    return jsonify({'pages': [page_summary(page) for page in pages]})


@dashboard_bp.route('/pages', methods=['POST'])
@login_required
def create_page():
    fields = _page_fields(json_body())
    page = get_page_store().create(
        current_user.id,
        fields['title'],
        components=fields.get('components'),
        settings=fields.get('settings'),
    )
    logger.info('Page %s created by %s', page.id, current_user.id)
    return jsonify({'page': page_detail(page)}), 201


@dashboard_bp.route('/pages/<page_id>')
@login_required
def get_page(page_id):
    return jsonify({'page': page_detail(_owned_page(page_id))})


@dashboard_bp.route('/pages/<page_id>', methods=['PATCH'])
@login_required
def update_page(page_id):
    page = _owned_page(page_id)
    fields = _page_fields(json_body(), partial=True)
    if fields:
        get_page_store().update(page, **fields)
    return jsonify({'page': page_detail(page)})


@dashboard_bp.route('/pages/<page_id>', methods=['DELETE'])
@login_required
def delete_page(page_id):
    get_page_store().delete(current_user.id, page_id)
    logger.info('Page %s deleted by %s', page_id, current_user.id)
    return jsonify({'deleted': True, 'page_id': page_id})


# Cleanup
@dashboard_bp.route('/pages/unpaid')
@login_required
def unpaid_pages():
    return jsonify({'pages': list_unpaid_pages(get_page_store(), current_user.id)})


@dashboard_bp.route('/pages/bulk-delete', methods=['POST'])
@login_required
def bulk_delete_pages():
    page_ids = json_body().get('page_ids')
    if not isinstance(page_ids, list) or not all(isinstance(page_id, str) for page_id in page_ids):
        abort(400, description='page_ids must be a list of page ids.')
    if len(page_ids) > BULK_DELETE_MAX_PAGES:
        abort(400, description=f'At most {BULK_DELETE_MAX_PAGES} pages can be deleted at once.')
    result = bulk_delete(
        get_page_store(),
        current_user.id,
        page_ids,
        pacing_seconds=float(current_app.config.get('BULK_DELETE_PACING_SECONDS', 0.0)),
    )
    return jsonify(result.to_dict())


# Slugs
@dashboard_bp.route('/slugs/suggest')
@login_required
def suggest_page_slug():
    return jsonify({'slug': suggest_slug(request.args.get('title', ''))})


@dashboard_bp.route('/slugs/check')
@login_required
def check_page_slug():
    candidate = generate_slug(request.args.get('slug', ''))
    page_id = clean_text(request.args.get('page_id'), 64) or None
    available = check_slug_availability(get_page_store(), current_user.id, candidate, exclude_page_id=page_id)
    return jsonify({'slug': candidate, 'available': available})


@dashboard_bp.route('/pages/<page_id>/slug', methods=['PUT'])
@login_required
def set_page_slug(page_id):
    raw_slug = json_body().get('slug')
    if not isinstance(raw_slug, str):
        abort(400, description='slug is required.')
    page = assign_custom_slug(get_page_store(), current_user.id, page_id, raw_slug)
    _refresh_qr_code(page)
    return jsonify({'page': page_summary(page)})


@dashboard_bp.route('/pages/<page_id>/slug', methods=['DELETE'])
@login_required
def delete_page_slug(page_id):
    page = remove_custom_slug(get_page_store(), current_user.id, page_id)
    _refresh_qr_code(page)
    return jsonify({'page': page_summary(page)})


# QR codes
@dashboard_bp.route('/pages/<page_id>/qr-code', methods=['POST'])
@login_required
def create_qr_code(page_id):
    record = generate_page_qr_code(_owned_page(page_id))
    return jsonify({'qr_code': qr_code_payload(record)}), 201


@dashboard_bp.route('/pages/<page_id>/qr-code')
@login_required
def get_qr_code(page_id):
    record = get_page_qr_code(_owned_page(page_id))
    if record is None:
        abort(404, description='QR code not found.')
    return jsonify({'qr_code': qr_code_payload(record)})


@dashboard_bp.route('/qr-codes')
@login_required
def list_qr_codes():
    records = list_owner_qr_codes(current_user.id)
    return jsonify({'qr_codes': [qr_code_payload(record) for record in records]})


# Publication payments
@dashboard_bp.route('/publication/pricing')
def publication_pricing():
    return jsonify(get_billing().publication_pricing())


@dashboard_bp.route('/pages/<page_id>/checkout', methods=['POST'])
@login_required
def create_checkout(page_id):
    page = _owned_page(page_id)
    base_url = (current_app.config.get('PUBLIC_BASE_URL') or '').rstrip('/')
    checkout = get_billing().create_publication_checkout(
        current_user,
        page,
        success_url=f'{base_url}/builder/{page.id}?payment=success',
        cancel_url=f'{base_url}/builder/{page.id}?payment=cancelled',
    )
    return jsonify(checkout)


@dashboard_bp.route('/pages/<page_id>/refund', methods=['POST'])
@login_required
def refund_page(page_id):
    page = _owned_page(page_id)
    reason = clean_text(json_body().get('reason'), 40) or None
    refund = get_billing().refund_publication(page, reason)
    logger.info('Refund %s issued for page %s', refund['refund_id'], page.id)
    return jsonify({'success': True, **refund, 'page': page_summary(page)})


@dashboard_bp.route('/pages/<page_id>/verify-payment', methods=['POST'])
@login_required
def verify_payment(page_id):
    page = _owned_page(page_id)
    recovered = get_billing().verify_and_publish(current_user, page)
    return jsonify({'success': True, **recovered, 'page': page_summary(page)})


# Debug
@dashboard_bp.route('/debug/pages/<page_id>/status')
@login_required
def debug_page_status(page_id):
    _debug_routes_enabled()
    page = _owned_page(page_id)
    payload = page_detail(page)
    payload.update({
        'dispute_id': page.dispute_id,
        'refund_id': page.refund_id,
        'recovered_at': isoformat(page.recovered_at),
        'payment_event_at': isoformat(page.payment_event_at),
        'publicly_visible': is_publicly_visible(page),
    })
    return jsonify({'page': payload})


@dashboard_bp.route('/debug/pages/<page_id>/force-publish', methods=['POST'])
@login_required
def debug_force_publish(page_id):
    _debug_routes_enabled()
    page = _owned_page(page_id)
    intent_id = clean_text(json_body().get('payment_intent_id'), 120) or None
    get_billing().force_publish(page, intent_id)
    return jsonify({'success': True, 'page': page_summary(page)})
