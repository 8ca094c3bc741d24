from flask import Blueprint, abort, current_app, jsonify, redirect, render_template

from .. import get_csp_nonce
from ..gate import canonical_url, is_publicly_visible
from ..rendering import page_metadata, public_page_payload, sanitize_components, sanitize_settings
from ..slugs import resolve_page
from ..store import get_page_store
from ..utils import clean_text

public_bp = Blueprint('public', __name__)

# Slugs are at most 50 chars and ids are 32 hex chars; anything longer cannot resolve.
MAX_LOOKUP_LENGTH = 80


def _visible_page(id_or_slug):
    key = clean_text(id_or_slug, MAX_LOOKUP_LENGTH + 1)
    if not key or len(key) > MAX_LOOKUP_LENGTH:
        return None
    page = resolve_page(get_page_store(), key)
    if not is_publicly_visible(page):
        # Drafts, unpaid and disputed pages all look the same from outside.
        return None
    return page


def _render_page(page):
    return render_template(
        'public/page.html',
        page=page,
        components=sanitize_components(page.components),
        settings=sanitize_settings(page.settings),
        meta=page_metadata(page),
        csp_nonce=get_csp_nonce(),
    )


@public_bp.route('/p/<id_or_slug>')
def page_by_id(id_or_slug):
    page = _visible_page(id_or_slug)
    if page is None:
        abort(404)
    return _render_page(page)


@public_bp.route('/p/<user_id>/<page_id>')
def legacy_page(user_id, page_id):
    # Old share links carried the owner id; they now point at the canonical address.
    page = _visible_page(page_id)
    if page is None or page.id != page_id or page.owner_id != user_id:
        abort(404)
    return redirect(canonical_url(page), code=301)


@public_bp.route('/s/<slug>')
def page_by_slug(slug):
    page = _visible_page(slug)
    if page is None:
        abort(404)
    if page.custom_slug != slug:
        # An id reached through /s/ is served at its canonical address instead.
        return redirect(canonical_url(page), code=301)
    return _render_page(page)


@public_bp.route('/api/public/pages/<id_or_slug>')
def public_page_api(id_or_slug):
    page = _visible_page(id_or_slug)
    if page is None:
        abort(404, description='Page not available.')
    response = jsonify(public_page_payload(page))
    response.headers['Cache-Control'] = 'public, max-age=60, s-maxage=120'
    current_app.logger.debug('Delivered page %s', page.id)
    return response
