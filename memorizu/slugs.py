"""Custom URL slugs: generation, validation, availability and resolution.

Slugs live in one global namespace shared by every owner. Stored values are
always the output of ``generate_slug``, so two inputs that differ only by case
or accents compete for the same slug.
"""

import logging

from flask import current_app, has_app_context
from slugify import slugify

from .errors import PageNotFoundError, PublicationStateError, SlugUnavailableError, SlugValidationError
from .models import PaymentStatus

logger = logging.getLogger(__name__)

DEFAULT_MIN_LENGTH = 3
DEFAULT_MAX_LENGTH = 50


def _length_bounds():
    if has_app_context():
        return (
            current_app.config.get('SLUG_MIN_LENGTH', DEFAULT_MIN_LENGTH),
            current_app.config.get('SLUG_MAX_LENGTH', DEFAULT_MAX_LENGTH),
        )
    return DEFAULT_MIN_LENGTH, DEFAULT_MAX_LENGTH


def generate_slug(value):
    return slugify(value or '')


def suggest_slug(title):
    _, max_length = _length_bounds()
    return slugify(title or '', max_length=max_length)


def validate_slug(candidate):
    min_length, max_length = _length_bounds()
    value = candidate or ''
    if len(value) < min_length:
        raise SlugValidationError(f'Slug must be at least {min_length} characters.', slug=value)
    if len(value) > max_length:
        raise SlugValidationError(f'Slug must be at most {max_length} characters.', slug=value)
    if generate_slug(value) != value:
        raise SlugValidationError(
            'Slug can only contain lowercase letters, numbers, and single hyphens.',
            slug=value,
        )
    return value


def check_slug_availability(store, owner_id, candidate, exclude_page_id=None):
    """Return True when no page other than ``exclude_page_id`` uses ``candidate`` as slug or id.

    ``owner_id`` identifies who is asking; it does not narrow the search.
    Invalid candidates raise ``SlugValidationError`` before the store is hit.
    """
    validate_slug(candidate)
    taken = store.slug_taken(candidate, exclude_page_id=exclude_page_id)
    if not taken:
        # Slugs resolve before ids, so another page's id would hijack its /p/ URL.
        id_match = store.get(candidate)
        taken = id_match is not None and id_match.id != exclude_page_id
    if taken:
        logger.info('Slug %s requested by %s is already taken.', candidate, owner_id)
    return not taken


def resolve_page(store, id_or_slug):
    if not id_or_slug:
        return None
    page = store.get_by_slug(id_or_slug)
    if page is not None:
        return page
    return store.get(id_or_slug)


def assign_custom_slug(store, owner_id, page_id, raw_slug):
    page = store.get_for_owner(owner_id, page_id)
    if page is None:
        raise PageNotFoundError('Page not found.', page_id=page_id)
    if page.status != PaymentStatus.PAID:
        raise PublicationStateError('Custom URLs are available only for paid pages.', page_id=page_id)

    candidate = generate_slug(raw_slug)
    if candidate == page.custom_slug:
        return page
    if not check_slug_availability(store, owner_id, candidate, exclude_page_id=page.id):
        raise SlugUnavailableError('This URL is already in use.', slug=candidate)
    # The unique index still arbitrates a concurrent claim between the check and this write.
    store.update(page, custom_slug=candidate)
    logger.info('Page %s now answers at slug %s.', page.id, candidate)
    return page


def remove_custom_slug(store, owner_id, page_id):
    page = store.get_for_owner(owner_id, page_id)
    if page is None:
        raise PageNotFoundError('Page not found.', page_id=page_id)
    if page.custom_slug:
        store.update(page, custom_slug=None)
    return page
