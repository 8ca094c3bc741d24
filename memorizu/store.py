"""Page record storage.

Every publication service talks to pages through one of these stores instead
of issuing queries of its own. ``PageStore`` is backed by Flask-SQLAlchemy;
``InMemoryPageStore`` keeps pages in a dict and is used by the unit tests.
Both expose the same methods.
"""

import logging

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import PageNotFoundError, SlugUnavailableError, StoreError
from .models import Page, PaymentStatus, db, new_record_id, utc_now_naive

logger = logging.getLogger(__name__)

MUTABLE_PAGE_FIELDS = frozenset({
    'title',
    'components',
    'settings',
    'custom_slug',
    'published',
    'payment_status',
    'payment_intent_id',
    'published_url',
    'published_at',
    'paid_at',
    'disputed_at',
    'dispute_id',
    'refunded_at',
    'refund_id',
    'recovered_at',
    'payment_event_at',
})


def _check_fields(fields):
    unknown = set(fields) - MUTABLE_PAGE_FIELDS
    if unknown:
        raise ValueError(f"Unknown page fields: {', '.join(sorted(unknown))}")
    if 'payment_status' in fields:
        fields['payment_status'] = PaymentStatus(fields['payment_status']).value


def _is_unpaid(page):
    return not page.published or page.payment_status != PaymentStatus.PAID.value


def get_page_store():
    return current_app.extensions['memorizu.page_store']


class PageStore:
    def __init__(self, database=db):
        self.db = database

    def _commit(self, action, page_id):
        try:
            self.db.session.commit()
        except IntegrityError:
            self.db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            logger.exception('Page store %s failed for page %s.', action, page_id)
            raise StoreError(f'Unable to {action} page.', page_id=page_id) from exc

    def create(self, owner_id, title, components=None, settings=None):
        page = Page(
            id=new_record_id(),
            owner_id=owner_id,
            title=title,
            published=False,
            payment_status=PaymentStatus.UNPAID.value,
            published_url=None,
        )
        page.components = components or []
        page.settings = settings or {}
        self.db.session.add(page)
        self._commit('create', page.id)
        return page

    def get(self, page_id):
        if not page_id:
            return None
        try:
            return self.db.session.get(Page, page_id)
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise StoreError('Unable to read page.', page_id=page_id) from exc

    def get_for_owner(self, owner_id, page_id):
        page = self.get(page_id)
        if page is None or page.owner_id != owner_id:
            return None
        return page

    def get_by_slug(self, slug):
        if not slug:
            return None
        try:
            return Page.query.filter_by(custom_slug=slug).first()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise StoreError('Unable to read page.', slug=slug) from exc

    def slug_taken(self, slug, exclude_page_id=None):
        query = Page.query.filter(Page.custom_slug == slug)
        if exclude_page_id:
            query = query.filter(Page.id != exclude_page_id)
        try:
            return self.db.session.query(query.exists()).scalar()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise StoreError('Unable to check slug.', slug=slug) from exc

    def _all(self, query, owner_id):
        try:
            return query.order_by(Page.updated_at.desc(), Page.id.asc()).all()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise StoreError('Unable to list pages.', owner_id=owner_id) from exc

    def list_for_owner(self, owner_id):
        return self._all(Page.query.filter_by(owner_id=owner_id), owner_id)

    def list_unpaid(self, owner_id):
        query = Page.query.filter(
            Page.owner_id == owner_id,
            or_(Page.published.is_(False), Page.payment_status != PaymentStatus.PAID.value),
        )
        return self._all(query, owner_id)

    def update(self, page, **fields):
        _check_fields(fields)
        # Read before assigning: touching an expired attribute later would autoflush outside _commit.
        page_id = page.id
        for key, value in fields.items():
            setattr(page, key, value)
        try:
            self._commit('update', page_id)
        except IntegrityError as exc:
            self.db.session.rollback()
            if 'custom_slug' in fields:
                raise SlugUnavailableError('This URL is already in use.', slug=fields['custom_slug']) from exc
            raise StoreError('Unable to update page.', page_id=page_id) from exc
        return page

    def delete(self, owner_id, page_id):
        page = self.get_for_owner(owner_id, page_id)
        if page is None:
            raise PageNotFoundError('Page not found.', page_id=page_id)
        self.db.session.delete(page)
        try:
            self._commit('delete', page_id)
        except IntegrityError as exc:
            raise StoreError('Unable to delete page.', page_id=page_id) from exc


class InMemoryPageStore:
    def __init__(self, pages=None):
        self.pages = {}
        for page in pages or ():
            self.pages[page.id] = page

    def create(self, owner_id, title, components=None, settings=None, page_id=None):
        now = utc_now_naive()
        page = Page(
            id=page_id or new_record_id(),
            owner_id=owner_id,
            title=title,
            published=False,
            payment_status=PaymentStatus.UNPAID.value,
            published_url=None,
            created_at=now,
            updated_at=now,
        )
        page.components = components or []
        page.settings = settings or {}
        self.pages[page.id] = page
        return page

    def get(self, page_id):
        return self.pages.get(page_id)

    def get_for_owner(self, owner_id, page_id):
        page = self.pages.get(page_id)
        if page is None or page.owner_id != owner_id:
            return None
        return page

    def get_by_slug(self, slug):
        if not slug:
            return None
        for page in self.pages.values():
            if page.custom_slug == slug:
                return page
        return None

    def slug_taken(self, slug, exclude_page_id=None):
        return any(
            page.custom_slug == slug and page.id != exclude_page_id
            for page in self.pages.values()
        )

    def list_for_owner(self, owner_id):
        pages = [page for page in self.pages.values() if page.owner_id == owner_id]
        return sorted(pages, key=lambda page: page.updated_at, reverse=True)

    def list_unpaid(self, owner_id):
        return [page for page in self.list_for_owner(owner_id) if _is_unpaid(page)]

    def update(self, page, **fields):
        _check_fields(fields)
        slug = fields.get('custom_slug')
        if slug and self.slug_taken(slug, exclude_page_id=page.id):
            raise SlugUnavailableError('This URL is already in use.', slug=slug)
        for key, value in fields.items():
            setattr(page, key, value)
        page.updated_at = utc_now_naive()
        return page

    def delete(self, owner_id, page_id):
        if self.get_for_owner(owner_id, page_id) is None:
            raise PageNotFoundError('Page not found.', page_id=page_id)
        del self.pages[page_id]
