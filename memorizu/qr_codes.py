from urllib.parse import urlencode

from flask import current_app

from .errors import PublicationStateError
from .gate import absolute_url, is_publicly_visible
from .models import Page, PageQRCode, db, utc_now_naive


def build_qr_code_url(page_url):
    service_url = current_app.config.get('QR_CODE_SERVICE_URL') or ''
    size = int(current_app.config.get('QR_CODE_SIZE', 512))
    query = urlencode({'size': f'{size}x{size}', 'data': page_url})
    separator = '&' if '?' in service_url else '?'
    return f'{service_url}{separator}{query}'


def qr_code_payload(record):
    return {
        'page_id': record.page_id,
        'page_url': record.page_url,
        'qr_code_url': record.qr_code_url,
        'created_at': record.created_at.isoformat() if record.created_at else None,
    }


def get_page_qr_code(page):
    return PageQRCode.query.filter_by(page_id=page.id).first()


def generate_page_qr_code(page):
    """Create or refresh the QR record pointing at the page's canonical URL."""
    if not is_publicly_visible(page):
        raise PublicationStateError('Page must be published before generating a QR code.', page_id=page.id)

    page_url = absolute_url(page)
    record = get_page_qr_code(page)
    if record is None:
        record = PageQRCode(page_id=page.id)
        db.session.add(record)
    record.page_url = page_url
    record.qr_code_url = build_qr_code_url(page_url)
    record.created_at = utc_now_naive()
    db.session.commit()
    return record


def list_owner_qr_codes(owner_id):
    return (
        PageQRCode.query.join(Page, Page.id == PageQRCode.page_id)
        .filter(Page.owner_id == owner_id)
        .order_by(PageQRCode.created_at.desc())
        .all()
    )
