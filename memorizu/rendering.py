"""Turn stored component data into something safe to put in a public page."""

import re

import bleach
from flask import current_app

from .gate import absolute_url, canonical_url

ALLOWED_RICH_TEXT_TAGS = [
    'p', 'br', 'strong', 'em', 'b', 'i', 'u', 'blockquote', 'code',
    'ul', 'ol', 'li', 'h1', 'h2', 'h3', 'h4', 'a', 'span', 'div', 'hr',
]
ALLOWED_RICH_TEXT_ATTRIBUTES = {
    '*': ['class'],
    'a': ['href', 'title', 'target', 'rel'],
}
ALLOWED_RICH_TEXT_PROTOCOLS = ['http', 'https', 'mailto']
RICH_TEXT_KEYS = {'content', 'text', 'title', 'message', 'quote', 'subtitle', 'description'}
URL_KEYS = {'src', 'url', 'href', 'image', 'backgroundImage', 'videoUrl', 'audioUrl'}
DESCRIPTION_MAX_LENGTH = 160
DEFAULT_DESCRIPTION = 'A special page created with Memorizu'
DEFAULT_SHARE_IMAGE_PATH = '/MEMORIZU.png'
SITE_NAME = 'Memorizu'

_TAG_RE = re.compile(r'<[^>]*>')
_COLOR_RE = re.compile(r'^(#[0-9a-fA-F]{3,8}|[a-zA-Z]{3,20}|rgba?\([0-9.,\s%]{5,40}\))$')
_FONT_RE = re.compile(r'^[A-Za-z0-9 ,\'"-]{1,80}$')
_COMPONENT_TYPE_RE = re.compile(r'^[a-z0-9-]{1,40}$')


def sanitize_html(value, max_length=20000):
    return bleach.clean(
        (value or '')[:max_length],
        tags=ALLOWED_RICH_TEXT_TAGS,
        attributes=ALLOWED_RICH_TEXT_ATTRIBUTES,
        protocols=ALLOWED_RICH_TEXT_PROTOCOLS,
        strip=True,
    )


def safe_url(value):
    candidate = str(value or '').strip()
    if candidate.startswith(('https://', 'http://')) or (candidate.startswith('/') and not candidate.startswith('//')):
        return candidate
    return ''


def _sanitize_value(key, value):
    if key in RICH_TEXT_KEYS and isinstance(value, (dict, list)):
        # Rich text is rendered unescaped, so it must be a cleaned string.
        return ''
    if isinstance(value, dict):
        return {k: _sanitize_value(k, v) for k, v in value.items()}
    if isinstance(value, list):
        return [_sanitize_value(key, item) for item in value]
    if isinstance(value, str):
        if key in URL_KEYS:
            return safe_url(value)
        if key in RICH_TEXT_KEYS:
            return sanitize_html(value)
    return value


def sanitize_components(components):
    rendered = []
    for component in components or []:
        if not isinstance(component, dict):
            continue
        component_type = str(component.get('type') or '').strip().lower()
        if not _COMPONENT_TYPE_RE.match(component_type):
            continue
        data = component.get('data')
        rendered.append({
            'id': component.get('id'),
            'type': component_type,
            'data': _sanitize_value('data', data if isinstance(data, dict) else {}),
        })
    return rendered


def sanitize_settings(settings):
    settings = settings if isinstance(settings, dict) else {}
    safe = {}
    background = str(settings.get('backgroundColor') or '').strip()
    if _COLOR_RE.match(background):
        safe['backgroundColor'] = background
    font = str(settings.get('fontFamily') or '').strip()
    if _FONT_RE.match(font):
        safe['fontFamily'] = font
    return safe


def _plain_text(value):
    text = _TAG_RE.sub('', value or '').strip()
    if len(text) > DESCRIPTION_MAX_LENGTH:
        return text[:DESCRIPTION_MAX_LENGTH - 3] + '...'
    return text


def extract_description(components):
    for component in components or []:
        if not isinstance(component, dict):
            continue
        data = component.get('data') if isinstance(component.get('data'), dict) else {}
        if component.get('type') == 'text' and data.get('content'):
            text = _plain_text(str(data['content']))
            if text:
                return text
        if component.get('type') == 'heading' and data.get('text'):
            text = _plain_text(str(data['text']))
            if text:
                return text
    return DEFAULT_DESCRIPTION


def extract_first_image(components):
    for component in components or []:
        if not isinstance(component, dict):
            continue
        data = component.get('data') if isinstance(component.get('data'), dict) else {}
        if component.get('type') == 'image' and data.get('src'):
            return safe_url(data['src']) or None
        images = data.get('images')
        if component.get('type') == 'gallery' and isinstance(images, list) and images:
            first = images[0]
            if isinstance(first, dict):
                return safe_url(first.get('src') or first.get('url')) or None
    return None


def page_metadata(page):
    components = page.components
    title = page.title or 'Memorizu Page'
    base_url = (current_app.config.get('PUBLIC_BASE_URL') or '').rstrip('/')
    image = extract_first_image(components) or f'{base_url}{DEFAULT_SHARE_IMAGE_PATH}'
    return {
        'title': f'{title} | {SITE_NAME}',
        'page_title': title,
        'description': extract_description(components),
        'url': absolute_url(page),
        'image': image,
        'site_name': SITE_NAME,
    }


def public_page_payload(page):
    return {
        'id': page.id,
        'title': page.title,
        'custom_slug': page.custom_slug,
        'canonical_url': canonical_url(page),
        'components': sanitize_components(page.components),
        'settings': sanitize_settings(page.settings),
        'metadata': page_metadata(page),
        'published_at': page.published_at.isoformat() if page.published_at else None,
        'updated_at': page.updated_at.isoformat() if page.updated_at else None,
    }
