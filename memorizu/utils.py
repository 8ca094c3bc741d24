"""Shared utility functions used across route modules."""
import re

from flask import abort, request

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def clean_text(value, max_length=255):
    return str(value or '').strip()[:max_length]


def is_valid_email(value):
    return bool(EMAIL_RE.match(value or ''))


def json_body():
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        abort(400, description='Expected a JSON object.')
    return payload


def isoformat(value):
    return value.isoformat() if value else None
