from flask import Blueprint, jsonify, session
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from .. import get_csrf_token
from ..models import User, db
from ..utils import clean_text, is_valid_email, json_body

auth_bp = Blueprint('auth', __name__)
PASSWORD_MIN_LENGTH = 8
# Used to keep login timing similar for unknown emails.
AUTH_DUMMY_HASH = generate_password_hash('memorizu-dummy-password')


def user_payload(user):
    return {
        'id': user.id,
        'email': user.email,
        'display_name': user.display_name,
        'created_at': user.created_at.isoformat() if user.created_at else None,
    }


def _start_session(user):
    session.clear()
    login_user(user)
    return jsonify({'user': user_payload(user), 'csrf_token': get_csrf_token()})


@auth_bp.route('/register', methods=['POST'])
def register():
    payload = json_body()
    email = clean_text(payload.get('email'), 200).lower()
    password = payload.get('password') or ''
    display_name = clean_text(payload.get('display_name'), 120) or None
    if not is_valid_email(email):
        return jsonify({'error': 'A valid email address is required.'}), 400
    if len(password) < PASSWORD_MIN_LENGTH:
        return jsonify({'error': f'Password must be at least {PASSWORD_MIN_LENGTH} characters.'}), 400
    if User.query.filter_by(email=email).first() is not None:
        return jsonify({'error': 'An account with this email already exists.'}), 409

    user = User(email=email, display_name=display_name)
    user.set_password(password)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'An account with this email already exists.'}), 409
    response = _start_session(user)
    response.status_code = 201
    return response


@auth_bp.route('/login', methods=['POST'])
def login():
    payload = json_body()
    email = clean_text(payload.get('email'), 200).lower()
    password = payload.get('password') or ''
    user = User.query.filter_by(email=email).first() if email else None
    if user is None:
        check_password_hash(AUTH_DUMMY_HASH, password)
        return jsonify({'error': 'Invalid credentials.'}), 401
    if not user.check_password(password):
        return jsonify({'error': 'Invalid credentials.'}), 401
    return _start_session(user)


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    session.clear()
    return jsonify({'logged_out': True})


@auth_bp.route('/session')
def current_session():
    user = user_payload(current_user) if current_user.is_authenticated else None
    return jsonify({'user': user, 'csrf_token': get_csrf_token()})
