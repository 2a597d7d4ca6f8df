"""
User accounts: bcrypt password hashes, JWT bearer tokens.

Users live in the ``users`` table of whatever record store the app was built
with. Tokens carry ``userId`` and ``email`` and expire after
``JWT_EXPIRY_DAYS`` days.
"""
import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import bcrypt
import jwt
from flask import Blueprint, current_app, g, jsonify, request

from errors import AuthError, NotFound, ValidationError
from storage import TABLES, utcnow

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')

JWT_ALGORITHM = 'HS256'
BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 6

PUBLIC_USER_FIELDS = ('id', 'email', 'username', 'is_premium', 'premium_expires_at')


# ── Password helpers ──────────────────────────────────────────────

def hash_password(password, rounds=BCRYPT_ROUNDS):
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds)).decode()


def verify_password(password, hashed):
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ── JWT helpers ───────────────────────────────────────────────────

def generate_token(user_id, email):
    now = datetime.now(timezone.utc)
    payload = {
        'userId': user_id,
        'email': email,
        'iat': now,
        'exp': now + timedelta(days=current_app.config['JWT_EXPIRY_DAYS']),
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm=JWT_ALGORITHM)


def verify_token(token):
    """Decoded payload, or None if the token is bad or expired."""
    try:
        return jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def _bearer_token():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip() or None
    return None


def _store():
    return current_app.extensions['blueme']['store']


def public_user(user):
    return {k: user.get(k) for k in PUBLIC_USER_FIELDS}


def require_auth(f):
    """Reject the request with 401 unless it carries a valid token for a live user."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = _bearer_token()
        if not token:
            raise AuthError('Authentication required')
        decoded = verify_token(token)
        if decoded is None:
            raise AuthError('Invalid token')
        user = _store().get(TABLES['USERS'], decoded.get('userId'))
        if user is None:
            raise AuthError('User not found or token expired')
        g.user = user
        return f(*args, **kwargs)
    return decorated


def _json_body():
    return request.get_json(silent=True) or {}


# ── Routes ────────────────────────────────────────────────────────

@auth_bp.route('/register', methods=['POST'])
def register():
    data = _json_body()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        raise ValidationError('Email and password are required')
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long')

    store = _store()
    if store.find_one(TABLES['USERS'], email=email):
        raise ValidationError('User already exists with this email')

    now = utcnow()
    user = store.insert(TABLES['USERS'], {
        'email': email,
        'username': data.get('username') or email.split('@')[0],
        'password_hash': hash_password(password, current_app.config['BCRYPT_ROUNDS']),
        'is_premium': False,
        'premium_expires_at': None,
        'free_playlist_count': 0,
        'premium_playlist_count': 0,
        'created_at': now,
        'updated_at': now,
    })
    logger.info(f"👤 New user registered: {user['email']}")

    return jsonify({
        'success': True,
        'message': 'Account created successfully',
        'user': public_user(user),
        'token': generate_token(user['id'], user['email'])
    }), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    data = _json_body()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        raise ValidationError('Email and password are required')

    user = _store().find_one(TABLES['USERS'], email=email)
    if user is None or not verify_password(password, user['password_hash']):
        raise AuthError('Invalid email or password')

    return jsonify({
        'success': True,
        'message': 'Login successful',
        'user': public_user(user),
        'token': generate_token(user['id'], user['email'])
    })


@auth_bp.route('/profile', methods=['GET'])
@require_auth
def get_profile():
    return jsonify({'success': True, 'user': public_user(g.user)})


@auth_bp.route('/profile', methods=['PUT'])
@require_auth
def update_profile():
    data = _json_body()
    changes = {'updated_at': utcnow()}
    if data.get('username'):
        changes['username'] = data['username']

    user = _store().update(TABLES['USERS'], g.user['id'], changes)
    if user is None:
        raise NotFound('User not found')
    return jsonify({
        'success': True,
        'message': 'Profile updated successfully',
        'user': public_user(user)
    })


@auth_bp.route('/change-password', methods=['PUT'])
@require_auth
def change_password():
    data = _json_body()
    current = data.get('currentPassword') or ''
    new = data.get('newPassword') or ''

    if not current or not new:
        raise ValidationError('Current password and new password are required')
    if len(new) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'New password must be at least {MIN_PASSWORD_LENGTH} characters long')
    if not verify_password(current, g.user['password_hash']):
        raise AuthError('Current password is incorrect')

    _store().update(TABLES['USERS'], g.user['id'], {
        'password_hash': hash_password(new, current_app.config['BCRYPT_ROUNDS']),
        'updated_at': utcnow(),
    })
    return jsonify({'success': True, 'message': 'Password updated successfully'})


@auth_bp.route('/account', methods=['DELETE'])
@require_auth
def delete_account():
    password = _json_body().get('password') or ''
    if not password:
        raise ValidationError('Password is required to delete account')
    if not verify_password(password, g.user['password_hash']):
        raise AuthError('Password is incorrect')

    _store().delete(TABLES['USERS'], g.user['id'])
    logger.info(f"🗑️ Account deleted: {g.user['email']}")
    return jsonify({'success': True, 'message': 'Account deleted successfully'})


@auth_bp.route('/status', methods=['GET'])
def auth_status():
    token = _bearer_token()
    if not token:
        return jsonify({'authenticated': False, 'message': 'No token provided'})

    decoded = verify_token(token)
    if decoded is None:
        return jsonify({'authenticated': False, 'message': 'Invalid token'})

    user = _store().get(TABLES['USERS'], decoded.get('userId'))
    if user is None:
        return jsonify({'authenticated': False, 'message': 'User not found'})
    return jsonify({'authenticated': True, 'user': public_user(user)})
