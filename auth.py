import datetime
import re
from functools import wraps

import jwt
from flask import current_app, g, request
from werkzeug.security import check_password_hash, generate_password_hash

from errors import Forbidden, Unauthorized

_DURATION_RE = re.compile(r'^(\d+)\s*([smhd]?)$')
_UNIT_SECONDS = {'': 1, 's': 1, 'm': 60, 'h': 3600, 'd': 86400}


def hash_password(password):
    return generate_password_hash(password)


def verify_password(password_hash, password):
    if not password_hash or password is None:
        return False
    return check_password_hash(password_hash, password)


def parse_duration(value):
    """'24h', '30m', '7d', '3600' -> timedelta."""
    match = _DURATION_RE.match(str(value).strip().lower())
    if not match:
        raise ValueError(f'Invalid duration: {value!r}')
    amount, unit = match.groups()
    return datetime.timedelta(seconds=int(amount) * _UNIT_SECONDS[unit])


def issue_token(user):
    cfg = current_app.config
    now = datetime.datetime.now(datetime.timezone.utc)
    claims = {
        'id': user['id'],
        'username': user['username'],
        'role': user['role'],
        'iat': now,
        'exp': now + parse_duration(cfg['JWT_EXPIRES_IN']),
    }
    return jwt.encode(claims, cfg['JWT_SECRET'], algorithm=cfg['JWT_ALGORITHM'])


def decode_token(token):
    cfg = current_app.config
    try:
        return jwt.decode(token, cfg['JWT_SECRET'], algorithms=[cfg['JWT_ALGORITHM']])
    except jwt.ExpiredSignatureError:
        raise Unauthorized('Token expired')
    except jwt.InvalidTokenError:
        raise Unauthorized('Invalid or expired token')


def bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def token_required(fn):
    @wraps(fn)
    def wrapped(*args, **kwargs):
        token = bearer_token()
        if not token:
            raise Unauthorized('Access token required')
        g.user = decode_token(token)
        return fn(*args, **kwargs)
    return wrapped


def require_role(*roles):
    allowed = {r.lower() for r in roles}

    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            user = getattr(g, 'user', None)
            if not user:
                raise Unauthorized('Authentication required')
            if str(user.get('role', '')).lower() not in allowed:
                current_app.logger.info('Denied %s %s for %s (%s)', request.method, request.path,
                                        user.get('username'), user.get('role'))
                raise Forbidden('Insufficient permissions')
            return fn(*args, **kwargs)
        return wrapped
    return decorator
