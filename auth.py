"""Identity gate: signed bearer tokens resolved to a stored User."""
import logging
from functools import wraps

from flask import current_app
from flask_login import LoginManager, current_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import select

from errors import AuthError
from models import db, Role, User

logger = logging.getLogger(__name__)

login_manager = LoginManager()

TOKEN_SALT = 'identity'


def _serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=TOKEN_SALT)


def issue_token(uid):
    return _serializer().dumps({'uid': uid})


def read_token(token):
    """Return the uid a token was issued for."""
    if not token:
        raise AuthError('No token provided.', 401)
    try:
        payload = _serializer().loads(token, max_age=current_app.config['TOKEN_MAX_AGE'])
    except SignatureExpired:
        raise AuthError('Token expired.', 401)
    except BadSignature:
        raise AuthError('Unauthorized or invalid token.', 401)
    return payload['uid']


def bearer_token(request):
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    return header[len('Bearer '):].strip()


def resolve_caller(token):
    uid = read_token(token)
    user = db.session.execute(select(User).where(User.uid == uid)).scalar_one_or_none()
    if user is None:
        raise AuthError('User record not found.', 401)
    if not user.is_active:
        raise AuthError('User account is inactive.', 403)
    return user


@login_manager.request_loader
def load_user_from_request(request):
    token = bearer_token(request)
    if token is None:
        return None
    try:
        return resolve_caller(token)
    except AuthError as e:
        logger.warning(f"Rejected identity token: {e.message}")
        return None


@login_manager.unauthorized_handler
def unauthorized():
    raise AuthError('Authentication required.', 401)


def role_required(*roles):
    acceptable_roles = [Role(role) for role in roles]

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if current_user.role not in acceptable_roles:
                logger.warning(f"{current_user.uid} ({current_user.role.value}) denied "
                               f"access to {f.__name__}")
                raise AuthError(
                    f"Access denied. {' or '.join(r.value for r in acceptable_roles)} role required.")
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def ensure_self_or_admin(uid):
    if current_user.uid != uid and current_user.role != Role.ADMIN:
        raise AuthError('Access denied.')
