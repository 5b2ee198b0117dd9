"""
Role-based authorization.

The role stored in user_profiles is the only authorization signal. Any failure
to read it (missing profile, database error) is treated as "no role", so every
admin check fails closed.
"""
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import current_app, g, has_request_context, request, session

from errors import NotAuthenticatedError, NotAuthorizedError, TransientStoreError
from models import UserProfile, db

logger = logging.getLogger(__name__)


@dataclass
class Identity:
    user_id: str
    email: Optional[str] = None


def get_role(user_id: Optional[str]) -> Optional[str]:
    """Return the caller's role, or None when it cannot be established"""
    if not user_id:
        return None
    try:
        profile = UserProfile.query.filter_by(id=user_id).first()
    except Exception as e:
        logger.error(f"❌ Role lookup failed for {user_id}: {e}", exc_info=True)
        try:
            db.session.rollback()
        except Exception:
            logger.debug("Rollback after failed role lookup also failed", exc_info=True)
        return None
    if not profile:
        logger.warning(f"⚠ No profile found for user {user_id}")
        return None
    return profile.role


def is_admin(user_id: Optional[str]) -> bool:
    return get_role(user_id) == 'admin'


def require_admin(user_id: Optional[str]) -> None:
    if not user_id:
        raise NotAuthenticatedError()
    if not is_admin(user_id):
        where = f" on {request.method} {request.path}" if has_request_context() else ""
        logger.warning(f"❌ Admin access denied for user {user_id}{where}")
        raise NotAuthorizedError()


def current_identity() -> Optional[Identity]:
    """Return the authenticated caller: Flask session first, then a bearer token."""
    if 'identity' in g:
        return g.identity

    identity = None
    if session.get('user_id'):
        identity = Identity(user_id=str(session['user_id']), email=session.get('email'))
    else:
        auth = request.headers.get('Authorization', '')
        if auth.lower().startswith('bearer '):
            token = auth.split(' ', 1)[1].strip()
            auth_client = current_app.extensions.get('auth_client')
            if token and auth_client is not None:
                try:
                    user = auth_client.get_user(token)
                except TransientStoreError as e:
                    # Unverifiable token: continue as anonymous
                    logger.warning(f"⚠ Could not verify bearer token, treating caller as anonymous: {e}")
                    user = None
                if user:
                    identity = Identity(user_id=user.id, email=user.email)

    g.identity = identity
    return identity


def require_identity() -> Identity:
    identity = current_identity()
    if identity is None:
        raise NotAuthenticatedError()
    return identity


def admin_required(f):
    """Route decorator: reject the request before the handler runs unless the caller is an admin"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity = current_identity()
        require_admin(identity.user_id if identity else None)
        return f(*args, **kwargs)
    return decorated_function
