"""
Token authentication for the admin API.

Admin calls carry a per-user API token, either as an X-Admin-Token header or
an Authorization: Bearer header. Flask-Login resolves the token to a user on
every request; there are no sessions.
"""

from functools import wraps

from flask import abort, current_app, request
from flask_login import current_user

from gridguessr import db, login_manager
from gridguessr.models import User


def _token_from_request(req):
    token = req.headers.get("X-Admin-Token")
    if token:
        return token.strip()

    auth_header = req.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()

    return None


def load_user_from_request(req):
    """Flask-Login request loader: resolve an API token to its user"""
    token = _token_from_request(req)
    if not token:
        return None

    user = User.query.filter_by(api_token=token).first()
    if user is None or not user.check_api_token(token):
        current_app.logger.warning(f"Rejected admin token from {req.remote_addr}")
        return None
    return user


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


def admin_required(f):
    """Require an authenticated admin user"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated_function
