import hmac
from functools import wraps

from flask import abort, current_app, request
from flask_login import current_user

from pondok.models import UserRole
from pondok.utils.roles import STAFF_ROLES


def role_required(*roles):
    """
    Decorator untuk membatasi akses berdasarkan Role.
    Penggunaan: @role_required(UserRole.ADMIN, UserRole.GURU)
    """
    def wrapper(fn):
        @wraps(fn)
        def decorated_view(*args, **kwargs):
            if not current_user.is_authenticated:
                return abort(401, description='Silakan login terlebih dahulu')
            if not current_user.has_role(*roles):
                return abort(403, description='Akses ditolak')  # Forbidden
            return fn(*args, **kwargs)
        return decorated_view
    return wrapper


def admin_required(fn):
    return role_required(UserRole.ADMIN)(fn)


def staff_required(fn):
    return role_required(*STAFF_ROLES)(fn)


def cron_required(fn):
    """Endpoint cron hanya bisa dipanggil dengan header `Authorization: Bearer <CRON_SECRET>`."""
    @wraps(fn)
    def decorated_view(*args, **kwargs):
        secret = current_app.config.get('CRON_SECRET')
        header = request.headers.get('Authorization', '')
        if not secret or not hmac.compare_digest(header, f'Bearer {secret}'):
            return abort(401, description='Unauthorized')
        return fn(*args, **kwargs)
    return decorated_view
