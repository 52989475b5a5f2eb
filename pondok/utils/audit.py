import json

from flask import request, has_request_context
from flask_login import current_user

from pondok.extensions import db
from pondok.models import AuditLog


def log_audit(action, entity, entity_id=None, details=None):
    """Tambahkan baris AuditLog ke session (commit dilakukan pemanggil)."""
    user_id = None
    ip_address = None
    if has_request_context():
        ip_address = request.remote_addr
        if current_user and current_user.is_authenticated:
            user_id = current_user.id

    if details is not None and not isinstance(details, str):
        details = json.dumps(details, default=str)

    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        details=details,
        ip_address=ip_address,
    )
    db.session.add(entry)
    return entry
