from __future__ import annotations

from ledgerdesk.errors import forbidden, unauthorized
from ledgerdesk.storage import Storage, UserRecord
from ledgerdesk.validation import ADMIN


def require_session(storage: Storage, x_user_id: str | None) -> UserRecord:
    """Resolve the identity forwarded by the auth provider to a known user."""
    if not x_user_id:
        raise unauthorized()
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise unauthorized() from exc
    user = storage.get_user(user_id)
    if user is None:
        raise unauthorized()
    return user


def require_admin(storage: Storage, x_user_id: str | None) -> UserRecord:
    user = require_session(storage, x_user_id)
    if user.role != ADMIN:
        raise forbidden()
    return user
